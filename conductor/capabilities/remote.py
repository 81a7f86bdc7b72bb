"""
Remote Capabilities

Built-in capabilities implemented by an external provider (web search,
document retrieval, UI automation). The runtime only serializes the
request and deserializes the response.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from conductor.capabilities.base import CapabilityDescriptor
from conductor.config.settings import RuntimeSettings, get_settings
from conductor.core.context import InvocationContext
from conductor.core.exceptions import CapabilityError
from conductor.core.interfaces import (
    RemoteCapabilityClientProtocol,
    RemoteCapabilityRequest,
    RemoteCapabilityResponse,
)

logger = logging.getLogger(__name__)


class HttpRemoteCapabilityClient:
    """
    Calls a remote capability provider over HTTP.

    POSTs `{capability_type, parameters}` as JSON to `{base_url}/{path}`
    and expects `{result}` or `{error}` back.
    """

    def __init__(
        self,
        base_url: str,
        *,
        path: str = "/capabilities/invoke",
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._path = path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, settings: RuntimeSettings | None = None, **kwargs: Any
    ) -> "HttpRemoteCapabilityClient":
        """Client for `remote_base_url` with `remote_timeout_seconds`."""
        settings = settings or get_settings()
        kwargs.setdefault("timeout", settings.remote_timeout_seconds)
        return cls(settings.remote_base_url, **kwargs)

    async def call(self, request: RemoteCapabilityRequest) -> RemoteCapabilityResponse:
        try:
            response = await self._client.post(self._path, json=request.model_dump(mode="json"))
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CapabilityError(
                f"Remote capability '{request.capability_type}' returned "
                f"HTTP {e.response.status_code}",
                context={"status_code": e.response.status_code},
                cause=e,
            )
        except httpx.HTTPError as e:
            raise CapabilityError(
                f"Remote capability '{request.capability_type}' unreachable: {e}",
                cause=e,
            )

        try:
            return RemoteCapabilityResponse.model_validate(response.json())
        except ValueError as e:
            raise CapabilityError(
                f"Remote capability '{request.capability_type}' sent an invalid response",
                cause=e,
            )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpRemoteCapabilityClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


@dataclass(kw_only=True)
class RemoteCapability(CapabilityDescriptor):
    """
    A capability executed by a remote provider.

    `capability_type` selects the provider-side implementation
    (e.g. "web_search", "file_search", "computer_use").
    """

    capability_type: str
    client: RemoteCapabilityClientProtocol
    parameters: dict[str, Any] | None = None  # JSON Schema when no args_model is given
    static_parameters: dict[str, Any] | None = None  # Merged under the model's arguments

    @property
    def kind(self) -> str:
        return "remote"

    def parameters_schema(self) -> dict[str, Any]:
        if self.args_model is None and self.parameters is not None:
            return dict(self.parameters)
        return super().parameters_schema()

    async def invoke(self, ctx: InvocationContext, arguments: dict[str, Any]) -> Any:
        request = RemoteCapabilityRequest(
            capability_type=self.capability_type,
            parameters={**(self.static_parameters or {}), **arguments},
        )
        logger.debug("calling remote capability %s", self.capability_type)

        response = await self.client.call(request)
        if response.error is not None:
            raise CapabilityError(response.error, context={"capability_type": self.capability_type})
        return response.result
