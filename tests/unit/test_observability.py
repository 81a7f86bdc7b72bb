"""
Unit Tests - Observability

Tests for tracing and structured logging.
"""

import io
import json
import logging

import pytest

from conductor.config.settings import RuntimeSettings
from conductor.observability import (
    BufferHandler,
    InMemorySpanProcessor,
    SpanKind,
    SpanStatus,
    Tracer,
    configure_logging,
    configure_logging_from_settings,
    log_context,
)


class TestTracer:
    """Tests for Tracer."""

    @pytest.mark.asyncio
    async def test_nested_spans_share_trace(self, tracer, span_processor):
        """Test child spans link to their parent."""
        async with tracer.trace(SpanKind.RUN, "triage") as run_span:
            async with tracer.trace(SpanKind.GENERATION, "triage") as generation_span:
                generation_span.set_payload("turn", 1)

        assert generation_span.parent_id == run_span.span_id
        assert generation_span.trace_id == run_span.trace_id
        assert [s.kind for s in span_processor.finished_spans] == [SpanKind.GENERATION, SpanKind.RUN]
        assert tracer.get_current_span() is None

    @pytest.mark.asyncio
    async def test_error_status(self, tracer):
        """Test exceptions mark the span as failed."""
        with pytest.raises(ValueError):
            async with tracer.trace(SpanKind.CAPABILITY, "convert") as span:
                raise ValueError("bad")

        assert span.status == SpanStatus.ERROR
        assert "bad" in span.status_message

    @pytest.mark.asyncio
    async def test_redaction(self, span_processor):
        """Test payloads are redacted when configured."""
        tracer = Tracer(processors=[span_processor], redact_payloads=True)

        async with tracer.trace(SpanKind.CAPABILITY, "convert", payload={"arguments": {"x": 1}}) as span:
            pass

        assert span.payload["arguments"] == "[REDACTED]"

    @pytest.mark.asyncio
    async def test_disabled(self):
        """Test a disabled tracer notifies no processor."""
        processor = InMemorySpanProcessor()
        tracer = Tracer(processors=[processor], enabled=False)

        async with tracer.trace(SpanKind.RUN, "x"):
            pass

        assert processor.events == []

    @pytest.mark.asyncio
    async def test_processor_failure_isolated(self, span_processor):
        """Test a failing processor does not break tracing."""

        class Broken:
            def on_span_start(self, span):
                raise RuntimeError("exporter down")

            def on_span_end(self, span):
                raise RuntimeError("exporter down")

        tracer = Tracer(processors=[Broken(), span_processor])

        async with tracer.trace(SpanKind.RUN, "x"):
            pass

        assert len(span_processor.finished_spans) == 1


class TestLogging:
    """Tests for structured logging."""

    def test_context_fields_on_records(self):
        """Test log context values are attached to records."""
        logger = logging.getLogger("conductor.test.context")
        handler = BufferHandler()
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
        try:
            with log_context(run_id="run_1", agent="triage"):
                logger.info("inside")
            logger.info("outside")
        finally:
            logger.removeHandler(handler)

        inside, outside = handler.records
        assert inside.run_id == "run_1"
        assert inside.agent == "triage"
        assert outside.run_id is None

    def test_json_output(self):
        """Test configure_logging writes one JSON object per record."""
        stream = io.StringIO()
        logger = configure_logging("INFO", json_output=True, stream=stream)
        try:
            with log_context(run_id="run_2"):
                logging.getLogger("conductor.test.json").info(
                    "hello", extra={"data": {"turn": 1}}
                )
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)

        record = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert record["message"] == "hello"
        assert record["run_id"] == "run_2"
        assert record["data"] == {"turn": 1}

    def test_configured_from_settings(self):
        """Test log_level and log_format come from RuntimeSettings."""
        settings = RuntimeSettings(_env_file=None, log_level="WARNING", log_format="text")
        stream = io.StringIO()
        logger = configure_logging_from_settings(settings, stream=stream)
        try:
            logging.getLogger("conductor.test.settings").info("quiet")
            logging.getLogger("conductor.test.settings").warning("careful")
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)

        assert logger.level == logging.WARNING
        lines = stream.getvalue().strip().splitlines()
        assert len(lines) == 1
        assert lines[0].startswith("[")
        assert "WARNING" in lines[0]
        assert "careful" in lines[0]
