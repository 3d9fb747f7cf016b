"""Tests for the structured logging system (contract_kernel/logging_config.py)."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from contract_kernel.domain.status import ContractStatus
from contract_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "contract_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info(
            "contract_transitioned",
            extra={"seq": 4, "to_status": ContractStatus.APPROVED},
        )

        record = _parse_log(stream)
        assert record["seq"] == 4
        assert record["to_status"] == "APPROVED"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        LogContext.set(correlation_id="abc-123", contract_id="c-1")
        logger.info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["contract_id"] == "c-1"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_kernel_exception_code_extracted(self):
        """Contract kernel exceptions carry a .code attribute."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        from contract_kernel.exceptions import InvalidTransitionError

        try:
            raise InvalidTransitionError("c-9", "CANCELLED", "SUBMIT")
        except InvalidTransitionError:
            logger.error("transition_refused", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INVALID_TRANSITION"
        assert record["exc_type"] == "InvalidTransitionError"
        assert record["exc_status"] == "CANCELLED"
        assert record["exc_event"] == "SUBMIT"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "contract_id" not in record

    def test_values_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        uid = uuid4()
        logger.info(
            "with_values",
            extra={
                "version_id": uid,
                "amount": Decimal("250000.00"),
                "as_of": date(2025, 4, 1),
            },
        )

        record = _parse_log(stream)
        assert record["version_id"] == str(uid)
        assert record["amount"] == "250000.00"
        assert record["as_of"] == "2025-04-01"

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # Default level is INFO, so the debug line is dropped.
        assert len(logs) == 2
        for record in logs:
            assert "ts" in record
            assert "level" in record
            assert "logger" in record
            assert "message" in record


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", approval_id="y")
        ctx = LogContext.get_all()
        assert ctx == {"correlation_id": "x", "approval_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(contract_id="outer")
        with LogContext.bind(contract_id="inner"):
            assert LogContext.get_all()["contract_id"] == "inner"
        assert LogContext.get_all()["contract_id"] == "outer"

    def test_bind_restores_none(self):
        """bind() restores to None if there was no previous value."""
        assert "approval_id" not in LogContext.get_all()
        with LogContext.bind(approval_id="temp"):
            assert LogContext.get_all()["approval_id"] == "temp"
        assert "approval_id" not in LogContext.get_all()

    def test_bind_stringifies_uuids(self):
        contract_id = uuid4()
        with LogContext.bind(contract_id=contract_id):
            assert LogContext.get_all()["contract_id"] == str(contract_id)

    def test_additive_set(self):
        LogContext.set(correlation_id="a")
        LogContext.set(actor_id="b")
        ctx = LogContext.get_all()
        assert ctx["correlation_id"] == "a"
        assert ctx["actor_id"] == "b"

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            contract_id="k",
            actor_id="a",
            approval_id="p",
            trace_id="t",
        )
        ctx = LogContext.get_all()
        assert len(ctx) == 5
        assert ctx["correlation_id"] == "c"
        assert ctx["trace_id"] == "t"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for initialization."""

    def test_idempotent(self):
        reset_logging()
        root = logging.getLogger("contract_kernel")
        before = list(root.handlers)

        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)  # second call is no-op

        added = [h for h in root.handlers if h not in before]
        assert added == [h1]

    def test_get_logger_returns_child(self):
        logger = get_logger("services.lifecycle")
        assert logger.name == "contract_kernel.services.lifecycle"

    def test_logger_hierarchy(self):
        """Child loggers inherit the contract_kernel root config."""
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        child = get_logger("deep.nested.module")
        child.debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "contract_kernel.deep.nested.module"
