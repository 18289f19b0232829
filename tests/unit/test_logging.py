"""Unit tests for structured run logging."""
import io
import json
import logging

import pytest

from infra_reconcile.utils.logging import ConsoleFormatter, JSONFormatter, LogContext


@pytest.fixture
def capture():
    """A dedicated logger writing JSON lines into a buffer."""
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())
    logger = logging.getLogger("infra_reconcile.tests.capture")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    yield logger, stream
    logger.removeHandler(handler)


def lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_nested_context_fields_reach_json_output(capture):
    logger, stream = capture

    with LogContext(logger, environment="dev", operation="destroy"):
        with LogContext(logger, step="network", resource_id="vpc-1"):
            logger.info("Cleaning network resources")
        logger.info("Network done")
    logger.info("Outside")

    inner, outer, outside = lines(stream)
    assert inner["environment"] == "dev"
    assert inner["step"] == "network"
    assert inner["resource_id"] == "vpc-1"
    assert outer["operation"] == "destroy"
    assert "step" not in outer
    assert "environment" not in outside


def test_inner_context_overrides_outer_until_exit(capture):
    logger, stream = capture

    with LogContext(logger, step="destroy"):
        with LogContext(logger, step="network"):
            logger.info("inner")
        logger.info("outer")

    assert [entry["step"] for entry in lines(stream)] == ["network", "destroy"]


def test_console_line_carries_step_and_resource():
    record = logging.LogRecord("x", logging.WARNING, __file__, 1, "Releasing Elastic IP", None, None)
    record.step = "network"
    record.resource_id = "eipalloc-1"

    line = ConsoleFormatter(color=False).format(record)

    assert line.endswith("WARNING  (network) [eipalloc-1] Releasing Elastic IP")
