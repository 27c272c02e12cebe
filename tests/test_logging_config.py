"""Tests for structured logging."""

import io
import json
import logging

import pytest

from feedloop.logging_config import JSONFormatter, LogContext, get_logger, setup_logging


@pytest.fixture
def json_logger():
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())
    logger = logging.getLogger("feedloop.tests.json")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    yield logger, stream
    logger.removeHandler(handler)
    logger.propagate = True


def _lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_get_logger_namespaces():
    assert get_logger("feedloop.export").name == "feedloop.export"
    assert get_logger("custom").name == "feedloop.custom"


def test_extra_and_context_fields(json_logger):
    logger, stream = json_logger
    with LogContext(batch_id="batch_1"):
        with LogContext(job_id="ftjob-1"):
            logger.info("inside", extra={"example_count": 3})
    logger.info("outside")

    inside, outside = _lines(stream)
    assert inside["message"] == "inside"
    assert inside["batch_id"] == "batch_1"
    assert inside["job_id"] == "ftjob-1"
    assert inside["example_count"] == 3
    assert inside["timestamp"].endswith("Z")
    assert "batch_id" not in outside


def test_exception_block(json_logger):
    logger, stream = json_logger
    try:
        raise ValueError("bad split")
    except ValueError:
        logger.exception("failed")

    entry = _lines(stream)[0]
    assert entry["exception"]["type"] == "ValueError"
    assert entry["exception"]["message"] == "bad split"


def test_setup_logging_writes_files(tmp_path):
    logger = setup_logging("feedloop-test", level=logging.DEBUG, log_dir=tmp_path, enable_console=False)
    try:
        logger.info("hello")
        for handler in logger.handlers:
            handler.flush()
        assert "hello" in (tmp_path / "feedloop-test.log").read_text()
        assert json.loads((tmp_path / "feedloop-test.json.log").read_text().splitlines()[0])["message"] == "hello"
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
