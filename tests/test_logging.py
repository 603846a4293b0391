"""Tests for structured logging and the error hierarchy."""

import json
import logging

import pytest

from aberrlib.core import (
    AberrlibError,
    ConfigurationError,
    MicrographError,
    NotInitializedError,
    OpticsGroupError,
    SizeMismatchError,
    get_logger,
    setup_logging,
)


@pytest.fixture()
def package_logger():
    logger = logging.getLogger("aberrlib")
    yield logger
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


def test_json_log_file(tmp_path, package_logger):
    path = tmp_path / "logs" / "run.jsonl"
    setup_logging(path, level=logging.DEBUG)

    get_logger("aberrlib.estimation").info("Fitted optics group", {"group": 1, "tilt_x": 0.2})
    for handler in package_logger.handlers:
        handler.flush()

    record = json.loads(path.read_text().splitlines()[-1])
    assert record["level"] == "INFO"
    assert record["name"] == "aberrlib.estimation"
    assert record["message"] == "Fitted optics group"
    assert record["group"] == 1
    assert record["tilt_x"] == 0.2


def test_level_filters_records(tmp_path, package_logger):
    path = tmp_path / "run.jsonl"
    setup_logging(path, level=logging.WARNING)

    log = get_logger("aberrlib.model")
    log.debug("hidden")
    log.warning("shown", {"group": 2})
    for handler in package_logger.handlers:
        handler.flush()

    messages = [json.loads(line)["message"] for line in path.read_text().splitlines()]
    assert messages == ["shown"]


def test_error_hierarchy():
    for exc in (NotInitializedError, OpticsGroupError, SizeMismatchError):
        assert issubclass(exc, ConfigurationError)
    assert issubclass(ConfigurationError, ValueError)
    assert issubclass(MicrographError, AberrlibError)
    assert not issubclass(MicrographError, ConfigurationError)
