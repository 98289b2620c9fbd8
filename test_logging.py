"""
Logging modes
=============

Checks the loguru configuration used by the client and the per-module
suppression used when replaying recorded frames.
"""

import pytest
from loguru import logger

from ftx_stream.data_ingestion import OrderBook
from ftx_stream.utils.logger import (
    FRAME_MODULES, LEVEL_MAPPING, LogLevel, get_logger, log_config, setup_development_logging,
    setup_production_logging, setup_replay_logging, setup_silent_logging
)

BOOK_MODULE = "ftx_stream.data_ingestion.order_book"


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    for module in FRAME_MODULES:
        logger.enable(module)
    log_config.setup_logging(level=LogLevel.QUIET)


@pytest.mark.parametrize("setup,level", [
    (setup_silent_logging, LogLevel.SILENT),
    (setup_replay_logging, LogLevel.QUIET),
    (setup_production_logging, LogLevel.NORMAL),
    (setup_development_logging, LogLevel.VERBOSE),
])
def test_modes(setup, level):
    setup()
    assert log_config.current_level is level


def test_every_level_maps_to_a_loguru_level():
    assert set(LEVEL_MAPPING) == set(LogLevel)


def test_file_logging_and_module_suppression(tmp_path):
    log_file = tmp_path / "stream.log"

    setup_replay_logging()
    log_config.add_file_logging(str(log_file))
    OrderBook("SUPPRESSED-PERP")

    logger.enable(BOOK_MODULE)
    OrderBook("VISIBLE-PERP")
    logger.remove()

    contents = log_file.read_text()
    assert "VISIBLE-PERP" in contents
    assert "SUPPRESSED-PERP" not in contents


def test_get_logger_binds_component_name():
    messages = []
    log_config.setup_logging(level=LogLevel.NORMAL)
    logger.add(lambda message: messages.append(message.record), level="INFO")

    get_logger("watcher").info("hello")
    assert messages[-1]["extra"]["name"] == "watcher"
    assert messages[-1]["message"] == "hello"
