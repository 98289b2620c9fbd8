"""
Logging Configuration
=====================

loguru sinks for the stream client. ``QUIET`` suits fixture replay and tests,
``VERBOSE`` shows per-frame book activity with millisecond timestamps.
"""

import sys
from enum import Enum
from loguru import logger


class LogLevel(Enum):
    SILENT = "SILENT"           # critical only
    QUIET = "QUIET"             # warnings: checksum mismatches, resyncs, dropped frames
    NORMAL = "NORMAL"           # connection lifecycle and subscriptions
    VERBOSE = "VERBOSE"         # book snapshots, unknown frames
    TRACE = "TRACE"


LEVEL_MAPPING = {
    LogLevel.SILENT: "CRITICAL",
    LogLevel.QUIET: "WARNING",
    LogLevel.NORMAL: "INFO",
    LogLevel.VERBOSE: "DEBUG",
    LogLevel.TRACE: "TRACE"
}

CONSOLE_FORMATS = {
    LogLevel.SILENT: "<red><bold>{level}</bold></red> | {message}",
    LogLevel.QUIET: "<level>{level}</level> | {message}",
    LogLevel.NORMAL: "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> | {message}",
}
DETAILED_FORMAT = ("<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
                   "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | {message}")


class LogConfig:
    """Owns the console sink; file sinks are added on top"""

    def __init__(self):
        self.current_level = LogLevel.NORMAL
        self._initialized = False

    def setup_logging(self, level: LogLevel = LogLevel.NORMAL, debug_traces: bool = False) -> None:
        """
        Replace every sink with a single stderr sink at ``level``

        Args:
            level: Console verbosity
            debug_traces: Extended backtraces with variable values on errors
        """
        logger.remove()
        logger.add(
            sys.stderr,
            format=CONSOLE_FORMATS.get(level, DETAILED_FORMAT),
            level=LEVEL_MAPPING[level],
            backtrace=debug_traces,
            diagnose=debug_traces,
            colorize=True
        )

        first_setup = not self._initialized
        self.current_level = level
        self._initialized = True

        if first_setup and level != LogLevel.SILENT:
            logger.info(f"Logging configured: level={level.value}")

    def set_replay_mode(self) -> None:
        self.setup_logging(level=LogLevel.QUIET)

    def set_development_mode(self) -> None:
        self.setup_logging(level=LogLevel.VERBOSE, debug_traces=True)

    def set_production_mode(self) -> None:
        self.setup_logging(level=LogLevel.NORMAL)

    def set_silent_mode(self) -> None:
        self.setup_logging(level=LogLevel.SILENT)

    def add_file_logging(self,
                         filepath: str,
                         level: LogLevel = LogLevel.VERBOSE,
                         rotation: str = "10 MB",
                         retention: str = "7 days") -> None:
        """Keep a rotating log file, e.g. to audit resyncs of a long-running stream"""
        logger.add(
            filepath,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}",
            level=LEVEL_MAPPING[level],
            rotation=rotation,
            retention=retention,
            backtrace=True,
            diagnose=False
        )
        logger.info(f"File logging enabled: {filepath}")

    def suppress_module_logging(self, modules: list[str]) -> None:
        """Silence chatty modules regardless of sink level"""
        for module in modules:
            logger.disable(module)


log_config = LogConfig()

# Modules that log once per book frame
FRAME_MODULES = [
    "ftx_stream.data_ingestion.order_book",
    "ftx_stream.data_ingestion.message_decoder",
]


def setup_replay_logging():
    """Warnings only, with the per-frame modules muted"""
    log_config.set_replay_mode()
    log_config.suppress_module_logging(FRAME_MODULES)


def setup_development_logging():
    log_config.set_development_mode()


def setup_production_logging():
    log_config.set_production_mode()


def setup_silent_logging():
    log_config.set_silent_mode()


def get_logger(name: str):
    """Logger bound to a component name; configures NORMAL output on first use"""
    if not log_config._initialized:
        log_config.setup_logging()
    return logger.bind(name=name)
