"""
Utilities Module for the FTX Stream Client
=========================================

Configuration management and logging setup.
"""

from .config import config, Config, FtxConfig, StreamConfig, Endpoint
from .logger import get_logger, log_config, LogLevel

__all__ = ['config', 'Config', 'FtxConfig', 'StreamConfig', 'Endpoint',
           'get_logger', 'log_config', 'LogLevel']
