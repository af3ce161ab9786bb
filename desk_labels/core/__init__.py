"""
Core module for common utilities, configuration and constants
"""
from .constants import Constants
from .logger import configure_logging, setup_logger, logger
from .config_loader import (
    ConfigError,
    DecoderSettings,
    RenderingSettings,
    StabilizerSettings,
    get_config,
    load_config,
)

__all__ = [
    'Constants',
    'configure_logging',
    'setup_logger',
    'logger',
    'ConfigError',
    'DecoderSettings',
    'RenderingSettings',
    'StabilizerSettings',
    'get_config',
    'load_config',
]
