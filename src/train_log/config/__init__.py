"""Configuration module for the train log bot."""

from train_log.config.logging import configure_logging, request_logger
from train_log.config.settings import FlatSettings, get_settings

__all__ = ["FlatSettings", "get_settings", "configure_logging", "request_logger"]
