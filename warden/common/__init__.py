"""Common utilities for warden."""

from .clock import utcnow, to_naive_utc
from .logger import setup_logger, get_logger

__all__ = ["get_logger", "setup_logger", "to_naive_utc", "utcnow"]
