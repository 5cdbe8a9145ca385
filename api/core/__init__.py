"""Core utilities for the certificate rendering service.

This module exports commonly used utilities for easy importing:
    from core import get_logger
"""

from core.logger import get_logger, log_context

__all__ = [
    "get_logger",
    "log_context",
]
