"""Core utilities for the rate limiter application."""

from quotagate.app.core.logging import get_log_context, get_logger, setup_logging
from quotagate.app.core.security import SecretDecryptor, generate_encryption_key

__all__ = [
    "get_log_context",
    "get_logger",
    "setup_logging",
    "SecretDecryptor",
    "generate_encryption_key",
]
