"""
Utility modules for Jellyfin2Samsung.

This module provides logging, validation, platform path helpers, privilege
elevation and cooperative cancellation used across the services.
"""

from .cancellation import CancellationToken
from .logger import get_logger, setup_logging
from .validators import Validator, ValidationResult, get_validator

__all__ = [
    "CancellationToken",
    "get_logger",
    "setup_logging",
    "Validator",
    "ValidationResult",
    "get_validator",
]
