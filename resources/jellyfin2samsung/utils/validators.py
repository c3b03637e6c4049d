"""
Input validation utilities for Jellyfin2Samsung.

This module provides validation functions for TV addresses, server URLs,
and account e-mail addresses entered on the command line.
"""

import re
import logging
from typing import Optional, Dict, Any
from ipaddress import IPv4Address, AddressValueError
from urllib.parse import urlparse


class ValidationResult:
    """Result of a validation operation."""

    def __init__(self, is_valid: bool, message: str = "", details: Optional[Dict[str, Any]] = None):
        self.is_valid = is_valid
        self.message = message
        self.details = details or {}

    def __bool__(self) -> bool:
        return self.is_valid

    def __str__(self) -> str:
        return f"ValidationResult(valid={self.is_valid}, message='{self.message}')"


class Validator:
    """Validation methods for user supplied addresses and URLs."""

    def __init__(self):
        self._logger = logging.getLogger(__name__)
        self.ip_pattern = re.compile(r'^[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}$')
        self.email_pattern = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

    def validate_ip_address(self, ip_address: str) -> ValidationResult:
        """
        Validate a dotted-quad TV address.

        Args:
            ip_address: Address to validate

        Returns:
            ValidationResult with validation status and details
        """
        if not ip_address or not isinstance(ip_address, str):
            return ValidationResult(False, "IP address cannot be empty")

        ip_address = ip_address.strip()
        if not self.ip_pattern.match(ip_address):
            return ValidationResult(False, f"Invalid IP address format: {ip_address}")

        try:
            ip_obj = IPv4Address(ip_address)
        except AddressValueError as e:
            return ValidationResult(False, f"Invalid IP address format: {e}")

        details = {"ip_object": ip_obj, "is_private": ip_obj.is_private}

        if ip_obj.is_loopback:
            return ValidationResult(False, "Loopback addresses are not valid for TV devices", details)

        if ip_obj.is_multicast:
            return ValidationResult(False, "Multicast addresses are not valid for TV devices", details)

        if ip_obj.is_unspecified:
            return ValidationResult(False, "Unspecified address is not valid for TV devices", details)

        return ValidationResult(True, "Valid IP address", details)

    def validate_server_url(self, url: str) -> ValidationResult:
        """Check that url is an absolute http(s) URL."""
        if not url or not url.strip():
            return ValidationResult(False, "Server URL cannot be empty")

        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return ValidationResult(False, f"Server URL must be an absolute http(s) URL: {url}")

        return ValidationResult(True, "Valid server URL", {"scheme": parsed.scheme, "host": parsed.hostname})

    def validate_email(self, email: str) -> ValidationResult:
        if not email or not self.email_pattern.match(email.strip()):
            return ValidationResult(False, f"Invalid e-mail address: {email}")
        return ValidationResult(True, "Valid e-mail address")


_global_validator: Optional[Validator] = None


def get_validator() -> Validator:
    """Get the shared validator instance."""
    global _global_validator
    if _global_validator is None:
        _global_validator = Validator()
    return _global_validator
