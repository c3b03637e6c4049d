"""
Data models for Jellyfin2Samsung.

This module contains the device, certificate identity, and install result
models shared by the services.
"""

from .device import NetworkDevice
from .certificate import CertificateProfile, CertificateRequest
from .install_result import InstallOutcome, InstallProgress, InstallResult, InstallStage

__all__ = [
    "NetworkDevice",
    "CertificateProfile",
    "CertificateRequest",
    "InstallOutcome",
    "InstallProgress",
    "InstallResult",
    "InstallStage",
]
