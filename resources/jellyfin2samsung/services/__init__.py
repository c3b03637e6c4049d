"""
Service modules for Jellyfin2Samsung.

This module provides the service layers for device discovery, certificate
identity issuance, package download and workspaces, Jellyfin server access,
install orchestration through the Tizen CLI, and the TV log listener.
"""

from .file_service import FileService, PackageWorkspace
from .network_service import DeviceScanner
from .certificate_service import IdentityIssuer
from .jellyfin_service import JellyfinApiClient
from .tizen_service import InstallOrchestrator, TizenCli
from .tv_log_service import TvLogService, TvLogStatus

__all__ = [
    "FileService",
    "PackageWorkspace",
    "DeviceScanner",
    "IdentityIssuer",
    "JellyfinApiClient",
    "InstallOrchestrator",
    "TizenCli",
    "TvLogService",
    "TvLogStatus",
]
