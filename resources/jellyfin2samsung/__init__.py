"""
Jellyfin2Samsung

Provisioning tool that finds Samsung Tizen TVs on the local network, issues
the developer certificates they require, retrofits the Jellyfin web client
package for the selected server, and installs it through the Tizen CLI.
"""

from .config.settings import _get_version_from_file

__version__ = _get_version_from_file()
__author__ = "Jellyfin2Samsung Team"
__description__ = "Samsung Tizen TV installer for the Jellyfin web client"

# Package-level imports for convenience
from .config.settings import AppConfig, load_config
from .models.device import NetworkDevice
from .models.install_result import InstallResult
from .utils.logger import get_logger
from .services.network_service import DeviceScanner
from .services.certificate_service import IdentityIssuer
from .services.file_service import PackageWorkspace
from .services.tizen_service import InstallOrchestrator
from .patches.pipeline import PatchPipeline

__all__ = [
    "AppConfig",
    "load_config",
    "NetworkDevice",
    "InstallResult",
    "get_logger",
    "DeviceScanner",
    "IdentityIssuer",
    "PackageWorkspace",
    "InstallOrchestrator",
    "PatchPipeline",
]
