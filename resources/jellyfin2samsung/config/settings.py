"""
Configuration management system for Jellyfin2Samsung.

This module holds the immutable application settings, default values, and
configuration file loading/saving with proper error handling. Components get
the section they need at construction; nothing reads a mutable global.
"""

import os
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Tuple, Union
from dataclasses import dataclass, asdict, field, fields, replace
from enum import Enum


logger = logging.getLogger(__name__)

_TRUE_VALUES = ("true", "1", "yes", "on")


def _get_version_from_file() -> str:
    """Read version from VERSION file in the package directory."""
    try:
        version_file = Path(__file__).parent.parent / "VERSION"
        if version_file.exists():
            return version_file.read_text().strip()
    except OSError:
        pass
    return "1.4.0"


class LogLevel(Enum):
    """Available log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass(frozen=True)
class NetworkConfig:
    """Device discovery configuration."""
    developer_port: int = 26101
    device_info_port: int = 8001
    device_info_path: str = "/api/v2/"
    scan_timeout: float = 1.0
    max_parallel_scans: int = 100
    http_timeout: float = 5.0
    include_virtual_interfaces: bool = False
    excluded_interface_patterns: Tuple[str, ...] = (
        "VirtualBox", "Loopback", "Docker", "Hyper-V",
        "vEthernet", "VPN", "Bluetooth", "vSwitch",
    )


@dataclass(frozen=True)
class CertificateConfig:
    """Vendor certificate enrollment configuration."""
    author_endpoint: str = "https://svdca.samsungqbe.com/apis/v3/authors"
    distributor_endpoint_v1: str = "https://svdca.samsungqbe.com/apis/v1/distributors"
    distributor_endpoint_v3: str = "https://svdca.samsungqbe.com/apis/v3/distributors"
    profile_name: str = "Jelly2Sams"
    output_dir: Optional[str] = None
    ca_dir: Optional[str] = None
    password_length: int = 12
    strict_extensions: bool = False
    request_timeout: int = 30


@dataclass(frozen=True)
class DownloadConfig:
    """Package download configuration."""
    downloads_dir: Optional[str] = None
    download_timeout: int = 300
    max_retries: int = 3
    chunk_size: int = 8192


@dataclass(frozen=True)
class TizenConfig:
    """Vendor CLI and install behaviour configuration."""
    cli_root: Optional[str] = None
    use_elevation: bool = False
    elevation_cancelled_code: int = 1223
    install_timeout: int = 600
    legacy_permit_version: str = "4.0"


@dataclass(frozen=True)
class JellyfinConfig:
    """Server, credential and patch-toggle configuration."""
    server_url: str = ""
    access_token: Optional[str] = None
    user_id: Optional[str] = None
    server_id: Optional[str] = None
    local_address: Optional[str] = None
    custom_css: Optional[str] = None
    use_server_scripts: bool = True
    patch_playback: bool = True
    enable_dev_logs: bool = False
    local_ip: Optional[str] = None
    diagnostic_port: int = 54321
    bridge_port: int = 8123


_SECTIONS = {
    "network": NetworkConfig,
    "certificates": CertificateConfig,
    "downloads": DownloadConfig,
    "tizen": TizenConfig,
    "jellyfin": JellyfinConfig,
}


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration container."""

    network: NetworkConfig = field(default_factory=NetworkConfig)
    certificates: CertificateConfig = field(default_factory=CertificateConfig)
    downloads: DownloadConfig = field(default_factory=DownloadConfig)
    tizen: TizenConfig = field(default_factory=TizenConfig)
    jellyfin: JellyfinConfig = field(default_factory=JellyfinConfig)

    # Application metadata
    version: str = field(default_factory=_get_version_from_file)
    app_name: str = "Jellyfin2Samsung"
    config_version: str = "1.0"

    # Runtime settings
    debug_mode: bool = False
    log_level: LogLevel = LogLevel.INFO

    def __post_init__(self):
        self._validate_config()

    def _validate_config(self) -> None:
        """Validate configuration values."""
        if self.network.scan_timeout <= 0:
            raise ValueError("Scan timeout must be positive")

        if self.network.max_parallel_scans <= 0:
            raise ValueError("Max parallel scans must be positive")

        if self.downloads.download_timeout <= 0:
            raise ValueError("Download timeout must be positive")

        if self.downloads.max_retries < 0:
            raise ValueError("Max retries cannot be negative")

        if self.certificates.password_length < 12:
            raise ValueError("Bundle passwords must be at least 12 characters")

        if not 0 < self.jellyfin.bridge_port < 65536:
            raise ValueError(f"Invalid bridge port: {self.jellyfin.bridge_port}")

    def with_environment(self) -> 'AppConfig':
        """
        Return a copy of this configuration with environment overrides applied.

        Returns:
            New AppConfig instance; this one is left untouched
        """
        jellyfin_overrides: Dict[str, Any] = {}
        if env_url := os.getenv("JELLYFIN_SERVER_URL"):
            jellyfin_overrides["server_url"] = env_url
        if env_token := os.getenv("JELLYFIN_ACCESS_TOKEN"):
            jellyfin_overrides["access_token"] = env_token
        if env_user := os.getenv("JELLYFIN_USER_ID"):
            jellyfin_overrides["user_id"] = env_user

        tizen_overrides: Dict[str, Any] = {}
        if env_root := os.getenv("TIZEN_CLI_ROOT"):
            tizen_overrides["cli_root"] = env_root

        top_level: Dict[str, Any] = {}
        if env_debug := os.getenv("J2S_DEBUG"):
            top_level["debug_mode"] = env_debug.lower() in _TRUE_VALUES

        if env_log_level := os.getenv("J2S_LOG_LEVEL"):
            try:
                top_level["log_level"] = LogLevel(env_log_level.upper())
            except ValueError:
                logger.warning(f"Invalid log level in environment: {env_log_level}")

        return replace(
            self,
            jellyfin=replace(self.jellyfin, **jellyfin_overrides),
            tizen=replace(self.tizen, **tizen_overrides),
            **top_level,
        )

    def get_config_dir(self) -> Path:
        """Get the application configuration directory."""
        from ..utils.platform_utils import get_platform_config_dir
        return get_platform_config_dir('jellyfin2samsung')

    def get_config_file_path(self) -> Path:
        """Get the path to the configuration file."""
        return self.get_config_dir() / 'config.json'

    def get_downloads_directory(self) -> Path:
        """Get the downloads directory path, creating it if necessary."""
        if self.downloads.downloads_dir:
            downloads_path = Path(self.downloads.downloads_dir)
        else:
            from ..utils.platform_utils import get_platform_cache_dir
            downloads_path = get_platform_cache_dir('jellyfin2samsung') / 'Downloads'
        downloads_path.mkdir(parents=True, exist_ok=True)
        return downloads_path

    def get_profile_directory(self) -> Path:
        """Get the directory the identity bundles are written to."""
        if self.certificates.output_dir:
            return Path(self.certificates.output_dir)
        return self.get_config_dir() / 'TizenProfile'

    def save_to_file(self, file_path: Optional[Union[str, Path]] = None) -> None:
        """
        Save configuration to a JSON file.

        Args:
            file_path: Path to save the config file. If None, uses default location.

        Raises:
            IOError: If the file cannot be written
        """
        file_path = Path(file_path) if file_path else self.get_config_file_path()

        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, 'w', encoding='utf-8') as f:
                json.dump(self._to_serializable_dict(), f, indent=2, ensure_ascii=False)
            logger.info(f"Configuration saved to {file_path}")
        except OSError as e:
            raise IOError(f"Failed to save configuration to {file_path}: {e}") from e

    def _to_serializable_dict(self) -> Dict[str, Any]:
        """Convert configuration to a JSON-serializable dictionary."""
        config_dict = asdict(self)
        config_dict['log_level'] = self.log_level.value
        # Tokens stay out of the file; they come from the environment or the CLI
        config_dict['jellyfin'].pop('access_token', None)
        return config_dict

    @classmethod
    def load_from_file(cls, file_path: Union[str, Path]) -> 'AppConfig':
        """
        Load configuration from a JSON file.

        Args:
            file_path: Path to load the config file from.

        Returns:
            AppConfig instance loaded from file

        Raises:
            FileNotFoundError: If the config file doesn't exist
            ValueError: If the config file is invalid
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                config_dict = json.load(f)
            return cls._from_dict(config_dict)
        except (OSError, TypeError, json.JSONDecodeError) as e:
            raise ValueError(f"Failed to load configuration from {file_path}: {e}") from e

    @classmethod
    def _from_dict(cls, config_dict: Dict[str, Any]) -> 'AppConfig':
        """Create AppConfig instance from dictionary."""
        log_level = LogLevel.INFO
        if log_level_str := config_dict.get('log_level'):
            try:
                log_level = LogLevel(log_level_str)
            except ValueError:
                logger.warning(f"Invalid log level in config: {log_level_str}")

        sections = {}
        for name, section_cls in _SECTIONS.items():
            known = {f.name for f in fields(section_cls)}
            values = {k: v for k, v in config_dict.get(name, {}).items() if k in known}
            if 'excluded_interface_patterns' in values:
                values['excluded_interface_patterns'] = tuple(values['excluded_interface_patterns'])
            sections[name] = section_cls(**values)

        return cls(
            **sections,
            version=config_dict.get('version', _get_version_from_file()),
            app_name=config_dict.get('app_name', 'Jellyfin2Samsung'),
            config_version=config_dict.get('config_version', '1.0'),
            debug_mode=config_dict.get('debug_mode', False),
            log_level=log_level,
        )


def load_config(config_file: Optional[Union[str, Path]] = None) -> AppConfig:
    """
    Build the application configuration.

    Loads the given file (or the default location if present), falls back to
    defaults, then applies environment overrides.

    Args:
        config_file: Optional path to config file

    Returns:
        Ready-to-use AppConfig instance
    """
    if config_file:
        config = AppConfig.load_from_file(config_file)
    else:
        default_path = AppConfig().get_config_file_path()
        try:
            config = AppConfig.load_from_file(default_path)
        except FileNotFoundError:
            config = AppConfig()
            logger.info("Created new configuration with default values")
        except ValueError as e:
            logger.warning(f"Failed to load configuration: {e}. Using defaults.")
            config = AppConfig()

    return config.with_environment()
