"""
Platform-specific utilities for Jellyfin2Samsung.

This module provides cross-platform functions for determining OS-specific paths
for configuration, cache, logs, and the vendor CLI install locations on
Windows, macOS, and Linux.
"""

import os
import sys
from pathlib import Path
from typing import List


def is_windows() -> bool:
    """Check if the current operating system is Windows."""
    return os.name == 'nt'


def is_macos() -> bool:
    """Check if the current operating system is macOS."""
    return sys.platform == 'darwin'


def executable_name(name: str, windows_suffix: str = ".exe") -> str:
    """Append the Windows executable suffix when running on Windows."""
    return f"{name}{windows_suffix}" if is_windows() else name


def get_platform_config_dir(app_name: str) -> Path:
    """
    Get the platform-appropriate configuration directory for the application.

    Args:
        app_name: The name of the application.

    Returns:
        A Path object pointing to the configuration directory.
    """
    if is_windows():
        # Windows: %APPDATA%\app_name
        config_dir = Path(os.getenv('APPDATA', '')) / app_name
    elif is_macos():
        # macOS: ~/Library/Application Support/app_name
        config_dir = Path.home() / 'Library' / 'Application Support' / app_name
    else:
        # Linux: ~/.config/app_name
        config_dir = Path.home() / '.config' / app_name

    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_platform_cache_dir(app_name: str) -> Path:
    """
    Get the platform-appropriate cache directory for the application.

    Args:
        app_name: The name of the application.

    Returns:
        A Path object pointing to the cache directory.
    """
    if is_windows():
        cache_dir = Path(os.getenv('LOCALAPPDATA', '')) / app_name / 'Cache'
    elif is_macos():
        cache_dir = Path.home() / 'Library' / 'Caches' / app_name
    else:
        cache_dir = Path.home() / '.cache' / app_name

    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def get_platform_log_dir(app_name: str) -> Path:
    """
    Get the platform-appropriate log directory for the application.

    Args:
        app_name: The name of the application.

    Returns:
        A Path object pointing to the log directory.
    """
    if is_windows():
        log_dir = Path(os.getenv('LOCALAPPDATA', '')) / app_name / 'Logs'
    elif is_macos():
        log_dir = Path.home() / 'Library' / 'Logs' / app_name
    else:
        log_dir = Path.home() / '.local' / 'share' / app_name / 'logs'

    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def get_tizen_cli_candidates() -> List[Path]:
    """
    Get the locations the vendor CLI is installed to on this platform.

    Returns:
        Candidate install roots, most specific first.
    """
    if is_windows():
        return [
            Path("C:\\TizenStudioCli"),
            Path(os.getenv('LOCALAPPDATA', '')) / 'Programs' / 'TizenStudioCli',
        ]
    if is_macos():
        return [Path.home() / 'TizenStudioCli']
    return [Path.home() / 'tizen-studio-cli']


def get_tizen_data_dir(cli_root: Path) -> Path:
    """The CLI keeps profiles.xml in a sibling "<root>-data" directory."""
    return cli_root.parent / f"{cli_root.name}-data"
