"""
Configuration module for Jellyfin2Samsung.

This module handles application settings and configuration file management
with proper validation and error handling.
"""

from .settings import AppConfig, load_config

__all__ = ["AppConfig", "load_config"]
