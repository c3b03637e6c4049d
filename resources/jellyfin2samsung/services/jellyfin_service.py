"""
Jellyfin server API client for Jellyfin2Samsung.

Read-only calls the patch pipeline makes against the user's media server.
Every call degrades to None or an empty list on failure: a server that is
offline must not stop the package from being built.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlparse

import requests


USER_AGENT = "Jellyfin2Samsung"


def normalize_server_url(url: Optional[str]) -> str:
    """Strip whitespace and trailing slashes from a server URL."""
    if not url or not url.strip():
        return ""
    return url.strip().rstrip("/")


def combine_url(base_url: Optional[str], path: Optional[str]) -> str:
    base = normalize_server_url(base_url)
    if not path or not path.strip():
        return base
    path = path.lstrip("/")
    return f"{base}/{path}" if base else path


def absolute_url(server_url: str, relative_or_absolute: str) -> str:
    """Resolve an asset reference found in server HTML against the server URL."""
    if urlparse(relative_or_absolute).scheme in ("http", "https"):
        return relative_or_absolute
    return urljoin(normalize_server_url(server_url) + "/", relative_or_absolute.lstrip("/"))


class JellyfinApiClient:
    """Thin requests wrapper around the Jellyfin endpoints the patches need."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 15.0):
        """
        Initialize the client.

        Args:
            session: Optional requests session
            timeout: Default request timeout in seconds
        """
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.timeout = timeout
        self._logger = logging.getLogger(__name__)

    def get_public_system_info(self, server_url: str) -> Optional[Dict[str, Any]]:
        """
        Fetch /System/Info/Public.

        Returns:
            Decoded JSON object (Id, LocalAddress, ServerName, ...) or None
        """
        url = combine_url(server_url, "/System/Info/Public")
        self._logger.debug(f"Fetching public system info from {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            info = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            self._logger.warning(f"Failed to fetch /System/Info/Public: {e}")
            return None
        return info if isinstance(info, dict) else None

    def get_installed_plugins(self, server_url: str) -> List[Dict[str, Any]]:
        """Fetch /Plugins; an unreachable server yields an empty list."""
        url = combine_url(server_url, "/Plugins")
        self._logger.debug(f"Fetching installed plugins from {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            plugins = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            self._logger.warning(f"Failed to fetch /Plugins: {e}")
            return []
        if not isinstance(plugins, list):
            return []
        return [p for p in plugins if isinstance(p, dict)]

    def fetch_web_index(self, server_url: str, timeout: float = 8.0) -> Optional[str]:
        """Fetch the server's own /web/index.html."""
        return self.download_text(combine_url(server_url, "/web/index.html"), timeout=timeout)

    def download_text(self, url: str, timeout: Optional[float] = None) -> Optional[str]:
        try:
            response = self.session.get(url, timeout=timeout or self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            self._logger.warning(f"Failed to download {url}: {e}")
            return None
        return response.text

    def download_bytes(self, url: str, timeout: Optional[float] = None) -> Optional[bytes]:
        try:
            response = self.session.get(url, timeout=timeout or self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            self._logger.warning(f"Failed to download {url}: {e}")
            return None
        return response.content
