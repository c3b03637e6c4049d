"""
Shared state handed to every patch step.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set

from ..config.settings import JellyfinConfig
from ..services.file_service import PackageWorkspace
from ..services.jellyfin_service import JellyfinApiClient, normalize_server_url


logger = logging.getLogger(__name__)


@dataclass
class PatchContext:
    """
    Per-install patch state.

    Steps that produce HTML for index.html append it to the fragment buffers
    (css, head, body) instead of writing the file; the index step flushes the
    buffers in one write. A step does one or the other, never both.
    """
    workspace: PackageWorkspace
    settings: JellyfinConfig
    api: JellyfinApiClient = field(default_factory=JellyfinApiClient)

    # Server identity, seeded from settings and filled in on first lookup
    server_id: Optional[str] = None
    local_address: Optional[str] = None

    css_fragments: List[str] = field(default_factory=list)
    head_fragments: List[str] = field(default_factory=list)
    body_fragments: List[str] = field(default_factory=list)
    injected_scripts: Set[str] = field(default_factory=set)
    injected_styles: Set[str] = field(default_factory=set)

    def __post_init__(self):
        if self.server_id is None:
            self.server_id = self.settings.server_id
        if self.local_address is None:
            self.local_address = self.settings.local_address

    @property
    def server_url(self) -> str:
        return normalize_server_url(self.settings.server_url)

    @property
    def plugin_cache_dir(self) -> Path:
        return self.workspace.www_dir / "plugin_cache"

    def inject_script(self, script_tag: str, src: str) -> bool:
        """Queue a body script once per src; returns False for duplicates."""
        key = src.lower()
        if key in self.injected_scripts:
            logger.debug(f"Script already injected, skipping: {src}")
            return False
        self.injected_scripts.add(key)
        self.body_fragments.append(script_tag)
        return True

    def inject_style(self, href: str) -> bool:
        """Queue a stylesheet link once per href; returns False for duplicates."""
        key = href.lower()
        if key in self.injected_styles:
            logger.debug(f"CSS already injected, skipping: {href}")
            return False
        self.injected_styles.add(key)
        self.css_fragments.append(f'<link rel="stylesheet" href="{href}" />')
        return True

    def resolve_server_identity(self) -> bool:
        """
        Make sure the server id is known, fetching it once if needed.

        Returns:
            True if a server id is available afterwards
        """
        if self.server_id:
            return True

        logger.info("Server ID not cached, fetching from server...")
        info = self.api.get_public_system_info(self.server_url)
        if not info or not info.get("Id"):
            return False

        self.server_id = info["Id"]
        self.local_address = info.get("LocalAddress") or ""
        logger.info(f"Fetched server ID: {self.server_id}")
        return True
