"""
Server-address configuration step.

Pins the packaged client to the user's server through www/config.json.
"""

import json
import logging

from ..services.jellyfin_service import normalize_server_url
from . import html_utils
from .context import PatchContext


logger = logging.getLogger(__name__)


def update_server_config(context: PatchContext) -> bool:
    """
    Disable multi-server mode and add the server URL to config.json.

    The servers list has set semantics: a URL already present is not added
    again.

    Returns:
        True if config.json was written
    """
    server_url = context.server_url
    if not server_url:
        logger.info("No server URL configured, skipping server config update")
        return False

    path = context.workspace.server_config_path
    original = None
    config = {}
    if path.exists():
        original = html_utils.read_text(path)
        try:
            loaded = json.loads(original) if original.strip() else {}
        except json.JSONDecodeError as e:
            logger.warning(f"Replacing unreadable {path.name}: {e}")
            loaded = {}
        if isinstance(loaded, dict):
            config = loaded

    config["multiserver"] = False

    servers = config.get("servers")
    if not isinstance(servers, list):
        servers = []
        config["servers"] = servers

    if server_url not in (normalize_server_url(s) for s in servers if isinstance(s, str)):
        servers.append(server_url)

    updated = json.dumps(config, indent=2)
    if updated == original:
        return False

    path.parent.mkdir(parents=True, exist_ok=True)
    html_utils.write_text(path, updated)
    logger.info(f"Server address set to {server_url}")
    return True
