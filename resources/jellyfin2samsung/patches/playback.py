"""
Playback compatibility shim step.

The web client's trailer player expects the YouTube iframe API, which the TV
cannot load directly. The shim replaces window.YT with a player that drives a
hidden iframe served by the package's local bridge service.
"""

import logging
from pathlib import Path
from typing import List

from . import html_utils
from .context import PatchContext


SHIM_MARKER = "__YT_FIX_V12__"
PLAYER_BUNDLE_GLOB = "youtubePlayer-plugin*.js"
SHIM_ASSET = Path(__file__).parent / "assets" / "youtube_shim.js"

logger = logging.getLogger(__name__)


def is_applied(content: str) -> bool:
    return html_utils.has_marker(content, SHIM_MARKER)


def build_shim(bridge_port: int) -> str:
    shim = SHIM_ASSET.read_text(encoding="utf-8")
    return shim.replace("{{SERVICE_BASE}}", f"http://localhost:{bridge_port}")


def find_player_bundles(www_dir: Path) -> List[Path]:
    """All player bundles under www, including code-split chunks."""
    return sorted(p for p in www_dir.rglob(PLAYER_BUNDLE_GLOB) if p.is_file())


def apply_playback_shim(context: PatchContext) -> bool:
    """
    Prepend the shim to every player bundle that does not carry it yet.

    Returns:
        True if any bundle was modified
    """
    www_dir = context.workspace.www_dir
    if not www_dir.is_dir():
        logger.warning("www directory not found, skipping playback shim")
        return False

    bundles = find_player_bundles(www_dir)
    if not bundles:
        logger.info("No player bundle found, skipping playback shim")
        return False

    shim = build_shim(context.settings.bridge_port)
    changed = False
    for bundle in bundles:
        content = html_utils.read_text(bundle)
        if is_applied(content):
            continue
        html_utils.write_text(bundle, shim + "\n" + content)
        logger.info(f"Patched player bundle {bundle.relative_to(www_dir)}")
        changed = True
    return changed
