"""
Custom styling injection step.

Accepts inline CSS as well as @import rules for external themes.
"""

import logging

from . import html_utils
from .context import PatchContext


CUSTOM_CSS_MARKER = 'id="jellyfin-custom-css"'

logger = logging.getLogger(__name__)


def is_applied(html: str) -> bool:
    return html_utils.has_marker(html, CUSTOM_CSS_MARKER)


def inject_custom_css(context: PatchContext) -> bool:
    custom_css = context.settings.custom_css
    if not custom_css or not custom_css.strip():
        logger.info("No custom CSS configured, skipping injection")
        return False

    index_path = context.workspace.index_path
    if not index_path.exists():
        logger.warning("index.html not found, skipping custom CSS")
        return False

    html = html_utils.read_text(index_path)
    if is_applied(html):
        return False

    block = f"<style {CUSTOM_CSS_MARKER}>\n{custom_css}\n</style>"
    html_utils.write_text(index_path, html_utils.inject_before_head_close(html, block))
    logger.info("Custom CSS injected")
    return True
