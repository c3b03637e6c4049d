"""
Index rewrite step.

Makes the packaged index.html load from the package root, carries server
plugins into it, and replaces its content-security-policy.
"""

import logging
from typing import Optional

from . import html_utils
from .context import PatchContext
from .plugins import PluginPatcher


INDEX_MARKER = "<!-- j2s:index -->"

logger = logging.getLogger(__name__)


def is_applied(html: str) -> bool:
    return html_utils.has_marker(html, INDEX_MARKER)


def flush_fragments(html: str, context: PatchContext) -> str:
    """Write the queued css/head/body fragments into html and empty the buffers."""
    head = context.css_fragments + context.head_fragments
    if head:
        html = html_utils.inject_before_head_close(html, "\n".join(head))
    if context.body_fragments:
        html = html_utils.inject_before_body_close(html, "\n".join(context.body_fragments))

    context.css_fragments.clear()
    context.head_fragments.clear()
    context.body_fragments.clear()
    return html


def patch_index(context: PatchContext, plugin_patcher: Optional[PluginPatcher] = None) -> bool:
    """
    Rewrite www/index.html for the packaged client.

    Args:
        context: Patch context
        plugin_patcher: Plugin sub-pipeline to run (default: a new one)

    Returns:
        True if index.html was modified
    """
    index_path = context.workspace.index_path
    if not index_path.exists():
        logger.warning(f"index.html not found in {context.workspace.www_dir}, skipping index rewrite")
        return False

    html = html_utils.read_text(index_path)
    if is_applied(html):
        logger.info("index.html already rewritten, skipping")
        return False
    if html_utils.HEAD_CLOSE not in html:
        logger.warning("index.html has no </head>, skipping index rewrite")
        return False

    html = html_utils.ensure_base_href(html)
    html = html_utils.rewrite_local_paths(html)

    if context.settings.use_server_scripts:
        (plugin_patcher or PluginPatcher()).patch_plugins(context)
    html = flush_fragments(html, context)

    html = html_utils.clean_and_apply_csp(html)
    html = html_utils.ensure_public_js_is_last(html)
    html = html_utils.inject_before_head_close(html, INDEX_MARKER)

    html_utils.write_text(index_path, html)
    logger.info("Rewrote index.html")
    return True
