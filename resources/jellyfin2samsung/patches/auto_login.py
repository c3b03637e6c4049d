"""
Auto-login credential injection step.
"""

import logging

from . import html_utils
from .context import PatchContext


AUTO_LOGIN_MARKER = 'id="j2s-auto-login"'

logger = logging.getLogger(__name__)


def is_applied(html: str) -> bool:
    return html_utils.has_marker(html, AUTO_LOGIN_MARKER)


def build_auto_login_script(server_url: str, server_id: str, local_address: str,
                            user_id: str, access_token: str) -> str:
    """
    Build the script that seeds localStorage with a jellyfin_credentials record.

    The server id must be the real one from /System/Info/Public, otherwise the
    client rejects the stored server with a ServerMismatch.
    """
    esc = html_utils.escape_js_string
    return "\n".join([
        f"<script {AUTO_LOGIN_MARKER}>",
        "(function() {",
        "  try {",
        f"    var serverUrl = '{esc(server_url)}';",
        f"    var serverId = '{esc(server_id)}';",
        f"    var localAddress = '{esc(local_address)}';",
        f"    var userId = '{esc(user_id)}';",
        f"    var accessToken = '{esc(access_token)}';",
        "    var credentials = {",
        "      Servers: [{",
        "        ManualAddress: serverUrl,",
        "        LocalAddress: localAddress || serverUrl,",
        "        Id: serverId,",
        "        UserId: userId,",
        "        AccessToken: accessToken,",
        "        DateLastAccessed: new Date().getTime()",
        "      }]",
        "    };",
        "    localStorage.setItem('jellyfin_credentials', JSON.stringify(credentials));",
        "    console.log('[Auto-Login] Credentials injected for server: ' + serverUrl);",
        "  } catch (e) {",
        "    console.error('[Auto-Login] Failed to inject credentials:', e);",
        "  }",
        "})();",
        "</script>",
    ])


def inject_auto_login(context: PatchContext) -> bool:
    """
    Inject stored credentials before </head>.

    Skips quietly when the token, user id or server URL is missing, or when
    the server id cannot be resolved.

    Returns:
        True if index.html was modified
    """
    settings = context.settings
    server_url = context.server_url
    if not settings.access_token or not settings.user_id or not server_url:
        logger.info("Missing credentials, skipping auto-login injection")
        return False

    index_path = context.workspace.index_path
    if not index_path.exists():
        logger.warning("index.html not found, skipping auto-login injection")
        return False

    html = html_utils.read_text(index_path)
    if is_applied(html):
        return False

    if not context.resolve_server_identity():
        logger.warning("Could not fetch server ID, skipping auto-login injection")
        return False

    script = build_auto_login_script(
        server_url,
        context.server_id or "",
        context.local_address or "",
        settings.user_id,
        settings.access_token,
    )
    html_utils.write_text(index_path, html_utils.inject_before_head_close(html, script))
    logger.info(f"Auto-login credentials injected for server ID {context.server_id}")
    return True
