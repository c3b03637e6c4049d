"""
Diagnostic logging injection step.

Mirrors console output and uncaught errors from the TV to a WebSocket
listener on the development machine (see TvLogService).
"""

import logging

from . import html_utils
from .context import PatchContext


DEV_LOGS_MARKER = 'id="j2s-dev-logs"'
CSP_WEBSOCKET_SOURCES = "connect-src * ws: wss:; "

logger = logging.getLogger(__name__)


def is_applied(html: str) -> bool:
    return html_utils.has_marker(html, DEV_LOGS_MARKER)


def relax_csp_for_websockets(html: str) -> str:
    """Allow ws:/wss: connections if the page carries a CSP."""
    if "Content-Security-Policy" not in html:
        return html
    return html.replace("default-src", CSP_WEBSOCKET_SOURCES + "default-src")


def build_dev_logs_script(local_ip: str, port: int) -> str:
    # ES5 only; the TV browser predates arrow functions and spread
    return "\n".join([
        f"<script {DEV_LOGS_MARKER}>",
        "(function(){",
        "  try {",
        f"    var ws = new WebSocket('ws://{local_ip}:{port}');",
        "    ws.onopen = function(){ ws.send('INJECTOR: websocket connected'); };",
        f"    ws.onerror = function(e){{ alert('WS Error. Check Firewall on port {port}'); }};",
        "    var s = function(t, d) {",
        "      try { if (ws.readyState === 1) ws.send(JSON.stringify({type:t, data:d})); } catch(e){}",
        "    };",
        "    var oldLog = console.log;",
        "    console.log = function() {",
        "      var args = Array.prototype.slice.call(arguments);",
        "      if (oldLog) oldLog.apply(console, args);",
        "      s('log', args);",
        "    };",
        "    window.onerror = function(m, sr, l, c) { s('error', [m, sr, l, c]); };",
        "  } catch (e) { alert('Injector Failed: ' + e.message); }",
        "})();",
        "</script>",
    ])


def inject_dev_logs(context: PatchContext) -> bool:
    """
    Relax the CSP and inject the console mirror before </head>.

    Returns:
        True if index.html was modified
    """
    local_ip = context.settings.local_ip
    if not local_ip:
        logger.warning("No local IP configured for the log listener, skipping dev logs")
        return False

    index_path = context.workspace.index_path
    if not index_path.exists():
        logger.warning("index.html not found, skipping dev logs")
        return False

    html = html_utils.read_text(index_path)
    if is_applied(html):
        return False

    html = relax_csp_for_websockets(html)
    script = build_dev_logs_script(local_ip, context.settings.diagnostic_port)
    html_utils.write_text(index_path, html_utils.inject_before_head_close(html, script))
    logger.info(f"Dev logs will stream to ws://{local_ip}:{context.settings.diagnostic_port}")
    return True
