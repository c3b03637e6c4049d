"""
String-level HTML helpers shared by the index patch steps.

The web client's index.html is patched by splicing text at well-known anchors
(`<head>`, `</head>`, `</body>`) rather than by parsing it. Each helper here is
safe to run on its own output.
"""

import re


HEAD_OPEN = "<head>"
HEAD_CLOSE = "</head>"
BODY_CLOSE = "</body>"

BASE_HREF_TAG = '<base href=".">'
PUBLIC_JS_TAG = '<script src="plugin_cache/public.js"></script>'
PERMISSIVE_CSP_META = (
    '<meta http-equiv="Content-Security-Policy" '
    'content="default-src * \'unsafe-inline\' \'unsafe-eval\' data: blob:;">'
)

LINK_HREF_RE = re.compile(r'<link[^>]+href=["\']([^"\']+)["\'][^>]*>', re.IGNORECASE)
SCRIPT_SRC_RE = re.compile(r'<script[^>]+src=["\']([^"\']+)["\'][^>]*>[\s\S]*?</script>', re.IGNORECASE)
BASE_TAG_RE = re.compile(r'<base[^>]+>', re.IGNORECASE)
LOCAL_PATHS_RE = re.compile(r'(src|href)="[^"]*/web/([^"]+)"')
CSP_META_RE = re.compile(r'<meta[^>]*Content-Security-Policy[^>]*>', re.IGNORECASE)


def has_marker(content: str, marker: str) -> bool:
    """True when a step's marker is already present in content."""
    return marker in content


def inject_before_head_close(html: str, fragment: str) -> str:
    """Insert fragment immediately before the first </head>. No-op without one."""
    return html.replace(HEAD_CLOSE, fragment + "\n" + HEAD_CLOSE, 1)


def inject_before_body_close(html: str, fragment: str) -> str:
    return html.replace(BODY_CLOSE, fragment + "\n" + BODY_CLOSE, 1)


def ensure_base_href(html: str) -> str:
    """Point the document base at the package root."""
    if BASE_TAG_RE.search(html):
        return BASE_TAG_RE.sub(BASE_HREF_TAG, html)
    return html.replace(HEAD_OPEN, HEAD_OPEN + BASE_HREF_TAG, 1)


def rewrite_local_paths(html: str) -> str:
    """Turn server paths like `/web/main.js` into package-relative `main.js`."""
    return LOCAL_PATHS_RE.sub(r'\1="\2"', html)


def clean_and_apply_csp(html: str) -> str:
    """Drop every CSP meta tag and add a single permissive one."""
    html = CSP_META_RE.sub("", html)
    return inject_before_head_close(html, PERMISSIVE_CSP_META)


def ensure_public_js_is_last(html: str) -> str:
    """Move the JavaScript Injector's public.js to the end of <body>."""
    if PUBLIC_JS_TAG not in html:
        return html
    html = html.replace(PUBLIC_JS_TAG, "")
    return inject_before_body_close(html, PUBLIC_JS_TAG)


def escape_js_string(value: str) -> str:
    """Escape a value for a single- or double-quoted JavaScript literal."""
    if not value:
        return ""
    return (value
            .replace("\\", "\\\\")
            .replace("'", "\\'")
            .replace('"', '\\"')
            .replace("\n", "\\n")
            .replace("\r", "\\r")
            .replace("</", "<\\/"))


def read_text(path) -> str:
    """Read a web asset without newline translation or a leading BOM."""
    with open(path, "r", encoding="utf-8-sig", newline="") as f:
        return f.read()


def write_text(path, content: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)
