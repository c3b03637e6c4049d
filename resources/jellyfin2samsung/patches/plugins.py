"""
Plugin compatibility sub-pipeline.

Server-side Jellyfin plugins normally inject their assets into the web client
the server hosts. The TV runs a packaged copy of the client, so their CSS and
JS are cached into www/plugin_cache and queued as fragments for index.html.

Known plugins form a closed set; each kind maps to one handler.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import urlparse

from ..services.jellyfin_service import absolute_url, normalize_server_url
from . import html_utils
from .context import PatchContext


class PluginKind(Enum):
    """Plugins the patcher knows how to carry into the package."""
    JELLYFIN_ENHANCED = "jellyfin_enhanced"
    MEDIA_BAR = "media_bar"
    EDITORS_CHOICE = "editors_choice"
    HOME_SCREEN_SECTIONS = "home_screen_sections"
    PLUGIN_PAGES = "plugin_pages"
    KEFIN_TWEAKS = "kefin_tweaks"


@dataclass(frozen=True)
class PluginMatrixEntry:
    kind: PluginKind
    name: str
    cache_name: str
    fallback_urls: Tuple[str, ...] = ()
    explicit_server_files: Tuple[str, ...] = ()
    css_url: Optional[str] = None
    defer: bool = False


_ENHANCED_FILES = (
    "/JellyfinEnhanced/script",
    "/JellyfinEnhanced/js/splashscreen.js",
    "/JellyfinEnhanced/js/reviews.js",
    "/JellyfinEnhanced/js/qualitytags.js",
    "/JellyfinEnhanced/js/plugin.js",
    "/JellyfinEnhanced/js/pausescreen.js",
    "/JellyfinEnhanced/js/migrate.js",
    "/JellyfinEnhanced/js/letterboxd-links.js",
    "/JellyfinEnhanced/js/languagetags.js",
    "/JellyfinEnhanced/js/genretags.js",
    "/JellyfinEnhanced/js/elsewhere.js",
    "/JellyfinEnhanced/js/arr-tag-links.js",
    "/JellyfinEnhanced/js/arr-links.js",
    "/JellyfinEnhanced/js/enhanced/config.js",
    "/JellyfinEnhanced/js/enhanced/events.js",
    "/JellyfinEnhanced/js/enhanced/features.js",
    "/JellyfinEnhanced/js/enhanced/helpers.js",
    "/JellyfinEnhanced/js/enhanced/playback.js",
    "/JellyfinEnhanced/js/enhanced/subtitles.js",
    "/JellyfinEnhanced/js/enhanced/themer.js",
    "/JellyfinEnhanced/js/enhanced/ui.js",
    "/JellyfinEnhanced/js/jellyseerr/api.js",
    "/JellyfinEnhanced/js/jellyseerr/jellyseerr.js",
    "/JellyfinEnhanced/js/jellyseerr/modal.js",
    "/JellyfinEnhanced/js/jellyseerr/ui.js",
)

PLUGIN_MATRIX: Tuple[PluginMatrixEntry, ...] = (
    PluginMatrixEntry(
        kind=PluginKind.JELLYFIN_ENHANCED,
        name="Jellyfin Enhanced",
        cache_name="JellyfinEnhanced",
        explicit_server_files=_ENHANCED_FILES,
    ),
    PluginMatrixEntry(
        kind=PluginKind.MEDIA_BAR,
        name="Media Bar",
        cache_name="mediabar",
        fallback_urls=(
            "https://cdn.jsdelivr.net/gh/IAmParadox27/jellyfin-plugin-media-bar@main/slideshowpure.js",
        ),
        css_url="https://cdn.jsdelivr.net/gh/IAmParadox27/jellyfin-plugin-media-bar@main/slideshowpure.css",
    ),
    PluginMatrixEntry(
        kind=PluginKind.EDITORS_CHOICE,
        name="EditorsChoice",
        cache_name="editorschoice",
        fallback_urls=(
            "https://raw.githubusercontent.com/lachlandcp/jellyfin-editors-choice-plugin/"
            "refs/heads/main/EditorsChoicePlugin/Api/client.js",
        ),
        defer=True,
    ),
    PluginMatrixEntry(
        kind=PluginKind.HOME_SCREEN_SECTIONS,
        name="Home Screen Sections",
        cache_name="homescreensections",
        fallback_urls=(
            "https://raw.githubusercontent.com/IAmParadox27/jellyfin-plugin-home-sections/"
            "main/src/Jellyfin.Plugin.HomeScreenSections/Inject/HomeScreenSections.js",
        ),
        css_url=(
            "https://raw.githubusercontent.com/IAmParadox27/jellyfin-plugin-home-sections/"
            "main/src/Jellyfin.Plugin.HomeScreenSections/Inject/HomeScreenSections.css"
        ),
    ),
    PluginMatrixEntry(
        kind=PluginKind.PLUGIN_PAGES,
        name="Plugin Pages",
        cache_name="pluginpages",
    ),
    PluginMatrixEntry(
        kind=PluginKind.KEFIN_TWEAKS,
        name="KefinTweaks",
        cache_name="kefintweaks",
        fallback_urls=(
            "https://cdn.jsdelivr.net/gh/ranaldsgift/KefinTweaks@latest/kefinTweaks-plugin.js",
        ),
    ),
)

# URL fragments that mark a server-hosted asset as belonging to a plugin
PLUGIN_ASSET_KEYWORDS = (
    "/plugins/",
    "javascriptinjector",
    "filetransformation",
    "customtabs",
    "editorschoice",
    "kefin",
    "mediabar",
    "homescreensections",
    "jellyfinenhanced",
)

ENHANCED_LOADER_MARKER = "J2S SCRIPT PATCH: FORCE LOCAL ENHANCED MODULE LOADING"

ENHANCED_LOADER_PATCH = """
// ---- J2S SCRIPT PATCH: FORCE LOCAL ENHANCED MODULE LOADING ----
(function () {
    function rewriteEnhancedUrl(url) {
        try {
            if (typeof url !== 'string') return url;
            var base = url.split('?')[0];
            if (base.endsWith('.js') && base.indexOf('/JellyfinEnhanced/') !== -1) {
                var idx = base.indexOf('/JellyfinEnhanced/');
                return 'plugin_cache/JellyfinEnhanced/' + base.substring(idx + '/JellyfinEnhanced/'.length);
            }
            return url;
        } catch (e) {
            console.error('J2S rewriteEnhancedUrl failed', e);
            return url;
        }
    }

    var _createElement = document.createElement;
    document.createElement = function (tag) {
        var el = _createElement.call(document, tag);
        if (tag && tag.toLowerCase() === 'script') {
            var _setAttribute = el.setAttribute;
            el.setAttribute = function (name, value) {
                if (name === 'src') value = rewriteEnhancedUrl(value);
                return _setAttribute.call(el, name, value);
            };
            Object.defineProperty(el, 'src', {
                configurable: true,
                get: function () { return el.getAttribute('src'); },
                set: function (value) { _setAttribute.call(el, 'src', rewriteEnhancedUrl(value)); }
            });
        }
        return el;
    };

    if (typeof window.fetch === 'function') {
        var _fetch = window.fetch;
        window.fetch = function (resource, init) {
            if (typeof resource === 'string') resource = rewriteEnhancedUrl(resource);
            return _fetch.call(this, resource, init);
        };
    }

    console.log('J2S: Enhanced loader patched to use plugin_cache for Enhanced JS modules');
})();
"""


def find_plugin_entry(plugin_name: Optional[str]) -> Optional[PluginMatrixEntry]:
    """Match an installed plugin's display name against the matrix."""
    if not plugin_name:
        return None
    lowered = plugin_name.lower()
    for entry in PLUGIN_MATRIX:
        if entry.name.lower() in lowered:
            return entry
    return None


def is_plugin_asset(url: str) -> bool:
    lowered = url.lower()
    return any(keyword in lowered for keyword in PLUGIN_ASSET_KEYWORDS)


def _url_filename(url: str) -> str:
    return PurePosixPath(urlparse(url).path).name


class PluginPatcher:
    """Caches plugin assets into the package and queues their tags."""

    def __init__(self):
        self._logger = logging.getLogger(__name__)
        self._handlers: Dict[PluginKind, Callable[[PatchContext, PluginMatrixEntry], None]] = {
            PluginKind.JELLYFIN_ENHANCED: self._apply_jellyfin_enhanced,
            PluginKind.MEDIA_BAR: self._apply_fallback_scripts,
            PluginKind.EDITORS_CHOICE: self._apply_fallback_scripts,
            PluginKind.HOME_SCREEN_SECTIONS: self._apply_fallback_scripts,
            PluginKind.KEFIN_TWEAKS: self._apply_fallback_scripts,
        }

    def patch_plugins(self, context: PatchContext) -> None:
        """
        Run the plugin sub-pipeline.

        Only writes under www/plugin_cache; everything destined for index.html
        goes to the context's fragment buffers.
        """
        server_url = normalize_server_url(context.server_url)
        if not server_url:
            self._logger.info("No server URL configured, skipping plugin patches")
            return

        context.plugin_cache_dir.mkdir(parents=True, exist_ok=True)

        server_html = context.api.fetch_web_index(server_url)
        if server_html:
            self._cache_server_assets(context, server_html)

        for plugin in context.api.get_installed_plugins(server_url):
            entry = find_plugin_entry(plugin.get("Name"))
            if entry is None:
                continue

            handler = self._handlers.get(entry.kind)
            if handler is None:
                self._logger.info(f"No patch implementation for plugin '{entry.name}', skipping.")
                continue

            self._logger.info(f"Applying plugin patch: {entry.name}")
            try:
                handler(context, entry)
            except OSError as e:
                self._logger.warning(f"Plugin patch '{entry.name}' failed: {e}")

    def _cache_server_assets(self, context: PatchContext, server_html: str) -> None:
        for match in html_utils.LINK_HREF_RE.finditer(server_html):
            href = match.group(1)
            if href and is_plugin_asset(href):
                self._cache_css(context, href)

        for match in html_utils.SCRIPT_SRC_RE.finditer(server_html):
            src = match.group(1)
            if src and is_plugin_asset(src):
                self._cache_js(context, src)

    def _cache_css(self, context: PatchContext, href: str) -> None:
        url = absolute_url(context.server_url, href)
        filename = _url_filename(url)
        if not filename.lower().endswith(".css"):
            return

        content = context.api.download_bytes(url)
        if content is None:
            return
        (context.plugin_cache_dir / filename).write_bytes(content)
        context.inject_style(f"plugin_cache/{filename}")

    def _cache_js(self, context: PatchContext, src: str) -> None:
        url = absolute_url(context.server_url, src)
        filename = _url_filename(url) or "script"
        if not filename.lower().endswith(".js"):
            filename += ".js"

        content = context.api.download_text(url)
        if content is None:
            return
        (context.plugin_cache_dir / filename).write_text(content, encoding="utf-8")
        out_src = f"plugin_cache/{filename}"
        context.inject_script(f'<script src="{out_src}"></script>', out_src)

    def _download_to_cache(self, context: PatchContext, url: str, relative: str) -> Optional[Path]:
        content = context.api.download_text(url)
        if content is None:
            return None
        local = context.plugin_cache_dir / relative
        local.parent.mkdir(parents=True, exist_ok=True)
        local.write_text(content, encoding="utf-8")
        return local

    def _apply_jellyfin_enhanced(self, context: PatchContext, entry: PluginMatrixEntry) -> None:
        self._logger.info("Downloading explicit Enhanced JS modules...")
        for relative in entry.explicit_server_files:
            local_relative = relative.lstrip("/")
            if not local_relative.lower().endswith(".js"):
                local_relative += ".js"
            local = self._download_to_cache(context, context.server_url + relative, local_relative)
            if local:
                self._logger.debug(f"Saved plugin_cache/{local_relative}")

        main_script = context.plugin_cache_dir / entry.cache_name / "script.js"
        if not main_script.exists():
            return

        content = main_script.read_text(encoding="utf-8")
        if ENHANCED_LOADER_MARKER not in content:
            main_script.write_text(ENHANCED_LOADER_PATCH + "\n\n" + content, encoding="utf-8")

        out_src = f"plugin_cache/{entry.cache_name}/script.js"
        context.inject_script(f'<script src="{out_src}"></script>', out_src)

    def _apply_fallback_scripts(self, context: PatchContext, entry: PluginMatrixEntry) -> None:
        if entry.css_url:
            content = context.api.download_bytes(entry.css_url)
            if content is not None:
                css_name = _url_filename(entry.css_url)
                local = context.plugin_cache_dir / entry.cache_name / css_name
                local.parent.mkdir(parents=True, exist_ok=True)
                local.write_bytes(content)
                context.inject_style(f"plugin_cache/{entry.cache_name}/{css_name}")

        # First fallback URL that downloads wins
        for url in entry.fallback_urls:
            filename = _url_filename(url)
            if not self._download_to_cache(context, url, f"{entry.cache_name}/{filename}"):
                continue
            out_src = f"plugin_cache/{entry.cache_name}/{filename}"
            defer = " defer" if entry.defer else ""
            context.inject_script(f'<script{defer} src="{out_src}"></script>', out_src)
            break

