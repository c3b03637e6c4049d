import json
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import replace

import pytest

from jellyfin2samsung.patches import html_utils
from jellyfin2samsung.patches.auto_login import AUTO_LOGIN_MARKER, build_auto_login_script, inject_auto_login
from jellyfin2samsung.patches.context import PatchContext
from jellyfin2samsung.patches.custom_css import inject_custom_css
from jellyfin2samsung.patches.diagnostics import inject_dev_logs
from jellyfin2samsung.patches.index import INDEX_MARKER, patch_index
from jellyfin2samsung.patches.manifest import SERVICE_SOURCE, TIZEN_NS, WIDGETS_NS, patch_manifest
from jellyfin2samsung.patches.pipeline import (
    PatchPipeline, PatchStep, StepStatus, default_steps, patch_package
)
from jellyfin2samsung.patches.playback import SHIM_MARKER, apply_playback_shim
from jellyfin2samsung.patches.plugins import PluginKind, PluginPatcher, find_plugin_entry
from jellyfin2samsung.patches.server_config import update_server_config
from jellyfin2samsung.services.file_service import PackageWorkspace


@pytest.fixture()
def workspace(package_archive, scratch_dir):
    with PackageWorkspace.extract(package_archive, temp_parent=scratch_dir) as ws:
        yield ws


@pytest.fixture()
def context(workspace, jellyfin_settings, offline_api):
    return PatchContext(workspace=workspace, settings=jellyfin_settings, api=offline_api)


def _snapshot(root):
    return {p.relative_to(root).as_posix(): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()}


# html_utils

def test_inject_before_head_close_uses_first_occurrence():
    html = "<head></head><template></head></template>"
    assert html_utils.inject_before_head_close(html, "<x>") == "<head><x>\n</head><template></head></template>"


def test_inject_without_anchor_is_noop():
    assert html_utils.inject_before_body_close("<p>no body</p>", "<x>") == "<p>no body</p>"


def test_ensure_base_href_replaces_existing_base():
    assert html_utils.ensure_base_href('<head><base href="/web/"></head>') == '<head><base href="."></head>'
    assert html_utils.ensure_base_href("<head></head>") == '<head><base href="."></head>'


def test_rewrite_local_paths():
    html = '<script src="/web/main.js"></script><link href="https://srv/web/a/b.css">'
    assert html_utils.rewrite_local_paths(html) == '<script src="main.js"></script><link href="a/b.css">'


def test_clean_and_apply_csp_leaves_single_policy():
    html = '<head><meta http-equiv="Content-Security-Policy" content="default-src \'self\'"></head>'
    result = html_utils.clean_and_apply_csp(html)
    assert result.count("Content-Security-Policy") == 1
    assert html_utils.PERMISSIVE_CSP_META in result


def test_escape_js_string():
    assert html_utils.escape_js_string("it's \"x\"\\\n") == "it\\'s \\\"x\\\"\\\\\\n"
    assert html_utils.escape_js_string(None) == ""


def test_escaped_values_cannot_close_inline_script():
    assert html_utils.escape_js_string("a</script>b") == "a<\\/script>b"

    script = build_auto_login_script("http://srv", "id", "", "user", "tok</script><script>alert(1)")
    assert script.count("</script>") == 1
    assert script.endswith("</script>")


# individual steps

def test_playback_shim_is_idempotent(context, workspace):
    bundle = workspace.www_dir / "youtubePlayer-plugin.3f2a.chunk.js"
    original = bundle.read_bytes()

    assert apply_playback_shim(context) is True
    first = bundle.read_bytes()
    assert SHIM_MARKER.encode() in first
    assert first.endswith(original)
    assert b"http://localhost:8123" in first

    assert apply_playback_shim(context) is False
    assert bundle.read_bytes() == first


def test_playback_shim_without_bundle_is_noop(context, workspace):
    (workspace.www_dir / "youtubePlayer-plugin.3f2a.chunk.js").unlink()
    assert apply_playback_shim(context) is False


def test_server_config_sets_single_server_mode_without_duplicates(context, workspace):
    assert update_server_config(context) is True
    assert update_server_config(context) is False

    config = json.loads(workspace.server_config_path.read_text(encoding="utf-8"))
    assert config["multiserver"] is False
    assert config["servers"] == ["http://192.168.1.5:8096"]


def test_server_config_treats_trailing_slash_entry_as_same_server(context, workspace):
    workspace.server_config_path.write_text(
        json.dumps({"multiserver": False, "servers": ["http://192.168.1.5:8096/"]}), encoding="utf-8"
    )
    update_server_config(context)

    config = json.loads(workspace.server_config_path.read_text(encoding="utf-8"))
    assert config["servers"] == ["http://192.168.1.5:8096/"]


def test_server_config_created_when_missing_or_invalid(context, workspace):
    workspace.server_config_path.write_text("{not json", encoding="utf-8")
    assert update_server_config(context) is True
    assert json.loads(workspace.server_config_path.read_text(encoding="utf-8"))["servers"] == [
        "http://192.168.1.5:8096"
    ]

    workspace.server_config_path.unlink()
    assert update_server_config(context) is True
    assert workspace.server_config_path.is_file()


def test_auto_login_skips_without_credentials(workspace, jellyfin_settings, offline_api):
    original = workspace.index_path.read_bytes()
    for settings in (replace(jellyfin_settings, access_token=None),
                     replace(jellyfin_settings, user_id=""),
                     replace(jellyfin_settings, server_url="")):
        context = PatchContext(workspace=workspace, settings=settings, api=offline_api)
        assert inject_auto_login(context) is False

    offline_api.get_public_system_info.assert_not_called()
    assert workspace.index_path.read_bytes() == original


def test_auto_login_skips_when_server_id_unavailable(context, workspace, offline_api):
    original = workspace.index_path.read_bytes()
    assert inject_auto_login(context) is False
    offline_api.get_public_system_info.assert_called_once_with("http://192.168.1.5:8096")
    assert workspace.index_path.read_bytes() == original


def test_auto_login_injects_credentials_once(context, workspace, offline_api):
    offline_api.get_public_system_info.return_value = {"Id": "srv-42", "LocalAddress": "http://10.0.0.2:8096"}

    assert inject_auto_login(context) is True
    assert inject_auto_login(context) is False

    html = workspace.index_path.read_text(encoding="utf-8")
    assert html.count(AUTO_LOGIN_MARKER) == 1
    assert "var serverId = 'srv-42';" in html
    assert "var accessToken = 'token-abc';" in html
    assert html.index(AUTO_LOGIN_MARKER) < html.index("</head>")
    offline_api.get_public_system_info.assert_called_once()


def test_custom_css_and_dev_logs(workspace, jellyfin_settings, offline_api):
    settings = replace(jellyfin_settings, custom_css=".skinHeader { display: none; }", local_ip="192.168.1.77")
    context = PatchContext(workspace=workspace, settings=settings, api=offline_api)

    assert inject_custom_css(context) is True
    assert inject_custom_css(context) is False
    assert inject_dev_logs(context) is True
    assert inject_dev_logs(context) is False

    html = workspace.index_path.read_text(encoding="utf-8")
    assert '<style id="jellyfin-custom-css">\n.skinHeader { display: none; }\n</style>' in html
    assert "ws://192.168.1.77:54321" in html
    assert "connect-src * ws: wss:;" in html


def test_dev_logs_skip_without_local_ip(context):
    assert inject_dev_logs(context) is False


def test_index_rewrite(context, workspace):
    assert patch_index(context) is True
    html = workspace.index_path.read_text(encoding="utf-8")

    assert '<base href=".">' in html
    assert 'src="main.js"' in html and 'href="main.css"' in html
    assert "/web/" not in html
    assert html.count("Content-Security-Policy") == 1
    assert INDEX_MARKER in html

    assert patch_index(context) is False
    assert workspace.index_path.read_text(encoding="utf-8") == html


def test_index_missing_is_skipped(context, workspace):
    workspace.index_path.unlink()
    assert patch_index(context) is False


def test_index_without_head_close_is_skipped_and_stays_stable(context, workspace):
    original = "<html><body><p>Jellyfin</p></body></html>"
    workspace.index_path.write_text(original, encoding="utf-8")

    assert patch_index(context) is False
    assert patch_index(context) is False
    assert workspace.index_path.read_text(encoding="utf-8") == original
    assert context.body_fragments == []


def test_manifest_declares_bridge_service(context, workspace):
    assert patch_manifest(context) is True
    first = workspace.manifest_path.read_bytes()

    root = ET.fromstring(first)
    w, t = f"{{{WIDGETS_NS}}}", f"{{{TIZEN_NS}}}"
    accesses = root.findall(f"{w}access")
    assert [a.attrib for a in accesses] == [{"origin": "*", "subdomains": "true"}]
    service = root.find(f"{t}service")
    assert service.get("id") == "AprZAARz4r.ytresolver"
    assert service.find(f"{t}content").get("src") == SERVICE_SOURCE
    csp = root.findall(f"{t}content-security-policy")
    assert len(csp) == 1 and "http://localhost:8123" in csp[0].text
    privileges = [p.get("name") for p in root.findall(f"{t}privilege")]
    assert privileges.count("http://tizen.org/privilege/internet") == 1
    assert "http://tizen.org/privilege/network.public" in privileges
    assert b"packaged web client" in first

    service_js = workspace.root / SERVICE_SOURCE
    assert "var PORT = 8123;" in service_js.read_text(encoding="utf-8")

    assert patch_manifest(context) is False
    assert workspace.manifest_path.read_bytes() == first


# plugins

def test_find_plugin_entry_matches_display_names():
    assert find_plugin_entry("Jellyfin Enhanced").kind is PluginKind.JELLYFIN_ENHANCED
    assert find_plugin_entry("Home Screen Sections (Modular Home)").kind is PluginKind.HOME_SCREEN_SECTIONS
    assert find_plugin_entry("Playback Reporting") is None
    assert find_plugin_entry(None) is None


def test_plugins_cache_assets_and_queue_fragments(context, workspace, offline_api):
    offline_api.fetch_web_index.return_value = (
        '<link rel="stylesheet" href="/web/main.css">'
        '<link rel="stylesheet" href="/Plugins/Theme/theme.css">'
        '<script src="/JavaScriptInjector/public.js"></script>'
    )
    offline_api.get_installed_plugins.return_value = [{"Name": "Media Bar"}, {"Name": "Plugin Pages"}]
    offline_api.download_bytes.side_effect = lambda url, timeout=None: b"/* css */"
    offline_api.download_text.side_effect = lambda url, timeout=None: "/* js */"

    PluginPatcher().patch_plugins(context)

    cache = workspace.www_dir / "plugin_cache"
    assert (cache / "theme.css").is_file()
    assert (cache / "public.js").is_file()
    assert (cache / "mediabar" / "slideshowpure.js").is_file()
    assert (cache / "mediabar" / "slideshowpure.css").is_file()

    assert '<link rel="stylesheet" href="plugin_cache/theme.css" />' in context.css_fragments
    assert '<script src="plugin_cache/public.js"></script>' in context.body_fragments
    assert '<script src="plugin_cache/mediabar/slideshowpure.js"></script>' in context.body_fragments
    # index.html itself is only written by the index step
    assert "plugin_cache" not in workspace.index_path.read_text(encoding="utf-8")


def test_duplicate_scripts_are_queued_once(context):
    assert context.inject_script('<script src="a.js"></script>', "a.js") is True
    assert context.inject_script('<script src="A.js"></script>', "A.js") is False
    assert context.body_fragments == ['<script src="a.js"></script>']


def test_index_flushes_plugin_fragments_and_keeps_public_js_last(context, workspace, offline_api):
    offline_api.fetch_web_index.return_value = '<script src="/JavaScriptInjector/public.js"></script>'
    offline_api.get_installed_plugins.return_value = [{"Name": "KefinTweaks"}]
    offline_api.download_text.side_effect = lambda url, timeout=None: "/* js */"

    patch_index(context)

    html = workspace.index_path.read_text(encoding="utf-8")
    assert context.body_fragments == []
    assert html.index("kefintweaks/kefinTweaks-plugin.js") < html.index(html_utils.PUBLIC_JS_TAG)
    assert html.index(html_utils.PUBLIC_JS_TAG) < html.index("</body>")


# pipeline

def test_default_steps_follow_settings(jellyfin_settings):
    steps = default_steps(jellyfin_settings)
    assert PatchStep.DEV_LOGS not in steps and PatchStep.CUSTOM_CSS not in steps
    assert {PatchStep.INDEX, PatchStep.SERVER_CONFIG, PatchStep.PLAYBACK_SHIM, PatchStep.MANIFEST} <= steps

    steps = default_steps(replace(jellyfin_settings, patch_playback=False, enable_dev_logs=True))
    assert PatchStep.PLAYBACK_SHIM not in steps and PatchStep.MANIFEST not in steps
    assert PatchStep.DEV_LOGS in steps


def test_pipeline_runs_steps_in_order_and_isolates_failures(context, workspace):
    calls = []
    pipeline = PatchPipeline()
    for step in PatchStep:
        pipeline._handlers[step] = lambda ctx, step=step: calls.append(step) or True

    def broken(ctx):
        calls.append(PatchStep.SERVER_CONFIG)
        raise OSError("disk full")

    pipeline._handlers[PatchStep.SERVER_CONFIG] = broken

    report = pipeline.apply(workspace, context, enabled_steps=set(PatchStep) - {PatchStep.DEV_LOGS})

    assert calls == [s for s in PatchStep if s is not PatchStep.DEV_LOGS]
    assert report.statuses[PatchStep.SERVER_CONFIG] is StepStatus.FAILED
    assert report.statuses[PatchStep.DEV_LOGS] is StepStatus.DISABLED
    assert report.statuses[PatchStep.MANIFEST] is StepStatus.APPLIED
    assert report.failed == [PatchStep.SERVER_CONFIG]
    assert "disk full" in report.errors[PatchStep.SERVER_CONFIG]


def test_pipeline_rejects_foreign_context(context, package_archive, scratch_dir):
    with PackageWorkspace.extract(package_archive, temp_parent=scratch_dir) as other:
        with pytest.raises(ValueError):
            PatchPipeline().apply(other, context)


def test_pipeline_second_run_is_byte_identical(context, workspace, offline_api):
    offline_api.get_public_system_info.return_value = {"Id": "srv-42", "LocalAddress": ""}

    first_report = PatchPipeline().apply(workspace, context)
    assert not first_report.failed
    first = _snapshot(workspace.root)

    second_report = PatchPipeline().apply(workspace, context)
    assert all(status is not StepStatus.APPLIED for status in second_report.statuses.values())
    assert _snapshot(workspace.root) == first


def test_patch_package_rewrites_archive_in_place(package_archive, scratch_dir, jellyfin_settings, offline_api):
    report = patch_package(package_archive, jellyfin_settings, api=offline_api,
                           enabled_steps={PatchStep.SERVER_CONFIG, PatchStep.MANIFEST},
                           temp_parent=scratch_dir)

    assert report.applied == [PatchStep.SERVER_CONFIG, PatchStep.MANIFEST]
    assert list(scratch_dir.iterdir()) == []
    with zipfile.ZipFile(package_archive) as archive:
        assert SERVICE_SOURCE in archive.namelist()
        assert json.loads(archive.read("www/config.json"))["multiserver"] is False
