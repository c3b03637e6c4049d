import zipfile
from unittest.mock import Mock

import pytest

from jellyfin2samsung.config.settings import JellyfinConfig
from jellyfin2samsung.services.jellyfin_service import JellyfinApiClient


CONFIG_XML = """<?xml version="1.0" encoding="UTF-8"?>
<widget xmlns="http://www.w3.org/ns/widgets" xmlns:tizen="http://tizen.org/ns/widgets" id="http://jellyfin.org/tizen" version="1.0.0">
    <!-- packaged web client -->
    <tizen:application id="AprZAARz4r.Jellyfin" package="AprZAARz4r" required_version="4.0"/>
    <content src="www/index.html"/>
    <access origin="https://example.org" subdomains="false"/>
    <tizen:content-security-policy>default-src 'self';</tizen:content-security-policy>
    <tizen:privilege name="http://tizen.org/privilege/internet"/>
    <name>Jellyfin</name>
</widget>
"""

INDEX_HTML = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta http-equiv="Content-Security-Policy" content="default-src 'self'">
<link rel="stylesheet" href="/web/main.css">
<title>Jellyfin</title>
</head>
<body>
<div class="skinHeader"></div>
<script src="/web/main.js"></script>
</body>
</html>
"""

PLAYER_BUNDLE = "(self.webpackChunk=self.webpackChunk||[]).push([[42],{1:function(){}}]);\n"

PACKAGE_ENTRIES = {
    "config.xml": CONFIG_XML,
    "www/": None,
    "www/index.html": INDEX_HTML,
    "www/config.json": '{"multiserver": true, "servers": []}',
    "www/main.js": "console.log('main');\n",
    "www/youtubePlayer-plugin.3f2a.chunk.js": PLAYER_BUNDLE,
    "icon.png": b"\x89PNG\r\n\x1a\nfake",
}


def write_package(path, entries=None):
    with zipfile.ZipFile(path, "w") as archive:
        for name, content in (entries or PACKAGE_ENTRIES).items():
            if content is None:
                archive.writestr(zipfile.ZipInfo(name), b"")
            else:
                archive.writestr(name, content)
    return path


@pytest.fixture()
def package_archive(tmp_path):
    return write_package(tmp_path / "Jellyfin.wgt")


@pytest.fixture()
def scratch_dir(tmp_path):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    return scratch


@pytest.fixture()
def offline_api():
    api = Mock(spec=JellyfinApiClient)
    api.get_public_system_info.return_value = None
    api.get_installed_plugins.return_value = []
    api.fetch_web_index.return_value = None
    api.download_text.return_value = None
    api.download_bytes.return_value = None
    return api


@pytest.fixture()
def jellyfin_settings():
    return JellyfinConfig(
        server_url="http://192.168.1.5:8096/",
        access_token="token-abc",
        user_id="user-123",
    )
