import zipfile
from unittest.mock import MagicMock, Mock

import pytest
import requests

from jellyfin2samsung.exceptions import ArchiveError, OperationCancelledError
from jellyfin2samsung.services.file_service import DownloadStatus, FileService, PackageWorkspace
from jellyfin2samsung.utils.cancellation import CancellationToken

from conftest import PACKAGE_ENTRIES


def _streaming_session(chunks, content_length=None):
    response = MagicMock()
    response.__enter__.return_value = response
    response.raise_for_status.return_value = None
    response.headers = {"Content-Length": str(content_length)} if content_length else {}
    response.iter_content.return_value = iter(chunks)
    session = Mock()
    session.get.return_value = response
    return session


def test_extract_exposes_well_known_paths(package_archive, scratch_dir):
    with PackageWorkspace.extract(package_archive, temp_parent=scratch_dir) as workspace:
        assert workspace.root.parent == scratch_dir
        assert workspace.index_path.is_file()
        assert workspace.server_config_path.is_file()
        assert workspace.manifest_path.is_file()
        assert workspace.entries == list(PACKAGE_ENTRIES)


def test_repack_preserves_untouched_entries_and_order(package_archive, scratch_dir):
    with PackageWorkspace.extract(package_archive, temp_parent=scratch_dir) as workspace:
        workspace.index_path.write_text("<html><head></head><body></body></html>", encoding="utf-8")
        (workspace.www_dir / "plugin_cache").mkdir()
        (workspace.www_dir / "plugin_cache" / "extra.js").write_text("1;", encoding="utf-8")
        (workspace.root / "service").mkdir()
        (workspace.root / "service" / "service.js").write_text("2;", encoding="utf-8")
        workspace.repack()

    with zipfile.ZipFile(package_archive) as archive:
        names = archive.namelist()
        assert names == list(PACKAGE_ENTRIES) + ["service/service.js", "www/plugin_cache/extra.js"]
        for name, content in PACKAGE_ENTRIES.items():
            if content is None or name == "www/index.html":
                continue
            expected = content if isinstance(content, bytes) else content.encode("utf-8")
            assert archive.read(name) == expected
        assert archive.read("www/index.html") == b"<html><head></head><body></body></html>"

    assert not list(package_archive.parent.glob("*.tmp"))


def test_repack_to_other_destination_leaves_source_untouched(package_archive, scratch_dir, tmp_path):
    original = package_archive.read_bytes()
    with PackageWorkspace.extract(package_archive, temp_parent=scratch_dir) as workspace:
        workspace.index_path.write_text("changed", encoding="utf-8")
        target = workspace.repack(tmp_path / "patched.wgt")

    assert package_archive.read_bytes() == original
    with zipfile.ZipFile(target) as archive:
        assert archive.read("www/index.html") == b"changed"


def test_workspace_is_removed_even_when_patching_raises(package_archive, scratch_dir):
    with pytest.raises(RuntimeError):
        with PackageWorkspace.extract(package_archive, temp_parent=scratch_dir) as workspace:
            root = workspace.root
            raise RuntimeError("patch failed")

    assert not root.exists()
    assert list(scratch_dir.iterdir()) == []


def test_dispose_is_idempotent_and_blocks_repack(package_archive, scratch_dir):
    workspace = PackageWorkspace.extract(package_archive, temp_parent=scratch_dir)
    workspace.dispose()
    workspace.dispose()

    with pytest.raises(ArchiveError):
        workspace.repack()


def test_corrupt_archive_raises_and_cleans_up(tmp_path, scratch_dir):
    broken = tmp_path / "broken.wgt"
    broken.write_bytes(b"this is not a zip file")

    with pytest.raises(ArchiveError):
        PackageWorkspace.extract(broken, temp_parent=scratch_dir)
    assert list(scratch_dir.iterdir()) == []

    with pytest.raises(ArchiveError):
        PackageWorkspace.extract(tmp_path / "missing.wgt", temp_parent=scratch_dir)


def test_corrupt_deflate_payload_raises_archive_error_and_cleans_up(tmp_path, scratch_dir):
    name = "www/index.html"
    damaged = tmp_path / "damaged.wgt"
    with zipfile.ZipFile(damaged, "w", compression=zipfile.ZIP_DEFLATED) as zip_ref:
        zip_ref.writestr(name, b"<html><body>Jellyfin</body></html>\n" * 200)

    data = bytearray(damaged.read_bytes())
    # Local file header is 30 bytes plus the name; no extra field is written
    payload = 30 + len(name)
    for i in range(payload + 2, payload + 24):
        data[i] ^= 0xFF
    damaged.write_bytes(bytes(data))

    with pytest.raises(ArchiveError):
        PackageWorkspace.extract(damaged, temp_parent=scratch_dir)
    assert list(scratch_dir.iterdir()) == []


def test_resolve_refuses_paths_outside_workspace(package_archive, scratch_dir):
    with PackageWorkspace.extract(package_archive, temp_parent=scratch_dir) as workspace:
        assert workspace.resolve("www/index.html") == workspace.index_path.resolve()
        with pytest.raises(ArchiveError):
            workspace.resolve("../outside.txt")


def test_download_file_reports_progress(tmp_path):
    session = _streaming_session([b"abc", b"", b"defg"], content_length=7)
    service = FileService(downloads_dir=tmp_path, session=session)
    updates = []

    path = service.download_file("https://example.org/releases/Jellyfin.wgt",
                                 progress_callback=lambda p: updates.append((p.status, p.downloaded_size)))

    assert path == tmp_path / "Jellyfin.wgt"
    assert path.read_bytes() == b"abcdefg"
    assert updates[-1] == (DownloadStatus.COMPLETED, 7)
    assert not (tmp_path / "Jellyfin.wgt.part").exists()


def test_download_file_cancellation_removes_partial_file(tmp_path):
    token = CancellationToken()
    token.cancel()
    service = FileService(downloads_dir=tmp_path, session=_streaming_session([b"abc"]))

    with pytest.raises(OperationCancelledError):
        service.download_file("https://example.org/Jellyfin.wgt", cancellation_token=token)

    assert list(tmp_path.iterdir()) == []


def test_download_file_retries_then_raises(tmp_path):
    session = Mock()
    session.get.side_effect = requests.exceptions.ConnectionError("offline")
    service = FileService(downloads_dir=tmp_path, max_retries=2, session=session)
    service.retry_delay = 0

    with pytest.raises(requests.exceptions.ConnectionError):
        service.download_file("https://example.org/Jellyfin.wgt")
    assert session.get.call_count == 2
