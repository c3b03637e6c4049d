"""
File operations service for Jellyfin2Samsung.

This module provides package download with progress tracking and retries, and
the PackageWorkspace that owns the scratch extraction of a package while it
is being patched and repacked.
"""

import os
import shutil
import tempfile
import zipfile
import zlib
import logging
import time
from pathlib import Path
from typing import Optional, Callable, Any, List, Union
from urllib.parse import urlparse
from dataclasses import dataclass
from enum import Enum

import requests

from ..exceptions import ArchiveError, OperationCancelledError
from ..utils.cancellation import CancellationToken


class DownloadStatus(Enum):
    """Download status states."""
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class DownloadProgress:
    """Progress information for downloads."""
    url: str
    filename: str
    total_size: Optional[int] = None
    downloaded_size: int = 0
    status: DownloadStatus = DownloadStatus.PENDING
    start_time: Optional[float] = None
    error_message: Optional[str] = None

    @property
    def progress_percentage(self) -> float:
        """Get download progress as percentage."""
        if self.total_size and self.total_size > 0:
            return (self.downloaded_size / self.total_size) * 100.0
        return 0.0

    @property
    def download_speed(self) -> Optional[float]:
        """Get download speed in bytes per second."""
        if self.start_time and self.downloaded_size > 0:
            elapsed = time.time() - self.start_time
            if elapsed > 0:
                return self.downloaded_size / elapsed
        return None


class FileService:
    """
    Downloads packages with progress tracking and retries.
    """

    def __init__(self, downloads_dir: Optional[Path] = None,
                 chunk_size: int = 8192,
                 timeout: int = 300,
                 max_retries: int = 3,
                 session: Optional[requests.Session] = None):
        """
        Initialize file service.

        Args:
            downloads_dir: Directory for downloaded files (default: ./downloads)
            chunk_size: Download chunk size in bytes
            timeout: Download timeout in seconds
            max_retries: Maximum download retry attempts
            session: Optional requests session
        """
        self.downloads_dir = Path(downloads_dir) if downloads_dir else Path("downloads")
        self.chunk_size = chunk_size
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.session = session or requests.Session()
        self.retry_delay = 2.0

        self._logger = logging.getLogger(__name__)

    def download_file(self, url: str, filename: Optional[str] = None,
                      destination: Optional[Path] = None,
                      progress_callback: Optional[Callable[[DownloadProgress], None]] = None,
                      cancellation_token: Optional[CancellationToken] = None) -> Path:
        """
        Download a file with progress tracking.

        The body is streamed into a temporary file that is renamed into place
        only once complete.

        Args:
            url: URL to download from
            filename: Optional filename override
            destination: Optional destination directory
            progress_callback: Called with DownloadProgress after every chunk
            cancellation_token: Token checked between chunks

        Returns:
            Path to the downloaded file

        Raises:
            requests.exceptions.RequestException: If every attempt fails
            OperationCancelledError: If cancelled mid-download
        """
        if not filename:
            filename = Path(urlparse(url).path).name or "download"

        destination = Path(destination) if destination else self.downloads_dir
        destination.mkdir(parents=True, exist_ok=True)

        file_path = destination / filename
        temp_path = destination / f"{filename}.part"
        token = cancellation_token or CancellationToken()
        progress = DownloadProgress(url=url, filename=filename)

        def update(p: DownloadProgress) -> None:
            if progress_callback:
                try:
                    progress_callback(p)
                except Exception as e:
                    self._logger.warning(f"Progress callback error: {e}")

        self._logger.info(f"Downloading {url} to {file_path}")

        for attempt in range(self.max_retries):
            try:
                progress.status = DownloadStatus.DOWNLOADING
                progress.downloaded_size = 0
                progress.start_time = time.time()
                update(progress)

                with self.session.get(url, stream=True, timeout=self.timeout) as response:
                    response.raise_for_status()
                    content_length = response.headers.get('Content-Length')
                    if content_length and content_length.isdigit():
                        progress.total_size = int(content_length)

                    with open(temp_path, 'wb') as f:
                        for chunk in response.iter_content(chunk_size=self.chunk_size):
                            if token.is_cancelled:
                                progress.status = DownloadStatus.CANCELLED
                                update(progress)
                                raise OperationCancelledError("Download cancelled by user.")
                            if not chunk:
                                continue
                            f.write(chunk)
                            progress.downloaded_size += len(chunk)
                            update(progress)

                os.replace(temp_path, file_path)
                progress.status = DownloadStatus.COMPLETED
                update(progress)
                break

            except requests.exceptions.RequestException as e:
                progress.status = DownloadStatus.FAILED
                progress.error_message = str(e)
                self._logger.warning(f"Download attempt {attempt + 1} failed: {e}")

                if attempt < self.max_retries - 1:
                    self._logger.info(f"Retrying download in {self.retry_delay:g} seconds...")
                    time.sleep(self.retry_delay)
                else:
                    update(progress)
                    raise
            finally:
                if temp_path.exists():
                    temp_path.unlink()

        self._logger.info(f"Download completed: {filename} ({file_path.stat().st_size} bytes)")
        return file_path


class PackageWorkspace:
    """
    Scratch extraction of one package archive.

    Use as a context manager: the scratch directory is removed when the block
    exits, whether or not patching or repacking raised. A workspace belongs to
    a single install operation and must not be shared between threads.
    """

    def __init__(self, archive_path: Union[str, Path], root: Path, entries: List[str]):
        self.archive_path = Path(archive_path)
        self.root = Path(root)
        self.entries = list(entries)
        self._disposed = False
        self._logger = logging.getLogger(__name__)

    @classmethod
    def extract(cls, archive_path: Union[str, Path],
                temp_parent: Optional[Union[str, Path]] = None) -> 'PackageWorkspace':
        """
        Unpack an archive into a fresh, uniquely named scratch directory.

        Args:
            archive_path: Path to the zip-format package
            temp_parent: Directory the scratch directory is created in
                (default: system temp)

        Returns:
            PackageWorkspace owning the scratch directory

        Raises:
            ArchiveError: If the archive is missing or corrupt
        """
        archive_path = Path(archive_path)
        if not archive_path.is_file():
            raise ArchiveError(f"Archive not found: {archive_path}")

        root = Path(tempfile.mkdtemp(prefix="j2s_", dir=temp_parent))
        try:
            with zipfile.ZipFile(archive_path, 'r') as zip_ref:
                entries = zip_ref.namelist()
                zip_ref.extractall(root)
        except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError, OSError) as e:
            shutil.rmtree(root, ignore_errors=True)
            raise ArchiveError(f"Corrupted archive {archive_path}: {e}") from e
        except BaseException:
            shutil.rmtree(root, ignore_errors=True)
            raise

        logging.getLogger(__name__).info(f"Extracted {len(entries)} entries from {archive_path.name} to {root}")
        return cls(archive_path, root, entries)

    @property
    def www_dir(self) -> Path:
        return self.root / "www"

    @property
    def index_path(self) -> Path:
        return self.www_dir / "index.html"

    @property
    def server_config_path(self) -> Path:
        return self.www_dir / "config.json"

    @property
    def manifest_path(self) -> Path:
        return self.root / "config.xml"

    def resolve(self, relative: str) -> Path:
        """Map an archive-relative path into the workspace, refusing escapes."""
        path = (self.root / relative).resolve()
        if path != self.root.resolve() and self.root.resolve() not in path.parents:
            raise ArchiveError(f"Path escapes workspace: {relative}")
        return path

    def _ordered_entries(self) -> List[str]:
        present = []
        seen = set()
        for name in self.entries:
            path = self.root / name
            if (name.endswith('/') and path.is_dir()) or path.is_file():
                present.append(name)
                seen.add(name.rstrip('/'))

        added = []
        for dirpath, _, filenames in os.walk(self.root):
            for filename in filenames:
                relative = (Path(dirpath) / filename).relative_to(self.root).as_posix()
                if relative not in seen:
                    added.append(relative)
        return present + sorted(added)

    def repack(self, destination: Optional[Union[str, Path]] = None) -> Path:
        """
        Zip the workspace tree back over the source archive.

        Original entries keep their order; files created by patches follow.
        The archive is written next to its target and then moved into place.

        Args:
            destination: Output path (default: overwrite the source archive)

        Returns:
            Path of the written archive

        Raises:
            ArchiveError: If the archive cannot be written
        """
        if self._disposed:
            raise ArchiveError("Workspace has already been disposed")

        target = Path(destination) if destination else self.archive_path
        temp_path = target.with_name(target.name + ".tmp")

        try:
            with zipfile.ZipFile(temp_path, 'w', compression=zipfile.ZIP_DEFLATED) as zip_ref:
                for name in self._ordered_entries():
                    path = self.root / name
                    if name.endswith('/'):
                        zip_ref.writestr(zipfile.ZipInfo(name), b"")
                    else:
                        zip_ref.write(path, name)
            os.replace(temp_path, target)
        except OSError as e:
            raise ArchiveError(f"Failed to repack {target}: {e}") from e
        finally:
            if temp_path.exists():
                temp_path.unlink()

        self._logger.info(f"Repacked workspace into {target}")
        return target

    def dispose(self) -> None:
        """Delete the scratch directory. Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True
        shutil.rmtree(self.root, ignore_errors=True)
        self._logger.debug(f"Removed workspace {self.root}")

    def __enter__(self) -> 'PackageWorkspace':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()


def configure_from_config(config: Any) -> FileService:
    """
    Configure file service from application config.

    Args:
        config: Application configuration object

    Returns:
        Configured file service
    """
    return FileService(
        downloads_dir=config.get_downloads_directory(),
        chunk_size=config.downloads.chunk_size,
        timeout=config.downloads.download_timeout,
        max_retries=config.downloads.max_retries,
    )
