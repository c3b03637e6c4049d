"""
Tizen install orchestration for Jellyfin2Samsung.

This module locates the vendor CLI (tizen and sdb), drives it against a TV,
and wraps the whole download, tool check, and install sequence in a state
machine that always ends in an InstallResult.
"""

import os
import re
import subprocess
import tempfile
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

import requests

from ..config.settings import TizenConfig
from ..exceptions import OperationCancelledError, ProvisioningError, ToolMissingError
from ..models.install_result import InstallProgress, InstallResult, InstallStage
from ..utils.cancellation import CancellationToken
from ..utils.platform_utils import (
    executable_name, get_tizen_cli_candidates, get_tizen_data_dir, is_windows
)
from ..utils.windows_compat import elevation_cancelled_code, run_elevated
from .file_service import DownloadProgress, FileService


STDERR_SEPARATOR = "\n--- STDERR ---\n"
CAPTURE_MISSING_MESSAGE = "Output file not found after elevation."
TOOL_MISSING_MESSAGE = "Tizen CLI not found. Please install the Tizen Studio CLI."
FAILURE_MARKERS = ("Failed", "install failed")
DEFAULT_PROFILE = "Jelly2Sams"

_TV_NAME_RE = re.compile(r"(?<=\n)(\S+)\s+device\s+(?P<name>\S+)")
_PLATFORM_VERSION_RE = re.compile(r"platform_version:([\d.]+)")


@dataclass(frozen=True)
class ProcessResult:
    """Exit code and combined output of one CLI invocation."""
    exit_code: int
    output: str
    captured: bool = True

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def combine_output(stdout: Optional[str], stderr: Optional[str]) -> str:
    output = stdout or ""
    if stderr:
        output += STDERR_SEPARATOR + stderr
    return output


def parse_version(version: str) -> Tuple[int, ...]:
    parts = []
    for part in version.strip().split("."):
        if not part.isdigit():
            break
        parts.append(int(part))
    return tuple(parts)


def contains_failure(output: str) -> bool:
    return any(marker in output for marker in FAILURE_MARKERS)


@dataclass(frozen=True)
class TizenCli:
    """Resolved locations inside one vendor CLI install."""
    root: Path

    @property
    def cli_path(self) -> Path:
        return self.root / "tools" / "ide" / "bin" / ("tizen.bat" if is_windows() else "tizen")

    @property
    def sdb_path(self) -> Path:
        return self.root / "tools" / executable_name("sdb")

    @property
    def profiles_path(self) -> Path:
        return get_tizen_data_dir(self.root) / "profile" / "profiles.xml"

    @property
    def is_complete(self) -> bool:
        return self.cli_path.is_file() and self.sdb_path.is_file()

    @classmethod
    def discover(cls, cli_root: Optional[str] = None) -> Optional['TizenCli']:
        """
        Find a usable CLI install.

        Args:
            cli_root: Explicit install root, checked before the platform defaults

        Returns:
            TizenCli for the first complete install found, or None
        """
        candidates: List[Path] = [Path(cli_root)] if cli_root else []
        candidates.extend(get_tizen_cli_candidates())
        for root in candidates:
            cli = cls(root)
            if cli.is_complete:
                return cli
        return None


def run_command(tool: Path, args: List[str], timeout: Optional[int] = None) -> ProcessResult:
    """
    Run a CLI tool and capture its output.

    Raises:
        ToolMissingError: If the executable does not exist
    """
    logging.getLogger(__name__).debug(f"Running {Path(tool).name} {' '.join(args)}")
    try:
        completed = subprocess.run(
            [str(tool)] + list(args),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise ToolMissingError(f"{tool} not found") from e
    return ProcessResult(completed.returncode, combine_output(completed.stdout, completed.stderr))


class TizenDevice:
    """sdb and tizen helpers for one connected TV."""

    def __init__(self, cli: TizenCli, address: str, timeout: Optional[int] = None,
                 runner: Callable[..., ProcessResult] = run_command):
        self.cli = cli
        self.address = address
        self.timeout = timeout
        self._run = runner
        self._logger = logging.getLogger(__name__)

    def _sdb(self, *args: str) -> ProcessResult:
        return self._run(self.cli.sdb_path, list(args), timeout=self.timeout)

    def connect(self) -> bool:
        result = self._sdb("connect", self.address)
        connected = f"connected to {self.address}" in result.output
        if not connected:
            self._logger.warning(f"sdb could not connect to {self.address}: {result.output.strip()}")
        return connected

    def disconnect(self) -> None:
        self._sdb("disconnect", self.address)

    def get_name(self) -> str:
        """TV name as listed by sdb devices, or an empty string."""
        match = _TV_NAME_RE.search(self._sdb("devices").output)
        return match.group("name").strip() if match else ""

    def get_platform_version(self) -> str:
        match = _PLATFORM_VERSION_RE.search(self._sdb("capability").output)
        return match.group(1).strip() if match else ""

    def get_device_id(self) -> str:
        """Device unique id (DUID) used for distributor certificates."""
        output = self._sdb("shell", "0 getduid").output
        if not output.strip():
            output = self._sdb("shell", "/opt/etc/duid-gadget 2 2> /dev/null").output
        return output.strip()

    def permit_install(self, tv_name: str) -> ProcessResult:
        return self._run(self.cli.cli_path, ["install-permit", "-t", tv_name], timeout=self.timeout)


class InstallOrchestrator:
    """
    Downloads a package and installs it onto a TV through the vendor CLI.

    Stages run Idle, Downloading, ToolEnsured, Installing, then one of
    Succeeded, Failed or Cancelled. install() never raises; every outcome is
    reported through the returned InstallResult.
    """

    def __init__(self, config: Optional[TizenConfig] = None,
                 file_service: Optional[FileService] = None,
                 cli: Optional[TizenCli] = None,
                 profile_name: str = DEFAULT_PROFILE,
                 prepare_package: Optional[Callable[[Path], Any]] = None,
                 runner: Callable[..., ProcessResult] = run_command,
                 elevated_runner: Callable[..., int] = run_elevated):
        """
        Initialize the orchestrator.

        Args:
            config: Tizen CLI and install settings
            file_service: Service used to download the package
            cli: Pre-resolved CLI install (default: discovered on first use)
            profile_name: Signing profile passed to tizen package
            prepare_package: Called with the downloaded package before signing,
                e.g. to run the patch pipeline over it
            runner: Runs a non-elevated CLI command
            elevated_runner: Runs a command behind the elevation prompt
        """
        self.config = config or TizenConfig()
        self.file_service = file_service or FileService()
        self.cli = cli
        self.profile_name = profile_name
        self.prepare_package = prepare_package
        self._run = runner
        self._run_elevated = elevated_runner
        self.stage = InstallStage.IDLE
        self._progress_callback: Optional[Callable[[InstallProgress], None]] = None
        self._logger = logging.getLogger(__name__)

    def _update_progress(self, stage: InstallStage, message: str,
                         downloaded_bytes: int = 0, total_bytes: Optional[int] = None) -> None:
        self.stage = stage
        self._logger.info(message)
        if self._progress_callback:
            try:
                self._progress_callback(InstallProgress(stage, message, downloaded_bytes, total_bytes))
            except Exception as e:
                self._logger.warning(f"Progress callback error: {e}")

    def _finish(self, result: InstallResult) -> InstallResult:
        if result.success:
            self._update_progress(InstallStage.SUCCEEDED, "Installation successful")
        elif result.cancelled:
            self._update_progress(InstallStage.CANCELLED, result.error_message)
        else:
            self._update_progress(InstallStage.FAILED, f"Installation failed: {result.error_message}")
        return result

    def ensure_tool(self) -> TizenCli:
        """
        Resolve the vendor CLI.

        Raises:
            ToolMissingError: If no complete install is found
        """
        if self.cli is None or not self.cli.is_complete:
            self.cli = TizenCli.discover(self.config.cli_root)
        if self.cli is None:
            raise ToolMissingError(TOOL_MISSING_MESSAGE)
        return self.cli

    def fetch_package(self, archive_url: str, token: CancellationToken) -> Path:
        """Download the package, or use it in place if archive_url is a local file."""
        if os.path.isfile(archive_url):
            return Path(archive_url)

        def on_download(progress: DownloadProgress) -> None:
            if self._progress_callback:
                self._progress_callback(InstallProgress(
                    InstallStage.DOWNLOADING,
                    f"Downloading {progress.filename}",
                    progress.downloaded_size,
                    progress.total_size,
                ))

        return self.file_service.download_file(
            archive_url, progress_callback=on_download, cancellation_token=token
        )

    def install(self, archive_url: str, device_address: str,
                cancellation_token: Optional[CancellationToken] = None,
                progress_callback: Optional[Callable[[InstallProgress], None]] = None) -> InstallResult:
        """
        Install a package onto a TV.

        Args:
            archive_url: Package URL or local path
            device_address: TV IPv4 address
            cancellation_token: Checked between stages and around the install process
            progress_callback: Receives InstallProgress updates

        Returns:
            InstallResult describing the outcome
        """
        token = cancellation_token or CancellationToken()
        self._progress_callback = progress_callback
        self.stage = InstallStage.IDLE

        try:
            token.raise_if_cancelled()
            self._update_progress(InstallStage.DOWNLOADING, f"Fetching package {archive_url}")
            package_path = self.fetch_package(archive_url, token)

            if self.prepare_package is not None:
                self.prepare_package(package_path)

            token.raise_if_cancelled()
            cli = self.ensure_tool()
            self._update_progress(InstallStage.TOOL_ENSURED, f"Using Tizen CLI at {cli.root}")

            token.raise_if_cancelled()
            return self._finish(self._install_on_device(cli, package_path, device_address, token))

        except OperationCancelledError:
            return self._finish(InstallResult.cancelled_by_user())
        except ToolMissingError as e:
            return self._finish(InstallResult.failed(str(e)))
        except requests.exceptions.RequestException as e:
            return self._finish(InstallResult.failed(f"Download failed: {e}"))
        except (ProvisioningError, OSError, subprocess.SubprocessError) as e:
            return self._finish(InstallResult.failed(str(e)))
        except Exception as e:
            self._logger.exception("Unexpected install error")
            return self._finish(InstallResult.failed(str(e)))

    def _install_on_device(self, cli: TizenCli, package_path: Path, address: str,
                           token: CancellationToken) -> InstallResult:
        device = TizenDevice(cli, address, timeout=self.config.install_timeout, runner=self._run)
        self._update_progress(InstallStage.INSTALLING, f"Connecting to {address}")

        try:
            device.connect()
            tv_name = device.get_name()
            if not tv_name:
                return InstallResult.failed("TV name not found. Is developer mode enabled?")

            version = device.get_platform_version()
            if version and parse_version(version) <= parse_version(self.config.legacy_permit_version):
                self._logger.info(f"Platform {version} requires install-permit")
                device.permit_install(tv_name)

            self._update_progress(InstallStage.INSTALLING, "Packaging and signing")
            package_type = package_path.suffix.lstrip(".").lower() or "wgt"
            signed = self._run(
                cli.cli_path,
                ["package", "-t", package_type, "-s", self.profile_name, "--", str(package_path)],
                timeout=self.config.install_timeout,
            )
            if not signed.success:
                return InstallResult.failed("Packaging failed", signed.output)

            token.raise_if_cancelled()
            self._update_progress(InstallStage.INSTALLING, f"Installing on {tv_name}")
            result = self._run_install(cli, ["install", "-n", str(package_path), "-t", tv_name])

            if result.exit_code == self._cancelled_code():
                return InstallResult.cancelled_by_user(result.output)
            if not result.captured:
                return InstallResult.failed(CAPTURE_MISSING_MESSAGE)
            if token.is_cancelled:
                # The process could not be interrupted; report once it has exited
                return InstallResult.cancelled_by_user(result.output)
            if result.exit_code != 0 or contains_failure(result.output):
                return InstallResult.failed(f"Installation failed: {result.output}", result.output)
            return InstallResult.succeeded(result.output)
        finally:
            try:
                device.disconnect()
            except (ProvisioningError, OSError, subprocess.SubprocessError) as e:
                self._logger.debug(f"sdb disconnect failed: {e}")

    def _cancelled_code(self) -> Optional[int]:
        if not self.config.use_elevation:
            return None
        return elevation_cancelled_code(self.config.elevation_cancelled_code)

    def _run_install(self, cli: TizenCli, args: List[str]) -> ProcessResult:
        if not self.config.use_elevation:
            return self._run(cli.cli_path, args, timeout=self.config.install_timeout)

        fd, capture_name = tempfile.mkstemp(prefix="j2s_install_", suffix=".log")
        os.close(fd)
        capture_file = Path(capture_name)
        capture_file.unlink()
        try:
            exit_code = self._run_elevated(
                str(cli.cli_path), args, capture_file,
                working_dir=cli.root, timeout=self.config.install_timeout,
            )
            if exit_code == self._cancelled_code():
                return ProcessResult(exit_code, "")
            if not capture_file.exists():
                return ProcessResult(exit_code, "", captured=False)
            return ProcessResult(exit_code, capture_file.read_text(encoding="utf-8", errors="replace"))
        finally:
            if capture_file.exists():
                capture_file.unlink()


def configure_from_config(config: Any, prepare_package: Optional[Callable[[Path], Any]] = None) -> InstallOrchestrator:
    """
    Configure the install orchestrator from application config.

    Args:
        config: Application configuration object
        prepare_package: Optional hook run on the downloaded package

    Returns:
        Configured orchestrator
    """
    from .file_service import configure_from_config as configure_file_service
    return InstallOrchestrator(
        config=config.tizen,
        file_service=configure_file_service(config),
        profile_name=config.certificates.profile_name,
        prepare_package=prepare_package,
    )
