import sys
from unittest.mock import Mock

import pytest
import requests

from jellyfin2samsung.config.settings import TizenConfig
from jellyfin2samsung.exceptions import ArchiveError, ToolMissingError
from jellyfin2samsung.models.install_result import CANCELLED_MESSAGE, InstallOutcome, InstallStage
from jellyfin2samsung.services import tizen_service
from jellyfin2samsung.services.tizen_service import (
    CAPTURE_MISSING_MESSAGE, TOOL_MISSING_MESSAGE, InstallOrchestrator, ProcessResult, TizenCli,
    combine_output, parse_version, run_command
)
from jellyfin2samsung.utils.cancellation import CancellationToken
from jellyfin2samsung.utils.windows_compat import elevation_cancelled_code


TV_IP = "192.168.1.50"


class FakeTizen:
    """Scripted sdb/tizen responses keyed on the first argument."""

    def __init__(self, platform_version="6.5", install_output="Installed the package", install_code=0):
        self.calls = []
        self.responses = {
            "connect": ProcessResult(0, f"connected to {TV_IP}:26101"),
            "devices": ProcessResult(0, f"List of devices attached \n{TV_IP}:26101\tdevice\tQE55Q80\n"),
            "capability": ProcessResult(0, f"secure_protocol:enabled\nplatform_version:{platform_version}\n"),
            "install-permit": ProcessResult(0, "permitted"),
            "package": ProcessResult(0, "Package File Location: Jellyfin.wgt"),
            "install": ProcessResult(install_code, install_output),
            "disconnect": ProcessResult(0, ""),
        }
        self.on_install = None

    def __call__(self, tool, args, timeout=None):
        self.calls.append((tool.name, args[0]))
        if args[0] == "install" and self.on_install:
            self.on_install()
        return self.responses[args[0]]

    @property
    def commands(self):
        return [command for _, command in self.calls]


@pytest.fixture()
def cli(tmp_path):
    root = tmp_path / "tizen-studio-cli"
    cli = TizenCli(root)
    cli.cli_path.parent.mkdir(parents=True)
    cli.cli_path.write_text("#!/bin/sh\n")
    cli.sdb_path.write_text("#!/bin/sh\n")
    return cli


def _orchestrator(cli, runner, **kwargs):
    config = kwargs.pop("config", TizenConfig())
    return InstallOrchestrator(config=config, file_service=Mock(), cli=cli, runner=runner, **kwargs)


def test_combine_output_and_parse_version():
    assert combine_output("out", "") == "out"
    assert combine_output("out", "err") == "out\n--- STDERR ---\nerr"
    assert parse_version("4.0") <= parse_version("4.0")
    assert parse_version("3.0") < parse_version("4.0") < parse_version("6.5")
    assert parse_version("7.0.1-beta") == (7, 0)


def test_run_command_captures_both_streams():
    result = run_command(sys.executable, ["-c", "import sys; print('out'); print('err', file=sys.stderr)"])
    assert result.success
    assert result.output.replace("\r\n", "\n") == "out\n\n--- STDERR ---\nerr\n"


def test_run_command_missing_tool(tmp_path):
    with pytest.raises(ToolMissingError):
        run_command(tmp_path / "no-such-tool", [])


def test_discover_prefers_configured_root(cli, monkeypatch):
    monkeypatch.setattr(tizen_service, "get_tizen_cli_candidates", lambda: [])
    assert TizenCli.discover(str(cli.root)) == cli
    assert TizenCli.discover(str(cli.root.parent / "elsewhere")) is None
    assert cli.profiles_path == cli.root.parent / "tizen-studio-cli-data" / "profile" / "profiles.xml"


def test_successful_install_walks_state_machine(cli, package_archive):
    fake = FakeTizen()
    stages = []
    orchestrator = _orchestrator(cli, fake)

    result = orchestrator.install(str(package_archive), TV_IP, progress_callback=lambda p: stages.append(p.stage))

    assert result.success
    assert result.outcome is InstallOutcome.SUCCEEDED
    assert fake.commands == ["connect", "devices", "capability", "package", "install", "disconnect"]
    assert stages[0] is InstallStage.DOWNLOADING
    assert stages.index(InstallStage.TOOL_ENSURED) < stages.index(InstallStage.INSTALLING)
    assert stages[-1] is InstallStage.SUCCEEDED
    assert orchestrator.stage is InstallStage.SUCCEEDED
    assert orchestrator.stage.is_terminal
    orchestrator.file_service.download_file.assert_not_called()


def test_legacy_platform_gets_install_permit(cli, package_archive):
    fake = FakeTizen(platform_version="4.0")
    result = _orchestrator(cli, fake).install(str(package_archive), TV_IP)

    assert result.success
    assert "install-permit" in fake.commands


def test_failure_text_overrides_zero_exit_code(cli, package_archive):
    fake = FakeTizen(install_output="Installing...\ninstall failed[118, -12]")
    result = _orchestrator(cli, fake).install(str(package_archive), TV_IP)

    assert result.outcome is InstallOutcome.FAILED
    assert "install failed" in result.output
    assert fake.commands[-1] == "disconnect"


def test_nonzero_exit_is_failure_with_output(cli, package_archive):
    fake = FakeTizen(install_output="error: device offline", install_code=1)
    result = _orchestrator(cli, fake).install(str(package_archive), TV_IP)

    assert result.outcome is InstallOutcome.FAILED
    assert result.output == "error: device offline"


def test_missing_tool_is_distinct_failure(tmp_path, package_archive, monkeypatch):
    monkeypatch.setattr(tizen_service, "get_tizen_cli_candidates", lambda: [])
    fake = FakeTizen()
    orchestrator = _orchestrator(None, fake, config=TizenConfig(cli_root=str(tmp_path / "nothing")))

    result = orchestrator.install(str(package_archive), TV_IP)

    assert result.outcome is InstallOutcome.FAILED
    assert result.error_message == TOOL_MISSING_MESSAGE
    assert fake.calls == []


def test_unknown_tv_name_fails(cli, package_archive):
    fake = FakeTizen()
    fake.responses["devices"] = ProcessResult(0, "List of devices attached \n")
    result = _orchestrator(cli, fake).install(str(package_archive), TV_IP)

    assert result.outcome is InstallOutcome.FAILED
    assert "install" not in fake.commands
    assert fake.commands[-1] == "disconnect"


def test_declined_elevation_is_cancelled_not_failed(cli, package_archive):
    config = TizenConfig(use_elevation=True)
    elevated = Mock(return_value=elevation_cancelled_code(config.elevation_cancelled_code))
    orchestrator = _orchestrator(cli, FakeTizen(), config=config, elevated_runner=elevated)

    result = orchestrator.install(str(package_archive), TV_IP)

    assert result.outcome is InstallOutcome.CANCELLED
    assert result.error_message == CANCELLED_MESSAGE
    assert orchestrator.stage is InstallStage.CANCELLED
    args = elevated.call_args.args
    assert args[0] == str(cli.cli_path)
    assert args[1][:2] == ["install", "-n"]


def test_elevated_install_reads_capture_file(cli, package_archive):
    captured = []

    def elevated(tool, args, capture_file, working_dir=None, timeout=None):
        captured.append(capture_file)
        capture_file.write_text("Installed the package\n", encoding="utf-8")
        return 0

    orchestrator = _orchestrator(cli, FakeTizen(), config=TizenConfig(use_elevation=True),
                                 elevated_runner=elevated)
    result = orchestrator.install(str(package_archive), TV_IP)

    assert result.success
    assert result.output == "Installed the package\n"
    assert not captured[0].exists()


def test_elevated_install_without_capture_file_fails(cli, package_archive):
    orchestrator = _orchestrator(cli, FakeTizen(), config=TizenConfig(use_elevation=True),
                                 elevated_runner=Mock(return_value=0))
    result = orchestrator.install(str(package_archive), TV_IP)

    assert result.outcome is InstallOutcome.FAILED
    assert result.error_message == CAPTURE_MISSING_MESSAGE


def test_cancelled_before_start(cli, package_archive):
    token = CancellationToken()
    token.cancel()
    fake = FakeTizen()

    result = _orchestrator(cli, fake).install(str(package_archive), TV_IP, cancellation_token=token)

    assert result.cancelled
    assert fake.calls == []


def test_cancel_while_installing_waits_for_exit(cli, package_archive):
    token = CancellationToken()
    fake = FakeTizen()
    fake.on_install = token.cancel

    result = _orchestrator(cli, fake).install(str(package_archive), TV_IP, cancellation_token=token)

    assert result.cancelled
    assert result.output == "Installed the package"
    assert fake.commands[-1] == "disconnect"


def test_download_failure_is_reported(cli):
    orchestrator = _orchestrator(cli, FakeTizen())
    orchestrator.file_service.download_file.side_effect = requests.exceptions.ConnectionError("offline")

    result = orchestrator.install("https://example.org/Jellyfin.wgt", TV_IP)

    assert result.outcome is InstallOutcome.FAILED
    assert result.error_message.startswith("Download failed")


def test_prepare_hook_runs_on_downloaded_package(cli, package_archive):
    prepared = []
    orchestrator = _orchestrator(cli, FakeTizen(), prepare_package=prepared.append)
    orchestrator.file_service.download_file.return_value = package_archive

    result = orchestrator.install("https://example.org/Jellyfin.wgt", TV_IP)

    assert result.success
    assert prepared == [package_archive]


def test_prepare_hook_failure_aborts_install(cli, package_archive):
    fake = FakeTizen()

    def broken(path):
        raise ArchiveError("Failed to repack")

    result = _orchestrator(cli, fake, prepare_package=broken).install(str(package_archive), TV_IP)

    assert result.outcome is InstallOutcome.FAILED
    assert "repack" in result.error_message
    assert fake.calls == []
