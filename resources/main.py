"""
Jellyfin2Samsung - Main Application Entry Point

Command line interface for finding Samsung Tizen TVs, issuing developer
certificates, patching the Jellyfin web client package, and installing it.
"""

import sys
import signal
import argparse
import logging
import traceback
from pathlib import Path
from typing import Optional

from jellyfin2samsung.config.settings import AppConfig, LogLevel, load_config
from jellyfin2samsung.exceptions import ProvisioningError
from jellyfin2samsung.models.install_result import InstallProgress
from jellyfin2samsung.patches.pipeline import PatchStep, patch_package
from jellyfin2samsung.services import certificate_service, network_service, tizen_service, tv_log_service
from jellyfin2samsung.services.jellyfin_service import JellyfinApiClient
from jellyfin2samsung.services.tizen_service import TizenCli, TizenDevice
from jellyfin2samsung.utils.cancellation import CancellationToken
from jellyfin2samsung.utils.logger import COLORS, setup_logging
from jellyfin2samsung.utils.platform_utils import get_platform_log_dir
from jellyfin2samsung.utils.validators import get_validator


class Jellyfin2SamsungApp:
    """Main application class for Jellyfin2Samsung."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.logger: Optional[logging.Logger] = None
        self.colored = True
        self.cancellation_token = CancellationToken()

    def initialize(self, config_file: Optional[str] = None, debug: bool = False,
                   colored: bool = True) -> None:
        """Load configuration and set up logging."""
        try:
            self.config = load_config(config_file)
            self.colored = colored

            level = LogLevel.DEBUG if debug or self.config.debug_mode else self.config.log_level
            log_file = get_platform_log_dir('jellyfin2samsung') / 'jellyfin2samsung.log'
            self.logger = setup_logging(colored=colored, log_file=log_file, level=level)

            self.logger.info(f"Starting {self.config.app_name} v{self.config.version}")

        except Exception as e:
            print(f"Failed to initialize application: {e}")
            sys.exit(1)

    def _print_status(self, color: str, message: str) -> None:
        if self.colored and sys.stdout.isatty():
            print(f"{COLORS[color]}{message}{COLORS['NC']}")
        else:
            print(message)

    def _install_signal_handler(self) -> None:
        def on_interrupt(signum, frame):
            if self.cancellation_token.is_cancelled:
                raise KeyboardInterrupt
            self.logger.warning("Cancelling... press Ctrl+C again to abort immediately")
            self.cancellation_token.cancel()

        signal.signal(signal.SIGINT, on_interrupt)

    def run_scan(self, include_virtual: bool = False, identified_only: bool = False) -> bool:
        """Scan the local network and print every TV found."""
        scanner = network_service.configure_from_config(self.config)
        self._install_signal_handler()

        devices = scanner.scan(
            include_virtual_interfaces=include_virtual,
            include_unidentified=not identified_only,
            cancellation_token=self.cancellation_token,
        )
        if not devices:
            self._print_status("YELLOW", "No TVs found. Is developer mode enabled on the TV?")
            return False

        for device in devices:
            suffix = "" if device.developer_mode else "  (developer mode off)"
            self._print_status("GREEN", f"{device.display_text}{suffix}")
        return True

    def run_validate(self, ip_address: str) -> bool:
        """Check a single address by hand."""
        scanner = network_service.configure_from_config(self.config)
        try:
            device = scanner.validate_manual_address(ip_address, cancellation_token=self.cancellation_token)
        except ValueError as e:
            self.logger.error(str(e))
            return False

        if device is None:
            self._print_status("RED", f"{ip_address} is not reachable on the developer port")
            return False
        self._print_status("GREEN", device.display_text)
        return True

    def _resolve_device_id(self, ip_address: str) -> str:
        cli = TizenCli.discover(self.config.tizen.cli_root)
        if cli is None:
            raise ProvisioningError(tizen_service.TOOL_MISSING_MESSAGE)

        device = TizenDevice(cli, ip_address, timeout=self.config.tizen.install_timeout)
        try:
            if not device.connect():
                raise ProvisioningError(f"Could not connect to {ip_address}")
            return device.get_device_id()
        finally:
            device.disconnect()

    def run_certificate(self, email: str, access_token: str, user_id: str,
                        device_id: Optional[str] = None, ip_address: Optional[str] = None,
                        register: bool = True) -> bool:
        """Issue and write a certificate profile for one TV."""
        validation = get_validator().validate_email(email)
        if not validation.is_valid:
            self.logger.error(validation.message)
            return False

        try:
            if not device_id:
                if not ip_address:
                    self.logger.error("Either --device-id or --ip is required")
                    return False
                device_id = self._resolve_device_id(ip_address)
                if not device_id:
                    self.logger.error("TV did not report a device id")
                    return False

            issuer = certificate_service.configure_from_config(self.config)
            profile = issuer.generate_profile(
                device_id, access_token, user_id, email,
                output_dir=self.config.get_profile_directory(),
                progress_callback=lambda message: self.logger.info(message),
            )
            self._print_status("GREEN", f"Certificates written to {profile.output_dir}")

            if register:
                cli = TizenCli.discover(self.config.tizen.cli_root)
                if cli is None:
                    self.logger.warning("Tizen CLI not found, signing profile not registered")
                else:
                    issuer.register_profile(cli.profiles_path, profile)
            return True

        except ProvisioningError as e:
            self.logger.error(f"Certificate creation failed: {e}")
            return False

    def _server_url_is_usable(self) -> bool:
        """An unset server URL is allowed; server-bound steps then skip themselves."""
        server_url = self.config.jellyfin.server_url
        if not server_url:
            return True
        validation = get_validator().validate_server_url(server_url)
        if not validation:
            self.logger.error(validation.message)
        return validation.is_valid

    def run_patch(self, archive: str, steps: Optional[list] = None) -> bool:
        """Patch a local package in place."""
        if not self._server_url_is_usable():
            return False

        enabled = {PatchStep(step) for step in steps} if steps else None
        try:
            report = patch_package(archive, self.config.jellyfin, JellyfinApiClient(), enabled)
        except ProvisioningError as e:
            self.logger.error(f"Patching failed: {e}")
            return False

        for step, status in report.statuses.items():
            self.logger.info(f"  {step.value}: {status.value}")
        return not report.failed

    def run_install(self, package: str, ip_address: str, patch: bool = True) -> bool:
        """Download (or take) a package, patch it and install it on a TV."""
        if patch and not self._server_url_is_usable():
            return False

        def prepare(package_path: Path) -> None:
            patch_package(package_path, self.config.jellyfin, JellyfinApiClient())

        orchestrator = tizen_service.configure_from_config(
            self.config, prepare_package=prepare if patch else None
        )
        self._install_signal_handler()

        def progress_callback(progress: InstallProgress):
            if progress.total_bytes:
                self.logger.debug(f"[{progress.progress_percentage:.1f}%] {progress.message}")
            else:
                self.logger.info(progress.message)

        result = orchestrator.install(package, ip_address, self.cancellation_token, progress_callback)

        if result.success:
            self._print_status("GREEN", "Installation successful")
        elif result.cancelled:
            self._print_status("YELLOW", result.error_message)
        else:
            self._print_status("RED", result.error_message)
            if result.output:
                self.logger.debug(result.output)
        return result.success

    def run_logs(self) -> bool:
        """Print TV console output until interrupted."""
        listener = tv_log_service.configure_from_config(
            self.config,
            message_callback=lambda message: print(message),
            status_callback=lambda status: self.logger.info(f"TV log listener: {status.value}"),
        )
        with listener:
            try:
                self.cancellation_token.wait()
            except KeyboardInterrupt:
                pass
        return True


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the command line argument parser."""
    parser = argparse.ArgumentParser(
        description="Jellyfin2Samsung - Install Jellyfin on Samsung Tizen TVs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s scan                                          # Find TVs on the network
  %(prog)s validate 192.168.1.50                         # Check one TV by address
  %(prog)s certificate --email me@example.com --token T --user-id U --ip 192.168.1.50
  %(prog)s patch Jellyfin.wgt                            # Patch a package in place
  %(prog)s install https://.../Jellyfin.wgt --ip 192.168.1.50
  %(prog)s logs                                          # Show TV console output
        """)

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument(
        '--config',
        metavar='CONFIG_FILE',
        help='Path to configuration file'
    )
    config_group.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    config_group.add_argument(
        '--no-color',
        action='store_true',
        help='Disable colored output'
    )

    commands = parser.add_subparsers(dest='command', required=True)

    scan = commands.add_parser('scan', help='Scan the local network for TVs')
    scan.add_argument(
        '--include-virtual',
        action='store_true',
        help='Also scan virtual, VPN and container adapters'
    )
    scan.add_argument(
        '--identified-only',
        action='store_true',
        help='Only list hosts that reported device info'
    )

    validate = commands.add_parser('validate', help='Check a single TV address')
    validate.add_argument('ip', help='TV IP address')

    certificate = commands.add_parser('certificate', help='Create author/distributor certificates')
    certificate.add_argument('--email', required=True, help='Samsung account e-mail')
    certificate.add_argument('--token', required=True, help='Samsung account access token')
    certificate.add_argument('--user-id', required=True, help='Samsung account user id')
    device_group = certificate.add_mutually_exclusive_group(required=True)
    device_group.add_argument('--device-id', help='TV device id (DUID)')
    device_group.add_argument('--ip', help='Read the device id from the TV at this address')
    certificate.add_argument(
        '--no-register',
        action='store_true',
        help='Do not add the signing profile to the Tizen CLI'
    )

    patch = commands.add_parser('patch', help='Patch a Jellyfin package in place')
    patch.add_argument('archive', help='Path to the .wgt package')
    patch.add_argument(
        '--step',
        action='append',
        choices=[step.value for step in PatchStep],
        help='Run only this step (repeatable)'
    )

    install = commands.add_parser('install', help='Install a package on a TV')
    install.add_argument('package', help='Package URL or local path')
    install.add_argument('--ip', required=True, help='TV IP address')
    install.add_argument(
        '--no-patch',
        action='store_true',
        help='Install the package as downloaded'
    )

    commands.add_parser('logs', help='Listen for TV console output')

    return parser


def main() -> int:
    """Main application entry point."""
    app = Jellyfin2SamsungApp()

    try:
        parser = create_argument_parser()
        args = parser.parse_args()

        app.initialize(args.config, debug=args.debug, colored=not args.no_color)

        if args.command == 'scan':
            success = app.run_scan(args.include_virtual, args.identified_only)
        elif args.command == 'validate':
            success = app.run_validate(args.ip)
        elif args.command == 'certificate':
            success = app.run_certificate(
                args.email, args.token, args.user_id,
                device_id=args.device_id, ip_address=args.ip,
                register=not args.no_register,
            )
        elif args.command == 'patch':
            success = app.run_patch(args.archive, args.step)
        elif args.command == 'install':
            success = app.run_install(args.package, args.ip, patch=not args.no_patch)
        elif args.command == 'logs':
            success = app.run_logs()
        else:
            parser.print_help()
            success = False

        return 0 if success else 1

    except KeyboardInterrupt:
        if app.logger:
            app.logger.info("Interrupted by user")
        else:
            print("\nInterrupted by user")
        return 130

    except Exception as e:
        if app.logger:
            app.logger.error(f"Unexpected error: {e}")
            app.logger.debug(traceback.format_exc())
        else:
            print(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
