"""
Network discovery service for Jellyfin2Samsung.

This module finds TVs on the local network: it derives /24 ranges from the
machine's IPv4 interfaces, probes the developer port on every address with
bounded parallelism, and asks each responding host for its device info.
"""

import socket
import logging
import ipaddress
from concurrent.futures import ThreadPoolExecutor, FIRST_COMPLETED, wait
from typing import Any, Iterable, List, Optional

import psutil
import requests

from ..config.settings import NetworkConfig
from ..exceptions import ScanCancelledError
from ..models.device import NetworkDevice
from ..utils.cancellation import CancellationToken
from ..utils.validators import get_validator


class DeviceScanner:
    """
    Concurrent LAN scanner for developer-enabled TVs.

    Probes run on a thread pool whose size is the concurrency limit, so no
    more than that many connections are ever open at once. A single
    CancellationToken stops the scan; whatever was resolved before that
    point is returned.
    """

    # How often the coordinating thread re-checks the cancellation token
    _POLL_INTERVAL = 0.05

    def __init__(self, config: Optional[NetworkConfig] = None,
                 session: Optional[requests.Session] = None):
        """
        Initialize the scanner.

        Args:
            config: Network configuration section
            session: Optional requests session used for device-info calls
        """
        self.config = config or NetworkConfig()
        self.session = session or requests.Session()
        self._logger = logging.getLogger(__name__)

    def get_candidate_addresses(self, include_virtual_interfaces: bool = False) -> List[str]:
        """
        Derive the addresses to probe from the local IPv4 interfaces.

        Args:
            include_virtual_interfaces: Also scan host-only/VPN/container adapters

        Returns:
            De-duplicated list of dotted-quad host addresses
        """
        stats = psutil.net_if_stats()
        addresses: List[str] = []
        seen_networks = set()

        for name, interface_addresses in psutil.net_if_addrs().items():
            if name in stats and not stats[name].isup:
                continue
            if not include_virtual_interfaces and self._is_virtual_interface(name):
                self._logger.debug(f"Skipping virtual interface {name}")
                continue

            for address in interface_addresses:
                if address.family != socket.AF_INET:
                    continue
                try:
                    ip = ipaddress.IPv4Address(address.address)
                except ipaddress.AddressValueError:
                    continue
                if ip.is_loopback or ip.is_link_local:
                    continue

                network = ipaddress.IPv4Network(f"{ip}/24", strict=False)
                if network in seen_networks:
                    continue
                seen_networks.add(network)
                self._logger.debug(f"Scanning {network} via {name}")
                addresses.extend(str(host) for host in network.hosts())

        return addresses

    def _is_virtual_interface(self, name: str) -> bool:
        lowered = name.lower()
        return any(pattern.lower() in lowered for pattern in self.config.excluded_interface_patterns)

    def is_port_open(self, ip_address: str, port: int, timeout: float) -> bool:
        """Attempt a TCP connection; any failure counts as closed."""
        try:
            with socket.create_connection((ip_address, port), timeout=timeout):
                return True
        except OSError:
            return False

    def fetch_device_info(self, ip_address: str) -> NetworkDevice:
        """
        Query the TV's device-info endpoint.

        Never raises: an unreachable endpoint or an unparseable body yields an
        address-only record.
        """
        url = f"http://{ip_address}:{self.config.device_info_port}{self.config.device_info_path}"
        try:
            response = self.session.get(url, timeout=self.config.http_timeout)
            response.raise_for_status()
            payload: Any = response.json()
        except requests.exceptions.RequestException as e:
            self._logger.debug(f"Device info request failed for {ip_address}: {e}")
            return NetworkDevice.address_only(ip_address)
        except ValueError as e:
            self._logger.debug(f"Device info for {ip_address} is not valid JSON: {e}")
            return NetworkDevice.address_only(ip_address)

        return NetworkDevice.from_device_info(ip_address, payload)

    def _probe_host(self, ip_address: str, timeout: float,
                    token: CancellationToken) -> Optional[NetworkDevice]:
        if token.is_cancelled:
            return None
        if not self.is_port_open(ip_address, self.config.developer_port, timeout):
            return None
        if token.is_cancelled:
            return None
        self._logger.debug(f"Developer port open on {ip_address}")
        return self.fetch_device_info(ip_address)

    def scan(self, timeout: Optional[float] = None,
             concurrency_limit: Optional[int] = None,
             include_virtual_interfaces: Optional[bool] = None,
             cancellation_token: Optional[CancellationToken] = None,
             include_unidentified: bool = True,
             addresses: Optional[Iterable[str]] = None) -> List[NetworkDevice]:
        """
        Scan the local network for TVs.

        Args:
            timeout: Per-attempt connection timeout in seconds
            concurrency_limit: Maximum number of simultaneous probes
            include_virtual_interfaces: Derive ranges from virtual adapters too
            cancellation_token: Token that aborts the scan
            include_unidentified: Keep address-only records for hosts whose
                info endpoint did not answer
            addresses: Explicit addresses to probe instead of interface ranges

        Returns:
            Devices found so far; partial if the scan was cancelled
        """
        timeout = timeout if timeout is not None else self.config.scan_timeout
        limit = concurrency_limit or self.config.max_parallel_scans
        if include_virtual_interfaces is None:
            include_virtual_interfaces = self.config.include_virtual_interfaces
        token = cancellation_token or CancellationToken()

        if addresses is None:
            candidates = self.get_candidate_addresses(include_virtual_interfaces)
        else:
            candidates = list(addresses)

        self._logger.info(f"Scanning {len(candidates)} addresses "
                          f"(port {self.config.developer_port}, {limit} parallel)")

        devices: List[NetworkDevice] = []
        executor = ThreadPoolExecutor(max_workers=limit, thread_name_prefix="device-scan")
        try:
            pending = set()
            for ip_address in candidates:
                if token.is_cancelled:
                    break
                pending.add(executor.submit(self._probe_host, ip_address, timeout, token))

            while pending and not token.is_cancelled:
                done, pending = wait(pending, timeout=self._POLL_INTERVAL,
                                     return_when=FIRST_COMPLETED)
                for future in done:
                    try:
                        device = future.result()
                    except Exception as e:
                        # A single host must never abort the scan
                        self._logger.debug(f"Probe failed: {e}")
                        continue
                    if device is None:
                        continue
                    if device.is_identified or include_unidentified:
                        devices.append(device)
        finally:
            # On cancellation, queued probes are dropped and running ones are
            # left to finish in the background
            executor.shutdown(wait=not token.is_cancelled, cancel_futures=True)

        if token.is_cancelled:
            self._logger.info(f"Scan cancelled, returning {len(devices)} devices found so far")
        else:
            self._logger.info(f"Scan complete, found {len(devices)} devices")
        return devices

    def validate_manual_address(self, ip_address: str,
                                timeout: Optional[float] = None,
                                cancellation_token: Optional[CancellationToken] = None
                                ) -> Optional[NetworkDevice]:
        """
        Probe a single user-supplied address.

        Args:
            ip_address: Address to validate
            timeout: Connection timeout in seconds
            cancellation_token: Token that aborts the validation

        Returns:
            NetworkDevice if the developer port answered, otherwise None

        Raises:
            ValueError: If the address is malformed
            ScanCancelledError: If cancelled before a result exists
        """
        result = get_validator().validate_ip_address(ip_address)
        if not result:
            raise ValueError(result.message)

        ip_address = ip_address.strip()
        timeout = timeout if timeout is not None else self.config.scan_timeout
        token = cancellation_token or CancellationToken()

        if token.is_cancelled:
            raise ScanCancelledError(f"Validation of {ip_address} cancelled")

        if not self.is_port_open(ip_address, self.config.developer_port, timeout):
            self._logger.info(f"Developer port {self.config.developer_port} closed on {ip_address}")
            return None

        if token.is_cancelled:
            raise ScanCancelledError(f"Validation of {ip_address} cancelled")

        return self.fetch_device_info(ip_address)


def configure_from_config(config: Any) -> DeviceScanner:
    """
    Build a scanner from application config.

    Args:
        config: Application configuration object

    Returns:
        Configured DeviceScanner
    """
    return DeviceScanner(config=config.network)
