"""
Device model for Jellyfin2Samsung.

A NetworkDevice is produced by the scanner for every host that answered on
the developer port. Records are immutable and are thrown away whenever a new
scan runs.
"""

import html
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class NetworkDevice:
    """A TV found on the local network."""
    ip_address: str
    device_name: Optional[str] = None
    model_name: Optional[str] = None
    manufacturer: Optional[str] = None
    developer_mode: bool = False
    developer_ip: Optional[str] = None

    @property
    def is_identified(self) -> bool:
        """True when the device-info endpoint answered with a name."""
        return bool(self.device_name)

    @property
    def display_text(self) -> str:
        if self.device_name and self.model_name:
            return f"{self.ip_address} | {self.model_name} | {self.device_name}"
        if self.device_name:
            return f"{self.ip_address} | {self.device_name}"
        if self.manufacturer:
            return f"{self.ip_address} | {self.manufacturer}"
        return self.ip_address

    @classmethod
    def address_only(cls, ip_address: str) -> 'NetworkDevice':
        return cls(ip_address=ip_address)

    @classmethod
    def from_device_info(cls, ip_address: str, payload: Dict[str, Any]) -> 'NetworkDevice':
        """
        Build a device from the TV's /api/v2/ JSON body.

        Args:
            ip_address: Address that was probed
            payload: Decoded JSON object

        Returns:
            NetworkDevice, address-only if the body has no "device" object;
            fields that are not strings are left empty
        """
        device = payload.get("device") if isinstance(payload, dict) else None
        if not isinstance(device, dict):
            return cls.address_only(ip_address)

        name = _text(device.get("name"))
        return cls(
            ip_address=_text(device.get("ip")) or ip_address,
            device_name=html.unescape(name) if name else None,
            model_name=_text(device.get("modelName")),
            manufacturer=_text(device.get("type")),
            developer_mode=_parse_flag(device.get("developerMode")),
            developer_ip=_text(device.get("developerIP")),
        )

    def __str__(self) -> str:
        return self.display_text


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _parse_flag(value: Any) -> bool:
    # The TV reports developerMode as "0"/"1"
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "on")
