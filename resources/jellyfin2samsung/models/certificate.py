"""
Certificate identity models for Jellyfin2Samsung.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives.asymmetric import rsa


@dataclass(frozen=True)
class CertificateRequest:
    """
    A freshly generated key pair and the PKCS#10 requests built from it.

    The private key lives only here and in the final encrypted bundles.
    Iterating yields (certificate_request_pem, private_key).
    """
    certificate_request_pem: str
    private_key: rsa.RSAPrivateKey = field(repr=False)
    author_request_pem: str = ""
    email: str = ""
    device_id: str = ""

    def __iter__(self):
        yield self.certificate_request_pem
        yield self.private_key


@dataclass(frozen=True)
class CertificateProfile:
    """Signed author/distributor identity bundles for one device and account."""
    device_id: str
    author_p12: bytes = field(repr=False)
    distributor_p12: bytes = field(repr=False)
    author_password: str = field(repr=False)
    distributor_password: str = field(repr=False)
    expires_at: datetime
    certificate_request_pem: str
    author_certificate_pem: str = ""
    distributor_certificate_pem: str = ""
    device_profile_xml: Optional[bytes] = field(default=None, repr=False)
    output_dir: Optional[Path] = None

    @property
    def author_p12_path(self) -> Optional[Path]:
        return self.output_dir / "author.p12" if self.output_dir else None

    @property
    def distributor_p12_path(self) -> Optional[Path]:
        return self.output_dir / "distributor.p12" if self.output_dir else None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(self.expires_at.tzinfo)
        return now >= self.expires_at
