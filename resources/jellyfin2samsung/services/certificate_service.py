"""
Certificate identity service for Jellyfin2Samsung.

This module issues the author and distributor identities a TV needs before it
will accept a side-loaded package: it generates an RSA key pair, builds the
PKCS#10 requests, enrolls them with the vendor CA and bundles the signed
certificates with the private key into password-protected PKCS#12 files.
"""

import os
import base64
import logging
import secrets
import string
import xml.etree.ElementTree as ET
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Tuple, Union

import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ..config.settings import CertificateConfig
from ..exceptions import EnrollmentError, KeyGenerationError
from ..models.certificate import CertificateProfile, CertificateRequest


KEY_SIZE = 2048
PEM_LINE_LENGTH = 64
BUNDLE_ALIAS = b"usercertificate"
PROFILES_VERSION = "3.1"

AUTHOR_CA_FILE = "vd_tizen_dev_author_ca.cer"
DISTRIBUTOR_CA_FILE = "vd_tizen_dev_public2.crt"

ProgressCallback = Callable[[str], None]

_UPPER = string.ascii_uppercase
_LOWER = string.ascii_lowercase
_DIGITS = string.digits
_ALPHABET = _UPPER + _LOWER + _DIGITS


def generate_random_password(length: int = 12) -> str:
    """
    Generate a bundle password.

    The result always holds at least one upper-case letter, one lower-case
    letter and one digit; the remaining positions come from the combined
    alphabet and the whole string is shuffled.

    Args:
        length: Password length, at least 12

    Returns:
        Random password string

    Raises:
        ValueError: If length is below 12
    """
    if length < 12:
        raise ValueError("Password must be at least 12 characters long.")

    rng = secrets.SystemRandom()
    chars = [rng.choice(_UPPER), rng.choice(_LOWER), rng.choice(_DIGITS)]
    chars.extend(rng.choice(_ALPHABET) for _ in range(length - 3))
    rng.shuffle(chars)
    return "".join(chars)


def build_pem(der: bytes, label: str = "CERTIFICATE REQUEST") -> str:
    """
    Frame DER bytes as PEM with 64-column base64 lines.

    The enrollment endpoint checks the framing byte for byte, so the
    delimiters and line width are written explicitly.
    """
    body = base64.b64encode(der).decode("ascii")
    lines = [body[i:i + PEM_LINE_LENGTH] for i in range(0, len(body), PEM_LINE_LENGTH)]
    return f"-----BEGIN {label}-----\n" + "\n".join(lines) + f"\n-----END {label}-----\n"


def load_certificates(data: bytes) -> List[x509.Certificate]:
    """
    Decode a certificate or chain returned by the CA.

    Args:
        data: PEM (one or more blocks) or a single DER certificate

    Returns:
        Certificates in the order they appear

    Raises:
        EnrollmentError: If the payload is not a certificate
    """
    try:
        if b"-----BEGIN" in data:
            certificates = x509.load_pem_x509_certificates(data)
        else:
            certificates = [x509.load_der_x509_certificate(data)]
    except ValueError as e:
        raise EnrollmentError(f"Malformed certificate in enrollment response: {e}") from e

    if not certificates:
        raise EnrollmentError("Enrollment response contained no certificate")
    return certificates


def is_matching_intermediate(candidate: x509.Certificate, leaf: x509.Certificate) -> bool:
    """True when candidate issued leaf and is not a self-signed root."""
    return candidate.subject != candidate.issuer and candidate.subject == leaf.issuer


def _write_atomic(path: Path, data: Union[bytes, str]) -> None:
    if isinstance(data, str):
        data = data.encode("utf-8")
    temp_path = path.with_name(path.name + ".tmp")
    try:
        with open(temp_path, "wb") as f:
            f.write(data)
        os.replace(temp_path, path)
    finally:
        if temp_path.exists():
            temp_path.unlink()


class IdentityIssuer:
    """Issues and enrolls vendor code-signing identities."""

    def __init__(self, config: Optional[CertificateConfig] = None,
                 session: Optional[requests.Session] = None,
                 profile_dir: Optional[Union[str, Path]] = None):
        """
        Initialize the issuer.

        Args:
            config: Certificate configuration section
            session: Optional requests session for enrollment calls
            profile_dir: Default directory generated profiles are written to
        """
        self.config = config or CertificateConfig()
        self.session = session or requests.Session()
        self.profile_dir = Path(profile_dir) if profile_dir else None
        self._logger = logging.getLogger(__name__)

    def generate_key_pair(self) -> rsa.RSAPrivateKey:
        """
        Generate a 2048-bit RSA key.

        Raises:
            KeyGenerationError: If the crypto backend cannot produce a key
        """
        try:
            return rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
        except (ValueError, TypeError, MemoryError) as e:
            raise KeyGenerationError(f"RSA key generation failed: {e}") from e

    def build_author_request(self, private_key: rsa.RSAPrivateKey) -> str:
        subject = x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, self.config.profile_name),
        ])
        csr = (x509.CertificateSigningRequestBuilder()
               .subject_name(subject)
               .sign(private_key, hashes.SHA256()))
        return build_pem(csr.public_bytes(serialization.Encoding.DER))

    def build_distributor_request(self, private_key: rsa.RSAPrivateKey,
                                  email: str, device_id: str,
                                  strict: Optional[bool] = None) -> str:
        """
        Build the device-bound distributor request.

        Args:
            private_key: Key the request is signed with
            email: Account e-mail placed in the subject
            device_id: TV identifier bound through the SAN extension
            strict: Also add basic constraints, key usage and code-signing EKU

        Returns:
            PEM-framed PKCS#10 request
        """
        if strict is None:
            strict = self.config.strict_extensions

        attributes = [x509.NameAttribute(NameOID.COMMON_NAME, "TizenSDK")]
        if email:
            attributes.append(x509.NameAttribute(NameOID.EMAIL_ADDRESS, email))

        builder = (x509.CertificateSigningRequestBuilder()
                   .subject_name(x509.Name(attributes))
                   .add_extension(x509.SubjectAlternativeName([
                       x509.UniformResourceIdentifier("URN:tizen:packageid="),
                       x509.UniformResourceIdentifier(f"urn:platform:deviceid={device_id}"),
                   ]), critical=False))

        if strict:
            builder = (builder
                       .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                       .add_extension(x509.KeyUsage(
                           digital_signature=True,
                           content_commitment=False,
                           key_encipherment=False,
                           data_encipherment=False,
                           key_agreement=False,
                           key_cert_sign=False,
                           crl_sign=False,
                           encipher_only=False,
                           decipher_only=False,
                       ), critical=True)
                       .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CODE_SIGNING]),
                                      critical=False))

        csr = builder.sign(private_key, hashes.SHA256())
        return build_pem(csr.public_bytes(serialization.Encoding.DER))

    def issue(self, email: str, device_id: str) -> CertificateRequest:
        """
        Generate a key pair and the requests built from it.

        Args:
            email: Account e-mail
            device_id: TV identifier (DUID)

        Returns:
            CertificateRequest; unpacks as (certificate_request_pem, private_key)

        Raises:
            KeyGenerationError: If key generation failed
        """
        private_key = self.generate_key_pair()
        self._logger.info(f"Generated {KEY_SIZE}-bit key pair for device {device_id}")

        return CertificateRequest(
            certificate_request_pem=self.build_distributor_request(private_key, email, device_id),
            private_key=private_key,
            author_request_pem=self.build_author_request(private_key),
            email=email,
            device_id=device_id,
        )

    def _post_request(self, url: str, csr_pem: str, filename: str,
                      auth_token: str, user_id: str, distributor: bool) -> bytes:
        data = {
            "access_token": auth_token,
            "user_id": user_id,
            "platform": "VD",
        }
        if distributor:
            data["privilege_level"] = "Public"
            data["developer_type"] = "Individual"

        files = {"csr": (filename, csr_pem.encode("ascii"), "application/octet-stream")}
        headers = {"Authorization": f"Bearer {auth_token}"}

        self._logger.debug(f"Posting {filename} to {url}")
        try:
            response = self.session.post(url, data=data, files=files, headers=headers,
                                         timeout=self.config.request_timeout)
        except requests.exceptions.RequestException as e:
            raise EnrollmentError(f"Enrollment request to {url} failed: {e}") from e

        if not response.ok:
            detail = response.text[:200] if response.text else response.reason
            raise EnrollmentError(
                f"Enrollment rejected by {url} (HTTP {response.status_code}): {detail}",
                status_code=response.status_code,
            )

        if not response.content:
            raise EnrollmentError(f"Empty enrollment response from {url}")
        return response.content

    def _find_intermediate(self, leaf: x509.Certificate,
                           extra: Iterable[x509.Certificate],
                           ca_dir: Optional[Path],
                           preferred_file: str) -> x509.Certificate:
        candidates = list(extra)

        if ca_dir and ca_dir.is_dir():
            preferred = ca_dir / preferred_file
            paths = [preferred] if preferred.exists() else []
            paths.extend(p for p in sorted(ca_dir.iterdir())
                         if p.suffix.lower() in (".cer", ".crt") and p != preferred)
            for path in paths:
                try:
                    candidates.extend(load_certificates(path.read_bytes()))
                except (OSError, EnrollmentError) as e:
                    self._logger.warning(f"Ignoring unreadable CA file {path}: {e}")

        for candidate in candidates:
            if is_matching_intermediate(candidate, leaf):
                return candidate

        raise EnrollmentError(
            f"No matching intermediate certificate found. "
            f"Expected subject: '{leaf.issuer.rfc4514_string()}'"
        )

    def _bundle(self, private_key: rsa.RSAPrivateKey, leaf: x509.Certificate,
                intermediate: x509.Certificate, password: str) -> bytes:
        return pkcs12.serialize_key_and_certificates(
            name=BUNDLE_ALIAS,
            key=private_key,
            cert=leaf,
            cas=[intermediate],
            encryption_algorithm=serialization.BestAvailableEncryption(password.encode("utf-8")),
        )

    def enroll(self, request: CertificateRequest, auth_token: str, user_id: str,
               ca_dir: Optional[Union[str, Path]] = None) -> CertificateProfile:
        """
        Exchange the requests for signed certificates and build the bundles.

        Args:
            request: Result of issue()
            auth_token: Vendor account access token
            user_id: Vendor account user id
            ca_dir: Directory holding the vendor intermediate certificates

        Returns:
            CertificateProfile holding both encrypted bundles

        Raises:
            EnrollmentError: On network failure, rejection or a malformed response
        """
        if not auth_token or not user_id:
            raise EnrollmentError("An access token and user id are required for enrollment")

        ca_path = Path(ca_dir) if ca_dir else (Path(self.config.ca_dir) if self.config.ca_dir else None)

        author_bytes = self._post_request(
            self.config.author_endpoint, request.author_request_pem or request.certificate_request_pem,
            "author.csr", auth_token, user_id, distributor=False)
        device_profile_xml = self._post_request(
            self.config.distributor_endpoint_v1, request.certificate_request_pem,
            "distributor.csr", auth_token, user_id, distributor=True)
        distributor_bytes = self._post_request(
            self.config.distributor_endpoint_v3, request.certificate_request_pem,
            "distributor.csr", auth_token, user_id, distributor=True)

        author_leaf, *author_chain = load_certificates(author_bytes)
        distributor_leaf, *distributor_chain = load_certificates(distributor_bytes)

        author_ca = self._find_intermediate(author_leaf, author_chain, ca_path, AUTHOR_CA_FILE)
        distributor_ca = self._find_intermediate(distributor_leaf, distributor_chain, ca_path,
                                                 DISTRIBUTOR_CA_FILE)

        author_password = generate_random_password(self.config.password_length)
        distributor_password = generate_random_password(self.config.password_length)

        profile = CertificateProfile(
            device_id=request.device_id,
            author_p12=self._bundle(request.private_key, author_leaf, author_ca, author_password),
            distributor_p12=self._bundle(request.private_key, distributor_leaf, distributor_ca,
                                         distributor_password),
            author_password=author_password,
            distributor_password=distributor_password,
            expires_at=min(author_leaf.not_valid_after_utc, distributor_leaf.not_valid_after_utc),
            certificate_request_pem=request.certificate_request_pem,
            author_certificate_pem=author_leaf.public_bytes(serialization.Encoding.PEM).decode("ascii"),
            distributor_certificate_pem=distributor_leaf.public_bytes(
                serialization.Encoding.PEM).decode("ascii"),
            device_profile_xml=device_profile_xml,
        )
        self._logger.info(f"Enrolled identity for device {request.device_id}, "
                          f"valid until {profile.expires_at:%Y-%m-%d}")
        return profile

    def generate_profile(self, device_id: str, auth_token: str, user_id: str, email: str,
                         output_dir: Optional[Union[str, Path]] = None,
                         ca_dir: Optional[Union[str, Path]] = None,
                         progress_callback: Optional[ProgressCallback] = None) -> CertificateProfile:
        """
        Issue, enroll and persist a complete identity for one device.

        Args:
            device_id: TV identifier (DUID)
            auth_token: Vendor account access token
            user_id: Vendor account user id
            email: Account e-mail
            output_dir: Directory the bundles are written to
            ca_dir: Directory holding the vendor intermediate certificates
            progress_callback: Optional callback receiving status messages

        Returns:
            CertificateProfile with output_dir set

        Raises:
            ValueError: If no output directory is known
            KeyGenerationError: If key generation failed
            EnrollmentError: If enrollment failed
        """
        target = Path(output_dir) if output_dir else self.profile_dir
        if target is None:
            raise ValueError("Output path cannot be empty")

        def report(message: str) -> None:
            self._logger.info(message)
            if progress_callback:
                progress_callback(message)

        report("Generating key pair and certificate requests")
        request = self.issue(email, device_id)

        report("Requesting signed certificates")
        profile = self.enroll(request, auth_token, user_id, ca_dir=ca_dir)

        report(f"Writing identity bundles to {target}")
        target.mkdir(parents=True, exist_ok=True)
        outputs: List[Tuple[str, Union[bytes, str]]] = [
            ("author.csr", request.author_request_pem),
            ("distributor.csr", request.certificate_request_pem),
            ("signed_author.cer", profile.author_certificate_pem),
            ("signed_distributor.cer", profile.distributor_certificate_pem),
            ("author.p12", profile.author_p12),
            ("distributor.p12", profile.distributor_p12),
            ("password.txt", f"author={profile.author_password}\n"
                             f"distributor={profile.distributor_password}\n"),
        ]
        if profile.device_profile_xml:
            outputs.append(("device-profile.xml", profile.device_profile_xml))

        for filename, content in outputs:
            _write_atomic(target / filename, content)

        return replace(profile, output_dir=target)

    def register_profile(self, profiles_xml: Union[str, Path], profile: CertificateProfile,
                         profile_name: Optional[str] = None) -> Path:
        """
        Insert or replace a signing profile in the vendor CLI's profiles.xml.

        Args:
            profiles_xml: Path to profiles.xml (created if missing)
            profile: Profile previously written by generate_profile
            profile_name: Profile name, defaults to the configured one

        Returns:
            Path of the written profiles.xml
        """
        if profile.output_dir is None:
            raise ValueError("Profile has not been written to disk")

        profiles_xml = Path(profiles_xml)
        name = profile_name or self.config.profile_name

        if profiles_xml.exists():
            try:
                root = ET.parse(profiles_xml).getroot()
            except ET.ParseError as e:
                self._logger.warning(f"Replacing unreadable {profiles_xml}: {e}")
                root = ET.Element("profiles")
        else:
            root = ET.Element("profiles")
        root.set("version", PROFILES_VERSION)

        element = ET.Element("profile", {"name": name})
        items = (
            ("0", str(profile.author_p12_path), profile.author_password),
            ("1", str(profile.distributor_p12_path), profile.distributor_password),
            ("2", "", ""),
        )
        for distributor, key, password in items:
            ET.SubElement(element, "profileitem", {
                "ca": "",
                "distributor": distributor,
                "key": key,
                "password": password,
                "rootca": "",
            })

        existing = next((p for p in root.findall("profile") if p.get("name") == name), None)
        if existing is None:
            root.append(element)
        else:
            index = list(root).index(existing)
            root.remove(existing)
            root.insert(index, element)
        root.set("active", name)

        profiles_xml.parent.mkdir(parents=True, exist_ok=True)
        ET.indent(root)
        _write_atomic(profiles_xml, ET.tostring(root, encoding="utf-8", xml_declaration=True))
        self._logger.info(f"Registered signing profile '{name}' in {profiles_xml}")
        return profiles_xml


def configure_from_config(config: Any) -> IdentityIssuer:
    """
    Build an issuer from application config.

    Args:
        config: Application configuration object

    Returns:
        Configured IdentityIssuer
    """
    return IdentityIssuer(config=config.certificates, profile_dir=config.get_profile_directory())
