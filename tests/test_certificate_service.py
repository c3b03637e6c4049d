import datetime
import string
import xml.etree.ElementTree as ET
from unittest.mock import Mock

import pytest
import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from jellyfin2samsung.config.settings import CertificateConfig
from jellyfin2samsung.exceptions import EnrollmentError
from jellyfin2samsung.services.certificate_service import (
    IdentityIssuer, build_pem, generate_random_password, load_certificates
)


DEVICE_ID = "ABCDEF0123456789"
EMAIL = "owner@example.com"


def _name(common_name):
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _certificate(subject, issuer, public_key, signing_key, days=365):
    now = datetime.datetime.now(datetime.timezone.utc)
    return (x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(public_key)
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=days))
            .sign(signing_key, hashes.SHA256()))


@pytest.fixture(scope="module")
def vendor_ca():
    root_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    root = _certificate(_name("Test Root"), _name("Test Root"), root_key.public_key(), root_key)
    intermediate_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    intermediate = _certificate(_name("Test Developer CA"), root.subject,
                                intermediate_key.public_key(), root_key)
    return root, intermediate, intermediate_key


@pytest.fixture()
def enrollment_session(vendor_ca):
    root, intermediate, intermediate_key = vendor_ca
    session = Mock()

    def post(url, data, files, headers, timeout):
        response = Mock(ok=True, status_code=200, text="")
        if "/v1/" in url:
            response.content = b"<profile><device>" + DEVICE_ID.encode() + b"</device></profile>"
            return response

        csr = x509.load_pem_x509_csr(files["csr"][1])
        days = 30 if "authors" in url else 90
        leaf = _certificate(_name(url.rsplit("/", 1)[-1]), intermediate.subject,
                            csr.public_key(), intermediate_key, days=days)
        response.content = (leaf.public_bytes(serialization.Encoding.PEM)
                            + intermediate.public_bytes(serialization.Encoding.PEM)
                            + root.public_bytes(serialization.Encoding.PEM))
        return response

    session.post.side_effect = post
    return session


def test_generate_random_password_character_classes():
    for length in (12, 16, 40):
        password = generate_random_password(length)
        assert len(password) == length
        assert any(c in string.ascii_uppercase for c in password)
        assert any(c in string.ascii_lowercase for c in password)
        assert any(c in string.digits for c in password)
        assert set(password) <= set(string.ascii_letters + string.digits)


def test_generate_random_password_rejects_short_length():
    with pytest.raises(ValueError):
        generate_random_password(11)


def test_build_pem_framing():
    pem = build_pem(bytes(range(256)) * 3)
    lines = pem.splitlines()

    assert lines[0] == "-----BEGIN CERTIFICATE REQUEST-----"
    assert lines[-1] == "-----END CERTIFICATE REQUEST-----"
    assert all(0 < len(line) <= 64 for line in lines[1:-1])
    assert all(len(line) == 64 for line in lines[1:-2])
    assert pem.endswith("-----END CERTIFICATE REQUEST-----\n")


def test_issue_returns_pem_bound_to_device():
    issuer = IdentityIssuer(CertificateConfig())

    csr_pem, private_key = issuer.issue(EMAIL, DEVICE_ID)

    assert csr_pem.startswith("-----BEGIN CERTIFICATE REQUEST-----")
    assert csr_pem.rstrip("\n").endswith("-----END CERTIFICATE REQUEST-----")
    assert all(len(line) <= 64 for line in csr_pem.splitlines())
    assert private_key.key_size == 2048

    csr = x509.load_pem_x509_csr(csr_pem.encode())
    assert csr.is_signature_valid
    assert csr.subject.get_attributes_for_oid(NameOID.EMAIL_ADDRESS)[0].value == EMAIL
    san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert f"urn:platform:deviceid={DEVICE_ID}" in san.get_values_for_type(x509.UniformResourceIdentifier)
    with pytest.raises(x509.ExtensionNotFound):
        csr.extensions.get_extension_for_class(x509.KeyUsage)


def test_strict_distributor_request_extensions():
    issuer = IdentityIssuer(CertificateConfig())
    key = issuer.generate_key_pair()

    csr = x509.load_pem_x509_csr(
        issuer.build_distributor_request(key, EMAIL, DEVICE_ID, strict=True).encode())

    basic = csr.extensions.get_extension_for_class(x509.BasicConstraints)
    assert basic.critical and basic.value.ca is False
    usage = csr.extensions.get_extension_for_class(x509.KeyUsage)
    assert usage.critical and usage.value.digital_signature
    eku = csr.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    assert ExtendedKeyUsageOID.CODE_SIGNING in eku


def test_enroll_builds_independently_protected_bundles(enrollment_session, vendor_ca):
    _, intermediate, _ = vendor_ca
    issuer = IdentityIssuer(CertificateConfig(), session=enrollment_session)
    request = issuer.issue(EMAIL, DEVICE_ID)

    profile = issuer.enroll(request, "token-123", "user-456")

    assert enrollment_session.post.call_count == 3
    first_call = enrollment_session.post.call_args_list[0]
    assert first_call.kwargs["headers"]["Authorization"] == "Bearer token-123"
    assert first_call.kwargs["data"]["user_id"] == "user-456"

    assert profile.author_password != profile.distributor_password
    author = pkcs12.load_pkcs12(profile.author_p12, profile.author_password.encode())
    distributor = pkcs12.load_pkcs12(profile.distributor_p12, profile.distributor_password.encode())
    assert author.additional_certs[0].certificate == intermediate
    assert distributor.key.public_key().public_numbers() == request.private_key.public_key().public_numbers()

    # The earlier of the two leaf expiries wins
    remaining = profile.expires_at - datetime.datetime.now(datetime.timezone.utc)
    assert datetime.timedelta(days=29) < remaining <= datetime.timedelta(days=30)
    assert not profile.is_expired()
    assert profile.is_expired(profile.expires_at + datetime.timedelta(seconds=1))
    assert profile.device_profile_xml.startswith(b"<profile>")


def test_enroll_rejection_raises_enrollment_error():
    session = Mock()
    session.post.return_value = Mock(ok=False, status_code=401, text="unauthorized",
                                     reason="Unauthorized", content=b"")
    issuer = IdentityIssuer(CertificateConfig(), session=session)

    with pytest.raises(EnrollmentError) as excinfo:
        issuer.enroll(issuer.issue(EMAIL, DEVICE_ID), "bad-token", "user")
    assert excinfo.value.status_code == 401


def test_enroll_network_failure_raises_enrollment_error():
    session = Mock()
    session.post.side_effect = requests.exceptions.ConnectionError("offline")
    issuer = IdentityIssuer(CertificateConfig(), session=session)

    with pytest.raises(EnrollmentError):
        issuer.enroll(issuer.issue(EMAIL, DEVICE_ID), "token", "user")


def test_malformed_certificate_response_is_enrollment_error():
    with pytest.raises(EnrollmentError):
        load_certificates(b"definitely not a certificate")


def test_generate_and_register_profile(tmp_path, enrollment_session):
    issuer = IdentityIssuer(CertificateConfig(), session=enrollment_session)
    messages = []

    profile = issuer.generate_profile(DEVICE_ID, "token", "user", EMAIL,
                                      output_dir=tmp_path / "profile",
                                      progress_callback=messages.append)

    for name in ("author.p12", "distributor.p12", "author.csr", "distributor.csr",
                 "signed_author.cer", "signed_distributor.cer", "password.txt", "device-profile.xml"):
        assert (tmp_path / "profile" / name).is_file()
    assert not list((tmp_path / "profile").glob("*.tmp"))
    assert messages

    profiles_xml = tmp_path / "data" / "profile" / "profiles.xml"
    issuer.register_profile(profiles_xml, profile)
    issuer.register_profile(profiles_xml, profile)

    root = ET.parse(profiles_xml).getroot()
    assert root.get("active") == "Jelly2Sams"
    assert root.get("version") == "3.1"
    profiles = root.findall("profile")
    assert len(profiles) == 1
    items = profiles[0].findall("profileitem")
    assert [item.get("distributor") for item in items] == ["0", "1", "2"]
    assert items[0].get("key") == str(profile.author_p12_path)
    assert items[1].get("password") == profile.distributor_password
