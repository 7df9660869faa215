import base64
import warnings

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.name import _ASN1Type
from cryptography.x509.oid import NameOID

from mockpki.authority import bootstrap
from mockpki.payload import AuthorizationPayload


@pytest.fixture(scope="session")
def authority():
    return bootstrap(common_name="Test CA")


@pytest.fixture(scope="session")
def other_authority():
    return bootstrap(common_name="Other CA")


@pytest.fixture(scope="session")
def client_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def payload():
    return AuthorizationPayload(identifier="SC123456", role="technician", timestamp="2026-01-02T03:04:05.678Z")


def der_to_csr_pem(der: bytes) -> str:
    body = base64.b64encode(der).decode("ascii")
    lines = [body[i:i + 64] for i in range(0, len(body), 64)]
    return "-----BEGIN CERTIFICATE REQUEST-----\n" + "\n".join(lines) + "\n-----END CERTIFICATE REQUEST-----\n"


def private_pem(key) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def utf8_subject_csr(key, oid, value) -> bytes:
    """CSR whose subject carries ``value`` as a UTF8String, skipping the usual length and charset checks."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        name = x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, "Test Client"),
            x509.NameAttribute(oid, value, _ASN1Type.UTF8String, _validate=False),
        ])
    csr = x509.CertificateSigningRequestBuilder().subject_name(name).sign(key, hashes.SHA256())
    return csr.public_bytes(serialization.Encoding.PEM)
