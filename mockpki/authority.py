"""Root CA lifecycle: generate on first use, load on every later start.

:func:`bootstrap` is pure and performs no I/O. :func:`load_or_create` wires it
to a store, and :func:`init_process_authority` runs that once per process.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed448, ed25519
from cryptography.x509.oid import NameOID

from .errors import CorruptPersistedStateError, PKIError, SigningError
from .extensions import build_root_extensions
from .issuer import new_serial_number
from .keys import KeyPair, PrivateKey, generate_key_pair, private_key_to_pem
from .utils import fingerprint_pem

logger = logging.getLogger(__name__)

CA_VALIDITY_DAYS = 3650


def default_ca_subject(common_name: str = "Mock CA") -> x509.Name:
    return x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        x509.NameAttribute(NameOID.COUNTRY_NAME, u"DE"),
        x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, u"Mannheim"),
        x509.NameAttribute(NameOID.LOCALITY_NAME, u"Mannheim"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, u"Mock PKI"),
        x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, u"Mock PKI"),
    ])


@dataclass(frozen=True)
class CertificateAuthority:
    private_key: PrivateKey
    certificate: x509.Certificate
    # True when this process created the material and it still needs persisting.
    generated: bool = False

    @property
    def subject(self) -> x509.Name:
        return self.certificate.subject

    @property
    def public_key(self):
        return self.certificate.public_key()

    @property
    def signing_hash(self) -> Optional[hashes.HashAlgorithm]:
        if isinstance(self.private_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
            return None
        return hashes.SHA256()

    @property
    def cert_pem(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.PEM)

    def key_pem(self, passphrase: Optional[bytes] = None) -> bytes:
        return private_key_to_pem(self.private_key, passphrase)

    @property
    def fingerprint(self) -> str:
        return fingerprint_pem(self.cert_pem)


def _spki(key) -> bytes:
    return key.public_bytes(serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo)


def _load(key_pem: bytes, cert_pem: bytes, passphrase: Optional[bytes]) -> CertificateAuthority:
    try:
        cert = x509.load_pem_x509_certificate(cert_pem)
    except ValueError as e:
        raise CorruptPersistedStateError("persisted CA certificate is unreadable", details=str(e))
    try:
        key = serialization.load_pem_private_key(key_pem, password=passphrase)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CorruptPersistedStateError("persisted CA private key is unreadable", details=str(e))

    try:
        cert_key = cert.public_key()
    except (ValueError, UnsupportedAlgorithm) as e:
        raise CorruptPersistedStateError("persisted CA certificate key is unreadable", details=str(e))
    if _spki(cert_key) != _spki(key.public_key()):
        raise CorruptPersistedStateError("persisted CA private key does not match the CA certificate")
    try:
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except (x509.ExtensionNotFound, ValueError):
        bc = None
    if bc is None or not bc.ca:
        raise CorruptPersistedStateError("persisted CA certificate is not a CA certificate")
    try:
        cert.verify_directly_issued_by(cert)
    except (ValueError, TypeError, InvalidSignature) as e:
        raise CorruptPersistedStateError("persisted CA certificate is not validly self-signed", details=str(e))

    logger.info(f"Loaded CA {cert.subject.rfc4514_string()}")
    return CertificateAuthority(private_key=key, certificate=cert)


def _generate(key_type: str, common_name: str) -> CertificateAuthority:
    pair: KeyPair = generate_key_pair(key_type)
    subject = default_ca_subject(common_name)
    now = datetime.now(timezone.utc)

    builder = x509.CertificateBuilder().subject_name(
        subject
    ).issuer_name(
        subject
    ).public_key(
        pair.public_key
    ).serial_number(
        new_serial_number()
    ).not_valid_before(
        now
    ).not_valid_after(
        now + timedelta(days=CA_VALIDITY_DAYS)
    )
    for record in build_root_extensions(pair.public_key):
        builder = builder.add_extension(record.value, critical=record.critical)

    try:
        cert = builder.sign(pair.private_key, hashes.SHA256())
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise SigningError("failed to self-sign CA certificate", details=str(e))

    logger.info(f"Generated new CA {subject.rfc4514_string()} ({key_type})")
    return CertificateAuthority(private_key=pair.private_key, certificate=cert, generated=True)


def bootstrap(
    key_pem: Optional[bytes] = None,
    cert_pem: Optional[bytes] = None,
    passphrase: Optional[bytes] = None,
    key_type: str = "rsa",
    common_name: str = "Mock CA",
) -> CertificateAuthority:
    """Load the CA from persisted PEM bytes, or generate one when none exist.

    ``None`` means "not persisted". Any persisted material that cannot be
    loaded, including only one of the two blobs, raises
    :class:`CorruptPersistedStateError`; it is never replaced silently.
    """
    if key_pem is None and cert_pem is None:
        return _generate(key_type, common_name)
    if key_pem is None or cert_pem is None:
        missing = "private key" if key_pem is None else "certificate"
        raise CorruptPersistedStateError(f"persisted CA {missing} is missing while the other half exists")
    return _load(key_pem, cert_pem, passphrase)


def load_or_create(store, key_path: str, cert_path: str, passphrase: Optional[bytes] = None, **kwargs) -> CertificateAuthority:
    """Bootstrap from ``store`` and persist freshly generated material."""
    ca = bootstrap(store.read_bytes(key_path), store.read_bytes(cert_path), passphrase=passphrase, **kwargs)
    if ca.generated:
        store.write_bytes(key_path, ca.key_pem(passphrase), private=True)
        store.write_bytes(cert_path, ca.cert_pem)
        logger.info(f"Persisted CA key to {key_path} and certificate to {cert_path}")
    return ca


def load_persisted(store, key_path: str, cert_path: str, passphrase: Optional[bytes] = None) -> CertificateAuthority:
    """Load an existing CA from ``store``; never generates one.

    For processes that must trust the same root as the CA service.
    """
    key_pem = store.read_bytes(key_path)
    cert_pem = store.read_bytes(cert_path)
    if key_pem is None and cert_pem is None:
        raise FileNotFoundError(f"no CA found at {store.resolve(key_path)} and {store.resolve(cert_path)}")
    return bootstrap(key_pem, cert_pem, passphrase=passphrase)


_process_authority: Optional[CertificateAuthority] = None
_bootstrap_lock = threading.Lock()


def init_process_authority(store, key_path: str, cert_path: str, **kwargs) -> CertificateAuthority:
    """Bootstrap the process-wide CA exactly once.

    Must complete before any request is served. Later calls return the same
    instance without touching the store.
    """
    global _process_authority
    with _bootstrap_lock:
        if _process_authority is None:
            try:
                _process_authority = load_or_create(store, key_path, cert_path, **kwargs)
            except PKIError as e:
                if e.fatal:
                    logger.critical(f"CA bootstrap failed: {e.message} {e.details or ''}".rstrip())
                raise
    return _process_authority


def clear_process_authority() -> None:
    """Forget the process CA (shutdown and tests)."""
    global _process_authority
    with _bootstrap_lock:
        _process_authority = None
