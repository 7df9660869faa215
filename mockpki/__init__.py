"""mockpki: a minimal certificate authority with embedded authorization data."""

from .authority import CertificateAuthority, bootstrap, init_process_authority, load_or_create, load_persisted
from .csr import CSRVerifier, RawPublicKeyRequest, VerifiedRequest, generate_csr
from .errors import ErrorKind, PKIError, VerificationResult
from .extensions import build_leaf_extensions, extract_payload
from .issuer import CertificateIssuer
from .payload import AuthorizationPayload
from .store import FileStore
from .subject import SubjectAttributes
from .utils import cert_pem_to_der, fingerprint_pem, load_cert_pem

__all__ = [
    "AuthorizationPayload",
    "CSRVerifier",
    "CertificateAuthority",
    "CertificateIssuer",
    "ErrorKind",
    "FileStore",
    "PKIError",
    "RawPublicKeyRequest",
    "SubjectAttributes",
    "VerificationResult",
    "VerifiedRequest",
    "bootstrap",
    "build_leaf_extensions",
    "cert_pem_to_der",
    "extract_payload",
    "fingerprint_pem",
    "generate_csr",
    "init_process_authority",
    "load_cert_pem",
    "load_or_create",
    "load_persisted",
]
