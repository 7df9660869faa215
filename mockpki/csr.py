"""Certificate signing request generation and verification.

:class:`CSRVerifier` has two call modes. :meth:`CSRVerifier.verify` is
verify-and-use: it returns a :class:`VerificationResult` whose value may be
handed to the issuer only when the self-signature checked out.
:meth:`CSRVerifier.inspect` is verify-and-report: it describes any CSR,
including ones that fail verification, and never raises on a bad signature.
"""
from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed448, ed25519

from .errors import (
    MalformedInputError,
    PKIError,
    SignatureInvalidError,
    UnsupportedAlgorithmError,
    VerificationResult,
)
from .keys import PrivateKey, PublicKey, check_supported, key_description, load_private_key
from .subject import SubjectAttributes

logger = logging.getLogger(__name__)

_PEM_RE = re.compile(
    r"-----BEGIN (?:NEW )?CERTIFICATE REQUEST-----(.*?)-----END (?:NEW )?CERTIFICATE REQUEST-----",
    re.DOTALL,
)


@dataclass(frozen=True)
class VerifiedRequest:
    """A CSR whose self-signature has been checked against its own public key."""

    subject: SubjectAttributes
    public_key: PublicKey
    requested_is_ca: bool = False
    verified: bool = True


@dataclass(frozen=True)
class RawPublicKeyRequest:
    """A bare public key with subject attributes.

    Carries no proof that the requester holds the private key.
    """

    subject: SubjectAttributes
    public_key: PublicKey
    verified: bool = False


def pem_to_der(pem: Union[str, bytes]) -> bytes:
    """Strip the PEM framing of a CSR and base64-decode the body."""
    if isinstance(pem, bytes):
        try:
            pem = pem.decode("ascii")
        except UnicodeDecodeError:
            raise MalformedInputError("CSR PEM must be ASCII text")
    match = _PEM_RE.search(pem)
    if match is None:
        raise MalformedInputError("CSR is missing its PEM header or footer")
    body = re.sub(r"\s+", "", match.group(1))
    if not body:
        raise MalformedInputError("CSR PEM body is empty")
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedInputError("CSR body is not valid base64", details=str(e))


def _parse(pem: Union[str, bytes]) -> x509.CertificateSigningRequest:
    der = pem_to_der(pem)
    try:
        return x509.load_der_x509_csr(der)
    except ValueError as e:
        raise MalformedInputError("CSR DER structure is malformed", details=str(e))


def _public_key(csr: x509.CertificateSigningRequest) -> PublicKey:
    try:
        key = csr.public_key()
    except UnsupportedAlgorithm as e:
        raise UnsupportedAlgorithmError(f"unsupported CSR public key algorithm: {e}")
    except ValueError as e:
        raise MalformedInputError("CSR public key could not be decoded", details=str(e))
    check_supported(key)
    return key


def _signature_valid(csr: x509.CertificateSigningRequest) -> bool:
    try:
        return csr.is_signature_valid
    except UnsupportedAlgorithm as e:
        raise UnsupportedAlgorithmError(f"unsupported CSR signature algorithm: {e}")


def _requests_ca(csr: x509.CertificateSigningRequest) -> bool:
    try:
        bc = csr.extensions.get_extension_for_class(x509.BasicConstraints)
    except x509.ExtensionNotFound:
        return False
    except ValueError as e:
        raise MalformedInputError("CSR extension request is malformed", details=str(e))
    return bool(bc.value.ca)


class CSRVerifier:
    """Parses PEM CSRs and checks proof of private key possession."""

    def verify(self, pem: Union[str, bytes]) -> VerificationResult[VerifiedRequest]:
        try:
            csr = _parse(pem)
            public_key = _public_key(csr)
            if not _signature_valid(csr):
                raise SignatureInvalidError("CSR signature does not verify against its public key")
            # Subject fields are only read once possession has been proven.
            request = VerifiedRequest(
                subject=SubjectAttributes.from_name(csr.subject),
                public_key=public_key,
                requested_is_ca=_requests_ca(csr),
            )
        except PKIError as e:
            logger.info(f"CSR rejected ({e.kind.value}): {e.message}")
            return VerificationResult.failure(e)
        return VerificationResult.success(request)

    def inspect(self, pem: Union[str, bytes]) -> dict:
        """Describe a CSR for auditing. Verification failures are reported, not raised."""
        try:
            der = pem_to_der(pem)
            csr = _parse(pem)
        except PKIError as e:
            return {
                "isValid": False,
                "error": e.message,
                "kind": e.kind.value,
                "details": {
                    "errorType": "CSR Parsing Error",
                    "suggestion": "Check if the CSR is properly formatted",
                },
            }

        analysis = {
            "subject": {attr.rfc4514_attribute_name: attr.value for attr in csr.subject},
            "signature": {
                "algorithm": csr.signature_algorithm_oid.dotted_string,
                "rawSignature": base64.b64encode(csr.signature).decode("ascii"),
            },
            "attributes": [
                {"oid": attr.oid.dotted_string, "value": attr.value.decode("utf-8", "replace")}
                for attr in csr.attributes
            ],
        }
        problems = []
        try:
            analysis["publicKey"] = key_description(_public_key(csr))
        except PKIError as e:
            problems.append({"kind": e.kind.value, "error": e.message})
        try:
            analysis["signature"]["isValid"] = _signature_valid(csr)
        except PKIError as e:
            analysis["signature"]["isValid"] = False
            problems.append({"kind": e.kind.value, "error": e.message})
        try:
            SubjectAttributes.from_name(csr.subject)
        except PKIError as e:
            problems.append({"kind": e.kind.value, "error": e.message})

        return {
            "isValid": analysis["signature"]["isValid"] and not problems,
            "analysis": analysis,
            "problems": problems,
            "details": {
                "totalLength": len(der),
                "format": "PKCS#10",
                "encoding": "DER (Base64 encoded)",
            },
        }


def generate_csr(private_key: Union[PrivateKey, bytes], subject: SubjectAttributes) -> bytes:
    """Generate a PEM Certificate Signing Request.

    :param private_key: key object or PEM bytes
    :param subject: subject attributes for the request
    :return: CSR bytes (PEM)
    """
    if isinstance(private_key, bytes):
        private_key = load_private_key(private_key)
    if isinstance(private_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
        algorithm = None
    else:
        algorithm = hashes.SHA256()
    csr = x509.CertificateSigningRequestBuilder().subject_name(subject.to_name()).sign(private_key, algorithm)
    return csr.public_bytes(serialization.Encoding.PEM)
