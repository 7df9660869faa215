"""Leaf certificate issuance."""
from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Iterable, Optional, Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from .csr import RawPublicKeyRequest, VerifiedRequest
from .errors import SignatureInvalidError, SigningError
from .extensions import build_leaf_extensions
from .keys import check_supported
from .payload import AuthorizationPayload

if TYPE_CHECKING:
    from .authority import CertificateAuthority

logger = logging.getLogger(__name__)

LEAF_VALIDITY_DAYS = 365
SERIAL_BYTES = 16


def new_serial_number() -> int:
    """16 random bytes as a positive integer.

    Uniqueness is probabilistic only; no issued-serial ledger is kept.
    """
    return int.from_bytes(os.urandom(SERIAL_BYTES), "big") or 1


class CertificateIssuer:
    def __init__(self, validity_days: int = LEAF_VALIDITY_DAYS):
        self.validity_days = validity_days

    def build(
        self,
        ca: "CertificateAuthority",
        request: Union[VerifiedRequest, RawPublicKeyRequest],
        payload: AuthorizationPayload,
        subject_alt_names: Optional[Iterable[str]] = None,
    ) -> x509.Certificate:
        if isinstance(request, VerifiedRequest):
            if not request.verified:
                raise SignatureInvalidError("request has not passed CSR verification")
            requested_is_ca = request.requested_is_ca
            logger.info(f"Issuing certificate for verified CSR: CN={request.subject.commonName}")
        elif isinstance(request, RawPublicKeyRequest):
            requested_is_ca = False
            logger.warning(
                f"Issuing certificate for bare public key without proof of possession "
                f"(lower assurance): CN={request.subject.commonName}"
            )
        else:
            raise TypeError(f"unsupported request type: {type(request).__name__}")

        check_supported(request.public_key)
        subject_name = request.subject.to_name()

        records = build_leaf_extensions(
            ca.public_key,
            request.public_key,
            payload,
            requested_is_ca=requested_is_ca,
            subject_alt_names=subject_alt_names,
        )

        now = datetime.now(timezone.utc)
        builder = x509.CertificateBuilder().subject_name(
            subject_name
        ).issuer_name(
            ca.subject
        ).public_key(
            request.public_key
        ).serial_number(
            new_serial_number()
        ).not_valid_before(
            now
        ).not_valid_after(
            now + timedelta(days=self.validity_days)
        )
        for record in records:
            builder = builder.add_extension(record.value, critical=record.critical)

        # Subject and extensions are already validated; only the CA key can fail here.
        try:
            cert = builder.sign(ca.private_key, ca.signing_hash)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            logger.critical(f"CA signing failed, CA key material may be corrupt: {e}")
            raise SigningError("failed to sign certificate with CA key", details=str(e))

        logger.info(f"Issued certificate serial={cert.serial_number:x} CN={request.subject.commonName}")
        return cert

    def issue(
        self,
        ca: "CertificateAuthority",
        request: Union[VerifiedRequest, RawPublicKeyRequest],
        payload: AuthorizationPayload,
        subject_alt_names: Optional[Iterable[str]] = None,
    ) -> bytes:
        """Sign ``request`` with the CA key and return the certificate as PEM."""
        cert = self.build(ca, request, payload, subject_alt_names=subject_alt_names)
        return cert.public_bytes(serialization.Encoding.PEM)
