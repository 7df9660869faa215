"""Utility helpers for certificate handling and fingerprinting."""
from __future__ import annotations

import os
import hashlib
from typing import Union
from datetime import datetime, timezone

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .errors import MalformedInputError


PEM_CERT_HEADER = "-----BEGIN CERTIFICATE-----"


def load_cert_pem(source: Union[str, bytes, os.PathLike]) -> bytes:
    """PEM bytes of a certificate given inline or as a path to a PEM file.

    Bytes and strings containing a PEM header are taken as content, anything
    else as a path. A missing file raises ``FileNotFoundError``; content
    without a certificate block raises :class:`MalformedInputError`.
    """
    if isinstance(source, bytes):
        data = source
    elif isinstance(source, str) and PEM_CERT_HEADER in source:
        data = source.encode("utf-8")
    else:
        with open(source, "rb") as f:
            data = f.read()
    if PEM_CERT_HEADER.encode("ascii") not in data:
        where = source if isinstance(source, (str, os.PathLike)) else "inline content"
        raise MalformedInputError(f"no PEM certificate in {where}")
    return data


def load_certificate(cert_pem: Union[str, bytes]) -> x509.Certificate:
    if isinstance(cert_pem, str):
        cert_pem = cert_pem.encode("utf-8")
    return x509.load_pem_x509_certificate(cert_pem)


def cert_pem_to_der(cert_pem: Union[str, bytes]) -> bytes:
    """Convert PEM (str or bytes) to DER bytes using cryptography.

    Raises on invalid input.
    """
    return load_certificate(cert_pem).public_bytes(serialization.Encoding.DER)


def fingerprint_pem(cert_pem: Union[str, bytes]) -> str:
    """Return SHA-256 fingerprint (hex lowercase) for a PEM certificate."""
    der = cert_pem_to_der(cert_pem)
    return hashlib.sha256(der).hexdigest().lower()


def verify_cert_validity(cert_pem: Union[str, bytes]) -> bool:
    """Check if certificate is inside its validity window.

    :param cert_pem: Certificate in PEM format (str or bytes)
    :return: True if cert is valid (not expired), False otherwise
    """
    try:
        cert = load_certificate(cert_pem)
    except ValueError:
        return False
    now = datetime.now(timezone.utc)
    return cert.not_valid_before_utc <= now <= cert.not_valid_after_utc


def describe_certificate(cert_pem: Union[str, bytes]) -> dict:
    """Summary of a certificate for display."""
    cert = load_certificate(cert_pem)
    return {
        "subject": cert.subject.rfc4514_string(),
        "issuer": cert.issuer.rfc4514_string(),
        "serialNumber": f"{cert.serial_number:x}",
        "notBefore": cert.not_valid_before_utc.isoformat(),
        "notAfter": cert.not_valid_after_utc.isoformat(),
        "fingerprint": fingerprint_pem(cert_pem),
    }
