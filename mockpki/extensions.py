"""X.509 extension sets for the root and for issued leaf certificates.

Extensions are produced as an ordered list of :class:`ExtensionRecord`; the
issuer adds them to the certificate in list order without looking inside.
"""
from __future__ import annotations

import base64
import binascii
import ipaddress
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID

from . import payload as payload_codec
from .errors import ExtensionBuildError, MalformedInputError, MissingFieldError
from .payload import AuthorizationPayload

logger = logging.getLogger(__name__)

# Private policy OID (UUID arc) meaning "certificate policy with embedded data".
POLICY_DATA_OID = x509.ObjectIdentifier("2.25.204391846317705381925127348819362409175")
DATA_PREFIX = "Data : "
MAX_POLICY_TEXT = 4096


@dataclass(frozen=True)
class ExtensionRecord:
    oid: x509.ObjectIdentifier
    critical: bool
    value: x509.ExtensionType

    @classmethod
    def of(cls, value: x509.ExtensionType, critical: bool) -> "ExtensionRecord":
        return cls(oid=value.oid, critical=critical, value=value)


def _key_usage(**enabled) -> x509.KeyUsage:
    flags = dict(
        digital_signature=False,
        content_commitment=False,
        key_encipherment=False,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=False,
        crl_sign=False,
        encipher_only=False,
        decipher_only=False,
    )
    flags.update(enabled)
    return x509.KeyUsage(**flags)


def build_root_extensions(ca_public_key) -> List[ExtensionRecord]:
    return [
        ExtensionRecord.of(x509.BasicConstraints(ca=True, path_length=None), critical=True),
        ExtensionRecord.of(
            _key_usage(
                key_cert_sign=True,
                digital_signature=True,
                content_commitment=True,
                key_encipherment=True,
                data_encipherment=True,
            ),
            critical=True,
        ),
        ExtensionRecord.of(
            x509.ExtendedKeyUsage([
                ExtendedKeyUsageOID.SERVER_AUTH,
                ExtendedKeyUsageOID.CLIENT_AUTH,
                ExtendedKeyUsageOID.CODE_SIGNING,
                ExtendedKeyUsageOID.EMAIL_PROTECTION,
                ExtendedKeyUsageOID.TIME_STAMPING,
            ]),
            critical=False,
        ),
        ExtensionRecord.of(x509.SubjectKeyIdentifier.from_public_key(ca_public_key), critical=False),
        ExtensionRecord.of(x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_public_key), critical=False),
    ]


def policy_text(payload: AuthorizationPayload) -> str:
    text = DATA_PREFIX + payload_codec.encode(payload)
    if len(text) > MAX_POLICY_TEXT:
        raise ExtensionBuildError(
            f"authorization payload too large: {len(text)} characters, limit is {MAX_POLICY_TEXT}"
        )
    return text


def policy_extension(payload: AuthorizationPayload) -> x509.CertificatePolicies:
    notice = x509.UserNotice(notice_reference=None, explicit_text=policy_text(payload))
    return x509.CertificatePolicies([
        x509.PolicyInformation(policy_identifier=POLICY_DATA_OID, policy_qualifiers=[notice]),
    ])


def _general_name(name: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(name))
    except ValueError:
        return x509.DNSName(name)


def build_leaf_extensions(
    ca_public_key,
    subject_public_key,
    payload: AuthorizationPayload,
    requested_is_ca: bool = False,
    subject_alt_names: Optional[Iterable[str]] = None,
) -> List[ExtensionRecord]:
    """Extension list for a leaf certificate.

    The order is fixed: basicConstraints, keyUsage, extKeyUsage,
    subjectKeyIdentifier, authorityKeyIdentifier, then the policy extension
    carrying ``payload``. ``requested_is_ca`` never yields a CA certificate;
    the downgrade is logged here. Subject alternative names, when given, are
    appended last.
    """
    if requested_is_ca:
        logger.warning("Request asked for CA:true; issuing CA:false")
    try:
        records = [
            ExtensionRecord.of(x509.BasicConstraints(ca=False, path_length=None), critical=True),
            ExtensionRecord.of(
                _key_usage(digital_signature=True, key_encipherment=True, data_encipherment=True),
                critical=True,
            ),
            ExtensionRecord.of(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
                critical=False,
            ),
            ExtensionRecord.of(x509.SubjectKeyIdentifier.from_public_key(subject_public_key), critical=False),
            ExtensionRecord.of(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_public_key), critical=False
            ),
            ExtensionRecord.of(policy_extension(payload), critical=False),
        ]
        if subject_alt_names:
            names = [_general_name(n) for n in subject_alt_names]
            records.append(ExtensionRecord.of(x509.SubjectAlternativeName(names), critical=False))
    except ExtensionBuildError:
        raise
    except (ValueError, TypeError) as e:
        raise ExtensionBuildError("could not build certificate extensions", details=str(e))
    return records


def _as_certificate(cert: Union[x509.Certificate, str, bytes]) -> x509.Certificate:
    if isinstance(cert, x509.Certificate):
        return cert
    if isinstance(cert, str):
        cert = cert.encode("utf-8")
    try:
        return x509.load_pem_x509_certificate(cert)
    except ValueError as e:
        raise MalformedInputError("certificate is not valid PEM", details=str(e))


def extract_policy_blob(cert: Union[x509.Certificate, str, bytes]) -> str:
    """Return the base64 text embedded after the ``Data : `` prefix."""
    cert = _as_certificate(cert)
    try:
        policies = cert.extensions.get_extension_for_class(x509.CertificatePolicies).value
    except x509.ExtensionNotFound:
        raise MissingFieldError("certificate has no certificate policies extension")
    except ValueError as e:
        raise MalformedInputError("certificate extensions could not be parsed", details=str(e))
    for info in policies:
        if info.policy_identifier != POLICY_DATA_OID:
            continue
        for qualifier in info.policy_qualifiers or []:
            if isinstance(qualifier, x509.UserNotice) and qualifier.explicit_text:
                if qualifier.explicit_text.startswith(DATA_PREFIX):
                    return qualifier.explicit_text[len(DATA_PREFIX):]
    raise MissingFieldError("certificate carries no embedded authorization data")


def extract_payload_bytes(cert: Union[x509.Certificate, str, bytes]) -> bytes:
    """Raw JSON bytes of the embedded payload."""
    try:
        return base64.b64decode(extract_policy_blob(cert), validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedInputError("embedded data is not valid base64", details=str(e))


def extract_payload(cert: Union[x509.Certificate, str, bytes]) -> AuthorizationPayload:
    return payload_codec.decode(extract_policy_blob(cert))
