import logging

import pytest
from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, ExtensionOID

from mockpki.errors import ErrorKind, ExtensionBuildError, MissingFieldError
from mockpki.extensions import (
    DATA_PREFIX,
    MAX_POLICY_TEXT,
    POLICY_DATA_OID,
    build_leaf_extensions,
    build_root_extensions,
    extract_payload,
    extract_payload_bytes,
    extract_policy_blob,
)
from mockpki.payload import AuthorizationPayload

LEAF_ORDER = [
    ExtensionOID.BASIC_CONSTRAINTS,
    ExtensionOID.KEY_USAGE,
    ExtensionOID.EXTENDED_KEY_USAGE,
    ExtensionOID.SUBJECT_KEY_IDENTIFIER,
    ExtensionOID.AUTHORITY_KEY_IDENTIFIER,
    ExtensionOID.CERTIFICATE_POLICIES,
]


def test_leaf_extensions_fixed_order_and_criticality(authority, client_key, payload):
    records = build_leaf_extensions(authority.public_key, client_key.public_key(), payload)
    assert [r.oid for r in records] == LEAF_ORDER
    assert {r.oid: r.critical for r in records} == {
        ExtensionOID.BASIC_CONSTRAINTS: True,
        ExtensionOID.KEY_USAGE: True,
        ExtensionOID.EXTENDED_KEY_USAGE: False,
        ExtensionOID.SUBJECT_KEY_IDENTIFIER: False,
        ExtensionOID.AUTHORITY_KEY_IDENTIFIER: False,
        ExtensionOID.CERTIFICATE_POLICIES: False,
    }

    bc, ku, eku, ski, aki, policies = (r.value for r in records)
    assert bc.ca is False
    assert ku.digital_signature and ku.key_encipherment and ku.data_encipherment
    assert not ku.key_cert_sign
    assert list(eku) == [ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]
    assert ski.digest == x509.SubjectKeyIdentifier.from_public_key(client_key.public_key()).digest
    assert aki.key_identifier == x509.SubjectKeyIdentifier.from_public_key(authority.public_key).digest

    info = list(policies)[0]
    assert info.policy_identifier == POLICY_DATA_OID
    notice = info.policy_qualifiers[0]
    assert notice.explicit_text.startswith(DATA_PREFIX)


def test_ca_request_never_produces_ca_leaf(authority, client_key, payload, caplog):
    with caplog.at_level(logging.WARNING, logger="mockpki.extensions"):
        records = build_leaf_extensions(authority.public_key, client_key.public_key(), payload, requested_is_ca=True)
    assert records[0].value.ca is False
    assert "CA:false" in caplog.text

    caplog.clear()
    with caplog.at_level(logging.WARNING, logger="mockpki.extensions"):
        build_leaf_extensions(authority.public_key, client_key.public_key(), payload)
    assert "CA:false" not in caplog.text


def test_subject_alt_names_appended_last(authority, client_key, payload):
    records = build_leaf_extensions(
        authority.public_key, client_key.public_key(), payload, subject_alt_names=["localhost", "127.0.0.1"]
    )
    assert [r.oid for r in records] == LEAF_ORDER + [ExtensionOID.SUBJECT_ALTERNATIVE_NAME]
    san = records[-1].value
    assert san.get_values_for_type(x509.DNSName) == ["localhost"]
    assert [str(ip) for ip in san.get_values_for_type(x509.IPAddress)] == ["127.0.0.1"]


def test_root_extensions(authority):
    records = build_root_extensions(authority.public_key)
    bc, ku, eku = records[0].value, records[1].value, records[2].value
    assert bc.ca is True and records[0].critical
    assert ku.key_cert_sign and ku.digital_signature and ku.content_commitment
    assert ku.key_encipherment and ku.data_encipherment
    assert set(eku) == {
        ExtendedKeyUsageOID.SERVER_AUTH,
        ExtendedKeyUsageOID.CLIENT_AUTH,
        ExtendedKeyUsageOID.CODE_SIGNING,
        ExtendedKeyUsageOID.EMAIL_PROTECTION,
        ExtendedKeyUsageOID.TIME_STAMPING,
    }


def test_oversized_payload_fails_fast(authority, client_key):
    big = AuthorizationPayload(identifier="x" * MAX_POLICY_TEXT, role="r", timestamp="t")
    with pytest.raises(ExtensionBuildError) as exc:
        build_leaf_extensions(authority.public_key, client_key.public_key(), big)
    assert exc.value.kind == ErrorKind.EXTENSION_BUILD_FAILURE


def test_payload_round_trip_through_certificate(authority, client_key):
    from mockpki.csr import VerifiedRequest
    from mockpki.issuer import CertificateIssuer
    from mockpki.subject import SubjectAttributes

    payloads = [
        AuthorizationPayload("SC123456", "technician", "2026-10-19T10:00:00.000Z"),
        AuthorizationPayload("", "", ""),
        AuthorizationPayload("id with spaces", "röle/ünïcode", "2026-10-19T10:00:00.000Z"),
        AuthorizationPayload("a" * 1000, "b" * 1000, "c"),
    ]
    request = VerifiedRequest(SubjectAttributes(commonName="rt"), client_key.public_key())
    for p in payloads:
        cert_pem = CertificateIssuer().issue(authority, request, p)
        assert extract_payload(cert_pem) == p
        assert extract_payload_bytes(cert_pem) == p.to_json_bytes()


def test_extract_without_policy_extension(authority):
    with pytest.raises(MissingFieldError):
        extract_policy_blob(authority.certificate)
