import os
import socket
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID

from conftest import private_pem
from mockpki.errors import ErrorKind, TransportError
from mockpki.harness import ClientPaths, HarnessState, HarnessStepError, TrustHarness
from mockpki.store import FileStore


def _closed_port():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _harness(tmp_path):
    port = _closed_port()
    return TrustHarness(
        f"http://127.0.0.1:{port}", f"https://127.0.0.1:{port}", FileStore(str(tmp_path)), timeout=2,
    )


def _leaf(authority, key, not_before, not_after):
    return x509.CertificateBuilder().subject_name(
        x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test Client")])
    ).issuer_name(
        authority.subject
    ).public_key(
        key.public_key()
    ).serial_number(
        x509.random_serial_number()
    ).not_valid_before(
        not_before
    ).not_valid_after(
        not_after
    ).sign(authority.private_key, authority.signing_hash).public_bytes(serialization.Encoding.PEM)


def _persisted(tmp_path, authority, client_key, cert_pem):
    harness = _harness(tmp_path)
    paths = ClientPaths()
    harness.store.write_bytes(paths.cert, cert_pem)
    harness.store.write_bytes(paths.key, private_pem(client_key), private=True)
    harness.store.write_bytes(paths.ca_cert, authority.cert_pem)
    harness.state = HarnessState.CERTIFICATE_PERSISTED
    return harness


def test_step_wraps_failure_with_its_name(tmp_path):
    harness = _harness(tmp_path)
    harness.step("generate_key")
    harness.step("build_request")

    with pytest.raises(HarnessStepError) as exc:
        harness.step("fetch_ca_certificate")
    assert exc.value.step == "fetch_ca_certificate"
    assert isinstance(exc.value.error, TransportError)
    assert harness.state == HarnessState.REQUEST_BUILT


def test_unknown_step_name(tmp_path):
    with pytest.raises(ValueError):
        _harness(tmp_path).step("certificate_info")


def test_expired_persisted_certificate_stops_handshake(tmp_path, authority, client_key):
    now = datetime.now(timezone.utc)
    expired = _leaf(authority, client_key, now - timedelta(days=30), now - timedelta(days=1))
    harness = _persisted(tmp_path, authority, client_key, expired)

    with pytest.raises(HarnessStepError) as exc:
        harness.step("handshake")
    # Trust failure, not transport: the peer is never contacted.
    assert exc.value.error.kind == ErrorKind.TRUST_VALIDATION_FAILURE
    assert "validity window" in exc.value.error.message
    assert harness.state == HarnessState.HANDSHAKE_FAILED


def test_unreadable_persisted_certificate_stops_handshake(tmp_path, authority, client_key):
    harness = _persisted(tmp_path, authority, client_key, b"overwritten")
    with pytest.raises(HarnessStepError) as exc:
        harness.step("handshake")
    assert exc.value.error.kind == ErrorKind.MALFORMED_INPUT
    assert harness.state == HarnessState.HANDSHAKE_FAILED


def test_missing_persisted_certificate_stops_handshake(tmp_path, authority, client_key):
    now = datetime.now(timezone.utc)
    valid = _leaf(authority, client_key, now - timedelta(days=1), now + timedelta(days=1))
    harness = _persisted(tmp_path, authority, client_key, valid)
    os.remove(harness.store.resolve(ClientPaths().cert))

    with pytest.raises(HarnessStepError) as exc:
        harness.step("handshake")
    assert exc.value.error.kind == ErrorKind.TRANSPORT_FAILURE
    assert harness.state == HarnessState.HANDSHAKE_FAILED
