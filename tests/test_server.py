import logging

import pytest
from cryptography import x509
from cryptography.x509.oid import NameOID

from conftest import der_to_csr_pem, utf8_subject_csr
from mockpki.csr import generate_csr
from mockpki.extensions import extract_payload
from mockpki.keys import public_key_to_pem
from mockpki.payload import AuthorizationPayload
from mockpki.server import create_app
from mockpki.subject import SubjectAttributes

SUBJECT = SubjectAttributes(commonName="Test Client", organizationName="MTLS Test")


@pytest.fixture
def client(authority, payload):
    app = create_app(authority, payload_factory=lambda: payload)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.mark.parametrize("path", ["/ca-cert", "/ca.crt"])
def test_ca_certificate_endpoints(client, authority, path):
    resp = client.get(path)
    assert resp.status_code == 200
    assert resp.mimetype == "application/x-pem-file"
    assert resp.data == authority.cert_pem


def test_health(client, authority):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "healthy", "ca_fingerprint": authority.fingerprint}


def test_sign_csr(client, authority, client_key, payload):
    csr = generate_csr(client_key, SUBJECT).decode("ascii")
    resp = client.post("/sign-csr", json={"csr": csr})
    assert resp.status_code == 200

    cert = x509.load_pem_x509_certificate(resp.get_json()["certificate"].encode("ascii"))
    cert.verify_directly_issued_by(authority.certificate)
    assert cert.subject == SUBJECT.to_name()
    assert extract_payload(cert) == payload


def test_sign_public_key(client, authority, client_key):
    body = {
        "publicKey": public_key_to_pem(client_key.public_key()).decode("ascii"),
        "subject": {"commonName": "Test Client", "organizationName": "MTLS Test", "countryName": "DE"},
    }
    resp = client.post("/sign-csr", json=body)
    assert resp.status_code == 200
    cert = x509.load_pem_x509_certificate(resp.get_json()["certificate"].encode("ascii"))
    assert cert.issuer == authority.subject


def test_default_payload_comes_from_settings(authority, client_key):
    client = create_app(authority).test_client()
    csr = generate_csr(client_key, SUBJECT).decode("ascii")
    cert_pem = client.post("/sign-csr", json={"csr": csr}).get_json()["certificate"]
    embedded = extract_payload(cert_pem)
    assert (embedded.identifier, embedded.role) == ("SC123456", "technician")


@pytest.mark.parametrize("body,kind", [
    ({}, "MissingField"),
    ({"csr": 42}, "MalformedInput"),
    ({"csr": "not a csr"}, "MalformedInput"),
    ({"csr": der_to_csr_pem(b"\x30\x00")}, "MalformedInput"),
    ({"publicKey": "-----BEGIN PUBLIC KEY-----\nAAAA\n-----END PUBLIC KEY-----\n", "subject": {"commonName": "x"}},
     "MalformedInput"),
])
def test_bad_requests(client, body, kind):
    resp = client.post("/sign-csr", json=body)
    assert resp.status_code == 400
    assert resp.get_json()["kind"] == kind
    assert resp.get_json()["error"]


def test_non_json_body(client):
    resp = client.post("/sign-csr", data="csr=abc", content_type="application/x-www-form-urlencoded")
    assert resp.status_code == 400
    assert resp.get_json()["kind"] == "MalformedInput"


def test_public_key_subject_validation(client, client_key):
    pem = public_key_to_pem(client_key.public_key()).decode("ascii")

    resp = client.post("/sign-csr", json={"publicKey": pem})
    assert resp.status_code == 400
    assert resp.get_json()["kind"] == "MissingField"

    resp = client.post("/sign-csr", json={"publicKey": pem, "subject": {"commonName": "x", "role": "admin"}})
    assert resp.status_code == 400
    assert resp.get_json()["kind"] == "MissingField"
    assert "role" in resp.get_json()["error"]


def test_tampered_csr_rejected(client, client_key):
    from test_csr_verifier import flip_signature_bit

    tampered = flip_signature_bit(generate_csr(client_key, SUBJECT), 10)
    resp = client.post("/sign-csr", json={"csr": tampered})
    assert resp.status_code == 400
    assert resp.get_json()["kind"] == "SignatureInvalid"

    report = client.post("/inspect-csr", json={"csr": tampered})
    assert report.status_code == 200
    assert report.get_json()["isValid"] is False


def test_oversized_payload_is_server_error(authority, client_key):
    big = AuthorizationPayload(identifier="x" * 5000, role="r", timestamp="t")
    client = create_app(authority, payload_factory=lambda: big).test_client()
    csr = generate_csr(client_key, SUBJECT).decode("ascii")
    resp = client.post("/sign-csr", json={"csr": csr})
    assert resp.status_code == 500
    assert resp.get_json()["kind"] == "ExtensionBuildFailure"


def test_signing_failure_is_server_error(client, client_key, monkeypatch):
    csr = generate_csr(client_key, SUBJECT).decode("ascii")

    def broken_sign(self, *args, **kwargs):
        raise ValueError("key exploded")

    monkeypatch.setattr(x509.CertificateBuilder, "sign", broken_sign)
    resp = client.post("/sign-csr", json={"csr": csr})
    assert resp.status_code == 500
    body = resp.get_json()
    assert body["kind"] == "SigningFailure"
    assert body["details"] == "key exploded"


def test_inspect_requires_csr(client):
    resp = client.post("/inspect-csr", json={})
    assert resp.status_code == 400


@pytest.mark.parametrize("subject", [
    {"commonName": "x", "countryName": "D*"},
    {"commonName": "x", "countryName": "Ü1"},
    {"commonName": "x", "emailAddress": "jü@example.com"},
])
def test_public_key_with_unencodable_subject_is_client_error(client, client_key, subject, caplog):
    pem = public_key_to_pem(client_key.public_key()).decode("ascii")
    with caplog.at_level(logging.INFO):
        resp = client.post("/sign-csr", json={"publicKey": pem, "subject": subject})
    assert resp.status_code == 400
    assert resp.get_json()["kind"] == "MalformedInput"
    assert not [r for r in caplog.records if r.levelno >= logging.CRITICAL]


@pytest.mark.parametrize("oid,value", [
    (NameOID.COUNTRY_NAME, "D*"),
    (NameOID.COUNTRY_NAME, "Ü1"),
    (NameOID.EMAIL_ADDRESS, "jü@example.com"),
])
def test_csr_with_unencodable_subject_is_client_error(client, client_key, oid, value, caplog):
    csr = utf8_subject_csr(client_key, oid, value).decode("ascii")
    with caplog.at_level(logging.INFO):
        resp = client.post("/sign-csr", json={"csr": csr})
    assert resp.status_code == 400
    assert resp.get_json()["kind"] == "MalformedInput"
    assert not [r for r in caplog.records if r.levelno >= logging.CRITICAL]
