"""Client-side trust establishment harness.

Runs the whole lifecycle against a live CA and mTLS peer, in a fixed order:

    Init -> KeyGenerated -> RequestBuilt -> CARetrieved -> CertificateIssued
         -> CertificatePersisted -> HandshakeAttempted
         -> HandshakeSucceeded | HandshakeFailed

A failing step stops the run and is reported; nothing is retried here.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import requests
from cryptography import x509
from cryptography.exceptions import InvalidSignature

from .config import Settings
from .csr import generate_csr
from .errors import (
    MalformedInputError,
    PKIError,
    TransportError,
    TrustValidationError,
    error_for_kind,
)
from .extensions import extract_payload
from .keys import KeyPair, generate_key_pair, public_key_to_pem
from .payload import AuthorizationPayload
from .store import FileStore
from .subject import SubjectAttributes
from .utils import describe_certificate, load_cert_pem, verify_cert_validity

logger = logging.getLogger(__name__)


class HarnessState(str, Enum):
    INIT = "Init"
    KEY_GENERATED = "KeyGenerated"
    REQUEST_BUILT = "RequestBuilt"
    CA_RETRIEVED = "CARetrieved"
    CERTIFICATE_ISSUED = "CertificateIssued"
    CERTIFICATE_PERSISTED = "CertificatePersisted"
    HANDSHAKE_ATTEMPTED = "HandshakeAttempted"
    HANDSHAKE_SUCCEEDED = "HandshakeSucceeded"
    HANDSHAKE_FAILED = "HandshakeFailed"


class HarnessStateError(RuntimeError):
    """A step was invoked out of order."""


class HarnessStepError(Exception):
    """A named step failed; ``error`` is the typed cause."""

    def __init__(self, step: str, error: PKIError):
        super().__init__(f"{step} failed: {error.message}")
        self.step = step
        self.error = error


@dataclass
class ClientPaths:
    key: str = "client_key.pem"
    cert: str = "client_cert.pem"
    ca_cert: str = "ca_cert.pem"


@dataclass
class HarnessReport:
    state: HarnessState
    failed_step: Optional[str] = None
    error: Optional[PKIError] = None
    issued_payload: Optional[AuthorizationPayload] = None
    peer_payload: Optional[AuthorizationPayload] = None
    server_response: Optional[dict] = None
    steps: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == HarnessState.HANDSHAKE_SUCCEEDED


def _raise_for_response(resp: requests.Response, what: str) -> None:
    if 200 <= resp.status_code < 300:
        return
    try:
        body = resp.json()
    except ValueError:
        body = None
    message = (body.get("error") if isinstance(body, dict) else None) or resp.text
    if isinstance(body, dict) and body.get("kind"):
        raise error_for_kind(body["kind"], f"{what} rejected with status {resp.status_code}: {message}",
                             details=body.get("details"))
    raise TransportError(f"{what} failed with status {resp.status_code}: {message}")


class TrustHarness:
    STEPS = (
        "generate_key",
        "build_request",
        "fetch_ca_certificate",
        "request_certificate",
        "persist",
        "handshake",
    )

    def __init__(
        self,
        ca_url: str,
        mtls_url: str,
        store: FileStore,
        paths: Optional[ClientPaths] = None,
        subject: Optional[SubjectAttributes] = None,
        use_csr: bool = True,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.ca_url = ca_url.rstrip("/")
        self.mtls_url = mtls_url.rstrip("/")
        self.store = store
        self.paths = paths or ClientPaths()
        self.subject = subject or SubjectAttributes(commonName="Test Client", organizationName="MTLS Test")
        self.use_csr = use_csr
        self.timeout = timeout
        self.session = session or requests.Session()

        self.state = HarnessState.INIT
        self.key_pair: Optional[KeyPair] = None
        self.request_body: Optional[dict] = None
        self.ca_cert_pem: Optional[bytes] = None
        self.cert_pem: Optional[bytes] = None
        self.issued_payload: Optional[AuthorizationPayload] = None
        self.server_response: Optional[dict] = None
        self.peer_payload: Optional[AuthorizationPayload] = None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "TrustHarness":
        return cls(
            settings.ca_url,
            settings.mtls_url,
            FileStore(settings.client_dir),
            timeout=settings.timeout,
            **kwargs,
        )

    def _advance(self, expected: HarnessState, new: HarnessState) -> None:
        if self.state != expected:
            raise HarnessStateError(f"cannot move to {new.value} from {self.state.value}; expected {expected.value}")
        logger.info(f"Harness: {self.state.value} -> {new.value}")
        self.state = new

    def _require(self, expected: HarnessState) -> None:
        if self.state != expected:
            raise HarnessStateError(f"step needs state {expected.value}, harness is in {self.state.value}")

    # Step 1
    def generate_key(self) -> None:
        self._require(HarnessState.INIT)
        self.key_pair = generate_key_pair()
        self._advance(HarnessState.INIT, HarnessState.KEY_GENERATED)

    # Step 2
    def build_request(self) -> None:
        self._require(HarnessState.KEY_GENERATED)
        if self.use_csr:
            csr_pem = generate_csr(self.key_pair.private_key, self.subject)
            self.request_body = {"csr": csr_pem.decode("ascii")}
        else:
            self.request_body = {
                "publicKey": self.key_pair.public_pem().decode("ascii"),
                "subject": self.subject.to_dict(),
            }
        self._advance(HarnessState.KEY_GENERATED, HarnessState.REQUEST_BUILT)

    # Step 3
    def fetch_ca_certificate(self) -> None:
        self._require(HarnessState.REQUEST_BUILT)
        try:
            resp = self.session.get(f"{self.ca_url}/ca-cert", timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError("could not fetch CA certificate", details=str(e))
        _raise_for_response(resp, "CA certificate fetch")
        try:
            x509.load_pem_x509_certificate(resp.content)
        except ValueError as e:
            raise MalformedInputError("CA returned an unreadable certificate", details=str(e))
        self.ca_cert_pem = resp.content
        self._advance(HarnessState.REQUEST_BUILT, HarnessState.CA_RETRIEVED)

    # Step 4
    def request_certificate(self) -> None:
        self._require(HarnessState.CA_RETRIEVED)
        try:
            resp = self.session.post(f"{self.ca_url}/sign-csr", json=self.request_body, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError("could not reach CA signing endpoint", details=str(e))
        _raise_for_response(resp, "certificate signing")
        try:
            cert_pem = resp.json()["certificate"].encode("ascii")
            cert = x509.load_pem_x509_certificate(cert_pem)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise MalformedInputError("CA response does not contain a certificate", details=str(e))

        ca_cert = x509.load_pem_x509_certificate(self.ca_cert_pem)
        try:
            cert.verify_directly_issued_by(ca_cert)
        except (ValueError, TypeError, InvalidSignature) as e:
            raise TrustValidationError("issued certificate is not signed by the fetched CA", details=str(e))
        if public_key_to_pem(cert.public_key()) != self.key_pair.public_pem():
            raise TrustValidationError("issued certificate does not carry our public key")

        self.cert_pem = cert_pem
        self.issued_payload = extract_payload(cert)
        self._advance(HarnessState.CA_RETRIEVED, HarnessState.CERTIFICATE_ISSUED)

    # Step 5
    def persist(self) -> None:
        self._require(HarnessState.CERTIFICATE_ISSUED)
        self.store.write_bytes(self.paths.cert, self.cert_pem)
        self.store.write_bytes(self.paths.key, self.key_pair.private_pem(), private=True)
        self.store.write_bytes(self.paths.ca_cert, self.ca_cert_pem)
        logger.info(f"Saved client certificate, key and CA certificate under {self.store.base_dir}")
        self._advance(HarnessState.CERTIFICATE_ISSUED, HarnessState.CERTIFICATE_PERSISTED)

    def _check_persisted(self) -> None:
        for label, path in (("client", self.paths.cert), ("CA", self.paths.ca_cert)):
            pem = load_cert_pem(self.store.resolve(path))
            if not verify_cert_validity(pem):
                raise TrustValidationError(f"persisted {label} certificate is unreadable or outside its validity window")

    # Step 6
    def handshake(self) -> None:
        self._advance(HarnessState.CERTIFICATE_PERSISTED, HarnessState.HANDSHAKE_ATTEMPTED)
        try:
            self._check_persisted()
        except (PKIError, OSError):
            self.state = HarnessState.HANDSHAKE_FAILED
            raise
        try:
            resp = self.session.get(
                f"{self.mtls_url}/api/protected",
                cert=(self.store.resolve(self.paths.cert), self.store.resolve(self.paths.key)),
                verify=self.store.resolve(self.paths.ca_cert),
                timeout=self.timeout,
            )
        except requests.exceptions.SSLError as e:
            self.state = HarnessState.HANDSHAKE_FAILED
            raise TrustValidationError("TLS handshake with peer failed", details=str(e))
        except requests.RequestException as e:
            self.state = HarnessState.HANDSHAKE_FAILED
            raise TransportError("could not reach mTLS peer", details=str(e))

        if resp.status_code in (401, 403):
            self.state = HarnessState.HANDSHAKE_FAILED
            raise TrustValidationError(f"peer refused client certificate with status {resp.status_code}",
                                       details=resp.text)
        try:
            _raise_for_response(resp, "protected request")
            self.server_response = resp.json()
            self.peer_payload = AuthorizationPayload(**self.server_response["embeddedData"])
        except PKIError:
            self.state = HarnessState.HANDSHAKE_FAILED
            raise
        except (ValueError, KeyError, TypeError) as e:
            self.state = HarnessState.HANDSHAKE_FAILED
            raise MalformedInputError("peer response does not contain embedded data", details=str(e))

        if self.peer_payload != self.issued_payload:
            self.state = HarnessState.HANDSHAKE_FAILED
            raise TrustValidationError(
                "payload recovered by peer differs from the one embedded at issuance",
                details=f"issued={self.issued_payload.to_dict()} peer={self.peer_payload.to_dict()}",
            )
        self.state = HarnessState.HANDSHAKE_SUCCEEDED
        logger.info(f"Harness: {HarnessState.HANDSHAKE_ATTEMPTED.value} -> {self.state.value}")

    def step(self, name: str) -> None:
        """Run one step by name, raising :class:`HarnessStepError` if it fails."""
        if name not in self.STEPS:
            raise ValueError(f"unknown harness step: {name}")
        try:
            getattr(self, name)()
        except PKIError as e:
            raise HarnessStepError(name, e) from e
        except OSError as e:
            raise HarnessStepError(name, TransportError(f"I/O error during {name}", details=str(e))) from e

    def run(self) -> HarnessReport:
        """Run every step in order, stopping at the first failure."""
        done: List[str] = []
        for name in self.STEPS:
            try:
                self.step(name)
            except HarnessStepError as e:
                logger.error(f"Harness step {e.step} failed ({e.error.kind.value}): {e.error.message}")
                return self._report(done, failed_step=e.step, error=e.error)
            done.append(name)
        return self._report(done)

    def _report(self, done: List[str], failed_step: Optional[str] = None, error: Optional[PKIError] = None) -> HarnessReport:
        return HarnessReport(
            state=self.state,
            failed_step=failed_step,
            error=error,
            issued_payload=self.issued_payload,
            peer_payload=self.peer_payload,
            server_response=self.server_response,
            steps=done,
        )

    def certificate_info(self) -> dict:
        info = {}
        if self.cert_pem:
            info["client"] = describe_certificate(self.cert_pem)
        if self.ca_cert_pem:
            info["ca"] = describe_certificate(self.ca_cert_pem)
        return info


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description="Run the mTLS trust establishment sequence")
    parser.add_argument("--public-key", action="store_true", help="submit a bare public key instead of a CSR")
    parser.add_argument("--common-name", default="Test Client")
    parser.add_argument("--organization", default="MTLS Test")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    harness = TrustHarness.from_settings(
        settings,
        subject=SubjectAttributes(commonName=args.common_name, organizationName=args.organization),
        use_csr=not args.public_key,
    )
    print("\n=== Starting Full MTLS Test ===\n")
    report = harness.run()
    for step in report.steps:
        print(f"[+] {step}")

    if not report.succeeded:
        print(f"[-] {report.failed_step} failed: {report.error.kind.value}: {report.error.message}")
        if report.error.details:
            print(f"    {report.error.details}")
        return 1

    print("\n=== Embedded Certificate Data ===")
    print("Identifier:", report.peer_payload.identifier)
    print("Role:", report.peer_payload.role)
    print("Timestamp:", report.peer_payload.timestamp)
    for label, info in harness.certificate_info().items():
        print(f"\n{label} certificate:")
        for k, v in info.items():
            print(f"- {k}: {v}")
    print("\n=== Full Test Completed Successfully ===")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
