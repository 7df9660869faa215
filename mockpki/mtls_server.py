"""mTLS peer that trusts the CA root and reads the embedded authorization data.

``/health`` works without a client certificate. ``/api/protected`` requires
one; the TLS layer has already verified it against the CA root by the time
the route runs.
"""
from __future__ import annotations

import base64
import logging
import os
import ssl
import sys
import tempfile
from typing import Iterable, Optional, Tuple

from cryptography import x509
from flask import Flask, jsonify, request
from werkzeug.serving import BaseWSGIServer, WSGIRequestHandler, make_server

from . import payload as payload_codec
from .authority import CertificateAuthority, load_persisted
from .config import Settings
from .csr import CSRVerifier, generate_csr
from .errors import ErrorKind, PKIError
from .extensions import extract_policy_blob
from .issuer import CertificateIssuer
from .keys import generate_key_pair
from .payload import AuthorizationPayload
from .store import FileStore
from .subject import SubjectAttributes

logger = logging.getLogger(__name__)

PEER_CERT_ENVIRON_KEY = "mockpki.peer_cert_der"
DEFAULT_HOSTNAMES = ("localhost", "127.0.0.1")


class PeerCertRequestHandler(WSGIRequestHandler):
    """Exposes the verified client certificate (DER) to the WSGI app."""

    def make_environ(self):
        environ = super().make_environ()
        der = None
        getpeercert = getattr(self.connection, "getpeercert", None)
        if getpeercert is not None:
            try:
                der = getpeercert(binary_form=True)
            except ValueError:
                # handshake not finished
                der = None
        environ[PEER_CERT_ENVIRON_KEY] = der
        return environ


def issue_server_identity(
    authority: CertificateAuthority,
    hostnames: Iterable[str] = DEFAULT_HOSTNAMES,
    payload: Optional[AuthorizationPayload] = None,
) -> Tuple[bytes, bytes]:
    """Issue the server's own certificate through the regular CSR path.

    :return: (private key PEM, certificate PEM)
    """
    hostnames = list(hostnames)
    pair = generate_key_pair()
    csr_pem = generate_csr(pair.private_key, SubjectAttributes(commonName=hostnames[0], organizationName="Mock PKI"))
    verified = CSRVerifier().verify(csr_pem).unwrap()
    payload = payload or AuthorizationPayload.issued_now("mtls-server", "server")
    cert_pem = CertificateIssuer().issue(authority, verified, payload, subject_alt_names=hostnames)
    return pair.private_pem(), cert_pem


def build_ssl_context(server_cert_pem: bytes, server_key_pem: bytes, ca_cert_pem: bytes) -> ssl.SSLContext:
    """Server-side TLS context that verifies client certificates against the CA root."""
    ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH, cadata=ca_cert_pem.decode("ascii"))
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    # Optional so /health stays reachable; a presented certificate is still verified.
    ctx.verify_mode = ssl.CERT_OPTIONAL

    # load_cert_chain only takes paths; the files live only as long as this block.
    with tempfile.TemporaryDirectory(prefix="mockpki-tls-") as tmp:
        cert_p = os.path.join(tmp, "server_cert.pem")
        key_p = os.path.join(tmp, "server_key.pem")
        with open(cert_p, "wb") as f:
            f.write(server_cert_pem)
        fd = os.open(key_p, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(server_key_pem)
        ctx.load_cert_chain(cert_p, key_p)
    return ctx


def create_mtls_app() -> Flask:
    app = Flask(__name__)

    @app.route("/health", methods=["GET"])
    def health_check():
        """Health check endpoint"""
        return jsonify({"status": "healthy"}), 200

    @app.route("/api/protected", methods=["GET"])
    def protected():
        der = request.environ.get(PEER_CERT_ENVIRON_KEY)
        if not der:
            return jsonify({
                "error": "client certificate required",
                "kind": ErrorKind.TRUST_VALIDATION_FAILURE.value,
            }), 401

        cert = x509.load_der_x509_certificate(der)
        try:
            blob = extract_policy_blob(cert)
            embedded = payload_codec.decode(blob)
        except PKIError as e:
            logger.warning(f"Client {cert.subject.rfc4514_string()} has no usable embedded data: {e.message}")
            return jsonify(e.to_dict()), 403

        logger.info(f"mTLS client {cert.subject.rfc4514_string()} role={embedded.role}")
        return jsonify({
            "message": "mTLS authentication successful",
            "subject": cert.subject.rfc4514_string(),
            "serialNumber": f"{cert.serial_number:x}",
            "embeddedData": embedded.to_dict(),
            "decodedInfo": {
                "original": {
                    "base64": blob,
                    "decoded": base64.b64decode(blob).decode("utf-8"),
                },
            },
        }), 200

    return app


def make_mtls_server(app: Flask, host: str, port: int, ssl_context: ssl.SSLContext) -> BaseWSGIServer:
    return make_server(
        host,
        port,
        app,
        threaded=True,
        request_handler=PeerCertRequestHandler,
        ssl_context=ssl_context,
    )


def main(argv=None):
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        authority = load_persisted(FileStore(), settings.ca_key_path, settings.ca_cert_path, settings.ca_key_passphrase)
    except FileNotFoundError as e:
        print(f"[-] {e}; start the CA service or run scripts/init_ca.py first", file=sys.stderr)
        return 1
    except PKIError as e:
        print(f"[-] Cannot load CA: {e.message}", file=sys.stderr)
        return 1

    key_pem, cert_pem = issue_server_identity(authority)
    ctx = build_ssl_context(cert_pem, key_pem, authority.cert_pem)
    server = make_mtls_server(create_mtls_app(), settings.host, settings.mtls_port, ctx)
    print(f"[+] mTLS server listening on {settings.host}:{settings.mtls_port}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
