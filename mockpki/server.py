"""HTTP surface of the CA.

Routes:
    GET  /ca-cert, /ca.crt   PEM root certificate
    POST /sign-csr           {"csr": PEM} or {"publicKey": PEM, "subject": {...}}
    POST /inspect-csr        {"csr": PEM}, audit report (never rejects a bad signature)
    GET  /health
"""
from __future__ import annotations

import logging
import sys
from typing import Callable, Optional

from flask import Flask, Response, jsonify, request
from flask_cors import CORS

from .authority import CertificateAuthority, init_process_authority
from .config import Settings
from .csr import CSRVerifier, RawPublicKeyRequest
from .errors import ErrorKind, MalformedInputError, MissingFieldError, PKIError
from .issuer import CertificateIssuer
from .keys import load_public_key
from .payload import AuthorizationPayload
from .store import FileStore
from .subject import SubjectAttributes

logger = logging.getLogger(__name__)

# Failures caused by the CA side rather than by the request.
SERVER_SIDE_KINDS = {
    ErrorKind.EXTENSION_BUILD_FAILURE,
    ErrorKind.SIGNING_FAILURE,
    ErrorKind.CORRUPT_PERSISTED_STATE,
}

PEM_MIMETYPE = "application/x-pem-file"


def error_response(e: PKIError):
    status = 500 if e.kind in SERVER_SIDE_KINDS else 400
    if e.fatal:
        logger.critical(f"{e.kind.value}: {e.message} {e.details or ''}".rstrip())
    elif status == 500:
        logger.error(f"{e.kind.value}: {e.message}")
    return jsonify(e.to_dict()), status


def _parse_request(data: dict, verifier: CSRVerifier):
    csr = data.get("csr")
    public_key = data.get("publicKey")
    if csr is not None:
        if not isinstance(csr, str):
            raise MalformedInputError("csr must be a PEM string")
        return verifier.verify(csr).unwrap()
    if public_key is not None:
        if not isinstance(public_key, str):
            raise MalformedInputError("publicKey must be a PEM string")
        subject = data.get("subject")
        if subject is None:
            raise MissingFieldError("subject is required with publicKey")
        return RawPublicKeyRequest(
            subject=SubjectAttributes.from_mapping(subject),
            public_key=load_public_key(public_key),
        )
    raise MissingFieldError("CSR or public key is required")


def create_app(
    authority: CertificateAuthority,
    settings: Optional[Settings] = None,
    payload_factory: Optional[Callable[[], AuthorizationPayload]] = None,
) -> Flask:
    """Build the Flask app around an already bootstrapped CA."""
    settings = settings or Settings()
    if payload_factory is None:
        def payload_factory():
            return AuthorizationPayload.issued_now(settings.payload_identifier, settings.payload_role)

    verifier = CSRVerifier()
    issuer = CertificateIssuer()
    ca_cert_pem = authority.cert_pem

    app = Flask(__name__)
    CORS(app, resources={r"/*": {"origins": "*"}})

    @app.route("/health", methods=["GET"])
    def health_check():
        """Health check endpoint"""
        return jsonify({"status": "healthy", "ca_fingerprint": authority.fingerprint}), 200

    @app.route("/ca-cert", methods=["GET"])
    @app.route("/ca.crt", methods=["GET"])
    def ca_cert():
        return Response(ca_cert_pem, status=200, mimetype=PEM_MIMETYPE)

    @app.route("/sign-csr", methods=["POST"])
    def sign_csr():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return error_response(MalformedInputError("request body must be a JSON object"))
        try:
            signing_request = _parse_request(data, verifier)
            cert_pem = issuer.issue(authority, signing_request, payload_factory())
        except PKIError as e:
            return error_response(e)
        except Exception as e:
            logger.exception("Unexpected error while signing")
            return jsonify({"error": "Internal server error", "details": str(e)}), 500
        return jsonify({"certificate": cert_pem.decode("ascii")}), 200

    @app.route("/inspect-csr", methods=["POST"])
    def inspect_csr():
        data = request.get_json(silent=True) or {}
        csr = data.get("csr")
        if not isinstance(csr, str) or not csr:
            return error_response(MissingFieldError("csr is required"))
        return jsonify(verifier.inspect(csr)), 200

    return app


def main(argv=None):
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    store = FileStore()
    try:
        authority = init_process_authority(
            store,
            settings.ca_key_path,
            settings.ca_cert_path,
            passphrase=settings.ca_key_passphrase,
            key_type=settings.ca_key_type,
            common_name=settings.ca_common_name,
        )
    except PKIError as e:
        print(f"[-] Cannot start CA: {e.message}", file=sys.stderr)
        if e.details:
            print(f"    {e.details}", file=sys.stderr)
        return 1

    print(f"[+] CA ready, fingerprint {authority.fingerprint}")
    app = create_app(authority, settings)
    app.run(host=settings.host, port=settings.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
