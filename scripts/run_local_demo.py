#!/usr/bin/env python3
"""Start the CA and the mTLS peer in-process and run the harness against them."""
import logging
import os
import sys
import tempfile
import threading

# Ensure project root is on sys.path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from werkzeug.serving import make_server

from mockpki.authority import load_or_create
from mockpki.harness import TrustHarness
from mockpki.mtls_server import build_ssl_context, create_mtls_app, issue_server_identity, make_mtls_server
from mockpki.server import create_app
from mockpki.store import FileStore


def run_demo(workdir):
    ca_store = FileStore(os.path.join(workdir, "ca"))
    authority = load_or_create(ca_store, "ca_key.pem", "ca_cert.pem")

    ca_server = make_server("127.0.0.1", 0, create_app(authority), threaded=True)
    key_pem, cert_pem = issue_server_identity(authority)
    ctx = build_ssl_context(cert_pem, key_pem, authority.cert_pem)
    mtls_server = make_mtls_server(create_mtls_app(), "127.0.0.1", 0, ctx)

    for srv in (ca_server, mtls_server):
        threading.Thread(target=srv.serve_forever, daemon=True).start()
    print(f"[*] CA on :{ca_server.server_port}, mTLS peer on :{mtls_server.server_port}")

    try:
        harness = TrustHarness(
            f"http://127.0.0.1:{ca_server.server_port}",
            f"https://127.0.0.1:{mtls_server.server_port}",
            FileStore(os.path.join(workdir, "client")),
        )
        report = harness.run()
    finally:
        ca_server.shutdown()
        mtls_server.shutdown()

    if report.succeeded:
        print(f"[+] Handshake succeeded, peer saw {report.peer_payload.to_dict()}")
        return 0
    print(f"[-] {report.failed_step} failed: {report.error.kind.value}: {report.error.message}")
    return 1


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    with tempfile.TemporaryDirectory() as tmpdir:
        sys.exit(run_demo(tmpdir))
