#!/usr/bin/env python3
import os
import sys

# Ensure project root is on sys.path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mockpki.authority import bootstrap
from mockpki.config import Settings
from mockpki.store import FileStore

settings = Settings.from_env()
store = FileStore()

if store.exists(settings.ca_key_path) or store.exists(settings.ca_cert_path):
    raise RuntimeError("CA already exists. Refusing to overwrite.")

ca = bootstrap(key_type=settings.ca_key_type, common_name=settings.ca_common_name)
store.write_bytes(settings.ca_key_path, ca.key_pem(settings.ca_key_passphrase), private=True)
store.write_bytes(settings.ca_cert_path, ca.cert_pem)

print(f"[+] CA created: {store.resolve(settings.ca_cert_path)}")
print(f"[+] Fingerprint: {ca.fingerprint}")
