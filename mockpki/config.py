"""Settings loaded from the environment (and a ``.env`` file when present)."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    mtls_port: int = 3443
    ca_key_path: str = "ca_key.pem"
    ca_cert_path: str = "ca_cert.pem"
    ca_key_passphrase: Optional[bytes] = None
    ca_key_type: str = "rsa"
    ca_common_name: str = "Mock CA"
    payload_identifier: str = "SC123456"
    payload_role: str = "technician"
    ca_url: str = "http://localhost:3000"
    mtls_url: str = "https://localhost:3443"
    client_dir: str = "."
    timeout: float = 30.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Load variables from ``.env`` (without overriding the real environment)."""
        load_dotenv(env_file)

        passphrase = os.getenv("MOCKPKI_CA_KEY_PASSPHRASE")
        key_type = os.getenv("MOCKPKI_CA_KEY_TYPE", cls.ca_key_type).lower()
        if key_type not in ("rsa", "ec"):
            raise ValueError(f"MOCKPKI_CA_KEY_TYPE must be 'rsa' or 'ec', got {key_type!r}")

        return cls(
            host=os.getenv("MOCKPKI_HOST", cls.host),
            port=_int("MOCKPKI_PORT", cls.port),
            mtls_port=_int("MOCKPKI_MTLS_PORT", cls.mtls_port),
            ca_key_path=os.getenv("MOCKPKI_CA_KEY_PATH", cls.ca_key_path),
            ca_cert_path=os.getenv("MOCKPKI_CA_CERT_PATH", cls.ca_cert_path),
            ca_key_passphrase=passphrase.encode("utf-8") if passphrase else None,
            ca_key_type=key_type,
            ca_common_name=os.getenv("MOCKPKI_CA_COMMON_NAME", cls.ca_common_name),
            payload_identifier=os.getenv("MOCKPKI_PAYLOAD_IDENTIFIER", cls.payload_identifier),
            payload_role=os.getenv("MOCKPKI_PAYLOAD_ROLE", cls.payload_role),
            ca_url=os.getenv("MOCKPKI_CA_URL", cls.ca_url).rstrip("/"),
            mtls_url=os.getenv("MOCKPKI_MTLS_URL", cls.mtls_url).rstrip("/"),
            client_dir=os.getenv("MOCKPKI_CLIENT_DIR", cls.client_dir),
            timeout=_float("MOCKPKI_TIMEOUT", cls.timeout),
            log_level=os.getenv("MOCKPKI_LOG_LEVEL", cls.log_level).upper(),
        )
