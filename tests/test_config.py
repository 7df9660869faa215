import os

import pytest

from mockpki.config import Settings


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("MOCKPKI_PORT", "MOCKPKI_CA_KEY_TYPE", "MOCKPKI_CA_KEY_PASSPHRASE", "MOCKPKI_PAYLOAD_ROLE"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings.from_env(str(tmp_path / ".env"))
    assert settings.port == 3000
    assert settings.ca_key_type == "rsa"
    assert settings.ca_key_passphrase is None
    assert settings.payload_role == "technician"


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("MOCKPKI_PORT", "8080")
    monkeypatch.setenv("MOCKPKI_CA_KEY_TYPE", "EC")
    monkeypatch.setenv("MOCKPKI_CA_KEY_PASSPHRASE", "pw")
    monkeypatch.setenv("MOCKPKI_CA_URL", "http://ca.internal:3000/")
    monkeypatch.setenv("MOCKPKI_TIMEOUT", "2.5")
    settings = Settings.from_env(str(tmp_path / ".env"))
    assert settings.port == 8080
    assert settings.ca_key_type == "ec"
    assert settings.ca_key_passphrase == b"pw"
    assert settings.ca_url == "http://ca.internal:3000"
    assert settings.timeout == 2.5


def test_dotenv_file_is_read(monkeypatch, tmp_path):
    monkeypatch.delenv("MOCKPKI_PAYLOAD_IDENTIFIER", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("MOCKPKI_PAYLOAD_IDENTIFIER=SC999\n")
    try:
        assert Settings.from_env(str(env_file)).payload_identifier == "SC999"
    finally:
        os.environ.pop("MOCKPKI_PAYLOAD_IDENTIFIER", None)


def test_invalid_values(monkeypatch, tmp_path):
    monkeypatch.setenv("MOCKPKI_PORT", "eighty")
    with pytest.raises(ValueError):
        Settings.from_env(str(tmp_path / ".env"))
    monkeypatch.setenv("MOCKPKI_PORT", "80")
    monkeypatch.setenv("MOCKPKI_CA_KEY_TYPE", "dsa")
    with pytest.raises(ValueError):
        Settings.from_env(str(tmp_path / ".env"))
