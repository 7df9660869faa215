"""Key pair generation, import and export."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa

from .errors import MalformedInputError, UnsupportedAlgorithmError

MIN_RSA_KEY_SIZE = 2048

SUPPORTED_CURVES = (ec.SECP256R1, ec.SECP384R1, ec.SECP521R1)

PrivateKey = Union[
    rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey
]
PublicKey = Union[
    rsa.RSAPublicKey, ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey, ed448.Ed448PublicKey
]


@dataclass(frozen=True)
class KeyPair:
    private_key: PrivateKey

    @property
    def public_key(self) -> PublicKey:
        return self.private_key.public_key()

    def private_pem(self, passphrase: Optional[bytes] = None) -> bytes:
        return private_key_to_pem(self.private_key, passphrase)

    def public_pem(self) -> bytes:
        return public_key_to_pem(self.public_key)


def generate_key_pair(key_type: str = "rsa", key_size: int = 2048) -> KeyPair:
    """Generate a fresh key pair.

    :param key_type: ``"rsa"`` or ``"ec"`` (NIST P-256)
    :param key_size: RSA modulus size, ignored for EC
    """
    if key_type == "rsa":
        if key_size < MIN_RSA_KEY_SIZE:
            raise UnsupportedAlgorithmError(f"RSA keys must be at least {MIN_RSA_KEY_SIZE} bits")
        key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    elif key_type == "ec":
        key = ec.generate_private_key(ec.SECP256R1())
    else:
        raise UnsupportedAlgorithmError(f"unsupported key type: {key_type}")
    return KeyPair(key)


def private_key_to_pem(key: PrivateKey, passphrase: Optional[bytes] = None) -> bytes:
    if passphrase:
        return key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(passphrase),
        )
    if isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        fmt = serialization.PrivateFormat.TraditionalOpenSSL
    else:
        fmt = serialization.PrivateFormat.PKCS8
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=fmt,
        encryption_algorithm=serialization.NoEncryption(),
    )


def public_key_to_pem(key: PublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def check_supported(key) -> None:
    """Raise :class:`UnsupportedAlgorithmError` unless ``key`` may be certified."""
    if isinstance(key, rsa.RSAPublicKey):
        if key.key_size < MIN_RSA_KEY_SIZE:
            raise UnsupportedAlgorithmError(
                f"RSA key of {key.key_size} bits is below the {MIN_RSA_KEY_SIZE}-bit minimum"
            )
        return
    if isinstance(key, ec.EllipticCurvePublicKey):
        if not isinstance(key.curve, SUPPORTED_CURVES):
            raise UnsupportedAlgorithmError(f"unsupported elliptic curve: {key.curve.name}")
        return
    if isinstance(key, (ed25519.Ed25519PublicKey, ed448.Ed448PublicKey)):
        return
    raise UnsupportedAlgorithmError(f"unsupported public key type: {type(key).__name__}")


def load_private_key(pem: Union[str, bytes], passphrase: Optional[bytes] = None) -> PrivateKey:
    if isinstance(pem, str):
        pem = pem.encode("utf-8")
    try:
        key = serialization.load_pem_private_key(pem, password=passphrase)
    except UnsupportedAlgorithm as e:
        raise UnsupportedAlgorithmError(f"unsupported private key: {e}")
    except (ValueError, TypeError) as e:
        raise MalformedInputError("private key is not valid PEM", details=str(e))
    check_supported(key.public_key())
    return key


def load_public_key(pem: Union[str, bytes]) -> PublicKey:
    if isinstance(pem, str):
        pem = pem.encode("utf-8")
    try:
        key = serialization.load_pem_public_key(pem)
    except UnsupportedAlgorithm as e:
        raise UnsupportedAlgorithmError(f"unsupported public key: {e}")
    except ValueError as e:
        raise MalformedInputError("public key is not valid PEM", details=str(e))
    check_supported(key)
    return key


def key_description(key) -> dict:
    """Algorithm name and size of a public key, for reports."""
    if isinstance(key, rsa.RSAPublicKey):
        return {"algorithm": "rsa", "keySize": key.key_size}
    if isinstance(key, ec.EllipticCurvePublicKey):
        return {"algorithm": "ec", "keySize": key.curve.key_size, "curve": key.curve.name}
    if isinstance(key, ed25519.Ed25519PublicKey):
        return {"algorithm": "ed25519", "keySize": 256}
    if isinstance(key, ed448.Ed448PublicKey):
        return {"algorithm": "ed448", "keySize": 456}
    return {"algorithm": type(key).__name__, "keySize": None}
