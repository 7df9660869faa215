"""Error taxonomy for the CA and the trust harness.

Every failure raised by mockpki carries an :class:`ErrorKind` so callers can
branch on the category instead of matching message strings.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar


class ErrorKind(str, Enum):
    MALFORMED_INPUT = "MalformedInput"
    SIGNATURE_INVALID = "SignatureInvalid"
    UNSUPPORTED_ALGORITHM = "UnsupportedAlgorithm"
    MISSING_FIELD = "MissingField"
    CORRUPT_PERSISTED_STATE = "CorruptPersistedState"
    EXTENSION_BUILD_FAILURE = "ExtensionBuildFailure"
    SIGNING_FAILURE = "SigningFailure"
    TRANSPORT_FAILURE = "TransportFailure"
    TRUST_VALIDATION_FAILURE = "TrustValidationFailure"


class PKIError(Exception):
    kind: ErrorKind
    # Fatal errors mean the trust root itself can no longer be relied upon.
    fatal = False

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message, "kind": self.kind.value}
        if self.details:
            body["details"] = self.details
        return body


class MalformedInputError(PKIError):
    kind = ErrorKind.MALFORMED_INPUT


class SignatureInvalidError(PKIError):
    kind = ErrorKind.SIGNATURE_INVALID


class UnsupportedAlgorithmError(PKIError):
    kind = ErrorKind.UNSUPPORTED_ALGORITHM


class MissingFieldError(PKIError):
    kind = ErrorKind.MISSING_FIELD


class CorruptPersistedStateError(PKIError):
    kind = ErrorKind.CORRUPT_PERSISTED_STATE
    fatal = True


class ExtensionBuildError(PKIError):
    kind = ErrorKind.EXTENSION_BUILD_FAILURE


class SigningError(PKIError):
    kind = ErrorKind.SIGNING_FAILURE
    fatal = True


class TransportError(PKIError):
    kind = ErrorKind.TRANSPORT_FAILURE


class TrustValidationError(PKIError):
    kind = ErrorKind.TRUST_VALIDATION_FAILURE


T = TypeVar("T")


@dataclass(frozen=True)
class VerificationResult(Generic[T]):
    """Either a value or the typed error that prevented producing it."""

    value: Optional[T] = None
    error: Optional[PKIError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "VerificationResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: PKIError) -> "VerificationResult[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


_BY_KIND = {
    cls.kind: cls
    for cls in (
        MalformedInputError,
        SignatureInvalidError,
        UnsupportedAlgorithmError,
        MissingFieldError,
        CorruptPersistedStateError,
        ExtensionBuildError,
        SigningError,
        TransportError,
        TrustValidationError,
    )
}


def error_for_kind(kind: str, message: str, details: Optional[str] = None) -> PKIError:
    """Rebuild a typed error from the ``kind`` string of an HTTP error body."""
    try:
        cls = _BY_KIND[ErrorKind(kind)]
    except ValueError:
        cls = TransportError
    return cls(message, details=details)
