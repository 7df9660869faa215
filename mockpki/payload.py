"""Authorization payload carried inside issued certificates.

The payload is serialized as compact JSON and base64-encoded before it is
embedded, so decoding an embedded value gives back exactly the bytes that were
written at issuance.
"""
from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .errors import MalformedInputError, MissingFieldError

FIELDS = ("identifier", "role", "timestamp")


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class AuthorizationPayload:
    identifier: str
    role: str
    timestamp: str

    @classmethod
    def issued_now(cls, identifier: str, role: str) -> "AuthorizationPayload":
        return cls(identifier=identifier, role=role, timestamp=utc_timestamp())

    def to_dict(self) -> dict:
        return {"identifier": self.identifier, "role": self.role, "timestamp": self.timestamp}

    def to_json_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_json_bytes(cls, raw: bytes) -> "AuthorizationPayload":
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedInputError("authorization payload is not valid JSON", details=str(e))
        if not isinstance(data, dict):
            raise MalformedInputError("authorization payload must be a JSON object")
        for key in FIELDS:
            if not isinstance(data.get(key), str):
                raise MissingFieldError(f"authorization payload field {key} is missing")
        return cls(identifier=data["identifier"], role=data["role"], timestamp=data["timestamp"])


def encode(payload: AuthorizationPayload) -> str:
    """Payload -> base64 text suitable for embedding."""
    return base64.b64encode(payload.to_json_bytes()).decode("ascii")


def decode(blob: str) -> AuthorizationPayload:
    """Base64 text -> payload."""
    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedInputError("authorization payload is not valid base64", details=str(e))
    return AuthorizationPayload.from_json_bytes(raw)
