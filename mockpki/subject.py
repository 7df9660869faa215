"""Validated subject attributes.

Only the attribute names listed in :data:`ATTRIBUTES` can appear in an issued
certificate. Anything else is rejected instead of being passed through.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, fields
from typing import Dict, Mapping, Optional

from cryptography import x509
from cryptography.x509.oid import NameOID

from .errors import MalformedInputError, MissingFieldError

# field name -> (OID, short name), in the order they are written to a Name
ATTRIBUTES = {
    "countryName": (NameOID.COUNTRY_NAME, "C"),
    "stateOrProvinceName": (NameOID.STATE_OR_PROVINCE_NAME, "ST"),
    "localityName": (NameOID.LOCALITY_NAME, "L"),
    "organizationName": (NameOID.ORGANIZATION_NAME, "O"),
    "organizationalUnitName": (NameOID.ORGANIZATIONAL_UNIT_NAME, "OU"),
    "commonName": (NameOID.COMMON_NAME, "CN"),
    "emailAddress": (NameOID.EMAIL_ADDRESS, None),
}

_SHORT_NAMES = {short: name for name, (_, short) in ATTRIBUTES.items() if short}
_BY_OID = {oid: name for name, (oid, _) in ATTRIBUTES.items()}

# X.520 PrintableString alphabet (countryName is encoded as PrintableString)
_PRINTABLE_RE = re.compile(r"[A-Za-z0-9 '()+,\-./:=?]*")


@dataclass(frozen=True)
class SubjectAttributes:
    commonName: str
    countryName: Optional[str] = None
    stateOrProvinceName: Optional[str] = None
    localityName: Optional[str] = None
    organizationName: Optional[str] = None
    organizationalUnitName: Optional[str] = None
    emailAddress: Optional[str] = None

    def __post_init__(self):
        if not self.commonName:
            raise MissingFieldError("subject commonName is required")
        if self.countryName is not None:
            if len(self.countryName) != 2 or not _PRINTABLE_RE.fullmatch(self.countryName):
                raise MalformedInputError(f"countryName must be a 2 letter code, got {self.countryName!r}")
        if self.emailAddress is not None and not self.emailAddress.isascii():
            raise MalformedInputError(f"emailAddress must be ASCII, got {self.emailAddress!r}")
        # NameAttribute enforces the per-OID length limits.
        for field, (oid, _) in ATTRIBUTES.items():
            value = getattr(self, field)
            if value is None:
                continue
            try:
                x509.NameAttribute(oid, value)
            except (ValueError, TypeError) as e:
                raise MalformedInputError(f"subject attribute {field} cannot be encoded", details=str(e))

    @classmethod
    def from_mapping(cls, data: Mapping[str, str]) -> "SubjectAttributes":
        """Build from a JSON-style mapping, accepting long or short names."""
        if not isinstance(data, Mapping):
            raise MalformedInputError("subject must be an object of attribute names to strings")
        values: Dict[str, str] = {}
        for key, value in data.items():
            name = _SHORT_NAMES.get(key, key)
            if name not in ATTRIBUTES:
                raise MissingFieldError(f"unrecognized subject attribute: {key}")
            if not isinstance(value, str):
                raise MalformedInputError(f"subject attribute {key} must be a string")
            if name in values:
                raise MalformedInputError(f"subject attribute {name} given more than once")
            values[name] = value
        if "commonName" not in values:
            raise MissingFieldError("subject commonName is required")
        return cls(**values)

    @classmethod
    def from_name(cls, name: x509.Name) -> "SubjectAttributes":
        """Build from a parsed X.509 name, rejecting attributes we do not interpret."""
        values: Dict[str, str] = {}
        for attr in name:
            field = _BY_OID.get(attr.oid)
            if field is None:
                raise MissingFieldError(f"unrecognized subject attribute: {attr.oid.dotted_string}")
            if field in values:
                raise MalformedInputError(f"subject attribute {field} given more than once")
            values[field] = attr.value
        if "commonName" not in values:
            raise MissingFieldError("subject commonName is required")
        return cls(**values)

    def to_name(self) -> x509.Name:
        attrs = []
        for field, (oid, _) in ATTRIBUTES.items():
            value = getattr(self, field)
            if value is not None:
                attrs.append(x509.NameAttribute(oid, value))
        return x509.Name(attrs)

    def to_dict(self) -> Dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}
