"""
Key-value model and its two wire renderings.

Values travel either as a base64 string (legacy clients) or as an array of
byte integers (v2 clients). Both decode to the same ``bytes`` and the
conversion only happens here, at the serialization boundary.
"""

from __future__ import annotations

import base64
import binascii

from pydantic import BaseModel, Field, field_serializer, field_validator

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


def decode_byte_data(value):
    """Decode a base64 string or an array of byte integers into ``bytes``."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error as exc:
            raise ValueError(f"invalid base64 value: {exc}") from exc
    if isinstance(value, (list, tuple)):
        for byte in value:
            if isinstance(byte, bool) or not isinstance(byte, int) or not 0 <= byte <= 255:
                raise ValueError("byte array elements must be integers in 0..255")
        return bytes(value)
    raise ValueError("expected a byte array or a base64 encoded string")


class KeyValue(BaseModel):
    """One ``(key, value, version)`` entry, rendered with an integer-array value."""

    key: str = Field(..., min_length=1)
    value: bytes
    version: int = Field(..., ge=INT64_MIN, le=INT64_MAX)

    @field_validator("value", mode="before")
    @classmethod
    def _decode_value(cls, value):
        return decode_byte_data(value)

    @field_serializer("value")
    def _serialize_value(self, value: bytes) -> list[int]:
        return list(value)


class KeyValueOld(BaseModel):
    """Legacy rendering of :class:`KeyValue` with a base64 string value."""

    key: str
    value: str
    version: int

    @classmethod
    def from_kv(cls, kv: KeyValue) -> "KeyValueOld":
        return cls(
            key=kv.key,
            value=base64.b64encode(kv.value).decode("ascii"),
            version=kv.version,
        )

    def into_kv(self) -> KeyValue:
        return KeyValue(key=self.key, value=self.value, version=self.version)
