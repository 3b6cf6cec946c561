"""
Attestation payload construction and canonical encoding.

The payload is the exact record an issuer signs: the certificate token id,
its validity at signing time, the signing time and the issuer address, with
caller metadata spliced in at the top level.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable


RESERVED_FIELDS = frozenset({"tokenId", "valid", "timestamp", "issuer"})

# Short keys used by the QR wire record. Metadata may not reuse them or the
# record could not be mapped back onto the signed payload.
WIRE_FIELDS = frozenset({"v", "t", "s", "ts", "iss"})


class PayloadError(Exception):
    """Raised when a payload cannot be built from the given input."""


@dataclass(frozen=True)
class Payload:
    """The signed attestation record."""

    token_id: int
    valid: bool
    timestamp: int
    issuer: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        clashes = sorted(set(self.metadata) & (RESERVED_FIELDS | WIRE_FIELDS))
        if clashes:
            raise PayloadError(f"Metadata uses reserved keys: {', '.join(clashes)}")

    def to_dict(self) -> dict[str, Any]:
        """Return the payload under its signed field names."""
        data: dict[str, Any] = {
            "tokenId": self.token_id,
            "valid": self.valid,
            "timestamp": self.timestamp,
            "issuer": self.issuer,
        }
        data.update(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Payload:
        """Create a Payload from its signed field names.

        Raises:
            PayloadError: If a reserved field is missing.
        """
        try:
            return cls(
                token_id=data["tokenId"],
                valid=data["valid"],
                timestamp=data["timestamp"],
                issuer=data["issuer"],
                metadata={k: v for k, v in data.items() if k not in RESERVED_FIELDS},
            )
        except KeyError as e:
            raise PayloadError(f"Missing payload field: {e.args[0]}") from e


def canonicalize(payload: Payload) -> bytes:
    """Serialize a payload to its canonical byte form.

    Keys are sorted at every level and no whitespace is emitted, so two
    payloads holding the same fields always encode identically regardless
    of the order they were assembled in.

    Args:
        payload: The payload to encode.

    Returns:
        UTF-8 encoded canonical JSON.

    Raises:
        PayloadError: If a field holds text that has no UTF-8 encoding.
    """
    text = json.dumps(
        payload.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise PayloadError("Payload contains text that cannot be encoded as UTF-8") from e


def coerce_token_id(value: Any) -> int:
    """Coerce a token id to a non-negative integer.

    Raises:
        PayloadError: If the value is not a non-negative integer.
    """
    if isinstance(value, bool):
        raise PayloadError("Token id must be an integer, not a boolean")

    if isinstance(value, int):
        token_id = value
    elif isinstance(value, float) and value.is_integer():
        token_id = int(value)
    elif isinstance(value, str) and value.strip().isascii() and value.strip().isdigit():
        token_id = int(value.strip())
    else:
        raise PayloadError(f"Invalid token id: {value!r}")

    if token_id < 0:
        raise PayloadError(f"Token id must be non-negative: {token_id}")
    return token_id


def normalize_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Normalize metadata to JSON-native values and check its keys.

    A JSON round trip turns tuples into lists and non-string keys into
    strings, so the metadata that is signed is the metadata a relying party
    reads back from the QR record.

    Raises:
        PayloadError: If metadata is not serializable or reuses a reserved key.
    """
    if not metadata:
        return {}
    if not isinstance(metadata, dict):
        raise PayloadError("Metadata must be a mapping")

    try:
        normalized = json.loads(json.dumps(metadata, allow_nan=False))
        # Lone surrogates survive the escaped round trip but not UTF-8.
        json.dumps(normalized, ensure_ascii=False).encode("utf-8")
    except UnicodeEncodeError as e:
        raise PayloadError("Metadata contains text that cannot be encoded as UTF-8") from e
    except (TypeError, ValueError) as e:
        raise PayloadError(f"Metadata is not JSON serializable: {e}") from e

    clashes = sorted(set(normalized) & (RESERVED_FIELDS | WIRE_FIELDS))
    if clashes:
        raise PayloadError(f"Metadata uses reserved keys: {', '.join(clashes)}")

    return normalized


class PayloadBuilder:
    """Builds attestation payloads for a single issuer."""

    def __init__(
        self,
        issuer: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the builder.

        Args:
            issuer: Address of the signing identity stamped on every payload.
            clock: Source of the current Unix time.
        """
        self.issuer = issuer
        self._clock = clock

    def build(
        self,
        token_id: Any,
        currently_valid: Any,
        metadata: dict[str, Any] | None = None,
    ) -> Payload:
        """Build a payload stamped with the current time.

        Args:
            token_id: Certificate token id (int or decimal string).
            currently_valid: Validity snapshot, coerced to bool.
            metadata: Extra key/value pairs to sign alongside the record.

        Returns:
            The new Payload.

        Raises:
            PayloadError: If the token id or metadata are invalid.
        """
        return Payload(
            token_id=coerce_token_id(token_id),
            valid=bool(currently_valid),
            timestamp=int(self._clock()),
            issuer=self.issuer,
            metadata=normalize_metadata(metadata),
        )
