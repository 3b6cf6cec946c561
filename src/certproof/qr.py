"""
QR wire codec for signed attestations.

The QR record is a flat JSON object with short keys to save symbol
capacity:

    {"v": 1, "t": <tokenId>, "s": <signature>, "ts": <timestamp>,
     "iss": <issuer>, "valid": <bool>, ...metadata}

Every field that was signed travels in the record, so a relying party can
rebuild the exact signed payload from the scanned text and the expected
issuer address alone. Only ``v`` and ``s`` are not part of the signed
message.
"""

from __future__ import annotations

import base64
import io
import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import qrcode
from qrcode.image.pil import PilImage

from certproof.payload import RESERVED_FIELDS, Payload
from certproof.signing import SignedAttestation


WIRE_VERSION = 1

SIGNATURE_RE = re.compile(r"^0x[0-9a-fA-F]+$")

_RECORD_KEYS = ("v", "t", "s", "ts", "iss", "valid")


class WireFormatError(Exception):
    """Raised when scanned QR text is not a valid attestation record."""


@dataclass(frozen=True)
class WireRecord:
    """Flattened attestation as carried in a QR code."""

    token_id: int
    signature: str
    timestamp: int
    issuer: str
    valid: bool
    extra: dict[str, Any] = field(default_factory=dict)
    version: int = WIRE_VERSION

    @classmethod
    def from_attestation(cls, attestation: SignedAttestation) -> WireRecord:
        payload = attestation.payload
        return cls(
            token_id=payload.token_id,
            signature=attestation.signature,
            timestamp=payload.timestamp,
            issuer=payload.issuer,
            valid=payload.valid,
            extra=dict(payload.metadata),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "v": self.version,
            "t": self.token_id,
            "s": self.signature,
            "ts": self.timestamp,
            "iss": self.issuer,
            "valid": self.valid,
        }
        data.update(self.extra)
        return data

    def to_json(self) -> str:
        """Serialize the record as compact JSON."""
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    def to_payload(self) -> Payload:
        """Rebuild the signed payload this record was produced from."""
        return Payload(
            token_id=self.token_id,
            valid=self.valid,
            timestamp=self.timestamp,
            issuer=self.issuer,
            metadata=dict(self.extra),
        )


@dataclass(frozen=True)
class EncodedQR:
    """A wire record, its text and the rendered QR symbol."""

    record: WireRecord
    text: str
    image: PilImage

    def png_bytes(self) -> bytes:
        return image_to_png(self.image)

    def data_url(self) -> str:
        return image_to_data_url(self.image)


def build_qr(text: str, box_size: int = 10) -> qrcode.QRCode:
    """Lay out a QR symbol for the given text.

    Medium error correction tolerates about 15% symbol damage; a single
    module of quiet zone keeps the image compact.
    """
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=1,
    )
    qr.add_data(text)
    qr.make(fit=True)
    return qr


def render_qr(text: str, box_size: int = 10) -> PilImage:
    """Render text into a black-on-white QR image."""
    qr = build_qr(text, box_size=box_size)
    return qr.make_image(
        image_factory=PilImage,
        fill_color="black",
        back_color="white",
    )


def image_to_png(image: PilImage) -> bytes:
    buf = io.BytesIO()
    image.save(buf)
    return buf.getvalue()


def image_to_data_url(image: PilImage) -> str:
    encoded = base64.b64encode(image_to_png(image)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def encode(attestation: SignedAttestation, box_size: int = 10) -> EncodedQR:
    """Encode a signed attestation as a QR record and image.

    Args:
        attestation: The attestation to carry.
        box_size: Pixel size of a single QR module.

    Returns:
        EncodedQR with the wire record, its JSON text and the QR image.
    """
    record = WireRecord.from_attestation(attestation)
    text = record.to_json()
    return EncodedQR(record=record, text=text, image=render_qr(text, box_size=box_size))


def decode(data: str | bytes | Mapping[str, Any]) -> WireRecord:
    """Parse scanned QR text into a wire record.

    Args:
        data: The scanned text, or an already parsed JSON object.

    Returns:
        The parsed WireRecord.

    Raises:
        WireFormatError: If the record is malformed or incomplete.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except (ValueError, UnicodeDecodeError) as e:
            raise WireFormatError(f"QR data is not valid JSON: {e}") from e

    if not isinstance(data, Mapping):
        raise WireFormatError("QR data must be a JSON object")

    missing = [key for key in ("t", "s", "ts", "iss", "valid") if key not in data]
    if missing:
        raise WireFormatError(f"QR data is missing fields: {', '.join(missing)}")

    version = data.get("v", WIRE_VERSION)
    if isinstance(version, bool) or version != WIRE_VERSION:
        raise WireFormatError(f"Unsupported QR record version: {version!r}")

    token_id = data["t"]
    if isinstance(token_id, bool) or not isinstance(token_id, int) or token_id < 0:
        raise WireFormatError(f"Invalid token id in QR data: {token_id!r}")

    signature = data["s"]
    if not isinstance(signature, str) or not SIGNATURE_RE.match(signature):
        raise WireFormatError("Signature must be a 0x-prefixed hex string")

    timestamp = data["ts"]
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        raise WireFormatError(f"Invalid timestamp in QR data: {timestamp!r}")

    issuer = data["iss"]
    if not isinstance(issuer, str) or not issuer:
        raise WireFormatError("Issuer must be a non-empty string")

    valid = data["valid"]
    if not isinstance(valid, bool):
        raise WireFormatError("Validity flag must be a boolean")

    extra = {k: v for k, v in data.items() if k not in _RECORD_KEYS}
    clashes = sorted(set(extra) & RESERVED_FIELDS)
    if clashes:
        raise WireFormatError(f"QR data uses reserved keys: {', '.join(clashes)}")

    return WireRecord(
        version=version,
        token_id=token_id,
        signature=signature,
        timestamp=timestamp,
        issuer=issuer,
        valid=valid,
        extra=extra,
    )
