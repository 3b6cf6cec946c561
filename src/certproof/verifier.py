"""
Attestation verifier.

Verifies signed certificate attestations by recovering the signing address
from the signature and comparing it with the expected issuer, and
cross-checks them against the live certificate ledger.

The two verdicts are always reported side by side: an attestation signed
while a certificate was valid stays a genuine attestation after the
certificate is revoked.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from eth_account import Account

from certproof.ledger import (
    CertificateLedger,
    LedgerCheckResult,
    LedgerStatus,
    check_ledger,
)
from certproof.payload import Payload
from certproof.qr import WireRecord, decode
from certproof.signing import message_hash, signable_message


logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 65
PERSONAL_SIGN_V = frozenset({0, 1, 27, 28})


@dataclass
class SignatureVerification:
    """Result of signature verification."""

    valid: bool
    expected_address: str
    recovered_address: str | None = None
    message_hash: str | None = None
    error: str | None = None


@dataclass
class CrossCheckResult:
    """Signature verdict and live ledger verdict for one attestation."""

    token_id: int
    payload: Payload
    signature: SignatureVerification
    ledger: LedgerCheckResult | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def signature_valid(self) -> bool:
        """Whether the attestation was genuinely signed by the issuer."""
        return self.signature.valid

    @property
    def ledger_valid_now(self) -> bool | None:
        """Current ledger validity; None when unknown or not checked."""
        if self.ledger is None or self.ledger.status == LedgerStatus.UNKNOWN:
            return None
        return self.ledger.status == LedgerStatus.VALID


def _signature_bytes(signature: str | bytes) -> bytes:
    """Decode a 0x-prefixed hex signature."""
    if isinstance(signature, bytes):
        raw = signature
    else:
        if not signature.startswith(("0x", "0X")):
            raise ValueError("Signature must be 0x-prefixed hex")
        raw = bytes.fromhex(signature[2:])

    if len(raw) != SIGNATURE_LENGTH:
        raise ValueError(f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(raw)}")
    # Personal-message signatures never carry a chain id in v.
    if raw[-1] not in PERSONAL_SIGN_V:
        raise ValueError(f"Invalid signature recovery id: {raw[-1]}")
    return raw


class SignatureVerifier:
    """Verifies attestation signatures against one expected issuer."""

    def __init__(self, expected_issuer: str) -> None:
        """Initialize the verifier.

        Args:
            expected_issuer: Address of the issuer whose signatures are accepted.
        """
        self.expected_issuer = expected_issuer

    def verify(self, payload: Payload, signature: str | bytes) -> SignatureVerification:
        """Verify a signature over a payload.

        The canonical hash is recomputed from the given payload, so any
        field that differs from what was signed makes the recovered address
        differ from the issuer. Never raises.

        Args:
            payload: The payload as presented.
            signature: 0x-prefixed hex signature (or raw bytes).

        Returns:
            SignatureVerification with the recovered address or an error.
        """
        try:
            digest = message_hash(payload)
        except Exception as e:
            return SignatureVerification(
                valid=False,
                expected_address=self.expected_issuer,
                error=f"Payload cannot be encoded: {e}",
            )

        hash_hex = "0x" + digest.hex()

        try:
            recovered = Account.recover_message(
                signable_message(digest),
                signature=_signature_bytes(signature),
            )
        except Exception as e:
            logger.debug("Signature recovery failed for token %s: %s", payload.token_id, e)
            return SignatureVerification(
                valid=False,
                expected_address=self.expected_issuer,
                message_hash=hash_hex,
                error=f"Signature recovery failed: {e}",
            )

        valid = recovered.lower() == self.expected_issuer.lower()
        return SignatureVerification(
            valid=valid,
            expected_address=self.expected_issuer,
            recovered_address=recovered,
            message_hash=hash_hex,
            error=None if valid else "Signature was not produced by the expected issuer",
        )


class CrossChecker:
    """Combines offline signature verification with a live ledger query."""

    def __init__(
        self,
        verifier: SignatureVerifier,
        ledger: CertificateLedger | None = None,
    ) -> None:
        """Initialize the cross-checker.

        Args:
            verifier: Signature verifier for the expected issuer.
            ledger: Ledger to query; the ledger check is skipped if None.
        """
        self.verifier = verifier
        self.ledger = ledger

    def check(self, record: WireRecord) -> CrossCheckResult:
        """Cross-check a decoded QR record.

        Args:
            record: The decoded wire record.

        Returns:
            CrossCheckResult with both verdicts.
        """
        payload = record.to_payload()
        signature_result = self.verifier.verify(payload, record.signature)

        warnings: list[str] = []
        ledger_result: LedgerCheckResult | None = None
        if self.ledger is not None:
            ledger_result = check_ledger(self.ledger, record.token_id)
            if ledger_result.status == LedgerStatus.UNKNOWN:
                warnings.append(ledger_result.message)
            elif signature_result.valid and ledger_result.status == LedgerStatus.INVALID:
                warnings.append(
                    f"Certificate {record.token_id} was valid when attested "
                    "but is no longer valid on the ledger"
                )

        logger.info(
            "Cross-check token %s: signature_valid=%s ledger=%s",
            record.token_id,
            signature_result.valid,
            ledger_result.status.value if ledger_result else "skipped",
        )

        return CrossCheckResult(
            token_id=record.token_id,
            payload=payload,
            signature=signature_result,
            ledger=ledger_result,
            warnings=warnings,
        )


def verify_qr(
    data: str | bytes | Mapping[str, Any],
    expected_issuer: str,
    ledger: CertificateLedger | None = None,
) -> CrossCheckResult:
    """Convenience function to decode and cross-check scanned QR data.

    Args:
        data: Scanned QR text or parsed record.
        expected_issuer: Address of the trusted issuer.
        ledger: Optional ledger for the live status check.

    Returns:
        CrossCheckResult with both verdicts.

    Raises:
        WireFormatError: If the QR data is malformed.
    """
    checker = CrossChecker(SignatureVerifier(expected_issuer), ledger=ledger)
    return checker.check(decode(data))
