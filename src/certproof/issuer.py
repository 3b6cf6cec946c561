"""
Signed QR issuance.

Looks up a certificate's current validity, builds and signs the attestation
payload and encodes it as a QR record.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from certproof.ledger import CertificateLedger, LedgerError
from certproof.payload import PayloadBuilder, coerce_token_id
from certproof.qr import EncodedQR, encode
from certproof.signing import AttestationSigner, SignedAttestation


logger = logging.getLogger(__name__)

# Filled in under caller metadata when an issuer opts in.
DEFAULT_METADATA = {"name": "Certificate", "institution": "University"}


@dataclass(frozen=True)
class IssuedQR:
    """An issued attestation and its QR encoding."""

    attestation: SignedAttestation
    qr: EncodedQR


class CertificateIssuer:
    """Issues signed QR attestations for one issuer key."""

    def __init__(
        self,
        signer: AttestationSigner,
        ledger: CertificateLedger | None = None,
        clock: Callable[[], float] = time.time,
        default_metadata: dict[str, Any] | None = None,
    ) -> None:
        self.signer = signer
        self.ledger = ledger
        self.default_metadata = dict(default_metadata or {})
        self.builder = PayloadBuilder(signer.address, clock=clock)

    def issue(
        self,
        token_id: Any,
        metadata: dict[str, Any] | None = None,
        valid: bool | None = None,
    ) -> IssuedQR:
        """Issue a signed QR attestation.

        Args:
            token_id: Certificate token id.
            metadata: Extra fields to sign and carry in the QR record.
            valid: Validity to attest. Read from the ledger when None.

        Returns:
            IssuedQR with the attestation and its encoding.

        Raises:
            PayloadError: If the token id or metadata are invalid.
            LedgerError: If validity must be read and the ledger fails.
        """
        token_id = coerce_token_id(token_id)

        if valid is None:
            if self.ledger is None:
                raise LedgerError("No ledger configured to read certificate validity")
            valid = self.ledger.is_valid(token_id)

        if self.default_metadata:
            if metadata is None:
                metadata = dict(self.default_metadata)
            elif isinstance(metadata, dict):
                metadata = {**self.default_metadata, **metadata}

        payload = self.builder.build(token_id, valid, metadata)
        attestation = self.signer.sign(payload)
        logger.info("Issued attestation for token %s (valid=%s)", token_id, payload.valid)
        return IssuedQR(attestation=attestation, qr=encode(attestation))
