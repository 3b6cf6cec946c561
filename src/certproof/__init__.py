"""
certproof - signed, offline-checkable certificate attestations.

Supports:
- Canonical attestation payloads (sorted-key compact JSON)
- keccak-256 + Ethereum personal-message (EIP-191) signatures
- Issuer recovery from signatures
- Compact QR wire records and QR image rendering
- Cross-checking against the live certificate ledger (JSON-RPC)
"""

from certproof.payload import Payload, PayloadBuilder, PayloadError, canonicalize
from certproof.signing import (
    AttestationSigner,
    IssuerKey,
    KeyConfigurationError,
    SignedAttestation,
)
from certproof.qr import WireFormatError, WireRecord, decode, encode
from certproof.ledger import CertificateLedger, LedgerError, LedgerStatus
from certproof.verifier import (
    CrossChecker,
    CrossCheckResult,
    SignatureVerification,
    SignatureVerifier,
    verify_qr,
)
from certproof.issuer import CertificateIssuer

__version__ = "0.1.0"

__all__ = [
    "Payload",
    "PayloadBuilder",
    "PayloadError",
    "canonicalize",
    "AttestationSigner",
    "IssuerKey",
    "KeyConfigurationError",
    "SignedAttestation",
    "WireFormatError",
    "WireRecord",
    "decode",
    "encode",
    "CertificateLedger",
    "LedgerError",
    "LedgerStatus",
    "CrossChecker",
    "CrossCheckResult",
    "SignatureVerification",
    "SignatureVerifier",
    "verify_qr",
    "CertificateIssuer",
]
