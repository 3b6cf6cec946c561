"""
Issuer key handling and attestation signing.

Payloads are signed as Ethereum personal messages: the keccak-256 digest of
the canonical payload bytes is framed with the EIP-191 prefix before the
secp256k1 signature is applied, so a signature can never double as a
transaction authorization.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from eth_account import Account
from eth_account.messages import SignableMessage, encode_defunct
from eth_account.signers.local import LocalAccount
from eth_utils import keccak

from certproof.payload import Payload, PayloadError, canonicalize


logger = logging.getLogger(__name__)

DEFAULT_KEY_ENV = "UNIVERSITY_PRIVATE_KEY"


class KeyConfigurationError(Exception):
    """Raised when issuer key material is absent or malformed."""


def message_hash(payload: Payload) -> bytes:
    """Return the keccak-256 digest of the canonical payload."""
    return keccak(canonicalize(payload))


def signable_message(digest: bytes) -> SignableMessage:
    """Frame a 32-byte digest as an EIP-191 personal message."""
    return encode_defunct(primitive=digest)


@dataclass(frozen=True)
class IssuerKey:
    """Private signing key of the issuing authority."""

    account: LocalAccount

    @property
    def address(self) -> str:
        """Checksummed address of the key."""
        return self.account.address

    @classmethod
    def from_hex(cls, private_key: str | None) -> IssuerKey:
        """Load a key from its hex encoding.

        Raises:
            KeyConfigurationError: If the key is absent or not a valid
                secp256k1 private key.
        """
        if not private_key or not private_key.strip():
            raise KeyConfigurationError("Issuer private key is not configured")

        try:
            account = Account.from_key(private_key.strip())
        except Exception as e:
            raise KeyConfigurationError(f"Invalid issuer private key: {e}") from e

        logger.debug("Loaded issuer key for %s", account.address)
        return cls(account=account)

    @classmethod
    def from_env(cls, var: str = DEFAULT_KEY_ENV) -> IssuerKey:
        """Load a key from an environment variable.

        Raises:
            KeyConfigurationError: If the variable is unset or malformed.
        """
        value = os.environ.get(var)
        if not value:
            raise KeyConfigurationError(f"Environment variable {var} is not set")
        return cls.from_hex(value)

    def __repr__(self) -> str:
        return f"IssuerKey(address={self.address!r})"


@dataclass(frozen=True)
class SignedAttestation:
    """A payload together with the issuer signature over it."""

    payload: Payload
    signature: str
    message_hash: str


class AttestationSigner:
    """Signs attestation payloads with a fixed issuer key."""

    def __init__(self, key: IssuerKey) -> None:
        self.key = key

    @property
    def address(self) -> str:
        return self.key.address

    def sign(self, payload: Payload) -> SignedAttestation:
        """Sign a payload.

        Args:
            payload: Payload built for this signer's address.

        Returns:
            The SignedAttestation with 0x-prefixed hex signature and hash.

        Raises:
            PayloadError: If the payload names a different issuer.
        """
        if payload.issuer.lower() != self.address.lower():
            raise PayloadError(
                f"Payload issuer {payload.issuer} does not match signing key {self.address}"
            )

        digest = message_hash(payload)
        signed = self.key.account.sign_message(signable_message(digest))

        logger.debug("Signed attestation for token %s", payload.token_id)
        return SignedAttestation(
            payload=payload,
            signature="0x" + bytes(signed.signature).hex(),
            message_hash="0x" + digest.hex(),
        )
