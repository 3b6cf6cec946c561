"""
Certificate ledger client.

Reads the live validity of a certificate token from the certificate
contract over Ethereum JSON-RPC (``eth_call`` of ``isValid(uint256)``).
The ledger is only ever read; minting and revocation happen elsewhere.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
from eth_utils import keccak, to_checksum_address


logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "http://127.0.0.1:8545"

IS_VALID_SELECTOR = keccak(text="isValid(uint256)")[:4]


class LedgerStatus(Enum):
    """Live ledger status of a certificate."""

    VALID = "valid"
    INVALID = "invalid"
    UNKNOWN = "unknown"


class LedgerError(Exception):
    """Raised when the ledger cannot be queried."""


@dataclass
class LedgerCheckResult:
    """Result of a ledger status query."""

    status: LedgerStatus
    token_id: int
    message: str


def encode_is_valid_call(token_id: int) -> str:
    """ABI-encode an ``isValid(uint256)`` call.

    Args:
        token_id: Token id, must fit in a uint256.

    Returns:
        0x-prefixed call data.
    """
    if token_id < 0 or token_id >= 2**256:
        raise LedgerError(f"Token id {token_id} does not fit in uint256")
    return "0x" + (IS_VALID_SELECTOR + token_id.to_bytes(32, byteorder="big")).hex()


def decode_bool_result(result: Any) -> bool:
    """Decode an ABI-encoded bool return word.

    Raises:
        LedgerError: If the result is not a single 32-byte word.
    """
    if not isinstance(result, str) or not result.startswith("0x") or len(result) != 66:
        raise LedgerError(f"Unexpected isValid result: {result!r}")
    try:
        return int(result, 16) != 0
    except ValueError as e:
        raise LedgerError(f"Unexpected isValid result: {result!r}") from e


class CertificateLedger:
    """Reads certificate validity from the certificate contract."""

    def __init__(
        self,
        contract_address: str,
        rpc_url: str = DEFAULT_RPC_URL,
        timeout: float = 30.0,
        verify_ssl: bool = True,
    ) -> None:
        """Initialize the ledger client.

        Args:
            contract_address: Address of the certificate contract.
            rpc_url: Ethereum JSON-RPC endpoint.
            timeout: HTTP request timeout in seconds.
            verify_ssl: Whether to verify SSL certificates.

        Raises:
            ValueError: If the contract address is malformed.
        """
        self.contract_address = to_checksum_address(contract_address)
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.verify_ssl = verify_ssl

    def is_valid(self, token_id: int) -> bool:
        """Return the contract's current ``isValid`` answer for a token.

        Raises:
            LedgerError: If the ledger is unreachable or the call fails.
        """
        request = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_call",
            "params": [
                {"to": self.contract_address, "data": encode_is_valid_call(token_id)},
                "latest",
            ],
        }

        try:
            with httpx.Client(timeout=self.timeout, verify=self.verify_ssl) as client:
                response = client.post(self.rpc_url, json=request)
                response.raise_for_status()
                body = response.json()

        except httpx.HTTPStatusError as e:
            raise LedgerError(
                f"HTTP error querying ledger at {self.rpc_url}: {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise LedgerError(f"Network error querying ledger: {e}") from e
        except httpx.InvalidURL as e:
            raise LedgerError(f"Invalid ledger URL {self.rpc_url!r}: {e}") from e
        except ValueError as e:
            raise LedgerError(f"Invalid JSON-RPC response from {self.rpc_url}") from e

        if not isinstance(body, dict):
            raise LedgerError("Invalid JSON-RPC response: expected an object")

        error = body.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else error
            raise LedgerError(f"Ledger call failed: {message}")

        valid = decode_bool_result(body.get("result"))
        logger.debug("Ledger reports token %s valid=%s", token_id, valid)
        return valid

    def check(self, token_id: int) -> LedgerCheckResult:
        """Query the ledger without raising. See check_ledger."""
        return check_ledger(self, token_id)


def check_ledger(ledger: Any, token_id: int) -> LedgerCheckResult:
    """Query a ledger and report the outcome as a status.

    An unreachable or failing ledger yields UNKNOWN, never INVALID.

    Args:
        ledger: Any object with an ``is_valid(token_id) -> bool`` method.
        token_id: Token to look up.

    Returns:
        LedgerCheckResult for the token.
    """
    try:
        valid = ledger.is_valid(token_id)
    except LedgerError as e:
        logger.warning("Ledger status unknown for token %s: %s", token_id, e)
        return LedgerCheckResult(
            status=LedgerStatus.UNKNOWN,
            token_id=token_id,
            message=f"Could not query ledger: {e}",
        )

    if valid:
        return LedgerCheckResult(
            status=LedgerStatus.VALID,
            token_id=token_id,
            message=f"Certificate {token_id} is valid on the ledger",
        )
    return LedgerCheckResult(
        status=LedgerStatus.INVALID,
        token_id=token_id,
        message=f"Certificate {token_id} is not valid on the ledger",
    )
