"""Shared fixtures for certproof tests."""

import pytest
from eth_account import Account

from certproof.issuer import CertificateIssuer
from certproof.ledger import LedgerError
from certproof.payload import PayloadBuilder
from certproof.signing import AttestationSigner, IssuerKey


# Hardhat development account #1
ISSUER_PRIVATE_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
ISSUER_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

CONTRACT_ADDRESS = "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0"
RPC_URL = "http://127.0.0.1:8545"

FIXED_TIME = 1_700_000_000.75


class FakeLedger:
    """In-memory certificate ledger."""

    def __init__(self, valid_tokens=(), reachable=True):
        self.valid_tokens = set(valid_tokens)
        self.reachable = reachable
        self.queries = []

    def revoke(self, token_id):
        self.valid_tokens.discard(token_id)

    def is_valid(self, token_id):
        self.queries.append(token_id)
        if not self.reachable:
            raise LedgerError("connection refused")
        return token_id in self.valid_tokens


@pytest.fixture
def issuer_key():
    return IssuerKey.from_hex(ISSUER_PRIVATE_KEY)


@pytest.fixture
def other_key():
    return IssuerKey(account=Account.create())


@pytest.fixture
def signer(issuer_key):
    return AttestationSigner(issuer_key)


@pytest.fixture
def builder(issuer_key):
    return PayloadBuilder(issuer_key.address, clock=lambda: FIXED_TIME)


@pytest.fixture
def payload(builder):
    return builder.build(42, True, {"name": "Alice", "institution": "University"})


@pytest.fixture
def ledger():
    return FakeLedger(valid_tokens={42})


@pytest.fixture
def issuer(signer, ledger):
    return CertificateIssuer(signer, ledger=ledger, clock=lambda: FIXED_TIME)
