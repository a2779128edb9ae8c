"""Shared fixtures for the faucet test suite."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, List, Optional, Tuple

import pytest
from starlette.testclient import TestClient

from faucet.server import create_app
from wallet.wallet import Confirmation, PendingTransfer, WalletIdentity, Web3ChainClient


# Hardhat/Anvil development accounts #0 and #1
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
RECIPIENT = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
TX_HASH = "0x" + "ab" * 32

FAUCET_ENV = ("RPC_URL", "PRIVATE_KEY", "PORT", "HOST", "CONFIRM_TIMEOUT_S", "CONFIRM_POLL_S", "LOG_LEVEL")


class FakeChainClient:
    """Chain client double: real address validation, scripted chain outcomes."""

    def __init__(
        self,
        submit_error: Optional[Exception] = None,
        confirm_error: Optional[Exception] = None,
        confirm_delay: float = 0.0,
    ):
        self.submit_error = submit_error
        self.confirm_error = confirm_error
        self.confirm_delay = confirm_delay
        self.validated: List[Any] = []
        self.submitted: List[Tuple[WalletIdentity, str, Decimal]] = []
        self.waited: List[PendingTransfer] = []
        self.closed = False

    def is_address(self, value: Any) -> bool:
        self.validated.append(value)
        return Web3ChainClient.is_address(value)

    async def submit_transfer(self, identity: WalletIdentity, recipient: str, amount: Decimal) -> PendingTransfer:
        self.submitted.append((identity, recipient, amount))
        if self.submit_error is not None:
            raise self.submit_error
        return PendingTransfer(
            tx_hash=TX_HASH,
            sender=identity.address,
            recipient=recipient,
            value_wei=int(amount * 10**18),
            nonce=len(self.submitted) - 1,
        )

    async def wait_for_confirmation(self, pending: PendingTransfer) -> Confirmation:
        self.waited.append(pending)
        if self.confirm_delay:
            await asyncio.sleep(self.confirm_delay)
        if self.confirm_error is not None:
            raise self.confirm_error
        return Confirmation(tx_hash=pending.tx_hash, block_number=1, gas_used=21_000)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def identity() -> WalletIdentity:
    return WalletIdentity.from_private_key(TEST_PRIVATE_KEY)


@pytest.fixture
def chain() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def client(chain, identity) -> TestClient:
    return TestClient(create_app(chain, identity))


@pytest.fixture
def clean_env(monkeypatch):
    for name in FAUCET_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
