"""
Shared fixtures: a scripted relay, a per-test SQLite store and wallet signing.
"""

import asyncio
from decimal import Decimal
from typing import Callable, Optional

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from paylink_api.claim import ClaimProcessor
from paylink_api.config import RelayerConfig
from paylink_api.db import LinkStore
from paylink_api.deposit import DepositRecorder
from paylink_api.signer import build_claim_message

OPERATOR = "0x00000000000000000000000000000000000000aa"


class FakeRelay:
    """In-memory relay with scripted failures and delays."""

    def __init__(self, balance: Decimal = Decimal("10")):
        self.balance = Decimal(balance)
        self.delay = 0.0
        self.failures: list[Exception] = []
        self.on_withdraw: Optional[Callable[[Decimal, str], None]] = None
        self.withdraw_calls = 0
        self.withdrawals: list[tuple[Decimal, str]] = []
        self.deposits: list[Decimal] = []
        self.balance_reads = 0

    async def deposit(self, amount: Decimal) -> str:
        self.deposits.append(amount)
        return f"deposit-{len(self.deposits)}"

    async def withdraw(self, amount: Decimal, recipient: str) -> str:
        self.withdraw_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.on_withdraw is not None:
            self.on_withdraw(amount, recipient)
        if self.failures:
            raise self.failures.pop(0)
        self.balance -= amount
        self.withdrawals.append((amount, recipient))
        return f"payout-{len(self.withdrawals)}"

    async def get_balance(self) -> Decimal:
        self.balance_reads += 1
        return self.balance

    async def check_connectivity(self) -> bool:
        return True


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'paylink.db'}"


@pytest.fixture
def store(database_url):
    link_store = LinkStore(database_url, max_amount=Decimal("100"))
    yield link_store
    link_store.close()


@pytest.fixture
def relay() -> FakeRelay:
    return FakeRelay()


@pytest.fixture
def relayer_config() -> RelayerConfig:
    return RelayerConfig(
        operator_address=OPERATOR,
        safety_buffer=Decimal("0.001"),
        relay_fee_estimate=Decimal("0.002"),
        withdraw_timeout=2.0,
        balance_timeout=2.0,
    )


@pytest.fixture
def processor(store, relay, relayer_config) -> ClaimProcessor:
    return ClaimProcessor(store, relay, relayer_config)


@pytest.fixture
def recorder(store) -> DepositRecorder:
    return DepositRecorder(store)


@pytest.fixture
def deposited_link(store, recorder):
    """A 1 SOL link with a recorded deposit."""
    link = store.create(Decimal("1"), "SOL")
    return recorder.attach(link.id, "tx-deposit-1", "0x1111111111111111111111111111111111111111")


@pytest.fixture
def recipient():
    return Account.create()


@pytest.fixture
def sign_claim() -> Callable[..., str]:
    """Sign the canonical claim message the way a wallet would."""

    def _sign(account, link_id: str, amount) -> str:
        message = encode_defunct(text=build_claim_message(link_id, Decimal(str(amount))))
        signed = Account.sign_message(message, private_key=account.key)
        return "0x" + bytes(signed.signature).hex()

    return _sign
