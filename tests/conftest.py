"""
Shared fixtures for the pipeline tests.
"""

import pytest
from datetime import datetime, timezone

from core.clock import MockClock
from data_ingestion.normalizers import EventNormalizer
from data_ingestion.types import (
    FlashLoanEvent,
    LiquidationCallEvent,
    SupplyEvent,
    WithdrawEvent,
)
from entity_store import EntityStoreWriter, InMemoryEntityStore
from job_queue import DurableQueue, RetryPolicy, SqlQueueBackend


# ============================================================
# ADDRESSES
# ============================================================

USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
CAROL = "0x3333333333333333333333333333333333333333"
POOL = "0x87870bca3f3fd6335c3f4ce8392d69350b4fa4e2"


def tx(n: int) -> str:
    return "0x" + f"{n:064x}"


def make_withdraw(amount: str = "1000000000000000000", user: str = ALICE, reserve: str = WETH, n: int = 1):
    return WithdrawEvent(reserve=reserve, user=user, to=user, amount=amount, tx_hash=tx(n))


def make_supply(amount: str = "5000000", user: str = BOB, reserve: str = USDC, n: int = 2):
    return SupplyEvent(
        reserve=reserve,
        user=user,
        on_behalf_of=user,
        amount=amount,
        referral_code="0",
        tx_hash=tx(n),
    )


def make_flash_loan(amount: str = "250000000", initiator: str = CAROL, asset: str = USDC, n: int = 3):
    return FlashLoanEvent(
        target=POOL,
        initiator=initiator,
        asset=asset,
        amount=amount,
        interest_rate_mode="0",
        premium="125000",
        referral_code="0",
        tx_hash=tx(n),
    )


def make_liquidation(n: int = 4):
    return LiquidationCallEvent(
        collateral_asset=WETH,
        debt_asset=USDC,
        user=ALICE,
        debt_to_cover="1000000000",
        liquidated_collateral_amount="420000000000000000",
        liquidator=BOB,
        receive_a_token=False,
        tx_hash=tx(n),
    )


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    return MockClock(datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def normalizer():
    return EventNormalizer()


@pytest.fixture
def sql_queue(clock):
    """DurableQueue on an in-memory SQLite database."""
    backend = SqlQueueBackend.from_url("sqlite://", "tx-queue")
    return DurableQueue(
        backend,
        name="tx-queue",
        default_policy=RetryPolicy(attempts=5, base_delay_ms=1000),
        clock=clock,
        poll_interval=0.01,
    )


@pytest.fixture
def memory_store(clock):
    return InMemoryEntityStore(clock=clock)


@pytest.fixture
def writer(memory_store):
    return EntityStoreWriter(memory_store)
