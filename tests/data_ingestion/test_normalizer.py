"""
Tests for the On-Chain Normalizer.

Tests cover:
- Positional and keyword argument decoding
- Exact integer conversion (no floating point)
- Address / hash canonicalization
- MalformedEventError on bad input
- Payload round trip used by the worker and the query engine
"""

import pytest

from core.exceptions import MalformedEventError
from data_ingestion.types import (
    EventKind,
    FlashLoanEvent,
    LiquidationCallEvent,
    RawChainLog,
    SupplyEvent,
    WithdrawEvent,
)

from tests.conftest import ALICE, BOB, CAROL, POOL, USDC, WETH, make_liquidation, make_withdraw, tx


# =============================================================
# TEST: EventKind
# =============================================================

class TestEventKind:
    """Test kind parsing."""

    @pytest.mark.parametrize("spelling", ["FlashLoan", "flashLoan", "flash-loan", "flash_loan", "FLASH_LOAN"])
    def test_parse_spellings(self, spelling):
        assert EventKind.parse(spelling) == EventKind.FLASH_LOAN

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            EventKind.parse("Borrow")


# =============================================================
# TEST: normalize
# =============================================================

class TestNormalize:
    """Test chain log -> DomainEvent."""

    def test_withdraw_positional(self, normalizer):
        event = normalizer.normalize("Withdraw", [WETH, ALICE, ALICE, 10 ** 18], tx(1))

        assert isinstance(event, WithdrawEvent)
        assert event.kind == EventKind.WITHDRAW
        assert event.amount == "1000000000000000000"
        assert event.tx_hash == tx(1)

    def test_uint256_max_is_exact(self, normalizer):
        big = 2 ** 256 - 1
        event = normalizer.normalize("Supply", [USDC, BOB, BOB, big, 0], tx(2))

        assert isinstance(event, SupplyEvent)
        assert event.amount == str(big)
        assert int(event.amount) == big

    def test_addresses_lower_cased(self, normalizer):
        mixed = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
        event = normalizer.normalize("Withdraw", [mixed, ALICE, ALICE, 1], "0x" + "AB" * 32)

        assert event.reserve == USDC
        assert event.tx_hash == "0x" + "ab" * 32

    def test_bytes_address_and_hash(self, normalizer):
        event = normalizer.normalize(
            "Withdraw",
            [bytes.fromhex(WETH[2:]), ALICE, ALICE, 5],
            bytes.fromhex(tx(9)[2:]),
        )

        assert event.reserve == WETH
        assert event.tx_hash == tx(9)

    def test_mapping_arguments(self, normalizer):
        args = {
            "target": POOL,
            "initiator": CAROL,
            "asset": USDC,
            "amount": "0x3e8",
            "interestRateMode": 0,
            "premium": 1,
            "referralCode": 0,
        }
        event = normalizer.normalize("FlashLoan", args, tx(3))

        assert isinstance(event, FlashLoanEvent)
        assert event.amount == "1000"
        assert event.interest_rate_mode == "0"

    def test_boolean_preserved(self, normalizer):
        event = normalizer.normalize(
            "LiquidationCall",
            [WETH, USDC, ALICE, 100, 200, BOB, True],
            tx(4),
        )

        assert isinstance(event, LiquidationCallEvent)
        assert event.receive_a_token is True
        assert event.primary_amount == 200

    def test_unknown_event(self, normalizer):
        with pytest.raises(MalformedEventError):
            normalizer.normalize("Borrow", [], tx(1))

    def test_missing_argument(self, normalizer):
        with pytest.raises(MalformedEventError) as exc_info:
            normalizer.normalize("Withdraw", [WETH, ALICE, ALICE], tx(1))

        assert exc_info.value.field_name == "amount"

    def test_missing_mapping_key(self, normalizer):
        with pytest.raises(MalformedEventError):
            normalizer.normalize("Withdraw", {"reserve": WETH, "user": ALICE, "to": ALICE}, tx(1))

    @pytest.mark.parametrize("amount", [-1, 1.5, "12abc", "", None, True])
    def test_bad_amount(self, normalizer, amount):
        with pytest.raises(MalformedEventError):
            normalizer.normalize("Withdraw", [WETH, ALICE, ALICE, amount], tx(1))

    def test_uint16_overflow(self, normalizer):
        with pytest.raises(MalformedEventError):
            normalizer.normalize("Supply", [USDC, BOB, BOB, 1, 2 ** 16], tx(2))

    def test_bad_address(self, normalizer):
        with pytest.raises(MalformedEventError):
            normalizer.normalize("Withdraw", ["0x1234", ALICE, ALICE, 1], tx(1))

    def test_bad_tx_hash(self, normalizer):
        with pytest.raises(MalformedEventError):
            normalizer.normalize("Withdraw", [WETH, ALICE, ALICE, 1], "0xdead")


# =============================================================
# TEST: batch and payload round trip
# =============================================================

class TestBatchAndPayload:
    """Test normalize_batch and from_payload."""

    def test_normalize_batch_drops_malformed(self, normalizer):
        logs = [
            RawChainLog("Withdraw", [WETH, ALICE, ALICE, 1], tx(1)),
            RawChainLog("Withdraw", [WETH, ALICE, ALICE, -1], tx(2)),
            RawChainLog("Repay", [], tx(3)),
        ]

        events = normalizer.normalize_batch(logs)

        assert len(events) == 1
        assert events[0].tx_hash == tx(1)

    def test_payload_is_camel_case(self):
        payload = make_liquidation().to_payload()

        assert payload["collateralAsset"] == WETH
        assert payload["liquidatedCollateralAmount"] == "420000000000000000"
        assert payload["receiveAToken"] is False
        assert payload["txHash"] == tx(4)

    def test_from_payload_round_trip(self, normalizer):
        event = make_liquidation()

        rebuilt = normalizer.from_payload("LiquidationCall", event.to_payload())

        assert rebuilt == event

    def test_from_payload_ignores_tags_and_parses_bool_strings(self, normalizer):
        payload = {
            **make_liquidation().to_payload(),
            "receiveAToken": "true",
            "protocol": "aave-v3",
            "eventType": "LiquidationCall",
        }

        rebuilt = normalizer.from_payload("LiquidationCall", payload)

        assert rebuilt.receive_a_token is True

    def test_from_payload_missing_field(self, normalizer):
        payload = make_withdraw().to_payload()
        del payload["amount"]

        with pytest.raises(MalformedEventError):
            normalizer.from_payload("Withdraw", payload)

    def test_dedup_key_is_deterministic(self):
        assert make_withdraw().dedup_key == make_withdraw().dedup_key
        assert make_withdraw().dedup_key != make_withdraw(amount="2").dedup_key
