"""
Tests for the withdrawal fee schedule.

Rounding rule: the percentage fee is rounded up to 9 decimals, so the net
payout is floored.
"""

from decimal import Decimal

import pytest

from paylink_api.errors import FeeExceedsAmountError
from paylink_api.fees import FeeCalculator


@pytest.fixture
def calculator() -> FeeCalculator:
    return FeeCalculator(base_fee=Decimal("0.006"), percentage_rate=Decimal("0.0035"), decimals=9)


class TestComputeNet:
    """Tests for FeeCalculator.compute_net."""

    def test_one_unit(self, calculator):
        """gross=1.0 pays out exactly 0.9905."""
        fees = calculator.compute_net(Decimal("1.0"))

        assert fees.net == Decimal("0.9905")
        assert fees.base_fee == Decimal("0.006")
        assert fees.percentage_fee == Decimal("0.0035")
        assert fees.total_fee == Decimal("0.0095")
        assert fees.gross == fees.net + fees.total_fee

    def test_percentage_fee_rounds_up(self, calculator):
        """0.123456789 * 0.35% = 0.0004320987615 -> 0.000432099."""
        fees = calculator.compute_net(Decimal("0.123456789"))

        assert fees.percentage_fee == Decimal("0.000432099")
        assert fees.net == Decimal("0.11702469")

    def test_net_never_exceeds_exact_value(self, calculator):
        """Rounding only ever favours the operator."""
        gross = Decimal("0.333333333")
        fees = calculator.compute_net(gross)

        exact = gross - Decimal("0.006") - gross * Decimal("0.0035")
        assert fees.net <= exact
        assert exact - fees.net < Decimal("0.000000001")

    def test_small_amount_just_above_fees(self, calculator):
        fees = calculator.compute_net(Decimal("0.00603"))
        assert fees.percentage_fee == Decimal("0.000021105")
        assert fees.net == Decimal("0.000008895")

    def test_gross_equal_to_base_fee_rejected(self, calculator):
        with pytest.raises(FeeExceedsAmountError) as exc_info:
            calculator.compute_net(Decimal("0.006"))
        assert exc_info.value.retryable is False

    def test_gross_below_base_fee_rejected(self, calculator):
        with pytest.raises(FeeExceedsAmountError):
            calculator.compute_net(Decimal("0.005"))

    def test_deterministic(self, calculator):
        assert calculator.compute_net(Decimal("0.25")) == calculator.compute_net(Decimal("0.25"))

    def test_to_dict(self, calculator):
        data = calculator.compute_net(Decimal("1")).to_dict()
        assert set(data) == {"gross", "net", "base_fee", "percentage_fee", "total_fee"}
        assert Decimal(data["net"]) == Decimal("0.9905")
