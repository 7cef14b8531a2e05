"""
Withdrawal fee schedule.

Fees are a fixed base fee plus a percentage of the gross amount. The
percentage part is rounded up to the amount quantum, which floors the net
payout; base fee and gross already sit on the quantum, so `net` is exact.
"""

from dataclasses import dataclass
from decimal import ROUND_UP, Decimal

from .errors import FeeExceedsAmountError


@dataclass(frozen=True)
class FeeBreakdown:
    gross: Decimal
    net: Decimal
    base_fee: Decimal
    percentage_fee: Decimal

    @property
    def total_fee(self) -> Decimal:
        return self.base_fee + self.percentage_fee

    def to_dict(self) -> dict[str, str]:
        return {
            "gross": format(self.gross, "f"),
            "net": format(self.net, "f"),
            "base_fee": format(self.base_fee, "f"),
            "percentage_fee": format(self.percentage_fee, "f"),
            "total_fee": format(self.total_fee, "f"),
        }


class FeeCalculator:
    def __init__(
        self,
        base_fee: Decimal = Decimal("0.006"),
        percentage_rate: Decimal = Decimal("0.0035"),
        decimals: int = 9,
    ):
        self.base_fee = Decimal(base_fee)
        self.percentage_rate = Decimal(percentage_rate)
        self.quantum = Decimal(1).scaleb(-decimals)

    def compute_net(self, gross: Decimal) -> FeeBreakdown:
        """
        Split `gross` into net payout and fees.

        Raises:
            FeeExceedsAmountError: fees leave nothing to pay out. Callers must
                treat this as a permanent rejection.
        """
        gross = Decimal(gross)
        base_fee = self.base_fee.quantize(self.quantum, rounding=ROUND_UP)
        percentage_fee = (gross * self.percentage_rate).quantize(self.quantum, rounding=ROUND_UP)
        net = max(gross - base_fee - percentage_fee, Decimal(0))

        if net <= 0:
            raise FeeExceedsAmountError(gross, base_fee + percentage_fee)

        return FeeBreakdown(
            gross=gross,
            net=net.quantize(self.quantum),
            base_fee=base_fee,
            percentage_fee=percentage_fee,
        )
