"""Point-of-sale and redemption fee calculation.

POS fees are charged when a BitCard is activated at a merchant terminal.
Redemption fees are deducted later, when the cardholder claims the BTC value.
Both are pure functions of their inputs and are recomputed on every call.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from coinedge.domain.models import Asset, FeeSplitPart, Money
from coinedge.errors import AssetMismatch, InvalidAmount
from coinedge.money import round_down, round_half_up


class PaymentMethod(str, Enum):
    CARD = "CARD"
    CASH = "CASH"


MERCHANT_FEE_RATES = {
    PaymentMethod.CARD: Decimal("0.02"),
    PaymentMethod.CASH: Decimal("0.05"),
}
SQUARE_PROCESSING_RATE = Decimal("0.03")

SALES_REP_RATE = Decimal("0.02")
VOLATILITY_RESERVE_RATE = Decimal("0.03")
COINEDGE_REVENUE_RATE = Decimal("0.0375")
REDEMPTION_FEE_RATE = SALES_REP_RATE + VOLATILITY_RESERVE_RATE + COINEDGE_REVENUE_RATE

# Parties
SQUARE = "SQUARE"
SALES_REP = "SALES_REP"
VOLATILITY_RESERVE = "VOLATILITY_RESERVE"
COINEDGE = "COINEDGE"


@dataclass(frozen=True)
class PosFeeBreakdown:
    """Fees at card activation. Only the processing surcharge is charged to the customer."""

    base_amount: Money
    method: PaymentMethod
    merchant_fee: Money
    merchant_fee_rate: Decimal
    square_processing: Money
    total_pos_fee: Money
    customer_pays: Money
    splits: tuple[FeeSplitPart, ...]


@dataclass(frozen=True)
class RedemptionFeeBreakdown:
    """Fees deducted when the cardholder claims BTC."""

    base_amount: Money
    sales_rep_fee: Money
    volatility_reserve: Money
    coinedge_revenue: Money
    total_redemption_fee: Money
    net_value: Money
    splits: tuple[FeeSplitPart, ...]


@dataclass(frozen=True)
class FeeBreakdown:
    """Both fee events side by side. total_fee is informational and never charged."""

    pos: PosFeeBreakdown
    redemption: RedemptionFeeBreakdown

    @property
    def total_fee(self) -> Money:
        return self.pos.total_pos_fee + self.redemption.total_redemption_fee


def _validate_base(base_amount: Money) -> Money:
    if base_amount.asset != Asset.USD:
        raise AssetMismatch(f"Fees are computed on USD, got {base_amount.asset.value}")
    amount = round_half_up(base_amount.amount, Asset.USD.value)
    if amount <= 0:
        raise InvalidAmount(f"Amount must be greater than zero, got {base_amount.amount}")
    return Money(amount, Asset.USD)


def calculate_pos_fees(base_amount: Money, method: PaymentMethod | str) -> PosFeeBreakdown:
    """
    Calculate POS fees for a card activation.

    The merchant fee is taken from the merchant's margin; the customer only
    pays the card-network surcharge on top of the base amount.
    """
    base = _validate_base(base_amount)
    method = PaymentMethod(method)

    merchant_rate = MERCHANT_FEE_RATES[method]
    merchant_fee = Money(round_half_up(base.amount * merchant_rate, "USD"), Asset.USD)

    if method == PaymentMethod.CARD:
        processing_rate = SQUARE_PROCESSING_RATE
        square_processing = Money(
            round_half_up(base.amount * processing_rate, "USD"), Asset.USD
        )
    else:
        processing_rate = Decimal("0")
        square_processing = Money.zero(Asset.USD)

    splits = (FeeSplitPart(SQUARE, square_processing, processing_rate),)

    return PosFeeBreakdown(
        base_amount=base,
        method=method,
        merchant_fee=merchant_fee,
        merchant_fee_rate=merchant_rate,
        square_processing=square_processing,
        total_pos_fee=square_processing,
        customer_pays=base + square_processing,
        splits=splits,
    )


def calculate_redemption_fees(base_amount: Money) -> RedemptionFeeBreakdown:
    """
    Calculate redemption fees.

    The total is rounded once; named shares are rounded down and the house
    share takes the remainder, so the parts always sum to the total.
    """
    base = _validate_base(base_amount)

    total = Money(round_half_up(base.amount * REDEMPTION_FEE_RATE, "USD"), Asset.USD)
    sales_rep_fee = Money(round_down(base.amount * SALES_REP_RATE, "USD"), Asset.USD)
    volatility_reserve = Money(
        round_down(base.amount * VOLATILITY_RESERVE_RATE, "USD"), Asset.USD
    )
    coinedge_revenue = total - sales_rep_fee - volatility_reserve

    splits = (
        FeeSplitPart(SALES_REP, sales_rep_fee, SALES_REP_RATE),
        FeeSplitPart(VOLATILITY_RESERVE, volatility_reserve, VOLATILITY_RESERVE_RATE),
        FeeSplitPart(COINEDGE, coinedge_revenue, COINEDGE_REVENUE_RATE),
    )

    return RedemptionFeeBreakdown(
        base_amount=base,
        sales_rep_fee=sales_rep_fee,
        volatility_reserve=volatility_reserve,
        coinedge_revenue=coinedge_revenue,
        total_redemption_fee=total,
        net_value=base - total,
        splits=splits,
    )


def calculate_fees(base_amount: Money, method: PaymentMethod | str) -> FeeBreakdown:
    return FeeBreakdown(
        pos=calculate_pos_fees(base_amount, method),
        redemption=calculate_redemption_fees(base_amount),
    )
