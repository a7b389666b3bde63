"""Quote generation for BTC/USDC transfers."""

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal

from coinedge.domain.models import (
    PAR_SOURCE,
    QUOTE_VALIDITY,
    Asset,
    Money,
    Price,
    Quote,
    TransferType,
)
from coinedge.errors import (
    AssetMismatch,
    InvalidAmount,
    QuoteExpired,
    UnsupportedTransferType,
)
from coinedge.money import round_down, round_half_up, to_decimal
from coinedge.price_oracle import PriceOracle

TRANSFER_FEE_RATE = Decimal("0.015")


class QuoteService:
    """Produces short-lived, price-locked quotes from the oracle's BTC price."""

    def __init__(
        self,
        oracle: PriceOracle,
        clock: Callable[[], datetime] | None = None,
        max_rate_drift_pct: Decimal | None = None,
        logger: logging.Logger | None = None,
    ):
        self._oracle = oracle
        self._clock = clock or (lambda: datetime.now(UTC))
        self.max_rate_drift_pct = max_rate_drift_pct
        self._logger = logger or logging.getLogger("coinedge.quotes")

    def create_quote(
        self,
        transfer_type: TransferType | str,
        amount: str | int | float | Decimal,
        asset: Asset | str | None = None,
        client_id: str | None = None,
    ) -> Quote:
        """
        Create a quote valid for five minutes.

        Args:
            transfer_type: BUY_BTC, SELL_BTC, CASHOUT or REDEEM
            amount: Amount the user enters
            asset: Denomination of amount for BUY_BTC/SELL_BTC (BTC or USDC)
            client_id: Rate-limit key forwarded to the oracle

        Raises:
            InvalidAmount, UnsupportedTransferType, RateLimited, AllSourcesUnavailable
        """
        value = to_decimal(amount)
        if value <= 0:
            raise InvalidAmount(f"Amount must be greater than zero, got {value}")

        try:
            transfer_type = TransferType(transfer_type)
        except ValueError as e:
            raise UnsupportedTransferType(f"Invalid transfer type: {transfer_type}") from e

        now = self._clock()

        if transfer_type == TransferType.CASHOUT:
            rate = Price(
                value=Decimal("1"),
                source=PAR_SOURCE,
                fetched_at=now,
                asset=Asset.USDC,
                quote_currency=Asset.USD,
            )
            input_money = _require_positive(Money(round_down(value, "USDC"), Asset.USDC))
            fee = Money(
                round_half_up(input_money.amount * TRANSFER_FEE_RATE, "USD"), Asset.USDC
            )
            output = Money(
                round_down(input_money.amount - fee.amount, "USD"), Asset.USD
            )
        else:
            rate = self._oracle.get_price(client_id)
            input_money, output, fee = self._price(transfer_type, value, asset, rate)

        quote = Quote(
            id=uuid.uuid4(),
            type=transfer_type,
            input=input_money,
            output=output,
            fee=fee,
            rate=rate,
            created_at=now,
            expires_at=now + QUOTE_VALIDITY,
        )

        self._logger.info(
            f"Quote generated: id={quote.id} type={transfer_type.value} "
            f"rate={rate.value} ({rate.source}) in={input_money} out={output} fee={fee} "
            f"expires={quote.expires_at.isoformat()}"
        )
        return quote

    def _price(
        self,
        transfer_type: TransferType,
        value: Decimal,
        asset: Asset | str | None,
        rate: Price,
    ) -> tuple[Money, Money, Money]:
        """Return (input, output, fee) for the oracle-priced transfer types."""
        if asset is not None:
            try:
                asset = Asset(asset)
            except ValueError as e:
                raise AssetMismatch(f"Unknown asset: {asset}") from e

        if transfer_type == TransferType.BUY_BTC:
            if asset == Asset.BTC:
                input_money = rate.convert(Money(value, Asset.BTC), Asset.USDC)
            else:
                input_money = Money(round_down(value, "USDC"), Asset.USDC)
            _require_positive(input_money)
            fee = self._fee(input_money)
            output = rate.convert(input_money - fee, Asset.BTC)
            return input_money, output, fee

        if transfer_type == TransferType.SELL_BTC:
            if asset == Asset.USDC:
                input_money = rate.convert(Money(value, Asset.USDC), Asset.BTC)
            else:
                input_money = Money(round_down(value, "BTC"), Asset.BTC)
            _require_positive(input_money)
            usd_value = rate.convert(input_money, Asset.USDC)
            fee = self._fee(usd_value)
            return input_money, usd_value - fee, fee

        # REDEEM: fee is charged at claim time by the redemption fee split
        input_money = _require_positive(Money(round_down(value, "USD"), Asset.USD))
        return input_money, rate.convert(input_money, Asset.BTC), Money.zero(Asset.USD)

    def _fee(self, usdc: Money) -> Money:
        return Money(round_half_up(usdc.amount * TRANSFER_FEE_RATE, "USDC"), Asset.USDC)

    def validate_quote(self, quote: Quote, client_id: str | None = None) -> Quote:
        """
        Check that a quote may still be executed at its locked-in rate.

        Raises QuoteExpired once expires_at has passed. When max_rate_drift_pct
        is set, also raises QuoteExpired if the live price moved further than
        that from the quoted rate.
        """
        now = self._clock()
        if quote.is_expired(now):
            raise QuoteExpired(
                f"Quote {quote.id} expired at {quote.expires_at.isoformat()}"
            )

        if self.max_rate_drift_pct is not None and quote.rate.source != PAR_SOURCE:
            current = self._oracle.get_price(client_id)
            drift_pct = abs(current.value - quote.rate.value) / quote.rate.value * 100
            if drift_pct > self.max_rate_drift_pct:
                self._logger.warning(
                    f"Quote {quote.id} rejected: rate moved {drift_pct:.4f}% "
                    f"({quote.rate.value} -> {current.value})"
                )
                raise QuoteExpired(
                    "Price moved since the quote was issued, please request a new one"
                )

        return quote


def _require_positive(money: Money) -> Money:
    """Reject amounts that round to zero at the asset's minor unit."""
    if money.amount <= 0:
        raise InvalidAmount(f"Amount is below the smallest {money.asset.value} unit")
    return money
