"""Fixed-point helpers shared across fee, quote and settlement code.

- ASSET_DECIMALS holds the minor-unit precision of each asset.
- to_decimal accepts str/int/float/Decimal and never goes through binary floats.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

from coinedge.errors import InvalidAmount

ASSET_DECIMALS = {
    "USD": 2,
    "USDC": 6,
    "BTC": 8,
}


def to_decimal(value: str | int | float | Decimal) -> Decimal:
    """Convert user or provider input to Decimal. Raises InvalidAmount if not numeric."""
    if isinstance(value, bool):
        raise InvalidAmount(f"Not a number: {value!r}")
    if isinstance(value, float):
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise InvalidAmount(f"Not a number: {value!r}") from e
    if not result.is_finite():
        raise InvalidAmount(f"Not a number: {value!r}")
    return result


def step_for(asset: str) -> Decimal:
    """Smallest representable unit for an asset (0.01 for USD, 1e-8 for BTC)."""
    return Decimal(1).scaleb(-ASSET_DECIMALS[asset])


def round_down(value: Decimal, asset: str) -> Decimal:
    """Round down to the asset's minor unit."""
    return value.quantize(step_for(asset), rounding=ROUND_DOWN)


def round_half_up(value: Decimal, asset: str) -> Decimal:
    """Round half-up to the asset's minor unit."""
    return value.quantize(step_for(asset), rounding=ROUND_HALF_UP)


def to_minor_units(value: Decimal, asset: str) -> int:
    """Convert an amount to integer minor units (cents, satoshis), rounding half-up."""
    scaled = value.scaleb(ASSET_DECIMALS[asset])
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(units: int, asset: str) -> Decimal:
    """Convert integer minor units back to a decimal amount."""
    return Decimal(units).scaleb(-ASSET_DECIMALS[asset])
