"""Domain models for the CoinEdge settlement core."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from uuid import UUID

from coinedge.errors import AssetMismatch, InvalidAmount
from coinedge.money import from_minor_units, round_down, to_decimal, to_minor_units

CACHE_SOURCE = "cache"
STALE_CACHE_SOURCE = "stale-cache"
PAR_SOURCE = "par"

QUOTE_VALIDITY = timedelta(minutes=5)


class Asset(str, Enum):
    USD = "USD"
    USDC = "USDC"
    BTC = "BTC"


@dataclass(frozen=True)
class Money:
    """A non-negative amount tagged with its asset."""

    amount: Decimal
    asset: Asset

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise InvalidAmount(f"Negative amount: {self.amount} {self.asset.value}")

    @classmethod
    def of(cls, value: str | int | float | Decimal, asset: Asset | str) -> "Money":
        return cls(to_decimal(value), Asset(asset))

    @classmethod
    def zero(cls, asset: Asset) -> "Money":
        return cls(Decimal("0"), asset)

    @classmethod
    def from_minor_units(cls, units: int, asset: Asset) -> "Money":
        return cls(from_minor_units(units, asset.value), asset)

    def to_minor_units(self) -> int:
        return to_minor_units(self.amount, self.asset.value)

    def _check_asset(self, other: "Money") -> None:
        if self.asset != other.asset:
            raise AssetMismatch(
                f"Cannot combine {self.asset.value} with {other.asset.value}"
            )

    def __add__(self, other: "Money") -> "Money":
        self._check_asset(other)
        return Money(self.amount + other.amount, self.asset)

    def __sub__(self, other: "Money") -> "Money":
        self._check_asset(other)
        return Money(self.amount - other.amount, self.asset)

    def __str__(self) -> str:
        return f"{self.amount} {self.asset.value}"


@dataclass(frozen=True)
class FeeSplitPart:
    """One party's share of a fee."""

    party: str
    amount: Money
    rate: Decimal


@dataclass(frozen=True)
class Price:
    """BTC price in a quote currency, with provenance."""

    value: Decimal
    source: str
    fetched_at: datetime
    cached: bool = False
    asset: Asset = Asset.BTC
    quote_currency: Asset = Asset.USD

    @property
    def is_stale(self) -> bool:
        return self.source == STALE_CACHE_SOURCE

    def convert(self, money: Money, to: Asset) -> Money:
        """
        Convert between the priced asset and a quote-side asset.

        BTC -> USD/USDC multiplies by the price; USD/USDC -> BTC divides.
        The result is rounded down to the target asset's minor unit.
        """
        if self.value <= 0:
            raise InvalidAmount("Invalid BTC price")

        if money.asset == self.asset and to != self.asset:
            raw = money.amount * self.value
        elif money.asset != self.asset and to == self.asset:
            raw = money.amount / self.value
        else:
            raise AssetMismatch(f"Cannot convert {money.asset.value} to {to.value}")

        return Money(round_down(raw, to.value), to)


class TransferType(str, Enum):
    BUY_BTC = "BUY_BTC"
    SELL_BTC = "SELL_BTC"
    CASHOUT = "CASHOUT"
    REDEEM = "REDEEM"


@dataclass(frozen=True)
class Quote:
    """A time-bounded, price-locked conversion offer."""

    id: UUID
    type: TransferType
    input: Money
    output: Money
    fee: Money
    rate: Price
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class PaymentStatus(str, Enum):
    IDLE = "IDLE"
    CREATING = "CREATING"
    PENDING = "PENDING"
    POLLING = "POLLING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PAYMENT_STATUSES


TERMINAL_PAYMENT_STATUSES = frozenset(
    {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELED,
        PaymentStatus.EXPIRED,
    }
)


@dataclass
class CheckoutSession:
    """State of one in-flight terminal checkout."""

    checkout_id: str
    base_amount: Money
    customer_pays: Money
    created_at: datetime
    status: PaymentStatus = PaymentStatus.PENDING
    attempt_count: int = 0
    activation_event_id: str | None = None
    payment_reference: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class BankAccountLink:
    """A bank account linked to a user through the aggregator."""

    account_id: str
    user_id: str
    bank_name: str
    account_mask: str
    fingerprint: str
    linked_at: datetime


class AssetType(str, Enum):
    BTC = "BTC"
    USDC = "USDC"
    COMPANY_USDC = "COMPANY_USDC"


class ReconciliationStatus(str, Enum):
    PENDING = "PENDING"
    MATCHED = "MATCHED"
    DISCREPANCY = "DISCREPANCY"
    RESOLVED = "RESOLVED"


@dataclass(frozen=True)
class ReconciliationRecord:
    """Comparison of an on-chain balance against the ledger for one asset."""

    asset_type: AssetType
    onchain_balance: Decimal
    database_balance: Decimal
    discrepancy: Decimal
    discrepancy_pct: Decimal
    status: ReconciliationStatus
    created_at: datetime
    id: UUID | None = None
    notes: str | None = None
    created_by: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None

    @property
    def is_alert(self) -> bool:
        return self.status == ReconciliationStatus.DISCREPANCY


@dataclass(frozen=True)
class RateLimitPolicy:
    """Fixed-window rate limit: max_requests per window."""

    max_requests: int
    window: timedelta = field(default=timedelta(seconds=60))
