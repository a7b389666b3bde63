"""BTC/USD price oracle with TTL caching and multi-source fallback."""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import requests

from coinedge.domain.models import CACHE_SOURCE, STALE_CACHE_SOURCE, Price
from coinedge.errors import AllSourcesUnavailable, ExternalServiceError, InvalidAmount
from coinedge.money import to_decimal
from coinedge.rate_limiter import RateLimiter

MIN_SANE_PRICE = Decimal("1000")
MAX_SANE_PRICE = Decimal("1000000")
FETCH_TIMEOUT = 5

QUOTE_CACHE_TTL = timedelta(seconds=15)
ENDPOINT_CACHE_TTL = timedelta(seconds=30)


class PriceSource(ABC):
    """An external BTC price provider."""

    name: str

    @abstractmethod
    def fetch(self) -> Any:
        """Return the provider's raw JSON payload."""
        ...

    @abstractmethod
    def parse(self, data: Any) -> Decimal:
        """Extract the USD price from a payload. Raises ValueError if absent or malformed."""
        ...


class HttpPriceSource(PriceSource):
    """Price source backed by a public JSON endpoint."""

    def __init__(
        self,
        name: str,
        url: str,
        parser: Callable[[Any], Any],
        session: requests.Session | None = None,
        timeout: float = FETCH_TIMEOUT,
    ):
        self.name = name
        self.url = url
        self._parser = parser
        self._timeout = timeout
        self.session = session or requests.Session()

    def fetch(self) -> Any:
        try:
            response = self.session.get(
                self.url, headers={"Accept": "application/json"}, timeout=self._timeout
            )
        except requests.RequestException as e:
            raise ExternalServiceError(self.name, 0, f"Network error: {e}") from e

        if response.status_code != 200:
            raise ExternalServiceError(self.name, response.status_code, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError(self.name, response.status_code, "Invalid JSON") from e

    def parse(self, data: Any) -> Decimal:
        try:
            raw = self._parser(data)
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Unexpected payload from {self.name}") from e
        if raw is None:
            raise ValueError(f"No price in payload from {self.name}")
        try:
            return to_decimal(raw)
        except InvalidAmount as e:
            raise ValueError(f"Non-numeric price from {self.name}: {raw!r}") from e


def default_price_sources(session: requests.Session | None = None) -> list[PriceSource]:
    """CoinGecko first, Coinbase as fallback. Neither needs an API key."""
    session = session or requests.Session()
    return [
        HttpPriceSource(
            "CoinGecko",
            "https://api.coingecko.com/api/v3/simple/price?ids=bitcoin&vs_currencies=usd",
            lambda data: data["bitcoin"]["usd"],
            session=session,
        ),
        HttpPriceSource(
            "Coinbase",
            "https://api.coinbase.com/v2/prices/BTC-USD/spot",
            lambda data: data["data"]["amount"],
            session=session,
        ),
    ]


class PriceOracle:
    """
    Caches one BTC price for a fixed TTL.

    On a cache miss the sources are tried in order and the first sane value
    wins. If every source fails, a stale cached price is served with
    source="stale-cache" so callers can tell it apart from a fresh one.
    """

    def __init__(
        self,
        sources: Sequence[PriceSource],
        ttl: timedelta,
        clock: Callable[[], datetime] | None = None,
        rate_limiter: RateLimiter | None = None,
        min_price: Decimal = MIN_SANE_PRICE,
        max_price: Decimal = MAX_SANE_PRICE,
        logger: logging.Logger | None = None,
    ):
        if not sources:
            raise ValueError("At least one price source is required")
        self.sources = list(sources)
        self.ttl = ttl
        self.rate_limiter = rate_limiter
        self.min_price = min_price
        self.max_price = max_price
        self._clock = clock or (lambda: datetime.now(UTC))
        self._logger = logger or logging.getLogger("coinedge.price_oracle")
        self._cached: Price | None = None
        self._lock = threading.Lock()

    @classmethod
    def for_quotes(
        cls,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ) -> "PriceOracle":
        """Oracle for the quote endpoint: 15s cache, 30 requests/minute per client."""
        return cls(
            default_price_sources(session),
            ttl=QUOTE_CACHE_TTL,
            clock=clock,
            rate_limiter=RateLimiter.preset("standard", clock=clock),
            logger=logger,
        )

    @classmethod
    def for_price_endpoint(
        cls,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] | None = None,
        ttl: timedelta = ENDPOINT_CACHE_TTL,
        logger: logging.Logger | None = None,
    ) -> "PriceOracle":
        """Oracle for the public price endpoint: 30s cache, 30 requests/minute per client."""
        return cls(
            default_price_sources(session),
            ttl=ttl,
            clock=clock,
            rate_limiter=RateLimiter.preset("standard", clock=clock),
            logger=logger,
        )

    def get_price(self, client_id: str | None = None) -> Price:
        """
        Return the current BTC price.

        Raises RateLimited if client_id has exhausted its window, and
        AllSourcesUnavailable if no source answers and nothing is cached.
        """
        if self.rate_limiter is not None and client_id is not None:
            self.rate_limiter.hit(client_id)

        with self._lock:
            now = self._clock()

            if self._cached is not None and now - self._cached.fetched_at < self.ttl:
                self._logger.debug(f"Using cached BTC price: {self._cached.value}")
                return replace(self._cached, source=CACHE_SOURCE, cached=True)

            last_error: Exception | None = None
            for source in self.sources:
                try:
                    value = self._fetch_from(source)
                except Exception as e:
                    self._logger.error(f"Failed to fetch from {source.name}: {e}")
                    last_error = e
                    continue

                price = Price(value=value, source=source.name, fetched_at=now, cached=False)
                self._cached = price
                self._logger.info(f"BTC price from {source.name}: ${value:,}")
                return price

            if self._cached is not None:
                self._logger.warning(
                    f"Using stale cache after all sources failed "
                    f"(fetched at {self._cached.fetched_at.isoformat()})"
                )
                return replace(self._cached, source=STALE_CACHE_SOURCE, cached=True)

        raise AllSourcesUnavailable(f"All price sources failed: {last_error}")

    def _fetch_from(self, source: PriceSource) -> Decimal:
        value = source.parse(source.fetch())
        if value <= 0:
            raise ValueError(f"Invalid price from {source.name}: {value}")
        if value < self.min_price or value > self.max_price:
            raise ValueError(f"Price {value} outside reasonable bounds")
        return value
