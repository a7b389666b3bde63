# tests/conftest.py
"""Test configuration and fixtures."""

import threading
import uuid
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from coinedge.bank_link import BankAggregator, LinkToken, TokenExchange
from coinedge.domain.models import BankAccountLink, CheckoutSession, ReconciliationRecord
from coinedge.errors import ExternalServiceError
from coinedge.infrastructure.repositories import (
    BankAccountRepository,
    CheckoutRepository,
    ReconciliationRepository,
)
from coinedge.payment_flow import CheckoutCreated, CheckoutStatus, PaymentGateway
from coinedge.price_oracle import PriceSource


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class StaticPriceSource(PriceSource):
    """Returns a fixed payload, or raises when given an exception."""

    def __init__(self, name: str, value):
        self.name = name
        self.value = value
        self.calls = 0

    def fetch(self):
        self.calls += 1
        if isinstance(self.value, Exception):
            raise self.value
        return {"price": self.value}

    def parse(self, data) -> Decimal:
        return Decimal(str(data["price"]))


class ScriptedGateway(PaymentGateway):
    """Returns queued statuses, repeating the last one once the script runs out."""

    def __init__(self, statuses=("PENDING",), checkout_id="chk_1", create_error=None):
        self.statuses = list(statuses)
        self.checkout_id = checkout_id
        self.create_error = create_error
        self.created: list[tuple[int, str, timedelta]] = []
        self.status_calls = 0

    def create_checkout(self, amount_minor_units, reference_id, deadline):
        if self.create_error is not None:
            raise self.create_error
        self.created.append((amount_minor_units, reference_id, deadline))
        return CheckoutCreated(checkout_id=self.checkout_id)

    def get_checkout_status(self, checkout_id):
        index = min(self.status_calls, len(self.statuses) - 1)
        self.status_calls += 1
        status = self.statuses[index]
        if isinstance(status, Exception):
            raise status
        if isinstance(status, CheckoutStatus):
            return status
        return CheckoutStatus(status=status)


class BlockingGateway(ScriptedGateway):
    """Holds the first status call until released, then reports COMPLETED."""

    def __init__(self):
        super().__init__(statuses=("COMPLETED",))
        self.entered = threading.Event()
        self.release = threading.Event()

    def get_checkout_status(self, checkout_id):
        self.entered.set()
        self.release.wait(5)
        return super().get_checkout_status(checkout_id)


class InMemoryReconciliationRepository(ReconciliationRepository):
    def __init__(self):
        self.records: list[ReconciliationRecord] = []
        self.latest_calls = 0

    def add(self, record):
        stored = replace(record, id=uuid.uuid4())
        self.records.append(stored)
        return stored

    def get(self, record_id):
        return next((r for r in self.records if r.id == record_id), None)

    def update(self, record):
        self.records = [record if r.id == record.id else r for r in self.records]

    def list_recent(self, limit=100):
        ordered = sorted(self.records, key=lambda r: r.created_at, reverse=True)
        return ordered if limit is None else ordered[:limit]

    def latest_by_asset(self):
        self.latest_calls += 1
        latest = {}
        for record in self.list_recent(limit=None):
            latest.setdefault(record.asset_type, record)
        return list(latest.values())


class InMemoryBankAccountRepository(BankAccountRepository):
    def __init__(self):
        self.links: list[BankAccountLink] = []

    def find_by_fingerprint(self, user_id, fingerprint):
        return next(
            (l for l in self.links if l.user_id == user_id and l.fingerprint == fingerprint),
            None,
        )

    def add(self, link):
        self.links.append(link)
        return link

    def list_for_user(self, user_id):
        return [l for l in self.links if l.user_id == user_id]


class InMemoryCheckoutRepository(CheckoutRepository):
    def __init__(self, fail: bool = False):
        self.saved: list[tuple[str, str, int]] = []
        self.fail = fail

    def save(self, session: CheckoutSession):
        if self.fail:
            raise RuntimeError("database unavailable")
        self.saved.append((session.checkout_id, session.status.value, session.attempt_count))


class FakeAggregator(BankAggregator):
    def __init__(self, link=None, exchange=None):
        self.link = link or LinkToken(link_token="link-sandbox-123")
        self.exchange = exchange or TokenExchange(success=False, error="not scripted")
        self.tokens: list[str] = []

    def create_link_token(self, user_token):
        self.tokens.append(user_token)
        return self.link

    def exchange_public_token(self, public_token, user_token):
        self.tokens.append(user_token)
        return self.exchange


@pytest.fixture(name="clock")
def clock_fixture():
    """Clock pinned to a fixed UTC instant."""
    return FakeClock(datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC))


@pytest.fixture(name="reconciliation_repo")
def reconciliation_repo_fixture():
    return InMemoryReconciliationRepository()


@pytest.fixture(name="bank_accounts")
def bank_accounts_fixture():
    return InMemoryBankAccountRepository()


@pytest.fixture(name="checkout_repo")
def checkout_repo_fixture():
    return InMemoryCheckoutRepository()


@pytest.fixture(name="network_error")
def network_error_fixture():
    return ExternalServiceError("Test", 0, "Network error: connection refused")
