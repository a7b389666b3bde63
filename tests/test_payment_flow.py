from datetime import timedelta

import pytest
import requests

from conftest import BlockingGateway, InMemoryCheckoutRepository, ScriptedGateway
from coinedge.domain.models import Money, PaymentStatus
from coinedge.errors import ExternalServiceError
from coinedge.payment_flow import (
    CREATE_FAILED_MESSAGE,
    STATUS_TRANSITIONS,
    TIMEOUT_MESSAGE,
    USER_CANCELED_MESSAGE,
    CheckoutStatus,
    PaymentFlow,
    map_provider_status,
)


class Callbacks:
    def __init__(self):
        self.successes: list[str] = []
        self.errors: list[str] = []


@pytest.fixture(name="callbacks")
def callbacks_fixture():
    return Callbacks()


def make_flow(gateway, callbacks, **kwargs):
    kwargs.setdefault("poll_interval", 0)
    return PaymentFlow(
        gateway,
        on_success=callbacks.successes.append,
        on_error=callbacks.errors.append,
        **kwargs,
    )


def test_pending_then_completed(callbacks, checkout_repo):
    gateway = ScriptedGateway(
        statuses=[
            "PENDING",
            "IN_PROGRESS",
            "PENDING",
            CheckoutStatus(status="COMPLETED", payment_ids=("pay_42",)),
        ]
    )
    flow = make_flow(gateway, callbacks, repository=checkout_repo)

    status = flow.create_payment(Money.of("100", "USD"), activation_event_id="act_1")

    assert status == PaymentStatus.COMPLETED
    assert flow.status == PaymentStatus.COMPLETED
    assert callbacks.successes == ["pay_42"]
    assert callbacks.errors == []
    assert gateway.status_calls == 4
    assert flow.session.attempt_count == 4
    assert flow.session.payment_reference == "pay_42"
    assert checkout_repo.saved[0] == ("chk_1", "PENDING", 0)
    assert checkout_repo.saved[-1] == ("chk_1", "COMPLETED", 4)


def test_checkout_is_created_for_customer_total(callbacks):
    gateway = ScriptedGateway(statuses=["COMPLETED"])
    flow = make_flow(gateway, callbacks)

    flow.create_payment(Money.of("100", "USD"), activation_event_id="act_1")

    assert gateway.created == [(10300, "act_1", timedelta(minutes=5))]
    assert flow.customer_pays == Money.of("103", "USD")


def test_completed_without_payment_ids(callbacks):
    flow = make_flow(ScriptedGateway(statuses=["COMPLETED"]), callbacks)

    flow.create_payment(Money.of("25", "USD"))

    assert callbacks.successes == ["completed"]


def test_times_out_after_max_polls(callbacks):
    gateway = ScriptedGateway(statuses=["PENDING"])
    flow = make_flow(gateway, callbacks)

    status = flow.create_payment(Money.of("100", "USD"))

    assert status == PaymentStatus.EXPIRED
    assert flow.error == TIMEOUT_MESSAGE
    assert callbacks.errors == [TIMEOUT_MESSAGE]
    assert gateway.status_calls == 150


@pytest.mark.parametrize(
    "provider_status,expected,message",
    [
        ("CANCELED", PaymentStatus.CANCELED, "Payment was canceled"),
        ("CANCEL_REQUESTED", None, None),
        ("EXPIRED", PaymentStatus.EXPIRED, "Payment expired"),
        ("FAILED", PaymentStatus.FAILED, "Payment failed"),
    ],
)
def test_provider_terminal_statuses(callbacks, provider_status, expected, message):
    gateway = ScriptedGateway(statuses=[provider_status])
    flow = make_flow(gateway, callbacks, max_poll_attempts=3)

    flow.create_payment(Money.of("10", "USD"))

    if expected is None:
        assert flow.status == PaymentStatus.EXPIRED
        assert gateway.status_calls == 3
    else:
        assert flow.status == expected
        assert callbacks.errors == [message]
        assert gateway.status_calls == 1
    assert callbacks.successes == []


def test_status_table_covers_every_terminal_provider_status():
    assert set(STATUS_TRANSITIONS) == {"COMPLETED", "CANCELED", "EXPIRED", "FAILED"}
    assert map_provider_status("completed") == PaymentStatus.COMPLETED
    assert map_provider_status("PENDING") is None
    assert map_provider_status("IN_PROGRESS") is None


def test_provider_error_detail_is_reported(callbacks):
    gateway = ScriptedGateway(statuses=[CheckoutStatus(status="FAILED", error="Card declined")])
    flow = make_flow(gateway, callbacks)

    flow.create_payment(Money.of("10", "USD"))

    assert flow.error == "Card declined"
    assert callbacks.errors == ["Card declined"]


def test_transient_poll_errors_keep_polling(callbacks, network_error):
    gateway = ScriptedGateway(statuses=[network_error, network_error, "COMPLETED"])
    flow = make_flow(gateway, callbacks)

    flow.create_payment(Money.of("10", "USD"))

    assert flow.status == PaymentStatus.COMPLETED
    assert gateway.status_calls == 3


def test_create_failure_is_reported(callbacks):
    gateway = ScriptedGateway(create_error=ExternalServiceError("Square", 401, "Unauthorized"))
    flow = make_flow(gateway, callbacks)

    status = flow.create_payment(Money.of("10", "USD"))

    assert status == PaymentStatus.FAILED
    assert flow.session is None
    assert callbacks.errors == ["Square error 401: Unauthorized"]
    assert gateway.status_calls == 0


def test_audit_trail_failure_does_not_break_flow(callbacks):
    flow = make_flow(
        ScriptedGateway(statuses=["COMPLETED"]),
        callbacks,
        repository=InMemoryCheckoutRepository(fail=True),
    )

    assert flow.create_payment(Money.of("10", "USD")) == PaymentStatus.COMPLETED


def test_background_polling_completes(callbacks):
    gateway = ScriptedGateway(statuses=["PENDING", "COMPLETED"])
    flow = make_flow(gateway, callbacks, poll_interval=0.01)

    assert flow.create_payment(Money.of("10", "USD"), background=True) == PaymentStatus.POLLING
    assert flow.wait(timeout=5) == PaymentStatus.COMPLETED
    assert callbacks.successes == ["completed"]


def test_cancel_discards_in_flight_poll(callbacks):
    gateway = BlockingGateway()
    flow = make_flow(gateway, callbacks, poll_interval=0.01)

    flow.create_payment(Money.of("10", "USD"), background=True)
    poller = flow._poller
    assert gateway.entered.wait(5)

    flow.cancel_payment()
    gateway.release.set()
    poller.join(5)

    assert flow.status == PaymentStatus.CANCELED
    assert flow.error == USER_CANCELED_MESSAGE
    assert callbacks.successes == []
    assert callbacks.errors == []
    assert gateway.status_calls == 1


def test_new_payment_retires_previous_poller(callbacks):
    first = BlockingGateway()
    flow = make_flow(first, callbacks, poll_interval=0.01)
    flow.create_payment(Money.of("10", "USD"), background=True)
    old_poller = flow._poller
    assert first.entered.wait(5)

    flow._gateway = ScriptedGateway(statuses=["FAILED"], checkout_id="chk_2")
    flow.create_payment(Money.of("20", "USD"))
    first.release.set()
    old_poller.join(5)

    assert flow.status == PaymentStatus.FAILED
    assert flow.session.checkout_id == "chk_2"
    assert callbacks.successes == []
    assert callbacks.errors == ["Payment failed"]


def test_reset_returns_to_idle(callbacks):
    flow = make_flow(ScriptedGateway(statuses=["COMPLETED"]), callbacks)
    flow.create_payment(Money.of("10", "USD"))

    flow.reset()

    assert flow.status == PaymentStatus.IDLE
    assert flow.error is None
    assert flow.session is None
    assert flow.customer_pays is None


@pytest.mark.parametrize("provider_status", ["COMPLETED", "FAILED"])
def test_cancel_after_terminal_status_is_ignored(callbacks, checkout_repo, provider_status):
    flow = make_flow(
        ScriptedGateway(statuses=[provider_status]), callbacks, repository=checkout_repo
    )
    final = flow.create_payment(Money.of("10", "USD"))
    saved = list(checkout_repo.saved)

    flow.cancel_payment()

    assert flow.status == final
    assert checkout_repo.saved == saved
    assert checkout_repo.saved[-1] == ("chk_1", provider_status, 1)


def test_cancel_before_start_stays_idle(callbacks):
    flow = make_flow(ScriptedGateway(), callbacks)

    flow.cancel_payment()

    assert flow.status == PaymentStatus.IDLE
    assert flow.error is None


@pytest.mark.parametrize(
    "error",
    [
        ConnectionError("connection reset"),
        TimeoutError("read timed out"),
        requests.ConnectionError("refused"),
    ],
)
def test_raw_network_errors_while_polling_are_retried(callbacks, error):
    gateway = ScriptedGateway(statuses=[error, "COMPLETED"])
    flow = make_flow(gateway, callbacks)

    assert flow.create_payment(Money.of("10", "USD")) == PaymentStatus.COMPLETED
    assert gateway.status_calls == 2


def test_background_poller_survives_raw_network_errors(callbacks):
    gateway = ScriptedGateway(statuses=[TimeoutError("read timed out")])
    flow = make_flow(gateway, callbacks, poll_interval=0.001, max_poll_attempts=3)

    flow.create_payment(Money.of("10", "USD"), background=True)

    assert flow.wait(timeout=5) == PaymentStatus.EXPIRED
    assert callbacks.errors == [TIMEOUT_MESSAGE]


def test_unexpected_create_failure_is_reported(callbacks):
    gateway = ScriptedGateway(create_error=ConnectionError("connection refused"))
    flow = make_flow(gateway, callbacks)

    assert flow.create_payment(Money.of("10", "USD")) == PaymentStatus.FAILED
    assert callbacks.errors == [CREATE_FAILED_MESSAGE]
    assert gateway.status_calls == 0
