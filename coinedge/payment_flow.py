"""Terminal checkout state machine with status polling."""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import requests

from coinedge.domain.models import CheckoutSession, Money, PaymentStatus
from coinedge.errors import CoinEdgeError, ExternalServiceError
from coinedge.fees import PaymentMethod, calculate_pos_fees
from coinedge.infrastructure.repositories import CheckoutRepository

CHECKOUT_DEADLINE = timedelta(minutes=5)
POLL_INTERVAL = 2.0
MAX_POLL_ATTEMPTS = 150

TIMEOUT_MESSAGE = "Payment timed out"
CREATE_FAILED_MESSAGE = "Failed to create payment"
USER_CANCELED_MESSAGE = "Payment canceled by user"


@dataclass(frozen=True)
class CheckoutCreated:
    checkout_id: str


@dataclass(frozen=True)
class CheckoutStatus:
    status: str
    payment_ids: tuple[str, ...] = field(default_factory=tuple)
    error: str | None = None


class PaymentGateway(ABC):
    """Card-terminal processor used to collect activation payments."""

    @abstractmethod
    def create_checkout(
        self, amount_minor_units: int, reference_id: str, deadline: timedelta
    ) -> CheckoutCreated:
        ...

    @abstractmethod
    def get_checkout_status(self, checkout_id: str) -> CheckoutStatus:
        ...


@dataclass(frozen=True)
class _Outcome:
    status: PaymentStatus
    message: str | None


# Provider status -> terminal outcome. Statuses not listed keep the flow polling.
STATUS_TRANSITIONS: dict[str, _Outcome] = {
    "COMPLETED": _Outcome(PaymentStatus.COMPLETED, None),
    "CANCELED": _Outcome(PaymentStatus.CANCELED, "Payment was canceled"),
    "EXPIRED": _Outcome(PaymentStatus.EXPIRED, "Payment expired"),
    "FAILED": _Outcome(PaymentStatus.FAILED, "Payment failed"),
}


def map_provider_status(status: str) -> PaymentStatus | None:
    """Return the terminal PaymentStatus for a provider status, or None to keep polling."""
    outcome = STATUS_TRANSITIONS.get(status.upper())
    return outcome.status if outcome else None


class PaymentFlow:
    """
    Drives one POS checkout from creation to a terminal state.

    create_payment() creates the checkout and polls its status every
    poll_interval seconds, at most max_poll_attempts times. Polling runs
    inline by default or on a single background thread. Starting a new
    payment, cancel_payment() and reset() all retire the current poller;
    a retired poller's late results are discarded.
    """

    def __init__(
        self,
        gateway: PaymentGateway,
        on_success: Callable[[str], None] | None = None,
        on_error: Callable[[str], None] | None = None,
        poll_interval: float = POLL_INTERVAL,
        max_poll_attempts: int = MAX_POLL_ATTEMPTS,
        repository: CheckoutRepository | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ):
        self._gateway = gateway
        self._on_success = on_success
        self._on_error = on_error
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self._repository = repository
        self._clock = clock or (lambda: datetime.now(UTC))
        self._logger = logger or logging.getLogger("coinedge.payment_flow")

        self._lock = threading.RLock()
        self._generation = 0
        self._stop = threading.Event()
        self._poller: threading.Thread | None = None

        self.status = PaymentStatus.IDLE
        self.error: str | None = None
        self.customer_pays: Money | None = None
        self.session: CheckoutSession | None = None

    def create_payment(
        self,
        base_amount: Money,
        activation_event_id: str | None = None,
        background: bool = False,
    ) -> PaymentStatus:
        """
        Create a terminal checkout for a card activation and poll it.

        Returns the status when create_payment returns: a terminal status when
        polling inline, POLLING when polling in the background.
        """
        fees = calculate_pos_fees(base_amount, PaymentMethod.CARD)

        with self._lock:
            self.reset()
            generation = self._generation
            stop = self._stop
            self.status = PaymentStatus.CREATING
            self.customer_pays = fees.customer_pays

        reference_id = activation_event_id or str(uuid.uuid4())
        amount_minor = fees.customer_pays.to_minor_units()
        self._logger.info(
            f"Creating checkout: base={fees.base_amount} customer_pays={fees.customer_pays} "
            f"({amount_minor} minor units) ref={reference_id}"
        )

        try:
            created = self._gateway.create_checkout(
                amount_minor, reference_id, CHECKOUT_DEADLINE
            )
        except Exception as e:
            message = e.message if isinstance(e, CoinEdgeError) else CREATE_FAILED_MESSAGE
            self._logger.error(f"Checkout creation failed: {e}")
            with self._lock:
                if generation == self._generation:
                    self._finish(PaymentStatus.FAILED, message)
            return self.status

        with self._lock:
            if generation != self._generation:
                return self.status

            self.session = CheckoutSession(
                checkout_id=created.checkout_id,
                base_amount=fees.base_amount,
                customer_pays=fees.customer_pays,
                created_at=self._clock(),
                activation_event_id=activation_event_id,
            )
            self.status = PaymentStatus.PENDING
            self._record()
            self._logger.info(f"Checkout created: {created.checkout_id}")
            self.status = PaymentStatus.POLLING
            self.session.status = PaymentStatus.POLLING

            if background:
                self._poller = threading.Thread(
                    target=self._poll_loop,
                    args=(generation, stop),
                    name=f"checkout-poller-{created.checkout_id}",
                    daemon=True,
                )
                self._poller.start()
                return self.status

        self._poll_loop(generation, stop)
        return self.status

    def cancel_payment(self) -> None:
        """
        Stop polling and mark the payment canceled without waiting on the gateway.

        Does nothing once the payment reached a terminal status or before one was started.
        """
        with self._lock:
            if self.status == PaymentStatus.IDLE or self.status.is_terminal:
                return
            self._retire_poller()
            self._finish(PaymentStatus.CANCELED, USER_CANCELED_MESSAGE, notify=False)

    def reset(self) -> None:
        """Return to IDLE, retiring any live poller and clearing the session."""
        with self._lock:
            self._retire_poller()
            self.status = PaymentStatus.IDLE
            self.error = None
            self.customer_pays = None
            self.session = None

    def wait(self, timeout: float | None = None) -> PaymentStatus:
        """Block until a background poller exits."""
        poller = self._poller
        if poller is not None and poller is not threading.current_thread():
            poller.join(timeout)
        return self.status

    def _retire_poller(self) -> None:
        self._stop.set()
        self._generation += 1
        self._stop = threading.Event()
        self._poller = None

    def _poll_loop(self, generation: int, stop: threading.Event) -> None:
        while not stop.wait(self.poll_interval):
            if self._poll_once(generation):
                return

    def _poll_once(self, generation: int) -> bool:
        """Issue one status poll. Returns True once this poller should stop."""
        with self._lock:
            if generation != self._generation or self.session is None:
                return True
            self.session.attempt_count += 1
            attempt = self.session.attempt_count
            checkout_id = self.session.checkout_id

        try:
            result = self._gateway.get_checkout_status(checkout_id)
        except (ExternalServiceError, OSError, requests.RequestException) as e:
            self._logger.warning(f"[{attempt}] Polling error for {checkout_id}: {e}")
            result = None

        with self._lock:
            if generation != self._generation:
                return True

            if result is not None:
                self._logger.debug(f"[{attempt}] Checkout {checkout_id}: {result.status}")
                outcome = STATUS_TRANSITIONS.get(result.status.upper())
                if outcome is not None:
                    if outcome.status == PaymentStatus.COMPLETED:
                        reference = result.payment_ids[0] if result.payment_ids else "completed"
                        self.session.payment_reference = reference
                        self._finish(PaymentStatus.COMPLETED, None)
                    else:
                        self._finish(outcome.status, result.error or outcome.message)
                    return True

            if attempt >= self.max_poll_attempts:
                self._finish(PaymentStatus.EXPIRED, TIMEOUT_MESSAGE)
                return True

        return False

    def _finish(
        self, status: PaymentStatus, message: str | None, notify: bool = True
    ) -> None:
        """Apply a terminal status. Caller holds the lock."""
        self._stop.set()
        self.status = status
        self.error = message

        if self.session is not None:
            self.session.status = status
            self.session.error = message
            self._record()

        if status == PaymentStatus.COMPLETED:
            reference = self.session.payment_reference if self.session else "completed"
            self._logger.info(f"Payment completed: {reference}")
            if notify and self._on_success:
                self._on_success(reference or "completed")
        else:
            self._logger.warning(f"Payment {status.value}: {message}")
            if notify and self._on_error and message:
                self._on_error(message)

    def _record(self) -> None:
        if self._repository is None or self.session is None:
            return
        try:
            self._repository.save(self.session)
        except Exception as e:
            self._logger.error(f"Failed to save checkout {self.session.checkout_id}: {e}")
