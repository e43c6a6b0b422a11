"""
Checkout state machine.

A CheckoutSession takes one payment intent from "unpaid" to a terminal state:

    unpaid --submit--> charge_requested --> awaiting_confirmation --tick--+--> completed
                            |                                             +--> expired
                            +-- provider error: back to unpaid            +--> cancelled
                                                                          +--> client_expired

While awaiting confirmation the session owns an interval job that asks the
provider for the charge status. When the provider reports a terminal status
the job is cancelled and the status is written to the IntentStore. Writes that
fail are queued in the ReconciliationBacklog and retried until they land.
"""
import logging
import re
import threading
from dataclasses import dataclass
from enum import Enum

from pixcheckout.exceptions import (
    CheckoutError,
    ConfigurationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from pixcheckout.models import IntentStatus, PaymentIntent
from pixcheckout.pixgo_service import ChargeRequest, ProviderCharge
from pixcheckout.store import IntentStore, validate_amount

logger = logging.getLogger(__name__)


class CheckoutState(str, Enum):
    UNPAID = "unpaid"
    CHARGE_REQUESTED = "charge_requested"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    CLIENT_EXPIRED = "client_expired"


PROVIDER_TERMINAL = {
    "completed": CheckoutState.COMPLETED,
    "expired": CheckoutState.EXPIRED,
    "cancelled": CheckoutState.CANCELLED,
}

TERMINAL_STATES = frozenset(PROVIDER_TERMINAL.values()) | {CheckoutState.CLIENT_EXPIRED}


@dataclass(frozen=True)
class PayerDetails:
    name: str
    tax_id: str
    email: str
    phone: str | None = None


def normalize_tax_id(raw: str | None) -> str:
    return re.sub(r"\D", "", raw or "")


class ReconciliationBacklog:
    """Terminal statuses whose store write failed, keyed by intent id."""

    def __init__(self):
        self._pending: dict[str, IntentStatus] = {}
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._pending)

    def add(self, intent_id: str, status: IntentStatus):
        with self._lock:
            self._pending[intent_id] = status
        logger.warning("Queued status %s for intent %s for a later write", status.value, intent_id)

    def pending(self) -> dict[str, IntentStatus]:
        with self._lock:
            return dict(self._pending)

    def flush(self, store: IntentStore) -> int:
        """Retry queued writes; returns how many are still pending."""
        for intent_id, status in self.pending().items():
            try:
                store.update_status(intent_id, status)
            except NotFoundError:
                logger.warning("Intent %s was deleted, dropping queued status %s", intent_id, status.value)
            except PersistenceError as e:
                logger.error("Still cannot save status %s for intent %s: %s", status.value, intent_id, e.message)
                continue
            with self._lock:
                if self._pending.get(intent_id) is status:
                    del self._pending[intent_id]
        return len(self)


class CheckoutSession:

    def __init__(self, intent: PaymentIntent, store: IntentStore, provider, scheduler, settings, backlog: ReconciliationBacklog):
        self.intent = intent
        self.intent_id = intent.id
        self._store = store
        self._provider = provider
        self._scheduler = scheduler
        self._settings = settings
        self._backlog = backlog

        self.state = CheckoutState.UNPAID
        self.charge: ProviderCharge | None = None
        self.provider_status: str | None = None
        self.last_error: str | None = None
        self.attempts = 0

        self._job_id: str | None = None
        self._reconciled = False
        self._closed = False
        self._state_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._job_lock = threading.Lock()

    @property
    def job_id(self) -> str:
        return f"checkout:{self.intent_id}"

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def polling(self) -> bool:
        return self._job_id is not None

    def submit(self, payer: PayerDetails) -> ProviderCharge:
        api_key = self._settings.pixgo_api_key
        if not api_key:
            raise ConfigurationError("Payments are not configured. Contact the administrator.")

        with self._state_lock:
            if self.state is not CheckoutState.UNPAID:
                raise ValidationError(
                    "This checkout already has a PIX charge",
                    {"state": self.state.value}
                )
            self.state = CheckoutState.CHARGE_REQUESTED

        try:
            # Amount and status come from storage, not from this session.
            self.intent = self._store.get(self.intent_id)
            if self.intent.status == IntentStatus.COMPLETED.value:
                raise ValidationError("This payment link was already paid", {"intent_id": self.intent_id})
            request = ChargeRequest(
                amount=validate_amount(self.intent.amount),
                description=self.intent.description,
                payer_name=payer.name.strip(),
                payer_tax_id=normalize_tax_id(payer.tax_id),
                payer_email=payer.email.strip(),
                payer_phone=(payer.phone or "").strip() or None,
                external_reference=self.intent_id,
            )
            charge = self._provider.create_charge(api_key, request)
        except CheckoutError as e:
            self.last_error = e.message
            self.state = CheckoutState.UNPAID
            logger.warning("Charge for intent %s failed: %s", self.intent_id, e.message)
            raise
        except Exception:
            self.last_error = "Could not create the PIX charge. Try again."
            self.state = CheckoutState.UNPAID
            logger.exception("Unexpected error creating a charge for intent %s", self.intent_id)
            raise

        self.charge = charge
        self.provider_status = charge.provider_status
        self.last_error = None
        self.attempts = 0
        self.state = CheckoutState.AWAITING_CONFIRMATION
        if self._start_polling():
            logger.info("Intent %s awaiting confirmation of charge %s", self.intent_id, charge.payment_id)
        else:
            logger.warning(
                "Checkout for intent %s was closed while charge %s was requested, not polling",
                self.intent_id, charge.payment_id
            )
        return charge

    def tick(self):
        """One poll step. Ticks never overlap; a tick after a terminal state is a no-op."""
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Previous tick for intent %s still running, skipping", self.intent_id)
            return
        try:
            if self._closed:
                return
            if self.state is CheckoutState.AWAITING_CONFIRMATION:
                try:
                    self._poll_provider()
                except Exception:
                    logger.exception("Status check %d for intent %s crashed", self.attempts, self.intent_id)
            if self.state in TERMINAL_STATES:
                self._finish()
        finally:
            self._tick_lock.release()

    def close(self):
        """Stop polling for good. A closed session never schedules another job."""
        with self._job_lock:
            self._closed = True
        self._stop_polling()

    def snapshot(self) -> dict:
        return {
            "intent_id": self.intent_id,
            "amount": self.intent.amount,
            "description": self.intent.description,
            "intent_status": self.intent.status,
            "state": self.state.value,
            "provider_status": self.provider_status,
            "payment_id": self.charge.payment_id if self.charge else None,
            "qr_code": self.charge.qr_payload if self.charge else None,
            "error": self.last_error,
            "attempts": self.attempts,
        }

    def _poll_provider(self):
        self.attempts += 1
        try:
            self._check_status()
        finally:
            if (self.state is CheckoutState.AWAITING_CONFIRMATION
                    and self.attempts >= self._settings.max_poll_attempts):
                logger.warning(
                    "Gave up on charge %s for intent %s after %d status checks",
                    self.charge.payment_id, self.intent_id, self.attempts
                )
                self.state = CheckoutState.CLIENT_EXPIRED

    def _check_status(self):
        try:
            status = self._provider.get_status(self._settings.pixgo_api_key, self.charge.payment_id)
        except CheckoutError as e:
            logger.warning(
                "Status check %d for intent %s failed, retrying next tick: %s",
                self.attempts, self.intent_id, e.message
            )
            return

        self.provider_status = status
        terminal = PROVIDER_TERMINAL.get(status)
        if terminal is not None:
            logger.info("Charge %s for intent %s is %s", self.charge.payment_id, self.intent_id, status)
            self.state = terminal
        elif status != IntentStatus.PENDING.value:
            logger.warning("Unknown provider status %r for intent %s", status, self.intent_id)

    def _finish(self):
        if not self._reconciled:
            self._reconciled = True
            if self.state is not CheckoutState.CLIENT_EXPIRED:
                self._reconcile(IntentStatus(self.state.value))
        self._stop_polling()

    def _reconcile(self, status: IntentStatus):
        try:
            self.intent = self._store.update_status(self.intent_id, status)
        except NotFoundError:
            logger.warning("Intent %s was deleted before status %s could be saved", self.intent_id, status.value)
        except PersistenceError as e:
            logger.error("Could not save status %s for intent %s: %s", status.value, self.intent_id, e.message)
            self._backlog.add(self.intent_id, status)

    def _start_polling(self) -> bool:
        with self._job_lock:
            if self._closed:
                return False
            self._job_id = self._scheduler.every(self.job_id, self.tick, self._settings.poll_interval_seconds)
            return True

    def _stop_polling(self):
        with self._job_lock:
            job_id, self._job_id = self._job_id, None
        if job_id is not None:
            self._scheduler.cancel(job_id)
            logger.debug("Stopped polling for intent %s", self.intent_id)


class CheckoutManager:
    """Live checkout sessions, at most one per intent."""

    BACKLOG_JOB_ID = "reconciliation-backlog"

    def __init__(self, store: IntentStore, provider, scheduler, settings):
        self._store = store
        self._provider = provider
        self._scheduler = scheduler
        self._settings = settings
        self._sessions: dict[str, CheckoutSession] = {}
        self._lock = threading.Lock()
        self.backlog = ReconciliationBacklog()

    def start(self):
        self._scheduler.every(self.BACKLOG_JOB_ID, self.flush_backlog, self._settings.poll_interval_seconds)

    def require_configured(self):
        if not self._settings.pixgo_api_key:
            raise ConfigurationError("Payments are not configured. Contact the administrator.")

    def open(self, intent_id: str) -> CheckoutSession:
        """Page load: resume the live session or start a new one from the stored intent."""
        self.require_configured()
        intent = self._store.get(intent_id)

        with self._lock:
            session = self._sessions.get(intent_id)
            if session is not None and not session.finished:
                return session
            if session is not None:
                session.close()
            session = CheckoutSession(intent, self._store, self._provider, self._scheduler, self._settings, self.backlog)
            self._sessions[intent_id] = session
            return session

    def current(self, intent_id: str) -> CheckoutSession:
        with self._lock:
            session = self._sessions.get(intent_id)
        if session is not None:
            return session
        return self.open(intent_id)

    def submit(self, intent_id: str, payer: PayerDetails) -> CheckoutSession:
        session = self.current(intent_id)
        session.submit(payer)
        return session

    def teardown(self, intent_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(intent_id, None)
        if session is None:
            return False
        session.close()
        logger.info("Closed checkout session for intent %s", intent_id)
        return True

    def flush_backlog(self) -> int:
        if not len(self.backlog):
            return 0
        return self.backlog.flush(self._store)

    def shutdown(self):
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
        self._scheduler.cancel(self.BACKLOG_JOB_ID)

        if self.flush_backlog():
            lost = {k: v.value for k, v in self.backlog.pending().items()}
            logger.error("Shutting down with unsaved intent statuses: %s", lost)
