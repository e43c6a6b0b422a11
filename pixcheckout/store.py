import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from sqlalchemy.exc import SQLAlchemyError

from pixcheckout.exceptions import NotFoundError, PersistenceError, ValidationError
from pixcheckout.models import IntentStatus, PaymentIntent

logger = logging.getLogger(__name__)

MIN_AMOUNT = Decimal("10.00")
DEFAULT_DESCRIPTION = "Pagamento PIX"
CENTS = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_amount(amount) -> Decimal:
    """Parse a PIX amount and enforce the minimum of 10.00."""
    if isinstance(amount, bool) or amount is None:
        raise ValidationError("Amount is required", {"amount": amount})
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number", {"amount": str(amount)})
    if not value.is_finite():
        raise ValidationError("Amount must be a number", {"amount": str(amount)})
    if value < MIN_AMOUNT:
        raise ValidationError(
            f"The minimum PIX amount is {MIN_AMOUNT}",
            {"amount": str(value), "minimum": str(MIN_AMOUNT)}
        )
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class IntentStore:
    """Durable payment intents; the only place intent status is changed."""

    def __init__(self, session_factory, clock=utcnow):
        self._session_factory = session_factory
        self.clock = clock

    @contextmanager
    def _session(self, action: str):
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Intent store failed to %s: %s", action, e)
            raise PersistenceError(f"Could not {action}", {"error_type": type(e).__name__}) from e
        finally:
            db.close()

    def create(self, amount, description: str | None = None) -> PaymentIntent:
        value = validate_amount(amount)
        description = (description or "").strip() or DEFAULT_DESCRIPTION

        intent = PaymentIntent(
            id=uuid.uuid4().hex,
            amount=value,
            description=description,
            status=IntentStatus.PENDING.value,
            created_at=self.clock(),
        )
        with self._session("create payment intent") as db:
            db.add(intent)
            db.commit()

        logger.info("Created payment intent %s for %s", intent.id, intent.amount)
        return intent

    def list(self) -> list[PaymentIntent]:
        with self._session("list payment intents") as db:
            return (
                db.query(PaymentIntent)
                .order_by(PaymentIntent.created_at.desc())
                .all()
            )

    def get(self, intent_id: str) -> PaymentIntent:
        with self._session("load payment intent") as db:
            intent = db.get(PaymentIntent, intent_id)
        if intent is None:
            raise NotFoundError("Invalid or expired payment link", {"intent_id": intent_id})
        return intent

    def update_status(self, intent_id: str, status) -> PaymentIntent:
        try:
            status = IntentStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown payment status '{status}'", {"status": str(status)})

        with self._session("update payment intent status") as db:
            intent = db.get(PaymentIntent, intent_id)
            if intent is None:
                raise NotFoundError("Invalid or expired payment link", {"intent_id": intent_id})
            if intent.status != status.value:
                logger.info("Intent %s status %s -> %s", intent_id, intent.status, status.value)
                intent.status = status.value
                db.commit()
            return intent

    def delete(self, intent_id: str) -> None:
        with self._session("delete payment intent") as db:
            intent = db.get(PaymentIntent, intent_id)
            if intent is None:
                raise NotFoundError("Invalid or expired payment link", {"intent_id": intent_id})
            db.delete(intent)
            db.commit()
        logger.info("Deleted payment intent %s", intent_id)
