import enum
from datetime import timezone

from sqlalchemy import Column, DateTime, Numeric, String
from sqlalchemy.types import TypeDecorator
from pixcheckout.database import Base


class UTCDateTime(TypeDecorator):
    """Stored as UTC. SQLite drops the offset, so it is put back on read."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class IntentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class PaymentIntent(Base):
    __tablename__ = "payment_intents"

    id = Column(String, primary_key=True)          # uuid4 hex, used in the checkout link
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String, nullable=False)
    status = Column(String, nullable=False, default=IntentStatus.PENDING.value)  # pending | completed | expired | cancelled
    created_at = Column(UTCDateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<PaymentIntent {self.id} {self.amount} {self.status}>"
