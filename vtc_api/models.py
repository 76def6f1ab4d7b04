import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from vtc_api.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    PROCESSING = "processing"
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    CANCELED = "canceled"
    FAILED = "failed"


class Payment(Base):
    __tablename__ = "payments"

    payment_intent_id = Column(String, primary_key=True)   # Stripe PaymentIntent ID
    amount = Column(Integer, nullable=False)               # minor units
    currency = Column(String, nullable=False, default="eur")
    status = Column(String, nullable=False)                # PaymentStatus value
    user_id = Column(String, nullable=True)
    ride_id = Column(String, nullable=True)
    payment_method = Column(String, nullable=True)
    receipt_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Payment {self.payment_intent_id} {self.status}>"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    provider = Column(String, nullable=False, default="local")  # local | google | facebook
    provider_id = Column(String, nullable=True)
    password_hash = Column(String, nullable=True)
    role = Column(String, nullable=False, default="user")       # user | admin
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "phone": self.phone,
            "provider": self.provider,
            "role": self.role,
            "lastLoginAt": self.last_login_at.isoformat() if self.last_login_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
