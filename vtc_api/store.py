from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from vtc_api.database import Database
from vtc_api.errors import InvalidRequest, StorageUnavailable
from vtc_api.models import Payment, PaymentStatus, utcnow

logger = structlog.get_logger(component="store")

MUTABLE_FIELDS = frozenset(
    {"amount", "currency", "status", "user_id", "ride_id", "payment_method", "receipt_url"}
)


def _clean_fields(fields: dict) -> dict:
    unknown = set(fields) - MUTABLE_FIELDS
    if unknown:
        raise TypeError(f"Unknown payment fields: {', '.join(sorted(unknown))}")
    if "status" in fields:
        try:
            fields["status"] = PaymentStatus(fields["status"]).value
        except ValueError:
            raise InvalidRequest(f"Unknown payment status: {fields['status']}")
    return fields


class PaymentStore:
    """Payment records keyed by Stripe PaymentIntent id.

    Every method raises ``StorageUnavailable`` when the database is not
    connected or a query fails, including driver-level socket errors that
    SQLAlchemy does not wrap; callers decide whether that matters.
    """

    def __init__(self, database: Database):
        self.database = database

    def is_available(self) -> bool:
        return self.database.is_connected

    def _session(self):
        if not self.is_available() or self.database.SessionLocal is None:
            raise StorageUnavailable("Database is not connected")
        return self.database.SessionLocal()

    async def find_by_intent_id(self, intent_id: str) -> Optional[Payment]:
        try:
            async with self._session() as db:
                return await db.get(Payment, intent_id)
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable(str(e)) from e

    async def upsert_by_intent_id(self, intent_id: str, **fields) -> Payment:
        fields = _clean_fields(fields)
        try:
            async with self._session() as db:
                payment = await db.get(Payment, intent_id)
                if payment is None:
                    payment = Payment(payment_intent_id=intent_id, **fields)
                    db.add(payment)
                    try:
                        await db.commit()
                        return payment
                    except IntegrityError:
                        # inserted concurrently, fall through to update
                        await db.rollback()
                        payment = await db.get(Payment, intent_id)
                        if payment is None:
                            raise
                for name, value in fields.items():
                    setattr(payment, name, value)
                payment.updated_at = utcnow()
                await db.commit()
                return payment
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable(str(e)) from e

    async def update_by_intent_id(self, intent_id: str, **changes) -> Optional[Payment]:
        """Targeted update; returns None without writing when no record exists."""
        changes = _clean_fields(changes)
        try:
            async with self._session() as db:
                payment = await db.get(Payment, intent_id)
                if payment is None:
                    return None
                for name, value in changes.items():
                    setattr(payment, name, value)
                payment.updated_at = utcnow()
                await db.commit()
                return payment
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable(str(e)) from e
