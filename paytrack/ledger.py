import logging
import math
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError

from paytrack.database import Database, store_errors
from paytrack.errors import ConflictError, NotFoundError, ValidationError
from paytrack.models import PAYMENT_METHODS, PAYMENT_STATUSES, Payment, utcnow

logger = logging.getLogger(__name__)

MAX_ID_ATTEMPTS = 5
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

PATCHABLE_FIELDS = (
    "amount", "currency", "status", "payment_method",
    "sender", "receiver", "description", "failure_reason",
)
NOT_NULL_FIELDS = ("amount", "currency", "status", "payment_method")

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_transaction_id(now: datetime) -> str:
    """TXN + epoch milliseconds + 5 random upper-case alphanumerics."""
    millis = int((now - datetime(1970, 1, 1)).total_seconds() * 1000)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(5))
    return f"TXN{millis}{suffix}"


@dataclass
class PaymentFilter:
    status: Optional[str] = None
    payment_method: Optional[str] = None
    start: Optional[datetime] = None   # inclusive, naive UTC
    end: Optional[datetime] = None     # inclusive, naive UTC
    owner_id: Optional[int] = None

    def apply(self, query):
        if self.status:
            query = query.filter(Payment.status == self.status)
        if self.payment_method:
            query = query.filter(Payment.payment_method == self.payment_method)
        if self.start is not None:
            query = query.filter(Payment.created_at >= self.start)
        if self.end is not None:
            query = query.filter(Payment.created_at <= self.end)
        if self.owner_id is not None:
            query = query.filter(Payment.owner_id == self.owner_id)
        return query


@dataclass
class Page:
    items: List[Payment]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size)


def _validate(fields: dict) -> None:
    for field in NOT_NULL_FIELDS:
        if field in fields and fields[field] is None:
            raise ValidationError(f"{field} must not be null")
    if "amount" in fields:
        amount = fields["amount"]
        if amount is None or amount < 0:
            raise ValidationError("amount must be a non-negative number")
    if "status" in fields and fields["status"] not in PAYMENT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(PAYMENT_STATUSES)}")
    if "payment_method" in fields and fields["payment_method"] not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
    if "currency" in fields and len(fields["currency"]) != 3:
        raise ValidationError("currency must be a 3-letter code")


def _apply_status(payment: Payment, now: datetime) -> None:
    """Keep processed_at and failure_reason consistent with the status."""
    if payment.status == "success":
        if payment.processed_at is None:
            payment.processed_at = now
    else:
        payment.processed_at = None
    if payment.status != "failed":
        payment.failure_reason = None


class PaymentLedger:
    def __init__(self, database: Database, clock: Callable[[], datetime] = utcnow):
        self.database = database
        self.clock = clock

    def create(self, record: dict, owner_id: Optional[int] = None) -> Payment:
        for field in ("amount", "payment_method"):
            if record.get(field) is None:
                raise ValidationError(f"{field} is required")
        _validate(record)

        for attempt in range(1, MAX_ID_ATTEMPTS + 1):
            now = self.clock()
            payment = Payment(
                transaction_id=generate_transaction_id(now),
                amount=record["amount"],
                currency=(record.get("currency") or "USD").upper(),
                status=record.get("status") or "pending",
                payment_method=record["payment_method"],
                sender=record.get("sender"),
                receiver=record.get("receiver"),
                description=record.get("description"),
                failure_reason=record.get("failure_reason"),
                owner_id=owner_id,
                created_at=now,
                updated_at=now,
            )
            _apply_status(payment, now)

            with store_errors(), self.database.session() as db:
                try:
                    db.add(payment)
                    db.commit()
                except IntegrityError as exc:
                    db.rollback()
                    if "transaction_id" not in str(exc.orig):
                        raise
                    logger.warning(
                        "Transaction id collision on %s (attempt %d/%d)",
                        payment.transaction_id, attempt, MAX_ID_ATTEMPTS,
                    )
                    continue
            logger.info("Created payment %s (%s)", payment.transaction_id, payment.status)
            return payment

        raise ConflictError("Could not allocate a unique transaction id, please retry")

    def find_by_id(self, payment_id: int, owner_id: Optional[int] = None) -> Payment:
        with store_errors(), self.database.session() as db:
            payment = self._get(db, payment_id, owner_id)
        return payment

    def list(self, criteria: Optional[PaymentFilter] = None, page: int = 1,
             page_size: int = DEFAULT_PAGE_SIZE) -> Page:
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        criteria = criteria or PaymentFilter()

        with store_errors(), self.database.session() as db:
            query = criteria.apply(db.query(Payment))
            total = query.count()
            items = (
                query.order_by(Payment.created_at.desc(), Payment.id.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
                .all()
            )
        return Page(items=items, total=total, page=page, page_size=page_size)

    def update(self, payment_id: int, patch: dict, owner_id: Optional[int] = None) -> Payment:
        unknown = set(patch) - set(PATCHABLE_FIELDS)
        if unknown:
            raise ValidationError(f"fields not updatable: {', '.join(sorted(unknown))}")
        _validate(patch)

        with store_errors(), self.database.session() as db:
            payment = self._get(db, payment_id, owner_id)
            for field, value in patch.items():
                if field == "currency" and value:
                    value = value.upper()
                setattr(payment, field, value)
            now = self.clock()
            _apply_status(payment, now)
            payment.updated_at = now
            db.commit()
        return payment

    def remove(self, payment_id: int, owner_id: Optional[int] = None) -> None:
        with store_errors(), self.database.session() as db:
            payment = self._get(db, payment_id, owner_id)
            db.delete(payment)
            db.commit()
        logger.info("Removed payment %s", payment.transaction_id)

    @staticmethod
    def _get(db, payment_id: int, owner_id: Optional[int]) -> Payment:
        query = db.query(Payment).filter(Payment.id == payment_id)
        if owner_id is not None:
            query = query.filter(Payment.owner_id == owner_id)
        payment = query.first()
        if payment is None:
            raise NotFoundError("Payment not found")
        return payment
