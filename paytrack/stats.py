"""Dashboard metrics; day boundaries are local midnight, stored times are naive UTC."""
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import func

from paytrack.database import Database, store_errors
from paytrack.errors import ValidationError
from paytrack.ledger import PaymentFilter
from paytrack.models import Payment, utcnow

WEEK_DAYS = 7
MAX_SERIES_DAYS = 90


def _to_local(moment_utc: datetime) -> datetime:
    return moment_utc.replace(tzinfo=timezone.utc).astimezone()


def _to_utc_naive(moment: datetime) -> datetime:
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def local_midnight(moment_utc: datetime, days_back: int = 0) -> datetime:
    """Local midnight `days_back` days before the local day of `moment_utc`, as naive UTC."""
    local = _to_local(moment_utc) - timedelta(days=days_back)
    return _to_utc_naive(local.replace(hour=0, minute=0, second=0, microsecond=0))


def local_date(moment_utc: datetime) -> date:
    return _to_local(moment_utc).date()


class StatisticsAggregator:
    def __init__(self, database: Database, clock: Callable[[], datetime] = utcnow):
        self.database = database
        self.clock = clock

    def compute(self, criteria: Optional[PaymentFilter] = None, days: Optional[int] = None) -> dict:
        if days is not None and not 1 <= days <= MAX_SERIES_DAYS:
            raise ValidationError(f"days must be between 1 and {MAX_SERIES_DAYS}")
        criteria = criteria or PaymentFilter()
        now = self.clock()
        today = local_midnight(now)
        week_start = local_midnight(now, WEEK_DAYS)

        with store_errors(), self.database.session() as db:
            def scoped(*columns):
                return criteria.apply(db.query(*columns).select_from(Payment))

            successful = scoped(func.count(Payment.id)).filter(Payment.status == "success")
            revenue = scoped(func.sum(Payment.amount)).filter(Payment.status == "success")

            stats = {
                "today_transactions": successful.filter(Payment.created_at >= today).scalar() or 0,
                "week_transactions": successful.filter(Payment.created_at >= week_start).scalar() or 0,
                "total_revenue": revenue.scalar() or 0.0,
                "today_revenue": revenue.filter(Payment.created_at >= today).scalar() or 0.0,
                "failed_transactions": scoped(func.count(Payment.id))
                .filter(Payment.status == "failed").scalar() or 0,
                "total_transactions": scoped(func.count(Payment.id)).scalar() or 0,
            }

            by_status = scoped(Payment.status, func.count(Payment.id), func.sum(Payment.amount)) \
                .group_by(Payment.status).all()
            by_method = scoped(Payment.payment_method, func.count(Payment.id), func.sum(Payment.amount)) \
                .group_by(Payment.payment_method).all()

            # Only groups that actually have rows come back, so empty ones stay absent
            stats["status_breakdown"] = {s: c for s, c, _ in by_status}
            stats["status_amounts"] = {s: total or 0.0 for s, _, total in by_status}
            stats["method_breakdown"] = {m: c for m, c, _ in by_method}
            stats["method_amounts"] = {m: total or 0.0 for m, _, total in by_method}

            if days is not None:
                since = local_midnight(now, days - 1)
                rows = scoped(Payment.created_at, Payment.status, Payment.amount) \
                    .filter(Payment.created_at >= since).all()
                stats["daily"] = self._daily_series(rows, now, days)

        return stats

    @staticmethod
    def _daily_series(rows, now: datetime, days: int) -> list:
        last = local_date(now)
        buckets = {}
        for offset in range(days - 1, -1, -1):
            day = last - timedelta(days=offset)
            buckets[day] = {"date": day, "transactions": 0, "successful": 0, "revenue": 0.0}

        for created_at, status, amount in rows:
            bucket = buckets.get(local_date(created_at))
            if bucket is None:
                continue
            bucket["transactions"] += 1
            if status == "success":
                bucket["successful"] += 1
                bucket["revenue"] += amount
        return list(buckets.values())
