"""
Subscription Store

Thin persistence layer over the ``subscription`` table. Every method commits
its own unit of work and raises ``StoreError`` (session already rolled back)
on database failure.

Usage:
    store = SubscriptionStore(session)
    total = store.count_by_status(LIVE_STATUSES)
    batch = store.list_by_status(LIVE_STATUSES, limit=40)
"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from app.core.db_utils import store_errors
from app.core.logging_config import get_logger
from app.core.typing import col, utc_now
from app.models.subscription import Subscription, SubscriptionStatus

logger = get_logger(__name__)


class SubscriptionStore:
    def __init__(self, session: Session):
        self.session = session

    def get(self, subscription_id: str) -> Optional[Subscription]:
        with store_errors(self.session, "get_subscription", subscription_id=subscription_id):
            return self.session.get(Subscription, subscription_id)

    def count_by_status(self, statuses: Iterable[SubscriptionStatus]) -> int:
        statuses = list(statuses)
        with store_errors(self.session, "count_subscriptions"):
            stmt = select(func.count()).select_from(Subscription).where(col(Subscription.status).in_(statuses))
            return int(self.session.exec(stmt).one())

    def list_by_status(self, statuses: Iterable[SubscriptionStatus], limit: int) -> list[Subscription]:
        """
        Eligible subscriptions in a stable order (by id).

        No cursor is kept between calls; every invocation starts from the
        beginning of the filtered set.
        """
        statuses = list(statuses)
        with store_errors(self.session, "list_subscriptions"):
            stmt = (
                select(Subscription)
                .where(col(Subscription.status).in_(statuses))
                .order_by(col(Subscription.id).asc())
                .limit(limit)
            )
            return list(self.session.exec(stmt).all())

    def list_expired(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> list[Subscription]:
        """Active subscriptions whose current period has already ended."""
        now = now or utc_now()
        with store_errors(self.session, "list_expired_subscriptions"):
            stmt = (
                select(Subscription)
                .where(
                    col(Subscription.status) == SubscriptionStatus.ACTIVE,
                    col(Subscription.current_period_end) < now,
                )
                .order_by(col(Subscription.current_period_end).asc())
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            return list(self.session.exec(stmt).all())

    def upsert(self, record: Subscription) -> Subscription:
        with store_errors(self.session, "upsert_subscription", subscription_id=record.id):
            record.updated_at = utc_now()
            merged = self.session.merge(record)
            self.session.commit()
            self.session.refresh(merged)
            return merged

    def mark_canceled(self, subscription_id: str) -> Optional[Subscription]:
        """
        Set status=canceled locally without contacting the provider.

        Idempotent: an already-canceled record is left untouched. Returns the
        record, or None if it does not exist locally.
        """
        with store_errors(self.session, "mark_canceled", subscription_id=subscription_id):
            record = self.session.get(Subscription, subscription_id)
            if record is None:
                return None
            if record.status == SubscriptionStatus.CANCELED:
                return record

            now = utc_now()
            record.status = SubscriptionStatus.CANCELED
            record.canceled_at = record.canceled_at or now
            record.updated_at = now
            self.session.add(record)
            self.session.commit()
            self.session.refresh(record)

        logger.info("Subscription marked canceled", subscription_id=subscription_id)
        return record


__all__ = ["SubscriptionStore"]
