"""
Test fixtures for billing-reconciler tests.

Provides database session fixtures, a scriptable fake provider and record
factories.
"""

import os

# Keep the app engine off Postgres and the logs human-readable during tests
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from datetime import datetime, timedelta, timezone
from typing import Callable, Generator, Optional
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.pool import StaticPool

from app.core.errors import NotFoundError, TransientProviderError
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.webhook_event import WebhookEvent, WebhookEventStatus
from app.services.billing_provider import ProviderEvent, ProviderSnapshot


def pytest_collection_modifyitems(config, items):
    """Skip integration tests in CI (they need a real database)."""
    if os.environ.get("CI") == "true":
        skip_integration = pytest.mark.skip(reason="Integration tests skipped in CI (no database)")
        for item in items:
            if "integration" in item.keywords:
                item.add_marker(skip_integration)


# Use in-memory SQLite for unit tests (fast, isolated)
TEST_DATABASE_URL = "sqlite:///:memory:"

PERIOD_END = datetime(2030, 1, 31, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_session(test_engine) -> Generator[Session, None, None]:
    """Provide a test database session."""
    with Session(test_engine) as session:
        yield session


class FakeProvider:
    """
    In-memory BillingProvider.

    Subscriptions and events missing from the dicts raise NotFoundError;
    ids listed in ``failures`` raise the mapped exception instead.
    """

    def __init__(self):
        self.subscriptions: dict[str, ProviderSnapshot] = {}
        self.events: dict[str, ProviderEvent] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[str] = []

    def retrieve_subscription(self, subscription_id: str) -> ProviderSnapshot:
        self.calls.append(subscription_id)
        if subscription_id in self.failures:
            raise self.failures[subscription_id]
        if subscription_id not in self.subscriptions:
            raise NotFoundError(f"No such subscription: '{subscription_id}'")
        return self.subscriptions[subscription_id]

    def retrieve_event(self, event_id: str) -> ProviderEvent:
        self.calls.append(event_id)
        if event_id in self.failures:
            raise self.failures[event_id]
        if event_id not in self.events:
            raise NotFoundError(f"No such event: '{event_id}'")
        return self.events[event_id]

    def fail(self, object_id: str, exc: Optional[Exception] = None) -> None:
        self.failures[object_id] = exc or TransientProviderError("Connection reset by peer")


class RecordingPacer:
    def __init__(self):
        self.calls = 0

    def pace(self) -> None:
        self.calls += 1


class RecordingRecalculator:
    def __init__(self):
        self.calls: list[tuple] = []

    def subscription_changed(self, user_id, previous, current) -> None:
        self.calls.append((user_id, previous, current.status))


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def recording_pacer() -> RecordingPacer:
    return RecordingPacer()


@pytest.fixture
def recalculator() -> RecordingRecalculator:
    return RecordingRecalculator()


def make_snapshot(
    sub_id: str = "sub_1",
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    price_id: Optional[str] = "price_pro",
    period_end: Optional[datetime] = PERIOD_END,
    user_id: Optional[str] = "user_1",
    **kwargs,
) -> ProviderSnapshot:
    metadata = {"user_id": user_id} if user_id else {}
    return ProviderSnapshot(
        id=sub_id,
        status=status,
        customer_id=kwargs.pop("customer_id", "cus_1"),
        current_price_id=price_id,
        current_period_start=kwargs.pop("period_start", (period_end - timedelta(days=30)) if period_end else None),
        current_period_end=period_end,
        metadata=metadata,
        **kwargs,
    )


@pytest.fixture
def subscription_factory(test_session: Session) -> Callable[..., Subscription]:
    """Insert a subscription row; mirrors ``make_snapshot`` defaults."""

    def _create(
        sub_id: str = "sub_1",
        user_id: str = "user_1",
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        plan_id: Optional[str] = "price_pro",
        period_end: Optional[datetime] = PERIOD_END,
        **kwargs,
    ) -> Subscription:
        record = Subscription(
            id=sub_id,
            user_id=user_id,
            customer_id=kwargs.pop("customer_id", "cus_1"),
            status=status,
            plan_id=plan_id,
            current_period_start=kwargs.pop("period_start", (period_end - timedelta(days=30)) if period_end else None),
            current_period_end=period_end,
            **kwargs,
        )
        test_session.add(record)
        test_session.commit()
        test_session.refresh(record)
        return record

    return _create


@pytest.fixture
def webhook_event_factory(test_session: Session) -> Callable[..., WebhookEvent]:
    def _create(
        event_id: str = "evt_1",
        event_type: str = "customer.subscription.updated",
        status: WebhookEventStatus = WebhookEventStatus.FAILED,
        retry_count: int = 0,
        recoverable: bool = True,
        created_at: Optional[datetime] = None,
    ) -> WebhookEvent:
        event = WebhookEvent(
            event_id=event_id,
            event_type=event_type,
            status=status,
            retry_count=retry_count,
            recoverable=recoverable,
            error_message="Initial delivery failed" if status == WebhookEventStatus.FAILED else None,
            created_at=created_at or datetime.now(timezone.utc),
        )
        test_session.add(event)
        test_session.commit()
        test_session.refresh(event)
        return event

    return _create


def make_event(
    event_id: str = "evt_1",
    event_type: str = "customer.subscription.updated",
    sub_id: str = "sub_1",
    **data,
) -> ProviderEvent:
    data_object = {"id": sub_id, "object": "subscription", **data}
    return ProviderEvent(id=event_id, type=event_type, data_object=data_object)
