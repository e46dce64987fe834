import os
from datetime import timedelta
from decimal import Decimal
import uuid

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from trailhead.core.database import get_db
from trailhead.core.config import settings
from trailhead.main import app
from trailhead.models import (
    Base,
    Booking,
    BookingStatus,
    Event,
    EventCategory,
    PromoCode,
    PromoCodeStatus,
    PromoCodeType,
)
from trailhead.utils.helpers import utcnow

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
ADMIN_ID = "admin-1"


def promo_values(**overrides):
    """Column values for a promo code that passes every rule"""
    now = utcnow()
    values = dict(
        code="SAVE10",
        description="10% off",
        type=PromoCodeType.PERCENTAGE,
        value=Decimal("10"),
        min_order_amount=None,
        max_discount_amount=None,
        usage_limit=None,
        user_usage_limit=None,
        usage_count=0,
        valid_from=now - timedelta(days=1),
        valid_until=now + timedelta(days=30),
        applicable_events=[],
        applicable_categories=[],
        excluded_events=[],
        is_public=True,
        target_users=[],
        is_active=True,
        status=PromoCodeStatus.ACTIVE,
    )
    values.update(overrides)
    return values


def identity(user_id=USER_ID, role="USER"):
    return {"id": user_id, "role": role, "email": None}


def issue_token(claims, expires_in=timedelta(minutes=30)):
    """Sign a token the way the identity provider does"""
    payload = {"type": "access", "exp": utcnow() + expires_in, **claims}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def auth_headers(user_id=USER_ID, role="USER"):
    token = issue_token({"sub": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def event(db):
    event = Event(
        title="Hampta Pass Trek",
        slug="hampta-pass-trek",
        category=EventCategory.TREKKING,
        is_active=True,
    )
    db.add(event)
    await db.commit()
    return event


@pytest.fixture
def create_event(db):
    async def _create(category=EventCategory.TREKKING, **overrides):
        suffix = uuid.uuid4().hex[:8]
        event = Event(
            title=overrides.pop("title", f"Event {suffix}"),
            slug=overrides.pop("slug", f"event-{suffix}"),
            category=category,
            is_active=True,
            **overrides,
        )
        db.add(event)
        await db.commit()
        return event

    return _create


@pytest.fixture
def create_booking(db):
    async def _create(event, user_id=USER_ID, total_amount="500.00"):
        total = Decimal(total_amount)
        booking = Booking(
            booking_reference=f"TH-{uuid.uuid4().hex[:10].upper()}",
            user_id=user_id,
            event_id=event.id,
            status=BookingStatus.PENDING,
            total_amount=total,
            discount_amount=Decimal("0.00"),
            final_amount=total,
        )
        db.add(booking)
        await db.commit()
        return booking

    return _create


@pytest.fixture
def create_promo(db):
    async def _create(**overrides):
        promo = PromoCode(**promo_values(**overrides))
        db.add(promo)
        await db.commit()
        return promo

    return _create


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://localhost") as ac:
        yield ac
    app.dependency_overrides.clear()
