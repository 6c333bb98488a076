import os
import sys
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# ⚙️ keine echte Datenbank / kein Redis in Tests
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["COUPON_AUTO_CREATE_TABLES"] = "0"
os.environ.pop("REDIS_URL", None)

from database import Base, get_db  # noqa: E402
from main import app  # noqa: E402
from models.coupon import Coupon, CouponScope, CouponStatus, CouponType, StackabilityRule  # noqa: E402
from routes import coupons as coupon_routes  # noqa: E402
from utils.clock import FixedClock  # noqa: E402
from utils.coupon_cache import MemoryCouponCache  # noqa: E402
from utils.coupon_validation import CouponValidator  # noqa: E402
from utils.redemption import RedemptionCoordinator  # noqa: E402

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def cache(clock):
    return MemoryCouponCache(clock=clock)


@pytest.fixture
def validator(cache, clock):
    return CouponValidator(cache=cache, clock=clock)


@pytest.fixture
def coordinator(session_factory, validator):
    return RedemptionCoordinator(session_factory, validator)


@pytest.fixture
def make_coupon(session_factory):
    """Legt einen Coupon direkt in der Datenbank an und gibt seine ID zurück."""

    def _make(code: str, **overrides) -> str:
        values = dict(
            code=code,
            name=f"{code} coupon",
            type=CouponType.PERCENTAGE,
            discount_value=Decimal("10"),
            currency="EUR",
            status=CouponStatus.ACTIVE,
            scope=CouponScope.GLOBAL,
            stackability_rule=StackabilityRule.ALL,
            minimum_amount=Decimal("0"),
            current_uses=0,
            created_by="admin-1",
        )
        values.update(overrides)
        with session_factory() as session:
            coupon = Coupon(**values)
            session.add(coupon)
            session.commit()
            return coupon.id

    return _make


@pytest.fixture
def client(session_factory, cache, clock):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[coupon_routes.get_session_factory] = lambda: session_factory
    app.dependency_overrides[coupon_routes.get_coupon_cache] = lambda: cache
    app.dependency_overrides[coupon_routes.get_clock] = lambda: clock

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
