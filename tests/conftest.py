import os
import tempfile
from datetime import datetime, timedelta

# Settings are read at import time, so the test environment goes in first
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["PAYMENT_TEST_MODE"] = "true"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["REDIS_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="sakina-uploads-")
os.environ["BACKEND_URL"] = "http://testserver"
os.environ.pop("FIREBASE_CREDENTIALS_PATH", None)

import pytest
from fastapi.testclient import TestClient

from sakina.main import app
from sakina.database import Base, SessionLocal, engine
from sakina.models.category import Category
from sakina.models.coupon import Coupon, DiscountType
from sakina.models.package import Package, PackageType, PeriodType
from sakina.models.program import Program, ProgramTrack
from sakina.models.track import Track, ContentAccess
from sakina.models.user import User, Role, AuthProvider
from sakina.services.auth_service import AuthService
from sakina.services.storage_service import set_storage
from sakina.utils.security import get_password_hash

API = "/api/v1"
PASSWORD = "correct-horse-42"


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    set_storage(None)
    yield
    set_storage(None)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def now():
    return datetime(2025, 3, 15, 12, 0, 0)


# ============================================
# FACTORIES
# ============================================

@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def factory(role=Role.USER, **overrides):
        counter["n"] += 1
        values = {
            "email": f"user{counter['n']}@example.com",
            "name": f"User {counter['n']}",
            "hashed_password": get_password_hash(PASSWORD),
            "auth_provider": AuthProvider.EMAIL,
            "role": role,
            "is_verified": True,
            "fcm_tokens": [],
        }
        values.update(overrides)
        user = User(**values)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return factory


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role=Role.ADMIN, email="admin@example.com", name="Admin")


def auth_headers(user: User) -> dict:
    token = AuthService.create_tokens(user)["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers(user):
    return auth_headers(user)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def packages(db):
    """basic (monthly 30), standard (3 months 90), premium (yearly 365)"""
    rows = {
        "basic": Package(
            name="Basic", type=PackageType.BASIC, price=30, currency="SAR",
            period_type=PeriodType.MONTH, period_count=1, duration_in_days=30, display_order=1,
        ),
        "standard": Package(
            name="Standard", type=PackageType.STANDARD, price=90, currency="SAR",
            period_type=PeriodType.MONTH, period_count=3, duration_in_days=90, display_order=2,
        ),
        "premium": Package(
            name="Premium", type=PackageType.PREMIUM, price=365, currency="SAR",
            period_type=PeriodType.YEAR, period_count=1, duration_in_days=365, display_order=3,
        ),
    }
    db.add_all(rows.values())
    db.commit()
    for package in rows.values():
        db.refresh(package)
    return rows


@pytest.fixture
def make_coupon(db):
    def factory(code="SAVE20", discount_type=DiscountType.PERCENTAGE, discount_value=20, **overrides):
        values = {
            "code": code,
            "discount_type": discount_type,
            "discount_value": discount_value,
            "used_count": 0,
            "valid_from": datetime.utcnow() - timedelta(days=1),
            "valid_until": datetime.utcnow() + timedelta(days=30),
            "is_active": True,
            "applicable_packages": [],
        }
        values.update(overrides)
        coupon = Coupon(**values)
        db.add(coupon)
        db.commit()
        db.refresh(coupon)
        return coupon

    return factory


@pytest.fixture
def category(db):
    row = Category(name="Sleep", icon="moon", color="#336699", image_url="https://cdn.example.com/sleep.png")
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture
def make_track(db, category):
    counter = {"n": 0}

    def factory(content_access=ContentAccess.FREE, **overrides):
        counter["n"] += 1
        values = {
            "title": f"Track {counter['n']}",
            "duration_seconds": 600,
            "category_id": category.id,
            "image_url": f"https://cdn.example.com/track{counter['n']}.png",
            "audio_key": f"audio/track{counter['n']}.mp3",
            "content_access": content_access,
            "play_count": 0,
            "tags": [],
        }
        values.update(overrides)
        track = Track(**values)
        db.add(track)
        db.commit()
        db.refresh(track)
        return track

    return factory


@pytest.fixture
def make_program(db, category):
    def factory(tracks, content_access=ContentAccess.FREE, **overrides):
        values = {
            "title": "Seven days of calm",
            "category_id": category.id,
            "thumbnail_url": "https://cdn.example.com/program.png",
            "content_access": content_access,
        }
        values.update(overrides)
        program = Program(**values)
        for order, track in enumerate(tracks, start=1):
            program.tracks.append(ProgramTrack(track_id=track.id, order=order))
        db.add(program)
        db.commit()
        db.refresh(program)
        return program

    return factory


@pytest.fixture
def headers_for():
    return auth_headers
