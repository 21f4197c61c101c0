import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret"

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from auth import create_access_token
from database import Base, build_engine, get_db
from main import app
from models import User, Slot, SwapRequest, SlotStatus, SwapRequestStatus
from core.connection_registry import registry

BASE_TIME = datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    test_engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def clear_registry():
    registry._connections.clear()
    yield
    registry._connections.clear()


@pytest.fixture
def make_user(db):
    def _make_user(name="", email=None):
        count = db.query(User).count()
        user = User(name=name, email=email or f"user{count + 1}@test.com")
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make_user


@pytest.fixture
def make_slot(db):
    def _make_slot(owner, title="Slot", status=SlotStatus.SWAPPABLE, offset_hours=0):
        start = BASE_TIME + timedelta(hours=offset_hours)
        slot = Slot(
            title=title,
            start_time=start,
            end_time=start + timedelta(hours=1),
            status=status,
            user_id=owner.id
        )
        db.add(slot)
        db.commit()
        db.refresh(slot)
        return slot
    return _make_slot


@pytest.fixture
def auth_headers():
    def _auth_headers(user):
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}
    return _auth_headers


@pytest.fixture
def reload(db):
    """其他 session 寫入後，重新讀取最新狀態"""
    def _reload(model, pk):
        db.expire_all()
        return db.get(model, pk)
    return _reload


@pytest.fixture
def check_pending_invariant(db):
    """status == SWAP_PENDING <=> 被 PENDING 請求引用"""
    def _check():
        db.expire_all()
        referenced = set()
        for swap_request in db.query(SwapRequest).filter(
            SwapRequest.status == SwapRequestStatus.PENDING
        ):
            referenced.add(swap_request.requester_slot_id)
            referenced.add(swap_request.receiver_slot_id)

        for slot in db.query(Slot).all():
            assert (slot.status == SlotStatus.SWAP_PENDING) == (slot.id in referenced), (
                f"slot {slot.id} status={slot.status} referenced={slot.id in referenced}"
            )

        for swap_request in db.query(SwapRequest).filter(
            SwapRequest.status != SwapRequestStatus.PENDING
        ):
            for slot_id in (swap_request.requester_slot_id, swap_request.receiver_slot_id):
                slot = db.get(Slot, slot_id)
                if slot is not None:
                    assert slot.status != SlotStatus.SWAP_PENDING
    return _check
