import os

os.environ.setdefault("SPEND_PASSCODE_HASH_ROUNDS", "4")
os.environ.setdefault("SPEND_EXPIRY_SWEEP_INTERVAL_SECONDS", "0")

from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from ..core.config import Settings
from ..core.db import create_engine_for_url, get_engine, get_session, init_db, set_engine
from ..core.dependencies import get_broker
from ..core.security import hash_secret
from ..main import app
from ..models import WalletModel
from ..services import LinkEventBroker, LinkLifecycleEngine

TEST_ROUNDS = 4
OWNER_PIN = "4321"


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, passcode_hash_rounds=TEST_ROUNDS)


@pytest.fixture
def db_engine(tmp_path):
    engine = create_engine_for_url(f"sqlite:///{tmp_path / 'test.db'}")
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(db_engine):
    with Session(db_engine) as session:
        yield session


@pytest.fixture
def broker() -> LinkEventBroker:
    return LinkEventBroker(queue_size=10, delivery_attempts=2, retry_delay=0)


@pytest.fixture
def engine(session, broker, settings) -> LinkLifecycleEngine:
    return LinkLifecycleEngine(session, broker=broker, settings=settings)


@pytest.fixture
def make_wallet(session):
    def _make_wallet(balance: int = 0, pin: str | None = OWNER_PIN, owner_name: str = "Chinedu") -> UUID:
        wallet = WalletModel(
            owner_name=owner_name,
            balance=balance,
            pin_hash=hash_secret(pin, TEST_ROUNDS) if pin else None,
        )
        session.add(wallet)
        session.commit()
        return wallet.id

    return _make_wallet


def balance_of(session: Session, wallet_id: UUID) -> int:
    session.expire_all()
    return session.get(WalletModel, wallet_id).balance


@pytest.fixture
def client(db_engine) -> TestClient:
    original_engine = get_engine()
    set_engine(db_engine)
    test_broker = LinkEventBroker(queue_size=10, delivery_attempts=2, retry_delay=0)

    def _get_session_override():
        with Session(db_engine) as session:
            yield session

    app.dependency_overrides[get_session] = _get_session_override
    app.dependency_overrides[get_broker] = lambda: test_broker
    init_db()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    set_engine(original_engine)
