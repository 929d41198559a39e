import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["JWT_ALG"] = "HS256"

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.api.deps import get_db, get_payment_gateway
from src.infrastructure.db.models import Base, Game
from src.infrastructure.payments.razorpay_gateway import RazorpayGateway
from src.infrastructure.repositories.game_repository import GameRepository
from src.main import app


engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class FakeGateway(RazorpayGateway):
    """Stands in for Razorpay: deterministic order ids, every webhook trusted."""

    def __init__(self):
        super().__init__(key_id="rzp_test_key", key_secret="secret")
        self.orders = []

    def create_order(self, amount_minor: int, currency: str, receipt: str) -> str:
        self.orders.append((amount_minor, currency, receipt))
        return f"order_{receipt}"

    def verify_webhook(self, body: str, signature: str | None) -> bool:
        return True


@pytest.fixture
def tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(tables):
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(tables, gateway):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_header():
    def make(user_id: int, role: str = "customer") -> dict:
        token = jwt.encode(
            {"sub": str(user_id), "role": role},
            "test-secret",
            algorithm="HS256",
        )
        return {"Authorization": f"Bearer {token}"}

    return make


@pytest.fixture
def make_game(db):
    def make(
        stock: int = 1,
        price: str = "10.00",
        deposit: str = "5.00",
        partner_id: int = 7,
        is_active: bool = True,
    ) -> Game:
        game = GameRepository(db).create_game(
            partner_id=partner_id,
            name="Elden Ring",
            platform="PlayStation 5",
            stock=stock,
            rental_price_per_day=Decimal(price),
            security_deposit=Decimal(deposit),
            is_active=is_active,
        )
        db.commit()
        return game

    return make


@pytest.fixture
def file_sessions(tmp_path):
    """Session factory over a SQLite file so separate sessions use separate connections."""
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'rental.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=file_engine)
    yield sessionmaker(bind=file_engine, autoflush=False, autocommit=False)
    file_engine.dispose()
