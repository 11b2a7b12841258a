"""Shared pytest fixtures: in-memory database, service apps, and fakes."""

from dataclasses import dataclass, field
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from services.payment_service.auth import AdminAuthenticator
from services.payment_service.stripe_gateway import PaymentGatewayError
from shared.auth import TokenVerifier
from shared.database import Base, get_db, init_db
from shared.models import DiscountCode, Product, UserProfile

ADMIN_ID = "00000000-0000-0000-0000-00000000a001"
CUSTOMER_ID = "00000000-0000-0000-0000-00000000c001"
TOKENS = {"admin-token": ADMIN_ID, "customer-token": CUSTOMER_ID}


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def products(db) -> Dict[str, Product]:
    whey = Product(name="Whey Protein", slug="whey-protein", price=Decimal("9.99"), stock_quantity=50)
    oats = Product(name="Rolled Oats", slug="rolled-oats", price=Decimal("4.50"), stock_quantity=80)
    greens = Product(
        name="Greens Subscription",
        slug="greens-subscription",
        price=Decimal("29.00"),
        is_subscription=True,
        subscription_interval="month",
        subscription_interval_count=1,
    )
    db.add_all([whey, oats, greens])
    db.commit()
    return {"whey": whey, "oats": oats, "greens": greens}


@pytest.fixture()
def profiles(db) -> Dict[str, UserProfile]:
    admin = UserProfile(id=ADMIN_ID, email="admin@example.com", full_name="Ada Admin", role="admin")
    customer = UserProfile(id=CUSTOMER_ID, email="casey@example.com", full_name="Casey Customer")
    db.add_all([admin, customer])
    db.commit()
    return {"admin": admin, "customer": customer}


@pytest.fixture()
def discounts(db) -> Dict[str, DiscountCode]:
    codes = {
        "percent": DiscountCode(code="WELCOME10", discount_type="percentage", discount_value=Decimal("10")),
        "fixed": DiscountCode(code="FIVEOFF", discount_type="fixed_amount", discount_value=Decimal("5.00")),
        "huge": DiscountCode(code="HUGE", discount_type="fixed_amount", discount_value=Decimal("500.00")),
        "inactive": DiscountCode(
            code="OLDCODE", discount_type="percentage", discount_value=Decimal("20"), is_active=False
        ),
        "exhausted": DiscountCode(
            code="LIMITED",
            discount_type="percentage",
            discount_value=Decimal("15"),
            max_redemptions=5,
            redemptions_count=5,
        ),
    }
    db.add_all(codes.values())
    db.commit()
    return codes


@dataclass
class FakeRedisClient:
    data: Dict[str, str] = field(default_factory=dict)

    def get(self, key: str):
        return self.data.get(key)

    def set(self, key: str, value: str) -> bool:
        self.data[key] = value
        return True

    def delete(self, key: str) -> int:
        existed = 1 if key in self.data else 0
        self.data.pop(key, None)
        return existed


@dataclass
class FakeProducer:
    published: List[tuple] = field(default_factory=list)
    keys: List[Optional[str]] = field(default_factory=list)
    fail: bool = False

    def publish(self, topic: str, event, key: Optional[str] = None) -> None:
        if self.fail:
            raise RuntimeError("broker unavailable")
        self.published.append((topic, event))
        self.keys.append(key)

    def topics(self) -> List[str]:
        return [topic for topic, _ in self.published]


class FakeStripeGateway:
    """Records calls and hands back Stripe-shaped objects."""

    CURRENCY = "usd"

    def __init__(self):
        self.calls: List[tuple] = []
        self.intents: Dict[str, SimpleNamespace] = {}
        self.prices: Dict[str, SimpleNamespace] = {}
        self.confirm_status = "succeeded"
        self.confirm_error: Optional[PaymentGatewayError] = None
        self.fail_with: Optional[Exception] = None
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_{self._counter}"

    def _record(self, _call: str, **params: Any) -> None:
        self.calls.append((_call, params))
        if self.fail_with is not None:
            raise self.fail_with

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def create_customer(self, user_id: str, name: Optional[str] = None) -> str:
        self._record("create_customer", user_id=user_id, name=name)
        return self._next_id("cus")

    def create_payment_intent(self, amount: int, metadata: Dict[str, str], customer_id: Optional[str] = None):
        self._record("create_payment_intent", amount=amount, metadata=metadata, customer_id=customer_id)
        intent_id = self._next_id("pi")
        intent = SimpleNamespace(
            id=intent_id,
            client_secret=f"{intent_id}_secret_abc",
            amount=amount,
            status="requires_payment_method",
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        return intent

    def confirm_payment_intent(self, client_secret: str, receipt_email: str, shipping=None, payment_method=None, return_url=None):
        self._record("confirm_payment_intent", client_secret=client_secret, receipt_email=receipt_email, shipping=shipping)
        if self.confirm_error is not None:
            raise self.confirm_error
        intent = self.intents[client_secret.split("_secret_")[0]]
        intent.status = self.confirm_status
        return intent

    def create_product(self, **params):
        self._record("create_product", **params)
        return SimpleNamespace(id=self._next_id("prod"), **params)

    def update_product(self, product_id: str, **params):
        self._record("update_product", product_id=product_id, **params)
        return SimpleNamespace(id=product_id, **params)

    def create_price(self, **params):
        self._record("create_price", **params)
        price = SimpleNamespace(id=self._next_id("price"), **{"recurring": None, **params})
        self.prices[price.id] = price
        return price

    def retrieve_price(self, price_id: str):
        self._record("retrieve_price", price_id=price_id)
        return self.prices[price_id]

    def update_price(self, price_id: str, **params):
        self._record("update_price", price_id=price_id, **params)
        price = self.prices.setdefault(price_id, SimpleNamespace(id=price_id, recurring=None, unit_amount=None))
        for key, value in params.items():
            setattr(price, key, value)
        return price

    def create_coupon(self, **params):
        self._record("create_coupon", **params)
        return SimpleNamespace(id=self._next_id("coupon"), **params)


def _auth_handler(request: httpx.Request) -> httpx.Response:
    token = request.headers.get("Authorization", "").removeprefix("Bearer ")
    user_id = TOKENS.get(token)
    if user_id is None:
        return httpx.Response(401, json={"msg": "invalid JWT"})
    return httpx.Response(200, json={"id": user_id})


@pytest.fixture()
def fake_redis() -> FakeRedisClient:
    return FakeRedisClient()


@pytest.fixture()
def fake_producer() -> FakeProducer:
    return FakeProducer()


@pytest.fixture()
def fake_gateway() -> FakeStripeGateway:
    return FakeStripeGateway()


@pytest.fixture()
def auth_requests() -> List[httpx.Request]:
    return []


@pytest.fixture()
def authenticator(auth_requests) -> AdminAuthenticator:
    def handler(request: httpx.Request) -> httpx.Response:
        auth_requests.append(request)
        return _auth_handler(request)

    return AdminAuthenticator(
        "http://auth.test",
        "anon-key",
        http=httpx.Client(transport=httpx.MockTransport(handler)),
    )


@pytest.fixture()
def verifier() -> TokenVerifier:
    return TokenVerifier(
        "http://auth.test",
        "anon-key",
        http=httpx.Client(transport=httpx.MockTransport(_auth_handler)),
    )


@pytest.fixture()
def cart_client(db, fake_producer, verifier):
    from services.cart_service import main as cart_main

    def override_get_db():
        yield db

    cart_main.app.dependency_overrides[get_db] = override_get_db
    cart_main.app.dependency_overrides[cart_main.get_producer] = lambda: fake_producer
    cart_main.app.dependency_overrides[cart_main.get_verifier] = lambda: verifier
    yield TestClient(cart_main.app)
    cart_main.app.dependency_overrides.clear()


@pytest.fixture()
def payment_client(db, fake_gateway, fake_producer, authenticator):
    from services.payment_service import main as payment_main

    def override_get_db():
        yield db

    payment_main.app.dependency_overrides[get_db] = override_get_db
    payment_main.app.dependency_overrides[payment_main.get_gateway] = lambda: fake_gateway
    payment_main.app.dependency_overrides[payment_main.get_authenticator] = lambda: authenticator
    payment_main.app.dependency_overrides[payment_main.get_producer] = lambda: fake_producer
    yield TestClient(payment_main.app)
    payment_main.app.dependency_overrides.clear()
