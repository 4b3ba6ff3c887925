import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("PACING_ENABLED", "0")

import random
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from zapcart.core.database import Base
import zapcart.models  # noqa: F401
from zapcart.models.product import Product
from zapcart.models.tenant import Tenant
from zapcart.models.whatsapp_group import WhatsAppGroup
from zapcart.models.whatsapp_integration import WhatsAppIntegration
from zapcart.services.pacing import OutboundPacer
from zapcart.services.whatsapp_outbound import OutboundSender
from zapcart.whatsapp.mock_provider import MockWhatsAppProvider
from zapcart.whatsapp.service import WhatsAppService
from tests.fixtures_data import GROUP_CHAT_ID, GROUP_NAME, INSTANCE_ID


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self, clock: FakeClock | None = None) -> None:
        self.calls: list[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def tenant(db):
    tenant = Tenant(slug="bazar-da-ana", name="Bazar da Ana", is_active=True)
    db.add(tenant)
    db.commit()
    db.refresh(tenant)

    db.add(
        WhatsAppIntegration(
            tenant_id=tenant.id,
            provider="mock",
            instance_id=INSTANCE_ID,
            token="tok-123456",
            is_active=True,
        )
    )
    db.add(WhatsAppGroup(tenant_id=tenant.id, group_name=GROUP_NAME, chat_id=GROUP_CHAT_ID, is_active=True))
    db.commit()
    return tenant


@pytest.fixture
def make_product(db):
    def _make(tenant_id: int, code: str, *, stock: int = 5, price: str = "59.90", sale_type: str = "BAZAR", **extra):
        product = Product(
            tenant_id=tenant_id,
            code=code,
            name=extra.pop("name", f"Produto {code.strip()}"),
            price=Decimal(price),
            stock=stock,
            is_active=extra.pop("is_active", True),
            sale_type=sale_type,
            **extra,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper(clock):
    return RecordingSleep(clock)


@pytest.fixture
def mock_provider():
    return MockWhatsAppProvider()


@pytest.fixture
def pacer(clock, sleeper):
    return OutboundPacer(rng=random.Random(7), sleep=sleeper, clock=clock, enabled=True)


@pytest.fixture
def sender(pacer, mock_provider):
    return OutboundSender(
        pacer=pacer,
        whatsapp=WhatsAppService(zapi_provider=mock_provider, mock_provider=mock_provider),
    )
