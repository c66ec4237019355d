"""Shared fixtures for barberbook tests.

- Every test gets its own SQLite database file (aiosqlite) with all tables.
- Square is replaced by FakeProvider, which records calls and can be told
  to fail any operation.
- HTTP tests go through httpx.AsyncClient with ASGITransport; the lifespan
  does not run, so app.state is filled in by the ``client`` fixture.
- AnyIO drives async tests (@pytest.mark.anyio) on asyncio.
"""

import os

# Must be set before barberbook.config is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SQUARE_ACCESS_TOKEN"] = "test-token"
os.environ["BOOKING_VERIFY_SLOT"] = "false"

from types import SimpleNamespace
from typing import Any, Optional

import httpx
import pytest
from httpx import ASGITransport

from barberbook import models  # noqa: F401
from barberbook.database import Base, build_engine, build_session_factory
from barberbook.domain.store.repository import EntityStore
from barberbook.models import Barber, Service, Shop
from barberbook.services.scheduling_provider import (
    AvailabilityRecord,
    BookingReceipt,
    ChargeResult,
    RefundResult,
)


class FakeProvider:
    """In-process SchedulingProvider.

    ``fail["charge_card"] = exc`` makes that operation raise ``exc``.
    """

    def __init__(self):
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.availability: list[AvailabilityRecord] = []
        self.fail: dict[str, BaseException] = {}
        self.square_customer_id = "sq-cust-1"
        self.charge_status = "COMPLETED"
        self.refund_status = "PENDING"
        self._seq = 0

    def _call(self, name: str, **kwargs: Any) -> int:
        self.calls.append((name, kwargs))
        if name in self.fail:
            raise self.fail[name]
        self._seq += 1
        return self._seq

    def calls_to(self, name: str) -> list[dict[str, Any]]:
        return [kwargs for called, kwargs in self.calls if called == name]

    async def search_availability(self, location_id, service_variation_id, date, team_member_id=None):
        self._call(
            "search_availability",
            location_id=location_id,
            service_variation_id=service_variation_id,
            date=date,
            team_member_id=team_member_id,
        )
        return list(self.availability)

    async def create_booking(
        self,
        location_id,
        service_variation_id,
        start_at,
        team_member_id=None,
        customer_id=None,
        service_variation_version=None,
    ):
        n = self._call(
            "create_booking",
            location_id=location_id,
            service_variation_id=service_variation_id,
            start_at=start_at,
            team_member_id=team_member_id,
            customer_id=customer_id,
            service_variation_version=service_variation_version,
        )
        return BookingReceipt(booking_id=f"sq-booking-{n}", status="ACCEPTED", version=0)

    async def cancel_booking(self, booking_id):
        self._call("cancel_booking", booking_id=booking_id)
        return BookingReceipt(booking_id=booking_id, status="CANCELLED_BY_SELLER", version=1)

    async def charge_card(self, nonce, amount_cents, currency, customer_id=None, location_id=None):
        n = self._call(
            "charge_card",
            nonce=nonce,
            amount_cents=amount_cents,
            currency=currency,
            customer_id=customer_id,
            location_id=location_id,
        )
        return ChargeResult(
            payment_id=f"sq-pay-{n}", status=self.charge_status, amount_cents=amount_cents, currency=currency
        )

    async def refund_payment(self, payment_id, amount_cents=None, currency="USD"):
        n = self._call("refund_payment", payment_id=payment_id, amount_cents=amount_cents, currency=currency)
        return RefundResult(refund_id=f"sq-refund-{n}", status=self.refund_status, amount_cents=amount_cents)

    async def find_or_create_customer(self, first_name, last_name, phone, email=None):
        self._call(
            "find_or_create_customer", first_name=first_name, last_name=last_name, phone=phone, email=email
        )
        return self.square_customer_id


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Force pytest-anyio to use asyncio event loop."""
    return "asyncio"


@pytest.fixture
async def store(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'barberbook-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield EntityStore(build_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


async def seed_shop(
    store: EntityStore,
    *,
    location_id: Optional[str] = "loc-1",
    item_id: Optional[str] = "svc-1",
    duration_minutes: int = 30,
    price_cents: int = 5000,
    team_member_id: Optional[str] = "tm-1",
) -> SimpleNamespace:
    shop = await store.create(Shop, name="Fade Factory", owner_id="owner-1", square_location_id=location_id)
    service = await store.create(
        Service,
        shop_id=shop.id,
        name="Skin Fade",
        duration_minutes=duration_minutes,
        price_cents=price_cents,
        square_item_id=item_id,
        square_item_version=3,
    )
    barber = await store.create(
        Barber, shop_id=shop.id, display_name="Marcus", square_team_member_id=team_member_id
    )
    return SimpleNamespace(shop=shop, service=service, barber=barber)


@pytest.fixture
async def shop_data(store) -> SimpleNamespace:
    return await seed_shop(store)


@pytest.fixture
async def client(store, provider):
    from barberbook.main import app

    app.state.store = store
    app.state.provider = provider
    async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
def make_shop(store):
    """Seed another shop with its service and barber; keyword overrides as in seed_shop"""

    async def _make(**overrides: Any) -> SimpleNamespace:
        return await seed_shop(store, **overrides)

    return _make
