"""
Scheduling Provider contract
Value types and the protocol the availability and booking flows depend on.
SquareClient is the production implementation; tests substitute a fake.
"""

from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class AvailabilityRecord:
    start_at: str  # ISO 8601 instant as returned by the provider
    team_member_id: Optional[str] = None


@dataclass(frozen=True)
class BookingReceipt:
    booking_id: str
    status: Optional[str] = None
    version: Optional[int] = None


@dataclass(frozen=True)
class ChargeResult:
    payment_id: str
    status: str
    amount_cents: int
    currency: str


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    status: str
    amount_cents: int


class SchedulingProvider(Protocol):
    async def search_availability(
        self,
        location_id: str,
        service_variation_id: str,
        date: str,
        team_member_id: Optional[str] = None,
    ) -> list[AvailabilityRecord]: ...

    async def create_booking(
        self,
        location_id: str,
        service_variation_id: str,
        start_at: str,
        team_member_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        service_variation_version: Optional[int] = None,
    ) -> BookingReceipt: ...

    async def cancel_booking(self, booking_id: str) -> BookingReceipt: ...

    async def charge_card(
        self,
        nonce: str,
        amount_cents: int,
        currency: str,
        customer_id: Optional[str] = None,
        location_id: Optional[str] = None,
    ) -> ChargeResult: ...

    async def refund_payment(
        self,
        payment_id: str,
        amount_cents: Optional[int] = None,
        currency: str = "USD",
    ) -> RefundResult: ...

    async def find_or_create_customer(
        self,
        first_name: str,
        last_name: str,
        phone: str,
        email: Optional[str] = None,
    ) -> str: ...
