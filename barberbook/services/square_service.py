"""
Square API Client
Bookings, Payments, Refunds and Customers calls used by the availability and
booking flows. Constructed once at startup and injected where needed.
"""

import logging
import uuid
from typing import Any, Optional

import httpx

from ..config import (
    SQUARE_ACCESS_TOKEN,
    SQUARE_API_URL,
    SQUARE_API_VERSION,
    SQUARE_MAX_AVAILABILITY_PAGES,
    SQUARE_TIMEOUT_SECONDS,
)
from .scheduling_provider import AvailabilityRecord, BookingReceipt, ChargeResult, RefundResult

logger = logging.getLogger(__name__)


class SquareAPIError(Exception):
    """Non-2xx response from Square, carrying Square's ``errors`` array"""

    def __init__(self, status_code: int, errors: Optional[list[dict[str, Any]]] = None, operation: str = ""):
        self.status_code = status_code
        self.errors = errors or []
        self.operation = operation
        summary = ", ".join(e.get("detail") or e.get("code") or "unknown" for e in self.errors)
        super().__init__(f"Square {operation} failed ({status_code}): {summary or 'no detail'}")


def _idempotency_key() -> str:
    return str(uuid.uuid4())


class SquareClient:
    def __init__(
        self,
        access_token: Optional[str] = SQUARE_ACCESS_TOKEN,
        base_url: str = SQUARE_API_URL,
        api_version: str = SQUARE_API_VERSION,
        timeout: float = SQUARE_TIMEOUT_SECONDS,
        max_availability_pages: int = SQUARE_MAX_AVAILABILITY_PAGES,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not access_token:
            logger.warning("⚠️ SQUARE_ACCESS_TOKEN is not configured - Square calls will be rejected")
        self.base_url = base_url.rstrip("/")
        self.max_availability_pages = max(1, max_availability_pages)
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "Square-Version": api_version,
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, operation: str, json: Optional[dict] = None) -> dict:
        response = await self._http.request(
            method, f"{self.base_url}{path}", json=json, headers=self._headers
        )

        if response.status_code not in [200, 201]:
            try:
                errors = response.json().get("errors", [])
            except ValueError:
                errors = [{"code": "UNPARSEABLE_RESPONSE", "detail": response.text[:500]}]
            logger.error(f"Square {operation} failed ({response.status_code}): {errors}")
            raise SquareAPIError(response.status_code, errors, operation)

        return response.json()

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    async def search_availability(
        self,
        location_id: str,
        service_variation_id: str,
        date: str,
        team_member_id: Optional[str] = None,
    ) -> list[AvailabilityRecord]:
        """
        Search bookable start times for one calendar day (YYYY-MM-DD, UTC day range).

        Follows the cursor until Square stops returning one or
        ``max_availability_pages`` is reached.
        """
        segment_filter: dict[str, Any] = {"service_variation_id": service_variation_id}
        if team_member_id:
            segment_filter["team_member_id_filter"] = {"any": [team_member_id]}

        search_request: dict[str, Any] = {
            "query": {
                "filter": {
                    "location_id": location_id,
                    "segment_filters": [segment_filter],
                    "start_at_range": {
                        "start_at": f"{date}T00:00:00.000Z",
                        "end_at": f"{date}T23:59:59.999Z",
                    },
                }
            }
        }

        records: list[AvailabilityRecord] = []
        cursor = None
        for page in range(1, self.max_availability_pages + 1):
            body = {**search_request, "cursor": cursor} if cursor else search_request
            data = await self._request("POST", "/bookings/availability/search", "availability search", body)

            availabilities = data.get("availabilities") or []
            for availability in availabilities:
                segments = availability.get("appointment_segments") or [{}]
                records.append(
                    AvailabilityRecord(
                        start_at=availability["start_at"],
                        team_member_id=segments[0].get("team_member_id"),
                    )
                )

            cursor = data.get("cursor")
            if not cursor or not availabilities:
                break
        else:
            logger.warning(f"⚠️ Availability search stopped after {page} pages for {service_variation_id}")

        logger.info(f"📅 Square returned {len(records)} availability slots for {date}")
        return records

    async def create_booking(
        self,
        location_id: str,
        service_variation_id: str,
        start_at: str,
        team_member_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        service_variation_version: Optional[int] = None,
    ) -> BookingReceipt:
        segment: dict[str, Any] = {"service_variation_id": service_variation_id}
        if service_variation_version is not None:
            segment["service_variation_version"] = service_variation_version
        if team_member_id:
            segment["team_member_id"] = team_member_id

        booking: dict[str, Any] = {
            "location_id": location_id,
            "start_at": start_at,
            "appointment_segments": [segment],
        }
        if customer_id:
            booking["customer_id"] = customer_id

        data = await self._request(
            "POST",
            "/bookings",
            "create booking",
            {"idempotency_key": _idempotency_key(), "booking": booking},
        )

        created = data.get("booking") or {}
        if not created.get("id"):
            raise SquareAPIError(
                502, [{"code": "INVALID_RESPONSE", "detail": "No booking id returned"}], "create booking"
            )

        logger.info(f"✅ Created Square booking: {created['id']}")
        return BookingReceipt(
            booking_id=created["id"], status=created.get("status"), version=created.get("version")
        )

    async def cancel_booking(self, booking_id: str) -> BookingReceipt:
        data = await self._request(
            "POST",
            f"/bookings/{booking_id}/cancel",
            "cancel booking",
            {"idempotency_key": _idempotency_key()},
        )
        cancelled = data.get("booking") or {}
        logger.info(f"✅ Cancelled Square booking: {booking_id}")
        return BookingReceipt(
            booking_id=cancelled.get("id", booking_id),
            status=cancelled.get("status"),
            version=cancelled.get("version"),
        )

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def charge_card(
        self,
        nonce: str,
        amount_cents: int,
        currency: str,
        customer_id: Optional[str] = None,
        location_id: Optional[str] = None,
    ) -> ChargeResult:
        """Create and complete a card payment from a Web Payments SDK nonce"""
        payment_data: dict[str, Any] = {
            "idempotency_key": _idempotency_key(),
            "source_id": nonce,
            "amount_money": {"amount": amount_cents, "currency": currency},
            "autocomplete": True,
        }
        if customer_id:
            payment_data["customer_id"] = customer_id
        if location_id:
            payment_data["location_id"] = location_id

        data = await self._request("POST", "/payments", "create payment", payment_data)

        payment = data.get("payment") or {}
        if not payment.get("id"):
            raise SquareAPIError(
                502, [{"code": "INVALID_RESPONSE", "detail": "No payment id returned"}], "create payment"
            )

        logger.info(f"💳 Square payment {payment['id']} status={payment.get('status')}")
        return ChargeResult(
            payment_id=payment["id"],
            status=payment.get("status", "UNKNOWN"),
            amount_cents=payment.get("amount_money", {}).get("amount", amount_cents),
            currency=payment.get("amount_money", {}).get("currency", currency),
        )

    async def refund_payment(
        self,
        payment_id: str,
        amount_cents: Optional[int] = None,
        currency: str = "USD",
    ) -> RefundResult:
        """Refund a payment; without ``amount_cents`` the full captured amount is refunded"""
        if amount_cents is None:
            data = await self._request("GET", f"/payments/{payment_id}", "get payment")
            money = (data.get("payment") or {}).get("amount_money") or {}
            amount_cents = money.get("amount", 0)
            currency = money.get("currency", currency)

        data = await self._request(
            "POST",
            "/refunds",
            "refund payment",
            {
                "idempotency_key": _idempotency_key(),
                "payment_id": payment_id,
                "amount_money": {"amount": amount_cents, "currency": currency},
            },
        )

        refund = data.get("refund") or {}
        logger.info(f"↩️ Square refund {refund.get('id')} for payment {payment_id}: {refund.get('status')}")
        return RefundResult(
            refund_id=refund.get("id", ""),
            status=refund.get("status", "PENDING"),
            amount_cents=amount_cents,
        )

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def find_or_create_customer(
        self,
        first_name: str,
        last_name: str,
        phone: str,
        email: Optional[str] = None,
    ) -> str:
        """Return the Square customer id for this phone number, creating one if needed"""
        search = await self._request(
            "POST",
            "/customers/search",
            "search customers",
            {"query": {"filter": {"phone_number": {"exact": phone}}}, "limit": 1},
        )
        customers = search.get("customers") or []
        if customers:
            logger.info(f"Found existing Square customer: {customers[0]['id']}")
            return customers[0]["id"]

        customer_data = {
            "idempotency_key": _idempotency_key(),
            "given_name": first_name,
            "family_name": last_name,
            "phone_number": phone,
            "email_address": email,
        }
        # Remove None values
        customer_data = {k: v for k, v in customer_data.items() if v is not None}

        data = await self._request("POST", "/customers", "create customer", customer_data)
        customer_id = (data.get("customer") or {}).get("id")
        if not customer_id:
            raise SquareAPIError(
                502, [{"code": "INVALID_RESPONSE", "detail": "No customer id returned"}], "create customer"
            )

        logger.info(f"✅ Created new Square customer: {customer_id}")
        return customer_id
