"""Availability service - Resolve bookable slots through Square"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from ...errors import InvalidRequestError, NotFoundError, UpstreamError
from ...models import Barber, Service, Shop
from ...services.scheduling_provider import SchedulingProvider
from ..store.repository import EntityStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityQuery:
    shop_id: str
    service_id: str
    date: str  # YYYY-MM-DD, passed to Square unchanged
    barber_id: Optional[str] = None


@dataclass(frozen=True)
class AvailabilitySlot:
    start_at: datetime
    end_at: datetime
    barber_id: Optional[str] = None


@dataclass(frozen=True)
class BookingTargets:
    shop: Shop
    service: Service
    barber: Optional[Barber] = None


def parse_instant(value: str) -> datetime:
    """Parse an ISO 8601 instant from Square ("Z" suffix included)"""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_instant(value: datetime) -> str:
    """Format an aware datetime the way Square expects it (UTC, "Z" suffix)"""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


async def load_booking_targets(
    store: EntityStore, shop_id: str, service_id: str, barber_id: Optional[str] = None
) -> BookingTargets:
    """
    Load and cross-check shop, service and optional barber.

    Raises NotFoundError for missing entities and InvalidRequestError when
    they belong to different shops or Square is not configured. Nothing here
    talks to Square.
    """
    shop, service, barber = await asyncio.gather(
        store.find_by_id(Shop, shop_id),
        store.find_by_id(Service, service_id),
        store.find_by_id(Barber, barber_id),
    )

    if not shop:
        raise NotFoundError(f"Shop with ID {shop_id} not found")
    if not service:
        raise NotFoundError(f"Service with ID {service_id} not found")
    if barber_id and not barber:
        raise NotFoundError(f"Barber with ID {barber_id} not found")

    if service.shop_id != shop_id:
        raise InvalidRequestError("Service does not belong to the specified shop")
    if barber and barber.shop_id != shop_id:
        raise InvalidRequestError("Barber does not belong to the specified shop")

    if not service.square_item_id:
        raise InvalidRequestError("Service is not linked to Square catalog")
    if not shop.square_location_id:
        raise InvalidRequestError("Shop is not linked to Square location")

    return BookingTargets(shop=shop, service=service, barber=barber)


class AvailabilityResolver:
    """Service layer for availability lookups"""

    def __init__(self, store: EntityStore, provider: SchedulingProvider):
        self.store = store
        self.provider = provider

    async def get_availability(self, query: AvailabilityQuery) -> list[AvailabilitySlot]:
        logger.info(f"Fetching availability for service {query.service_id} on {query.date}")

        targets = await load_booking_targets(
            self.store, query.shop_id, query.service_id, query.barber_id
        )
        shop, service, barber = targets.shop, targets.service, targets.barber

        try:
            records = await self.provider.search_availability(
                location_id=shop.square_location_id,
                service_variation_id=service.square_item_id,
                date=query.date,
                team_member_id=barber.square_team_member_id if barber else None,
            )
            starts = [(parse_instant(r.start_at), r.team_member_id) for r in records]
        except Exception as e:
            logger.error(f"❌ Availability search failed for shop {shop.id}: {e}")
            raise UpstreamError(detail=str(e)) from e

        barber_ids = await self.store.find_barbers_by_team_member_ids(
            shop.id, {team_member_id for _, team_member_id in starts}
        )

        duration = timedelta(minutes=service.duration_minutes)
        slots = sorted(
            (
                AvailabilitySlot(
                    start_at=start_at,
                    end_at=start_at + duration,
                    barber_id=barber_ids.get(team_member_id) if team_member_id else None,
                )
                for start_at, team_member_id in starts
            ),
            key=lambda slot: slot.start_at,
        )

        logger.info(f"Found {len(slots)} availability slots")
        return slots
