"""Availability router - FastAPI endpoints for slot lookups"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...dependencies import get_entity_store, get_scheduling_provider
from ...errors import InvalidRequestError
from ...services.scheduling_provider import SchedulingProvider
from ...shared.validators import validate_calendar_date
from ..store.repository import EntityStore
from .schemas import AvailabilitySlotResponse
from .service import AvailabilityQuery, AvailabilityResolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shops", tags=["Availability"])


def get_availability_resolver(
    store: EntityStore = Depends(get_entity_store),
    provider: SchedulingProvider = Depends(get_scheduling_provider),
) -> AvailabilityResolver:
    """Dependency injection for AvailabilityResolver"""
    return AvailabilityResolver(store, provider)


@router.get("/{shop_id}/availability", response_model=list[AvailabilitySlotResponse])
async def get_availability(
    shop_id: str,
    serviceId: str = Query(...),
    date: str = Query(..., description="Calendar day, YYYY-MM-DD"),
    barberId: Optional[str] = Query(None),
    resolver: AvailabilityResolver = Depends(get_availability_resolver),
):
    """Get bookable slots for a service on one day"""
    try:
        validate_calendar_date(date)
    except ValueError as e:
        raise InvalidRequestError(str(e)) from e

    slots = await resolver.get_availability(
        AvailabilityQuery(shop_id=shop_id, service_id=serviceId, date=date, barber_id=barberId)
    )
    return [
        AvailabilitySlotResponse(startAt=s.start_at, endAt=s.end_at, barberId=s.barber_id)
        for s in slots
    ]
