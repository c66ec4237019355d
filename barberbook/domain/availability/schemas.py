"""Availability domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class AvailabilitySlotResponse(BaseModel):
    """Schema for one bookable slot"""

    startAt: datetime
    endAt: datetime
    barberId: Optional[str] = None
