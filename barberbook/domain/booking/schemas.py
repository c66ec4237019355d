"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import normalize_phone, require_timezone, validate_email


class CustomerInfo(BaseModel):
    """Customer details supplied with a booking"""

    firstName: str = Field(..., min_length=1, max_length=255)
    lastName: str = Field(..., min_length=1, max_length=255)
    phone: str
    email: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return normalize_phone(v)

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v):
        return validate_email(v)


class BookingCreate(BaseModel):
    """Schema for a booking-with-payment request"""

    shopId: str
    serviceId: str
    barberId: Optional[str] = None
    startAt: datetime
    customer: CustomerInfo
    paymentNonce: str = Field(..., min_length=1)
    # FULL or DEPOSIT; checked by the orchestrator
    paymentMode: str

    @field_validator("startAt")
    @classmethod
    def validate_start_at(cls, v):
        return require_timezone(v)


class ServiceSummary(BaseModel):
    id: str
    name: str
    durationMinutes: int
    priceCents: int


class BarberSummary(BaseModel):
    id: str
    displayName: str


class CustomerSummary(BaseModel):
    id: str
    firstName: str
    lastName: str
    phone: str
    email: Optional[str] = None


class AppointmentResponse(BaseModel):
    """Schema for a booked appointment"""

    id: str
    shopId: str
    startAt: datetime
    endAt: datetime
    status: str
    externalBookingRef: Optional[str] = None
    service: ServiceSummary
    customer: CustomerSummary
    barber: Optional[BarberSummary] = None


class PaymentResponse(BaseModel):
    id: str
    amountCents: int
    currency: str
    status: str
    externalPaymentRef: Optional[str] = None


class BookingResponse(BaseModel):
    appointment: AppointmentResponse
    payment: PaymentResponse
    externalBookingRef: str


class CancelRequest(BaseModel):
    refund: bool = True


class CancelledAppointment(BaseModel):
    id: str
    status: str
    startAt: datetime
    endAt: datetime


class RefundSummary(BaseModel):
    refundId: str
    status: str
    amountCents: int


class CancellationResponse(BaseModel):
    appointment: CancelledAppointment
    refunds: list[RefundSummary] = []
