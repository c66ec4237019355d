"""Booking router - FastAPI endpoints for bookings and cancellations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from ...dependencies import get_entity_store, get_scheduling_provider
from ...services.scheduling_provider import SchedulingProvider
from ..store.repository import EntityStore
from .schemas import (
    AppointmentResponse,
    BarberSummary,
    BookingCreate,
    BookingResponse,
    CancellationResponse,
    CancelledAppointment,
    CancelRequest,
    CustomerSummary,
    PaymentResponse,
    RefundSummary,
    ServiceSummary,
)
from .service import BookingOrchestrator, BookingRequest, BookingResult, CustomerDetails

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Bookings"])


def get_booking_orchestrator(
    store: EntityStore = Depends(get_entity_store),
    provider: SchedulingProvider = Depends(get_scheduling_provider),
) -> BookingOrchestrator:
    """Dependency injection for BookingOrchestrator"""
    return BookingOrchestrator(store, provider)


def _booking_response(result: BookingResult) -> BookingResponse:
    appointment, payment = result.appointment, result.payment
    service, customer, barber = result.service, result.customer, result.barber
    return BookingResponse(
        appointment=AppointmentResponse(
            id=appointment.id,
            shopId=appointment.shop_id,
            startAt=appointment.start_at,
            endAt=appointment.end_at,
            status=appointment.status,
            externalBookingRef=appointment.square_booking_id,
            service=ServiceSummary(
                id=service.id,
                name=service.name,
                durationMinutes=service.duration_minutes,
                priceCents=service.price_cents,
            ),
            customer=CustomerSummary(
                id=customer.id,
                firstName=customer.first_name,
                lastName=customer.last_name,
                phone=customer.phone,
                email=customer.email,
            ),
            barber=BarberSummary(id=barber.id, displayName=barber.display_name) if barber else None,
        ),
        payment=PaymentResponse(
            id=payment.id,
            amountCents=payment.amount_cents,
            currency=payment.currency,
            status=payment.status,
            externalPaymentRef=payment.square_payment_id,
        ),
        externalBookingRef=result.external_booking_ref,
    )


@router.post("/bookings", response_model=BookingResponse, status_code=201)
async def create_booking(
    data: BookingCreate,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    """Book an appointment and take payment in one step"""
    result = await orchestrator.book(
        BookingRequest(
            shop_id=data.shopId,
            service_id=data.serviceId,
            barber_id=data.barberId,
            start_at=data.startAt,
            customer=CustomerDetails(
                first_name=data.customer.firstName,
                last_name=data.customer.lastName,
                phone=data.customer.phone,
                email=data.customer.email,
            ),
            payment_nonce=data.paymentNonce,
            payment_mode=data.paymentMode,
        )
    )
    return _booking_response(result)


@router.post("/appointments/{appointment_id}/cancel", response_model=CancellationResponse)
async def cancel_appointment(
    appointment_id: str,
    data: Optional[CancelRequest] = None,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    """Cancel an appointment, refunding captured payments unless refund is false"""
    result = await orchestrator.cancel(appointment_id, refund=data.refund if data else True)
    appointment = result.appointment
    return CancellationResponse(
        appointment=CancelledAppointment(
            id=appointment.id,
            status=appointment.status,
            startAt=appointment.start_at,
            endAt=appointment.end_at,
        ),
        refunds=[
            RefundSummary(refundId=r.refund_id, status=r.status, amountCents=r.amount_cents)
            for r in result.refunds
        ],
    )
