"""Booking service - Booking-with-payment saga and cancellations"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from ...config import BOOKING_CURRENCY, BOOKING_VERIFY_SLOT
from ...errors import (
    BookingConflictError,
    CompensationFailedError,
    ErrorKind,
    InvalidRequestError,
    NotFoundError,
    PaymentDeclinedError,
    error_for_kind,
)
from ...models import (
    Appointment,
    AppointmentStatus,
    Barber,
    Customer,
    PaymentRecord,
    PaymentStatus,
    Service,
    Shop,
)
from ...services.scheduling_provider import BookingReceipt, ChargeResult, RefundResult, SchedulingProvider
from ...services.square_errors import classify_square_error
from ...shared.validators import normalize_phone
from ..availability.service import format_instant, load_booking_targets, parse_instant
from ..store.repository import EntityStore
from .policy import DepositPolicy, percentage_deposit
from .saga import BookingState, Saga, SagaOutcome, SagaStep

logger = logging.getLogger(__name__)

# Square payment statuses that mean the card was not charged
FAILED_PAYMENT_STATUSES = {"FAILED", "CANCELED"}

# Square refund statuses that mean the money never went back to the card
FAILED_REFUND_STATUSES = {"REJECTED", "FAILED"}

# Payment record status for each successful Square payment status
PAYMENT_STATUS_BY_SQUARE = {
    "APPROVED": PaymentStatus.AUTHORIZED,
    "COMPLETED": PaymentStatus.CAPTURED,
}


class PaymentMode(str, Enum):
    FULL = "FULL"
    DEPOSIT = "DEPOSIT"


@dataclass(frozen=True)
class CustomerDetails:
    first_name: str
    last_name: str
    phone: str
    email: Optional[str] = None


@dataclass(frozen=True)
class BookingRequest:
    shop_id: str
    service_id: str
    start_at: datetime
    customer: CustomerDetails
    payment_nonce: str
    payment_mode: str
    barber_id: Optional[str] = None


@dataclass
class BookingContext:
    """Everything the saga has learned so far for one booking attempt"""

    request: BookingRequest
    payment_mode: Optional[PaymentMode] = None
    phone: Optional[str] = None
    amount_cents: int = 0
    shop: Optional[Shop] = None
    service: Optional[Service] = None
    barber: Optional[Barber] = None
    customer: Optional[Customer] = None
    charge: Optional[ChargeResult] = None
    refund: Optional[RefundResult] = None
    receipt: Optional[BookingReceipt] = None
    appointment: Optional[Appointment] = None
    payment: Optional[PaymentRecord] = None


@dataclass(frozen=True)
class BookingResult:
    appointment: Appointment
    payment: PaymentRecord
    external_booking_ref: str
    service: Service
    customer: Customer
    barber: Optional[Barber] = None


@dataclass(frozen=True)
class CancellationResult:
    appointment: Appointment
    refunds: list[RefundResult] = field(default_factory=list)


def _only(*allowed: ErrorKind):
    """Classifier keeping the listed kinds; anything else is an upstream error"""

    def classify(exc: BaseException) -> ErrorKind:
        kind = classify_square_error(exc)
        return kind if kind in allowed else ErrorKind.UPSTREAM_ERROR

    return classify


class BookingOrchestrator:
    """
    Runs the booking saga:

    validate -> resolve_customer -> link_customer -> verify_slot ->
    charge_payment -> create_external_booking -> persist

    A failed external booking refunds the charge. A failed local write after
    the charge and the external booking is never undone automatically; it is
    reported for manual reconciliation.
    """

    def __init__(
        self,
        store: EntityStore,
        provider: SchedulingProvider,
        deposit_policy: Optional[DepositPolicy] = None,
        currency: str = BOOKING_CURRENCY,
        verify_slot: bool = BOOKING_VERIFY_SLOT,
    ):
        self.store = store
        self.provider = provider
        self.deposit_policy = deposit_policy or percentage_deposit()
        self.currency = currency
        self.verify_slot = verify_slot

        self.saga: Saga[BookingContext] = Saga(
            steps=[
                SagaStep("validate", self._validate, failure_state=BookingState.REJECTED_INPUT),
                SagaStep(
                    "resolve_customer",
                    self._resolve_customer,
                    failure_state=BookingState.REJECTED_INPUT,
                    success_state=BookingState.CUSTOMER_RESOLVED,
                ),
                SagaStep("link_customer", self._link_customer, failure_state=BookingState.REJECTED_INPUT),
                SagaStep("verify_slot", self._verify_slot, failure_state=BookingState.BOOKING_CONFLICT),
                SagaStep(
                    "charge_payment",
                    self._charge_payment,
                    failure_state=BookingState.PAYMENT_DECLINED,
                    success_state=BookingState.PAYMENT_AUTHORIZED,
                    classify=_only(ErrorKind.PAYMENT_DECLINED),
                ),
                SagaStep(
                    "create_external_booking",
                    self._create_external_booking,
                    failure_state=BookingState.BOOKING_CONFLICT,
                    success_state=BookingState.EXTERNALLY_BOOKED,
                    classify=_only(ErrorKind.BOOKING_CONFLICT),
                ),
                SagaStep(
                    "persist",
                    self._persist,
                    failure_state=BookingState.INCONSISTENT,
                    success_state=BookingState.PERSISTED,
                    classify=lambda exc: ErrorKind.PERSISTENCE_INCONSISTENCY,
                    compensate_on_failure=False,
                ),
            ],
            compensations={"charge_payment": self._refund_charge},
        )

    # ========================================================================
    # BOOKING
    # ========================================================================

    async def book(self, request: BookingRequest) -> BookingResult:
        logger.info(
            f"📅 Booking request for shop {request.shop_id}, service {request.service_id} "
            f"at {request.start_at.isoformat()}"
        )

        outcome = await self.saga.run(BookingContext(request=request))
        if not outcome.succeeded:
            self._report_failure(outcome)
            raise outcome.failure.to_error()

        ctx = outcome.context
        logger.info(f"✅ Booking {ctx.appointment.id} persisted (Square booking {ctx.receipt.booking_id})")
        return BookingResult(
            appointment=ctx.appointment,
            payment=ctx.payment,
            external_booking_ref=ctx.receipt.booking_id,
            service=ctx.service,
            customer=ctx.customer,
            barber=ctx.barber,
        )

    def _report_failure(self, outcome: SagaOutcome) -> None:
        ctx: BookingContext = outcome.context
        failure = outcome.failure
        customer_id = ctx.customer.id if ctx.customer else None

        if failure.kind == ErrorKind.COMPENSATION_FAILED:
            logger.critical(
                f"🚨 Refund failed after booking failure: payment {ctx.charge.payment_id} "
                f"for {ctx.amount_cents} {self.currency} (customer {customer_id}) needs manual refund. "
                f"Booking error: {outcome.original_failure.cause}; refund error: {outcome.compensation_error}",
                extra={"alert": True},
            )
        elif failure.kind == ErrorKind.PERSISTENCE_INCONSISTENCY:
            logger.critical(
                f"🚨 Local write failed after Square booking {ctx.receipt.booking_id} and payment "
                f"{ctx.charge.payment_id} ({ctx.amount_cents} {self.currency}, customer {customer_id}) "
                f"succeeded: {failure.cause}",
                extra={"alert": True},
            )
        else:
            logger.warning(
                f"Booking for shop {ctx.request.shop_id} ended in {outcome.state.value} "
                f"at '{failure.step}': {failure.cause}"
            )

    async def _validate(self, ctx: BookingContext) -> BookingContext:
        request = ctx.request

        try:
            ctx.payment_mode = PaymentMode(request.payment_mode)
        except ValueError as e:
            raise InvalidRequestError("paymentMode must be FULL or DEPOSIT") from e

        try:
            ctx.phone = normalize_phone(request.customer.phone)
        except ValueError as e:
            raise InvalidRequestError(str(e)) from e

        if request.start_at.tzinfo is None:
            raise InvalidRequestError("startAt must include a timezone offset")

        targets = await load_booking_targets(
            self.store, request.shop_id, request.service_id, request.barber_id
        )
        ctx.shop, ctx.service, ctx.barber = targets.shop, targets.service, targets.barber

        price = ctx.service.price_cents
        ctx.amount_cents = price if ctx.payment_mode == PaymentMode.FULL else self.deposit_policy(price)
        # Online bookings always carry a card payment
        if ctx.amount_cents <= 0:
            raise InvalidRequestError("Free services cannot be booked online. Please book at the shop.")

        return ctx

    async def _resolve_customer(self, ctx: BookingContext) -> BookingContext:
        details = ctx.request.customer
        customer = await self.store.find_first(Customer, shop_id=ctx.shop.id, phone=ctx.phone)

        if customer:
            logger.info(f"Reusing customer {customer.id} for shop {ctx.shop.id}")
        else:
            customer = await self.store.create(
                Customer,
                shop_id=ctx.shop.id,
                first_name=details.first_name,
                last_name=details.last_name,
                phone=ctx.phone,
                email=details.email,
            )
            logger.info(f"✅ Created customer {customer.id} for shop {ctx.shop.id}")

        ctx.customer = customer
        return ctx

    async def _link_customer(self, ctx: BookingContext) -> BookingContext:
        """Backfill the Square customer id the first time a customer books"""
        if ctx.customer.square_customer_id:
            return ctx

        square_customer_id = await self.provider.find_or_create_customer(
            first_name=ctx.customer.first_name,
            last_name=ctx.customer.last_name,
            phone=ctx.customer.phone,
            email=ctx.customer.email,
        )
        ctx.customer = await self.store.update(
            Customer, ctx.customer.id, square_customer_id=square_customer_id
        )
        logger.info(f"Linked customer {ctx.customer.id} to Square customer {square_customer_id}")
        return ctx

    async def _verify_slot(self, ctx: BookingContext) -> BookingContext:
        """Re-check the requested start against Square before taking money"""
        if not self.verify_slot:
            return ctx

        start_at = ctx.request.start_at
        try:
            records = await self.provider.search_availability(
                location_id=ctx.shop.square_location_id,
                service_variation_id=ctx.service.square_item_id,
                date=start_at.astimezone(timezone.utc).date().isoformat(),
                team_member_id=ctx.barber.square_team_member_id if ctx.barber else None,
            )
            offered = {parse_instant(r.start_at) for r in records}
        except Exception as e:
            # Square still rejects taken slots at booking time
            logger.warning(f"⚠️ Slot verification skipped for shop {ctx.shop.id}: {e}")
            return ctx

        if start_at not in offered:
            raise BookingConflictError(detail=f"{start_at.isoformat()} not offered by Square")
        return ctx

    async def _charge_payment(self, ctx: BookingContext) -> BookingContext:
        charge = await self.provider.charge_card(
            nonce=ctx.request.payment_nonce,
            amount_cents=ctx.amount_cents,
            currency=self.currency,
            customer_id=ctx.customer.square_customer_id,
            location_id=ctx.shop.square_location_id,
        )
        if charge.status in FAILED_PAYMENT_STATUSES:
            raise PaymentDeclinedError(detail=f"payment {charge.payment_id} {charge.status}")

        ctx.charge = charge
        logger.info(f"💳 Charged {ctx.amount_cents} {self.currency} ({ctx.payment_mode.value}): {charge.payment_id}")
        return ctx

    async def _refund_charge(self, ctx: BookingContext) -> None:
        logger.warning(f"↩️ Refunding payment {ctx.charge.payment_id} ({ctx.amount_cents} {self.currency})")
        ctx.refund = await self.provider.refund_payment(
            ctx.charge.payment_id, amount_cents=ctx.amount_cents, currency=self.currency
        )
        if ctx.refund.status in FAILED_REFUND_STATUSES:
            raise RuntimeError(
                f"refund {ctx.refund.refund_id} of payment {ctx.charge.payment_id} {ctx.refund.status}"
            )

    async def _create_external_booking(self, ctx: BookingContext) -> BookingContext:
        ctx.receipt = await self.provider.create_booking(
            location_id=ctx.shop.square_location_id,
            service_variation_id=ctx.service.square_item_id,
            start_at=format_instant(ctx.request.start_at),
            team_member_id=ctx.barber.square_team_member_id if ctx.barber else None,
            customer_id=ctx.customer.square_customer_id,
            service_variation_version=ctx.service.square_item_version,
        )
        return ctx

    async def _persist(self, ctx: BookingContext) -> BookingContext:
        start_at = ctx.request.start_at
        ctx.appointment, ctx.payment = await self.store.persist_booking(
            {
                "shop_id": ctx.shop.id,
                "barber_id": ctx.barber.id if ctx.barber else None,
                "service_id": ctx.service.id,
                "customer_id": ctx.customer.id,
                "start_at": start_at,
                "end_at": start_at + timedelta(minutes=ctx.service.duration_minutes),
                "status": AppointmentStatus.BOOKED.value,
                "square_booking_id": ctx.receipt.booking_id,
            },
            {
                "customer_id": ctx.customer.id,
                "square_payment_id": ctx.charge.payment_id,
                "amount_cents": ctx.amount_cents,
                "currency": self.currency,
                "status": PAYMENT_STATUS_BY_SQUARE.get(ctx.charge.status, PaymentStatus.CAPTURED).value,
            },
        )
        return ctx

    # ========================================================================
    # CANCELLATION
    # ========================================================================

    async def cancel(self, appointment_id: str, refund: bool = True) -> CancellationResult:
        """Cancel the Square booking, refund captured payments and mark the appointment cancelled"""
        appointment = await self.store.find_by_id(Appointment, appointment_id)
        if not appointment:
            raise NotFoundError(f"Appointment with ID {appointment_id} not found")
        if appointment.status == AppointmentStatus.CANCELLED.value:
            raise InvalidRequestError("Appointment is already cancelled")

        if appointment.square_booking_id:
            try:
                await self.provider.cancel_booking(appointment.square_booking_id)
            except Exception as e:
                kind = _only(ErrorKind.INVALID_REQUEST)(e)
                logger.error(f"❌ Square cancellation failed for appointment {appointment_id}: {e}")
                message = (
                    "This appointment can no longer be cancelled online"
                    if kind == ErrorKind.INVALID_REQUEST
                    else None
                )
                raise error_for_kind(kind, message, detail=str(e)) from e

        refunds: list[RefundResult] = []
        refunded_ids: list[str] = []
        if refund:
            for payment in await self.store.list_payments(appointment_id):
                if payment.status != PaymentStatus.CAPTURED.value or not payment.square_payment_id:
                    continue
                try:
                    result = await self.provider.refund_payment(
                        payment.square_payment_id,
                        amount_cents=payment.amount_cents,
                        currency=payment.currency,
                    )
                    if result.status in FAILED_REFUND_STATUSES:
                        raise RuntimeError(f"refund {result.refund_id} {result.status}")
                except Exception as e:
                    logger.critical(
                        f"🚨 Refund of payment {payment.square_payment_id} ({payment.amount_cents} "
                        f"{payment.currency}) failed after cancelling appointment {appointment_id}: {e}",
                        extra={"alert": True},
                    )
                    # Square no longer holds the booking; keep the local record in step
                    await self.store.mark_cancelled(appointment_id, refunded_ids)
                    raise CompensationFailedError(detail=str(e)) from e
                refunds.append(result)
                refunded_ids.append(payment.id)

        appointment = await self.store.mark_cancelled(appointment_id, refunded_ids)
        logger.info(f"✅ Cancelled appointment {appointment_id} ({len(refunds)} refunds)")
        return CancellationResult(appointment=appointment, refunds=refunds)
