from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from barberbook.domain.booking.policy import percentage_deposit
from barberbook.domain.booking.service import BookingOrchestrator, BookingRequest, CustomerDetails
from barberbook.errors import (
    BookingConflictError,
    CompensationFailedError,
    InvalidRequestError,
    NotFoundError,
    PaymentDeclinedError,
    PersistenceInconsistencyError,
    UpstreamError,
)
from barberbook.models import Appointment, Customer, PaymentRecord
from barberbook.services.scheduling_provider import AvailabilityRecord
from barberbook.services.square_service import SquareAPIError

pytestmark = pytest.mark.anyio

START = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)

SLOT_TAKEN = SquareAPIError(
    400,
    [{"category": "INVALID_REQUEST_ERROR", "code": "BAD_REQUEST", "detail": "That time slot is no longer available."}],
    "create booking",
)
DECLINED = SquareAPIError(
    402,
    [{"category": "PAYMENT_METHOD_ERROR", "code": "CARD_DECLINED", "detail": "Authorization error: 'CARD_DECLINED'"}],
    "create payment",
)


def _request(data, **overrides):
    fields = {
        "shop_id": data.shop.id,
        "service_id": data.service.id,
        "start_at": START,
        "customer": CustomerDetails(first_name="Jamal", last_name="Reed", phone="(415) 555-0132"),
        "payment_nonce": "cnon:card-nonce-ok",
        "payment_mode": "FULL",
    }
    fields.update(overrides)
    return BookingRequest(**fields)


async def _count(store, model):
    async with store.session_factory() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def test_full_payment_booking(store, provider, shop_data):
    result = await BookingOrchestrator(store, provider).book(_request(shop_data, barber_id=shop_data.barber.id))

    charge = provider.calls_to("charge_card")[0]
    assert charge["amount_cents"] == 5000
    assert charge["currency"] == "USD"
    assert charge["nonce"] == "cnon:card-nonce-ok"

    assert result.payment.status == "captured"
    assert result.payment.appointment_id == result.appointment.id
    assert result.payment.square_payment_id == "sq-pay-2"
    assert result.appointment.status == "booked"
    assert result.appointment.end_at - result.appointment.start_at == timedelta(minutes=30)
    assert result.external_booking_ref == result.appointment.square_booking_id
    assert result.barber.id == shop_data.barber.id
    assert result.customer.phone == "+14155550132"

    booking = provider.calls_to("create_booking")[0]
    assert booking["start_at"] == "2024-06-01T10:00:00Z"
    assert booking["team_member_id"] == "tm-1"
    assert booking["customer_id"] == "sq-cust-1"
    assert booking["service_variation_version"] == 3

    assert await _count(store, Appointment) == 1
    assert await _count(store, PaymentRecord) == 1


async def test_steps_run_in_order(store, provider, shop_data):
    await BookingOrchestrator(store, provider).book(_request(shop_data))

    assert [name for name, _ in provider.calls] == [
        "find_or_create_customer",
        "charge_card",
        "create_booking",
    ]


async def test_approved_payment_is_recorded_as_authorized(store, provider, shop_data):
    provider.charge_status = "APPROVED"

    result = await BookingOrchestrator(store, provider).book(_request(shop_data))

    assert result.payment.status == "authorized"
    payments = await store.list_payments(result.appointment.id)
    assert [p.status for p in payments] == ["authorized"]


async def test_free_service_cannot_be_booked_online(store, provider, make_shop):
    free = await make_shop(price_cents=0)

    with pytest.raises(InvalidRequestError, match="Free services"):
        await BookingOrchestrator(store, provider).book(_request(free))

    assert provider.calls == []
    assert await _count(store, Customer) == 0


async def test_deposit_charges_policy_amount(store, provider, shop_data):
    orchestrator = BookingOrchestrator(store, provider, deposit_policy=percentage_deposit(20, 0))

    result = await orchestrator.book(_request(shop_data, payment_mode="DEPOSIT"))

    assert provider.calls_to("charge_card")[0]["amount_cents"] == 1000
    assert result.payment.amount_cents == 1000


async def test_unknown_payment_mode_rejected_before_side_effects(store, provider, shop_data):
    with pytest.raises(InvalidRequestError):
        await BookingOrchestrator(store, provider).book(_request(shop_data, payment_mode="LATER"))

    assert provider.calls == []
    assert await _count(store, Customer) == 0


async def test_invalid_phone_rejected(store, provider, shop_data):
    customer = CustomerDetails(first_name="Jamal", last_name="Reed", phone="12")

    with pytest.raises(InvalidRequestError):
        await BookingOrchestrator(store, provider).book(_request(shop_data, customer=customer))

    assert provider.calls == []


async def test_missing_service_is_not_found(store, provider, shop_data):
    with pytest.raises(NotFoundError):
        await BookingOrchestrator(store, provider).book(_request(shop_data, service_id="missing"))

    assert provider.calls == []


async def test_declined_card_leaves_no_booking(store, provider, shop_data):
    provider.fail["charge_card"] = DECLINED

    with pytest.raises(PaymentDeclinedError):
        await BookingOrchestrator(store, provider).book(_request(shop_data))

    assert provider.calls_to("create_booking") == []
    assert provider.calls_to("refund_payment") == []
    assert await _count(store, Appointment) == 0
    assert await _count(store, PaymentRecord) == 0
    # The customer stays for the next attempt
    assert await _count(store, Customer) == 1


async def test_failed_payment_status_is_declined(store, provider, shop_data):
    provider.charge_status = "FAILED"

    with pytest.raises(PaymentDeclinedError):
        await BookingOrchestrator(store, provider).book(_request(shop_data))

    assert provider.calls_to("create_booking") == []


async def test_payment_outage_is_upstream_error(store, provider, shop_data):
    provider.fail["charge_card"] = SquareAPIError(503, [{"code": "SERVICE_UNAVAILABLE"}], "create payment")

    with pytest.raises(UpstreamError):
        await BookingOrchestrator(store, provider).book(_request(shop_data))

    assert provider.calls_to("create_booking") == []


async def test_slot_taken_refunds_charge_once(store, provider, shop_data):
    provider.fail["create_booking"] = SLOT_TAKEN

    with pytest.raises(BookingConflictError) as exc_info:
        await BookingOrchestrator(store, provider).book(_request(shop_data))

    refunds = provider.calls_to("refund_payment")
    assert refunds == [{"payment_id": "sq-pay-2", "amount_cents": 5000, "currency": "USD"}]
    assert "no longer available" in exc_info.value.public_message()
    assert "That time slot" not in exc_info.value.public_message()
    assert await _count(store, Appointment) == 0
    assert await _count(store, PaymentRecord) == 0


async def test_unclassified_booking_failure_refunds_and_is_upstream(store, provider, shop_data):
    provider.fail["create_booking"] = SquareAPIError(500, [{"code": "INTERNAL_SERVER_ERROR"}], "create booking")

    with pytest.raises(UpstreamError):
        await BookingOrchestrator(store, provider).book(_request(shop_data))

    assert len(provider.calls_to("refund_payment")) == 1


async def test_failed_refund_is_compensation_failure(store, provider, shop_data, caplog):
    provider.fail["create_booking"] = SLOT_TAKEN
    provider.fail["refund_payment"] = SquareAPIError(500, [{"code": "INTERNAL_SERVER_ERROR"}], "refund payment")

    with pytest.raises(CompensationFailedError):
        await BookingOrchestrator(store, provider).book(_request(shop_data))

    assert len(provider.calls_to("refund_payment")) == 1
    critical = [r for r in caplog.records if r.levelname == "CRITICAL"]
    assert critical and getattr(critical[0], "alert", False)
    assert "sq-pay-2" in critical[0].getMessage()


async def test_rejected_refund_status_is_compensation_failure(store, provider, shop_data, caplog):
    provider.fail["create_booking"] = SLOT_TAKEN
    provider.refund_status = "REJECTED"

    with pytest.raises(CompensationFailedError):
        await BookingOrchestrator(store, provider).book(_request(shop_data))

    assert len(provider.calls_to("refund_payment")) == 1
    critical = [r for r in caplog.records if r.levelname == "CRITICAL"]
    assert len(critical) == 1 and getattr(critical[0], "alert", False)
    assert "REJECTED" in critical[0].getMessage()
    assert await _count(store, Appointment) == 0


async def test_persistence_failure_is_inconsistency_without_refund(store, provider, shop_data, monkeypatch, caplog):
    async def broken_persist(appointment_fields, payment_fields):
        raise OperationalError("INSERT INTO appointments", {}, Exception("database is locked"))

    monkeypatch.setattr(store, "persist_booking", broken_persist)

    with pytest.raises(PersistenceInconsistencyError):
        await BookingOrchestrator(store, provider).book(_request(shop_data))

    assert provider.calls_to("refund_payment") == []
    assert provider.calls_to("cancel_booking") == []
    critical = [r for r in caplog.records if r.levelname == "CRITICAL"]
    assert critical and "sq-booking-3" in critical[0].getMessage()


async def test_customer_reused_by_phone(store, provider, shop_data):
    orchestrator = BookingOrchestrator(store, provider)
    await orchestrator.book(_request(shop_data))
    second = await orchestrator.book(
        _request(
            shop_data,
            start_at=START + timedelta(hours=1),
            customer=CustomerDetails(first_name="J.", last_name="Reed-Smith", phone="+1 415 555 0132"),
        )
    )

    assert await _count(store, Customer) == 1
    assert second.customer.first_name == "Jamal"
    # Square customer is linked once, then reused
    assert len(provider.calls_to("find_or_create_customer")) == 1


async def test_same_phone_in_other_shop_is_separate_customer(store, provider, shop_data, make_shop):
    other = await make_shop()
    orchestrator = BookingOrchestrator(store, provider)

    await orchestrator.book(_request(shop_data))
    await orchestrator.book(_request(other))

    assert await _count(store, Customer) == 2


async def test_square_customer_id_backfilled(store, provider, shop_data):
    provider.square_customer_id = "sq-cust-42"

    result = await BookingOrchestrator(store, provider).book(_request(shop_data))

    stored = await store.find_by_id(Customer, result.customer.id)
    assert stored.square_customer_id == "sq-cust-42"
    assert provider.calls_to("charge_card")[0]["customer_id"] == "sq-cust-42"


async def test_customer_link_failure_stops_before_charge(store, provider, shop_data):
    provider.fail["find_or_create_customer"] = SquareAPIError(500, [], "search customers")

    with pytest.raises(UpstreamError):
        await BookingOrchestrator(store, provider).book(_request(shop_data))

    assert provider.calls_to("charge_card") == []


async def test_verify_slot_conflict_before_charge(store, provider, shop_data):
    provider.availability = [AvailabilityRecord(start_at="2024-06-01T11:00:00Z")]

    with pytest.raises(BookingConflictError):
        await BookingOrchestrator(store, provider, verify_slot=True).book(_request(shop_data))

    assert provider.calls_to("charge_card") == []
    assert provider.calls_to("search_availability")[0]["date"] == "2024-06-01"


async def test_verify_slot_accepts_offered_start(store, provider, shop_data):
    provider.availability = [AvailabilityRecord(start_at="2024-06-01T10:00:00.000Z")]

    result = await BookingOrchestrator(store, provider, verify_slot=True).book(_request(shop_data))

    assert result.appointment.status == "booked"


async def test_verify_slot_outage_does_not_block_booking(store, provider, shop_data):
    provider.fail["search_availability"] = SquareAPIError(503, [], "availability search")

    result = await BookingOrchestrator(store, provider, verify_slot=True).book(_request(shop_data))

    assert result.appointment.status == "booked"


async def test_cancel_refunds_captured_payment(store, provider, shop_data):
    orchestrator = BookingOrchestrator(store, provider)
    booked = await orchestrator.book(_request(shop_data))

    result = await orchestrator.cancel(booked.appointment.id)

    assert result.appointment.status == "cancelled"
    assert provider.calls_to("cancel_booking") == [{"booking_id": booked.external_booking_ref}]
    assert provider.calls_to("refund_payment")[0]["amount_cents"] == 5000
    payments = await store.list_payments(booked.appointment.id)
    assert [p.status for p in payments] == ["refunded"]


async def test_cancel_without_refund_keeps_payment(store, provider, shop_data):
    orchestrator = BookingOrchestrator(store, provider)
    booked = await orchestrator.book(_request(shop_data))

    result = await orchestrator.cancel(booked.appointment.id, refund=False)

    assert result.refunds == []
    assert provider.calls_to("refund_payment") == []
    payments = await store.list_payments(booked.appointment.id)
    assert [p.status for p in payments] == ["captured"]


async def test_cancel_twice_is_invalid(store, provider, shop_data):
    orchestrator = BookingOrchestrator(store, provider)
    booked = await orchestrator.book(_request(shop_data))
    await orchestrator.cancel(booked.appointment.id)

    with pytest.raises(InvalidRequestError):
        await orchestrator.cancel(booked.appointment.id)


async def test_cancel_unknown_appointment(store, provider):
    with pytest.raises(NotFoundError):
        await BookingOrchestrator(store, provider).cancel("missing")


async def test_cancel_after_cancellation_period(store, provider, shop_data):
    orchestrator = BookingOrchestrator(store, provider)
    booked = await orchestrator.book(_request(shop_data))
    provider.fail["cancel_booking"] = SquareAPIError(
        400,
        [{"code": "BAD_REQUEST", "detail": "Booking cannot be cancelled past cancellation period end"}],
        "cancel booking",
    )

    with pytest.raises(InvalidRequestError):
        await orchestrator.cancel(booked.appointment.id)

    appointment = await store.find_by_id(Appointment, booked.appointment.id)
    assert appointment.status == "booked"


async def test_cancel_refund_failure_is_compensation_failure(store, provider, shop_data):
    orchestrator = BookingOrchestrator(store, provider)
    booked = await orchestrator.book(_request(shop_data))
    provider.fail["refund_payment"] = SquareAPIError(500, [], "refund payment")

    with pytest.raises(CompensationFailedError):
        await orchestrator.cancel(booked.appointment.id)

    appointment = await store.find_by_id(Appointment, booked.appointment.id)
    assert appointment.status == "cancelled"


async def test_cancel_failed_refund_status_keeps_payment_captured(store, provider, shop_data, caplog):
    orchestrator = BookingOrchestrator(store, provider)
    booked = await orchestrator.book(_request(shop_data))
    provider.refund_status = "FAILED"

    with pytest.raises(CompensationFailedError):
        await orchestrator.cancel(booked.appointment.id)

    appointment = await store.find_by_id(Appointment, booked.appointment.id)
    assert appointment.status == "cancelled"
    payments = await store.list_payments(booked.appointment.id)
    assert [p.status for p in payments] == ["captured"]
    critical = [r for r in caplog.records if r.levelname == "CRITICAL"]
    assert len(critical) == 1 and getattr(critical[0], "alert", False)


@pytest.mark.parametrize(
    "percent,min_cents,price,expected",
    [
        (25, 500, 5000, 1250),
        (25, 500, 1000, 500),
        (25, 500, 300, 300),
        (20, 0, 2499, 500),
        (0, 0, 5000, 0),
    ],
)
def test_percentage_deposit(percent, min_cents, price, expected):
    assert percentage_deposit(percent, min_cents)(price) == expected


def test_percentage_deposit_rejects_bad_percent():
    with pytest.raises(ValueError):
        percentage_deposit(150)
