"""Entity store - Database operations for shops, services, barbers, customers and bookings"""

from typing import Any, Iterable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ...errors import NotFoundError
from ...models import Appointment, AppointmentStatus, Barber, PaymentRecord, PaymentStatus

T = TypeVar("T")


class EntityStore:
    """
    Repository over the async session factory.

    Every call opens its own short-lived session, so independent reads can
    be awaited concurrently. Multi-row writes that must land together go
    through a single transaction.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def find_by_id(self, model: type[T], entity_id: Optional[str]) -> Optional[T]:
        """Get an entity by primary key"""
        if not entity_id:
            return None
        async with self.session_factory() as db:
            return await db.get(model, entity_id)

    async def find_first(self, model: type[T], **filters: Any) -> Optional[T]:
        """Get the oldest entity matching all equality filters"""
        async with self.session_factory() as db:
            query = select(model).filter_by(**filters)
            if hasattr(model, "created_at"):
                query = query.order_by(model.created_at, model.id)
            result = await db.execute(query.limit(1))
            return result.scalars().first()

    async def create(self, model: type[T], **fields: Any) -> T:
        """Create a new entity"""
        async with self.session_factory() as db:
            entity = model(**fields)
            db.add(entity)
            await db.commit()
            return entity

    async def update(self, model: type[T], entity_id: str, **fields: Any) -> T:
        """Update an entity with provided fields"""
        async with self.session_factory() as db:
            entity = await db.get(model, entity_id)
            if entity is None:
                raise NotFoundError(f"{model.__name__} {entity_id} not found")
            for key, value in fields.items():
                setattr(entity, key, value)
            await db.commit()
            return entity

    async def find_barbers_by_team_member_ids(
        self, shop_id: str, team_member_ids: Iterable[str]
    ) -> dict[str, str]:
        """
        Map Square team member ids to local barber ids in one query.
        The oldest barber wins when a team member id is linked more than once.
        """
        ids = {t for t in team_member_ids if t}
        if not ids:
            return {}

        async with self.session_factory() as db:
            result = await db.execute(
                select(Barber.square_team_member_id, Barber.id)
                .where(Barber.shop_id == shop_id, Barber.square_team_member_id.in_(ids))
                .order_by(Barber.created_at, Barber.id)
            )
            mapping: dict[str, str] = {}
            for team_member_id, barber_id in result.all():
                mapping.setdefault(team_member_id, barber_id)
            return mapping

    async def persist_booking(
        self, appointment_fields: dict[str, Any], payment_fields: dict[str, Any]
    ) -> tuple[Appointment, PaymentRecord]:
        """Write the appointment and its payment record in one transaction"""
        async with self.session_factory() as db:
            async with db.begin():
                appointment = Appointment(**appointment_fields)
                db.add(appointment)
                await db.flush()

                payment = PaymentRecord(appointment_id=appointment.id, **payment_fields)
                db.add(payment)
            return appointment, payment

    async def list_payments(self, appointment_id: str) -> list[PaymentRecord]:
        """Get all payment records for an appointment"""
        async with self.session_factory() as db:
            result = await db.execute(
                select(PaymentRecord)
                .where(PaymentRecord.appointment_id == appointment_id)
                .order_by(PaymentRecord.created_at)
            )
            return list(result.scalars().all())

    async def mark_cancelled(
        self, appointment_id: str, refunded_payment_ids: Iterable[str] = ()
    ) -> Appointment:
        """Cancel an appointment and flag refunded payments in one transaction"""
        async with self.session_factory() as db:
            async with db.begin():
                appointment = await db.get(Appointment, appointment_id)
                if appointment is None:
                    raise NotFoundError(f"Appointment {appointment_id} not found")
                appointment.status = AppointmentStatus.CANCELLED.value

                for payment_id in refunded_payment_ids:
                    payment = await db.get(PaymentRecord, payment_id)
                    if payment is not None:
                        payment.status = PaymentStatus.REFUNDED.value
            return appointment
