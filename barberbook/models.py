import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)

from .database import Base


def generate_id():
    """Generate a string UUID primary key"""
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


class AppointmentStatus(str, Enum):
    BOOKED = "booked"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"
    REFUNDED = "refunded"


class Shop(Base):
    __tablename__ = "shops"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    owner_id = Column(String(255), nullable=False, index=True)
    square_location_id = Column(String(255), nullable=True)  # Required before booking
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Service(Base):
    __tablename__ = "services"

    id = Column(String(36), primary_key=True, default=generate_id)
    shop_id = Column(String(36), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    price_cents = Column(Integer, nullable=False, default=0)
    square_item_id = Column(String(255), nullable=True)  # Square service variation id
    square_item_version = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Barber(Base):
    __tablename__ = "barbers"

    id = Column(String(36), primary_key=True, default=generate_id)
    shop_id = Column(String(36), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    display_name = Column(String(255), nullable=False)
    square_team_member_id = Column(String(255), nullable=True, index=True)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (Index("ix_customers_shop_phone", "shop_id", "phone"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    shop_id = Column(String(36), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=False)  # E.164, dedup key within a shop
    email = Column(String(255), nullable=True)
    square_customer_id = Column(String(255), nullable=True)  # Filled on first booking
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=generate_id)
    shop_id = Column(String(36), ForeignKey("shops.id"), nullable=False, index=True)
    barber_id = Column(String(36), ForeignKey("barbers.id"), nullable=True)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=False)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default=AppointmentStatus.BOOKED.value)
    square_booking_id = Column(String(255), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class PaymentRecord(Base):
    __tablename__ = "payment_records"

    id = Column(String(36), primary_key=True, default=generate_id)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=True, index=True)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False)
    square_payment_id = Column(String(255), nullable=True, unique=True)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(String(20), nullable=False)  # authorized, captured, failed, refunded
    created_at = Column(DateTime(timezone=True), default=utcnow)
