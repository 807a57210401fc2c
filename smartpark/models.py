from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean, Column, DateTime, Enum, Float, ForeignKey, Index, Integer, String, Text, text,
)
from sqlalchemy.orm import relationship

from .database import Base
from .errors import InvalidState
from .states import (
    ChargeJobStatus, ChargeRequestStatus, SessionStatus, UserTier, ensure_transition,
)


def utc_now() -> datetime:
    """Текущее время UTC без tzinfo (так хранится в БД)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Привести время к UTC без tzinfo; наивное время считается уже UTC"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class StatusMixin:
    def move_to(self, status, error=InvalidState):
        ensure_transition(self.status, status, error)
        self.status = status


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), unique=True, nullable=True)
    tier = Column(Enum(UserTier, native_enum=False, length=16), default=UserTier.BASE, nullable=False)
    parking_discount = Column(Float, nullable=True)
    charging_discount = Column(Float, nullable=True)

    cars = relationship("Car", back_populates="owner")


class CarModel(Base):
    __tablename__ = "car_models"

    id = Column(Integer, primary_key=True, index=True)
    make = Column(String(64), nullable=False)
    model = Column(String(64), nullable=False)
    battery_capacity_kwh = Column(Float, nullable=False)


class Car(Base):
    __tablename__ = "cars"

    id = Column(Integer, primary_key=True, index=True)
    plate = Column(String(16), index=True, nullable=False)
    user_id = Column(String(64), ForeignKey("users.id"), index=True, nullable=False)
    car_model_id = Column(Integer, ForeignKey("car_models.id"), nullable=False)
    initial_soc_percent = Column(Integer, nullable=True)

    owner = relationship("User", back_populates="cars")
    car_model = relationship("CarModel")


class ParkingSpot(Base):
    __tablename__ = "parking_spots"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(16), unique=True, index=True, nullable=False)
    is_occupied = Column(Boolean, default=False, nullable=False)
    sensor_last_update_utc = Column(DateTime, default=utc_now)


class ParkingSession(StatusMixin, Base):
    __tablename__ = "parking_sessions"

    id = Column(Integer, primary_key=True, index=True)
    spot_id = Column(Integer, ForeignKey("parking_spots.id"), nullable=False)
    car_id = Column(Integer, ForeignKey("cars.id"), nullable=False)
    user_id = Column(String(64), ForeignKey("users.id"), index=True, nullable=False)
    start_utc = Column(DateTime, default=utc_now, nullable=False)
    end_utc = Column(DateTime, nullable=True)
    status = Column(Enum(SessionStatus, native_enum=False, length=16), default=SessionStatus.OPEN, nullable=False)
    total_minutes = Column(Integer, nullable=True)
    charging_minutes = Column(Integer, nullable=True)

    spot = relationship("ParkingSpot")
    car = relationship("Car")
    charge_requests = relationship("ChargeRequest", back_populates="session", order_by="ChargeRequest.requested_at_utc")

    __table_args__ = (
        Index("uq_open_session_per_spot", "spot_id", unique=True,
              sqlite_where=text("status = 'OPEN'"), postgresql_where=text("status = 'OPEN'")),
        Index("uq_open_session_per_car", "car_id", unique=True,
              sqlite_where=text("status = 'OPEN'"), postgresql_where=text("status = 'OPEN'")),
    )


class ChargeRequest(StatusMixin, Base):
    __tablename__ = "charge_requests"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("parking_sessions.id"), index=True, nullable=False)
    target_soc_percent = Column(Integer, nullable=False)
    initial_soc_percent = Column(Integer, nullable=True)
    requested_at_utc = Column(DateTime, default=utc_now, index=True, nullable=False)
    status = Column(Enum(ChargeRequestStatus, native_enum=False, length=16),
                    default=ChargeRequestStatus.PROPOSED, nullable=False)
    # Оценки только для отображения
    estimated_wait_minutes = Column(Integer, nullable=True)
    estimated_completion_minutes = Column(Integer, nullable=True)

    session = relationship("ParkingSession", back_populates="charge_requests")
    jobs = relationship("ChargeJob", back_populates="request", order_by="ChargeJob.id")


class ChargeJob(StatusMixin, Base):
    __tablename__ = "charge_jobs"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("charge_requests.id"), index=True, nullable=False)
    status = Column(Enum(ChargeJobStatus, native_enum=False, length=16),
                    default=ChargeJobStatus.QUEUED, index=True, nullable=False)
    start_utc = Column(DateTime, nullable=True)
    end_utc = Column(DateTime, nullable=True)
    energy_kwh = Column(Float, nullable=True)
    final_soc_percent = Column(Integer, nullable=True)

    request = relationship("ChargeRequest", back_populates="jobs")


class Bot(Base):
    __tablename__ = "bots"

    id = Column(Integer, primary_key=True)
    current_spot_id = Column(Integer, ForeignKey("parking_spots.id"), nullable=True)
    battery_percent = Column(Integer, nullable=True)
    max_power_kw = Column(Float, default=22.0, nullable=False)
    is_busy = Column(Boolean, default=False, nullable=False)
    last_update_utc = Column(DateTime, default=utc_now, nullable=False)

    current_spot = relationship("ParkingSpot")


class Tariff(Base):
    __tablename__ = "tariffs"

    id = Column(Integer, primary_key=True, index=True)
    parking_per_hour = Column(Float, nullable=False)
    energy_per_kwh = Column(Float, nullable=False)
    valid_from_utc = Column(DateTime, default=utc_now, index=True, nullable=False)
    valid_to_utc = Column(DateTime, nullable=True)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), ForeignKey("users.id"), index=True, nullable=False)
    session_id = Column(Integer, ForeignKey("parking_sessions.id"), nullable=True)
    created_utc = Column(DateTime, default=utc_now, index=True, nullable=False)
    total_amount = Column(Float, nullable=False)
    user_tier_at_payment = Column(Enum(UserTier, native_enum=False, length=16), nullable=False)
    payment_qr = Column(Text, nullable=True)

    lines = relationship("PaymentLine", back_populates="payment", order_by="PaymentLine.id")


class PaymentLine(Base):
    __tablename__ = "payment_lines"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), index=True, nullable=False)
    line_type = Column(String(32), nullable=False)  # "Parking" | "Charging"
    quantity = Column(Float, nullable=False)
    unit_price = Column(Float, nullable=False)
    line_total = Column(Float, nullable=False)

    payment = relationship("Payment", back_populates="lines")
