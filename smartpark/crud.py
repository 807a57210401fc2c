from sqlalchemy.orm import Session
from sqlalchemy import desc, asc, or_, update
from datetime import datetime
from typing import Optional, List, Iterable
from . import models
from .states import ChargeJobStatus, ChargeRequestStatus, SessionStatus

# Функции не делают commit: фиксацию выполняет сервис через database.transaction()


def add(db: Session, entity):
    db.add(entity)
    db.flush()
    return entity


def add_all(db: Session, entities: Iterable) -> None:
    db.add_all(list(entities))
    db.flush()


# Users / Cars
def get_user(db: Session, user_id: str) -> Optional[models.User]:
    return db.get(models.User, user_id)

def list_users(db: Session) -> List[models.User]:
    return db.query(models.User).order_by(asc(models.User.email), asc(models.User.id)).all()

def get_car(db: Session, car_id: int) -> Optional[models.Car]:
    return db.get(models.Car, car_id)

def list_cars_by_user(db: Session, user_id: str) -> List[models.Car]:
    return db.query(models.Car).filter(models.Car.user_id == user_id).order_by(asc(models.Car.id)).all()

def delete_car(db: Session, car: models.Car) -> None:
    db.delete(car)
    db.flush()

def get_car_model(db: Session, car_model_id: int) -> Optional[models.CarModel]:
    return db.get(models.CarModel, car_model_id)

def list_car_models(db: Session) -> List[models.CarModel]:
    return db.query(models.CarModel).order_by(asc(models.CarModel.make), asc(models.CarModel.model)).all()


# Parking spots
def get_spot(db: Session, spot_id: int) -> Optional[models.ParkingSpot]:
    return db.get(models.ParkingSpot, spot_id)

def get_spot_by_code(db: Session, code: str) -> Optional[models.ParkingSpot]:
    return db.query(models.ParkingSpot).filter(models.ParkingSpot.code == code).first()

def list_spots(db: Session) -> List[models.ParkingSpot]:
    return db.query(models.ParkingSpot).order_by(asc(models.ParkingSpot.code)).all()


# Parking sessions
def get_session(db: Session, session_id: int) -> Optional[models.ParkingSession]:
    return db.get(models.ParkingSession, session_id)

def get_open_session_by_spot(db: Session, spot_id: int) -> Optional[models.ParkingSession]:
    return db.query(models.ParkingSession).filter(
        models.ParkingSession.spot_id == spot_id,
        models.ParkingSession.status == SessionStatus.OPEN
    ).first()

def list_open_sessions_by_user(db: Session, user_id: str) -> List[models.ParkingSession]:
    return db.query(models.ParkingSession).filter(
        models.ParkingSession.user_id == user_id,
        models.ParkingSession.status == SessionStatus.OPEN
    ).order_by(desc(models.ParkingSession.start_utc)).all()

def any_open_session_by_car(db: Session, car_id: int) -> bool:
    return db.query(models.ParkingSession.id).filter(
        models.ParkingSession.car_id == car_id,
        models.ParkingSession.status == SessionStatus.OPEN
    ).first() is not None

def any_session_by_car(db: Session, car_id: int) -> bool:
    return db.query(models.ParkingSession.id).filter(
        models.ParkingSession.car_id == car_id
    ).first() is not None


# Charge requests
def get_request(db: Session, request_id: int) -> Optional[models.ChargeRequest]:
    return db.get(models.ChargeRequest, request_id)

def list_requests_by_session(db: Session, session_id: int) -> List[models.ChargeRequest]:
    return db.query(models.ChargeRequest).filter(
        models.ChargeRequest.session_id == session_id
    ).order_by(asc(models.ChargeRequest.requested_at_utc), asc(models.ChargeRequest.id)).all()

def list_pending_requests(db: Session) -> List[models.ChargeRequest]:
    return db.query(models.ChargeRequest).filter(
        models.ChargeRequest.status == ChargeRequestStatus.PENDING
    ).order_by(asc(models.ChargeRequest.requested_at_utc)).all()


# Charge jobs
def get_job(db: Session, job_id: int) -> Optional[models.ChargeJob]:
    return db.get(models.ChargeJob, job_id)

def list_jobs_by_request(db: Session, request_id: int) -> List[models.ChargeJob]:
    return db.query(models.ChargeJob).filter(
        models.ChargeJob.request_id == request_id
    ).order_by(asc(models.ChargeJob.id)).all()

def list_jobs_by_session(db: Session, session_id: int) -> List[models.ChargeJob]:
    return db.query(models.ChargeJob).join(models.ChargeRequest).filter(
        models.ChargeRequest.session_id == session_id
    ).order_by(asc(models.ChargeJob.id)).all()

def _queued_jobs_query(db: Session):
    # FIFO по времени запроса пользователя, при равенстве - по id задания
    return db.query(models.ChargeJob).join(models.ChargeRequest).filter(
        models.ChargeJob.status == ChargeJobStatus.QUEUED
    ).order_by(asc(models.ChargeRequest.requested_at_utc), asc(models.ChargeJob.id))

def list_queued_jobs(db: Session) -> List[models.ChargeJob]:
    return _queued_jobs_query(db).all()

def next_queued_job(db: Session) -> Optional[models.ChargeJob]:
    return _queued_jobs_query(db).first()

def get_running_job(db: Session) -> Optional[models.ChargeJob]:
    return db.query(models.ChargeJob).filter(
        models.ChargeJob.status == ChargeJobStatus.RUNNING
    ).order_by(desc(models.ChargeJob.start_utc), desc(models.ChargeJob.id)).first()


# Bot
def get_bot(db: Session, bot_id: int) -> Optional[models.Bot]:
    return db.get(models.Bot, bot_id)

def claim_bot(db: Session, bot_id: int, spot_id: int, now: datetime) -> bool:
    """Атомарно занять робота: UPDATE ... WHERE is_busy = false"""
    result = db.execute(
        update(models.Bot)
        .where(models.Bot.id == bot_id, models.Bot.is_busy == False)
        .values(is_busy=True, current_spot_id=spot_id, last_update_utc=now)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1

def free_bot(db: Session, bot_id: int, now: datetime) -> None:
    db.execute(
        update(models.Bot)
        .where(models.Bot.id == bot_id)
        .values(is_busy=False, current_spot_id=None, last_update_utc=now)
        .execution_options(synchronize_session="fetch")
    )


# Tariffs
def get_current_tariff(db: Session, instant: datetime) -> Optional[models.Tariff]:
    return db.query(models.Tariff).filter(
        models.Tariff.valid_from_utc <= instant,
        or_(models.Tariff.valid_to_utc.is_(None), models.Tariff.valid_to_utc >= instant)
    ).order_by(desc(models.Tariff.valid_from_utc), desc(models.Tariff.id)).first()

def list_tariffs(db: Session) -> List[models.Tariff]:
    return db.query(models.Tariff).order_by(desc(models.Tariff.valid_from_utc)).all()


# Payments
def get_payment(db: Session, payment_id: int) -> Optional[models.Payment]:
    return db.get(models.Payment, payment_id)

def get_payment_by_session(db: Session, session_id: int) -> Optional[models.Payment]:
    return db.query(models.Payment).filter(models.Payment.session_id == session_id).first()

def list_payments_by_range(db: Session, from_utc: datetime, to_utc: datetime) -> List[models.Payment]:
    """Платежи в интервале [from_utc, to_utc], границы включены"""
    return db.query(models.Payment).filter(
        models.Payment.created_utc >= from_utc,
        models.Payment.created_utc <= to_utc
    ).order_by(asc(models.Payment.created_utc), asc(models.Payment.id)).all()
