from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from smartpark import crud, models
from smartpark.bot_ledger import BotLedger
from smartpark.charging_service import ChargingService
from smartpark.checkout_service import CheckoutService
from smartpark.database import Base, make_engine
from smartpark.session_service import SessionService
from smartpark.tariff_service import TariffService

T0 = datetime(2025, 9, 1, 8, 0, 0)


def minutes(n: float) -> timedelta:
    return timedelta(minutes=n)


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'smartpark-test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def ledger(db):
    ledger = BotLedger()
    ledger.ensure_bot(db, T0)
    return ledger


@pytest.fixture
def tariffs():
    return TariffService()


@pytest.fixture
def charging(ledger):
    return ChargingService(ledger)


@pytest.fixture
def checkout(ledger, tariffs):
    return CheckoutService(ledger, tariffs)


@pytest.fixture
def sessions(db):
    service = SessionService()
    service.seed_spots(db, ["P01", "P02", "P03"])
    service.seed_car_models(db)
    return service


@pytest.fixture
def open_session(db, sessions):
    """Открыть сессию для нового автомобиля пользователя на указанном месте"""
    def _open(user_id="alice", plate="AB123CD", spot_code="P01", start=T0):
        sessions.ensure_user(db, user_id, f"{user_id}@example.com")
        car_model = crud.list_car_models(db)[0]
        car = sessions.register_car(db, user_id, plate, car_model.id)
        spot = crud.get_spot_by_code(db, spot_code)
        return sessions.open_session(db, user_id, car.id, spot.id, now=start)
    return _open


@pytest.fixture
def queued_job(db, charging, open_session):
    """Сессия с принятым запросом: (session, request, job)"""
    def _queued(user_id="alice", plate="AB123CD", spot_code="P01", requested_at=T0 + minutes(5)):
        session = open_session(user_id=user_id, plate=plate, spot_code=spot_code)
        request = charging.propose(db, user_id, session.id, 80, 20, now=requested_at)
        job = charging.accept(db, user_id, request.id)
        return session, request, job
    return _queued


@pytest.fixture
def standard_tariff(db, tariffs):
    return tariffs.publish_tariff(db, 2.00, 0.40, T0 - timedelta(days=1))


def bot_of(db, ledger) -> models.Bot:
    db.expire_all()
    return ledger.get(db)
