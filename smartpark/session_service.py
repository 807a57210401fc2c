import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from . import crud, models
from .database import transaction
from .errors import InvalidMeasurement, InvalidState, NotFound, SpotUnavailable, Unauthorized
from .states import SessionStatus, UserTier

logger = logging.getLogger(__name__)

# Каталог моделей по умолчанию
DEFAULT_CAR_MODELS = [
    ("Tesla", "Model 3", 57.5),
    ("VW", "ID.3", 58.0),
    ("Nissan", "Leaf", 40.0),
    ("Renault", "Zoe", 52.0),
    ("Fiat", "500e", 42.0),
]


class SessionService:
    def open_session(self, db: Session, user_id: str, car_id: int, spot_id: int,
                     now: Optional[datetime] = None) -> models.ParkingSession:
        """Занять место: открыть сессию и отметить место занятым"""
        now = now or models.utc_now()
        with transaction(db):
            car = crud.get_car(db, car_id)
            if car is None:
                raise NotFound(f"Автомобиль #{car_id} не найден")
            if car.user_id != user_id:
                raise Unauthorized("Автомобиль принадлежит другому пользователю")

            spot = crud.get_spot(db, spot_id)
            if spot is None:
                raise NotFound(f"Место #{spot_id} не найдено")
            if spot.is_occupied or crud.get_open_session_by_spot(db, spot.id) is not None:
                logger.warning(f"Место {spot.code} уже занято")
                raise SpotUnavailable(f"Место {spot.code} занято")
            if crud.any_open_session_by_car(db, car.id):
                raise InvalidState("У этого автомобиля уже есть открытая сессия")

            session = crud.add(db, models.ParkingSession(
                spot_id=spot.id,
                car_id=car.id,
                user_id=user_id,
                start_utc=now,
                status=SessionStatus.OPEN,
            ))
            spot.is_occupied = True
            spot.sensor_last_update_utc = now

        logger.info(f"Сессия #{session.id} открыта: {car.plate} на месте {spot.code}")
        return session

    def list_open_sessions(self, db: Session, user_id: str) -> List[models.ParkingSession]:
        return crud.list_open_sessions_by_user(db, user_id)

    def list_spots(self, db: Session, free_only: bool = False) -> List[models.ParkingSpot]:
        spots = crud.list_spots(db)
        if free_only:
            spots = [s for s in spots if not s.is_occupied]
        return spots

    # Автомобили и пользователи

    def ensure_user(self, db: Session, user_id: str, email: Optional[str] = None) -> models.User:
        with transaction(db):
            user = crud.get_user(db, user_id)
            if user is None:
                user = crud.add(db, models.User(id=user_id, email=email, tier=UserTier.BASE))
        return user

    def register_car(self, db: Session, user_id: str, plate: str, car_model_id: int,
                     initial_soc_percent: Optional[int] = None) -> models.Car:
        if initial_soc_percent is not None and not 0 <= initial_soc_percent <= 100:
            raise InvalidMeasurement("Начальный заряд должен быть от 0 до 100%")
        with transaction(db):
            if crud.get_user(db, user_id) is None:
                crud.add(db, models.User(id=user_id, tier=UserTier.BASE))
            if crud.get_car_model(db, car_model_id) is None:
                raise NotFound(f"Модель #{car_model_id} не найдена")
            car = crud.add(db, models.Car(
                user_id=user_id,
                plate=plate.strip().upper(),
                car_model_id=car_model_id,
                initial_soc_percent=initial_soc_percent,
            ))
        logger.info(f"Автомобиль {car.plate} зарегистрирован для {user_id}")
        return car

    def list_cars(self, db: Session, user_id: str) -> List[models.Car]:
        return crud.list_cars_by_user(db, user_id)

    def delete_car(self, db: Session, user_id: str, car_id: int) -> None:
        """Удалить автомобиль, если с ним не связано ни одной сессии (даже закрытой)"""
        with transaction(db):
            car = crud.get_car(db, car_id)
            if car is None:
                raise NotFound(f"Автомобиль #{car_id} не найден")
            if car.user_id != user_id:
                raise Unauthorized("Автомобиль принадлежит другому пользователю")
            if crud.any_session_by_car(db, car.id):
                logger.warning(f"Автомобиль {car.plate} не удален: есть связанные сессии")
                raise InvalidState("Нельзя удалить автомобиль, у которого есть сессии")
            plate = car.plate
            crud.delete_car(db, car)
        logger.info(f"Автомобиль {plate} удален пользователем {user_id}")

    def list_users(self, db: Session) -> List[models.User]:
        return crud.list_users(db)

    def update_user_tier(self, db: Session, user_id: str, tier: UserTier,
                         parking_discount: Optional[float] = None,
                         charging_discount: Optional[float] = None) -> models.User:
        for value in (parking_discount, charging_discount):
            if value is not None and not 0 <= value <= 1:
                raise InvalidMeasurement("Скидка должна быть в диапазоне 0..1")
        with transaction(db):
            user = crud.get_user(db, user_id)
            if user is None:
                raise NotFound(f"Пользователь {user_id} не найден")
            user.tier = tier
            user.parking_discount = parking_discount
            user.charging_discount = charging_discount
        logger.info(f"Пользователь {user_id}: уровень {tier.value}")
        return user

    # Начальное заполнение

    def seed_spots(self, db: Session, codes: Iterable[str]) -> int:
        with transaction(db):
            if crud.list_spots(db):
                return 0
            spots = [models.ParkingSpot(code=code, is_occupied=False) for code in codes]
            crud.add_all(db, spots)
        logger.info(f"Создано парковочных мест: {len(spots)}")
        return len(spots)

    def seed_car_models(self, db: Session) -> int:
        with transaction(db):
            if crud.list_car_models(db):
                return 0
            crud.add_all(db, [
                models.CarModel(make=make, model=model, battery_capacity_kwh=kwh)
                for make, model, kwh in DEFAULT_CAR_MODELS
            ])
        return len(DEFAULT_CAR_MODELS)
