import logging
import math
import threading
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from . import crud, models
from .database import transaction
from .errors import InvalidMeasurement, NoActiveTariff

logger = logging.getLogger(__name__)


class TariffService:
    def __init__(self):
        # Публикации тарифов выполняются строго по одной
        self._publish_lock = threading.Lock()

    def current_tariff(self, db: Session, instant: datetime) -> Optional[models.Tariff]:
        """Тариф, действующий в момент instant (при перекрытии - с самым поздним началом)"""
        return crud.get_current_tariff(db, models.as_utc(instant))

    def require_current(self, db: Session, instant: datetime) -> models.Tariff:
        tariff = self.current_tariff(db, instant)
        if tariff is None:
            logger.warning(f"Нет действующего тарифа на {instant.isoformat()}")
            raise NoActiveTariff()
        return tariff

    def publish_tariff(self, db: Session, parking_per_hour: float, energy_per_kwh: float,
                       effective_from: datetime) -> models.Tariff:
        """Закрыть текущий тариф секундой раньше и ввести новый с effective_from"""
        if not all(math.isfinite(rate) and rate >= 0 for rate in (parking_per_hour, energy_per_kwh)):
            raise InvalidMeasurement("Ставки тарифа должны быть конечными и неотрицательными")
        effective_from = models.as_utc(effective_from)

        with self._publish_lock, transaction(db):
            current = crud.get_current_tariff(db, effective_from)
            if current is not None:
                current.valid_to_utc = effective_from - timedelta(seconds=1)

            tariff = crud.add(db, models.Tariff(
                parking_per_hour=parking_per_hour,
                energy_per_kwh=energy_per_kwh,
                valid_from_utc=effective_from,
            ))

        logger.info(
            f"Опубликован тариф #{tariff.id}: {parking_per_hour}/ч, {energy_per_kwh}/кВт*ч "
            f"с {effective_from.isoformat()}"
        )
        return tariff

    def list_tariffs(self, db: Session):
        return crud.list_tariffs(db)
