from typing import List, Optional

from sqlalchemy.orm import Session

from . import crud, models
from .config import settings


class ChargeQueue:
    """Очередь заданий на зарядку (статус Queued), FIFO по времени запроса"""

    def next_queued(self, db: Session) -> Optional[models.ChargeJob]:
        return crud.next_queued_job(db)

    def list_queued(self, db: Session) -> List[models.ChargeJob]:
        return crud.list_queued_jobs(db)

    def running_job(self, db: Session) -> Optional[models.ChargeJob]:
        return crud.get_running_job(db)

    def cars_ahead(self, db: Session) -> int:
        """Сколько машин будет обслужено раньше нового запроса"""
        ahead = len(self.list_queued(db))
        if self.running_job(db) is not None:
            ahead += 1
        return ahead

    def estimate(self, db: Session):
        """Оценка (ожидание, завершение) в минутах, только для отображения"""
        wait = self.cars_ahead(db) * settings.wait_minutes_per_car
        return wait, wait + settings.service_minutes
