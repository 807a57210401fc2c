"""
Учет занятости робота-зарядчика.

Робот в системе один. Проверка "свободен ли" и захват выполняются
одним UPDATE с условием is_busy = false, поэтому два параллельных
старта не могут оба получить робота. Дополнительно внутрипроцессная
блокировка сериализует операции, которые меняют робота вместе с
заданиями, на все время их транзакции (см. BotLedger.guard).
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from . import crud, models
from .config import settings
from .database import transaction
from .errors import NotFound

logger = logging.getLogger(__name__)

BOT_ID = 1


class BotLedger:
    def __init__(self, bot_id: int = BOT_ID):
        self.bot_id = bot_id
        self._lock = threading.RLock()

    @contextmanager
    def guard(self):
        """Держать блокировку робота на время транзакции операции"""
        with self._lock:
            yield

    def get(self, db: Session) -> models.Bot:
        bot = crud.get_bot(db, self.bot_id)
        if bot is None:
            raise NotFound("Робот не инициализирован")
        return bot

    def is_busy(self, db: Session) -> bool:
        return bool(self.get(db).is_busy)

    def try_acquire(self, db: Session, spot_id: int, now: datetime) -> bool:
        """Занять робота для места spot_id; False, если он уже занят"""
        with self._lock:
            self.get(db)
            acquired = crud.claim_bot(db, self.bot_id, spot_id, now)
        if acquired:
            logger.info(f"Робот занят, место #{spot_id}")
        else:
            logger.warning(f"Робот уже занят, место #{spot_id} ожидает")
        return acquired

    def release(self, db: Session, now: datetime) -> None:
        """Освободить робота (повторный вызов безопасен)"""
        with self._lock:
            self.get(db)
            crud.free_bot(db, self.bot_id, now)
        logger.info("Робот освобожден")

    def ensure_bot(self, db: Session, now: Optional[datetime] = None) -> models.Bot:
        """Создать запись робота, если ее еще нет"""
        with self._lock, transaction(db):
            bot = crud.get_bot(db, self.bot_id)
            if bot is None:
                bot = crud.add(db, models.Bot(
                    id=self.bot_id,
                    is_busy=False,
                    current_spot_id=None,
                    max_power_kw=settings.bot_max_power_kw,
                    battery_percent=settings.bot_battery_percent,
                    last_update_utc=now or models.utc_now(),
                ))
                logger.info(f"Создан робот #{self.bot_id}")
        return bot
