"""
Машина состояний зарядки.

Запрос:  Proposed -> Pending | Cancelled;  Pending -> InProgress | Cancelled;
         InProgress -> Completed | Cancelled.
Задание: Queued -> Running | Aborted;  Running -> Finished | Aborted.

Каждая операция выполняется в одной транзакции и под блокировкой робота,
проверки делаются до изменений: при ошибке состояние не меняется.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from . import crud, models
from .bot_ledger import BotLedger
from .charge_queue import ChargeQueue
from .database import transaction
from .errors import (
    BotBusy, DuplicateActiveRequest, InvalidMeasurement, InvalidState, JobNotAbortable,
    JobNotQueued, JobNotRunning, NotFound, RequestNotPending, SessionNotOpen, Unauthorized,
)
from .states import (
    ACTIVE_REQUEST_STATUSES, OPEN_JOB_STATUSES, ChargeJobStatus, ChargeRequestStatus, SessionStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class BotBoard:
    bot: models.Bot
    running_job: Optional[models.ChargeJob] = None
    queue: List[models.ChargeJob] = field(default_factory=list)
    pending_requests: List[models.ChargeRequest] = field(default_factory=list)


class ChargingService:
    def __init__(self, ledger: BotLedger, queue: Optional[ChargeQueue] = None):
        self.ledger = ledger
        self.queue = queue or ChargeQueue()

    # ----- пользовательские операции -----

    def propose(self, db: Session, user_id: str, session_id: int, target_soc_percent: int,
                initial_soc_percent: Optional[int] = None,
                now: Optional[datetime] = None) -> models.ChargeRequest:
        """Создать предложение зарядки (Proposed) с оценкой ожидания"""
        now = now or models.utc_now()
        if not 1 <= target_soc_percent <= 100:
            raise InvalidMeasurement("Целевой заряд должен быть от 1 до 100%")
        if initial_soc_percent is not None and not 0 <= initial_soc_percent <= 100:
            raise InvalidMeasurement("Начальный заряд должен быть от 0 до 100%")

        with self.ledger.guard(), transaction(db):
            session = self._owned_open_session(db, user_id, session_id)

            existing = crud.list_requests_by_session(db, session.id)
            if any(r.status in ACTIVE_REQUEST_STATUSES for r in existing):
                logger.warning(f"Сессия #{session.id}: уже есть активный запрос на зарядку")
                raise DuplicateActiveRequest("Для этой сессии уже есть активный запрос на зарядку")

            wait, completion = self.queue.estimate(db)
            request = crud.add(db, models.ChargeRequest(
                session_id=session.id,
                target_soc_percent=target_soc_percent,
                initial_soc_percent=initial_soc_percent,
                requested_at_utc=now,
                status=ChargeRequestStatus.PROPOSED,
                estimated_wait_minutes=wait,
                estimated_completion_minutes=completion,
            ))

        logger.info(f"Запрос #{request.id} предложен: сессия #{session_id}, ожидание {wait} мин")
        return request

    def accept(self, db: Session, user_id: Optional[str], request_id: int) -> models.ChargeJob:
        """Пользователь подтверждает предложение: запрос -> Pending, задание в очередь"""
        with self.ledger.guard(), transaction(db):
            request = self._get_request(db, request_id, user_id)
            if request.session.status != SessionStatus.OPEN:
                raise SessionNotOpen("Сессия парковки уже закрыта")
            if request.status != ChargeRequestStatus.PROPOSED:
                logger.warning(f"Запрос #{request_id} уже обработан ({request.status.value})")
                raise InvalidState("Этот запрос уже обработан")

            request.move_to(ChargeRequestStatus.PENDING)
            job = crud.add(db, models.ChargeJob(request_id=request.id, status=ChargeJobStatus.QUEUED))

        logger.info(f"Запрос #{request_id} принят, задание #{job.id} в очереди")
        return job

    def reject(self, db: Session, user_id: Optional[str], request_id: int) -> models.ChargeRequest:
        with self.ledger.guard(), transaction(db):
            request = self._get_request(db, request_id, user_id)
            if request.status != ChargeRequestStatus.PROPOSED:
                raise InvalidState("Этот запрос уже обработан")
            request.move_to(ChargeRequestStatus.CANCELLED)

        logger.info(f"Запрос #{request_id} отклонен пользователем")
        return request

    # ----- операции оператора -----

    def start(self, db: Session, job_id: Optional[int] = None,
              now: Optional[datetime] = None) -> models.ChargeJob:
        """Запустить задание job_id или следующее по очереди"""
        now = now or models.utc_now()
        with self.ledger.guard(), transaction(db):
            if job_id is None:
                job = self.queue.next_queued(db)
                if job is None:
                    raise NotFound("Очередь пуста")
            else:
                job = crud.get_job(db, job_id)
                if job is None:
                    raise NotFound(f"Задание #{job_id} не найдено")

            if self.ledger.is_busy(db):
                logger.warning(f"Старт задания #{job.id} отклонен: робот занят")
                raise BotBusy("Робот уже занят")
            if job.status != ChargeJobStatus.QUEUED:
                raise JobNotQueued(f"Задание #{job.id} не в очереди")
            request = job.request
            if request.status != ChargeRequestStatus.PENDING:
                raise RequestNotPending(f"Запрос #{request.id} не ожидает запуска")

            if not self.ledger.try_acquire(db, request.session.spot_id, now):
                raise BotBusy("Робот уже занят")

            job.move_to(ChargeJobStatus.RUNNING, JobNotQueued)
            job.start_utc = now
            request.move_to(ChargeRequestStatus.IN_PROGRESS, RequestNotPending)

        logger.info(f"Задание #{job.id} запущено на месте #{request.session.spot_id}")
        return job

    def finish(self, db: Session, job_id: int, energy_kwh: float, final_soc_percent: int,
               now: Optional[datetime] = None) -> models.ChargeJob:
        """Оператор сообщает итог зарядки: энергия и конечный заряд"""
        now = now or models.utc_now()
        if energy_kwh is None or not math.isfinite(energy_kwh) or energy_kwh < 0:
            raise InvalidMeasurement("Энергия должна быть конечным неотрицательным числом")
        if final_soc_percent is None or not 0 <= final_soc_percent <= 100:
            raise InvalidMeasurement("Конечный заряд должен быть от 0 до 100%")

        with self.ledger.guard(), transaction(db):
            job = crud.get_job(db, job_id)
            if job is None:
                raise NotFound(f"Задание #{job_id} не найдено")
            if job.status != ChargeJobStatus.RUNNING:
                raise JobNotRunning(f"Задание #{job_id} не выполняется")

            job.move_to(ChargeJobStatus.FINISHED, JobNotRunning)
            job.end_utc = now
            job.energy_kwh = energy_kwh
            job.final_soc_percent = final_soc_percent
            job.request.move_to(ChargeRequestStatus.COMPLETED)
            self.ledger.release(db, now)

        logger.info(f"Задание #{job_id} завершено: {energy_kwh:.3f} кВт*ч, заряд {final_soc_percent}%")
        return job

    def abort(self, db: Session, job_id: int, now: Optional[datetime] = None) -> models.ChargeJob:
        """Прервать задание в очереди или в работе"""
        now = now or models.utc_now()
        with self.ledger.guard(), transaction(db):
            job = crud.get_job(db, job_id)
            if job is None:
                raise NotFound(f"Задание #{job_id} не найдено")
            if job.status not in OPEN_JOB_STATUSES:
                raise JobNotAbortable(f"Задание #{job_id} нельзя прервать ({job.status.value})")

            was_running = job.status == ChargeJobStatus.RUNNING
            job.move_to(ChargeJobStatus.ABORTED, JobNotAbortable)
            if was_running:
                job.end_utc = now

            request = job.request
            if request is not None and request.status in ACTIVE_REQUEST_STATUSES:
                request.move_to(ChargeRequestStatus.CANCELLED)

            if was_running:
                self.ledger.release(db, now)

        logger.info(f"Задание #{job_id} прервано{' (робот освобожден)' if was_running else ''}")
        return job

    def board(self, db: Session) -> BotBoard:
        """Состояние робота, текущее задание, очередь и ожидающие запросы"""
        return BotBoard(
            bot=self.ledger.get(db),
            running_job=self.queue.running_job(db),
            queue=self.queue.list_queued(db),
            pending_requests=crud.list_pending_requests(db),
        )

    def list_requests(self, db: Session, user_id: str, session_id: int) -> List[models.ChargeRequest]:
        session = crud.get_session(db, session_id)
        if session is None:
            raise NotFound(f"Сессия #{session_id} не найдена")
        if session.user_id != user_id:
            raise Unauthorized("Сессия принадлежит другому пользователю")
        return crud.list_requests_by_session(db, session_id)

    # ----- вспомогательные -----

    def _owned_open_session(self, db: Session, user_id: str, session_id: int) -> models.ParkingSession:
        session = crud.get_session(db, session_id)
        if session is None:
            raise NotFound(f"Сессия #{session_id} не найдена")
        if session.user_id != user_id:
            raise Unauthorized("Сессия принадлежит другому пользователю")
        if session.status != SessionStatus.OPEN:
            raise SessionNotOpen("Сессия парковки уже закрыта")
        return session

    def _get_request(self, db: Session, request_id: int, user_id: Optional[str]) -> models.ChargeRequest:
        request = crud.get_request(db, request_id)
        if request is None:
            raise NotFound(f"Запрос #{request_id} не найден")
        if user_id is not None and request.session.user_id != user_id:
            raise Unauthorized("Запрос принадлежит другому пользователю")
        return request
