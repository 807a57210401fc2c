"""
Закрытие сессии парковки и расчет.

checkout() - одна транзакция: закрытие сессии, освобождение места,
отмена незавершенных запросов и заданий (с освобождением робота),
создание платежа и его строк. Любая ошибка откатывает все целиком.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from . import crud, models
from .billing import CostBreakdown, compute_costs, discounted_rate, quantity
from .bot_ledger import BotLedger
from .database import transaction
from .errors import NotFound, SessionNotOpen, Unauthorized
from .payment_service import PaymentService
from .states import ChargeJobStatus, ChargeRequestStatus, SessionStatus, UserTier
from .tariff_service import TariffService

logger = logging.getLogger(__name__)

PARKING_LINE = "Parking"
CHARGING_LINE = "Charging"


@dataclass
class CheckoutPreview:
    session_id: int
    tariff_id: int
    costs: CostBreakdown


@dataclass
class CheckoutResult:
    payment: models.Payment
    costs: CostBreakdown
    cancelled_requests: List[int]
    aborted_jobs: List[int]


def _whole_minutes(start: datetime, end: datetime) -> int:
    return int(max(0.0, (end - start).total_seconds() / 60.0))


class CheckoutService:
    def __init__(self, ledger: BotLedger, tariffs: TariffService,
                 payments: Optional[PaymentService] = None):
        self.ledger = ledger
        self.tariffs = tariffs
        self.payments = payments or PaymentService()

    def preview(self, db: Session, user_id: str, session_id: int,
                now: Optional[datetime] = None) -> CheckoutPreview:
        """Предварительный расчет без скидок, ничего не меняет"""
        now = now or models.utc_now()
        session = self._owned_open_session(db, user_id, session_id)
        tariff = self.tariffs.require_current(db, now)
        costs = self._base_costs(db, session, tariff, now)
        return CheckoutPreview(session_id=session.id, tariff_id=tariff.id, costs=costs)

    def checkout(self, db: Session, user_id: str, session_id: int,
                 now: Optional[datetime] = None) -> CheckoutResult:
        now = now or models.utc_now()

        with self.ledger.guard(), transaction(db):
            session = self._owned_open_session(db, user_id, session_id)
            tariff = self.tariffs.require_current(db, now)

            # Пересчет на сервере, суммам клиента не доверяем
            base = self._base_costs(db, session, tariff, now)

            user = crud.get_user(db, user_id)
            tier = user.tier if user is not None else UserTier.BASE
            parking_rate = base.parking_rate
            energy_rate = base.energy_rate
            if tier == UserTier.PREMIUM:
                parking_rate = discounted_rate(parking_rate, user.parking_discount)
                energy_rate = discounted_rate(energy_rate, user.charging_discount)
            costs = compute_costs(base.total_minutes, base.energy_kwh, parking_rate, energy_rate)

            jobs = crud.list_jobs_by_session(db, session.id)
            finished = [j for j in jobs if j.status == ChargeJobStatus.FINISHED
                        and j.start_utc is not None and j.end_utc is not None]

            session.move_to(SessionStatus.CLOSED, SessionNotOpen)
            session.end_utc = now
            session.total_minutes = costs.total_minutes
            session.charging_minutes = sum(_whole_minutes(j.start_utc, j.end_utc) for j in finished)

            spot = crud.get_spot(db, session.spot_id)
            if spot is not None:
                spot.is_occupied = False
                spot.sensor_last_update_utc = now

            cancelled, aborted, release_bot = self._cancel_unresolved(db, session, jobs, now)
            if release_bot:
                self.ledger.release(db, now)

            payment = crud.add(db, models.Payment(
                user_id=user_id,
                session_id=session.id,
                created_utc=now,
                user_tier_at_payment=tier,
                total_amount=costs.total,
            ))
            lines = [models.PaymentLine(
                payment_id=payment.id,
                line_type=PARKING_LINE,
                quantity=quantity(costs.total_hours),
                unit_price=parking_rate,
                line_total=costs.parking_cost,
            )]
            if costs.energy_cost > 0 and costs.energy_kwh > 0:
                lines.append(models.PaymentLine(
                    payment_id=payment.id,
                    line_type=CHARGING_LINE,
                    quantity=quantity(costs.energy_kwh),
                    unit_price=energy_rate,
                    line_total=costs.energy_cost,
                ))
            crud.add_all(db, lines)
            payment.payment_qr = self.payments.generate_qr_code(payment)

        db.refresh(payment)
        logger.info(
            f"Сессия #{session_id} закрыта: {costs.total_minutes} мин, {costs.energy_kwh:.3f} кВт*ч, "
            f"итого {costs.total:.2f} (платеж #{payment.id})"
        )
        return CheckoutResult(payment=payment, costs=costs,
                              cancelled_requests=cancelled, aborted_jobs=aborted)

    def _base_costs(self, db: Session, session: models.ParkingSession,
                    tariff: models.Tariff, now: datetime) -> CostBreakdown:
        total_minutes = _whole_minutes(session.start_utc, now)
        # В счет идут только завершенные задания
        energy = sum(
            j.energy_kwh for j in crud.list_jobs_by_session(db, session.id)
            if j.status == ChargeJobStatus.FINISHED and j.energy_kwh is not None
        )
        return compute_costs(total_minutes, quantity(energy), tariff.parking_per_hour, tariff.energy_per_kwh)

    def _cancel_unresolved(self, db: Session, session: models.ParkingSession,
                           jobs: List[models.ChargeJob], now: datetime):
        cancelled, aborted = [], []
        release_bot = False

        for request in crud.list_requests_by_session(db, session.id):
            if request.status in (ChargeRequestStatus.PENDING, ChargeRequestStatus.IN_PROGRESS):
                request.move_to(ChargeRequestStatus.CANCELLED)
                cancelled.append(request.id)

        for job in jobs:
            if job.status in (ChargeJobStatus.QUEUED, ChargeJobStatus.RUNNING):
                if job.status == ChargeJobStatus.RUNNING:
                    release_bot = True
                job.move_to(ChargeJobStatus.ABORTED)
                job.end_utc = now
                aborted.append(job.id)

        if cancelled or aborted:
            logger.info(f"Сессия #{session.id}: отменены запросы {cancelled}, прерваны задания {aborted}")
        return cancelled, aborted, release_bot

    def _owned_open_session(self, db: Session, user_id: str, session_id: int) -> models.ParkingSession:
        session = crud.get_session(db, session_id)
        if session is None:
            raise NotFound(f"Сессия #{session_id} не найдена")
        if session.user_id != user_id:
            raise Unauthorized("Сессия принадлежит другому пользователю")
        if session.status != SessionStatus.OPEN:
            raise SessionNotOpen("Сессия парковки уже закрыта")
        return session
