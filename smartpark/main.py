from fastapi import FastAPI, Depends, Header
from fastapi.responses import JSONResponse, Response
from fastapi.requests import Request
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from typing import List, Optional
import logging

from . import crud, models, schemas
from .config import settings
from .database import SessionLocal, engine, get_db
from .errors import (
    InfrastructureError, InvalidMeasurement, NoActiveTariff, NotFound, SmartParkError, Unauthorized,
)
from .bot_ledger import BotLedger
from .charging_service import ChargingService
from .checkout_service import CheckoutService
from .payment_service import PaymentService
from .session_service import SessionService
from .tariff_service import TariffService

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="SmartPark Charging Bot", version="1.0.0")

bot_ledger = BotLedger()
tariff_service = TariffService()
payment_service = PaymentService()
session_service = SessionService()
charging_service = ChargingService(bot_ledger)
checkout_service = CheckoutService(bot_ledger, tariff_service, payment_service)

ERROR_STATUS = [
    (NotFound, 404),
    (Unauthorized, 403),
    (InvalidMeasurement, 422),
    (NoActiveTariff, 503),
    (InfrastructureError, 500),
]


@app.exception_handler(SmartParkError)
async def smartpark_error_handler(request: Request, exc: SmartParkError):
    # Остальные доменные ошибки - конфликт состояния
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 409)
    return JSONResponse(status_code=status_code, content={"error": exc.kind, "detail": exc.message})


def current_user_id(x_user_id: str = Header(...)) -> str:
    return x_user_id


@app.on_event("startup")
async def startup_event():
    """Инициализация при запуске"""
    models.Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        bot_ledger.ensure_bot(db)
        session_service.seed_spots(db, settings.spot_codes)
        session_service.seed_car_models(db)

        if (settings.default_parking_per_hour is not None
                and settings.default_energy_per_kwh is not None
                and not tariff_service.list_tariffs(db)):
            tariff_service.publish_tariff(
                db, settings.default_parking_per_hour, settings.default_energy_per_kwh, models.utc_now()
            )
        logger.info("Система зарядки запущена")
    finally:
        db.close()


# ==================== API ENDPOINTS ====================

@app.get("/health")
def health():
    return {"ok": True}

# Места и автомобили
@app.get("/api/spots/", response_model=List[schemas.SpotResponse])
def get_spots(free_only: bool = False, db: Session = Depends(get_db)):
    """Список парковочных мест"""
    return session_service.list_spots(db, free_only=free_only)

@app.get("/api/car-models/", response_model=List[schemas.CarModelResponse])
def get_car_models(db: Session = Depends(get_db)):
    return crud.list_car_models(db)

@app.get("/api/cars/", response_model=List[schemas.CarResponse])
def get_my_cars(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    """Автомобили пользователя"""
    return session_service.list_cars(db, user_id)

@app.post("/api/cars/", response_model=schemas.CarResponse)
def register_car(car: schemas.CarCreate, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    return session_service.register_car(db, user_id, car.plate, car.car_model_id, car.initial_soc_percent)

@app.delete("/api/cars/{car_id}", status_code=204)
def delete_car(car_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    """Удалить автомобиль без сессий"""
    session_service.delete_car(db, user_id, car_id)
    return Response(status_code=204)

# Сессии парковки
@app.post("/api/sessions/", response_model=schemas.SessionResponse)
def open_session(data: schemas.SessionCreate, user_id: str = Depends(current_user_id),
                 db: Session = Depends(get_db)):
    """Занять место"""
    return session_service.open_session(db, user_id, data.car_id, data.spot_id)

@app.get("/api/sessions/", response_model=List[schemas.SessionResponse])
def get_my_sessions(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    """Открытые сессии пользователя"""
    return session_service.list_open_sessions(db, user_id)

@app.get("/api/sessions/{session_id}/checkout", response_model=schemas.CheckoutPreviewResponse)
def preview_checkout(session_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    """Предварительный расчет без скидок"""
    return schemas.CheckoutPreviewResponse.model_validate(checkout_service.preview(db, user_id, session_id))

@app.post("/api/sessions/{session_id}/checkout", response_model=schemas.CheckoutResponse)
def confirm_checkout(session_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    """Закрыть сессию и оплатить"""
    return schemas.CheckoutResponse.model_validate(checkout_service.checkout(db, user_id, session_id))

# Запросы на зарядку
@app.post("/api/sessions/{session_id}/charge-requests", response_model=schemas.ChargeRequestResponse)
def propose_charge(session_id: int, proposal: schemas.ChargeProposal,
                   user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    """Предложение зарядки с оценкой времени"""
    return charging_service.propose(
        db, user_id, session_id, proposal.target_soc_percent, proposal.initial_soc_percent
    )

@app.get("/api/sessions/{session_id}/charge-requests", response_model=List[schemas.ChargeRequestResponse])
def get_charge_requests(session_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    return charging_service.list_requests(db, user_id, session_id)

@app.post("/api/charge-requests/{request_id}/accept", response_model=schemas.ChargeJobResponse)
def accept_charge(request_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    """Подтвердить предложение и встать в очередь"""
    return charging_service.accept(db, user_id, request_id)

@app.post("/api/charge-requests/{request_id}/reject", response_model=schemas.ChargeRequestResponse)
def reject_charge(request_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    return charging_service.reject(db, user_id, request_id)

# Управление роботом (оператор)
@app.get("/api/admin/bot", response_model=schemas.BotBoardResponse)
def get_bot_board(db: Session = Depends(get_db)):
    """Состояние робота и очередь"""
    return schemas.BotBoardResponse.model_validate(charging_service.board(db))

@app.post("/api/admin/jobs/next/start", response_model=schemas.ChargeJobResponse)
def start_next_job(db: Session = Depends(get_db)):
    return charging_service.start(db)

@app.post("/api/admin/jobs/{job_id}/start", response_model=schemas.ChargeJobResponse)
def start_job(job_id: int, db: Session = Depends(get_db)):
    return charging_service.start(db, job_id)

@app.post("/api/admin/jobs/{job_id}/finish", response_model=schemas.ChargeJobResponse)
def finish_job(job_id: int, report: schemas.JobFinish, db: Session = Depends(get_db)):
    """Итог зарядки вводит оператор"""
    return charging_service.finish(db, job_id, report.energy_kwh, report.final_soc_percent)

@app.post("/api/admin/jobs/{job_id}/abort", response_model=schemas.ChargeJobResponse)
def abort_job(job_id: int, db: Session = Depends(get_db)):
    return charging_service.abort(db, job_id)

# Тарифы
@app.get("/api/admin/tariffs/", response_model=List[schemas.TariffResponse])
def get_tariffs(db: Session = Depends(get_db)):
    return tariff_service.list_tariffs(db)

@app.get("/api/tariffs/current", response_model=schemas.TariffResponse)
def get_current_tariff(db: Session = Depends(get_db)):
    """Действующий тариф"""
    return tariff_service.require_current(db, models.utc_now())

@app.post("/api/admin/tariffs/", response_model=schemas.TariffResponse)
def publish_tariff(data: schemas.TariffCreate, db: Session = Depends(get_db)):
    """Ввести новый тариф, закрыв текущий"""
    return tariff_service.publish_tariff(
        db, data.parking_per_hour, data.energy_per_kwh, data.effective_from or models.utc_now()
    )

# Пользователи и платежи
@app.get("/api/admin/users/", response_model=List[schemas.UserResponse])
def get_users(db: Session = Depends(get_db)):
    """Пользователи с уровнем и скидками"""
    return session_service.list_users(db)

@app.put("/api/admin/users/{user_id}", response_model=schemas.UserResponse)
def update_user(user_id: str, data: schemas.UserTierUpdate, db: Session = Depends(get_db)):
    """Уровень пользователя и скидки"""
    return session_service.update_user_tier(
        db, user_id, data.tier, data.parking_discount, data.charging_discount
    )

@app.get("/api/admin/payments/", response_model=schemas.PaymentsReportResponse)
def get_payments_report(from_utc: Optional[datetime] = None, to_utc: Optional[datetime] = None,
                        db: Session = Depends(get_db)):
    """Сводка платежей (по умолчанию за последние 7 дней)"""
    to_utc = models.as_utc(to_utc) or models.utc_now()
    from_utc = models.as_utc(from_utc) or (to_utc - timedelta(days=7)).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    return schemas.PaymentsReportResponse.model_validate(payment_service.report(db, from_utc, to_utc))

@app.get("/api/payments/{payment_id}", response_model=schemas.PaymentResponse)
def get_payment(payment_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    """Платеж пользователя со строками и QR-кодом"""
    return payment_service.get_payment(db, user_id, payment_id)
