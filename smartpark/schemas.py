from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List, Optional

from .states import ChargeJobStatus, ChargeRequestStatus, SessionStatus, UserTier


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class SpotResponse(ORMModel):
    id: int
    code: str
    is_occupied: bool
    sensor_last_update_utc: Optional[datetime]

class CarModelResponse(ORMModel):
    id: int
    make: str
    model: str
    battery_capacity_kwh: float

class CarCreate(BaseModel):
    plate: str = Field(min_length=1, max_length=16)
    car_model_id: int
    initial_soc_percent: Optional[int] = Field(default=None, ge=0, le=100)

class CarResponse(ORMModel):
    id: int
    plate: str
    car_model_id: int
    initial_soc_percent: Optional[int]

class SessionCreate(BaseModel):
    car_id: int
    spot_id: int

class SessionResponse(ORMModel):
    id: int
    spot_id: int
    car_id: int
    user_id: str
    start_utc: datetime
    end_utc: Optional[datetime]
    status: SessionStatus
    total_minutes: Optional[int]
    charging_minutes: Optional[int]

class ChargeProposal(BaseModel):
    target_soc_percent: int = Field(ge=1, le=100)
    initial_soc_percent: Optional[int] = Field(default=None, ge=0, le=100)

class ChargeRequestResponse(ORMModel):
    id: int
    session_id: int
    target_soc_percent: int
    initial_soc_percent: Optional[int]
    requested_at_utc: datetime
    status: ChargeRequestStatus
    estimated_wait_minutes: Optional[int]
    estimated_completion_minutes: Optional[int]

class ChargeJobResponse(ORMModel):
    id: int
    request_id: int
    status: ChargeJobStatus
    start_utc: Optional[datetime]
    end_utc: Optional[datetime]
    energy_kwh: Optional[float]
    final_soc_percent: Optional[int]

class JobFinish(BaseModel):
    # Диапазоны проверяет машина состояний (InvalidMeasurement)
    energy_kwh: float = Field(allow_inf_nan=False)
    final_soc_percent: int

class BotResponse(ORMModel):
    id: int
    current_spot_id: Optional[int]
    battery_percent: Optional[int]
    max_power_kw: float
    is_busy: bool
    last_update_utc: datetime

class BoardJobResponse(ChargeJobResponse):
    request: ChargeRequestResponse

class BotBoardResponse(ORMModel):
    bot: BotResponse
    running_job: Optional[BoardJobResponse] = None
    queue: List[BoardJobResponse] = []
    pending_requests: List[ChargeRequestResponse] = []

class TariffCreate(BaseModel):
    parking_per_hour: float = Field(ge=0, allow_inf_nan=False)
    energy_per_kwh: float = Field(ge=0, allow_inf_nan=False)
    effective_from: Optional[datetime] = None

class TariffResponse(ORMModel):
    id: int
    parking_per_hour: float
    energy_per_kwh: float
    valid_from_utc: datetime
    valid_to_utc: Optional[datetime]

class CostsResponse(ORMModel):
    total_minutes: int
    total_hours: float
    energy_kwh: float
    parking_rate: float
    energy_rate: float
    parking_cost: float
    energy_cost: float
    total: float

class CheckoutPreviewResponse(ORMModel):
    session_id: int
    tariff_id: int
    costs: CostsResponse

class PaymentLineResponse(ORMModel):
    id: int
    line_type: str
    quantity: float
    unit_price: float
    line_total: float

class PaymentResponse(ORMModel):
    id: int
    user_id: str
    session_id: Optional[int]
    created_utc: datetime
    total_amount: float
    user_tier_at_payment: UserTier
    payment_qr: Optional[str]
    lines: List[PaymentLineResponse]

class CheckoutResponse(ORMModel):
    payment: PaymentResponse
    costs: CostsResponse
    cancelled_requests: List[int]
    aborted_jobs: List[int]

class UserTierUpdate(BaseModel):
    tier: UserTier
    parking_discount: Optional[float] = Field(default=None, ge=0, le=1)
    charging_discount: Optional[float] = Field(default=None, ge=0, le=1)

class UserResponse(ORMModel):
    id: str
    email: Optional[str]
    tier: UserTier
    parking_discount: Optional[float]
    charging_discount: Optional[float]

class PaymentRowResponse(ORMModel):
    id: int
    created_utc: datetime
    user_id: str
    user_tier: UserTier
    parking: float
    charging: float
    total: float

class PaymentsReportResponse(ORMModel):
    from_utc: datetime
    to_utc: datetime
    rows: List[PaymentRowResponse]
    count: int
    count_base: int
    count_premium: int
    total_parking: float
    total_charging: float
    total_parking_base: float
    total_charging_base: float
    total_parking_premium: float
    total_charging_premium: float
    grand_total: float
