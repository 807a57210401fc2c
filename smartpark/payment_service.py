import qrcode
from io import BytesIO
import base64
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List
from sqlalchemy.orm import Session
from . import crud
from .billing import money
from .config import settings
from .errors import NotFound, Unauthorized
from .models import Payment, as_utc
from .states import UserTier

logger = logging.getLogger(__name__)


@dataclass
class PaymentRow:
    id: int
    created_utc: datetime
    user_id: str
    user_tier: UserTier
    parking: float
    charging: float

    @property
    def total(self) -> float:
        return money(self.parking + self.charging)


@dataclass
class PaymentsReport:
    from_utc: datetime
    to_utc: datetime
    rows: List[PaymentRow] = field(default_factory=list)
    total_parking: float = 0.0
    total_charging: float = 0.0
    total_parking_base: float = 0.0
    total_charging_base: float = 0.0
    total_parking_premium: float = 0.0
    total_charging_premium: float = 0.0
    count_base: int = 0
    count_premium: int = 0

    @property
    def count(self) -> int:
        return len(self.rows)

    @property
    def grand_total(self) -> float:
        return money(self.total_parking + self.total_charging)


class PaymentService:
    def qr_payload(self, payment: Payment) -> str:
        return f"{settings.payment_qr_prefix}:{payment.id}:{payment.total_amount:.2f}:{payment.session_id}"

    def generate_qr_code(self, payment: Payment) -> str:
        """Генерация QR-кода для оплаты"""
        try:
            qr = qrcode.QRCode(version=1, box_size=10, border=5)
            qr.add_data(self.qr_payload(payment))
            qr.make(fit=True)

            img = qr.make_image(fill_color="black", back_color="white")

            buffer = BytesIO()
            img.save(buffer, format='PNG')
            qr_image_base64 = base64.b64encode(buffer.getvalue()).decode()

            return f"data:image/png;base64,{qr_image_base64}"

        except Exception as e:
            logger.error(f"Ошибка генерации QR-кода для платежа #{payment.id}: {e}")
            return ""

    def get_payment(self, db: Session, user_id: str, payment_id: int) -> Payment:
        payment = crud.get_payment(db, payment_id)
        if payment is None:
            raise NotFound(f"Платеж #{payment_id} не найден")
        if payment.user_id != user_id:
            raise Unauthorized("Платеж принадлежит другому пользователю")
        return payment

    def report(self, db: Session, from_utc: datetime, to_utc: datetime) -> PaymentsReport:
        """Сводка платежей за период по типам строк и уровню пользователя"""
        from_utc, to_utc = as_utc(from_utc), as_utc(to_utc)
        report = PaymentsReport(from_utc=from_utc, to_utc=to_utc)

        for payment in crud.list_payments_by_range(db, from_utc, to_utc):
            parking = money(sum(l.line_total for l in payment.lines if l.line_type == "Parking"))
            charging = money(sum(l.line_total for l in payment.lines if l.line_type == "Charging"))

            report.rows.append(PaymentRow(
                id=payment.id,
                created_utc=payment.created_utc,
                user_id=payment.user_id,
                user_tier=payment.user_tier_at_payment,
                parking=parking,
                charging=charging,
            ))

            report.total_parking += parking
            report.total_charging += charging
            if payment.user_tier_at_payment == UserTier.PREMIUM:
                report.count_premium += 1
                report.total_parking_premium += parking
                report.total_charging_premium += charging
            else:
                report.count_base += 1
                report.total_parking_base += parking
                report.total_charging_base += charging

        for name in ("total_parking", "total_charging", "total_parking_base", "total_charging_base",
                     "total_parking_premium", "total_charging_premium"):
            setattr(report, name, money(getattr(report, name)))
        return report
