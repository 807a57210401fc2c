"""Денежные расчеты: округление половины от нуля, скидки, стоимость сессии"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

CENTS = Decimal("0.01")
MILLI = Decimal("0.001")


def round_half_away(value: float, places: Decimal = CENTS) -> float:
    # ROUND_HALF_UP у Decimal округляет половину от нуля, в том числе для отрицательных
    return float(Decimal(repr(float(value))).quantize(places, rounding=ROUND_HALF_UP))


def money(value: float) -> float:
    return round_half_away(value, CENTS)


def quantity(value: float) -> float:
    return round_half_away(value, MILLI)


def discounted_rate(rate: float, discount: Optional[float]) -> float:
    """Ставка со скидкой, не ниже нуля; скидка <= 0 не применяется"""
    if discount is None or discount <= 0:
        return rate
    return max(0.0, rate * (1 - discount))


@dataclass(frozen=True)
class CostBreakdown:
    total_minutes: int
    total_hours: float
    energy_kwh: float
    parking_rate: float
    energy_rate: float
    parking_cost: float
    energy_cost: float
    total: float


def compute_costs(total_minutes: int, energy_kwh: float,
                  parking_rate: float, energy_rate: float) -> CostBreakdown:
    hours = total_minutes / 60.0
    parking_cost = money(hours * parking_rate)
    energy_cost = money(energy_kwh * energy_rate)
    return CostBreakdown(
        total_minutes=total_minutes,
        total_hours=hours,
        energy_kwh=energy_kwh,
        parking_rate=parking_rate,
        energy_rate=energy_rate,
        parking_cost=parking_cost,
        energy_cost=energy_cost,
        total=money(parking_cost + energy_cost),
    )
