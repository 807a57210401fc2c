import pytest

from smartpark.billing import compute_costs, discounted_rate, money, quantity, round_half_away


@pytest.mark.parametrize("value, expected", [
    (2.675, 2.68),
    (0.125, 0.13),
    (0.124, 0.12),
    (-0.125, -0.13),
    (3.0, 3.0),
])
def test_money_rounds_half_away_from_zero(value, expected):
    assert money(value) == expected


def test_quantity_keeps_three_decimals():
    assert quantity(1.23456) == 1.235
    assert quantity(0.0005) == 0.001


def test_round_half_away_ignores_binary_noise():
    # 1.5 * 1.8 = 2.7000000000000002
    assert round_half_away(1.5 * 1.8) == 2.7


def test_discounted_rate():
    assert discounted_rate(2.0, None) == 2.0
    assert discounted_rate(2.0, 0) == 2.0
    assert discounted_rate(2.0, -0.5) == 2.0
    assert discounted_rate(2.0, 0.1) == pytest.approx(1.8)
    assert discounted_rate(2.0, 1.5) == 0.0


def test_compute_costs_ninety_minutes_and_ten_kwh():
    costs = compute_costs(90, 10.0, 2.00, 0.40)
    assert costs.total_hours == 1.5
    assert costs.parking_cost == 3.00
    assert costs.energy_cost == 4.00
    assert costs.total == 7.00


def test_compute_costs_with_premium_parking_discount():
    costs = compute_costs(90, 10.0, discounted_rate(2.00, 0.10), 0.40)
    assert costs.parking_cost == 2.70
    assert costs.total == 6.70
