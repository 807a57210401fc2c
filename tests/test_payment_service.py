from datetime import datetime, timedelta, timezone

import pytest

from smartpark.errors import NotFound, Unauthorized
from smartpark.payment_service import PaymentService
from smartpark.states import UserTier

from conftest import T0, minutes


def _checkout(db, charging, checkout, queued_job, user_id, plate, spot_code, energy_kwh, end):
    session, _, job = queued_job(user_id, plate, spot_code)
    charging.start(db, job.id, now=T0 + minutes(10))
    charging.finish(db, job.id, energy_kwh, 80, now=T0 + minutes(40))
    return checkout.checkout(db, user_id, session.id, now=end)


def test_report_splits_totals_by_tier(db, sessions, charging, checkout, queued_job, standard_tariff):
    _checkout(db, charging, checkout, queued_job, "alice", "AB123CD", "P01", 10.0, T0 + minutes(90))
    sessions.ensure_user(db, "bob")
    sessions.update_user_tier(db, "bob", UserTier.PREMIUM, parking_discount=0.5)
    _checkout(db, charging, checkout, queued_job, "bob", "CD456EF", "P02", 5.0, T0 + minutes(120))

    report = PaymentService().report(db, T0, T0 + minutes(120))

    assert report.count == 2
    assert report.count_base == 1
    assert report.count_premium == 1
    assert report.total_parking_base == 3.00
    assert report.total_charging_base == 4.00
    assert report.total_parking_premium == 2.00
    assert report.total_charging_premium == 2.00
    assert report.total_parking == 5.00
    assert report.total_charging == 6.00
    assert report.grand_total == 11.00
    assert [row.total for row in report.rows] == [7.00, 4.00]


def test_report_range_excludes_outside_payments(db, checkout, open_session, standard_tariff):
    session = open_session()
    checkout.checkout(db, "alice", session.id, now=T0 + minutes(60))

    service = PaymentService()
    assert service.report(db, T0 + minutes(60), T0 + minutes(60)).count == 1
    assert service.report(db, T0 + minutes(61), T0 + timedelta(days=1)).count == 0


def test_qr_payload_and_image(db, checkout, open_session, standard_tariff):
    session = open_session()
    payment = checkout.checkout(db, "alice", session.id, now=T0 + minutes(60)).payment

    service = PaymentService()
    assert service.qr_payload(payment) == f"PAY:{payment.id}:2.00:{session.id}"
    assert service.generate_qr_code(payment).startswith("data:image/png;base64,")


def test_report_bounds_with_offset_are_converted(db, checkout, open_session, standard_tariff):
    session = open_session()
    checkout.checkout(db, "alice", session.id, now=T0 + minutes(60))
    plus_three = timezone(timedelta(hours=3))
    # T0 + 60 мин = 09:00 UTC = 12:00 +03:00
    paid_at = datetime(2025, 9, 1, 12, 0, tzinfo=plus_three)

    service = PaymentService()
    report = service.report(db, paid_at, paid_at)

    assert report.count == 1
    assert report.from_utc == T0 + minutes(60)
    assert service.report(db, paid_at + minutes(1), paid_at + minutes(30)).count == 0


def test_get_payment_checks_owner(db, checkout, open_session, standard_tariff):
    session = open_session()
    payment = checkout.checkout(db, "alice", session.id, now=T0 + minutes(60)).payment

    service = PaymentService()
    assert service.get_payment(db, "alice", payment.id).id == payment.id
    with pytest.raises(Unauthorized):
        service.get_payment(db, "mallory", payment.id)
    with pytest.raises(NotFound):
        service.get_payment(db, "alice", 999)
