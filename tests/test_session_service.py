from datetime import timedelta

import pytest

from smartpark import crud
from smartpark.errors import InvalidMeasurement, InvalidState, NotFound, SpotUnavailable, Unauthorized
from smartpark.states import SessionStatus, UserTier

from conftest import T0


def test_seed_is_done_once(db, sessions):
    assert [s.code for s in sessions.list_spots(db)] == ["P01", "P02", "P03"]
    assert sessions.seed_spots(db, ["X1"]) == 0
    assert sessions.seed_car_models(db) == 0
    assert len(crud.list_car_models(db)) == 5


def test_register_car_creates_user_and_normalizes_plate(db, sessions):
    model = crud.list_car_models(db)[0]

    car = sessions.register_car(db, "dave", " ab123cd ", model.id, 40)

    assert car.plate == "AB123CD"
    assert car.initial_soc_percent == 40
    assert crud.get_user(db, "dave").tier == UserTier.BASE
    assert [c.id for c in sessions.list_cars(db, "dave")] == [car.id]


def test_register_car_with_unknown_model(db, sessions):
    with pytest.raises(NotFound):
        sessions.register_car(db, "dave", "AB123CD", 999)


def test_register_car_with_bad_soc(db, sessions):
    model = crud.list_car_models(db)[0]
    with pytest.raises(InvalidMeasurement):
        sessions.register_car(db, "dave", "AB123CD", model.id, 120)


def test_open_session_occupies_spot(db, open_session):
    session = open_session()

    spot = crud.get_spot(db, session.spot_id)
    assert session.status == SessionStatus.OPEN
    assert session.start_utc == T0
    assert spot.is_occupied
    assert spot.sensor_last_update_utc == T0


def test_open_session_on_occupied_spot(db, open_session):
    open_session()
    with pytest.raises(SpotUnavailable):
        open_session(user_id="bob", plate="CD456EF", spot_code="P01")


def test_car_cannot_hold_two_sessions(db, sessions, open_session):
    session = open_session()
    other_spot = crud.get_spot_by_code(db, "P02")
    with pytest.raises(InvalidState):
        sessions.open_session(db, "alice", session.car_id, other_spot.id)


def test_open_session_with_foreign_car(db, sessions, open_session):
    session = open_session()
    other_spot = crud.get_spot_by_code(db, "P02")
    with pytest.raises(Unauthorized):
        sessions.open_session(db, "bob", session.car_id, other_spot.id)


def test_free_only_spots(db, sessions, open_session):
    open_session()
    assert [s.code for s in sessions.list_spots(db, free_only=True)] == ["P02", "P03"]


def test_update_user_tier(db, sessions):
    sessions.ensure_user(db, "erin")

    user = sessions.update_user_tier(db, "erin", UserTier.PREMIUM, 0.2, 0.1)

    assert user.tier == UserTier.PREMIUM
    assert user.parking_discount == 0.2
    assert user.charging_discount == 0.1


def test_update_tier_validation(db, sessions):
    with pytest.raises(NotFound):
        sessions.update_user_tier(db, "nobody", UserTier.PREMIUM)
    sessions.ensure_user(db, "erin")
    with pytest.raises(InvalidMeasurement):
        sessions.update_user_tier(db, "erin", UserTier.PREMIUM, parking_discount=1.5)


def test_delete_car_without_sessions(db, sessions):
    model = crud.list_car_models(db)[0]
    car = sessions.register_car(db, "dave", "AB123CD", model.id)

    sessions.delete_car(db, "dave", car.id)

    assert crud.get_car(db, car.id) is None
    assert sessions.list_cars(db, "dave") == []


def test_delete_car_with_closed_session_is_refused(db, sessions, checkout, open_session, standard_tariff):
    session = open_session()
    checkout.checkout(db, "alice", session.id, now=T0 + timedelta(minutes=30))

    with pytest.raises(InvalidState):
        sessions.delete_car(db, "alice", session.car_id)
    assert crud.get_car(db, session.car_id) is not None


def test_delete_car_ownership(db, sessions):
    model = crud.list_car_models(db)[0]
    car = sessions.register_car(db, "dave", "AB123CD", model.id)

    with pytest.raises(Unauthorized):
        sessions.delete_car(db, "mallory", car.id)
    with pytest.raises(NotFound):
        sessions.delete_car(db, "dave", 999)
    assert crud.get_car(db, car.id) is not None


def test_list_users_with_tiers(db, sessions):
    sessions.ensure_user(db, "erin", "erin@example.com")
    sessions.ensure_user(db, "adam", "adam@example.com")
    sessions.update_user_tier(db, "erin", UserTier.PREMIUM, 0.2, None)

    users = sessions.list_users(db)

    assert [u.id for u in users] == ["adam", "erin"]
    assert users[1].tier == UserTier.PREMIUM
    assert users[1].parking_discount == 0.2
