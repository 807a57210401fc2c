import pytest

from smartpark import crud
from smartpark.bot_ledger import BotLedger
from smartpark.config import settings

from conftest import T0, bot_of, minutes


@pytest.fixture
def spots(db, sessions):
    return {spot.code: spot.id for spot in crud.list_spots(db)}


def test_ensure_bot_creates_single_idle_bot(db, ledger):
    bot = ledger.ensure_bot(db, T0 + minutes(5))

    assert bot.id == ledger.bot_id
    assert not bot.is_busy
    assert bot.current_spot_id is None
    assert bot.max_power_kw == settings.bot_max_power_kw
    assert bot.last_update_utc == T0


def test_acquire_is_exclusive(db, ledger, spots):
    assert ledger.try_acquire(db, spots["P01"], T0)
    db.commit()

    assert not ledger.try_acquire(db, spots["P02"], T0 + minutes(1))
    db.commit()

    bot = bot_of(db, ledger)
    assert bot.is_busy
    assert bot.current_spot_id == spots["P01"]


def test_release_is_idempotent(db, ledger, spots):
    ledger.try_acquire(db, spots["P01"], T0)
    ledger.release(db, T0 + minutes(10))
    ledger.release(db, T0 + minutes(11))
    db.commit()

    bot = bot_of(db, ledger)
    assert not bot.is_busy
    assert bot.current_spot_id is None
    assert bot.last_update_utc == T0 + minutes(11)


def test_ledgers_share_bot_record(db, ledger, spots):
    other = BotLedger()
    assert ledger.try_acquire(db, spots["P03"], T0)
    db.commit()
    assert other.is_busy(db)
    assert not other.try_acquire(db, spots["P01"], T0)
