import pytest

from exchange.errors import PersistenceError
from storage.database import Database


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "state.db"))
    database.connect()
    yield database
    database.close()


def test_state_round_trip(db):
    assert db.get_state("missing") is None
    db.set_state("mode", "paper")
    db.set_state("mode", "live")
    assert db.get_state("mode") == "live"


def test_snapshot_round_trip(db):
    document = {"btc": {"1h": [{"time": 1, "open": "1.5", "high": "2", "low": "1", "close": "1.75"}]}}
    db.save_snapshot("snap", document)
    assert db.load_snapshot("snap") == document
    assert db.load_snapshot("other") is None


def test_snapshot_survives_reopen(tmp_path):
    path = str(tmp_path / "state.db")
    first = Database(path)
    first.connect()
    first.save_snapshot("snap", {"eth": {}})
    first.close()

    second = Database(path)
    second.connect()
    assert second.load_snapshot("snap") == {"eth": {}}
    second.close()


@pytest.mark.parametrize("raw", ["{broken", "[1, 2]", "42"])
def test_corrupt_snapshot_raises(db, raw):
    db.set_state("snap", raw)
    with pytest.raises(PersistenceError):
        db.load_snapshot("snap")


def test_unserializable_snapshot_raises(db):
    with pytest.raises(PersistenceError):
        db.save_snapshot("snap", {"bad": object()})


def test_not_connected_raises():
    db = Database(":memory:")
    with pytest.raises(PersistenceError):
        db.get_state("x")
    with pytest.raises(PersistenceError):
        db.set_state("x", "y")


def test_unopenable_path_raises(tmp_path):
    db = Database(str(tmp_path / "missing" / "dir" / "state.db"))
    with pytest.raises(PersistenceError):
        db.connect()
