from datetime import datetime, timezone

import pytest

from zodiac_server.chart_record import ChartRecord, ChartStore
from zodiac_server.config import SessionConfig
from zodiac_server.report import BATCH_ARGUMENTS
from zodiac_server.session import SessionManager

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """time()/sleep() pair for sched.scheduler that never really waits."""

    def __init__(self, start=1000.0):
        self.now = start
        self.slept = 0.0

    def time(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds
        self.slept += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return ChartStore(tmp_path / "user")


@pytest.fixture
def saved_record(store):
    def _save(name, **fields):
        record = ChartRecord(name)
        record.set_gmt(fields.get("gmt", datetime(1990, 3, 15, 18, 30, tzinfo=timezone.utc)))
        record.set_timezone(fields.get("timezone", -8))
        record.set_location(fields.get("location", (-122.4194, 37.7749, 0.0)))
        record.set_location_name(fields.get("location_name", "San Francisco, USA"))
        record.save(store)
        return record
    return _save


@pytest.fixture
def make_session(store):
    def _make(**kwargs):
        config = SessionConfig(records_dir=store.directory,
                               ask_to_save=kwargs.pop("ask_to_save", False))
        kwargs.setdefault("clock", lambda: NOW)
        kwargs.setdefault("utc_offset", lambda lat, lon, now: 3)
        return SessionManager(config, store=store, **kwargs)
    return _make


@pytest.fixture
def batch_args(tmp_path):
    """Sixteen batch arguments writing everything under tmp_path."""
    def _args(**overrides):
        values = {
            "record_name": "alex", "year": "1975", "month": "6", "day": "20",
            "hour": "22", "minute": "00", "gmt": "-3", "lat": "-35.484462",
            "lon": "-69.5797495", "place": "Malargue_Mendoza",
            "json_out": str(tmp_path / "out" / "data.json"), "ms": "15321321",
            "quit_seconds": "0", "capture_path": str(tmp_path / "capture.png"),
            "capture_resolution": "320x200", "hades_path": str(tmp_path / "hades.json"),
        }
        values.update(overrides)
        return [values[name] for name in BATCH_ARGUMENTS]
    return _args
