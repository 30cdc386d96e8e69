import logging
from datetime import datetime, timedelta, timezone

import pytest

from zodiac_server.chart_record import EPOCH, ChartRecord, Location, Members
from zodiac_server.errors import ChartNotFound, ChartUnreadable


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, record, members):
        self.calls.append(members)


def test_suspended_changes_arrive_as_one_notification():
    record = ChartRecord("a")
    seen = Recorder()
    record.subscribe(seen)

    record.suspend_update()
    record.set_name("Alex")
    record.set_timezone(3)
    assert seen.calls == []
    record.resume_update()

    assert seen.calls == [Members.NAME | Members.TIME | Members.DIRTY]


def test_immediate_notification_when_not_suspended():
    record = ChartRecord("a")
    seen = Recorder()
    record.subscribe(seen)
    record.set_timezone(2)
    record.set_timezone(5)
    assert seen.calls == [Members.TIME | Members.DIRTY, Members.TIME]


def test_nested_suspend_flushes_on_outermost_resume():
    record = ChartRecord("a")
    seen = Recorder()
    record.subscribe(seen)

    record.suspend_update()
    record.suspend_update()
    record.set_location((10.0, 20.0, 0.0))
    record.resume_update()
    assert seen.calls == []
    assert record.update_suspend_depth == 1
    record.resume_update()
    assert seen.calls == [Members.LOCATION | Members.DIRTY]


def test_unchanged_value_is_a_no_op():
    record = ChartRecord("a")
    seen = Recorder()
    record.subscribe(seen)
    record.set_name("a")
    record.set_zodiac(record.zodiac)
    assert seen.calls == []
    assert not record.has_unsaved_changes


def test_member_filter_and_cancel():
    record = ChartRecord("a")
    names = Recorder()
    sub = record.subscribe(names, Members.NAME)

    record.set_house_system(2)
    assert names.calls == []
    record.set_name("b")
    assert names.calls == [Members.NAME]

    sub.cancel()
    assert not sub.active
    record.set_name("c")
    assert names.calls == [Members.NAME]


def test_bad_field_values():
    record = ChartRecord("a")
    with pytest.raises(TypeError):
        record.set_timezone("3")
    with pytest.raises(TypeError):
        record.set_zodiac(True)
    with pytest.raises(TypeError):
        record.set_location((1.0, 2.0))
    with pytest.raises(KeyError):
        record.set_field("colour", "red")


def test_naive_gmt_is_taken_as_utc():
    record = ChartRecord("a")
    record.set_gmt(datetime(2000, 1, 1, 12, 0))
    assert record.gmt == datetime(2000, 1, 1, 12, 0, tzinfo=timezone.utc)
    record.set_timezone(-5)
    assert record.local_time == datetime(2000, 1, 1, 7, 0)


def test_calculator_runs_once_per_flush():
    calls = []

    def calculator(record):
        calls.append(record.gmt)
        return object()

    record = ChartRecord("a", calculator=calculator)
    record.suspend_update()
    record.set_gmt(datetime(2001, 1, 1, tzinfo=timezone.utc))
    record.set_location((1.0, 2.0, 0.0))
    record.set_aspect_set(3)
    record.resume_update()
    assert len(calls) == 1

    record.set_name("renamed")
    assert len(calls) == 1
    assert record.horoscope is not None
    assert len(calls) == 1


def test_release_tears_down_once():
    record = ChartRecord("a")
    torn = []
    record.on_teardown(torn.append)

    record.retain()
    record.retain()
    record.release()
    assert not record.destroyed
    record.release()
    assert record.destroyed
    assert torn == [record]

    with pytest.raises(RuntimeError):
        record.release()
    with pytest.raises(RuntimeError):
        record.retain()


def test_destroy_request_waits_for_holders():
    record = ChartRecord("a")
    torn = []
    record.on_teardown(torn.append)
    record.retain()

    asked = []
    record.on_destroy_request(asked.append)
    record.request_destroy()
    assert asked == [record]
    assert record.destroy_requested
    assert not record.destroyed

    record.release()
    assert torn == [record]


def test_destroy_request_with_holders_releasing():
    record = ChartRecord("a")
    torn = []
    record.on_teardown(torn.append)
    record.retain()
    record.on_destroy_request(lambda r: r.release())

    record.request_destroy()
    record.request_destroy()
    assert torn == [record]


def test_unheld_record_is_torn_down_on_request():
    record = ChartRecord("a")
    torn = []
    record.on_teardown(torn.append)
    record.request_destroy()
    assert record.destroyed
    assert torn == [record]


def test_save_and_load(store):
    record = ChartRecord("Alex")
    record.set_gmt(datetime(1975, 6, 21, 1, 0, tzinfo=timezone.utc))
    record.set_timezone(-3)
    record.set_location((-69.5797495, -35.484462, 0.0))
    record.set_location_name("Malargüe")
    assert record.has_unsaved_changes
    record.save(store)
    assert not record.has_unsaved_changes
    assert store.names() == ["Alex"]

    other = ChartRecord()
    other.set_name("scratch")
    seen = Recorder()
    other.subscribe(seen)
    other.load(store, "Alex")

    assert other.to_dict() == record.to_dict()
    assert not other.has_unsaved_changes
    assert seen.calls == [Members.NAME | Members.TIME | Members.LOCATION | Members.DIRTY]


def test_load_missing_record(store):
    with pytest.raises(ChartNotFound):
        ChartRecord.from_store(store, "nobody")
    with pytest.raises(FileNotFoundError):
        store.read("nobody")


def test_populate_defaults_only_fills_unset_fields():
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    fresh = ChartRecord("a")
    fresh.populate_defaults(now, 3, (37.6184, 55.7512, 0.0), "Moscow, Russia")
    assert fresh.gmt == now
    assert fresh.timezone == 3
    assert fresh.location == Location(37.6184, 55.7512, 0.0)
    assert fresh.location_name == "Moscow, Russia"

    placed = ChartRecord("b")
    placed.set_location((1.0, 2.0, 0.0))
    placed.populate_defaults(now, 3, (37.6184, 55.7512, 0.0), "Moscow, Russia")
    assert placed.location == Location(1.0, 2.0, 0.0)
    assert placed.location_name == ""
    assert placed.gmt == now
    assert placed.gmt - EPOCH > timedelta(0)


def test_resume_without_suspend_warns(caplog):
    record = ChartRecord("a")
    with caplog.at_level(logging.WARNING):
        record.resume_update()
    assert record.update_suspend_depth == 0
    assert "without a matching suspend_update" in caplog.text


def test_load_corrupt_record(store):
    store.directory.mkdir(parents=True)
    store.path_for("broken").write_text("{not json", encoding="utf-8")
    with pytest.raises(ChartUnreadable):
        store.read("broken")
    with pytest.raises(OSError):
        ChartRecord.from_store(store, "broken")


def test_load_record_with_missing_field_changes_nothing(store, saved_record):
    saved_record("alex")
    data = store.read("alex")
    del data["timezone"]
    store.write("partial", data)

    record = ChartRecord("keep")
    seen = Recorder()
    record.subscribe(seen)
    with pytest.raises(ChartUnreadable):
        record.load(store, "partial")
    assert record.name == "keep"
    assert record.gmt == EPOCH
    assert seen.calls == []
