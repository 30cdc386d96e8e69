import json

import pytest
from PIL import Image

from zodiac_server import run
from zodiac_server.report import BatchParams
from zodiac_server.western import calculate_horoscope


@pytest.fixture
def records_dir(store):
    return str(store.directory)


def test_batch_run_writes_report_and_record(tmp_path, store, records_dir, batch_args):
    (tmp_path / "hades.json").write_text('{"uranian": ["Hades"]}', encoding="utf-8")

    assert run.main(["--records-dir", records_dir] + batch_args()) == 0

    report = json.loads((tmp_path / "out" / "data.json").read_text(encoding="utf-8"))
    assert list(report) == ["params", "psc", "asp", "pc", "jsonHades"]
    assert report["params"]["n"] == "alex"
    assert report["params"]["ciudad"] == "Malargue Mendoza"
    assert report["psc"]["sun"]["s"] in ("gemini", "cancer")
    assert report["psc"]["sun"]["rh"] == report["psc"]["sun"]["rh"].lower()
    assert list(report["pc"]) == [f"h{i}" for i in range(1, 13)]
    assert all(key.startswith("asp") for key in report["asp"])
    assert report["jsonHades"] == {"uranian": ["Hades"]}

    saved = store.read("alex")
    assert saved["timezone"] == -3
    assert saved["gmt"] == "1975-06-21T01:00:00+00:00"
    assert saved["location_name"] == "Malargue Mendoza\nlat: -35.484462\nlon: -69.5797495"


def test_batch_run_uses_existing_record(tmp_path, store, records_dir, saved_record, batch_args):
    saved_record("alex")
    assert run.main(["--records-dir", records_dir] + batch_args()) == 0

    assert store.read("alex")["timezone"] == -8
    report = json.loads((tmp_path / "out" / "data.json").read_text(encoding="utf-8"))
    assert report["params"]["gmt"] == "-3"
    assert report["jsonHades"] == ""


def test_malformed_batch_arguments_write_nothing(tmp_path, store, records_dir, batch_args):
    args = batch_args(capture_resolution="1280by720")
    assert run.main(["--records-dir", records_dir] + args) == 2
    assert not (tmp_path / "out").exists()
    assert not store.exists("alex")


def test_single_record_missing(records_dir, capsys):
    assert run.main(["--records-dir", records_dir, "nobody"]) == 0
    assert capsys.readouterr().out.startswith("Untitled")


def test_single_record_opens_and_prints(records_dir, saved_record, capsys):
    saved_record("alex")
    assert run.main(["--records-dir", records_dir, "alex.json"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("alex\n")
    assert "San Francisco, USA" in out
    assert "Houses (Placidus, Tropical):" in out


def test_other_arity_opens_empty_session(records_dir, capsys):
    assert run.main(["--records-dir", records_dir, "a", "b"]) == 0
    assert "Untitled" in capsys.readouterr().out


@pytest.mark.parametrize("argument, key", [
    ("alex", "alex"),
    ("user/bob.json", "bob"),
    ("C:\\charts\\carol.dat", "carol"),
])
def test_record_key(argument, key):
    assert run.record_key(argument) == key


def test_run_batch_captures_until_quit(tmp_path, make_session, batch_args, clock):
    batch = BatchParams.from_args(batch_args(quit_seconds="2"))
    session = make_session(calculator=calculate_horoscope)

    scheduler = run.run_batch(session, batch, timefunc=clock.time, delayfunc=clock.sleep)

    assert scheduler.captures == 2
    assert scheduler.quit_fired
    assert session.current_tab.primary.name == "alex"
    with Image.open(tmp_path / "capture.png") as image:
        assert image.size == (320, 200)


def test_batch_run_with_corrupt_record_fails_cleanly(tmp_path, store, records_dir, batch_args):
    store.directory.mkdir(parents=True)
    store.path_for("alex").write_text("{not json", encoding="utf-8")

    assert run.main(["--records-dir", records_dir] + batch_args()) == 1
    assert not (tmp_path / "out").exists()


def test_single_corrupt_record_opens_empty_session(store, records_dir, capsys):
    store.directory.mkdir(parents=True)
    store.path_for("alex").write_text("[]", encoding="utf-8")

    assert run.main(["--records-dir", records_dir, "alex"]) == 0
    assert capsys.readouterr().out.startswith("Untitled")


def test_unwritable_capture_does_not_stop_the_run(tmp_path, records_dir, batch_args):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    args = batch_args(quit_seconds="1", capture_path=str(blocker / "capture.png"))

    assert run.main(["--records-dir", records_dir] + args) == 0
    assert (tmp_path / "out" / "data.json").is_file()


def test_skipped_captures_keep_the_schedule(tmp_path, make_session, batch_args, clock):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    batch = BatchParams.from_args(batch_args(quit_seconds="2",
                                             capture_path=str(blocker / "capture.png")))
    session = make_session(calculator=calculate_horoscope)

    scheduler = run.run_batch(session, batch, timefunc=clock.time, delayfunc=clock.sleep)

    assert scheduler.captures == 2
    assert scheduler.quit_fired
