from PIL import Image

from zodiac_server.capture import CaptureScheduler, render_snapshot, save_snapshot


def make_scheduler(clock, quit_after, **kwargs):
    frames = []
    scheduler = CaptureScheduler(
        capture=lambda: frames.append(clock.time()),
        quit_after=quit_after,
        timefunc=clock.time,
        delayfunc=clock.sleep,
        **kwargs,
    )
    return scheduler, frames


def test_captures_every_second_until_quit(clock):
    quits = []
    scheduler, frames = make_scheduler(clock, 3, on_quit=lambda: quits.append(clock.time()))
    scheduler.run()

    assert frames == [1001.0, 1002.0, 1003.0]
    assert scheduler.captures == 3
    assert scheduler.quit_fired
    assert quits == [1003.0]


def test_quit_zero_exits_before_first_capture(clock):
    scheduler, frames = make_scheduler(clock, 0)
    scheduler.run()
    assert frames == []
    assert scheduler.quit_fired
    assert clock.slept == 0


def test_stop_empties_the_queue(clock):
    scheduler, frames = make_scheduler(clock, 60)
    scheduler.start()
    scheduler.stop()
    scheduler.run()
    assert frames == []
    assert not scheduler.quit_fired


def test_snapshot_has_requested_size():
    lines = ["line %d" % i for i in range(200)]
    image = render_snapshot(lines, (320, 200))
    assert image.size == (320, 200)


def test_save_snapshot_writes_png(tmp_path):
    path = tmp_path / "shots" / "capture.png"
    save_snapshot(["Untitled", "2024-05-01"], (160, 90), path)
    with Image.open(path) as image:
        assert image.format == "PNG"
        assert image.size == (160, 90)
