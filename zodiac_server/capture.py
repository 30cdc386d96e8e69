"""
Capture/quit timers for batch mode.

Two independent timers share one single-threaded event queue:

- capture: every second, redraw the current view into an image file
  (overwritten each time, the latest tick wins)
- quit: once, after the requested number of seconds, stop everything

When both fall on the same instant the capture runs first, so a run of
N seconds leaves the N-th frame on disk.
"""

import logging
import sched
import time
from pathlib import Path
from typing import Callable, Optional

from PIL import Image, ImageDraw, ImageFont

from zodiac_server.config import CAPTURE_PERIOD_SECONDS

logger = logging.getLogger(__name__)

BACKGROUND = (31, 36, 48)
FOREGROUND = (241, 245, 249)
MARGIN = 12

_CAPTURE_PRIORITY = 1
_QUIT_PRIORITY = 2


# ============================================================
# SNAPSHOT
# ============================================================

def render_snapshot(lines: list, size: tuple) -> Image.Image:
    """Draw text lines top-down on a canvas of exactly `size` pixels."""
    image = Image.new("RGB", size, BACKGROUND)
    draw = ImageDraw.Draw(image)
    font = ImageFont.load_default()
    line_height = font.getbbox("Ag")[3] + 4

    y = MARGIN
    for line in lines:
        if y + line_height > size[1]:
            break
        draw.text((MARGIN, y), line, fill=FOREGROUND, font=font)
        y += line_height
    return image


def save_snapshot(lines: list, size: tuple, path):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    render_snapshot(lines, size).save(path)


# ============================================================
# SCHEDULER
# ============================================================

class CaptureScheduler:
    """
    Args:
        capture: called on every capture tick
        quit_after: seconds until the quit tick
        on_quit: called once when the quit tick fires
        period: capture interval in seconds
        timefunc / delayfunc: clock for the event queue (see sched.scheduler)
    """

    def __init__(self, capture: Callable[[], None], quit_after: float,
                 on_quit: Optional[Callable[[], None]] = None,
                 period: float = CAPTURE_PERIOD_SECONDS,
                 timefunc=time.monotonic, delayfunc=time.sleep):
        self.capture = capture
        self.quit_after = quit_after
        self.on_quit = on_quit
        self.period = period
        self.captures = 0
        self.quit_fired = False
        self._scheduler = sched.scheduler(timefunc, delayfunc)
        self._timefunc = timefunc
        self._started_at = None

    def start(self):
        self._started_at = self._timefunc()
        self._schedule_capture()
        self._scheduler.enterabs(self._started_at + self.quit_after,
                                 _QUIT_PRIORITY, self._quit)

    def run(self):
        """Process ticks until the quit tick (or stop()) empties the queue."""
        if self._started_at is None:
            self.start()
        self._scheduler.run()

    def stop(self):
        for event in list(self._scheduler.queue):
            self._scheduler.cancel(event)

    def _schedule_capture(self):
        # Ticks are anchored to the start time so they never drift
        when = self._started_at + (self.captures + 1) * self.period
        self._scheduler.enterabs(when, _CAPTURE_PRIORITY, self._tick)

    def _tick(self):
        self.captures += 1
        try:
            self.capture()
        finally:
            self._schedule_capture()

    def _quit(self):
        logger.info("Quit timer fired after %s s (%d captures)", self.quit_after, self.captures)
        self.quit_fired = True
        self.stop()
        if self.on_quit is not None:
            self.on_quit()
