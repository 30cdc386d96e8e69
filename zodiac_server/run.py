"""
Command-line entry point.

Usage:
    zodiac-server NAME
        Open the saved chart NAME and print its text view.

    zodiac-server NAME YEAR MONTH DAY HOUR MINUTE GMT LAT LON PLACE \
        JSON_OUT MS QUIT_SECONDS CAPTURE_PATH WIDTHxHEIGHT HADES_JSON
        Batch mode: create chart NAME from the birth data (or load it if it
        already exists), write the JSON report to JSON_OUT, then capture the
        view to CAPTURE_PATH every second and exit after QUIT_SECONDS.

    Example:
        zodiac-server alex 1975 6 20 22 00 -3 -35.484462 -69.5797495 \
            Malargue_Mendoza data.json 15321321 10 capture.png 1280x720 hades.json

Any other number of arguments opens an empty session.
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from zodiac_server import config, view
from zodiac_server.capture import CaptureScheduler, save_snapshot
from zodiac_server.chart_record import ChartRecord, ChartStore
from zodiac_server.errors import (ChartNotFound, ChartUnreadable, MalformedArguments,
                                  ParseContractViolation)
from zodiac_server.report import BATCH_ARGUMENTS, BatchParams, generate_report
from zodiac_server.session import SessionManager
from zodiac_server.western import calculate_horoscope

logger = logging.getLogger(__name__)

_LEGACY_SUFFIX = ".dat"


def record_key(argument: str) -> str:
    """Record name from a CLI argument that may be a path to the record file."""
    name = Path(argument.replace("\\", "/")).name
    for suffix in (config.RECORD_SUFFIX, _LEGACY_SUFFIX):
        if name.endswith(suffix):
            return name[:-len(suffix)]
    return name


def ensure_record(store: ChartStore, batch: BatchParams) -> bool:
    """
    Create and save the batch record unless it already exists.

    Returns True if a new record was written. An existing record is used
    as-is; the birth data on the command line is ignored for it.
    """
    name = record_key(batch.record_name)
    if store.exists(name):
        logger.info("Using existing record %s", store.path_for(name))
        return False

    record = ChartRecord(name)
    record.suspend_update()
    record.set_gmt(batch.utc_datetime())
    record.set_timezone(batch.gmt_offset)
    record.set_location((batch.longitude, batch.latitude, 0.0))
    record.set_location_name(batch.location_label())
    record.resume_update()
    record.save(store)
    logger.info("Created record %s", store.path_for(name))
    return True


def capture_view(session: SessionManager, size: tuple, path):
    """Snapshot the current tab; a capture that cannot be written is skipped."""
    try:
        save_snapshot(view.render_lines(session.current_records()), size, path)
    except OSError as e:
        logger.warning("Could not save capture %s: %s", path, e)


def run_batch(session: SessionManager, batch: BatchParams,
              timefunc=time.monotonic, delayfunc=time.sleep) -> CaptureScheduler:
    """Report, then capture until the quit timer fires."""
    ensure_record(session.store, batch)
    session.open_record(record_key(batch.record_name))
    generate_report(session.current_tab.primary, batch)

    size = batch.capture_size
    scheduler = CaptureScheduler(
        capture=lambda: capture_view(session, size, batch.capture_path),
        quit_after=batch.quit_after,
        timefunc=timefunc,
        delayfunc=delayfunc,
    )
    scheduler.run()
    return scheduler


def open_single(session: SessionManager, argument: str):
    name = record_key(argument)
    if not session.store.exists(name):
        logger.warning("Could not open record %r", argument)
        return
    try:
        session.open_record(name)
    except ChartUnreadable as e:
        logger.warning("%s", e)
        return
    logger.info("Opened %s", name)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Headless chart reports and snapshots.",
        epilog="Batch arguments: " + " ".join(a.upper() for a in BATCH_ARGUMENTS),
    )
    parser.add_argument("args", nargs="*", metavar="ARG")
    parser.add_argument("--records-dir", dest="records_dir", type=Path,
                        default=config.RECORDS_DIR)
    parser.add_argument("--ask-to-save", dest="ask_to_save", action="store_true")
    parser.add_argument("--log-level", dest="log_level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def main(argv=None) -> int:
    options = build_parser().parse_args(argv)
    logging.basicConfig(level=options.log_level,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    args = options.args
    logger.debug("Count args: %d", len(args))

    if len(args) == len(BATCH_ARGUMENTS):
        try:
            batch = BatchParams.from_args(args)
        except MalformedArguments as e:
            logger.error("%s", e)
            return 2

    session = SessionManager(
        config.SessionConfig(records_dir=options.records_dir,
                             ask_to_save=options.ask_to_save),
        calculator=calculate_horoscope,
    )

    if len(args) == len(BATCH_ARGUMENTS):
        try:
            run_batch(session, batch)
        except (ChartNotFound, ChartUnreadable, ParseContractViolation, OSError) as e:
            logger.error("Batch report failed: %s", e)
            return 1
        return 0

    if len(args) == 1:
        open_single(session, args[0])
    else:
        logger.warning("Insufficient arguments (%d), opening an empty session", len(args))

    print(view.render_text(session.current_records()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
