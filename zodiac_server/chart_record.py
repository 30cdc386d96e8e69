"""
Chart records: one astrological subject (moment, place, system selectors).

A record batches its own change notifications. Observers subscribe with a
member filter and receive (record, members) where members is the union of
every logical group changed since the last notification:

    record.suspend_update()
    record.set_name("Alex")
    record.set_timezone(3)
    record.resume_update()      # one call, members == NAME | TIME | DIRTY

Ownership is explicit: every holder retain()s the record and release()s it
when done. request_destroy() only asks holders to let go; the final
release() tears the record down exactly once.
"""

import enum
import json
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, NamedTuple, Optional

from zodiac_server import config
from zodiac_server.errors import ChartNotFound, ChartUnreadable

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
UNTITLED = "Untitled"


class Members(enum.Flag):
    NONE = 0
    NAME = 1
    TIME = 2
    LOCATION = 4
    CONFIG = 8
    DIRTY = 16
    ALL = 31


# Members whose change invalidates the computed horoscope
_RECALC = Members.TIME | Members.LOCATION | Members.CONFIG


class Location(NamedTuple):
    longitude: float = 0.0
    latitude: float = 0.0
    elevation: float = 0.0

    def is_null(self) -> bool:
        return self.longitude == 0 and self.latitude == 0 and self.elevation == 0


def _as_location(value):
    if isinstance(value, Location):
        return value
    if isinstance(value, (tuple, list)) and len(value) == 3:
        return Location(*(float(v) for v in value))
    raise TypeError(f"location must be a (longitude, latitude, elevation) triple, got {value!r}")


def _as_utc(value):
    if not isinstance(value, datetime):
        raise TypeError(f"gmt must be a datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_int(value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected an integer, got {value!r}")
    return value


def _as_str(value):
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {value!r}")
    return value


# field -> (change group, coercion)
FIELDS = {
    "name":          (Members.NAME,     _as_str),
    "gmt":           (Members.TIME,     _as_utc),
    "timezone":      (Members.TIME,     _as_int),
    "location":      (Members.LOCATION, _as_location),
    "location_name": (Members.LOCATION, _as_str),
    "zodiac":        (Members.CONFIG,   _as_int),
    "house_system":  (Members.CONFIG,   _as_int),
    "aspect_set":    (Members.CONFIG,   _as_int),
}


# ============================================================
# OBSERVERS
# ============================================================

class Subscription:
    """Handle returned by ChartRecord.subscribe(); cancel() to stop receiving."""

    def __init__(self, owner: list, callback: Callable, members: Members):
        self._owner = owner
        self.callback = callback
        self.members = members
        owner.append(self)

    @property
    def active(self) -> bool:
        return self in self._owner

    def cancel(self):
        if self in self._owner:
            self._owner.remove(self)


# ============================================================
# RECORD
# ============================================================

class ChartRecord:
    """
    In-memory chart record.

    Args:
        name: display name, also the persistence key
        calculator: optional callable(record) -> horoscope, rerun after every
            flushed change to time, location or system selectors
    """

    def __init__(self, name: str = UNTITLED, calculator: Optional[Callable] = None):
        self._values = {
            "name": name,
            "gmt": EPOCH,
            "timezone": 0,
            "location": Location(),
            "location_name": "",
            "zodiac": config.DEFAULT_ZODIAC,
            "house_system": config.DEFAULT_HOUSE_SYSTEM,
            "aspect_set": config.DEFAULT_ASPECT_SET,
        }
        self.calculator = calculator
        self._horoscope = None
        self._dirty = False
        self._suspend_depth = 0
        self._pending = Members.NONE
        self._subscriptions = []
        self._destroy_watchers = []
        self._teardown_callbacks = []
        self._refs = 0
        self._destroy_requested = False
        self._destroyed = False

    def __repr__(self):
        return f"<ChartRecord {self.name!r}{'*' if self._dirty else ''}>"

    # --- accessors ---------------------------------------------------

    name = property(lambda self: self._values["name"])
    gmt = property(lambda self: self._values["gmt"])
    timezone = property(lambda self: self._values["timezone"])
    location = property(lambda self: self._values["location"])
    location_name = property(lambda self: self._values["location_name"])
    zodiac = property(lambda self: self._values["zodiac"])
    house_system = property(lambda self: self._values["house_system"])
    aspect_set = property(lambda self: self._values["aspect_set"])

    @property
    def local_time(self) -> datetime:
        return self.gmt.replace(tzinfo=None) + timedelta(hours=self.timezone)

    @property
    def has_unsaved_changes(self) -> bool:
        return self._dirty

    @property
    def update_suspend_depth(self) -> int:
        return self._suspend_depth

    @property
    def ref_count(self) -> int:
        return self._refs

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def destroy_requested(self) -> bool:
        return self._destroy_requested

    @property
    def horoscope(self):
        if self._horoscope is None and self.calculator is not None:
            self._horoscope = self.calculator(self)
        return self._horoscope

    # --- mutation ----------------------------------------------------

    def set_field(self, kind: str, value):
        """Set one field by name. Raises KeyError for unknown kinds, TypeError for bad values."""
        group, coerce = FIELDS[kind]
        value = coerce(value)
        if self._values[kind] == value:
            return
        self._values[kind] = value
        changed = group
        if not self._dirty:
            self._dirty = True
            changed |= Members.DIRTY
        self._changed(changed)

    def set_name(self, name):
        self.set_field("name", name)

    def set_gmt(self, gmt):
        self.set_field("gmt", gmt)

    def set_timezone(self, hours):
        self.set_field("timezone", hours)

    def set_location(self, location):
        self.set_field("location", location)

    def set_location_name(self, name):
        self.set_field("location_name", name)

    def set_zodiac(self, zodiac_id):
        self.set_field("zodiac", zodiac_id)

    def set_house_system(self, house_system_id):
        self.set_field("house_system", house_system_id)

    def set_aspect_set(self, set_id):
        self.set_field("aspect_set", set_id)

    def clear_unsaved_state(self):
        if self._dirty:
            self._dirty = False
            self._changed(Members.DIRTY)

    def populate_defaults(self, now: datetime, timezone_offset: int,
                          location, location_name: str = ""):
        """Fill in moment and place for a record that never had them set."""
        self.suspend_update()
        if self.gmt == EPOCH:
            self.set_gmt(now)
            self.set_timezone(timezone_offset)
        if self.location.is_null():
            self.set_location(location)
            self.set_location_name(location_name)
        self.resume_update()

    # --- update batching ---------------------------------------------

    def suspend_update(self):
        self._suspend_depth += 1

    def resume_update(self):
        if self._suspend_depth == 0:
            logger.warning("resume_update() on %r without a matching suspend_update()", self)
            return
        self._suspend_depth -= 1
        if self._suspend_depth == 0:
            self._flush()

    def _changed(self, members: Members):
        self._pending |= members
        if self._suspend_depth == 0:
            self._flush()

    def _flush(self):
        members, self._pending = self._pending, Members.NONE
        if not members:
            return
        if members & _RECALC:
            self._horoscope = None
            if self.calculator is not None:
                self._horoscope = self.calculator(self)
        for sub in list(self._subscriptions):
            if sub.members & members:
                sub.callback(self, members)

    def subscribe(self, callback: Callable, members: Members = Members.ALL) -> Subscription:
        """Call callback(record, members) on every notification touching `members`."""
        return Subscription(self._subscriptions, callback, members)

    # --- ownership ---------------------------------------------------

    def on_destroy_request(self, callback: Callable) -> Subscription:
        return Subscription(self._destroy_watchers, callback, Members.ALL)

    def on_teardown(self, callback: Callable) -> Subscription:
        return Subscription(self._teardown_callbacks, callback, Members.ALL)

    def retain(self):
        if self._destroyed:
            raise RuntimeError(f"{self!r} has already been torn down")
        self._refs += 1
        return self

    def release(self):
        if self._refs <= 0:
            raise RuntimeError(f"{self!r} released more times than retained")
        self._refs -= 1
        if self._refs == 0:
            self._teardown()

    def request_destroy(self):
        """Ask every holder to release this record."""
        if self._destroyed:
            return
        self._destroy_requested = True
        for sub in list(self._destroy_watchers):
            sub.callback(self)
        if self._refs == 0 and not self._destroyed:
            self._teardown()

    def _teardown(self):
        if self._destroyed:
            return
        self._destroyed = True
        logger.debug("tearing down %r", self)
        callbacks = list(self._teardown_callbacks)
        self._subscriptions.clear()
        self._destroy_watchers.clear()
        self._teardown_callbacks.clear()
        for sub in callbacks:
            sub.callback(self)

    # --- persistence -------------------------------------------------

    def to_dict(self) -> dict:
        loc = self.location
        return {
            "name": self.name,
            "gmt": self.gmt.isoformat(),
            "timezone": self.timezone,
            "location": [loc.longitude, loc.latitude, loc.elevation],
            "location_name": self.location_name,
            "zodiac": self.zodiac,
            "house_system": self.house_system,
            "aspect_set": self.aspect_set,
        }

    def save(self, store: "ChartStore"):
        store.write(self.name, self.to_dict())
        self.clear_unsaved_state()

    def load(self, store: "ChartStore", name: str):
        """Replace every field with the record persisted under `name`."""
        data = store.read(name)
        try:
            raw = {
                "name": data.get("name", name),
                "gmt": datetime.fromisoformat(data["gmt"]),
                "timezone": data["timezone"],
                "location": data["location"],
                "location_name": data.get("location_name", ""),
                "zodiac": data.get("zodiac", config.DEFAULT_ZODIAC),
                "house_system": data.get("house_system", config.DEFAULT_HOUSE_SYSTEM),
                "aspect_set": data.get("aspect_set", config.DEFAULT_ASPECT_SET),
            }
            incoming = {kind: FIELDS[kind][1](value) for kind, value in raw.items()}
        except (KeyError, TypeError, ValueError) as e:
            raise ChartUnreadable(name, store.path_for(name), f"bad field {e}") from e

        # Nothing is replaced unless every field decoded
        changed = Members.NONE
        for kind, value in incoming.items():
            group = FIELDS[kind][0]
            if self._values[kind] != value:
                self._values[kind] = value
                changed |= group
        if self._dirty:
            self._dirty = False
            changed |= Members.DIRTY
        self._changed(changed)

    @classmethod
    def from_store(cls, store: "ChartStore", name: str, calculator=None) -> "ChartRecord":
        record = cls(name, calculator=calculator)
        record.load(store, name)
        return record


# ============================================================
# STORE
# ============================================================

class ChartStore:
    """One JSON file per record under a single directory, keyed by name."""

    def __init__(self, directory=None):
        self.directory = Path(directory if directory is not None else config.RECORDS_DIR)

    def path_for(self, name: str) -> Path:
        return self.directory / f"{name}{config.RECORD_SUFFIX}"

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def names(self) -> list:
        if not self.directory.is_dir():
            return []
        found = [p.name[:-len(config.RECORD_SUFFIX)]
                 for p in self.directory.glob(f"*{config.RECORD_SUFFIX}")]
        return sorted(found, key=str.lower)

    def read(self, name: str) -> dict:
        path = self.path_for(name)
        if not path.is_file():
            raise ChartNotFound(name, path)
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ChartUnreadable(name, path, str(e)) from e
        if not isinstance(data, dict):
            raise ChartUnreadable(name, path, "not a JSON object")
        return data

    def write(self, name: str, data: dict):
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(name)
        fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
        logger.debug("saved chart record %s", path)
