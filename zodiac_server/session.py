"""
Session model: an ordered list of tabs, each showing one chart record or
two (primary + synastry partner).

The session is never empty: closing the last tab opens a fresh one. Each
tab slot holds a retained reference to its record; a record asking to be
destroyed is dropped from every tab, and it is torn down once the last
slot lets go.

Showing a tab applies the session's zodiac, house-system and aspect-set
selectors to its records. When the current tab holds two records the
aspect-set selector moves to the synastry companion of the single set,
and back again when it returns to one record.
"""

import enum
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from zodiac_server import aspect_sets
from zodiac_server.chart_record import EPOCH, UNTITLED, ChartRecord, ChartStore
from zodiac_server.config import SessionConfig
from zodiac_server.timezones import utc_offset_at

logger = logging.getLogger(__name__)


class SaveChoice(enum.Enum):
    SAVE = "save"
    DISCARD = "discard"
    CANCEL = "cancel"


def _refuse_to_discard(record):
    logger.warning("No save confirmation available for %r, keeping the tab open", record)
    return SaveChoice.CANCEL


class Tab:
    """One session slot: primary record plus optional synastry partner."""

    def __init__(self, records=None):
        self.records = list(records or [])

    def __len__(self):
        return len(self.records)

    def __iter__(self):
        return iter(self.records)

    @property
    def primary(self) -> Optional[ChartRecord]:
        return self.records[0] if self.records else None

    def label(self) -> str:
        return " | ".join(r.name + ("*" if r.has_unsaved_changes else "") for r in self.records)


class SessionManager:
    """
    Args:
        config: SessionConfig (ask-to-save policy, defaults, selectors)
        store: ChartStore for loading and saving records
        calculator: horoscope calculator given to every record the session creates
        confirm_save: callable(record) -> SaveChoice, asked before closing a
            tab whose primary record is dirty (only when config.ask_to_save)
        clock: callable() -> aware UTC datetime, for records with no moment
        utc_offset: callable(latitude, longitude, moment) -> int hours
    """

    def __init__(self, config: Optional[SessionConfig] = None,
                 store: Optional[ChartStore] = None,
                 calculator: Optional[Callable] = None,
                 confirm_save: Optional[Callable] = None,
                 clock: Optional[Callable] = None,
                 utc_offset: Optional[Callable] = None):
        self.config = config or SessionConfig()
        self.store = store or ChartStore(self.config.records_dir)
        self.calculator = calculator
        self.confirm_save = confirm_save or _refuse_to_discard
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._utc_offset = utc_offset or utc_offset_at

        self.zodiac = self.config.zodiac
        self.house_system = self.config.house_system
        self.aspect_set = self.config.aspect_set

        self.tabs = []
        self.current_index = -1
        self._destroy_watches = {}

        self.add_new_record()

    # --- lookup ------------------------------------------------------

    def __len__(self):
        return len(self.tabs)

    @property
    def current_tab(self) -> Tab:
        return self.tabs[self.current_index]

    def current_records(self) -> list:
        return list(self.current_tab.records)

    def index_of(self, name: str, primary_only: bool = False) -> int:
        """Index of the first tab holding a record with this key, or -1."""
        for i, tab in enumerate(self.tabs):
            records = tab.records[:1] if primary_only else tab.records
            if any(r.name == name for r in records):
                return i
        return -1

    def index_of_record(self, record: ChartRecord, primary_only: bool = False) -> int:
        for i, tab in enumerate(self.tabs):
            records = tab.records[:1] if primary_only else tab.records
            if any(r is record for r in records):
                return i
        return -1

    def tab_label(self, index: int) -> str:
        return self.tabs[index].label()

    # --- record ownership --------------------------------------------

    def new_record(self, name: str = UNTITLED) -> ChartRecord:
        return ChartRecord(name, calculator=self.calculator)

    def _hold(self, record: ChartRecord):
        record.retain()
        key = id(record)
        if key not in self._destroy_watches:
            self._destroy_watches[key] = record.on_destroy_request(self._on_destroy_request)

    def _let_go(self, record: ChartRecord):
        if self.index_of_record(record) == -1:
            watch = self._destroy_watches.pop(id(record), None)
            if watch is not None:
                watch.cancel()
        record.release()

    def _on_destroy_request(self, record: ChartRecord):
        logger.debug("Dropping %r from every tab", record)
        current = self.current_tab if self.tabs else None
        removed = []
        for tab in self.tabs:
            while any(r is record for r in tab.records):
                tab.records.remove(record)
                removed.append(record)

        self.tabs = [t for t in self.tabs if len(t)]
        for r in removed:
            self._let_go(r)

        if not self.tabs:
            self.current_index = -1
            self.add_new_record()
            return
        if current in self.tabs:
            self.current_index = self.tabs.index(current)
        else:
            self.current_index = min(self.current_index, len(self.tabs) - 1)
        self._show_current()

    # --- tabs --------------------------------------------------------

    def add_record(self, record: ChartRecord) -> int:
        """Open `record` in a new tab and make it current."""
        if record is None:
            raise ValueError("Cannot add an empty record")
        self._hold(record)
        self.tabs.append(Tab([record]))
        self.set_current_index(len(self.tabs) - 1)
        return self.current_index

    def add_new_record(self) -> int:
        return self.add_record(self.new_record())

    def open_record(self, name: str) -> ChartRecord:
        """
        Focus the tab whose primary record is `name`, or load `name` into
        the current tab's primary record. Raises ChartNotFound.
        """
        index = self.index_of(name, primary_only=True)
        if index != -1:
            self.set_current_index(index)
            return self.current_tab.primary

        record = self.current_tab.primary
        record.load(self.store, name)
        self._show_current()
        return record

    def open_in_new_tab(self, name: str) -> ChartRecord:
        record = ChartRecord.from_store(self.store, name, calculator=self.calculator)
        self.add_record(record)
        return record

    def open_as_second(self, name: str = "") -> ChartRecord:
        """Load `name` as the synastry partner of the current tab (empty name: a new record)."""
        tab = self.current_tab
        if len(tab) < 2:
            record = self.new_record()
            if name:
                record.load(self.store, name)
            self.attach_second(record)
        else:
            record = tab.records[1]
            if name:
                record.load(self.store, name)
        return record

    def attach_second(self, record: ChartRecord):
        """Share an existing record as the current tab's synastry partner."""
        tab = self.current_tab
        if len(tab) >= 2:
            raise ValueError("Current tab already holds two records")
        self._hold(record)
        tab.records.append(record)
        self._show_current()

    def remove_second(self) -> Optional[ChartRecord]:
        tab = self.current_tab
        if len(tab) < 2:
            return None
        record = tab.records.pop(1)
        self._let_go(record)
        self._show_current()
        return record

    def swap_tabs(self, i: int, j: int):
        self.tabs[i], self.tabs[j] = self.tabs[j], self.tabs[i]
        if self.current_index == i:
            self.current_index = j
        elif self.current_index == j:
            self.current_index = i

    def swap_current_records(self, i: int, j: int):
        records = self.current_tab.records
        records[i], records[j] = records[j], records[i]
        self._show_current()

    def set_current_index(self, index: int):
        if not 0 <= index < len(self.tabs):
            raise IndexError(f"No tab {index} (session has {len(self.tabs)})")
        self.current_index = index
        self._show_current()

    def next_tab(self):
        self.set_current_index((self.current_index + 1) % len(self.tabs))

    def close_tab(self, index: int) -> bool:
        """
        Close a tab. Returns False if the user cancelled.

        With ask_to_save on and a dirty primary record, confirm_save decides:
        SAVE writes it first, DISCARD drops the changes, CANCEL keeps the tab.
        """
        if not -len(self.tabs) <= index < len(self.tabs):
            raise IndexError(f"No tab {index} (session has {len(self.tabs)})")
        index %= len(self.tabs)
        tab = self.tabs[index]
        primary = tab.primary

        if self.config.ask_to_save and primary is not None and primary.has_unsaved_changes:
            choice = self.confirm_save(primary)
            if choice is SaveChoice.CANCEL:
                return False
            if choice is SaveChoice.SAVE:
                primary.save(self.store)

        del self.tabs[index]
        if index < self.current_index or self.current_index >= len(self.tabs):
            self.current_index -= 1

        for record in tab.records:
            self._let_go(record)

        if not self.tabs:
            self.current_index = -1
            self.add_new_record()
        else:
            self._show_current()
        return True

    def save_current(self):
        self.current_tab.primary.save(self.store)

    # --- selectors ---------------------------------------------------

    def set_selectors(self, zodiac: Optional[int] = None,
                      house_system: Optional[int] = None,
                      aspect_set: Optional[int] = None):
        """Change the session selectors and apply them to the current records."""
        if zodiac is not None:
            self.zodiac = zodiac
        if house_system is not None:
            self.house_system = house_system
        if aspect_set is not None:
            self.aspect_set = aspect_set
        self._apply_to_current()

    def setup_record(self, record: ChartRecord, keep_suspended: bool = False):
        """
        Give a record its defaults and the session selectors.

        A record that had no unsaved changes before stays clean. With
        keep_suspended the caller owns the matching resume_update().
        """
        was_dirty = record.has_unsaved_changes
        record.suspend_update()

        if record.gmt == EPOCH or record.location.is_null():
            now = self._clock()
            longitude, latitude, _ = self.config.default_location
            record.populate_defaults(
                now,
                self._utc_offset(latitude, longitude, now),
                self.config.default_location,
                self.config.default_location_name,
            )

        record.set_zodiac(self.zodiac)
        record.set_house_system(self.house_system)
        record.set_aspect_set(self.aspect_set)

        if not was_dirty:
            record.clear_unsaved_state()
        if not keep_suspended:
            record.resume_update()

    def _switch_aspect_set(self, record_count: int):
        target = aspect_sets.companion_set(self.aspect_set, record_count)
        if target is not None and target != self.aspect_set:
            logger.debug("Aspect set %s -> %s for %d record(s)",
                         self.aspect_set, target, record_count)
            self.aspect_set = target

    def _apply_to_current(self):
        records = self.current_records()
        for record in records:
            self.setup_record(record, keep_suspended=True)
        for record in records:
            record.resume_update()

    def _show_current(self):
        self._switch_aspect_set(len(self.current_tab))
        self._apply_to_current()
