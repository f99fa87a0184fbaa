# resolver.py
"""Resolves a CE's published work status and work type for a given day.

Published schedules live at ``{data_root}/workSchedules`` as periods keyed by
an opaque id. Several periods may cover the same day; when they disagree on a
CE's status the resolver reports a conflict instead of picking one.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from constants import (CONFLICT_STATUS, DAILY_WORK_STATUSES, DEFAULT_DAY_STATUS, DEFAULT_WORK_TYPE, ERROR_WORK_TYPE,
                       ROLE_ADMIN, ROLE_VIEWER, STATUS_COLORS, STATUS_TO_BADGE_MAP, WORK_TIME_DEFINITIONS)
from date_utils import date_in_range
from errors import StoreError
from store import join_path


@dataclass
class ScheduleContext:
    store: Any
    data_root: str
    viewer_role: str = ROLE_VIEWER
    ready_timeout: Optional[float] = 5.0

    @property
    def is_admin(self):
        return self.viewer_role == ROLE_ADMIN


@dataclass(frozen=True)
class WorkStatus:
    status: Optional[str]
    work_type: str
    desired: bool = False

    def to_dict(self):
        return {"status": self.status, "workType": self.work_type, "desired": self.desired}


CONFLICT = WorkStatus(CONFLICT_STATUS, ERROR_WORK_TYPE, False)


def _as_number(value):
    # publishedAt and createdAt are epoch milliseconds; anything else counts as 0.
    if isinstance(value, bool): return 0
    if isinstance(value, (int, float)): return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def _as_text(value):
    return value if isinstance(value, str) and value else None


def _as_dict(value):
    return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class WorkTypeOverride:
    work_type: Optional[str]
    start_date: Optional[str]
    end_date: Optional[str]
    created_at: float = 0

    def covers(self, date_key):
        return date_in_range(date_key, self.start_date, self.end_date)

    @classmethod
    def from_dict(cls, data):
        return cls(work_type=_as_text(data.get('workType')), start_date=_as_text(data.get('startDate')),
                   end_date=_as_text(data.get('endDate')), created_at=_as_number(data.get('createdAt')))


@dataclass(frozen=True)
class SingleOverride:
    override: WorkTypeOverride

    def resolve(self, date_key):
        if self.override.start_date and self.override.covers(date_key):
            return self.override.work_type
        return None


@dataclass(frozen=True)
class OverrideHistory:
    overrides: Tuple[WorkTypeOverride, ...]

    def resolve(self, date_key):
        valid = [o for o in self.overrides if o.covers(date_key)]
        if not valid: return None
        # max() keeps the first of equal createdAt values, i.e. stored order.
        return max(valid, key=lambda o: o.created_at).work_type


Override = Union[SingleOverride, OverrideHistory]


def parse_override(raw):
    if isinstance(raw, list):
        return OverrideHistory(tuple(WorkTypeOverride.from_dict(o) for o in raw if isinstance(o, dict)))
    if isinstance(raw, dict):
        return SingleOverride(WorkTypeOverride.from_dict(raw))
    return None


def status_legend():
    """Display details for every coded status a published schedule can carry."""
    return [{"status": status, "badge": STATUS_TO_BADGE_MAP.get(status, ''), "color": STATUS_COLORS.get(status),
             **WORK_TIME_DEFINITIONS.get(status, {})} for status in DAILY_WORK_STATUSES]


def day_status(entry):
    custom_text = entry.get('customText')
    if isinstance(custom_text, str) and custom_text.strip():
        return custom_text.strip()
    return _as_text(entry.get('status'))


@dataclass
class WorkSchedulePeriod:
    key: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    published_at: float = 0
    is_visible: bool = True
    ce_list: List[dict] = field(default_factory=list)
    schedule_data: Dict[str, Dict[str, dict]] = field(default_factory=dict)
    work_type_overrides: Dict[str, Override] = field(default_factory=dict)

    @classmethod
    def from_snapshot(cls, key, data):
        metadata = _as_dict(data.get('metadata'))
        ce_list = data.get('ceList') or []
        if isinstance(ce_list, dict): ce_list = list(ce_list.values())
        if not isinstance(ce_list, list): ce_list = []
        overrides = {}
        for ce_id, raw in _as_dict(data.get('workTypeOverrides')).items():
            parsed = parse_override(raw)
            if parsed is not None: overrides[ce_id] = parsed
        return cls(key=key, start_date=_as_text(metadata.get('startDate')),
                   end_date=_as_text(metadata.get('endDate')), published_at=_as_number(metadata.get('publishedAt')),
                   is_visible=metadata.get('isVisible') is not False,
                   ce_list=[ce for ce in ce_list if isinstance(ce, dict)],
                   schedule_data=_as_dict(data.get('scheduleData')), work_type_overrides=overrides)

    def covers(self, date_key):
        return date_in_range(date_key, self.start_date, self.end_date)

    def find_ce(self, ce_id):
        return next((ce for ce in self.ce_list if ce.get('id') == ce_id), None)

    def day_entry(self, ce_id, date_key):
        entry = _as_dict(self.schedule_data.get(ce_id)).get(date_key)
        return entry if isinstance(entry, dict) else None


class PublishedScheduleResolver:
    def __init__(self, context: ScheduleContext):
        self.context = context
        self.published_schedules: List[WorkSchedulePeriod] = []
        self.cache: Dict[Tuple[str, str], Optional[WorkStatus]] = {}
        self.is_initialized = False
        self._refresh_hook: Optional[Callable[[], Any]] = None

    @property
    def path(self):
        return join_path(self.context.data_root, 'workSchedules')

    def init(self):
        if not self.context.store.wait_until_ready(self.context.ready_timeout):
            logging.error(f"Published schedule resolver: store not ready after {self.context.ready_timeout}s.")
            return False
        self.load_published_schedules()
        self.setup_realtime_updates()
        self.is_initialized = True
        logging.info(f"Published schedule resolver ready ({self.context.viewer_role}).")
        return True

    def load_published_schedules(self):
        try:
            data = _as_dict(self.context.store.read_once(self.path))
        except StoreError as e:
            logging.error(f"Failed to load published schedules: {e}", exc_info=True)
            return False
        periods = [WorkSchedulePeriod.from_snapshot(key, value) for key, value in data.items() if isinstance(value, dict)]
        if not self.context.is_admin:
            periods = [p for p in periods if p.is_visible]
        periods.sort(key=lambda p: p.published_at, reverse=True)
        self.published_schedules, self.cache = periods, {}
        logging.info(f"Loaded {len(periods)} published schedules.")
        return True

    def setup_realtime_updates(self):
        self.context.store.subscribe(self.path, self._on_schedules_changed)

    def teardown(self):
        self.context.store.unsubscribe(self.path, self._on_schedules_changed)

    def register_refresh_hook(self, callback):
        self._refresh_hook = callback

    def _on_schedules_changed(self, _value):
        logging.info("Published schedules changed, reloading.")
        self.load_published_schedules()
        if callable(self._refresh_hook):
            self._refresh_hook()

    def get_ce_work_status_for_date(self, ce_id, date_key) -> Optional[WorkStatus]:
        # Reloads swap both references, so a lookup never mixes two loads.
        cache, periods = self.cache, self.published_schedules
        cache_key = (ce_id, date_key)
        if cache_key in cache:
            return cache[cache_key]
        result = self._resolve(ce_id, date_key, periods)
        cache[cache_key] = result
        return result

    def _resolve(self, ce_id, date_key, periods):
        relevant = [p for p in periods if p.covers(date_key)]
        if not relevant:
            return None
        if len(relevant) > 1:
            conflicts = self.check_conflicts(ce_id, date_key, relevant)
            if conflicts:
                logging.warning(f"Published schedule conflict for {ce_id} on {date_key}: "
                                f"{conflicts} across {[p.key for p in relevant]}")
                return CONFLICT
        schedule = relevant[0]
        ce = schedule.find_ce(ce_id)
        if ce is None:
            return None
        entry = schedule.day_entry(ce_id, date_key)
        if entry is None:
            return None
        work_type = self.get_effective_work_type(ce_id, date_key, ce, schedule.work_type_overrides)
        return WorkStatus(day_status(entry), work_type, bool(entry.get('desired') or False))

    def check_conflicts(self, ce_id, date_key, periods):
        entries = [period.day_entry(ce_id, date_key) for period in periods]
        statuses = [day_status(entry) for entry in entries if entry is not None]
        unique = list(dict.fromkeys(s for s in statuses if s is not None))
        return unique if len(unique) > 1 else []

    def get_effective_work_type(self, ce_id, date_key, ce, work_type_overrides):
        override = (work_type_overrides or {}).get(ce_id)
        if override is not None:
            work_type = override.resolve(date_key)
            if work_type: return work_type
        return _as_text(_as_dict(ce).get('workType')) or DEFAULT_WORK_TYPE

    def apply_ce_status_to_list(self, date_key, rows):
        """Sets category, badge and work type on every displayed roster row."""
        for row in rows:
            default_type = row.ce.get('workType') or DEFAULT_WORK_TYPE
            row.category, row.badge, row.badge_color = None, None, None
            work_status = self.get_ce_work_status_for_date(row.ce.get('id'), date_key)
            if work_status is None:
                row.category = f"worktype-{default_type.lower()}"
                row.work_type = default_type
                continue
            if work_status.work_type == ERROR_WORK_TYPE:
                row.category = 'worktype-error'
            else:
                row.category = f"worktype-{work_status.work_type.lower()}"
            if work_status.status and work_status.status != DEFAULT_DAY_STATUS:
                row.badge = work_status.status
                row.badge_color = STATUS_COLORS.get(work_status.status)
            row.work_type = work_status.work_type
