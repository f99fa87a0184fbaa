# roster.py

import logging
import random
import string
from dataclasses import dataclass
from typing import Optional

from constants import CE_LIST_INITIAL, DEFAULT_WORK_TYPE, WEEKDAY_KEYS, WORK_TYPE_CLASSIFICATIONS
from date_utils import parse_date_key
from errors import NotFoundError, ValidationError
from store import join_path, now_ms

SORT_KEYS = {
    'name': lambda ce: ce.get('name') or '',
    'workType': lambda ce: ce.get('workType') or '',
    'department': lambda ce: ce.get('department') or '\uffff',
}


def _empty_week():
    return {day: '' for day in WEEKDAY_KEYS}


def _random_suffix(length=9):
    return ''.join(random.choices(string.ascii_lowercase + string.digits, k=length))


def normalize_work_type(work_type):
    work_type = (work_type or DEFAULT_WORK_TYPE).upper()
    return work_type if work_type in WORK_TYPE_CLASSIFICATIONS else DEFAULT_WORK_TYPE


class CEManager:
    def __init__(self, store, data_root):
        self.store = store
        self.path = join_path(data_root, 'ceList')

    def _extract_list(self, raw):
        # Old data stored the list directly, current data wraps it as {list: [...]}.
        if isinstance(raw, list): return raw
        if isinstance(raw, dict) and isinstance(raw.get('list'), list): return raw['list']
        if isinstance(raw, dict): return [v for k, v in raw.items() if isinstance(v, dict)]
        return []

    def normalize(self, ce_list):
        stamp = now_ms()
        normalized = []
        for index, ce in enumerate(ce for ce in ce_list if isinstance(ce, dict)):
            record = {'id': ce.get('id') or f"normalized_ce_{index}_{stamp}", **ce}
            record['workType'] = normalize_work_type(ce.get('workType'))
            record['status'] = {**_empty_week(), **(ce.get('status') or {})}
            record['name'] = ce.get('name') or '名前なし'
            normalized.append(record)
        return normalized

    def load(self):
        ce_list = self.normalize(self._extract_list(self.store.read_once(self.path)))
        if not ce_list:
            stamp = now_ms()
            ce_list = self.normalize([{**ce, 'id': f"ce_{i + 1}_{stamp}", 'createdAt': stamp}
                                      for i, ce in enumerate(CE_LIST_INITIAL)])
            self.save(ce_list)
            logging.info(f"Seeded CE roster with {len(ce_list)} members.")
        return ce_list

    def save(self, ce_list):
        self.store.set(self.path, {'list': ce_list, 'updatedAt': now_ms()})

    def get_ce(self, ce_id):
        ce = next((c for c in self.load() if c['id'] == ce_id), None)
        if ce is None: raise NotFoundError(f"CE '{ce_id}' not found.")
        return ce

    def _check_name(self, ce_list, name, exclude_id=None):
        name = (name or '').strip()
        if not name: raise ValidationError("CE name is required.")
        if any(c['name'] == name and c['id'] != exclude_id for c in ce_list):
            raise ValidationError(f"A CE named '{name}' already exists.")
        return name

    def add_ce(self, name, work_type=DEFAULT_WORK_TYPE, created_by='unknown'):
        ce_list = self.load()
        name = self._check_name(ce_list, name)
        new_ce = {
            'id': f"ce_{now_ms()}_{_random_suffix()}", 'name': name, 'workType': normalize_work_type(work_type),
            'department': None, 'status': _empty_week(), 'createdAt': now_ms(), 'createdBy': created_by,
        }
        ce_list.append(new_ce)
        self.save(ce_list)
        logging.info(f"CE added: {name}")
        return new_ce

    def update_ce(self, ce_id, name=None, work_type=None, weekly_status=None, updated_by='unknown'):
        ce_list = self.load()
        ce = next((c for c in ce_list if c['id'] == ce_id), None)
        if ce is None: raise NotFoundError(f"CE '{ce_id}' not found.")
        if name is not None: ce['name'] = self._check_name(ce_list, name, exclude_id=ce_id)
        if work_type is not None: ce['workType'] = normalize_work_type(work_type)
        if weekly_status is not None:
            unknown = set(weekly_status) - set(WEEKDAY_KEYS)
            if unknown: raise ValidationError(f"Unknown weekdays: {sorted(unknown)}")
            ce['status'].update(weekly_status)
        ce['updatedAt'], ce['updatedBy'] = now_ms(), updated_by
        self.save(ce_list)
        return ce

    def delete_ce(self, ce_id):
        ce_list = self.load()
        remaining = [c for c in ce_list if c['id'] != ce_id]
        if len(remaining) == len(ce_list): raise NotFoundError(f"CE '{ce_id}' not found.")
        self.save(remaining)
        return next(c for c in ce_list if c['id'] == ce_id)

    def sort_ce_list(self, sort_type):
        if sort_type not in SORT_KEYS: raise ValidationError(f"Unknown sort type '{sort_type}'.")
        ce_list = sorted(self.load(), key=SORT_KEYS[sort_type])
        self.save(ce_list)
        return ce_list

    def weekly_status_for(self, ce, date_key):
        weekday = WEEKDAY_KEYS[parse_date_key(date_key).weekday()]
        return (ce.get('status') or {}).get(weekday, '')


@dataclass
class RosterRow:
    ce: dict
    category: Optional[str] = None
    badge: Optional[str] = None
    badge_color: Optional[str] = None
    work_type: Optional[str] = None
    day_status: str = ''

    def to_dict(self):
        return {"id": self.ce.get('id'), "name": self.ce.get('name'), "category": self.category,
                "badge": self.badge, "badgeColor": self.badge_color, "workType": self.work_type,
                "dayStatus": self.day_status}


class RosterView:
    """The displayed roster for one date, kept in sync with published schedules."""

    def __init__(self, ce_manager, resolver, daily_status=None):
        self.ce_manager = ce_manager
        self.resolver = resolver
        self.daily_status = daily_status
        self.current_date = None
        self.rows = []

    def show(self, date_key):
        parse_date_key(date_key)
        self.current_date = date_key
        marks = self.daily_status.statuses_for(date_key) if self.daily_status else {}
        # A manual mark for the day wins over the weekly template.
        self.rows = [RosterRow(ce, day_status=marks.get(ce['id']) or self.ce_manager.weekly_status_for(ce, date_key))
                     for ce in self.ce_manager.load()]
        self.resolver.apply_ce_status_to_list(date_key, self.rows)
        return self.rows

    def update_ce_icons_from_schedule(self):
        if not self.current_date: return
        self.resolver.apply_ce_status_to_list(self.current_date, self.rows)
