# events.py

import logging

from constants import DEFAULT_EVENT_COLOR, DEPARTMENT_COLORS
from date_utils import month_bounds, parse_date_key
from errors import NotFoundError, ValidationError
from store import join_path, now_ms


class ScheduleCore:
    """Work events grouped by day at {root}/events/byDate/{date}/{eventId}."""

    def __init__(self, store, data_root):
        self.store = store
        self.path = join_path(data_root, 'events/byDate')

    def _as_list(self, day_events):
        return [{"id": event_id, **event, "color": DEPARTMENT_COLORS.get(event.get('department'), DEFAULT_EVENT_COLOR)}
                for event_id, event in (day_events or {}).items()]

    def events_for_date(self, date_key):
        parse_date_key(date_key)
        return self._as_list(self.store.read_once(join_path(self.path, date_key)))

    def events_for_month(self, year, month):
        start, end = month_bounds(year, month)
        data = self.store.read_once(self.path) or {}
        return {day: self._as_list(events) for day, events in sorted(data.items()) if start <= day <= end}

    def add_event(self, event_data, created_by='unknown'):
        if not event_data.get('date') or not event_data.get('name'):
            raise ValidationError("Event date and name are required.")
        parse_date_key(event_data['date'])
        new_event = {**event_data, 'createdAt': now_ms(), 'createdBy': created_by,
                     'assignments': event_data.get('assignments') or []}
        event_id = self.store.push(join_path(self.path, event_data['date']), new_event)
        logging.info(f"Event added: {event_data['name']} ({event_id})")
        return event_id

    def update_event(self, date_key, event_id, update_data, updated_by='unknown'):
        path = join_path(self.path, date_key, event_id)
        if self.store.read_once(path) is None: raise NotFoundError(f"Event '{event_id}' not found on {date_key}.")
        # Each key must name a single field of the event.
        bad_keys = [k for k in update_data if not isinstance(k, str) or not k.strip() or '/' in k]
        if bad_keys: raise ValidationError(f"Invalid event fields: {bad_keys}")
        payload = {k: v for k, v in update_data.items() if k not in ('id', 'date')}
        self.store.update(path, {**payload, 'updatedAt': now_ms(), 'updatedBy': updated_by})
        logging.info(f"Event updated: {event_id}")

    def delete_event(self, date_key, event_id):
        path = join_path(self.path, date_key, event_id)
        if self.store.read_once(path) is None: raise NotFoundError(f"Event '{event_id}' not found on {date_key}.")
        self.store.remove(path)
        logging.info(f"Event deleted: {event_id}")
