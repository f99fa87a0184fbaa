# daily_status.py

import logging

from constants import MANUAL_DAY_STATUSES
from date_utils import parse_date_key
from errors import ValidationError
from store import join_path


class CEDailyStatus:
    """Manual per-day status marks (early shift, night duty, off...) for each CE."""

    def __init__(self, store, data_root):
        self.store = store
        self.path = join_path(data_root, 'ceStatus/byDate')

    def update_status(self, date_key, ce_id, status):
        parse_date_key(date_key)
        if not ce_id: raise ValidationError("CE id is required.")
        path = join_path(self.path, date_key, ce_id)
        if status in (None, ''):
            self.store.remove(path)
        elif status in MANUAL_DAY_STATUSES:
            self.store.set(path, status)
        else:
            raise ValidationError(f"Unknown day status '{status}'.")
        logging.info(f"Day status for {ce_id} on {date_key} set to '{status or ''}'.")

    def statuses_for(self, date_key):
        parse_date_key(date_key)
        return self.store.read_once(join_path(self.path, date_key)) or {}

    def status_for(self, ce_id, date_key):
        return self.statuses_for(date_key).get(ce_id, '')
