# audit.py

import logging
import time

from constants import AUDIT_ACTION_MAP, CRITICAL_AUDIT_ACTIONS
from errors import StoreError
from store import join_path, now_ms


class AuditLogger:
    def __init__(self, store, data_root, max_retries=2, retry_delay=0.5):
        self.store = store
        self.path = join_path(data_root, 'auditLogs')
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.is_enabled = True

    def log_action(self, action, details=None, user=None, page=''):
        if not self.is_enabled:
            logging.warning(f"Audit logging disabled, skipped '{action}'.")
            return None
        user = user or {}
        entry = {
            "action": action, "details": {**(details or {}), "page": page or 'unknown'},
            "uid": user.get('uid') or 'anonymous', "username": user.get('username') or 'unknown',
            "displayName": user.get('displayName') or user.get('username') or 'unknown', "timestamp": now_ms(),
        }
        try:
            key = self.write_log_entry(entry)
        except StoreError as e:
            if action in CRITICAL_AUDIT_ACTIONS: raise
            logging.warning(f"Audit log entry '{action}' was not recorded: {e}")
            return None
        logging.info(f"Audit: {action} {details or {}}")
        return key

    def write_log_entry(self, entry, retry_count=0):
        try:
            return self.store.push(self.path, entry)
        except StoreError:
            if retry_count >= self.max_retries: raise
            logging.warning(f"Retrying audit log write ({retry_count + 1}/{self.max_retries})")
            time.sleep(self.retry_delay)
            return self.write_log_entry(entry, retry_count + 1)

    def recent(self, limit=50):
        data = self.store.read_once(self.path) or {}
        entries = sorted(({"id": k, **v} for k, v in data.items()), key=lambda e: e.get('timestamp') or 0, reverse=True)
        return entries[:limit]

    def describe(self, action):
        return AUDIT_ACTION_MAP.get(action, action)
