# users.py

import logging
from datetime import datetime

from constants import ROLE_ADMIN, ROLE_VIEWER
from errors import ValidationError
from store import join_path


def _profile(key, user):
    return {
        "id": key, "uid": user.get('uid') or key, "username": user.get('username'),
        "displayName": user.get('displayName') or user.get('name') or user.get('username'),
        "role": user.get('role') or 'user', "department": user.get('department') or '',
        "isCE": bool(user.get('isCE')), "ceId": user.get('ceId'),
    }


class UserManager:
    def __init__(self, store, data_root):
        self.store = store
        self.path = join_path(data_root, 'users')

    def all_users(self):
        data = self.store.read_once(self.path) or {}
        return [_profile(key, user) for key, user in data.items() if isinstance(user, dict)]

    def get_user(self, user_id):
        return next((u for u in self.all_users() if user_id in (u['id'], u['uid'])), None)

    def get_user_by_username(self, username):
        return next((u for u in self.all_users() if u['username'] == username), None)

    def get_user_by_display_name(self, display_name):
        return next((u for u in self.all_users() if u['displayName'] == display_name), None)

    def ce_users(self):
        return [u for u in self.all_users() if u['isCE']]

    def admin_users(self):
        return [u for u in self.all_users() if u['role'] == ROLE_ADMIN]

    def create_user(self, data):
        if not data.get('uid') or not data.get('username'):
            raise ValidationError("uid and username are required.")
        user = {
            "uid": data['uid'], "username": data['username'],
            "displayName": data.get('displayName') or data['username'], "role": data.get('role') or 'user',
            "department": data.get('department') or '', "isCE": bool(data.get('isCE')), "ceId": data.get('ceId'),
            "createdAt": datetime.now().isoformat(),
        }
        self.store.set(join_path(self.path, user['uid']), user)
        logging.info(f"User created: {user['username']}")
        return _profile(user['uid'], user)

    def initialize_from_ce_list(self, ce_list):
        """Creates one login per CE plus the admin account when the directory is empty."""
        if self.store.read_once(self.path): return 0
        now = datetime.now().isoformat()
        updates = {f"ce-{ce['id']}": {"uid": f"ce-{ce['id']}", "username": ce['name'], "displayName": ce['name'],
                                      "role": 'user', "department": '', "isCE": True, "ceId": ce['id'], "createdAt": now}
                   for ce in ce_list}
        updates['admin-uid'] = {"uid": 'admin-uid', "username": 'admin', "displayName": '管理者', "role": ROLE_ADMIN,
                                "department": '管理部', "isCE": False, "createdAt": now}
        self.store.update(self.path, updates)
        logging.info(f"Initialized {len(updates)} users from the CE roster.")
        return len(updates)

    def resolve_session(self, uid, username=None, role=None):
        stored = self.get_user(uid) if uid else None
        session = {"uid": uid or 'anonymous', "username": username or 'unknown', "role": role or ROLE_VIEWER}
        if stored:
            session.update(username=stored['username'] or session['username'], role=stored['role'] or session['role'])
        session['displayName'] = (stored or {}).get('displayName') or session['username']
        return session
