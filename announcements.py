# announcements.py

import logging

from constants import DEFAULT_ANNOUNCEMENT_CATEGORIES, ROLE_ADMIN, ROLE_EDITOR
from errors import NotFoundError, PermissionDenied, ValidationError
from store import join_path, new_push_key, now_ms


def _require_role(user, *roles):
    if (user or {}).get('role') not in roles:
        raise PermissionDenied("You do not have permission for this action.")


class AnnouncementsManager:
    def __init__(self, store, data_root):
        self.store = store
        self.categories_path = join_path(data_root, 'announcements/categories')
        self.threads_path = join_path(data_root, 'announcements/threads')

    # --- Categories ---
    def ensure_default_categories(self, created_by='system'):
        if self.store.read_once(self.categories_path): return 0
        stamp = now_ms()
        updates = {new_push_key(): {**category, 'order': i, 'createdAt': stamp, 'createdBy': created_by}
                   for i, category in enumerate(DEFAULT_ANNOUNCEMENT_CATEGORIES)}
        self.store.update(self.categories_path, updates)
        logging.info(f"Created {len(updates)} default announcement categories.")
        return len(updates)

    def list_categories(self):
        data = self.store.read_once(self.categories_path) or {}
        return sorted(({"id": k, **v} for k, v in data.items()), key=lambda c: c.get('order') or 0)

    def add_category(self, user, name, icon=None):
        _require_role(user, ROLE_ADMIN, ROLE_EDITOR)
        name = (name or '').strip()
        if not name: raise ValidationError("Category name is required.")
        categories = self.list_categories()
        if any(c.get('name') == name for c in categories):
            raise ValidationError(f"Category '{name}' already exists.")
        category = {'name': name, 'icon': (icon or '').strip() or '📁', 'order': len(categories),
                    'createdAt': now_ms(), 'createdBy': user['uid']}
        return self.store.push(self.categories_path, category)

    def delete_category(self, user, category_id):
        _require_role(user, ROLE_ADMIN)
        if self.store.read_once(join_path(self.categories_path, category_id)) is None:
            raise NotFoundError(f"Category '{category_id}' not found.")
        self.store.remove(join_path(self.categories_path, category_id))
        # Threads stay on the board, they just lose their category.
        return len(self.list_threads(category_id))

    # --- Threads ---
    def list_threads(self, category_id=None):
        data = self.store.read_once(self.threads_path) or {}
        threads = [{"id": k, **v} for k, v in data.items() if category_id is None or v.get('category') == category_id]
        return sorted(threads, key=lambda t: t.get('timestamp') or 0, reverse=True)

    def post_thread(self, user, title, content, category_id):
        title, content = (title or '').strip(), (content or '').strip()
        if not title: raise ValidationError("Title is required.")
        if not content: raise ValidationError("Content is required.")
        if not category_id: raise ValidationError("Category is required.")
        return self.store.push(self.threads_path, {
            'title': title, 'content': content, 'category': category_id, 'authorUid': user['uid'],
            'authorName': user['displayName'], 'timestamp': now_ms(), 'views': 0,
        })

    def open_thread(self, thread_id):
        path = join_path(self.threads_path, thread_id)
        if self.store.read_once(path) is None: raise NotFoundError(f"Thread '{thread_id}' not found.")
        self.store.transaction(join_path(path, 'views'), lambda views: (views or 0) + 1)
        thread = self.store.read_once(path)
        replies = [{"id": k, **v} for k, v in (thread.pop('replies', None) or {}).items()]
        return {"id": thread_id, **thread, "replies": sorted(replies, key=lambda r: r.get('timestamp') or 0)}

    def reply(self, user, thread_id, content):
        content = (content or '').strip()
        if not content: raise ValidationError("Reply content is required.")
        path = join_path(self.threads_path, thread_id)
        if self.store.read_once(path) is None: raise NotFoundError(f"Thread '{thread_id}' not found.")
        return self.store.push(join_path(path, 'replies'), {
            'content': content, 'authorUid': user['uid'], 'authorName': user['displayName'], 'timestamp': now_ms(),
        })

    def delete_thread(self, user, thread_id):
        _require_role(user, ROLE_ADMIN)
        path = join_path(self.threads_path, thread_id)
        if self.store.read_once(path) is None: raise NotFoundError(f"Thread '{thread_id}' not found.")
        self.store.remove(path)
        logging.info(f"Thread {thread_id} deleted by {user['uid']}.")
