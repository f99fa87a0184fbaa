# store.py
"""Hierarchical JSON document store with change subscriptions.

Each top-level path segment is a namespace persisted as one row holding the
namespace's whole tree. Writers go through a process-wide lock; listeners are
notified after the commit for every write that touches their path.
"""

import copy
import logging
import threading
import time
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.attributes import flag_modified

from errors import StoreError


def now_ms():
    return int(time.time() * 1000)


def new_push_key():
    # Hex millisecond prefix keeps keys in creation order.
    return f"-{now_ms():012x}{uuid.uuid4().hex[:8]}"


def split_path(path):
    parts = [p for p in str(path or '').split('/') if p]
    if not parts: raise StoreError("Store paths need at least one segment.")
    return parts


def join_path(*segments):
    return '/'.join(str(s).strip('/') for s in segments if str(s).strip('/'))


def _is_empty(value):
    return value is None or value == {}


def _get_in(node, parts):
    for part in parts:
        if isinstance(node, dict): node = node.get(part)
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node): node = node[int(part)]
        else: return None
        if node is None: return None
    return node


def _child_key(node, part):
    if isinstance(node, list):
        if part.isdigit() and int(part) < len(node): return int(part)
        raise StoreError(f"'{part}' is not an index of the list at this path.")
    return part


def _set_in(tree, parts, value):
    if not parts: return {} if _is_empty(value) else value
    node, trail = tree, []
    for part in parts[:-1]:
        key = _child_key(node, part)
        child = node[key] if isinstance(node, list) else node.get(key)
        if not isinstance(child, (dict, list)):
            if _is_empty(value): return tree
            child = {}
            node[key] = child
        trail.append((node, key))
        node = child
    key = _child_key(node, parts[-1])
    if _is_empty(value):
        if isinstance(node, list): raise StoreError("List items cannot be removed by path.")
        node.pop(key, None)
        for parent, parent_key in reversed(trail):
            # List slots are positional, so pruning stops at a list.
            if isinstance(parent, list) or parent[parent_key]: break
            del parent[parent_key]
    else:
        node[key] = value
    return tree


def _overlaps(a, b):
    n = min(len(a), len(b))
    return a[:n] == b[:n]


class DocumentStore:
    def __init__(self, db, model):
        self.db = db
        self.model = model
        self._lock = threading.RLock()
        self._listeners = {}
        self._ready = threading.Event()

    # --- Readiness ---
    def mark_ready(self):
        self._ready.set()
        logging.info("Document store connected.")

    @property
    def is_ready(self):
        return self._ready.is_set()

    def wait_until_ready(self, timeout=None):
        return self._ready.wait(timeout)

    # --- Reads ---
    def _load(self, name):
        try:
            doc = self.model.query.filter_by(name=name).first()
        except SQLAlchemyError as e:
            self.db.session.rollback()
            raise StoreError(f"Could not read '{name}' from the store.") from e
        tree = copy.deepcopy(doc.tree) if doc is not None and isinstance(doc.tree, dict) else {}
        return doc, tree

    def read_once(self, path):
        parts = split_path(path)
        _, tree = self._load(parts[0])
        return _get_in(tree, parts[1:]) if len(parts) > 1 else (tree or None)

    # --- Writes ---
    def _commit(self, documents):
        try:
            for name, (doc, tree) in documents.items():
                if doc is None:
                    doc = self.model(name=name, tree=tree, updated_at=now_ms())
                    self.db.session.add(doc)
                else:
                    doc.tree = tree
                    doc.updated_at = now_ms()
                    flag_modified(doc, "tree")
            self.db.session.commit()
        except SQLAlchemyError as e:
            self.db.session.rollback()
            raise StoreError(f"Could not write {', '.join(documents)} to the store.") from e

    def _write(self, changes):
        """Applies [(parts, value)] in a single commit and notifies listeners."""
        with self._lock:
            documents = {}
            for parts, value in changes:
                if parts[0] not in documents: documents[parts[0]] = self._load(parts[0])
                doc, tree = documents[parts[0]]
                documents[parts[0]] = (doc, _set_in(tree, parts[1:], copy.deepcopy(value)))
            self._commit(documents)
        self._notify([parts for parts, _ in changes])

    def set(self, path, value):
        self._write([(split_path(path), value)])

    def update(self, path, values):
        base = str(path or '')
        self._write([(split_path(join_path(base, key)), value) for key, value in values.items()])

    def push(self, path, value):
        key = new_push_key()
        self.set(join_path(path, key), value)
        return key

    def remove(self, path):
        self.set(path, None)

    def transaction(self, path, fn):
        parts = split_path(path)
        with self._lock:
            doc, tree = self._load(parts[0])
            new_value = fn(copy.deepcopy(_get_in(tree, parts[1:])))
            self._commit({parts[0]: (doc, _set_in(tree, parts[1:], copy.deepcopy(new_value)))})
        self._notify([parts])
        return new_value

    # --- Subscriptions ---
    def subscribe(self, path, callback):
        split_path(path)
        with self._lock:
            self._listeners.setdefault(path.strip('/'), []).append(callback)
        return callback

    def unsubscribe(self, path=None, callback=None):
        with self._lock:
            if path is None:
                self._listeners.clear()
                return
            callbacks = self._listeners.get(path.strip('/'), [])
            if callback is None: callbacks.clear()
            elif callback in callbacks: callbacks.remove(callback)
            if not callbacks: self._listeners.pop(path.strip('/'), None)

    def _notify(self, changed):
        with self._lock:
            listeners = [(path, list(callbacks)) for path, callbacks in self._listeners.items()]
        for path, callbacks in listeners:
            if not any(_overlaps(split_path(path), parts) for parts in changed): continue
            try:
                value = self.read_once(path)
            except StoreError:
                logging.error(f"Could not read '{path}' for its listeners.", exc_info=True)
                continue
            for callback in callbacks:
                try:
                    callback(copy.deepcopy(value))
                except Exception:
                    logging.error(f"Store listener on '{path}' failed.", exc_info=True)
