# test_store.py

import os
import unittest

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from app import app, db, store, reset_services
from errors import StoreError
from store import join_path, split_path


class DocumentStoreTestCase(unittest.TestCase):
    """Reads, writes and change notifications of the document store."""

    def setUp(self):
        self.ctx = app.app_context()
        self.ctx.push()
        db.drop_all()
        db.create_all()
        store.unsubscribe()
        reset_services()
        store.mark_ready()

    def tearDown(self):
        store.unsubscribe()
        db.session.remove()
        self.ctx.pop()

    def test_01_set_and_read_nested_paths(self):
        store.set('storeTest/a/b', {'value': 1})
        self.assertEqual(store.read_once('storeTest/a'), {'b': {'value': 1}})
        self.assertEqual(store.read_once('storeTest/a/b/value'), 1)
        self.assertIsNone(store.read_once('storeTest/missing/path'))

    def test_02_namespaces_are_independent(self):
        store.set('nsOne/key', 'one')
        store.set('nsTwo/key', 'two')
        self.assertEqual(store.read_once('nsOne'), {'key': 'one'})
        self.assertEqual(store.read_once('nsTwo'), {'key': 'two'})

    def test_03_remove_prunes_empty_parents(self):
        """Removing the last child of a node removes the node too."""
        store.set('storeTest/a/b/c', 1)
        store.set('storeTest/keep', True)
        store.remove('storeTest/a/b/c')
        self.assertIsNone(store.read_once('storeTest/a'))
        self.assertEqual(store.read_once('storeTest'), {'keep': True})
        store.set('storeTest/keep', {})
        self.assertIsNone(store.read_once('storeTest'))

    def test_04_multi_path_update(self):
        store.set('storeTest/room', {'name': 'general', 'unread': {'u1': 0}})
        store.update('storeTest', {'room/unread/u1': 3, 'room/lastMessage': 'hi', 'other': 1})
        room = store.read_once('storeTest/room')
        self.assertEqual(room['unread'], {'u1': 3})
        self.assertEqual(room['lastMessage'], 'hi')
        self.assertEqual(room['name'], 'general')
        self.assertEqual(store.read_once('storeTest/other'), 1)

    def test_05_transaction_increments(self):
        bump = lambda current: (current or 0) + 1
        self.assertEqual(store.transaction('storeTest/views', bump), 1)
        self.assertEqual(store.transaction('storeTest/views', bump), 2)
        self.assertEqual(store.read_once('storeTest/views'), 2)

    def test_06_push_generates_distinct_keys(self):
        first = store.push('storeTest/items', {'n': 1})
        second = store.push('storeTest/items', {'n': 2})
        self.assertNotEqual(first, second)
        self.assertTrue(first.startswith('-'))
        self.assertEqual(store.read_once(f'storeTest/items/{second}'), {'n': 2})

    def test_07_read_once_returns_a_copy(self):
        store.set('storeTest/a', {'list': [1, 2]})
        value = store.read_once('storeTest/a')
        value['list'].append(3)
        self.assertEqual(store.read_once('storeTest/a/list'), [1, 2])
        self.assertEqual(store.read_once('storeTest/a/list/1'), 2)

    def test_08_listeners_fire_for_ancestor_and_descendant_writes(self):
        """A listener sees writes below its path and above it, never beside it."""
        seen = []
        store.subscribe('storeTest/a', seen.append)
        store.set('storeTest/a/b', 1)
        store.set('storeTest', {'a': {'c': 2}})
        store.set('storeTest/sibling', 3)
        store.set('otherNamespace/a', 4)
        self.assertEqual(seen, [{'b': 1}, {'c': 2}])

    def test_09_listener_not_called_on_subscribe(self):
        seen = []
        store.set('storeTest/a', 1)
        store.subscribe('storeTest/a', seen.append)
        self.assertEqual(seen, [])

    def test_10_failing_listener_is_logged_and_others_still_run(self):
        seen = []

        def broken(_value):
            raise RuntimeError("listener failure")

        store.subscribe('storeTest/a', broken)
        store.subscribe('storeTest/a', seen.append)
        with self.assertLogs(level='ERROR') as logs:
            store.set('storeTest/a', 'x')
        self.assertEqual(seen, ['x'])
        self.assertTrue(any("listener on 'storeTest/a' failed" in line for line in logs.output))

    def test_11_unsubscribe(self):
        seen = []
        store.subscribe('storeTest/a', seen.append)
        store.unsubscribe('storeTest/a', seen.append)
        store.set('storeTest/a', 1)
        self.assertEqual(seen, [])

    def test_12_removal_notifies_with_none(self):
        seen = []
        store.set('storeTest/a', 1)
        store.subscribe('storeTest/a', seen.append)
        store.remove('storeTest/a')
        self.assertEqual(seen, [None])

    def test_13_empty_paths_are_rejected(self):
        with self.assertRaises(StoreError):
            split_path('')
        with self.assertRaises(StoreError):
            store.set('/', 1)
        self.assertEqual(join_path('root/', '/ceList', ''), 'root/ceList')

    def test_14_list_items_are_written_in_place(self):
        """Index segments address existing list slots without turning the list into an object."""
        store.set('storeTest/event', {'assignments': ['ce1', 'ce2']})
        store.update('storeTest/event', {'assignments/1': 'ce9'})
        self.assertEqual(store.read_once('storeTest/event/assignments'), ['ce1', 'ce9'])
        store.set('storeTest/rows', [{'name': 'a'}])
        store.set('storeTest/rows/0/name', 'b')
        self.assertEqual(store.read_once('storeTest/rows'), [{'name': 'b'}])

    def test_15_bad_list_paths_are_rejected(self):
        store.set('storeTest/event', {'assignments': ['ce1', 'ce2']})
        with self.assertRaises(StoreError):
            store.set('storeTest/event/assignments/5', 'ce9')
        with self.assertRaises(StoreError):
            store.set('storeTest/event/assignments/first', 'ce9')
        with self.assertRaises(StoreError):
            store.remove('storeTest/event/assignments/0')
        self.assertEqual(store.read_once('storeTest/event/assignments'), ['ce1', 'ce2'])


if __name__ == '__main__':
    unittest.main()
