# test_app.py

import unittest
import os
import json
import threading
import time
from unittest import mock

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from app import app, db, store, reset_services, get_resolver, DATA_ROOT
from resolver import PublishedScheduleResolver

ADMIN = {'X-User-Id': 'admin-1', 'X-User-Name': 'admin', 'X-User-Role': 'admin'}
EDITOR = {'X-User-Id': 'u1', 'X-User-Name': 'tanaka', 'X-User-Role': 'editor'}
VIEWER = {'X-User-Id': 'u2', 'X-User-Name': 'sato', 'X-User-Role': 'viewer'}


class ScheduleApiTestCase(unittest.TestCase):
    """Test suite for the CE schedule Flask application."""

    def setUp(self):
        """Set up a test client and an empty in-memory store before each test."""
        self.app = app.test_client()
        self.app.testing = True
        with app.app_context():
            db.drop_all()
            db.create_all()
        store.unsubscribe()
        reset_services()
        store.mark_ready()

    def tearDown(self):
        store.unsubscribe()
        reset_services()

    def _post(self, url, payload, headers=EDITOR):
        return self.app.post(url, data=json.dumps(payload), content_type='application/json', headers=headers)

    def _publish(self, key, period):
        """Helper function to write a published schedule straight into the store."""
        with app.app_context():
            store.set(f"{DATA_ROOT}/workSchedules/{key}", period)

    def _ce_ids(self):
        return [ce['id'] for ce in json.loads(self.app.get('/api/ce-list').data)]

    def test_01_add_ce_and_reject_duplicates(self):
        """Test that editors add CEs, viewers cannot and names stay unique."""
        # 1. The roster is seeded on first read
        response = self.app.get('/api/ce-list')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(json.loads(response.data)), 5)

        # 2. An editor adds a CE
        response = self._post('/api/ce-list', {'name': '山本', 'workType': 'HD'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.data)['ce']['workType'], 'HD')

        # 3. A duplicate name is rejected and a viewer is refused
        response = self._post('/api/ce-list', {'name': '山本'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('already exists', json.loads(response.data)['error'])
        response = self._post('/api/ce-list', {'name': '木村'}, headers=VIEWER)
        self.assertEqual(response.status_code, 403)

        # 4. The addition was audited
        response = self.app.get('/api/audit-logs', headers=ADMIN)
        logs = json.loads(response.data)
        self.assertEqual(logs[0]['action'], 'ce_add')
        self.assertEqual(logs[0]['label'], 'CE追加')
        self.assertEqual(self.app.get('/api/audit-logs', headers=EDITOR).status_code, 403)

    def test_02_update_delete_and_sort(self):
        ce_id = self._ce_ids()[0]
        response = self.app.put(f'/api/ce-list/{ce_id}', data=json.dumps({'workType': 'FLEX'}),
                                content_type='application/json', headers=EDITOR)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.data)['ce']['workType'], 'FLEX')
        self.assertEqual(self.app.delete(f'/api/ce-list/{ce_id}', headers=VIEWER).status_code, 403)
        self.assertEqual(self.app.delete(f'/api/ce-list/{ce_id}', headers=EDITOR).status_code, 200)
        self.assertEqual(self.app.delete(f'/api/ce-list/{ce_id}', headers=EDITOR).status_code, 404)
        response = self._post('/api/ce-list/sort', {'sortType': 'workType'})
        self.assertEqual([ce['workType'] for ce in json.loads(response.data)], ['FLEX', 'HD', 'ME', 'OPE'])
        self.assertEqual(self._post('/api/ce-list/sort', {'sortType': 'age'}).status_code, 400)

    def test_03_schedule_status_for_published_day(self):
        """Test resolving one CE's published status, including overrides and hidden periods."""
        self._publish('p1', {
            'metadata': {'startDate': '2024-03-01', 'endDate': '2024-03-31', 'publishedAt': 100},
            'ceList': [{'id': 'ce1', 'workType': 'ME'}],
            'scheduleData': {'ce1': {'2024-03-15': {'status': 'A1', 'desired': True}}},
            'workTypeOverrides': {'ce1': [{'workType': 'OPE', 'startDate': '2024-03-10', 'endDate': '2024-03-20', 'createdAt': 1}]},
        })
        response = self.app.get('/api/schedule-status?ceId=ce1&date=2024-03-15', headers=VIEWER)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.data)['schedule'], {'status': 'A1', 'workType': 'OPE', 'desired': True})

        response = self.app.get('/api/schedule-status?ceId=ce1&date=2024-04-01', headers=VIEWER)
        self.assertIsNone(json.loads(response.data)['schedule'])
        self.assertEqual(self.app.get('/api/schedule-status?date=2024-03-15').status_code, 400)
        self.assertEqual(self.app.get('/api/schedule-status?ceId=ce1&date=2024-13-01').status_code, 400)

    def test_04_hidden_periods_are_admin_only(self):
        self._publish('draft', {
            'metadata': {'startDate': '2024-03-01', 'endDate': '2024-03-31', 'publishedAt': 100, 'isVisible': False},
            'ceList': [{'id': 'ce1', 'workType': 'ME'}],
            'scheduleData': {'ce1': {'2024-03-15': {'status': 'B'}}},
        })
        url = '/api/schedule-status?ceId=ce1&date=2024-03-15'
        self.assertIsNone(json.loads(self.app.get(url, headers=VIEWER).data)['schedule'])
        self.assertEqual(json.loads(self.app.get(url, headers=ADMIN).data)['schedule']['status'], 'B')

    def test_05_roster_reports_conflicts_and_follows_publishing(self):
        """Test that the roster shows conflicts and picks up newly published schedules."""
        first, second = self._ce_ids()[:2]
        response = self.app.get('/api/roster?date=2024-03-15', headers=VIEWER)
        rows = json.loads(response.data)['rows']
        self.assertEqual(rows[0]['category'], 'worktype-me')

        self._publish('p1', {
            'metadata': {'startDate': '2024-03-01', 'endDate': '2024-03-31', 'publishedAt': 100},
            'ceList': [{'id': first, 'workType': 'ME'}, {'id': second, 'workType': 'OPE'}],
            'scheduleData': {first: {'2024-03-15': {'status': '年'}}, second: {'2024-03-15': {'status': 'A'}}},
        })
        self._publish('p2', {
            'metadata': {'startDate': '2024-03-15', 'endDate': '2024-03-15', 'publishedAt': 200},
            'ceList': [{'id': first, 'workType': 'ME'}, {'id': second, 'workType': 'OPE'}],
            'scheduleData': {first: {'2024-03-15': {'status': '出'}}, second: {'2024-03-15': {'status': 'A'}}},
        })
        response = self.app.get('/api/roster?date=2024-03-15', headers=VIEWER)
        data = json.loads(response.data)
        self.assertEqual(data['count'], 5)
        self.assertEqual((data['rows'][0]['category'], data['rows'][0]['badge'], data['rows'][0]['workType']),
                         ('worktype-error', 'conflict', 'ERROR'))
        self.assertEqual((data['rows'][1]['category'], data['rows'][1]['badge']), ('worktype-ope', None))
        self.assertEqual(self.app.get('/api/roster?date=bad', headers=VIEWER).status_code, 400)

    def test_06_day_status_marks(self):
        self.assertEqual(self._post('/api/ce-status/2024-03-15', {'ceId': 'ce1', 'status': '当'}).status_code, 200)
        self.assertEqual(self._post('/api/ce-status/2024-03-15', {'ceId': 'ce1', 'status': 'Z'}).status_code, 400)
        self.assertEqual(self._post('/api/ce-status/2024-03-15', {'ceId': 'ce1', 'status': '非'}, VIEWER).status_code, 403)
        self.assertEqual(json.loads(self.app.get('/api/ce-status/2024-03-15').data), {'ce1': '当'})

    def test_07_events_and_calendar(self):
        """Test adding events and seeing them in the month grid."""
        response = self._post('/api/events', {'date': '2024-03-05', 'name': '定期点検'})
        self.assertEqual(response.status_code, 200)
        event_id = json.loads(response.data)['id']
        self.assertEqual(self._post('/api/events', {'date': '2024-03-05'}).status_code, 400)

        response = self.app.get('/api/events?month=2024-03')
        self.assertEqual(list(json.loads(response.data)), ['2024-03-05'])
        self.assertEqual(self.app.get('/api/events?month=March').status_code, 400)

        response = self.app.get('/api/calendar?year=2024&month=3')
        data = json.loads(response.data)
        self.assertEqual(data['title'], '2024年3月')
        self.assertEqual(len(data['cells']), 42)
        self.assertEqual(data['cells'][0]['date'], '2024-02-25')
        march_5 = next(c for c in data['cells'] if c['date'] == '2024-03-05')
        self.assertEqual(march_5['events'][0]['name'], '定期点検')
        self.assertEqual(self.app.get('/api/calendar?year=2024').status_code, 400)

        response = self.app.put(f'/api/events/2024-03-05/{event_id}', data=json.dumps({'name': '臨時点検'}),
                                content_type='application/json', headers=EDITOR)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(self.app.get('/api/events?date=2024-03-05').data)[0]['name'], '臨時点検')
        self.assertEqual(self.app.delete(f'/api/events/2024-03-05/{event_id}', headers=EDITOR).status_code, 200)
        self.assertEqual(self.app.delete(f'/api/events/2024-03-05/{event_id}', headers=EDITOR).status_code, 404)

    def test_08_announcement_flow(self):
        categories = json.loads(self.app.get('/api/announcements/categories').data)
        self.assertEqual(len(categories), 11)
        response = self._post('/api/announcements/threads',
                              {'title': '点検', 'content': '明日実施', 'category': categories[0]['id']})
        thread_id = json.loads(response.data)['id']
        self._post(f'/api/announcements/threads/{thread_id}/replies', {'content': '了解'}, VIEWER)
        thread = json.loads(self.app.get(f'/api/announcements/threads/{thread_id}').data)
        self.assertEqual((thread['views'], len(thread['replies'])), (1, 1))
        self.assertEqual(self.app.delete(f'/api/announcements/threads/{thread_id}', headers=EDITOR).status_code, 403)
        self.assertEqual(self.app.delete(f'/api/announcements/threads/{thread_id}', headers=ADMIN).status_code, 200)

    def test_09_chat_flow(self):
        """Test a direct conversation with unread counts."""
        response = self._post('/api/chat/rooms', {'type': 'direct', 'members': ['u2']})
        room = json.loads(response.data)
        self.assertTrue(room['created'])
        self.assertFalse(json.loads(self._post('/api/chat/rooms', {'type': 'direct', 'members': ['u1']}, VIEWER).data)['created'])

        self._post(f"/api/chat/rooms/{room['id']}/messages", {'content': 'おはよう'})
        data = json.loads(self.app.get('/api/chat/rooms', headers=VIEWER).data)
        self.assertEqual(data['totalUnread'], 1)
        self._post(f"/api/chat/rooms/{room['id']}/read", {}, VIEWER)
        self.assertEqual(json.loads(self.app.get('/api/chat/rooms', headers=VIEWER).data)['totalUnread'], 0)

        outsider = {'X-User-Id': 'u3', 'X-User-Name': 'suzuki', 'X-User-Role': 'viewer'}
        self.assertEqual(self.app.get(f"/api/chat/rooms/{room['id']}/messages", headers=outsider).status_code, 403)
        self.assertEqual(self.app.get("/api/chat/rooms/missing/messages", headers=VIEWER).status_code, 404)

    def test_10_users_directory(self):
        users = json.loads(self.app.get('/api/users').data)
        self.assertEqual(len(users), 6)
        response = self._post('/api/users', {'uid': 'u9', 'username': 'yamada'})
        self.assertEqual(response.status_code, 403)
        response = self._post('/api/users', {'uid': 'u9', 'username': 'yamada'}, ADMIN)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self._post('/api/users', ['not', 'a', 'dict'], ADMIN).status_code, 400)

    def test_11_malformed_published_period_does_not_break_roster(self):
        """Test that a period with a string publishedAt and broken day data still lets the roster load."""
        first = self._ce_ids()[0]
        self._publish('p1', {
            'metadata': {'startDate': '2024-03-01', 'endDate': '2024-03-31', 'publishedAt': 100},
            'ceList': [{'id': first, 'workType': 'ME'}],
            'scheduleData': {first: {'2024-03-15': {'status': 'B'}}},
        })
        self._publish('p2', {
            'metadata': {'startDate': '2024-03-01', 'endDate': '2024-03-31', 'publishedAt': '2024-03-01T00:00:00Z'},
            'ceList': [{'id': first, 'workType': 'ME'}],
            'scheduleData': {first: ['x']},
            'workTypeOverrides': 'broken',
        })
        response = self.app.get('/api/roster?date=2024-03-15', headers=VIEWER)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.data)['rows'][0]['badge'], 'B')
        response = self.app.get(f'/api/schedule-status?ceId={first}&date=2024-03-15', headers=VIEWER)
        self.assertEqual(json.loads(response.data)['schedule']['status'], 'B')

    def test_12_roster_rows_show_day_status(self):
        first = self._ce_ids()[0]
        self._post('/api/ce-status/2024-03-15', {'ceId': first, 'status': '当'})
        rows = json.loads(self.app.get('/api/roster?date=2024-03-15', headers=VIEWER).data)['rows']
        self.assertEqual([row['dayStatus'] for row in rows[:2]], ['当', ''])

    def test_13_status_legend_and_audit_limit(self):
        legend = json.loads(self.app.get('/api/work-statuses').data)
        self.assertEqual(legend[2]['status'], 'B')
        self.assertEqual(legend[2]['label'], '当直')
        self._post('/api/ce-list', {'name': '山本'})
        self.assertEqual(self.app.get('/api/audit-logs?limit=abc', headers=ADMIN).status_code, 200)
        self.assertEqual(len(json.loads(self.app.get('/api/audit-logs?limit=0', headers=ADMIN).data)), 0)

    def test_14_concurrent_first_requests_share_one_resolver(self):
        """Test that simultaneous first lookups build and subscribe a single resolver."""
        built, results = [], []

        def slow_init(resolver):
            built.append(resolver)
            time.sleep(0.05)
            return True

        with mock.patch.object(PublishedScheduleResolver, 'init', autospec=True, side_effect=slow_init):
            threads = [threading.Thread(target=lambda: results.append(get_resolver('viewer'))) for _ in range(5)]
            for thread in threads: thread.start()
            for thread in threads: thread.join()
        self.assertEqual(len(built), 1)
        self.assertEqual(len({id(resolver) for resolver in results}), 1)


if __name__ == '__main__':
    unittest.main()
