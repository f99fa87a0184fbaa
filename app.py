# app.py

import logging
import os
import threading
from datetime import datetime
from functools import wraps
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import inspect

from announcements import AnnouncementsManager
from audit import AuditLogger
from chat import ChatManager
from constants import DEFAULT_DATA_ROOT, ROLE_ADMIN, ROLE_VIEWER
from daily_status import CEDailyStatus
from date_utils import format_date_iso, format_month_year, generate_calendar_dates, parse_date_key
from errors import PermissionDenied, ScheduleError, ValidationError
from events import ScheduleCore
from resolver import PublishedScheduleResolver, ScheduleContext, status_legend
from roster import CEManager, RosterView
from store import DocumentStore
from users import UserManager

# --- App Initialization, Config, and Extensions ---
app = Flask(__name__)
CORS(app)
logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s:%(message)s')
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///ce_schedule.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['DATA_ROOT'] = os.environ.get('CE_DATA_ROOT', DEFAULT_DATA_ROOT)
app.config['STORE_READY_TIMEOUT'] = float(os.environ.get('CE_STORE_READY_TIMEOUT', '5'))
db = SQLAlchemy(app)
migrate = Migrate(app, db)


# --- Decorators for Error Handling and Roles ---
def api_error_handler(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try: return f(*args, **kwargs)
        except ScheduleError as e:
            if e.status_code >= 500: logging.error(f"Store failure in endpoint '{f.__name__}': {e}", exc_info=True)
            return jsonify({"error": str(e)}), e.status_code
        except Exception as e:
            logging.error(f"An error occurred in endpoint '{f.__name__}': {e}", exc_info=True)
            return jsonify({"error": "An unexpected server error occurred."}), 500
    return decorated_function


def require_editor(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_viewer()['role'] == ROLE_VIEWER: raise PermissionDenied("Viewers cannot edit.")
        return f(*args, **kwargs)
    return decorated_function


# --- Database Models ---
class StoreDocument(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), unique=True, nullable=False)
    tree = db.Column(db.JSON, default=lambda: {})
    updated_at = db.Column(db.BigInteger, default=0, nullable=False)


# --- Services ---
DATA_ROOT = app.config['DATA_ROOT']
store = DocumentStore(db, StoreDocument)
ce_manager = CEManager(store, DATA_ROOT)
daily_status = CEDailyStatus(store, DATA_ROOT)
schedule_core = ScheduleCore(store, DATA_ROOT)
announcements = AnnouncementsManager(store, DATA_ROOT)
chat = ChatManager(store, DATA_ROOT)
user_manager = UserManager(store, DATA_ROOT)
audit_logger = AuditLogger(store, DATA_ROOT)
resolvers, roster_views = {}, {}
resolvers_lock = threading.Lock()


def init_db():
    with app.app_context():
        db.create_all()
    store.mark_ready()


def reset_services():
    """Drops resolvers and listeners so they rebuild against fresh data."""
    with resolvers_lock:
        for resolver in resolvers.values(): resolver.teardown()
        resolvers.clear()
        roster_views.clear()


@app.cli.command('init-db')
def init_db_command():
    init_db()
    print("Database initialized.")


@app.before_request
def connect_store():
    if not store.is_ready and inspect(db.engine).has_table(StoreDocument.__tablename__):
        store.mark_ready()


# --- Helper Functions ---
def current_viewer():
    return user_manager.resolve_session(request.headers.get('X-User-Id'), request.headers.get('X-User-Name'),
                                        request.headers.get('X-User-Role'))


def get_resolver(role):
    group = ROLE_ADMIN if role == ROLE_ADMIN else 'member'
    with resolvers_lock:
        if group not in resolvers:
            resolver = PublishedScheduleResolver(ScheduleContext(store=store, data_root=DATA_ROOT, viewer_role=group,
                                                                 ready_timeout=app.config['STORE_READY_TIMEOUT']))
            resolver.init()
            view = RosterView(ce_manager, resolver, daily_status)
            resolver.register_refresh_hook(view.update_ce_icons_from_schedule)
            resolvers[group], roster_views[group] = resolver, view
        return resolvers[group]


def get_roster_view(role):
    get_resolver(role)
    return roster_views[ROLE_ADMIN if role == ROLE_ADMIN else 'member']


def today_key():
    return datetime.now().strftime('%Y-%m-%d')


def payload_json():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict): raise ValidationError("Invalid data format.")
    return payload


def parse_month_arg(value):
    try:
        year, month = map(int, value.split('-'))
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid month '{value}', expected YYYY-MM.")
    return year, month


# --- Published Schedule Endpoints ---
@app.route("/api/schedule-status", methods=['GET'])
@api_error_handler
def schedule_status():
    ce_id, date_key = request.args.get('ceId'), request.args.get('date', today_key())
    if not ce_id: return jsonify({"error": "ceId is required."}), 400
    parse_date_key(date_key)
    result = get_resolver(current_viewer()['role']).get_ce_work_status_for_date(ce_id, date_key)
    return jsonify({"ceId": ce_id, "date": date_key, "schedule": result.to_dict() if result else None})


@app.route("/api/roster", methods=['GET'])
@api_error_handler
def roster():
    date_key = request.args.get('date', today_key())
    rows = get_roster_view(current_viewer()['role']).show(date_key)
    return jsonify({"date": date_key, "count": len(rows), "rows": [r.to_dict() for r in rows]})


@app.route("/api/work-statuses", methods=['GET'])
@api_error_handler
def work_statuses():
    return jsonify(status_legend())


# --- CE Roster Endpoints ---
@app.route("/api/ce-list", methods=['GET', 'POST'])
@api_error_handler
def handle_ce_list():
    if request.method == 'GET': return jsonify(ce_manager.load())
    payload, viewer = payload_json(), current_viewer()
    if viewer['role'] == ROLE_VIEWER: raise PermissionDenied("Viewers cannot edit.")
    new_ce = ce_manager.add_ce(payload.get('name'), payload.get('workType') or 'ME', created_by=viewer['displayName'])
    audit_logger.log_action('ce_add', {"ceId": new_ce['id'], "ceName": new_ce['name']}, viewer)
    return jsonify({"message": f"CE {new_ce['name']} added.", "ce": new_ce})


@app.route("/api/ce-list/<string:ce_id>", methods=['PUT', 'DELETE'])
@api_error_handler
@require_editor
def handle_ce(ce_id):
    viewer = current_viewer()
    if request.method == 'DELETE':
        removed = ce_manager.delete_ce(ce_id)
        audit_logger.log_action('ce_delete', {"ceId": ce_id, "ceName": removed['name']}, viewer)
        return jsonify({"message": f"CE {removed['name']} deleted."})
    payload = payload_json()
    before = ce_manager.get_ce(ce_id)
    ce = ce_manager.update_ce(ce_id, name=payload.get('name'), work_type=payload.get('workType'),
                              weekly_status=payload.get('status'), updated_by=viewer['displayName'])
    if ce['workType'] != before['workType']:
        audit_logger.log_action('work_type_change', {"ceId": ce_id, "from": before['workType'], "to": ce['workType']}, viewer)
    return jsonify({"message": "CE updated.", "ce": ce})


@app.route("/api/ce-list/sort", methods=['POST'])
@api_error_handler
@require_editor
def sort_ce_list():
    sort_type = payload_json().get('sortType')
    ce_list = ce_manager.sort_ce_list(sort_type)
    audit_logger.log_action('ce_sort', {"sortType": sort_type}, current_viewer())
    return jsonify(ce_list)


@app.route("/api/ce-status/<string:date_key>", methods=['GET', 'POST'])
@api_error_handler
def handle_ce_status(date_key):
    if request.method == 'GET': return jsonify(daily_status.statuses_for(date_key))
    if current_viewer()['role'] == ROLE_VIEWER: raise PermissionDenied("Viewers cannot edit.")
    payload = payload_json()
    daily_status.update_status(date_key, payload.get('ceId'), payload.get('status', ''))
    return jsonify({"message": "Day status updated."})


# --- Event and Calendar Endpoints ---
@app.route("/api/events", methods=['GET', 'POST'])
@api_error_handler
def handle_events():
    if request.method == 'GET':
        if request.args.get('date'): return jsonify(schedule_core.events_for_date(request.args['date']))
        year, month = parse_month_arg(request.args.get('month', datetime.now().strftime('%Y-%m')))
        return jsonify(schedule_core.events_for_month(year, month))
    viewer = current_viewer()
    if viewer['role'] == ROLE_VIEWER: raise PermissionDenied("Viewers cannot edit.")
    payload = payload_json()
    event_id = schedule_core.add_event(payload, created_by=viewer['displayName'])
    audit_logger.log_action('event_add', {"eventId": event_id, "eventName": payload.get('name'), "dateKey": payload.get('date')}, viewer)
    return jsonify({"message": "Event added.", "id": event_id})


@app.route("/api/events/<string:date_key>/<string:event_id>", methods=['PUT', 'DELETE'])
@api_error_handler
@require_editor
def handle_event(date_key, event_id):
    viewer = current_viewer()
    if request.method == 'DELETE':
        schedule_core.delete_event(date_key, event_id)
        audit_logger.log_action('event_delete', {"eventId": event_id, "dateKey": date_key}, viewer)
        return jsonify({"message": "Event deleted."})
    schedule_core.update_event(date_key, event_id, payload_json(), updated_by=viewer['displayName'])
    audit_logger.log_action('event_edit', {"eventId": event_id, "dateKey": date_key}, viewer)
    return jsonify({"message": "Event updated."})


@app.route("/api/calendar", methods=['GET'])
@api_error_handler
def calendar_grid():
    year, month = request.args.get('year', type=int), request.args.get('month', type=int)
    if not year or not month: raise ValidationError("year and month are required.")
    cells = generate_calendar_dates(year, month)
    events = {}
    for y, m in sorted({(c['date'].year, c['date'].month) for c in cells}):
        events.update(schedule_core.events_for_month(y, m))
    first = cells[[c['isCurrentMonth'] for c in cells].index(True)]['date']
    return jsonify({"title": format_month_year(first), "cells": [
        {"date": format_date_iso(c['date']), "isCurrentMonth": c['isCurrentMonth'], "isPrevMonth": c['isPrevMonth'],
         "events": events.get(format_date_iso(c['date']), [])} for c in cells]})


# --- Announcement Endpoints ---
@app.route("/api/announcements/categories", methods=['GET', 'POST'])
@api_error_handler
def handle_categories():
    if request.method == 'GET':
        announcements.ensure_default_categories()
        return jsonify(announcements.list_categories())
    payload = payload_json()
    category_id = announcements.add_category(current_viewer(), payload.get('name'), payload.get('icon'))
    return jsonify({"message": "Category added.", "id": category_id})


@app.route("/api/announcements/categories/<string:category_id>", methods=['DELETE'])
@api_error_handler
def delete_category(category_id):
    remaining = announcements.delete_category(current_viewer(), category_id)
    return jsonify({"message": "Category deleted.", "threadsKept": remaining})


@app.route("/api/announcements/threads", methods=['GET', 'POST'])
@api_error_handler
def handle_threads():
    if request.method == 'GET': return jsonify(announcements.list_threads(request.args.get('category')))
    payload = payload_json()
    thread_id = announcements.post_thread(current_viewer(), payload.get('title'), payload.get('content'), payload.get('category'))
    return jsonify({"message": "Thread posted.", "id": thread_id})


@app.route("/api/announcements/threads/<string:thread_id>", methods=['GET', 'DELETE'])
@api_error_handler
def handle_thread(thread_id):
    if request.method == 'GET': return jsonify(announcements.open_thread(thread_id))
    announcements.delete_thread(current_viewer(), thread_id)
    return jsonify({"message": "Thread deleted."})


@app.route("/api/announcements/threads/<string:thread_id>/replies", methods=['POST'])
@api_error_handler
def reply_to_thread(thread_id):
    reply_id = announcements.reply(current_viewer(), thread_id, payload_json().get('content'))
    return jsonify({"message": "Reply posted.", "id": reply_id})


# --- Chat Endpoints ---
@app.route("/api/chat/rooms", methods=['GET', 'POST'])
@api_error_handler
def handle_rooms():
    viewer = current_viewer()
    if request.method == 'GET':
        rooms, total_unread = chat.rooms_for(viewer)
        return jsonify({"rooms": rooms, "totalUnread": total_unread})
    payload = payload_json()
    directory = {u['uid']: u for u in user_manager.all_users()}
    room_id, created = chat.create_room(viewer, payload.get('type', 'direct'), payload.get('members'),
                                        payload.get('name'), directory)
    return jsonify({"id": room_id, "created": created})


@app.route("/api/chat/rooms/<string:room_id>/messages", methods=['GET', 'POST'])
@api_error_handler
def handle_messages(room_id):
    viewer = current_viewer()
    if request.method == 'GET': return jsonify(chat.messages(viewer, room_id))
    message_id = chat.send_message(viewer, room_id, payload_json().get('content'))
    return jsonify({"message": "Sent.", "id": message_id})


@app.route("/api/chat/rooms/<string:room_id>/messages/<string:message_id>", methods=['PUT', 'DELETE'])
@api_error_handler
def handle_message(room_id, message_id):
    viewer = current_viewer()
    if request.method == 'DELETE':
        chat.delete_message(viewer, room_id, message_id)
        return jsonify({"message": "Message deleted."})
    chat.edit_message(viewer, room_id, message_id, payload_json().get('content'))
    return jsonify({"message": "Message updated."})


@app.route("/api/chat/rooms/<string:room_id>/read", methods=['POST'])
@api_error_handler
def mark_room_read(room_id):
    chat.mark_as_read(current_viewer(), room_id)
    return jsonify({"message": "Marked as read."})


# --- Users and Audit Endpoints ---
@app.route("/api/users", methods=['GET', 'POST'])
@api_error_handler
def handle_users():
    if request.method == 'GET':
        if not user_manager.all_users(): user_manager.initialize_from_ce_list(ce_manager.load())
        return jsonify(user_manager.all_users())
    viewer = current_viewer()
    if viewer['role'] != ROLE_ADMIN: raise PermissionDenied("Only admins can create users.")
    user = user_manager.create_user(payload_json())
    audit_logger.log_action('user-create', {"uid": user['uid']}, viewer)
    return jsonify({"message": f"User {user['username']} created.", "user": user})


@app.route("/api/audit-logs", methods=['GET'])
@api_error_handler
def audit_logs():
    if current_viewer()['role'] != ROLE_ADMIN: raise PermissionDenied("Only admins can read the audit log.")
    entries = audit_logger.recent(max(request.args.get('limit', 50, type=int), 0))
    return jsonify([{**e, "label": audit_logger.describe(e['action'])} for e in entries])


if __name__ == "__main__":
    init_db()
    app.run(host='0.0.0.0', port=5000, debug=True)
