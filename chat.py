# chat.py

import logging

from constants import CHAT_MESSAGE_LIMIT, CHAT_PREVIEW_LENGTH, ROLE_ADMIN
from errors import NotFoundError, PermissionDenied, ValidationError
from store import join_path, now_ms

ROOM_TYPES = ('direct', 'group')


class ChatManager:
    def __init__(self, store, data_root):
        self.store = store
        self.rooms_path = join_path(data_root, 'chats/rooms')
        self.messages_path = join_path(data_root, 'chats/messages')

    def _room(self, room_id):
        room = self.store.read_once(join_path(self.rooms_path, room_id))
        if room is None: raise NotFoundError(f"Room '{room_id}' not found.")
        return room

    def _check_member(self, user, room):
        if user['role'] != ROLE_ADMIN and not (room.get('members') or {}).get(user['uid']):
            raise PermissionDenied("You are not a member of this room.")

    def rooms_for(self, user):
        """Rooms visible to the user, most recent activity first, and their total unread count."""
        data = self.store.read_once(self.rooms_path) or {}
        is_admin = user['role'] == ROLE_ADMIN
        rooms = [{"id": k, **room} for k, room in data.items()
                 if is_admin or (room.get('members') or {}).get(user['uid'])]
        rooms.sort(key=lambda r: r.get('lastMessageAt') or r.get('createdAt') or 0, reverse=True)
        total_unread = sum((r.get('unreadCount') or {}).get(user['uid'], 0) for r in rooms)
        return rooms, total_unread

    def find_direct_room(self, uid1, uid2):
        data = self.store.read_once(self.rooms_path) or {}
        for room_id, room in data.items():
            members = room.get('members') or {}
            if room.get('type') == 'direct' and members.get(uid1) and members.get(uid2) and len(members) == 2:
                return room_id
        return None

    def create_room(self, user, room_type, member_uids, name=None, directory=None):
        if room_type not in ROOM_TYPES: raise ValidationError(f"Unknown room type '{room_type}'.")
        member_uids = [uid for uid in (member_uids or []) if uid and uid != user['uid']]
        if not member_uids: raise ValidationError("Select at least one member.")
        if room_type == 'direct':
            member_uids = member_uids[:1]
            existing = self.find_direct_room(user['uid'], member_uids[0])
            if existing: return existing, False
            other = (directory or {}).get(member_uids[0]) or {}
            room_name = other.get('displayName') or other.get('username') or '不明'
        else:
            room_name = (name or '').strip() or 'グループ'
        room = {
            'name': room_name, 'type': room_type, 'members': {uid: True for uid in [user['uid'], *member_uids]},
            'creator': user['uid'], 'createdAt': now_ms(), 'lastMessage': '', 'lastMessageAt': 0,
        }
        room_id = self.store.push(self.rooms_path, room)
        logging.info(f"Chat room {room_id} ({room_type}) created by {user['uid']}.")
        return room_id, True

    def messages(self, user, room_id, limit=CHAT_MESSAGE_LIMIT):
        self._check_member(user, self._room(room_id))
        data = self.store.read_once(join_path(self.messages_path, room_id)) or {}
        messages = sorted(({"id": k, **m} for k, m in data.items()), key=lambda m: m.get('timestamp') or 0)
        return messages[-limit:]

    def send_message(self, user, room_id, content):
        content = (content or '').strip()
        if not content: raise ValidationError("Message is empty.")
        room = self._room(room_id)
        self._check_member(user, room)
        stamp = now_ms()
        message_id = self.store.push(join_path(self.messages_path, room_id), {
            'content': content, 'senderUid': user['uid'], 'senderName': user['displayName'],
            'timestamp': stamp, 'readBy': {user['uid']: True},
        })
        preview = content if len(content) <= CHAT_PREVIEW_LENGTH else content[:CHAT_PREVIEW_LENGTH] + '…'
        updates = {'lastMessage': preview, 'lastMessageAt': stamp}
        unread = room.get('unreadCount') or {}
        for member_id in room.get('members') or {}:
            if member_id != user['uid']:
                updates[f"unreadCount/{member_id}"] = unread.get(member_id, 0) + 1
        self.store.update(join_path(self.rooms_path, room_id), updates)
        return message_id

    def mark_as_read(self, user, room_id):
        self._check_member(user, self._room(room_id))
        self.store.set(join_path(self.rooms_path, room_id, 'unreadCount', user['uid']), 0)

    def _own_message(self, user, room_id, message_id):
        path = join_path(self.messages_path, room_id, message_id)
        message = self.store.read_once(path)
        if message is None: raise NotFoundError(f"Message '{message_id}' not found.")
        if user['role'] != ROLE_ADMIN and message.get('senderUid') != user['uid']:
            raise PermissionDenied("Only the sender can change this message.")
        return path

    def edit_message(self, user, room_id, message_id, content):
        content = (content or '').strip()
        if not content: raise ValidationError("Message is empty.")
        self.store.update(self._own_message(user, room_id, message_id), {'content': content, 'editedAt': now_ms()})

    def delete_message(self, user, room_id, message_id):
        self.store.remove(self._own_message(user, room_id, message_id))
