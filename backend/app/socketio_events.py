from typing import Dict

from flask import current_app, request
from flask_socketio import join_room, leave_room, emit

from app import socketio
from app.auth import TokenIssuer
from app.models import GameSession, Participant
from app.services.sessions.notifier import SUBSCRIPTION_ROOM, table_room

NAMESPACE = '/ws'
SUBSCRIBABLE_TABLES = {GameSession.__tablename__, Participant.__tablename__}

_tokens = TokenIssuer()
_sid_to_user: Dict[str, int] = {}


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _rooms_for(tables):
    rooms = []
    for table in tables:
        if table == '*':
            rooms.append(SUBSCRIPTION_ROOM)
        elif table in SUBSCRIBABLE_TABLES:
            rooms.append(table_room(table))
        else:
            return None, table
    return rooms, None


def handle_connect(auth=None):
    token = auth.get('token') if isinstance(auth, dict) else None
    user = _tokens.resolve(token)
    if user is None:
        current_app.logger.info("[ws-reject] missing or invalid token")
        return False
    _sid_to_user[_get_sid()] = user.id
    emit('connected', {'message': 'Connected to /ws', 'user_id': user.id})


def handle_disconnect(reason=None):
    _sid_to_user.pop(_get_sid(), None)


def handle_subscribe(data):
    tables = (data or {}).get('tables') or ['*']
    rooms, unknown = _rooms_for(tables)
    if rooms is None:
        emit('error', {'message': f'Unknown table: {unknown}'})
        return
    for room in rooms:
        join_room(room)
    current_app.logger.info(f"[ws-subscribe] user={_sid_to_user.get(_get_sid())} rooms={rooms}")
    emit('subscribed', {'rooms': rooms})


def handle_unsubscribe(data):
    tables = (data or {}).get('tables') or ['*']
    rooms, unknown = _rooms_for(tables)
    if rooms is None:
        emit('error', {'message': f'Unknown table: {unknown}'})
        return
    for room in rooms:
        leave_room(room)
    emit('unsubscribed', {'rooms': rooms})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on the '/ws' namespace."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('subscribe', handle_subscribe, namespace=NAMESPACE)
    socketio.on_event('unsubscribe', handle_unsubscribe, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)
