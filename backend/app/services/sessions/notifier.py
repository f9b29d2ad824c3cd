from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from flask import current_app

INSERT = 'INSERT'
UPDATE = 'UPDATE'
DELETE = 'DELETE'

SUBSCRIPTION_ROOM = 'session-updates'


def table_room(table):
    return f"{SUBSCRIPTION_ROOM}:{table}"


@dataclass(frozen=True)
class ChangeEvent:
    """Row-level change. Consumers treat it as a hint and re-fetch state."""

    table: str
    event_type: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None

    def to_dict(self):
        return {
            'table': self.table,
            'eventType': self.event_type,
            'new': self.new,
            'old': self.old,
        }


class ChangeNotifier:
    """Fans change events out to in-process observers.

    Subclasses add a transport by overriding ``deliver``. Delivery failures
    are logged and never propagate into the operation that published.
    """

    def __init__(self):
        self._observers: List[Callable[[ChangeEvent], None]] = []

    def subscribe(self, callback):
        self._observers.append(callback)

        def unsubscribe():
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def publish(self, table, event_type, new=None, old=None) -> ChangeEvent:
        event = ChangeEvent(table=table, event_type=event_type, new=new, old=old)
        for callback in list(self._observers):
            try:
                callback(event)
            except Exception:
                current_app.logger.exception(f"[notify-observer-failed] table={table} event={event_type}")
        try:
            self.deliver(event)
        except Exception:
            current_app.logger.exception(f"[notify-deliver-failed] table={table} event={event_type}")
        return event

    def deliver(self, event: ChangeEvent) -> None:
        pass


class SocketIONotifier(ChangeNotifier):
    """Pushes changes to the ``/ws`` rooms for all tables and for the row's table."""

    def __init__(self, socketio, namespace='/ws'):
        super().__init__()
        self.socketio = socketio
        self.namespace = namespace

    def deliver(self, event: ChangeEvent) -> None:
        payload = event.to_dict()
        self.socketio.emit('row_change', payload, to=SUBSCRIPTION_ROOM, namespace=self.namespace)
        self.socketio.emit('row_change', payload, to=table_room(event.table), namespace=self.namespace)
