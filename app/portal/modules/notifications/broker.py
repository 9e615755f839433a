"""
In-process pub/sub broker keyed by room name.

Publishers call ``publish(room, event, payload)`` after their DB transaction has
committed; every subscription that covers the room receives a copy on its own
bounded queue. A full queue drops its oldest event so a stalled client never
blocks a publisher.

Fan-out is per process: subscribers connected to another worker process do not
see events published here.
"""
from __future__ import annotations

import itertools
import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from flask import Flask, current_app

from app.portal.utils import utcnow

logger = logging.getLogger(__name__)

_subscription_ids = itertools.count(1)


def form_room(form_id: int) -> str:
    return f"form-{form_id}"


def user_room(user_id: int) -> str:
    return f"user-{user_id}"


@dataclass
class Event:
    room: str
    name: str
    payload: dict[str, Any]
    id: int = 0
    created_at: datetime = field(default_factory=utcnow)

    def to_sse(self) -> str:
        return format_sse(self.name, {"room": self.room, **self.payload}, event_id=self.id)


def format_sse(event: str, data: Any, *, event_id: int | None = None) -> str:
    """Encode one Server-Sent Events message."""
    lines = []
    if event_id:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event}")
    body = json.dumps(data, default=str, separators=(",", ":"))
    for chunk in body.splitlines() or [""]:
        lines.append(f"data: {chunk}")
    return "\n".join(lines) + "\n\n"


class Subscription:
    def __init__(self, broker: "RoomBroker", rooms: Iterable[str], maxsize: int):
        self.id = next(_subscription_ids)
        self.rooms = frozenset(rooms)
        self.dropped = 0
        self._broker = broker
        self._queue: queue.Queue[Event] = queue.Queue(maxsize=maxsize)

    def deliver(self, ev: Event) -> None:
        while True:
            try:
                self._queue.put_nowait(ev)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                    logger.warning("Subscriber %s queue full; dropped oldest event", self.id)
                except queue.Empty:
                    pass

    def get(self, timeout: float | None = None) -> Event | None:
        """Next event, or None when the timeout elapses."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._broker.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class RoomBroker:
    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._rooms: dict[str, set[Subscription]] = {}
        self._lock = threading.Lock()
        self._event_ids = itertools.count(1)

    def subscribe(self, rooms: Iterable[str]) -> Subscription:
        sub = Subscription(self, rooms, self.queue_size)
        with self._lock:
            for room in sub.rooms:
                self._rooms.setdefault(room, set()).add(sub)
        logger.debug("Subscription %s joined rooms %s", sub.id, sorted(sub.rooms))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            for room in sub.rooms:
                members = self._rooms.get(room)
                if not members:
                    continue
                members.discard(sub)
                if not members:
                    del self._rooms[room]
        logger.debug("Subscription %s left rooms %s", sub.id, sorted(sub.rooms))

    def publish(self, room: str, event: str, payload: dict[str, Any]) -> int:
        """Fan an event out to the room; returns how many subscriptions received it."""
        with self._lock:
            members = list(self._rooms.get(room, ()))
            ev = Event(room=room, name=event, payload=payload, id=next(self._event_ids))
        for sub in members:
            sub.deliver(ev)
        if members:
            logger.debug("Published %s to %s (%d subscribers)", event, room, len(members))
        return len(members)

    def room_size(self, room: str) -> int:
        with self._lock:
            return len(self._rooms.get(room, ()))


def init_broker(app: Flask) -> RoomBroker:
    broker = RoomBroker(queue_size=int(app.config.get("EVENT_QUEUE_SIZE") or 100))
    app.extensions["room_broker"] = broker
    return broker


def get_broker(app: Flask | None = None) -> RoomBroker:
    app = app or current_app
    return app.extensions["room_broker"]


def broadcast(room: str, event: str, payload: dict[str, Any]) -> int:
    """Publish through the current app's broker. Call only after the DB commit."""
    return get_broker().publish(room, event, payload)
