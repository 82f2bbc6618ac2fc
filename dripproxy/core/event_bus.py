"""In-memory topic event bus used for stream notifications."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable


EventHandler = Callable[[dict[str, Any]], None]


@dataclass(slots=True)
class EventBusStats:
    published: int = 0
    delivered: int = 0
    subscriptions: int = 0


class EventBus:
    def __init__(self, name: str = "stream") -> None:
        self.name = name
        self._subscriptions: dict[str, list[EventHandler]] = defaultdict(list)
        self._stats = EventBusStats()

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        handlers = self._subscriptions[topic]
        if handler in handlers:
            return
        handlers.append(handler)
        self._stats.subscriptions = sum(len(v) for v in self._subscriptions.values())

    def unsubscribe(self, topic: str, handler: EventHandler) -> None:
        handlers = self._subscriptions.get(topic, [])
        if handler in handlers:
            handlers.remove(handler)
        self._stats.subscriptions = sum(len(v) for v in self._subscriptions.values())

    def publish(self, topic: str, payload: dict[str, Any] | None = None) -> None:
        envelope = {
            "source": self.name,
            "topic": topic,
            "payload": payload or {},
        }
        self._stats.published += 1
        handlers: list[EventHandler] = []
        handlers.extend(self._subscriptions.get(topic, []))
        handlers.extend(self._subscriptions.get("*", []))
        for handler in handlers:
            handler(envelope)
            self._stats.delivered += 1

    def snapshot(self) -> dict[str, int | str]:
        return {
            "name": self.name,
            "published": self._stats.published,
            "delivered": self._stats.delivered,
            "subscriptions": self._stats.subscriptions,
        }

    def clear(self) -> None:
        self._subscriptions.clear()
        self._stats.subscriptions = 0
