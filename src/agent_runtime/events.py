"""Lifecycle event bus for the agent runtime.

Events are fire-and-forget notifications: inbound messages and reactions,
world and entity sync from connectors, run lifecycle, action and evaluator
progress, messages sent.  A failing handler is logged and never propagates
into the orchestration path that emitted the event.

Usage::

    bus = EventBus()
    bus.on(EventType.RUN_ENDED, my_handler)
    await bus.emit(EventType.RUN_ENDED, {"run_id": "...", "status": "completed"})
"""

from __future__ import annotations

import logging
from collections import defaultdict
from enum import Enum
from typing import Any

from agent_runtime.types import EventHandler

log = logging.getLogger(__name__)


class EventType(str, Enum):
    """Every event the runtime emits or routes."""

    MESSAGE_RECEIVED = "MESSAGE_RECEIVED"
    VOICE_MESSAGE_RECEIVED = "VOICE_MESSAGE_RECEIVED"
    REACTION_RECEIVED = "REACTION_RECEIVED"
    POST_GENERATED = "POST_GENERATED"
    MESSAGE_SENT = "MESSAGE_SENT"

    WORLD_JOINED = "WORLD_JOINED"
    WORLD_CONNECTED = "WORLD_CONNECTED"
    ENTITY_JOINED = "ENTITY_JOINED"
    ENTITY_LEFT = "ENTITY_LEFT"

    RUN_STARTED = "RUN_STARTED"
    RUN_ENDED = "RUN_ENDED"
    RUN_TIMEOUT = "RUN_TIMEOUT"

    ACTION_STARTED = "ACTION_STARTED"
    ACTION_COMPLETED = "ACTION_COMPLETED"
    EVALUATOR_STARTED = "EVALUATOR_STARTED"
    EVALUATOR_COMPLETED = "EVALUATOR_COMPLETED"


def _key(event_type: EventType | str) -> str:
    # str() of a str-mixin enum member is "EventType.X", not its value.
    return event_type.value if isinstance(event_type, EventType) else str(event_type)


class EventBus:
    """Name-keyed registry of async event handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Register *handler* for *event_type* (appended after existing ones)."""
        self._handlers[_key(event_type)].append(handler)

    def off(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(_key(event_type), [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        """Invoke every handler for *event_type* in registration order.

        Handler failures are logged with a traceback and otherwise ignored.
        """
        key = _key(event_type)
        handlers = list(self._handlers.get(key, []))
        if not handlers:
            return
        event_payload = {"type": key, **payload}
        for handler in handlers:
            try:
                await handler(event_payload)
            except Exception:
                log.warning(
                    "Event handler %r for %s failed.",
                    getattr(handler, "__name__", handler),
                    key,
                    exc_info=True,
                )

    def handler_count(self, event_type: str) -> int:
        key = _key(event_type)
        return len(self._handlers.get(key, []))

    def __repr__(self) -> str:
        total = sum(len(h) for h in self._handlers.values())
        return f"EventBus(events={len(self._handlers)}, handlers={total})"
