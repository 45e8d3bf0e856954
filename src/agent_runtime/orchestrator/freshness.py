"""Per-agent, per-room registry of the latest in-flight response.

When two messages arrive for the same room before either reply is
delivered, only the most recently started generation may deliver.  Every
run calls :meth:`ResponseTracker.begin_response` when it starts and checks
:meth:`ResponseTracker.is_current` immediately before any user-visible
delivery.

The tracker lives on a single event loop, so plain dicts are sufficient.
Swap in a shared store (e.g. Redis) for multi-process deployments by
implementing the same three methods.
"""

from __future__ import annotations

import logging
import uuid

log = logging.getLogger(__name__)


class ResponseTracker:
    """Last-writer-wins map of ``agent_id -> room_id -> response_id``."""

    def __init__(self) -> None:
        self._latest: dict[str, dict[str, str]] = {}

    def begin_response(self, agent_id: str, room_id: str) -> str:
        """Record and return a fresh response id for ``(agent_id, room_id)``.

        Any id previously recorded for the pair is overwritten.
        """
        response_id = str(uuid.uuid4())
        rooms = self._latest.setdefault(agent_id, {})
        previous = rooms.get(room_id)
        rooms[room_id] = response_id
        if previous is not None:
            log.debug(
                "Response %s supersedes %s (agent=%s, room=%s).",
                response_id,
                previous,
                agent_id,
                room_id,
            )
        return response_id

    def is_current(self, agent_id: str, room_id: str, response_id: str) -> bool:
        """Whether *response_id* is still the latest one for the pair."""
        return self._latest.get(agent_id, {}).get(room_id) == response_id

    def end_response(
        self,
        agent_id: str,
        room_id: str,
        response_id: str | None = None,
    ) -> None:
        """Stop tracking the room.

        When *response_id* is given the entry is only removed if it still
        matches, so a superseded run cannot clear a newer run's entry.
        Agents with no tracked rooms are dropped.
        """
        rooms = self._latest.get(agent_id)
        if rooms is None:
            return
        if response_id is not None and rooms.get(room_id) != response_id:
            return
        rooms.pop(room_id, None)
        if not rooms:
            del self._latest[agent_id]

    def pending_rooms(self, agent_id: str) -> list[str]:
        return list(self._latest.get(agent_id, {}))

    def __len__(self) -> int:
        return sum(len(rooms) for rooms in self._latest.values())

    def __repr__(self) -> str:
        return f"ResponseTracker(agents={len(self._latest)}, rooms={len(self)})"
