"""Sequential execution of the actions named in a response.

Each response memory carries an ordered list of action names.  The
:class:`ActionDispatcher` resolves each name against the action registry
(by name, then by simile), checks the action's validator and runs its
handler.  Actions run strictly one after another: the delivery callback is
the single channel for user-visible output, and later actions may depend on
what earlier ones wrote.

Failures stay local.  An unknown name is skipped with a warning, a failed
validation is skipped quietly, and a handler that raises is logged with its
traceback while the remaining actions still run.

Usage::

    dispatcher = ActionDispatcher(runtime)
    outcomes = await dispatcher.dispatch(message, responses, state, callback)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from agent_runtime.events import EventType
from agent_runtime.types import Action, HandlerCallback, Memory, State, new_id

if TYPE_CHECKING:
    from agent_runtime.runtime import AgentRuntime

log = logging.getLogger(__name__)


@dataclass(slots=True)
class ActionOutcome:
    """What happened to one requested action.

    ``status`` is one of ``"completed"``, ``"failed"``, ``"invalid"`` or
    ``"unknown"``.
    """

    name: str
    status: str
    response_id: str
    error: str | None = None


class ActionDispatcher:
    """Resolves and runs actions for the owning runtime."""

    def __init__(self, runtime: AgentRuntime) -> None:
        self.runtime = runtime

    def resolve(self, name: str) -> Action | None:
        """Find the action registered as *name* or with *name* as a simile."""
        normalized = name.strip().upper()
        if not normalized:
            return None
        actions = list(self.runtime.actions)
        for action in actions:
            if action.name.upper() == normalized:
                return action
        for action in actions:
            if any(simile.upper() == normalized for simile in action.similes):
                return action
        return None

    async def dispatch(
        self,
        message: Memory,
        responses: Sequence[Memory],
        state: State,
        callback: HandlerCallback | None = None,
    ) -> list[ActionOutcome]:
        """Run every action named in *responses*, in listed order."""
        outcomes: list[ActionOutcome] = []
        for response in responses:
            for name in response.content.actions:
                outcomes.append(await self._run_one(name, message, response, responses, state, callback))
        if outcomes:
            log.debug(
                "Dispatched %d action(s) for message %s: %s",
                len(outcomes),
                message.id,
                ", ".join(f"{o.name}={o.status}" for o in outcomes),
            )
        return outcomes

    async def _run_one(
        self,
        name: str,
        message: Memory,
        response: Memory,
        responses: Sequence[Memory],
        state: State,
        callback: HandlerCallback | None,
    ) -> ActionOutcome:
        runtime = self.runtime
        action = self.resolve(name)
        if action is None:
            log.warning("No action registered for %r; skipping.", name)
            return ActionOutcome(name=name, status="unknown", response_id=response.id)

        try:
            valid = await action.validate(runtime, message, state)
        except Exception as exc:
            log.error("Validator for action %s raised.", action.name, exc_info=True)
            return ActionOutcome(name=action.name, status="failed", response_id=response.id, error=str(exc))
        if not valid:
            log.debug("Action %s not valid for message %s; skipping.", action.name, message.id)
            return ActionOutcome(name=action.name, status="invalid", response_id=response.id)

        action_id = new_id()
        started = time.monotonic()
        await runtime.emit_event(
            EventType.ACTION_STARTED,
            {
                "action_name": action.name,
                "action_id": action_id,
                "message_id": message.id,
                "room_id": message.room_id,
            },
        )

        error: str | None = None
        try:
            await action.handler(
                runtime,
                message,
                state,
                {"responses": list(responses), "response": response},
                callback,
            )
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            log.error("Action %s failed for message %s.", action.name, message.id, exc_info=True)

        await runtime.emit_event(
            EventType.ACTION_COMPLETED,
            {
                "action_name": action.name,
                "action_id": action_id,
                "message_id": message.id,
                "room_id": message.room_id,
                "duration": time.monotonic() - started,
                "error": error,
            },
        )
        return ActionOutcome(
            name=action.name,
            status="failed" if error else "completed",
            response_id=response.id,
            error=error,
        )
