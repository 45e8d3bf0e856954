"""Post-response evaluators.

Evaluators run after action dispatch, in registration order, whether or not
the agent replied; reflection in particular cares about conversations the
agent stayed out of.  An evaluator can opt out of ignored messages by
setting ``always_run=False``.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Sequence

from agent_runtime.events import EventType
from agent_runtime.types import HandlerCallback, Memory, State, new_id

if TYPE_CHECKING:
    from agent_runtime.runtime import AgentRuntime

log = logging.getLogger(__name__)


class EvaluatorRunner:
    """Runs the runtime's evaluators with per-evaluator failure isolation."""

    def __init__(self, runtime: AgentRuntime) -> None:
        self.runtime = runtime

    async def evaluate(
        self,
        message: Memory,
        state: State,
        did_respond: bool = False,
        callback: HandlerCallback | None = None,
        responses: Sequence[Memory] | None = None,
    ) -> list[str]:
        """Validate and run each evaluator.

        Returns:
            Names of the evaluators whose handler ran (including ones that
            then raised).
        """
        runtime = self.runtime
        ran: list[str] = []
        options = {"did_respond": did_respond, "responses": list(responses or [])}

        for evaluator in runtime.evaluators:
            if not did_respond and not evaluator.always_run:
                log.debug("Evaluator %s skipped: agent did not respond.", evaluator.name)
                continue
            try:
                if not await evaluator.validate(runtime, message, state):
                    continue
            except Exception:
                log.error("Validator for evaluator %s raised.", evaluator.name, exc_info=True)
                continue

            evaluator_id = new_id()
            started = time.monotonic()
            await runtime.emit_event(
                EventType.EVALUATOR_STARTED,
                {"evaluator_name": evaluator.name, "evaluator_id": evaluator_id, "message_id": message.id},
            )
            error: str | None = None
            try:
                await evaluator.handler(runtime, message, state, options, callback)
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                log.error("Evaluator %s failed for message %s.", evaluator.name, message.id, exc_info=True)
            ran.append(evaluator.name)
            await runtime.emit_event(
                EventType.EVALUATOR_COMPLETED,
                {
                    "evaluator_name": evaluator.name,
                    "evaluator_id": evaluator_id,
                    "message_id": message.id,
                    "duration": time.monotonic() - started,
                    "error": error,
                },
            )
        return ran
