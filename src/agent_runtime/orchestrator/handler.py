"""The message-processing loop.

:class:`MessageHandler` owns the full pass over one inbound message:

1. Skip messages the agent sent itself.
2. Persist the message before anything else awaits, then attach an
   embedding when one can be computed.  A redelivered message is not an
   error.
3. Ask the small model whether to respond, using a narrow state slice.
4. On ``RESPOND``: compose the full state, generate a structured reply with
   a bounded number of attempts, and commit it if no newer message in the
   room has superseded this one.
5. Dispatch the reply's actions, then run evaluators.
6. Emit run lifecycle events throughout.

The whole pass races a wall-clock budget.  On expiry the run is reported as
timed out and abandoned, but the in-flight work is *not* cancelled: model
and network calls may still complete and anything they already committed
stays committed.  Deliveries attempted by an abandoned run are dropped.

Usage::

    handler = MessageHandler(runtime)
    run = await handler.handle_message(message, callback)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Sequence

from agent_runtime.errors import DuplicateMemoryError, RunTimeoutError
from agent_runtime.events import EventType
from agent_runtime.prompts.parsing import extract_attributes, parse_json_object_from_text
from agent_runtime.prompts.templates import compose_prompt
from agent_runtime.types import (
    Content,
    HandlerCallback,
    Memory,
    ModelType,
    ParticipantState,
    RunStatus,
    State,
    new_id,
    now_ms,
)

if TYPE_CHECKING:
    from agent_runtime.runtime import AgentRuntime

log = logging.getLogger(__name__)

# Providers used for the cheap should-respond decision.
SHOULD_RESPOND_PROVIDERS: tuple[str, ...] = (
    "PROVIDERS",
    "SHOULD_RESPOND",
    "CHARACTER",
    "RECENT_MESSAGES",
    "ENTITIES",
)

RESPOND = "RESPOND"

# Fields a reply must carry before it is accepted without another attempt.
REPLY_REQUIRED_FIELDS: tuple[str, ...] = ("thought", "actions", "text")
POST_REQUIRED_FIELDS: tuple[str, ...] = ("thought", "text")


# ---------------------------------------------------------------------------
# Run bookkeeping
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class Run:
    """Correlation scope for one pass over one message.

    A run is closed exactly once: completed, errored or timed out.
    """

    run_id: str
    message_id: str
    room_id: str
    entity_id: str
    start_time: int = field(default_factory=now_ms)
    status: RunStatus = RunStatus.STARTED
    end_time: int | None = None
    error: str | None = None
    did_respond: bool = False
    responses: list[Memory] = field(default_factory=list)

    @property
    def closed(self) -> bool:
        return self.status is not RunStatus.STARTED

    @property
    def duration(self) -> int:
        return (self.end_time or now_ms()) - self.start_time

    def payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "run_id": self.run_id,
            "message_id": self.message_id,
            "room_id": self.room_id,
            "entity_id": self.entity_id,
            "start_time": self.start_time,
            "status": self.status.value,
            "source": "messageHandler",
        }
        if self.end_time is not None:
            payload["end_time"] = self.end_time
            payload["duration"] = self.duration
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True, slots=True)
class Decision:
    """Parsed outcome of the should-respond prompt."""

    action: str
    providers: tuple[str, ...] = ()

    @property
    def should_respond(self) -> bool:
        return self.action == RESPOND


def _with_default_action(content: Content) -> Content:
    # Text with no actions is sent as a plain reply.
    if content.text and not content.actions:
        content.actions = ["REPLY"]
    return content


def _missing_fields(parsed: dict[str, Any], required: Sequence[str]) -> list[str]:
    missing = []
    for name in required:
        if name == "text":
            # An empty text is legitimate (e.g. IGNORE); the key must exist.
            if "text" not in parsed and "plan" not in parsed:
                missing.append(name)
        elif not parsed.get(name):
            missing.append(name)
    return missing


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------


class MessageHandler:
    """Drives inbound messages through decide, respond, act and evaluate.

    Args:
        runtime: The owning runtime.  Supplies the store, model access,
            registries, freshness tracker, event bus and limits.
    """

    def __init__(self, runtime: AgentRuntime) -> None:
        self.runtime = runtime
        self._abandoned: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def handle_message(
        self,
        message: Memory,
        callback: HandlerCallback | None = None,
    ) -> Run | None:
        """Process one inbound message end to end.

        Returns:
            The closed :class:`Run`, or ``None`` for the agent's own messages.

        Raises:
            RunTimeoutError: The run exceeded ``runtime.run_timeout``.
            Exception: Anything unhandled during processing, re-raised after
                a ``RUN_ENDED`` event with ``status="error"``.
        """
        runtime = self.runtime
        if message.entity_id == runtime.agent_id:
            log.debug("Ignoring message %s sent by the agent itself.", message.id)
            return None

        response_id = runtime.tracker.begin_response(runtime.agent_id, message.room_id)
        run = Run(
            run_id=new_id(),
            message_id=message.id,
            room_id=message.room_id,
            entity_id=message.entity_id,
        )
        # Stored before anything else awaits so rooms keep arrival order.
        try:
            await self._store_incoming(message)
        except Exception as exc:
            await runtime.emit_event(EventType.RUN_STARTED, run.payload())
            await self._close(run, RunStatus.ERROR, error=str(exc) or type(exc).__name__)
            runtime.tracker.end_response(runtime.agent_id, message.room_id, response_id)
            raise
        await runtime.emit_event(EventType.RUN_STARTED, run.payload())

        task = asyncio.ensure_future(self._process(run, message, response_id, callback))
        done, _ = await asyncio.wait({task}, timeout=runtime.run_timeout)
        if task in done:
            return task.result()

        await self._abandon(run, task)
        raise RunTimeoutError(run.run_id, runtime.run_timeout)

    async def handle_reaction(self, message: Memory) -> bool:
        """Persist a reaction; a duplicate is a benign no-op.

        Returns:
            ``True`` if stored, ``False`` if it already existed.
        """
        try:
            await self.runtime.store.create_memory(message)
        except Exception as exc:
            if getattr(exc, "code", None) == DuplicateMemoryError.UNIQUE_VIOLATION:
                log.warning("Duplicate reaction %s; skipping.", message.id)
                return False
            log.error("Could not store reaction %s.", message.id, exc_info=True)
            raise
        return True

    async def handle_post_generated(
        self,
        message: Memory,
        callback: HandlerCallback | None = None,
    ) -> list[Memory]:
        """Generate and commit an agent-initiated post for *message*'s room.

        Posts skip the should-respond decision and the freshness gate.
        """
        runtime = self.runtime
        await self._store_incoming(message)
        await self._attach_embedding(message)
        state = await runtime.compose_state(message)
        template = runtime.get_template("post", "message_handler")
        content = await self._generate(state, template, ModelType.TEXT_SMALL, POST_REQUIRED_FIELDS)
        if content is None:
            log.warning("Post generation for room %s produced nothing usable.", message.room_id)
            await runtime.evaluate(message, state, False, callback, [])
            return []

        responses = await self._commit(message, content)
        await runtime.process_actions(message, responses, state, callback)
        await runtime.evaluate(message, state, True, callback, responses)
        return responses

    @property
    def abandoned_count(self) -> int:
        """Timed-out runs whose work is still in flight."""
        return len(self._abandoned)

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    async def _process(
        self,
        run: Run,
        message: Memory,
        response_id: str,
        callback: HandlerCallback | None,
    ) -> Run:
        runtime = self.runtime
        try:
            await self._attach_embedding(message)
            deliver = self._guard_delivery(run, callback)

            state = await runtime.compose_state(message, SHOULD_RESPOND_PROVIDERS)

            if await self._is_muted(message):
                log.info("Room %s is muted; ignoring message %s.", message.room_id, message.id)
                await runtime.evaluate(message, state, False, deliver, [])
                await self._close(run, RunStatus.COMPLETED)
                return run

            decision = await self._decide(state)
            if not decision.should_respond:
                log.debug("Decided %s for message %s.", decision.action, message.id)
                await runtime.evaluate(message, state, False, deliver, [])
                await self._close(run, RunStatus.COMPLETED)
                return run

            state = await runtime.compose_state(message, None, decision.providers)
            content = await self._generate(
                state,
                runtime.get_template("message_handler"),
                ModelType.TEXT_LARGE,
                REPLY_REQUIRED_FIELDS,
            )

            if content is None:
                log.warning("No usable reply generated for message %s.", message.id)
            elif run.closed or not runtime.tracker.is_current(runtime.agent_id, message.room_id, response_id):
                log.info(
                    "Response discarded: newer message being processed (agent=%s, room=%s).",
                    runtime.agent_id,
                    message.room_id,
                )
            else:
                run.responses = await self._commit(message, content)
                run.did_respond = True
                runtime.tracker.end_response(runtime.agent_id, message.room_id, response_id)
                await runtime.process_actions(message, run.responses, state, deliver)

            await runtime.evaluate(message, state, run.did_respond, deliver, run.responses)
            await self._close(run, RunStatus.COMPLETED)
            return run
        except Exception as exc:
            await self._close(run, RunStatus.ERROR, error=str(exc) or type(exc).__name__)
            raise
        finally:
            runtime.tracker.end_response(runtime.agent_id, message.room_id, response_id)

    async def _close(self, run: Run, status: RunStatus, error: str | None = None) -> None:
        if run.closed:
            log.debug("Run %s already closed as %s; not emitting %s.", run.run_id, run.status.value, status.value)
            return
        run.status = status
        run.end_time = now_ms()
        run.error = error
        await self.runtime.emit_event(EventType.RUN_ENDED, run.payload())

    async def _abandon(self, run: Run, task: asyncio.Task[Any]) -> None:
        timeout = self.runtime.run_timeout
        run.status = RunStatus.TIMEOUT
        run.end_time = now_ms()
        run.error = f"Run exceeded {timeout:.0f}s timeout"
        log.warning("Run %s for message %s timed out after %.0fs.", run.run_id, run.message_id, timeout)

        self._abandoned.add(task)
        task.add_done_callback(self._on_abandoned_done)
        await self.runtime.emit_event(EventType.RUN_TIMEOUT, run.payload())

    def _on_abandoned_done(self, task: asyncio.Task[Any]) -> None:
        self._abandoned.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.warning("Timed-out run failed later.", exc_info=exc)
        else:
            log.info("Timed-out run finished; its result was discarded.")

    def _guard_delivery(self, run: Run, callback: HandlerCallback | None) -> HandlerCallback | None:
        """Wrap *callback* so an abandoned run cannot deliver anything."""
        if callback is None:
            return None

        async def deliver(content: Content) -> list[Memory] | None:
            if run.status is RunStatus.TIMEOUT:
                log.info("Dropping delivery from timed-out run %s.", run.run_id)
                return []
            return await callback(content)

        return deliver

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _store_incoming(self, message: Memory) -> bool:
        """Persist *message*; an already-stored id is a no-op.

        Returns:
            ``True`` if stored, ``False`` if it already existed.
        """
        try:
            await self.runtime.store.create_memory(message)
        except Exception as exc:
            if getattr(exc, "code", None) == DuplicateMemoryError.UNIQUE_VIOLATION:
                log.warning("Message %s is already stored; continuing.", message.id)
                return False
            raise
        return True

    async def _attach_embedding(self, message: Memory) -> None:
        runtime = self.runtime
        try:
            embedded = await runtime.add_embedding_to_memory(message)
        except Exception:
            log.warning("Embedding failed for message %s; keeping it without a vector.", message.id, exc_info=True)
            return
        if embedded is not message:
            await runtime.store.update_memory(embedded)

    async def _is_muted(self, message: Memory) -> bool:
        runtime = self.runtime
        participation = await runtime.store.get_participant_state(message.room_id, runtime.agent_id)
        if participation is not ParticipantState.MUTED:
            return False
        return not runtime.character.mentioned_in(message.content.text or "")

    async def _decide(self, state: State) -> Decision:
        runtime = self.runtime
        prompt = compose_prompt(state, runtime.get_template("should_respond"))
        log.debug("Should-respond prompt for %s:\n%s", runtime.character.name, prompt)

        raw = await runtime.use_model(ModelType.TEXT_SMALL, prompt=prompt)
        log.debug("Should-respond output for %s: %s", runtime.character.name, raw)

        parsed = parse_json_object_from_text(raw)
        if parsed is None:
            log.info("Should-respond output was not parseable; treating as IGNORE.")
            return Decision("IGNORE")

        action = parsed.get("action")
        if not isinstance(action, str):
            listed = Content.from_dict({"actions": parsed.get("actions")}).actions
            action = listed[0] if listed else "IGNORE"
        providers = Content.from_dict({"providers": parsed.get("providers")}).providers
        return Decision(action.strip().upper(), tuple(providers))

    async def _generate(
        self,
        state: State,
        template: Any,
        model_type: ModelType,
        required: Sequence[str],
    ) -> Content | None:
        """Prompt until a response carries every *required* field.

        After ``runtime.response_max_attempts`` attempts the most complete
        parsed response is used; text without actions becomes a ``REPLY``.
        If nothing ever parsed, plain prose from the model is sent as a
        text-only ``REPLY``.  ``None`` means there is nothing to send.
        """
        runtime = self.runtime
        attempts = runtime.response_max_attempts
        prompt = compose_prompt(state, template)

        best: dict[str, Any] | None = None
        best_missing = len(required) + 1
        last_raw = ""

        for attempt in range(1, attempts + 1):
            raw = await runtime.use_model(model_type, prompt=prompt)
            last_raw = raw if isinstance(raw, str) else ""
            parsed = parse_json_object_from_text(last_raw)
            if parsed is None:
                log.warning("Reply was not parseable (attempt %d/%d).", attempt, attempts)
                continue
            missing = _missing_fields(parsed, required)
            if not missing:
                return _with_default_action(Content.from_dict(parsed))
            if len(missing) <= best_missing:
                best, best_missing = parsed, len(missing)
            log.warning("Reply missing %s (attempt %d/%d).", ", ".join(missing), attempt, attempts)

        if best is not None:
            content = _with_default_action(Content.from_dict(best))
            log.warning("Using incomplete reply after %d attempt(s).", attempts)
            return content

        text = extract_attributes(last_raw, ["text"]).get("text")
        if not text and "{" not in last_raw:
            text = last_raw.strip()
        if text:
            log.warning("Falling back to a text-only reply after %d unparseable attempt(s).", attempts)
            return Content(text=text, actions=["REPLY"])
        return None

    async def _commit(self, message: Memory, content: Content) -> list[Memory]:
        """Persist the agent's reply plan and return the response memories.

        The stored record carries the reasoning and actions; the text itself
        is stored by the delivery callback when it is actually sent.
        """
        runtime = self.runtime
        content.in_reply_to = message.id
        if not content.source:
            content.source = message.content.source
        response = Memory(
            entity_id=runtime.agent_id,
            agent_id=runtime.agent_id,
            room_id=message.room_id,
            content=content,
        )
        record = Memory(
            id=response.id,
            entity_id=runtime.agent_id,
            agent_id=runtime.agent_id,
            room_id=message.room_id,
            created_at=response.created_at,
            content=Content(
                thought=content.thought,
                plan=content.plan,
                actions=list(content.actions),
                providers=list(content.providers),
                in_reply_to=message.id,
                source=content.source,
            ),
        )
        await runtime.store.create_memory(record)
        return [response]
