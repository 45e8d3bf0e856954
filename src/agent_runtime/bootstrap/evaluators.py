"""Reflection: periodic self-review that distils durable facts.

Every few messages in a room the small model reviews the recent
conversation, writes a one-line reflection and lists new facts about the
participants.  Facts are stored in the ``facts`` table and surface again
through the ``FACTS`` provider.  Each review leaves a marker in the
``reflections`` table, so the interval restarts even when nothing new was
learned.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from agent_runtime.memory.store import FACTS_TABLE, REFLECTIONS_TABLE
from agent_runtime.prompts.parsing import parse_json_object_from_text
from agent_runtime.prompts.templates import compose_prompt
from agent_runtime.types import Content, Evaluator, HandlerCallback, Memory, ModelType, State

if TYPE_CHECKING:
    from agent_runtime.runtime import AgentRuntime

log = logging.getLogger(__name__)

MIN_REFLECTION_INTERVAL = 2
MAX_FACTS_IN_PROMPT = 20


def reflection_interval(runtime: AgentRuntime) -> int:
    """Messages that must accumulate in a room between reflections."""
    return max(MIN_REFLECTION_INTERVAL, runtime.recent_message_count // 4)


async def validate_reflection(runtime: AgentRuntime, message: Memory, state: State | None = None) -> bool:
    last = await runtime.store.get_memories(message.room_id, 1, table_name=REFLECTIONS_TABLE)
    since = last[-1].created_at if last else 0
    recent = await runtime.store.get_memories(message.room_id, runtime.recent_message_count)
    fresh = sum(1 for m in recent if m.created_at > since)
    return fresh >= reflection_interval(runtime)


async def _mark_reflected(runtime: AgentRuntime, message: Memory, thought: str) -> None:
    # Dated at the reviewed message; later messages count toward the next interval.
    await runtime.store.create_memory(
        Memory(
            entity_id=runtime.agent_id,
            agent_id=runtime.agent_id,
            room_id=message.room_id,
            created_at=message.created_at,
            content=Content(thought=thought, in_reply_to=message.id, source="reflection"),
        ),
        table_name=REFLECTIONS_TABLE,
    )


async def reflection_handler(
    runtime: AgentRuntime,
    message: Memory,
    state: State,
    options: dict[str, Any],
    callback: HandlerCallback | None,
) -> list[str]:
    """Ask the model for a reflection and store any new facts.

    Returns:
        The facts that were stored.
    """
    known = await runtime.store.get_memories(message.room_id, MAX_FACTS_IN_PROMPT, table_name=FACTS_TABLE)
    known_text = {f.content.text.strip().lower() for f in known}

    values = dict(state.values)
    values["knownFacts"] = "\n".join(f"- {f.content.text}" for f in known) or "None yet."
    if not values.get("recentMessages"):
        values["recentMessages"] = state.fragments.get("RECENT_MESSAGES", "")
    prompt = compose_prompt(
        State(values=values, data=state.data, fragments=state.fragments, text=state.text),
        runtime.get_template("reflection"),
    )

    raw = await runtime.use_model(ModelType.TEXT_SMALL, prompt=prompt)
    parsed = parse_json_object_from_text(raw)
    thought = str(parsed.get("thought") or "").strip() if parsed else ""
    await _mark_reflected(runtime, message, thought)
    if parsed is None:
        log.warning("Reflection output for room %s was not parseable.", message.room_id)
        return []

    if thought:
        log.debug("Reflection for room %s: %s", message.room_id, thought)

    stored: list[str] = []
    for fact in parsed.get("facts") or []:
        text = str(fact).strip()
        if not text or text.lower() in known_text:
            continue
        await runtime.store.create_memory(
            Memory(
                entity_id=runtime.agent_id,
                agent_id=runtime.agent_id,
                room_id=message.room_id,
                content=Content(text=text, thought=thought, source="reflection"),
            ),
            table_name=FACTS_TABLE,
        )
        known_text.add(text.lower())
        stored.append(text)

    if stored:
        log.info("Stored %d new fact(s) for room %s.", len(stored), message.room_id)
    return stored


reflection_evaluator = Evaluator(
    name="REFLECTION",
    description="Reflect on the recent conversation and remember new facts about participants.",
    handler=reflection_handler,
    validate=validate_reflection,
    similes=["REFLECT", "SELF_REFLECT", "EXTRACT_FACTS"],
)
