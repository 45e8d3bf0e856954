"""Context providers shipped with every runtime.

Each provider returns a :class:`~agent_runtime.types.ProviderResult` whose
``text`` is a self-contained, headed prompt section and whose ``values``
expose the same material under placeholder names templates can reference
directly (``{{recentMessages}}``, ``{{actionNames}}`` ...).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from agent_runtime.memory.store import FACTS_TABLE
from agent_runtime.prompts.templates import add_header, compose_random_user, format_messages
from agent_runtime.types import Memory, ParticipantState, Provider, ProviderResult, State

if TYPE_CHECKING:
    from agent_runtime.runtime import AgentRuntime

log = logging.getLogger(__name__)

FACTS_LIMIT = 10
BIO_SAMPLE = 10


async def get_time(runtime: AgentRuntime, message: Memory, state: State) -> ProviderResult:
    now = datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%d %H:%M:%S UTC (%A)")
    return ProviderResult(
        text=add_header("# Current Time", f"The current date and time is {stamp}."),
        values={"time": stamp},
    )


async def get_entities(runtime: AgentRuntime, message: Memory, state: State) -> ProviderResult:
    entities = await runtime.store.get_entities_for_room(message.room_id)
    lines = []
    for entity in entities:
        aliases = f" (aka {', '.join(entity.names[1:])})" if len(entity.names) > 1 else ""
        lines.append(f"{entity.display_name}{aliases} ID: {entity.id}")
    text = add_header("# People in the Room", "\n".join(lines))
    return ProviderResult(
        text=text,
        values={"entities": text},
        data={"entities": [{"id": e.id, "names": list(e.names)} for e in entities]},
    )


async def get_attachments(runtime: AgentRuntime, message: Memory, state: State) -> ProviderResult:
    """Attachments on the current message plus recent ones in the room."""
    seen: dict[str, str] = {}
    recent = await runtime.store.get_memories(message.room_id, runtime.recent_message_count)
    for memory in [*recent, message]:
        for media in memory.content.attachments:
            details = media.description or media.text
            seen[media.id] = (
                f"ID: {media.id}\nName: {media.title}\nURL: {media.url}\nSource: {media.source}"
                + (f"\nDescription: {details}" if details else "")
            )
    text = add_header("# Attachments", "\n\n".join(seen.values()))
    return ProviderResult(text=text, values={"attachments": text})


async def get_evaluators(runtime: AgentRuntime, message: Memory, state: State) -> ProviderResult:
    evaluators = list(runtime.evaluators)
    names = ", ".join(e.name for e in evaluators)
    body = "\n".join(f"{e.name}: {e.description}" for e in evaluators)
    return ProviderResult(
        text=add_header("# Available Evaluators", body),
        values={"evaluatorNames": names, "evaluators": body},
    )


async def get_actions(runtime: AgentRuntime, message: Memory, state: State) -> ProviderResult:
    """Actions whose validator accepts the current message."""
    available = []
    for action in runtime.actions:
        try:
            if await action.validate(runtime, message, state):
                available.append(action)
        except Exception:
            log.warning("Validator for %s raised while listing actions.", action.name, exc_info=True)
    names = ", ".join(a.name for a in available)
    body = "\n".join(f"{a.name}: {a.description}" for a in available)
    return ProviderResult(
        text=add_header("# Available Actions", body),
        values={"actionNames": names, "actions": body},
        data={"actions": [a.name for a in available]},
    )


async def get_providers(runtime: AgentRuntime, message: Memory, state: State) -> ProviderResult:
    """Dynamic providers the model may ask for in its decision."""
    dynamic = [p for p in runtime.providers if p.dynamic and not p.private]
    body = "\n".join(f"- {p.name}: {p.description}" for p in dynamic)
    header = (
        "# Providers\nThese providers can be requested to add context to the response:"
        if body
        else ""
    )
    return ProviderResult(
        text=add_header(header, body),
        values={"providersList": ", ".join(p.name for p in dynamic)},
    )


async def get_should_respond(runtime: AgentRuntime, message: Memory, state: State) -> ProviderResult:
    """Worked examples for the RESPOND / IGNORE / STOP decision."""
    name = runtime.character.name
    examples = "\n\n".join(
        [
            f"{{{{user1}}}}: Hey {name}, can you help me with something?\nResult: RESPOND",
            f"{{{{user1}}}}: Hey {{{{user2}}}}, did you see the game last night?\n"
            f"{{{{user2}}}}: Yeah, what a finish!\nResult: IGNORE",
            f"{{{{user1}}}}: {name}, please stop talking for a while.\nResult: STOP",
            f"{{{{user1}}}}: Has anyone here used {name} before?\n{name}: I'm right here!\n"
            f"{{{{user1}}}}: Oh nice, what can you do?\nResult: RESPOND",
            f"{{{{user1}}}}: lol\n{{{{user2}}}}: same\nResult: IGNORE",
        ]
    )
    return ProviderResult(text=add_header("# Response Examples", compose_random_user(examples)))


async def get_character(runtime: AgentRuntime, message: Memory, state: State) -> ProviderResult:
    character = runtime.character
    bio = character.bio_text(sample=BIO_SAMPLE)
    topics = ", ".join(character.topics)
    adjectives = ", ".join(character.adjectives)
    style = "\n".join(
        f"- {line}" for line in [*character.style.get("all", []), *character.style.get("chat", [])]
    )

    example_blocks = []
    for conversation in character.message_examples[:3]:
        lines = []
        for turn in conversation:
            speaker = turn.get("name") or turn.get("user") or "{{user1}}"
            content = turn.get("content") or {}
            text = content.get("text") if isinstance(content, dict) else str(content)
            if text:
                lines.append(f"{speaker}: {text}")
        if lines:
            example_blocks.append("\n".join(lines))

    sections = [
        add_header(f"# About {character.name}", bio),
        add_header(f"# {character.name} is interested in", topics),
        add_header(f"# {character.name} is", adjectives),
        add_header(f"# Style for {character.name}", style),
        add_header(
            f"# Example conversations for {character.name}",
            compose_random_user("\n\n".join(example_blocks)),
        ),
    ]
    return ProviderResult(
        text="".join(s for s in sections if s).rstrip("\n"),
        values={
            "bio": bio,
            "system": character.system or "",
            "topics": topics,
            "adjectives": adjectives,
            "characterStyle": style,
        },
    )


async def get_recent_messages(runtime: AgentRuntime, message: Memory, state: State) -> ProviderResult:
    memories = await runtime.store.get_memories(message.room_id, runtime.recent_message_count)
    entities = await runtime.store.get_entities_for_room(message.room_id)
    transcript = format_messages(memories, entities)
    text = add_header("# Conversation Messages", transcript)
    return ProviderResult(
        text=text,
        values={"recentMessages": text},
        data={"message_ids": [m.id for m in memories]},
    )


async def get_facts(runtime: AgentRuntime, message: Memory, state: State) -> ProviderResult:
    """Facts the reflection evaluator has recorded for this room."""
    facts = await runtime.store.get_memories(message.room_id, FACTS_LIMIT, table_name=FACTS_TABLE)
    body = "\n".join(f"- {f.content.text}" for f in facts if f.content.text)
    text = add_header("# Key Facts", body)
    return ProviderResult(text=text, values={"knownFacts": body})


async def get_room_state(runtime: AgentRuntime, message: Memory, state: State) -> ProviderResult:
    participation = await runtime.store.get_participant_state(message.room_id, runtime.agent_id)
    name = runtime.character.name
    if participation is ParticipantState.FOLLOWED:
        body = f"{name} is following this room and should respond to most messages."
    elif participation is ParticipantState.MUTED:
        body = f"{name} has muted this room and only responds when mentioned by name."
    else:
        body = ""
    return ProviderResult(
        text=add_header("# Room State", body),
        values={"roomState": participation.value if participation else ""},
    )


time_provider = Provider("TIME", get_time, "The current date and time")
entities_provider = Provider("ENTITIES", get_entities, "People in the current room")
attachments_provider = Provider("ATTACHMENTS", get_attachments, "Media attached to recent messages")
evaluators_provider = Provider("EVALUATORS", get_evaluators, "Post-response evaluators", private=True)
actions_provider = Provider("ACTIONS", get_actions, "Actions available for this message")
providers_provider = Provider("PROVIDERS", get_providers, "Extra context that can be requested")
should_respond_provider = Provider(
    "SHOULD_RESPOND", get_should_respond, "Examples for deciding whether to respond", private=True
)
character_provider = Provider("CHARACTER", get_character, "Who the agent is and how it talks")
recent_messages_provider = Provider("RECENT_MESSAGES", get_recent_messages, "Recent messages in the room")
facts_provider = Provider(
    "FACTS", get_facts, "Facts remembered about the people in this conversation", dynamic=True
)
room_state_provider = Provider(
    "ROOM_STATE", get_room_state, "Whether the agent follows or muted the room", private=True
)

BOOTSTRAP_PROVIDERS: list[Provider] = [
    evaluators_provider,
    time_provider,
    entities_provider,
    facts_provider,
    room_state_provider,
    attachments_provider,
    providers_provider,
    actions_provider,
    should_respond_provider,
    character_provider,
    recent_messages_provider,
]
