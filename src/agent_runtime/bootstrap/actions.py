"""Built-in actions: replying, staying quiet and room participation.

Room participation is stored per room for the agent's own entity:

- ``FOLLOWED`` rooms get a response to most messages,
- ``MUTED`` rooms are ignored unless the agent is mentioned by name.

Each participation action is only valid when it would change something,
so ``MUTE_ROOM`` is not offered in a room that is already muted.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from agent_runtime.types import Action, Content, HandlerCallback, Memory, ParticipantState, State

if TYPE_CHECKING:
    from agent_runtime.runtime import AgentRuntime

log = logging.getLogger(__name__)


def _response_content(options: dict[str, Any]) -> Content | None:
    response = options.get("response")
    if response is None:
        responses = options.get("responses") or []
        response = responses[0] if responses else None
    return response.content if response is not None else None


# ---------------------------------------------------------------------------
# REPLY / IGNORE / NONE
# ---------------------------------------------------------------------------


async def reply_handler(
    runtime: AgentRuntime,
    message: Memory,
    state: State,
    options: dict[str, Any],
    callback: HandlerCallback | None,
) -> bool:
    """Send the response text through the delivery callback."""
    content = _response_content(options)
    if content is None or not content.text:
        log.debug("REPLY for message %s has no text to send.", message.id)
        return False
    if callback is None:
        log.debug("REPLY for message %s has no delivery callback.", message.id)
        return False
    await callback(
        Content(
            text=content.text,
            thought=content.thought,
            actions=["REPLY"],
            attachments=list(content.attachments),
            in_reply_to=message.id,
            source=content.source or message.content.source,
        )
    )
    return True


async def ignore_handler(
    runtime: AgentRuntime,
    message: Memory,
    state: State,
    options: dict[str, Any],
    callback: HandlerCallback | None,
) -> bool:
    log.debug("Ignoring message %s.", message.id)
    return True


async def none_handler(
    runtime: AgentRuntime,
    message: Memory,
    state: State,
    options: dict[str, Any],
    callback: HandlerCallback | None,
) -> bool:
    return True


# ---------------------------------------------------------------------------
# Room participation
# ---------------------------------------------------------------------------


async def _room_state(runtime: AgentRuntime, message: Memory) -> ParticipantState | None:
    return await runtime.store.get_participant_state(message.room_id, runtime.agent_id)


async def _set_room_state(runtime: AgentRuntime, message: Memory, value: ParticipantState | None) -> bool:
    await runtime.store.set_participant_state(message.room_id, runtime.agent_id, value)
    log.info(
        "%s is now %s in room %s.",
        runtime.character.name,
        value.value if value else "participating normally",
        message.room_id,
    )
    return True


async def validate_follow(runtime: AgentRuntime, message: Memory, state: State | None = None) -> bool:
    return await _room_state(runtime, message) is not ParticipantState.FOLLOWED


async def validate_unfollow(runtime: AgentRuntime, message: Memory, state: State | None = None) -> bool:
    return await _room_state(runtime, message) is ParticipantState.FOLLOWED


async def validate_mute(runtime: AgentRuntime, message: Memory, state: State | None = None) -> bool:
    return await _room_state(runtime, message) is not ParticipantState.MUTED


async def validate_unmute(runtime: AgentRuntime, message: Memory, state: State | None = None) -> bool:
    return await _room_state(runtime, message) is ParticipantState.MUTED


async def follow_handler(runtime, message, state, options, callback) -> bool:
    return await _set_room_state(runtime, message, ParticipantState.FOLLOWED)


async def unfollow_handler(runtime, message, state, options, callback) -> bool:
    return await _set_room_state(runtime, message, None)


async def mute_handler(runtime, message, state, options, callback) -> bool:
    return await _set_room_state(runtime, message, ParticipantState.MUTED)


async def unmute_handler(runtime, message, state, options, callback) -> bool:
    return await _set_room_state(runtime, message, None)


reply_action = Action(
    name="REPLY",
    description="Reply to the current conversation with the generated text.",
    handler=reply_handler,
    similes=["GREET", "REPLY_TO_MESSAGE", "SEND_REPLY", "RESPOND", "RESPONSE"],
)
ignore_action = Action(
    name="IGNORE",
    description=(
        "Stay silent. Use when the message is not directed at the agent, the conversation "
        "has ended, or a user is being abusive."
    ),
    handler=ignore_handler,
    similes=["STOP_TALKING", "STOP_CHATTING", "STOP_CONVERSATION"],
)
none_action = Action(
    name="NONE",
    description="Respond with text only and take no further action.",
    handler=none_handler,
    similes=["NO_ACTION", "NO_RESPONSE", "PASS"],
)
follow_room_action = Action(
    name="FOLLOW_ROOM",
    description="Start following this room and respond to most messages in it.",
    handler=follow_handler,
    validate=validate_follow,
    similes=["FOLLOW_CHAT", "FOLLOW_CHANNEL", "FOLLOW_CONVERSATION", "FOLLOW_THREAD"],
)
unfollow_room_action = Action(
    name="UNFOLLOW_ROOM",
    description="Stop following this room; respond only when directly addressed.",
    handler=unfollow_handler,
    validate=validate_unfollow,
    similes=["UNFOLLOW_CHAT", "UNFOLLOW_CONVERSATION", "UNFOLLOW_CHANNEL", "UNFOLLOW_THREAD"],
)
mute_room_action = Action(
    name="MUTE_ROOM",
    description="Mute this room and ignore it unless mentioned by name.",
    handler=mute_handler,
    validate=validate_mute,
    similes=["MUTE_CHAT", "MUTE_CONVERSATION", "MUTE_CHANNEL", "MUTE_THREAD"],
)
unmute_room_action = Action(
    name="UNMUTE_ROOM",
    description="Unmute this room so the agent can respond in it again.",
    handler=unmute_handler,
    validate=validate_unmute,
    similes=["UNMUTE_CHAT", "UNMUTE_CONVERSATION", "UNMUTE_CHANNEL", "UNMUTE_THREAD"],
)

BOOTSTRAP_ACTIONS: list[Action] = [
    reply_action,
    follow_room_action,
    unfollow_room_action,
    ignore_action,
    none_action,
    mute_room_action,
    unmute_room_action,
]
