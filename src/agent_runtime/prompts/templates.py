"""Prompt templates and the placeholder engine that renders them.

Templates use ``{{name}}`` placeholders that resolve against a
:class:`~agent_runtime.types.State`: first ``state.values``, then the text
fragment a provider of that name produced.  Unknown placeholders render as
an empty string.  Substituted values are never re-scanned, so text coming
from users cannot inject further placeholders.

``{{user1}}`` .. ``{{user10}}`` in a template render as randomly drawn display
names.  Providers resolve the same placeholders in the conversation
examples they emit with :func:`compose_random_user`, so the model does not
latch onto a fixed cast of example speakers.

Usage::

    from agent_runtime.prompts.templates import MESSAGE_HANDLER_TEMPLATE, compose_prompt

    prompt = compose_prompt(state, MESSAGE_HANDLER_TEMPLATE)
"""

from __future__ import annotations

import random
import re
import time
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence, Union

from agent_runtime.types import Entity, Memory, State

Template = Union[str, Callable[[State], str]]

RANDOM_USER_COUNT = 10

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*\}\}")
_RANDOM_USER = re.compile(r"^user(\d+)$")

EXAMPLE_NAMES: tuple[str, ...] = (
    "Abigail", "Alejandro", "Amara", "Anders", "Beatrix", "Bram", "Camille",
    "Cassius", "Dalia", "Desmond", "Elif", "Emeka", "Farah", "Felix",
    "Greta", "Hana", "Hugo", "Idris", "Ines", "Jasper", "Juno", "Kaito",
    "Keziah", "Lars", "Leila", "Lorenzo", "Maeve", "Matteo", "Nadia",
    "Nikolai", "Odette", "Omar", "Priya", "Quentin", "Rosa", "Rafael",
    "Saoirse", "Soren", "Tamsin", "Teodor", "Uma", "Viggo", "Wren",
    "Xiomara", "Yusuf", "Zara", "Zeno", "Marisol", "Callum", "Noor",
)


# ---------------------------------------------------------------------------
# Built-in templates
# ---------------------------------------------------------------------------

SHOULD_RESPOND_TEMPLATE = """# Task: Decide on behalf of {{agentName}} whether they should respond to the message, ignore it or stop the conversation.
{{providers}}
# Instructions: Decide if {{agentName}} should respond to or interact with the conversation.
If the message is directed at or relevant to {{agentName}}, respond with RESPOND action.
If a user asks {{agentName}} to be quiet, respond with STOP action.
If {{agentName}} should ignore the message, respond with IGNORE action.
If responding with the RESPOND action, include a list of optional providers that could be relevant to the response.
Response format should be formatted in a valid JSON block like this:
```json
{
    "name": "{{agentName}}",
    "action": "RESPOND" | "IGNORE" | "STOP",
    "providers": ["<string>", "<string>", ...]
}
```
Your response should include the valid JSON block and nothing else."""

MESSAGE_HANDLER_TEMPLATE = """# Task: Generate dialog and actions for the character {{agentName}}.
{{providers}}
# Instructions: Write the next message for {{agentName}}.
First, think about what you want to do next and plan your actions. Then, write the next message and include the actions you plan to take.
"thought" should be a short description of what the agent is thinking about and planning.
"actions" should be an array of the actions {{agentName}} plans to take based on the thought (if none, use IGNORE, if simply responding with text, use REPLY)
"providers" should be an optional array of the providers that {{agentName}} will use to have the right context for responding and acting
"text" should be the next message you want to send, if any (don't send a message if using the IGNORE action).
These are the available valid actions: {{actionNames}}

Response format should be formatted in a valid JSON block like this:
```json
{
    "thought": "<string>",
    "name": "{{agentName}}",
    "text": "<string>",
    "actions": ["<string>", "<string>", ...],
    "providers": ["<string>", "<string>", ...]
}
```

Your response should include the valid JSON block and nothing else."""

POST_TEMPLATE = """# Task: Write a new post in the voice of {{agentName}}.
{{providers}}
# Instructions: Write a single standalone post for {{agentName}}'s feed.
"thought" should describe what {{agentName}} wants to say and why.
"text" is the post itself. Keep it under 280 characters, no hashtags or emojis unless that is part of the character's style.
"actions" should be ["REPLY"] to publish the post.

Response format should be formatted in a valid JSON block like this:
```json
{
    "thought": "<string>",
    "text": "<string>",
    "actions": ["REPLY"]
}
```

Your response should include the valid JSON block and nothing else."""

REFLECTION_TEMPLATE = """# Task: Reflect on {{agentName}}'s most recent exchange and extract durable facts.
{{recentMessages}}

# Known facts
{{knownFacts}}

# Instructions:
"thought" is a one-sentence self-reflection on how {{agentName}} handled the conversation.
"facts" lists new, specific, long-lived facts about the participants that are not already known. Use an empty array if there are none.

Response format should be formatted in a valid JSON block like this:
```json
{
    "thought": "<string>",
    "facts": ["<string>", "<string>", ...]
}
```

Your response should include the valid JSON block and nothing else."""

BOOLEAN_FOOTER = "Respond with only a YES or a NO."

DEFAULT_TEMPLATES: dict[str, str] = {
    "should_respond": SHOULD_RESPOND_TEMPLATE,
    "message_handler": MESSAGE_HANDLER_TEMPLATE,
    "post": POST_TEMPLATE,
    "reflection": REFLECTION_TEMPLATE,
}


def resolve_template(overrides: Mapping[str, str] | None, *names: str) -> str:
    """Return the first override found for *names*, else the built-in default.

    ``resolve_template(character.templates, "post", "message_handler")``
    prefers a character's post template, then its message-handler template,
    then the built-in post template.
    """
    overrides = overrides or {}
    for name in names:
        override = overrides.get(name)
        if override:
            return override
    for name in names:
        if name in DEFAULT_TEMPLATES:
            return DEFAULT_TEMPLATES[name]
    raise KeyError(f"No template named {names!r}")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _render_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ", ".join(_render_value(item) for item in value)
    return str(value)


def _draw_names(count: int) -> list[str]:
    pool = list(EXAMPLE_NAMES)
    if count <= len(pool):
        return random.sample(pool, count)
    return [random.choice(pool) for _ in range(count)]


def compose_random_user(text: str, count: int = RANDOM_USER_COUNT) -> str:
    """Replace ``{{user1}}`` .. ``{{user<count>}}`` with random names.

    Names are drawn fresh on every call; the same placeholder maps to the
    same name within one call.  Providers run this over the examples they
    emit, since :func:`compose_prompt` does not re-scan substituted values.
    """
    if count <= 0 or "{{" not in text:
        return text
    result = text
    for index, name in enumerate(_draw_names(count), start=1):
        result = result.replace(f"{{{{user{index}}}}}", name)
    return result


def compose_prompt(state: State, template: Template) -> str:
    """Render *template* against *state*.

    Args:
        state: The composed state.  Placeholders resolve against
            ``state.values`` first, then ``state.fragments``.
        template: A template string, or a callable producing one from
            the state (for templates that vary per call).

    Returns:
        The prompt text with all placeholders substituted.  ``{{userN}}``
        placeholders in the template itself get random names unless the
        state supplies a value.
    """
    template_str = template(state) if callable(template) else template
    names = _draw_names(RANDOM_USER_COUNT)

    def _substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        user = _RANDOM_USER.match(key)
        if user and key not in state.values and 1 <= int(user.group(1)) <= RANDOM_USER_COUNT:
            return names[int(user.group(1)) - 1]
        return _render_value(state.lookup(key))

    return _PLACEHOLDER.sub(_substitute, template_str)


# ---------------------------------------------------------------------------
# Formatting helpers used by providers
# ---------------------------------------------------------------------------


def add_header(header: str, body: str) -> str:
    """Prepend *header* to *body*; an empty body yields ``""``."""
    if not body:
        return ""
    return f"{header}\n{body}\n" if header else f"{body}\n"


def format_timestamp(created_at: int, now: int | None = None) -> str:
    """Relative age of an epoch-millisecond timestamp ("5 minutes ago")."""
    current = now if now is not None else int(time.time() * 1000)
    diff = abs(current - created_at)
    if diff < 60_000:
        return "just now"
    minutes = diff // 60_000
    hours = minutes // 60
    days = hours // 24
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    return f"{days} day{'s' if days != 1 else ''} ago"


def format_messages(
    messages: Sequence[Memory],
    entities: Sequence[Entity],
    now: int | None = None,
) -> str:
    """Render memories (oldest first) as one transcript line each.

    Each line carries the wall-clock time, relative age, the last five
    characters of the sender id, the sender's name, the sender's thought
    when present, the text, attachments and actions.
    """
    names = {entity.id: entity.display_name for entity in entities}
    lines: list[str] = []
    for message in messages:
        if not message.entity_id:
            continue
        content = message.content
        name = names.get(message.entity_id, "Unknown User")
        clock = datetime.fromtimestamp(message.created_at / 1000).strftime("%H:%M")
        age = format_timestamp(message.created_at, now)
        thought = f"(thinking: *{content.thought}*) " if content.thought else ""
        attachments = ""
        if content.attachments:
            listed = ", ".join(f"[{m.id} - {m.title} ({m.url})]" for m in content.attachments)
            attachments = f" (Attachments: {listed})"
        actions = f" (actions: {', '.join(content.actions)})" if content.actions else ""
        lines.append(
            f"{clock} ({age}) [{message.entity_id[-5:]}] {name}: "
            f"{thought}{content.text}{attachments}{actions}"
        )
    return "\n".join(lines)
