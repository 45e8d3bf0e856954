"""Tests for template resolution, rendering and transcript formatting."""

import pytest

from agent_runtime.prompts.templates import (
    DEFAULT_TEMPLATES,
    EXAMPLE_NAMES,
    add_header,
    compose_prompt,
    compose_random_user,
    format_messages,
    format_timestamp,
    resolve_template,
)
from agent_runtime.types import Content, Entity, Media, Memory, State


def test_placeholders_resolve_from_values_and_fragments():
    state = State(values={"agentName": "Ada"}, fragments={"CHARACTER": "# About Ada"})
    assert compose_prompt(state, "{{agentName}}\n{{CHARACTER}}") == "Ada\n# About Ada"


def test_unknown_placeholder_renders_empty():
    state = State(values={"agentName": "Ada"})
    assert compose_prompt(state, "Hi {{agentName}}{{ missing }}!") == "Hi Ada!"


def test_values_are_not_expanded_twice():
    state = State(values={"agentName": "Ada", "recentMessages": "{{agentName}} said hi"})
    assert compose_prompt(state, "{{recentMessages}}") == "{{agentName}} said hi"


def test_value_rendering():
    state = State(values={"flag": True, "names": ["a", "b"], "none": None, "n": 3})
    assert compose_prompt(state, "{{flag}}|{{names}}|{{none}}|{{n}}") == "true|a, b||3"


def test_callable_template_receives_state():
    state = State(values={"agentName": "Ada"})
    assert compose_prompt(state, lambda s: "Name: {{agentName}} " + str(len(s.values))) == "Name: Ada 1"


def test_random_users_are_consistent_within_one_prompt():
    rendered = compose_prompt(State(), "{{user1}} and {{user1}} vs {{user2}}")
    first, rest = rendered.split(" and ")
    second, third = rest.split(" vs ")
    assert first == second
    assert first in EXAMPLE_NAMES and third in EXAMPLE_NAMES
    assert first != third


def test_explicit_user_value_takes_precedence():
    state = State(values={"user1": "Grace"})
    assert compose_prompt(state, "{{user1}}") == "Grace"


def test_compose_random_user_leaves_text_without_placeholders():
    assert compose_random_user("nothing to replace") == "nothing to replace"
    assert "{{user1}}" not in compose_random_user("{{user1}}")


def test_resolve_template_prefers_overrides_in_order():
    overrides = {"message_handler": "custom handler"}
    assert resolve_template(overrides, "post", "message_handler") == "custom handler"
    assert resolve_template({"post": "custom post"}, "post", "message_handler") == "custom post"
    assert resolve_template(None, "post", "message_handler") == DEFAULT_TEMPLATES["post"]


def test_resolve_template_unknown_name_raises():
    with pytest.raises(KeyError):
        resolve_template({}, "nope")


def test_add_header_skips_empty_body():
    assert add_header("# Title", "") == ""
    assert add_header("# Title", "body") == "# Title\nbody\n"
    assert add_header("", "body") == "body\n"


@pytest.mark.parametrize(
    "age_ms, expected",
    [
        (5_000, "just now"),
        (60_000, "1 minute ago"),
        (5 * 60_000, "5 minutes ago"),
        (2 * 3_600_000, "2 hours ago"),
        (3 * 86_400_000, "3 days ago"),
    ],
)
def test_format_timestamp(age_ms, expected):
    now = 1_700_000_000_000
    assert format_timestamp(now - age_ms, now) == expected


def test_format_messages_includes_sender_thought_and_actions():
    now = 1_700_000_000_000
    entities = [Entity(id="user-00001", names=["Grace"])]
    messages = [
        Memory(
            entity_id="user-00001",
            agent_id="agent",
            room_id="room",
            created_at=now - 120_000,
            content=Content(
                text="hello",
                thought="greeting",
                actions=["REPLY"],
                attachments=[Media(id="m1", url="http://x/img.png", title="img")],
            ),
        ),
        Memory(entity_id="someone-else", agent_id="agent", room_id="room", created_at=now, content=Content(text="hi")),
    ]
    lines = format_messages(messages, entities, now=now).splitlines()
    assert len(lines) == 2
    assert "(2 minutes ago) [00001] Grace: (thinking: *greeting*) hello" in lines[0]
    assert "(Attachments: [m1 - img (http://x/img.png)])" in lines[0]
    assert lines[0].endswith("(actions: REPLY)")
    assert "Unknown User: hi" in lines[1]


def test_user_placeholders_inside_values_are_kept_verbatim():
    state = State(values={"recentMessages": "Bob: my name is {{user1}}"})
    assert compose_prompt(state, "{{user1}} saw {{recentMessages}}").endswith("saw Bob: my name is {{user1}}")
