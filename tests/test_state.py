"""Tests for provider selection and state composition."""

import pytest

from agent_runtime.types import Entity, Plugin, Provider, ProviderResult


async def _one(runtime, message, state):
    return ProviderResult(text="one", values={"x": 1}, data={"source": "one"})


async def _two(runtime, message, state):
    # Reads what the earlier provider produced.
    return state.fragments.get("ONE", "").upper()


async def _broken(runtime, message, state):
    raise RuntimeError("provider down")


async def _dynamic(runtime, message, state):
    return {"text": "dynamic", "values": {"dyn": True}}


async def _private(runtime, message, state):
    return "private"


async def _empty(runtime, message, state):
    return None


@pytest.fixture
def composed_runtime(make_runtime):
    plugin = Plugin(
        name="test",
        providers=[
            Provider("ONE", _one),
            Provider("TWO", _two),
            Provider("BROKEN", _broken),
            Provider("DYNAMIC", _dynamic, dynamic=True),
            Provider("PRIVATE", _private, private=True),
            Provider("EMPTY", _empty),
        ],
    )
    return make_runtime(plugins=[plugin])


@pytest.mark.asyncio
async def test_default_selection_skips_dynamic_and_private(composed_runtime, make_message):
    state = await composed_runtime.compose_state(make_message("hello"))
    assert list(state.fragments) == ["ONE", "TWO", "BROKEN", "EMPTY"]
    assert state.fragments["TWO"] == "ONE"
    assert state.fragments["BROKEN"] == ""
    assert state.values["x"] == 1
    assert state.data == {"ONE": {"source": "one"}}
    assert state.text == "one\n\nONE"
    assert state.values["providers"] == state.text
    assert state.values["agentName"] == "Ada"


@pytest.mark.asyncio
async def test_extra_providers_pull_in_dynamic_and_private(composed_runtime, make_message):
    state = await composed_runtime.compose_state(make_message("hello"), None, ["dynamic", "Private"])
    assert "DYNAMIC" in state.fragments
    assert "PRIVATE" in state.fragments
    assert state.values["dyn"] is True


@pytest.mark.asyncio
async def test_include_list_limits_to_named_providers_in_registration_order(composed_runtime, make_message):
    state = await composed_runtime.compose_state(make_message("hello"), ["private", "one", "unknown"])
    assert list(state.fragments) == ["ONE", "PRIVATE"]


@pytest.mark.asyncio
async def test_sender_name_comes_from_entity(composed_runtime, make_message, store):
    await store.ensure_entity(Entity(id="user-1", names=["Grace"]))
    state = await composed_runtime.compose_state(make_message("hello"), [])
    assert state.values["senderName"] == "Grace"
    assert state.fragments == {}
    assert state.text == ""


@pytest.mark.asyncio
async def test_bootstrap_should_respond_slice(runtime, make_message, store, user_entity):
    message = make_message("Hey Ada, are you there?")
    await store.ensure_entity(user_entity, room_id=message.room_id)
    await store.create_memory(message)

    state = await runtime.compose_state(
        message, ["PROVIDERS", "SHOULD_RESPOND", "CHARACTER", "RECENT_MESSAGES", "ENTITIES"]
    )
    assert set(state.fragments) == {"ENTITIES", "SHOULD_RESPOND", "CHARACTER", "RECENT_MESSAGES", "PROVIDERS"}
    assert "Grace: Hey Ada, are you there?" in state.values["recentMessages"]
    assert "# About Ada" in state.fragments["CHARACTER"]
    assert "FACTS" in state.values["providersList"]
