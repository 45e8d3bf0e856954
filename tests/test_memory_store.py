"""Tests for the in-process message store."""

import pytest

from agent_runtime.errors import DuplicateMemoryError
from agent_runtime.memory.store import FACTS_TABLE, InMemoryMessageStore, MessageStore
from agent_runtime.types import Content, Entity, Memory, ParticipantState, Room, World


def _memory(room="room", created_at=0, text="hi", **kwargs):
    return Memory(
        entity_id="user",
        agent_id="agent",
        room_id=room,
        created_at=created_at,
        content=Content(text=text),
        **kwargs,
    )


def test_implements_protocol():
    assert isinstance(InMemoryMessageStore(), MessageStore)


@pytest.mark.asyncio
async def test_recent_memories_oldest_first():
    store = InMemoryMessageStore()
    for i in (3, 1, 2):
        await store.create_memory(_memory(created_at=i, text=str(i)))
    await store.create_memory(_memory(room="other", created_at=4))

    recent = await store.get_memories("room", count=2)
    assert [m.content.text for m in recent] == ["2", "3"]
    assert await store.get_memories("room", count=0) == []
    assert await store.count("room") == 3
    assert await store.count() == 4


@pytest.mark.asyncio
async def test_duplicate_id_raises_with_unique_violation_code():
    store = InMemoryMessageStore()
    memory = _memory()
    await store.create_memory(memory)
    with pytest.raises(DuplicateMemoryError) as excinfo:
        await store.create_memory(memory)
    assert excinfo.value.code == "23505"


@pytest.mark.asyncio
async def test_tables_are_separate():
    store = InMemoryMessageStore()
    memory = _memory()
    await store.create_memory(memory)
    await store.create_memory(memory, table_name=FACTS_TABLE)
    assert await store.get_memory(memory.id) is memory
    assert await store.count("room", table_name=FACTS_TABLE) == 1


@pytest.mark.asyncio
async def test_participant_state_set_and_clear():
    store = InMemoryMessageStore()
    assert await store.get_participant_state("room", "agent") is None
    await store.set_participant_state("room", "agent", ParticipantState.MUTED)
    assert await store.get_participant_state("room", "agent") is ParticipantState.MUTED
    await store.set_participant_state("room", "agent", None)
    assert await store.get_participant_state("room", "agent") is None


@pytest.mark.asyncio
async def test_ensure_entity_merges_names_and_links_rooms():
    store = InMemoryMessageStore()
    await store.ensure_entity(Entity(id="u1", names=["Grace"]), room_id="room")
    merged = await store.ensure_entity(Entity(id="u1", names=["grace_h"], metadata={"k": 1}), room_id="room")
    assert merged.names == ["Grace", "grace_h"]
    assert merged.metadata == {"k": 1}
    assert [e.id for e in await store.get_entities_for_room("room")] == ["u1"]
    assert await store.get_entities_for_room("elsewhere") == []


@pytest.mark.asyncio
async def test_update_memory_replaces_known_records_only():
    store = InMemoryMessageStore()
    first = _memory(created_at=1, text="first")
    await store.create_memory(first)
    await store.create_memory(_memory(created_at=2, text="second"))

    assert await store.update_memory(Memory(
        id=first.id, entity_id="user", agent_id="agent", room_id="room",
        created_at=1, content=Content(text="first"), embedding=[1.0],
    )) is True
    assert (await store.get_memory(first.id)).embedding == [1.0]
    assert [m.content.text for m in await store.get_memories("room")] == ["first", "second"]
    assert await store.update_memory(_memory()) is False


@pytest.mark.asyncio
async def test_update_entity_overwrites_metadata():
    store = InMemoryMessageStore()
    assert await store.update_entity(Entity(id="u1", names=["Grace"])) is False
    await store.ensure_entity(Entity(id="u1", names=["Grace"], metadata={"k": 1}))
    assert await store.update_entity(Entity(id="u1", names=["Grace"], metadata={"status": "INACTIVE"})) is True
    assert (await store.get_entity("u1")).metadata == {"status": "INACTIVE"}


@pytest.mark.asyncio
async def test_worlds_and_rooms_are_created_once():
    store = InMemoryMessageStore()
    await store.ensure_world(World(id="w", name="Guild", metadata={"a": 1}))
    world = await store.ensure_world(World(id="w", name="Renamed", metadata={"b": 2}))
    assert world.name == "Guild"
    assert world.metadata == {"a": 1, "b": 2}

    await store.ensure_room(Room(id="r", name="general", world_id="w"))
    room = await store.ensure_room(Room(id="r", name="other"))
    assert room.name == "general"
    assert (await store.get_room("r")).world_id == "w"
    assert await store.get_room("missing") is None
    assert await store.get_world("missing") is None
