"""Message store interface and the bundled in-process implementation.

The orchestrator only needs a narrow persistence surface: append a memory,
read back recent memories for a room, track per-room participant state
and entity records, and keep the worlds and rooms a connector has synced.
:class:`MessageStore` spells that surface out; :class:`InMemoryMessageStore`
implements it with plain dicts guarded by an :class:`asyncio.Lock`.

Memories are grouped by *table* (``"messages"`` for conversation turns,
``"facts"`` and ``"reflections"`` for self-review) the same way a
relational adapter would split them across tables.

Usage::

    store = InMemoryMessageStore()
    await store.create_memory(memory)
    recent = await store.get_memories(room_id, count=20)
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Protocol, runtime_checkable

from agent_runtime.errors import DuplicateMemoryError
from agent_runtime.types import Entity, Memory, ParticipantState, Room, World

log = logging.getLogger(__name__)

MESSAGES_TABLE = "messages"
FACTS_TABLE = "facts"
REFLECTIONS_TABLE = "reflections"


@runtime_checkable
class MessageStore(Protocol):
    """Persistence surface consumed by the runtime."""

    async def create_memory(self, memory: Memory, table_name: str = MESSAGES_TABLE) -> str: ...

    async def update_memory(self, memory: Memory, table_name: str = MESSAGES_TABLE) -> bool: ...

    async def get_memory(self, memory_id: str, table_name: str = MESSAGES_TABLE) -> Memory | None: ...

    async def get_memories(
        self, room_id: str, count: int = 20, table_name: str = MESSAGES_TABLE
    ) -> list[Memory]: ...

    async def count(self, room_id: str | None = None, table_name: str = MESSAGES_TABLE) -> int: ...

    async def get_participant_state(self, room_id: str, entity_id: str) -> ParticipantState | None: ...

    async def set_participant_state(
        self, room_id: str, entity_id: str, state: ParticipantState | None
    ) -> None: ...

    async def ensure_entity(self, entity: Entity, room_id: str | None = None) -> Entity: ...

    async def get_entity(self, entity_id: str) -> Entity | None: ...

    async def update_entity(self, entity: Entity) -> bool: ...

    async def get_entities_for_room(self, room_id: str) -> list[Entity]: ...

    async def ensure_world(self, world: World) -> World: ...

    async def get_world(self, world_id: str) -> World | None: ...

    async def ensure_room(self, room: Room) -> Room: ...

    async def get_room(self, room_id: str) -> Room | None: ...


class InMemoryMessageStore:
    """Dict-backed :class:`MessageStore` for single-process deployments and tests."""

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, Memory]] = defaultdict(dict)
        self._participants: dict[str, dict[str, ParticipantState]] = defaultdict(dict)
        self._entities: dict[str, Entity] = {}
        self._room_entities: dict[str, list[str]] = defaultdict(list)
        self._worlds: dict[str, World] = {}
        self._rooms: dict[str, Room] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    async def create_memory(self, memory: Memory, table_name: str = MESSAGES_TABLE) -> str:
        """Append *memory* to *table_name*.

        Raises:
            DuplicateMemoryError: If a memory with the same id already exists.
        """
        async with self._lock:
            table = self._tables[table_name]
            if memory.id in table:
                raise DuplicateMemoryError(memory.id, table_name)
            table[memory.id] = memory
        log.debug(
            "Stored memory %s in %s (room=%s, embedded=%s).",
            memory.id,
            table_name,
            memory.room_id,
            memory.embedding is not None,
        )
        return memory.id

    async def update_memory(self, memory: Memory, table_name: str = MESSAGES_TABLE) -> bool:
        """Replace the stored record with the same id as *memory*.

        Returns:
            ``False`` if no such record exists; nothing is written then.
        """
        async with self._lock:
            table = self._tables[table_name]
            if memory.id not in table:
                return False
            table[memory.id] = memory
        log.debug("Updated memory %s in %s.", memory.id, table_name)
        return True

    async def get_memory(self, memory_id: str, table_name: str = MESSAGES_TABLE) -> Memory | None:
        return self._tables[table_name].get(memory_id)

    async def get_memories(
        self, room_id: str, count: int = 20, table_name: str = MESSAGES_TABLE
    ) -> list[Memory]:
        """The *count* most recent memories in the room, oldest first."""
        if count <= 0:
            return []
        in_room = [m for m in self._tables[table_name].values() if m.room_id == room_id]
        # Insertion order breaks ties between equal timestamps.
        in_room.sort(key=lambda m: m.created_at)
        return in_room[-count:]

    async def count(self, room_id: str | None = None, table_name: str = MESSAGES_TABLE) -> int:
        table = self._tables[table_name]
        if room_id is None:
            return len(table)
        return sum(1 for m in table.values() if m.room_id == room_id)

    # ------------------------------------------------------------------
    # Participants and entities
    # ------------------------------------------------------------------

    async def get_participant_state(self, room_id: str, entity_id: str) -> ParticipantState | None:
        return self._participants[room_id].get(entity_id)

    async def set_participant_state(
        self, room_id: str, entity_id: str, state: ParticipantState | None
    ) -> None:
        """Set (or clear, with ``None``) how *entity_id* participates in the room."""
        async with self._lock:
            if state is None:
                self._participants[room_id].pop(entity_id, None)
            else:
                self._participants[room_id][entity_id] = state
        log.debug("Participant %s in room %s is now %s.", entity_id, room_id, state)

    async def ensure_entity(self, entity: Entity, room_id: str | None = None) -> Entity:
        """Insert *entity* if unknown, merging new names into an existing record.

        When *room_id* is given the entity is also linked to that room.
        """
        async with self._lock:
            existing = self._entities.get(entity.id)
            if existing is None:
                existing = Entity(id=entity.id, names=list(entity.names), metadata=dict(entity.metadata))
                self._entities[entity.id] = existing
            else:
                for name in entity.names:
                    if name not in existing.names:
                        existing.names.append(name)
                existing.metadata.update(entity.metadata)
            if room_id is not None and entity.id not in self._room_entities[room_id]:
                self._room_entities[room_id].append(entity.id)
            return existing

    async def update_entity(self, entity: Entity) -> bool:
        """Overwrite a known entity's names and metadata.

        Returns:
            ``False`` if the entity is unknown; nothing is written then.
        """
        async with self._lock:
            existing = self._entities.get(entity.id)
            if existing is None:
                return False
            existing.names = list(entity.names)
            existing.metadata = dict(entity.metadata)
        log.debug("Updated entity %s.", entity.id)
        return True

    async def get_entity(self, entity_id: str) -> Entity | None:
        return self._entities.get(entity_id)

    async def get_entities_for_room(self, room_id: str) -> list[Entity]:
        return [self._entities[eid] for eid in self._room_entities.get(room_id, []) if eid in self._entities]

    # ------------------------------------------------------------------
    # Worlds and rooms
    # ------------------------------------------------------------------

    async def ensure_world(self, world: World) -> World:
        """Insert *world* if unknown; an existing record keeps its fields and gains new metadata."""
        async with self._lock:
            existing = self._worlds.get(world.id)
            if existing is None:
                existing = World(id=world.id, name=world.name, server_id=world.server_id,
                                 metadata=dict(world.metadata))
                self._worlds[world.id] = existing
                log.debug("Created world %s (%s).", world.id, world.name)
            else:
                existing.metadata.update(world.metadata)
            return existing

    async def get_world(self, world_id: str) -> World | None:
        return self._worlds.get(world_id)

    async def ensure_room(self, room: Room) -> Room:
        """Insert *room* if unknown; an existing record is left as is."""
        async with self._lock:
            existing = self._rooms.get(room.id)
            if existing is None:
                self._rooms[room.id] = existing = room
                log.debug("Created room %s (%s).", room.id, room.name)
            return existing

    async def get_room(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def __repr__(self) -> str:
        sizes = ", ".join(f"{name}={len(rows)}" for name, rows in self._tables.items())
        return (
            f"InMemoryMessageStore({sizes or 'empty'}, entities={len(self._entities)}, "
            f"rooms={len(self._rooms)})"
        )
