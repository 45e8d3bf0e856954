"""Event handlers registered by the bootstrap plugin.

Message-type events route into the runtime's :class:`MessageHandler`, so an
adapter can either call the handler directly or emit an event.  World and
entity events keep the store's rooms and participants in step with the
platform.  Lifecycle events are logged at DEBUG.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from agent_runtime.events import EventType
from agent_runtime.types import Entity, EventHandler, Room, World, now_ms

log = logging.getLogger(__name__)

SYNC_BATCH_SIZE = 50
SYNC_BATCH_DELAY = 0.5  # seconds


async def on_message_received(payload: dict[str, Any]) -> None:
    runtime = payload["runtime"]
    await runtime.message_handler.handle_message(payload["message"], payload.get("callback"))


async def on_reaction_received(payload: dict[str, Any]) -> None:
    await payload["runtime"].message_handler.handle_reaction(payload["message"])


async def on_post_generated(payload: dict[str, Any]) -> None:
    runtime = payload["runtime"]
    await runtime.message_handler.handle_post_generated(payload["message"], payload.get("callback"))


async def on_message_sent(payload: dict[str, Any]) -> None:
    message = payload.get("message")
    text = message.content.text if message is not None else ""
    log.debug("Message sent: %s", text)


async def on_world_sync(payload: dict[str, Any]) -> None:
    """Record a world, its rooms and its members.

    Payload keys: ``world`` (:class:`World`), ``rooms`` (list of
    :class:`Room`), ``entities`` (list of :class:`Entity`), ``source``.
    Members are linked to the first room and written in batches of
    :data:`SYNC_BATCH_SIZE` with a short pause between batches.  A member
    that fails to sync is logged and skipped.
    """
    store = payload["runtime"].store
    world: World = payload["world"]
    rooms: list[Room] = payload.get("rooms") or []
    entities: list[Entity] = payload.get("entities") or []
    log.info("Syncing world %s (%d room(s), %d entit(ies)).", world.name or world.id, len(rooms), len(entities))

    await store.ensure_world(world)
    for room in rooms:
        await store.ensure_room(room)

    room_id = rooms[0].id if rooms else None
    for start in range(0, len(entities), SYNC_BATCH_SIZE):
        batch = entities[start:start + SYNC_BATCH_SIZE]
        results = await asyncio.gather(
            *(store.ensure_entity(entity, room_id=room_id) for entity in batch),
            return_exceptions=True,
        )
        for entity, result in zip(batch, results):
            if isinstance(result, Exception):
                log.warning("Failed to sync entity %s: %s", entity.id, result)
        if start + SYNC_BATCH_SIZE < len(entities):
            await asyncio.sleep(SYNC_BATCH_DELAY)

    log.info("Synced world %s.", world.name or world.id)


async def on_entity_joined(payload: dict[str, Any]) -> None:
    """Link a newly joined entity to its room.

    Payload keys: ``entity`` (:class:`Entity`), ``room_id``, ``world_id``,
    ``source``.  Without a room id there is nothing to link and the event
    is skipped.
    """
    entity: Entity = payload["entity"]
    room_id = payload.get("room_id")
    if not room_id:
        log.warning("Cannot sync entity %s without a room.", entity.id)
        return
    joined = Entity(id=entity.id, names=list(entity.names), metadata={**entity.metadata, "status": "ACTIVE"})
    await payload["runtime"].store.ensure_entity(joined, room_id=room_id)
    log.info("Synced entity %s (%s).", entity.display_name, entity.id)


async def on_entity_left(payload: dict[str, Any]) -> None:
    """Mark an entity inactive, stamping ``left_at`` in epoch milliseconds."""
    store = payload["runtime"].store
    entity = await store.get_entity(payload["entity_id"])
    if entity is not None:
        entity.metadata = {**entity.metadata, "status": "INACTIVE", "left_at": now_ms()}
        await store.update_entity(entity)
    log.info("Entity %s left world %s.", payload["entity_id"], payload.get("world_id"))


async def on_action_started(payload: dict[str, Any]) -> None:
    log.debug("Action started: %s (%s)", payload.get("action_name"), payload.get("action_id"))


async def on_action_completed(payload: dict[str, Any]) -> None:
    status = f"failed: {payload['error']}" if payload.get("error") else "completed"
    log.debug("Action %s: %s (%s)", status, payload.get("action_name"), payload.get("action_id"))


async def on_evaluator_started(payload: dict[str, Any]) -> None:
    log.debug("Evaluator started: %s (%s)", payload.get("evaluator_name"), payload.get("evaluator_id"))


async def on_evaluator_completed(payload: dict[str, Any]) -> None:
    status = f"failed: {payload['error']}" if payload.get("error") else "completed"
    log.debug("Evaluator %s: %s (%s)", status, payload.get("evaluator_name"), payload.get("evaluator_id"))


async def on_run_event(payload: dict[str, Any]) -> None:
    log.debug(
        "Run %s %s (message=%s, duration=%sms%s)",
        payload.get("run_id"),
        payload.get("status"),
        payload.get("message_id"),
        payload.get("duration", "-"),
        f", error={payload['error']}" if payload.get("error") else "",
    )


BOOTSTRAP_EVENTS: dict[str, list[EventHandler]] = {
    EventType.MESSAGE_RECEIVED.value: [on_message_received],
    EventType.VOICE_MESSAGE_RECEIVED.value: [on_message_received],
    EventType.REACTION_RECEIVED.value: [on_reaction_received],
    EventType.POST_GENERATED.value: [on_post_generated],
    EventType.MESSAGE_SENT.value: [on_message_sent],
    EventType.WORLD_JOINED.value: [on_world_sync],
    EventType.WORLD_CONNECTED.value: [on_world_sync],
    EventType.ENTITY_JOINED.value: [on_entity_joined],
    EventType.ENTITY_LEFT.value: [on_entity_left],
    EventType.ACTION_STARTED.value: [on_action_started],
    EventType.ACTION_COMPLETED.value: [on_action_completed],
    EventType.EVALUATOR_STARTED.value: [on_evaluator_started],
    EventType.EVALUATOR_COMPLETED.value: [on_evaluator_completed],
    EventType.RUN_STARTED.value: [on_run_event],
    EventType.RUN_ENDED.value: [on_run_event],
    EventType.RUN_TIMEOUT.value: [on_run_event],
}
