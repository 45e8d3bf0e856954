"""Tests for the Discord adapter's conversion and delivery helpers."""

import itertools
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agent_runtime.channels.discord_connector import DiscordConnector, split_message
from agent_runtime.errors import RunTimeoutError
from agent_runtime.types import Content


def test_split_short_message():
    assert split_message("  hello  ") == ["hello"]
    assert split_message("   ") == []


def test_split_prefers_newlines_then_spaces():
    text = "a" * 8 + "\n" + "b" * 8
    assert split_message(text, limit=10) == ["a" * 8, "b" * 8]
    assert split_message("aaaa bbbb cccc", limit=10) == ["aaaa bbbb", "cccc"]


def test_split_hard_cuts_unbroken_runs():
    assert split_message("x" * 25, limit=10) == ["x" * 10, "x" * 10, "x" * 5]


@pytest.fixture
def connector(runtime):
    with patch.object(DiscordConnector, "user", new=SimpleNamespace(id=999)):
        yield DiscordConnector(runtime, channel_ids=[42])


def _discord_message(content="hello", author_id=7, channel_id=42, attachments=(), reference=None):
    channel = MagicMock()
    channel.id = channel_id
    channel.type = "text"
    ids = itertools.count(5000)
    channel.send = AsyncMock(side_effect=lambda text: SimpleNamespace(id=next(ids)))
    author = SimpleNamespace(id=author_id, name="grace_h", display_name="Grace")
    return SimpleNamespace(
        id=1001,
        content=content,
        author=author,
        channel=channel,
        guild=object(),
        attachments=list(attachments),
        reference=reference,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def test_to_memory_maps_ids_and_attachments(connector, runtime):
    attachment = SimpleNamespace(id=5, url="http://cdn/x.png", filename="x.png", description=None)
    message = _discord_message(attachments=[attachment], reference=SimpleNamespace(message_id=1000))

    memory = connector.to_memory(message)

    assert memory.id == runtime.create_unique_uuid(1001)
    assert memory.room_id == connector.room_id_for(42)
    assert memory.entity_id == runtime.create_unique_uuid(7)
    assert memory.created_at == 1704067200000
    assert memory.content.in_reply_to == runtime.create_unique_uuid(1000)
    assert memory.content.attachments[0].url == "http://cdn/x.png"
    assert memory.content.source == "discord"


def test_bot_user_maps_to_agent_id(connector, runtime):
    assert connector.entity_id_for(999) == runtime.agent_id


@pytest.mark.asyncio
async def test_callback_sends_chunks_and_stores_them(connector, runtime, store):
    channel = _discord_message().channel
    room_id = connector.room_id_for(42)
    deliver = connector.make_callback(channel, room_id)

    sent = await deliver(Content(text="x" * 2500, thought="long", actions=["REPLY"]))

    assert channel.send.await_count == 2
    assert len(sent) == 2
    assert await store.count(room_id) == 2
    assert all(m.entity_id == runtime.agent_id for m in sent)


@pytest.mark.asyncio
async def test_on_message_filters_self_and_other_channels(connector):
    connector._spawn = MagicMock()
    await connector.on_message(_discord_message(author_id=999))
    await connector.on_message(_discord_message(channel_id=1))
    await connector.on_message(_discord_message(content=""))
    connector._spawn.assert_not_called()

    await connector.on_message(_discord_message())
    connector._spawn.assert_called_once()
    connector._spawn.call_args.args[0].close()


@pytest.mark.asyncio
async def test_handle_registers_author_and_survives_timeout(connector, runtime, store):
    message = _discord_message()
    message.channel.typing = MagicMock(return_value=AsyncMock())
    runtime.message_handler.handle_message = AsyncMock(side_effect=RunTimeoutError("run", 1.0))

    await connector._handle(message)

    entity = await store.get_entity(runtime.create_unique_uuid(7))
    assert entity.names == ["Grace", "grace_h"]
    message.channel.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_handle_reports_unexpected_errors(connector, runtime):
    message = _discord_message()
    message.channel.typing = MagicMock(return_value=AsyncMock())
    runtime.message_handler.handle_message = AsyncMock(side_effect=RuntimeError("boom"))

    await connector._handle(message)

    message.channel.send.assert_awaited_once()


def _guild(members=()):
    return SimpleNamespace(
        id=10,
        name="Test Guild",
        owner_id=7,
        text_channels=[SimpleNamespace(id=42, name="general"), SimpleNamespace(id=43, name="elsewhere")],
        system_channel=None,
        members=list(members),
    )


def _member(member_id=7, bot=False, guild=None):
    return SimpleNamespace(
        id=member_id, name="grace_h", display_name="Grace", bot=bot, guild=guild or _guild(),
    )


@pytest.mark.asyncio
async def test_guild_join_syncs_listened_rooms_and_members(connector, runtime, store):
    guild = _guild()
    guild.members = [_member(7, guild=guild), _member(999, bot=True, guild=guild)]

    await connector.on_guild_join(guild)

    world = await store.get_world(runtime.create_unique_uuid(10))
    assert world.name == "Test Guild"
    room_id = connector.room_id_for(42)
    assert (await store.get_room(room_id)).channel_id == "42"
    assert await store.get_room(connector.room_id_for(43)) is None
    assert [e.id for e in await store.get_entities_for_room(room_id)] == [runtime.create_unique_uuid(7)]


@pytest.mark.asyncio
async def test_member_join_and_remove_emit_entity_events(connector, runtime, store):
    member = _member()

    await connector.on_member_join(member)
    entity_id = runtime.create_unique_uuid(7)
    assert [e.id for e in await store.get_entities_for_room(connector.room_id_for(42))] == [entity_id]

    await connector.on_member_remove(member)
    assert (await store.get_entity(entity_id)).metadata["status"] == "INACTIVE"


@pytest.mark.asyncio
async def test_bot_members_are_not_synced(connector, runtime):
    runtime.emit_event = AsyncMock()
    await connector.on_member_join(_member(bot=True))
    await connector.on_member_remove(_member(bot=True))
    runtime.emit_event.assert_not_awaited()


def test_members_intent_is_opt_in(runtime):
    assert DiscordConnector(runtime).intents.members is False
    assert DiscordConnector(runtime, members_intent=True).intents.members is True
