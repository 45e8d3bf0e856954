"""Discord adapter for the agent runtime.

Converts Discord messages and reactions into :class:`Memory` records and
hands them to the runtime's :class:`MessageHandler`.  Replies produced by
actions come back through a per-message delivery callback that posts to
the originating channel, splitting at Discord's 2000-character limit, and
stores what was actually sent.  Guilds, channels and members are reported to
the runtime as world and entity events when the bot connects, joins a guild
or sees a member come and go.

Platform ids are mapped to stable runtime ids with
:meth:`AgentRuntime.create_unique_uuid`, so the same channel is always the
same room across restarts.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import discord

from agent_runtime.errors import RunTimeoutError
from agent_runtime.events import EventType
from agent_runtime.types import Content, Entity, HandlerCallback, Media, Memory, Room, World

if TYPE_CHECKING:
    from agent_runtime.runtime import AgentRuntime

log = logging.getLogger(__name__)

MESSAGE_CHAR_LIMIT: int = 2000
SOURCE = "discord"


def split_message(text: str, limit: int = MESSAGE_CHAR_LIMIT) -> list[str]:
    """Split *text* into chunks of at most *limit* characters.

    Breaks prefer newlines, then spaces; a single unbroken run longer than
    *limit* is cut hard.
    """
    text = text.strip()
    if not text:
        return []
    chunks: list[str] = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut <= 0:
            cut = text.rfind(" ", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(text[:cut].rstrip())
        text = text[cut:].lstrip()
    if text:
        chunks.append(text)
    return chunks


class DiscordConnector(discord.Client):
    """A ``discord.Client`` that feeds guild messages into one runtime.

    Args:
        runtime: The runtime that handles messages.
        channel_ids: Channels to listen in; empty means every channel the
            bot can read.
        members_intent: Request the privileged members intent, needed for
            join/leave events and full member lists when syncing guilds.
    """

    def __init__(
        self,
        runtime: AgentRuntime,
        channel_ids: list[int] | None = None,
        members_intent: bool = False,
    ) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.guilds = True
        intents.reactions = True
        intents.members = members_intent
        super().__init__(intents=intents)

        self.runtime = runtime
        self.channel_ids: set[int] = set(channel_ids or [])
        self._background_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def room_id_for(self, channel_id: int) -> str:
        return self.runtime.create_unique_uuid(channel_id)

    def entity_id_for(self, user_id: int) -> str:
        if self.user is not None and user_id == self.user.id:
            return self.runtime.agent_id
        return self.runtime.create_unique_uuid(user_id)

    def to_memory(self, message: discord.Message) -> Memory:
        """Build the runtime's view of a Discord message."""
        attachments = [
            Media(
                id=str(a.id),
                url=a.url,
                title=a.filename,
                source=SOURCE,
                description=a.description or "",
            )
            for a in message.attachments
        ]
        in_reply_to = None
        if message.reference is not None and message.reference.message_id is not None:
            in_reply_to = self.runtime.create_unique_uuid(message.reference.message_id)
        return Memory(
            id=self.runtime.create_unique_uuid(message.id),
            entity_id=self.entity_id_for(message.author.id),
            agent_id=self.runtime.agent_id,
            room_id=self.room_id_for(message.channel.id),
            created_at=int(message.created_at.timestamp() * 1000),
            content=Content(
                text=message.content,
                attachments=attachments,
                in_reply_to=in_reply_to,
                source=SOURCE,
                extra={"channel_type": str(message.channel.type)},
            ),
        )

    def entity_for(self, user: Any) -> Entity:
        names = [n for n in dict.fromkeys([user.display_name, user.name]) if n]
        return Entity(
            id=self.entity_id_for(user.id),
            names=names,
            metadata={SOURCE: {"id": str(user.id), "username": user.name}},
        )

    def world_for(self, guild: discord.Guild) -> World:
        return World(
            id=self.runtime.create_unique_uuid(guild.id),
            name=guild.name,
            server_id=str(guild.id),
            metadata={"owner_id": str(guild.owner_id) if guild.owner_id else None},
        )

    def rooms_for(self, guild: discord.Guild) -> list[Room]:
        """Text channels of *guild* the connector listens in."""
        world_id = self.runtime.create_unique_uuid(guild.id)
        return [
            Room(
                id=self.room_id_for(channel.id),
                name=channel.name,
                source=SOURCE,
                type="GROUP",
                channel_id=str(channel.id),
                server_id=str(guild.id),
                world_id=world_id,
            )
            for channel in guild.text_channels
            if self._listening_in(channel.id)
        ]

    async def _ensure_author(self, author: Any, room_id: str) -> None:
        await self.runtime.store.ensure_entity(self.entity_for(author), room_id=room_id)

    def make_callback(self, channel: Any, room_id: str) -> HandlerCallback:
        """Delivery callback that posts to *channel* and stores what was sent."""

        async def deliver(content: Content) -> list[Memory]:
            sent_memories: list[Memory] = []
            for chunk in split_message(content.text):
                sent = await channel.send(chunk)
                memory = Memory(
                    id=self.runtime.create_unique_uuid(sent.id),
                    entity_id=self.runtime.agent_id,
                    agent_id=self.runtime.agent_id,
                    room_id=room_id,
                    content=Content(
                        text=chunk,
                        thought=content.thought,
                        actions=list(content.actions),
                        in_reply_to=content.in_reply_to,
                        source=SOURCE,
                    ),
                )
                await self.runtime.store.create_memory(memory)
                await self.runtime.emit_event(EventType.MESSAGE_SENT, {"message": memory})
                sent_memories.append(memory)
            return sent_memories

        return deliver

    # ------------------------------------------------------------------
    # discord.py events
    # ------------------------------------------------------------------

    async def on_ready(self) -> None:
        await self.runtime.initialize()
        for guild in self.guilds:
            await self._sync_guild(guild, EventType.WORLD_CONNECTED)
        log.info(
            "%s connected to Discord as %s (channels=%s).",
            self.runtime.character.name,
            self.user,
            sorted(self.channel_ids) or "all",
        )

    async def _sync_guild(self, guild: discord.Guild, event_type: EventType) -> None:
        rooms = self.rooms_for(guild)
        entities = [self.entity_for(m) for m in guild.members if self.user is None or m.id != self.user.id]
        await self.runtime.emit_event(
            event_type,
            {"world": self.world_for(guild), "rooms": rooms, "entities": entities, "source": SOURCE},
        )

    async def on_guild_join(self, guild: discord.Guild) -> None:
        log.info("Joined guild %s (%s).", guild.name, guild.id)
        await self._sync_guild(guild, EventType.WORLD_JOINED)

    def _member_room_id(self, guild: discord.Guild) -> str | None:
        # The system channel if we listen there, else the first listened channel.
        system = guild.system_channel
        if system is not None and self._listening_in(system.id):
            return self.room_id_for(system.id)
        rooms = self.rooms_for(guild)
        return rooms[0].id if rooms else None

    async def on_member_join(self, member: discord.Member) -> None:
        if member.bot:
            return
        await self.runtime.emit_event(
            EventType.ENTITY_JOINED,
            {
                "entity": self.entity_for(member),
                "room_id": self._member_room_id(member.guild),
                "world_id": self.runtime.create_unique_uuid(member.guild.id),
                "source": SOURCE,
            },
        )

    async def on_member_remove(self, member: discord.Member) -> None:
        if member.bot:
            return
        await self.runtime.emit_event(
            EventType.ENTITY_LEFT,
            {
                "entity_id": self.entity_id_for(member.id),
                "world_id": self.runtime.create_unique_uuid(member.guild.id),
                "source": SOURCE,
            },
        )

    def _listening_in(self, channel_id: int) -> bool:
        return not self.channel_ids or channel_id in self.channel_ids

    async def on_message(self, message: discord.Message) -> None:
        if self.user is not None and message.author.id == self.user.id:
            return
        if message.guild is None or not self._listening_in(message.channel.id):
            return
        if not message.content and not message.attachments:
            return
        self._spawn(self._handle(message))

    async def _handle(self, message: discord.Message) -> None:
        memory = self.to_memory(message)
        try:
            await self._ensure_author(message.author, memory.room_id)
            async with message.channel.typing():
                await self.runtime.message_handler.handle_message(
                    memory, self.make_callback(message.channel, memory.room_id)
                )
        except RunTimeoutError:
            log.warning("Timed out handling Discord message %s.", message.id)
        except Exception:
            log.error("Error handling Discord message %s.", message.id, exc_info=True)
            try:
                await message.channel.send("Something went wrong while I was thinking about that.")
            except discord.DiscordException:
                log.debug("Could not send the error notice.", exc_info=True)

    async def on_reaction_add(self, reaction: discord.Reaction, user: discord.User | discord.Member) -> None:
        if self.user is not None and user.id == self.user.id:
            return
        message = reaction.message
        if not self._listening_in(message.channel.id):
            return
        room_id = self.room_id_for(message.channel.id)
        memory = Memory(
            id=self.runtime.create_unique_uuid(f"{message.id}-{user.id}-{reaction.emoji}"),
            entity_id=self.entity_id_for(user.id),
            agent_id=self.runtime.agent_id,
            room_id=room_id,
            content=Content(
                text=f'*Added <{reaction.emoji}> to: "{message.content[:100]}"*',
                in_reply_to=self.runtime.create_unique_uuid(message.id),
                source=SOURCE,
            ),
        )
        self._spawn(self._handle_reaction(user, memory))

    async def _handle_reaction(self, user: Any, memory: Memory) -> None:
        await self._ensure_author(user, memory.room_id)
        await self.runtime.message_handler.handle_reaction(memory)

    # ------------------------------------------------------------------
    # Task tracking
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        """Create a tracked background task with error logging."""
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if not task.cancelled() and task.exception():
            log.error("Background task failed: %s", task.exception(), exc_info=task.exception())

    async def close(self) -> None:
        log.info("Shutting down Discord connector for %s...", self.runtime.character.name)
        for task in self._background_tasks:
            task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
            self._background_tasks.clear()
        await self.runtime.close()
        await super().close()
