"""The agent runtime: one character, its capabilities and collaborators.

:class:`AgentRuntime` is the object every provider, action and evaluator
receives.  It holds the name-keyed registries populated from plugins at
startup, the message store, model access, the event bus and the freshness
tracker, and exposes the orchestration entry points as thin delegations.

Usage::

    runtime = AgentRuntime(character, store=InMemoryMessageStore(), models=router)
    runtime.register_plugin(bootstrap_plugin)
    await runtime.initialize()
    await runtime.message_handler.handle_message(message, callback)
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from typing import TYPE_CHECKING, Any, Generic, Iterable, Iterator, Protocol, Sequence, TypeVar

from agent_runtime.character import Character
from agent_runtime.events import EventBus, EventType
from agent_runtime.memory.store import MessageStore
from agent_runtime.orchestrator.dispatch import ActionDispatcher, ActionOutcome
from agent_runtime.orchestrator.evaluate import EvaluatorRunner
from agent_runtime.orchestrator.freshness import ResponseTracker
from agent_runtime.orchestrator.handler import MessageHandler
from agent_runtime.orchestrator.state import StateComposer
from agent_runtime.prompts.templates import resolve_template
from agent_runtime.types import (
    Action,
    Entity,
    Evaluator,
    HandlerCallback,
    Memory,
    ModelType,
    Plugin,
    Provider,
    State,
)

if TYPE_CHECKING:
    from agent_runtime.config import RuntimeSettings

log = logging.getLogger(__name__)

T = TypeVar("T", Action, Provider, Evaluator)


class ModelBackend(Protocol):
    """Anything that can serve ``use_model`` calls (a :class:`ModelRouter`)."""

    async def use_model(self, model_type: ModelType | str, **kwargs: Any) -> Any: ...


class Registry(Generic[T]):
    """Insertion-ordered, case-insensitive name registry.

    Registering a second item under an existing name is ignored with a
    warning so the first plugin to claim a name keeps it.
    """

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._items: dict[str, T] = {}

    def register(self, item: T) -> bool:
        key = item.name.upper()
        if key in self._items:
            log.warning("%s %s already registered; ignoring duplicate.", self.kind, item.name)
            return False
        self._items[key] = item
        log.debug("Registered %s %s.", self.kind, item.name)
        return True

    def get(self, name: str) -> T | None:
        return self._items.get(name.strip().upper())

    def names(self) -> list[str]:
        return [item.name for item in self._items.values()]

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().upper() in self._items

    def __repr__(self) -> str:
        return f"Registry({self.kind}, {self.names()})"


class AgentRuntime:
    """Runtime for one character.

    Args:
        character: The persona this runtime speaks as.
        store: Message store for memories, participants and entities.
        models: Backend serving :meth:`use_model`.
        run_timeout: Seconds before a message run is abandoned.
        response_max_attempts: Reply generation attempts per message.
        recent_message_count: Messages providers include from the room.
        plugins: Plugins to register immediately, in order.
        events: Event bus; a fresh one by default.
        tracker: Freshness tracker; share one instance per process.
        agent_id: Explicit agent id.  Derived from the character name when
            omitted so restarts keep the same id.
    """

    def __init__(
        self,
        character: Character,
        store: MessageStore,
        models: ModelBackend,
        *,
        run_timeout: float = 300.0,
        response_max_attempts: int = 3,
        recent_message_count: int = 20,
        plugins: Iterable[Plugin] = (),
        events: EventBus | None = None,
        tracker: ResponseTracker | None = None,
        agent_id: str | None = None,
    ) -> None:
        self.character = character
        self.store = store
        self.models = models
        self.run_timeout = run_timeout
        self.response_max_attempts = response_max_attempts
        self.recent_message_count = recent_message_count
        self.events = events or EventBus()
        self.tracker = tracker or ResponseTracker()
        self.agent_id = agent_id or str(uuid.uuid5(uuid.NAMESPACE_DNS, character.name))

        self.actions: Registry[Action] = Registry("action")
        self.providers: Registry[Provider] = Registry("provider")
        self.evaluators: Registry[Evaluator] = Registry("evaluator")
        self.plugins: list[Plugin] = []

        self.composer = StateComposer(self)
        self.dispatcher = ActionDispatcher(self)
        self.evaluator_runner = EvaluatorRunner(self)
        self.message_handler = MessageHandler(self)

        for plugin in plugins:
            self.register_plugin(plugin)

    @classmethod
    def from_settings(cls, settings: RuntimeSettings, character: Character) -> AgentRuntime:
        """Wire an OpenRouter-backed runtime with the bootstrap plugin."""
        from agent_runtime.bootstrap import bootstrap_plugin
        from agent_runtime.memory.store import InMemoryMessageStore
        from agent_runtime.models import ModelRouter, OpenRouterClient, resolve_models

        router = ModelRouter(
            OpenRouterClient(api_key=settings.OPENROUTER_API_KEY),
            resolve_models(settings.model_overrides()),
            system_prompt=character.system,
        )
        return cls(
            character,
            store=InMemoryMessageStore(),
            models=router,
            run_timeout=settings.RUN_TIMEOUT_SECONDS,
            response_max_attempts=settings.RESPONSE_MAX_ATTEMPTS,
            recent_message_count=settings.RECENT_MESSAGE_COUNT,
            plugins=[bootstrap_plugin],
        )

    def __repr__(self) -> str:
        return (
            f"AgentRuntime(character={self.character.name!r}, agent_id={self.agent_id}, "
            f"actions={len(self.actions)}, providers={len(self.providers)}, "
            f"evaluators={len(self.evaluators)})"
        )

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def register_plugin(self, plugin: Plugin) -> None:
        """Add a plugin's actions, providers, evaluators and event handlers."""
        for action in plugin.actions:
            self.actions.register(action)
        for provider in plugin.providers:
            self.providers.register(provider)
        for evaluator in plugin.evaluators:
            self.evaluators.register(evaluator)
        for event_type, handlers in plugin.events.items():
            for handler in handlers:
                self.events.on(event_type, handler)
        self.plugins.append(plugin)
        log.info(
            "Registered plugin %s (%d actions, %d providers, %d evaluators).",
            plugin.name,
            len(plugin.actions),
            len(plugin.providers),
            len(plugin.evaluators),
        )

    async def initialize(self) -> None:
        """Ensure the agent itself is a known entity."""
        names = [n for n in (self.character.name, self.character.username) if n]
        await self.store.ensure_entity(Entity(id=self.agent_id, names=names, metadata={"agent": True}))

    async def close(self) -> None:
        close = getattr(self.models, "close", None)
        if close is not None:
            await close()

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    async def use_model(self, model_type: ModelType | str, **kwargs: Any) -> Any:
        return await self.models.use_model(model_type, **kwargs)

    async def add_embedding_to_memory(self, memory: Memory) -> Memory:
        """Return a copy of *memory* carrying an embedding of its text.

        Memories without text, or that already have an embedding, are
        returned unchanged.
        """
        if memory.embedding is not None or not memory.content.text:
            return memory
        vector = await self.use_model(ModelType.TEXT_EMBEDDING, text=memory.content.text)
        return dataclasses.replace(memory, embedding=list(vector))

    async def emit_event(self, event_type: EventType | str, payload: dict[str, Any]) -> None:
        await self.events.emit(event_type, {"runtime": self, "agent_id": self.agent_id, **payload})

    def create_unique_uuid(self, base: str | int) -> str:
        """Stable id for a platform-native id, scoped to this agent."""
        return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{base}:{self.agent_id}"))

    def get_template(self, *names: str) -> str:
        """The character's override for the first of *names*, else a default."""
        return resolve_template(self.character.templates, *names)

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def compose_state(
        self,
        message: Memory,
        include_list: Iterable[str] | None = None,
        extra_providers: Iterable[str] | None = None,
    ) -> State:
        return await self.composer.compose_state(message, include_list, extra_providers)

    async def process_actions(
        self,
        message: Memory,
        responses: Sequence[Memory],
        state: State,
        callback: HandlerCallback | None = None,
    ) -> list[ActionOutcome]:
        return await self.dispatcher.dispatch(message, responses, state, callback)

    async def evaluate(
        self,
        message: Memory,
        state: State,
        did_respond: bool = False,
        callback: HandlerCallback | None = None,
        responses: Sequence[Memory] | None = None,
    ) -> list[str]:
        return await self.evaluator_runner.evaluate(message, state, did_respond, callback, responses)
