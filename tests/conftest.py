"""Shared fixtures for the agent runtime test suite."""

from __future__ import annotations

import inspect
import json
from collections import defaultdict
from typing import Any

import pytest

from agent_runtime.bootstrap import bootstrap_plugin
from agent_runtime.character import Character
from agent_runtime.events import EventType
from agent_runtime.memory.store import InMemoryMessageStore
from agent_runtime.runtime import AgentRuntime
from agent_runtime.types import Content, Entity, Memory, ModelType


def fenced(obj: Any) -> str:
    """Model output wrapping *obj* in a ```json block."""
    return "```json\n" + json.dumps(obj) + "\n```"


class FakeModels:
    """Scripted stand-in for the model router.

    Text outputs are queued per model type and consumed in order.  An
    output may be a string, an exception to raise, or a callable (sync or
    async) receiving the call's keyword arguments.
    """

    def __init__(self) -> None:
        self.outputs: dict[ModelType, list[Any]] = defaultdict(list)
        self.calls: list[tuple[ModelType, dict[str, Any]]] = []
        self.embedding: list[float] = [0.1, 0.2, 0.3]
        self.embedding_error: Exception | None = None

    def script(self, model_type: ModelType, *outputs: Any) -> None:
        self.outputs[model_type].extend(outputs)

    def calls_for(self, model_type: ModelType) -> list[dict[str, Any]]:
        return [kwargs for called, kwargs in self.calls if called is model_type]

    async def use_model(self, model_type: ModelType | str, **kwargs: Any) -> Any:
        model_type = ModelType(model_type)
        self.calls.append((model_type, kwargs))
        if model_type is ModelType.TEXT_EMBEDDING:
            if self.embedding_error is not None:
                raise self.embedding_error
            return list(self.embedding)
        if not self.outputs[model_type]:
            raise AssertionError(f"No scripted output left for {model_type.value}")
        output = self.outputs[model_type].pop(0)
        if isinstance(output, BaseException):
            raise output
        if callable(output):
            output = output(**kwargs)
            if inspect.isawaitable(output):
                output = await output
        return output


class EventRecorder:
    """Collects every payload emitted on a runtime's event bus."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def __call__(self, payload: dict[str, Any]) -> None:
        self.events.append(payload)

    def of(self, event_type: EventType) -> list[dict[str, Any]]:
        return [e for e in self.events if e["type"] == event_type.value]

    def types(self) -> list[str]:
        return [e["type"] for e in self.events]


@pytest.fixture
def character():
    return Character(
        name="Ada",
        username="ada_bot",
        bio=["A helpful test agent.", "Answers briefly."],
        topics=["testing"],
        adjectives=["curious"],
    )


@pytest.fixture
def models():
    return FakeModels()


@pytest.fixture
def store():
    return InMemoryMessageStore()


@pytest.fixture
def make_runtime(character, store, models):
    """Factory for runtimes sharing the test's store and fake models."""

    def _make(**kwargs: Any) -> AgentRuntime:
        plugins = kwargs.pop("plugins", [bootstrap_plugin])
        return AgentRuntime(character, store=store, models=models, plugins=plugins, **kwargs)

    return _make


@pytest.fixture
def runtime(make_runtime):
    return make_runtime()


@pytest.fixture
def recorder(runtime):
    rec = EventRecorder()
    for event_type in EventType:
        runtime.events.on(event_type.value, rec)
    return rec


@pytest.fixture
def make_message(runtime):
    """Factory for inbound user messages in ``room-1``."""

    def _make(text: str, room_id: str = "room-1", entity_id: str = "user-1", **content: Any) -> Memory:
        return Memory(
            entity_id=entity_id,
            agent_id=runtime.agent_id,
            room_id=room_id,
            content=Content(text=text, source="test", **content),
        )

    return _make


@pytest.fixture
def user_entity():
    return Entity(id="user-1", names=["Grace", "grace_h"])
