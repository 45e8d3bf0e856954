"""Default model assignments for each :class:`~agent_runtime.types.ModelType`.

The runtime asks for a *class* of model (small, large, embedding) and never
names a vendor model directly.  This module holds the defaults that map each
class to an OpenRouter model id along with its generation limits; settings
may override the ids.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from agent_runtime.types import ModelType


@dataclass(frozen=True, slots=True)
class ModelSpec:
    """A concrete model bound to a :class:`ModelType`.

    Attributes:
        id: OpenRouter model id (``vendor/model``).
        name: Display name used in logs.
        model_type: The class of call this model serves.
        context_window: Maximum context length in tokens.
        max_tokens: Generation cap for text models.
        temperature: Default sampling temperature for text models.
        dimensions: Vector size for embedding models.
    """

    id: str
    name: str
    model_type: ModelType
    context_window: int
    max_tokens: int = 0
    temperature: float = 0.0
    dimensions: int | None = None


DEFAULT_MODELS: dict[ModelType, ModelSpec] = {
    ModelType.TEXT_SMALL: ModelSpec(
        id="openai/gpt-4o-mini",
        name="GPT-4o mini",
        model_type=ModelType.TEXT_SMALL,
        context_window=128_000,
        max_tokens=1024,
        temperature=0.3,
    ),
    ModelType.TEXT_LARGE: ModelSpec(
        id="anthropic/claude-sonnet-4",
        name="Claude Sonnet 4",
        model_type=ModelType.TEXT_LARGE,
        context_window=200_000,
        max_tokens=4096,
        temperature=0.7,
    ),
    ModelType.TEXT_EMBEDDING: ModelSpec(
        id="openai/text-embedding-3-small",
        name="text-embedding-3-small",
        model_type=ModelType.TEXT_EMBEDDING,
        context_window=8_191,
        dimensions=1536,
    ),
}


def resolve_models(overrides: dict[ModelType, str | None] | None = None) -> dict[ModelType, ModelSpec]:
    """Return the default specs with any non-empty id *overrides* applied."""
    resolved = dict(DEFAULT_MODELS)
    for model_type, model_id in (overrides or {}).items():
        if model_id:
            resolved[model_type] = replace(resolved[model_type], id=model_id, name=model_id)
    return resolved
