"""Routes ``use_model`` calls to the model registered for each model type.

Usage::

    router = ModelRouter(client, resolve_models(), system_prompt=character.system)
    text = await router.use_model(ModelType.TEXT_SMALL, prompt="...")
    vector = await router.use_model(ModelType.TEXT_EMBEDDING, text="...")
"""

from __future__ import annotations

import logging
from typing import Any

from agent_runtime.errors import ModelError
from agent_runtime.models.openrouter import OpenRouterClient
from agent_runtime.models.registry import ModelSpec
from agent_runtime.types import ModelType

log = logging.getLogger(__name__)


class ModelRouter:
    """Dispatches text and embedding requests to an :class:`OpenRouterClient`.

    Args:
        client: The OpenRouter client that performs the HTTP calls.
        models: Spec per model type (see :func:`resolve_models`).
        system_prompt: Optional system message prepended to text calls.
    """

    def __init__(
        self,
        client: OpenRouterClient,
        models: dict[ModelType, ModelSpec],
        system_prompt: str | None = None,
    ) -> None:
        self.client = client
        self.models = dict(models)
        self.system_prompt = system_prompt

    def spec_for(self, model_type: ModelType | str) -> ModelSpec:
        try:
            return self.models[ModelType(model_type)]
        except (KeyError, ValueError) as exc:
            raise ModelError("No model registered", str(model_type)) from exc

    async def use_model(
        self,
        model_type: ModelType | str,
        *,
        prompt: str | None = None,
        text: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        stop: list[str] | None = None,
    ) -> Any:
        """Run one model call.

        Text types take *prompt* and return the completion string; the
        embedding type takes *text* (or *prompt*) and returns a vector.

        Raises:
            ModelError: Unknown model type, missing input, or an empty
                embedding result.
            OpenRouterError: The API call itself failed.
        """
        spec = self.spec_for(model_type)

        if spec.model_type is ModelType.TEXT_EMBEDDING:
            source = text if text is not None else prompt
            if not source:
                raise ModelError("Embedding requires non-empty text", spec.model_type.value)
            vectors = await self.client.embed(spec.id, [source])
            if not vectors:
                raise ModelError("Embedding returned no vectors", spec.model_type.value)
            return vectors[0]

        if prompt is None:
            raise ModelError("Text generation requires a prompt", spec.model_type.value)

        messages: list[dict[str, str]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = await self.client.chat(
            model=spec.id,
            messages=messages,
            temperature=spec.temperature if temperature is None else temperature,
            max_tokens=max_tokens or spec.max_tokens or 1024,
            stop=stop,
        )
        log.debug("%s served by %s (%d chars).", spec.model_type.value, response.model, len(response.content))
        return response.content

    async def close(self) -> None:
        await self.client.close()

    def __repr__(self) -> str:
        routes = ", ".join(f"{t.value}={s.id}" for t, s in self.models.items())
        return f"ModelRouter({routes})"
