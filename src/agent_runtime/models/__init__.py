"""Model client, registry and router for the agent runtime."""

from agent_runtime.models.openrouter import ChatResponse, OpenRouterClient, OpenRouterError
from agent_runtime.models.registry import DEFAULT_MODELS, ModelSpec, resolve_models
from agent_runtime.models.router import ModelRouter

__all__ = [
    "ChatResponse",
    "DEFAULT_MODELS",
    "ModelRouter",
    "ModelSpec",
    "OpenRouterClient",
    "OpenRouterError",
    "resolve_models",
]
