"""The default plugin: core actions, context providers, reflection and event wiring."""

from agent_runtime.bootstrap.actions import BOOTSTRAP_ACTIONS
from agent_runtime.bootstrap.evaluators import reflection_evaluator
from agent_runtime.bootstrap.events import BOOTSTRAP_EVENTS
from agent_runtime.bootstrap.providers import BOOTSTRAP_PROVIDERS
from agent_runtime.types import Plugin

bootstrap_plugin = Plugin(
    name="bootstrap",
    description="Agent bootstrap with basic actions, providers and evaluators",
    actions=list(BOOTSTRAP_ACTIONS),
    providers=list(BOOTSTRAP_PROVIDERS),
    evaluators=[reflection_evaluator],
    events={name: list(handlers) for name, handlers in BOOTSTRAP_EVENTS.items()},
)

__all__ = ["bootstrap_plugin"]
