"""Message orchestration: state composition, dispatch, evaluation, freshness."""

from agent_runtime.orchestrator.dispatch import ActionDispatcher, ActionOutcome
from agent_runtime.orchestrator.evaluate import EvaluatorRunner
from agent_runtime.orchestrator.freshness import ResponseTracker
from agent_runtime.orchestrator.handler import Decision, MessageHandler, Run
from agent_runtime.orchestrator.state import StateComposer

__all__ = [
    "ActionDispatcher",
    "ActionOutcome",
    "Decision",
    "EvaluatorRunner",
    "MessageHandler",
    "ResponseTracker",
    "Run",
    "StateComposer",
]
