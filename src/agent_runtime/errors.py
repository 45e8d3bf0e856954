"""Exception hierarchy for the agent runtime.

Only failures that the orchestrator does *not* isolate surface as
exceptions to callers.  Provider, action and evaluator failures are logged
and swallowed where they happen; see :mod:`agent_runtime.orchestrator`.
"""

from __future__ import annotations


class AgentRuntimeError(Exception):
    """Base class for every error raised by the runtime itself."""


class RunTimeoutError(AgentRuntimeError):
    """Raised when a message-handling run exceeds its wall-clock budget.

    Attributes:
        run_id: Correlation id of the abandoned run.
        timeout: The budget that was exceeded, in seconds.
    """

    def __init__(self, run_id: str, timeout: float) -> None:
        self.run_id = run_id
        self.timeout = timeout
        super().__init__(f"Run {run_id} exceeded {timeout:.0f}s timeout")


class DuplicateMemoryError(AgentRuntimeError):
    """Raised by a message store when a memory id already exists.

    The ``code`` mirrors the unique-violation SQLSTATE used by relational
    stores so adapters can raise it verbatim.
    """

    UNIQUE_VIOLATION: str = "23505"

    def __init__(self, memory_id: str, table_name: str = "messages") -> None:
        self.memory_id = memory_id
        self.table_name = table_name
        self.code = self.UNIQUE_VIOLATION
        super().__init__(f"Memory {memory_id} already exists in {table_name!r}")


class ModelError(AgentRuntimeError):
    """Raised when a model call cannot be routed or returns nothing usable.

    Attributes:
        model_type: The requested :class:`~agent_runtime.types.ModelType`.
    """

    def __init__(self, message: str, model_type: str | None = None) -> None:
        self.model_type = model_type
        super().__init__(
            f"{message}{f' (model_type={model_type})' if model_type else ''}"
        )
