"""Core data types shared by every part of the agent runtime.

The runtime is organised around a handful of plain dataclasses:

- :class:`Memory` -- one immutable turn of conversation, persisted by the
  message store.
- :class:`Content` -- the payload of a memory (text plus the structured
  fields the model produces: thought, actions, providers, ...).
- :class:`State` -- the per-invocation context assembled by providers and
  consumed by prompt templates.  Never persisted.
- :class:`Action`, :class:`Provider`, :class:`Evaluator` -- the pluggable
  capabilities registered at startup and resolved by name.
- :class:`Plugin` -- a named bundle of the above plus event handlers.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from agent_runtime.runtime import AgentRuntime


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ModelType(str, Enum):
    """Classes of model call the runtime can request."""

    TEXT_SMALL = "TEXT_SMALL"
    """Fast, cheap completions (should-respond decisions, reflection)."""

    TEXT_LARGE = "TEXT_LARGE"
    """Full-context reply generation."""

    TEXT_EMBEDDING = "TEXT_EMBEDDING"
    """Vector embedding of a single text."""


class RunStatus(str, Enum):
    """Terminal (and initial) states of a message-handling run."""

    STARTED = "started"
    COMPLETED = "completed"
    TIMEOUT = "timeout"
    ERROR = "error"


class ParticipantState(str, Enum):
    """How the agent participates in a room."""

    FOLLOWED = "FOLLOWED"
    MUTED = "MUTED"


# ---------------------------------------------------------------------------
# Conversation records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Media:
    """An attachment carried by a message."""

    id: str
    url: str
    title: str = ""
    source: str = ""
    description: str = ""
    text: str = ""


_CONTENT_FIELDS = frozenset(
    {"text", "thought", "plan", "actions", "providers", "attachments", "in_reply_to", "inReplyTo", "source"}
)


def _as_name_list(value: Any) -> list[str]:
    """Coerce an LLM-provided list-ish value into a list of strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [str(value)]


@dataclass
class Content:
    """Payload of a :class:`Memory`.

    Attributes:
        text: The user-visible message text.
        thought: The agent's private reasoning for this turn.
        plan: Legacy free-text plan, kept for older response schemas.
        actions: Names of actions the agent wants to execute, in order.
        providers: Extra provider names requested for the next composition.
        attachments: Media attached to the message.
        in_reply_to: Id of the memory this content answers.
        source: Originating platform (``"discord"``, ``"direct"`` ...).
        extra: Any additional keys the model or platform supplied.
    """

    text: str = ""
    thought: str = ""
    plan: str = ""
    actions: list[str] = field(default_factory=list)
    providers: list[str] = field(default_factory=list)
    attachments: list[Media] = field(default_factory=list)
    in_reply_to: str | None = None
    source: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Content:
        """Build content from a parsed model response or platform payload.

        Unknown keys are preserved in :attr:`extra`; list fields accept
        either a JSON array or a comma-separated string.
        """
        attachments: list[Media] = []
        for item in data.get("attachments") or []:
            if isinstance(item, Media):
                attachments.append(item)
            elif isinstance(item, dict) and item.get("url"):
                attachments.append(
                    Media(
                        id=str(item.get("id") or new_id()),
                        url=str(item["url"]),
                        title=str(item.get("title", "")),
                        source=str(item.get("source", "")),
                        description=str(item.get("description", "")),
                        text=str(item.get("text", "")),
                    )
                )

        text = data.get("text")
        thought = data.get("thought")
        plan = data.get("plan")
        return cls(
            text=text.strip() if isinstance(text, str) else "",
            thought=thought.strip() if isinstance(thought, str) else "",
            plan=plan.strip() if isinstance(plan, str) else "",
            actions=_as_name_list(data.get("actions")),
            providers=_as_name_list(data.get("providers")),
            attachments=attachments,
            in_reply_to=data.get("in_reply_to") or data.get("inReplyTo"),
            source=str(data.get("source") or ""),
            extra={k: v for k, v in data.items() if k not in _CONTENT_FIELDS},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        out.update(
            {
                "text": self.text,
                "thought": self.thought,
                "actions": list(self.actions),
                "providers": list(self.providers),
            }
        )
        if self.plan:
            out["plan"] = self.plan
        if self.attachments:
            out["attachments"] = [
                {"id": m.id, "url": m.url, "title": m.title, "source": m.source}
                for m in self.attachments
            ]
        if self.in_reply_to:
            out["in_reply_to"] = self.in_reply_to
        if self.source:
            out["source"] = self.source
        return out


@dataclass(frozen=True, slots=True)
class Memory:
    """One immutable turn of conversation.

    A copy carrying an embedding is produced with :func:`dataclasses.replace`
    rather than by mutating the original record.
    """

    entity_id: str
    agent_id: str
    room_id: str
    content: Content
    id: str = field(default_factory=new_id)
    created_at: int = field(default_factory=now_ms)
    embedding: list[float] | None = None


@dataclass
class Entity:
    """A participant known to the runtime (a human, another bot, the agent)."""

    id: str
    names: list[str]
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.names[0] if self.names else "Unknown User"


@dataclass
class World:
    """A platform server (a Discord guild) grouping rooms and entities."""

    id: str
    name: str = ""
    server_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Room:
    """A conversation channel inside a world."""

    id: str
    name: str = ""
    source: str = ""
    type: str = "GROUP"
    channel_id: str | None = None
    server_id: str | None = None
    world_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


@dataclass
class ProviderResult:
    """A fragment of context produced by one provider.

    Attributes:
        text: Prompt-ready text for this provider.
        values: Placeholder values merged into :attr:`State.values`.
        data: Structured data kept under the provider's name in
            :attr:`State.data`.
    """

    text: str = ""
    values: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class State:
    """Ephemeral context for a single prompt composition.

    ``fragments`` maps provider name to the text it produced; ``values``
    holds named placeholder values (``agentName``, ``recentMessages`` ...);
    ``data`` holds structured provider output.
    """

    values: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)
    fragments: dict[str, str] = field(default_factory=dict)
    text: str = ""

    def lookup(self, key: str) -> Any:
        """Resolve a template placeholder, returning ``""`` when unknown."""
        if key in self.values and self.values[key] is not None:
            return self.values[key]
        if key in self.fragments:
            return self.fragments[key]
        return ""


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------

HandlerCallback = Callable[[Content], Awaitable["list[Memory] | None"]]
"""Delivery channel from the core to the platform adapter."""

Validator = Callable[["AgentRuntime", Memory, "State | None"], Awaitable[bool]]
ActionHandler = Callable[
    ["AgentRuntime", Memory, State, dict[str, Any], "HandlerCallback | None"],
    Awaitable[Any],
]
ProviderFn = Callable[["AgentRuntime", Memory, State], Awaitable["ProviderResult | dict[str, Any] | str | None"]]
EventHandler = Callable[[dict[str, Any]], Awaitable[None]]


async def always_valid(runtime: AgentRuntime, message: Memory, state: State | None = None) -> bool:
    return True


@dataclass
class Action:
    """A named, validated, side-effecting capability."""

    name: str
    description: str
    handler: ActionHandler
    validate: Validator = always_valid
    similes: list[str] = field(default_factory=list)
    examples: list[list[dict[str, Any]]] = field(default_factory=list)


@dataclass
class Provider:
    """A named source of context for prompt composition.

    ``dynamic`` and ``private`` providers never run by default; either kind
    runs when named in an include list or in the extra providers a
    composition asks for (for example by the should-respond decision).
    ``private`` providers are also never listed to the model.
    """

    name: str
    get: ProviderFn
    description: str = ""
    dynamic: bool = False
    private: bool = False


@dataclass
class Evaluator:
    """A post-response hook used for reflection and bookkeeping."""

    name: str
    description: str
    handler: ActionHandler
    validate: Validator = always_valid
    always_run: bool = True
    similes: list[str] = field(default_factory=list)
    examples: list[list[dict[str, Any]]] = field(default_factory=list)


@dataclass
class Plugin:
    """A bundle of capabilities registered into a runtime at startup."""

    name: str
    description: str = ""
    actions: list[Action] = field(default_factory=list)
    providers: list[Provider] = field(default_factory=list)
    evaluators: list[Evaluator] = field(default_factory=list)
    events: dict[str, list[EventHandler]] = field(default_factory=dict)
