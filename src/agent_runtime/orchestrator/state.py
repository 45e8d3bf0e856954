"""State composition for prompt rendering.

The :class:`StateComposer` runs a selection of registered providers against
one message and merges what they return into a single
:class:`~agent_runtime.types.State`.  The orchestrator composes twice per
message: a narrow slice for the should-respond decision and the full set
(plus any providers the decision asked for) when generating a reply.

Selection rules:

1. With an ``include_list`` only the named providers run.
2. Without one, every provider that is neither ``dynamic`` nor ``private``
   runs.
3. ``extra_providers`` are added in both cases; this is how dynamic and
   private providers get pulled in.

Providers run one at a time in registration order and receive the partial
state built so far, so a provider can read what earlier ones produced.  A
provider that raises is logged and contributes an empty fragment; the
composition as a whole never fails.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable

from agent_runtime.types import Memory, Provider, ProviderResult, State

if TYPE_CHECKING:
    from agent_runtime.runtime import AgentRuntime

log = logging.getLogger(__name__)


def _as_result(raw: Any) -> ProviderResult:
    """Normalise whatever a provider returned into a :class:`ProviderResult`."""
    if raw is None:
        return ProviderResult()
    if isinstance(raw, ProviderResult):
        return raw
    if isinstance(raw, str):
        return ProviderResult(text=raw)
    if isinstance(raw, dict):
        return ProviderResult(
            text=str(raw.get("text") or ""),
            values=dict(raw.get("values") or {}),
            data=dict(raw.get("data") or {}),
        )
    return ProviderResult(text=str(raw))


def _upper_names(names: Iterable[str] | None) -> list[str]:
    return [n.strip().upper() for n in names or [] if isinstance(n, str) and n.strip()]


class StateComposer:
    """Builds :class:`State` objects from the runtime's provider registry.

    Args:
        runtime: The owning runtime; supplies the provider registry, the
            character and the message store.
    """

    def __init__(self, runtime: AgentRuntime) -> None:
        self.runtime = runtime

    def select(
        self,
        include_list: Iterable[str] | None = None,
        extra_providers: Iterable[str] | None = None,
    ) -> list[Provider]:
        """Resolve which providers a composition runs, in registration order."""
        registered = list(self.runtime.providers)
        known = {p.name.upper() for p in registered}
        extras = _upper_names(extra_providers)

        if include_list is not None:
            wanted = set(_upper_names(include_list)) | set(extras)
            selected = [p for p in registered if p.name.upper() in wanted]
        else:
            wanted = set(extras)
            selected = [
                p for p in registered
                if (not p.dynamic and not p.private) or p.name.upper() in wanted
            ]

        unknown = sorted(wanted - known)
        if unknown:
            log.debug("Skipping unknown providers: %s", ", ".join(unknown))
        return selected

    async def compose_state(
        self,
        message: Memory,
        include_list: Iterable[str] | None = None,
        extra_providers: Iterable[str] | None = None,
    ) -> State:
        """Run the selected providers for *message* and merge their output.

        Returns:
            A fresh :class:`State`.  ``values`` always carries ``agentName``,
            ``senderName`` and ``providers`` (every non-empty fragment joined
            with blank lines).
        """
        runtime = self.runtime
        state = State()
        state.values["agentName"] = runtime.character.name
        state.values["senderName"] = await self._sender_name(message)

        for provider in self.select(include_list, extra_providers):
            try:
                result = _as_result(await provider.get(runtime, message, state))
            except Exception:
                log.warning(
                    "Provider %s failed for message %s; continuing without it.",
                    provider.name,
                    message.id,
                    exc_info=True,
                )
                result = ProviderResult()

            state.fragments[provider.name] = result.text
            state.values.update(result.values)
            if result.data:
                state.data[provider.name] = result.data

        state.text = "\n\n".join(text for text in state.fragments.values() if text)
        state.values["providers"] = state.text
        return state

    async def _sender_name(self, message: Memory) -> str:
        if message.entity_id == self.runtime.agent_id:
            return self.runtime.character.name
        try:
            entity = await self.runtime.store.get_entity(message.entity_id)
        except Exception:
            log.warning("Could not resolve sender %s.", message.entity_id, exc_info=True)
            return ""
        return entity.display_name if entity else ""
