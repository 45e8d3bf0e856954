"""Async OpenRouter client backing every model call the runtime makes.

OpenRouter exposes an OpenAI-compatible API in front of many model vendors,
so one client covers both text generation (``/chat/completions``) and
embeddings (``/embeddings``).  The client owns authentication, retry on
HTTP 429 with exponential backoff, and a running USD cost tally.

Usage::

    async with OpenRouterClient(api_key="sk-or-...") as client:
        reply = await client.chat(
            model="openai/gpt-4o-mini",
            messages=[{"role": "user", "content": "Hello!"}],
        )
        vectors = await client.embed("openai/text-embedding-3-small", ["Hello!"])
        print(reply.content, client.session_cost)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp

from agent_runtime.errors import AgentRuntimeError

log = logging.getLogger(__name__)

DEFAULT_BASE_URL: str = "https://openrouter.ai/api/v1"

_MAX_RETRIES: int = 3
"""Attempts per request when OpenRouter answers 429."""

_RETRY_BACKOFF_BASE: float = 1.0
"""Seconds before the first retry; doubles on each further attempt."""

_REQUEST_TIMEOUT: float = 120.0

_APP_REFERER: str = "https://github.com/agent-runtime"
_APP_TITLE: str = "Agent Runtime"


class OpenRouterError(AgentRuntimeError):
    """An error response (or rate-limit exhaustion) from OpenRouter.

    Attributes:
        message: Error text reported by the API.
        status_code: HTTP status of the failed response.
        model: Requested model id, when known.
    """

    def __init__(self, message: str, status_code: int, model: str | None = None) -> None:
        self.message = message
        self.status_code = status_code
        self.model = model
        super().__init__(
            f"OpenRouter error {status_code}{f' (model={model})' if model else ''}: {message}"
        )


@dataclass(frozen=True, slots=True)
class ChatResponse:
    """One completed chat request.

    ``model`` is the model that actually served the request, which can
    differ from the requested one when OpenRouter falls back.
    """

    content: str
    model: str
    input_tokens: int
    output_tokens: int
    cost: float
    finish_reason: str


def _error_message(body: Any, status: int) -> str:
    if isinstance(body, dict) and "error" in body:
        err = body["error"]
        return err.get("message", str(err)) if isinstance(err, dict) else str(err)
    return f"HTTP {status}: {body}"


class OpenRouterClient:
    """Async OpenRouter client with a lazily created ``aiohttp`` session.

    Args:
        api_key: OpenRouter API key.
        base_url: API root; override to point at a proxy or a test server.
    """

    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._session: aiohttp.ClientSession | None = None
        self.session_cost: float = 0.0
        self.request_count: int = 0

    async def __aenter__(self) -> OpenRouterClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return (
            f"OpenRouterClient(base_url={self._base_url!r}, requests={self.request_count}, "
            f"cost=${self.session_cost:.6f})"
        )

    # -- Transport ----------------------------------------------------------

    async def _ensure_session(self) -> aiohttp.ClientSession:
        # Created on first use so construction does not need a running loop.
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                    "HTTP-Referer": _APP_REFERER,
                    "X-Title": _APP_TITLE,
                },
                timeout=aiohttp.ClientTimeout(total=_REQUEST_TIMEOUT),
            )
        return self._session

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST *payload* to *endpoint*, retrying on 429.

        Raises:
            OpenRouterError: For any error status, an error object inside a
                2xx body, or when every retry was rate-limited.
        """
        session = await self._ensure_session()
        url = f"{self._base_url}{endpoint}"
        model = payload.get("model")

        for attempt in range(_MAX_RETRIES):
            async with session.post(url, json=payload) as resp:
                if resp.status == 429:
                    delay = _RETRY_BACKOFF_BASE * (2 ** attempt)
                    log.warning(
                        "OpenRouter rate-limited %s; retrying in %.1fs (attempt %d/%d).",
                        model,
                        delay,
                        attempt + 1,
                        _MAX_RETRIES,
                    )
                    await asyncio.sleep(delay)
                    continue

                body = await resp.json(content_type=None)
                self.request_count += 1
                # Errors can arrive inside a 200 body as well.
                if resp.status >= 400 or (isinstance(body, dict) and "error" in body):
                    raise OpenRouterError(_error_message(body, resp.status), resp.status, model)
                return body

        raise OpenRouterError("Rate limited on every attempt", 429, model)

    @staticmethod
    def _cost_of(body: dict[str, Any]) -> float:
        """USD cost reported for a request, or 0.0 when absent."""
        usage = body.get("usage") or {}
        for raw in (usage.get("total_cost"), usage.get("cost"), body.get("cost")):
            if raw is None:
                continue
            try:
                return float(raw)
            except (TypeError, ValueError):
                continue
        return 0.0

    # -- Public API ---------------------------------------------------------

    async def chat(
        self,
        model: str,
        messages: list[dict[str, Any]],
        temperature: float = 0.7,
        max_tokens: int = 4096,
        stop: list[str] | None = None,
    ) -> ChatResponse:
        """Run one chat completion.

        Args:
            model: OpenRouter model id.
            messages: OpenAI-format conversation.
            temperature: Sampling temperature.
            max_tokens: Generation cap.
            stop: Optional stop sequences.

        Raises:
            OpenRouterError: On API errors, an empty ``choices`` list, or
                rate-limit exhaustion.
        """
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if stop:
            payload["stop"] = stop

        body = await self._post("/chat/completions", payload)
        choices = body.get("choices") or []
        if not choices:
            raise OpenRouterError("Completion contained no choices", 200, model)

        first = choices[0]
        usage = body.get("usage") or {}
        cost = self._cost_of(body)
        self.session_cost += cost

        response = ChatResponse(
            content=(first.get("message") or {}).get("content") or "",
            model=body.get("model", model),
            input_tokens=int(usage.get("prompt_tokens", 0)),
            output_tokens=int(usage.get("completion_tokens", 0)),
            cost=cost,
            finish_reason=first.get("finish_reason") or "unknown",
        )
        log.debug(
            "Chat %s: tokens=%d+%d cost=$%.6f finish=%s",
            response.model,
            response.input_tokens,
            response.output_tokens,
            cost,
            response.finish_reason,
        )
        return response

    async def embed(self, model: str, texts: list[str]) -> list[list[float]]:
        """Embed *texts*, returning vectors in input order.

        Raises:
            OpenRouterError: On API errors or rate-limit exhaustion.
        """
        if not texts:
            return []

        body = await self._post("/embeddings", {"model": model, "input": texts})
        entries = sorted(body.get("data") or [], key=lambda d: d.get("index", 0))
        if len(entries) != len(texts):
            log.warning("Embedding %s returned %d vectors for %d inputs.", model, len(entries), len(texts))

        cost = self._cost_of(body)
        self.session_cost += cost
        log.debug("Embedded %d text(s) with %s, cost=$%.6f", len(texts), model, cost)
        return [entry["embedding"] for entry in entries]

    async def close(self) -> None:
        """Close the HTTP session; safe to call more than once."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            log.debug("OpenRouter session closed (total cost $%.6f).", self.session_cost)
        self._session = None
