"""Tests for the OpenRouter client and the model router."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agent_runtime.errors import ModelError
from agent_runtime.models import ModelRouter, OpenRouterClient, resolve_models
from agent_runtime.models.openrouter import ChatResponse, OpenRouterError
from agent_runtime.models.registry import DEFAULT_MODELS
from agent_runtime.types import ModelType


class _FakeResponse:
    def __init__(self, status, body):
        self.status = status
        self._body = body

    async def json(self, content_type=None):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def _session(*responses):
    session = MagicMock()
    session.closed = False
    session.post = MagicMock(side_effect=list(responses))
    session.close = AsyncMock()
    return session


# ---------------------------------------------------------------------------
# OpenRouterClient
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_chat_parses_completion_and_tracks_cost():
    client = OpenRouterClient(api_key="sk-test")
    client._session = _session(_FakeResponse(200, {
        "model": "openai/gpt-4o-mini",
        "choices": [{"message": {"content": "hi there"}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 3, "cost": 0.0025},
    }))

    response = await client.chat("openai/gpt-4o-mini", [{"role": "user", "content": "hi"}], stop=["\n"])

    assert response.content == "hi there"
    assert response.input_tokens == 10
    assert response.finish_reason == "stop"
    assert client.session_cost == pytest.approx(0.0025)
    assert client.request_count == 1
    payload = client._session.post.call_args.kwargs["json"]
    assert payload["stop"] == ["\n"]
    assert client._session.post.call_args.args[0].endswith("/chat/completions")


@pytest.mark.asyncio
async def test_error_inside_ok_body_raises():
    client = OpenRouterClient(api_key="sk-test")
    client._session = _session(_FakeResponse(200, {"error": {"message": "model overloaded"}}))
    with pytest.raises(OpenRouterError, match="model overloaded"):
        await client.chat("m", [])


@pytest.mark.asyncio
async def test_http_error_raises_with_status():
    client = OpenRouterClient(api_key="sk-test")
    client._session = _session(_FakeResponse(401, {"error": "bad key"}))
    with pytest.raises(OpenRouterError) as excinfo:
        await client.chat("m", [])
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_rate_limit_is_retried():
    client = OpenRouterClient(api_key="sk-test")
    client._session = _session(
        _FakeResponse(429, {}),
        _FakeResponse(200, {"choices": [{"message": {"content": "ok"}}]}),
    )
    with patch("agent_runtime.models.openrouter.asyncio.sleep", new=AsyncMock()) as sleep:
        response = await client.chat("m", [])
    assert response.content == "ok"
    sleep.assert_awaited_once()


@pytest.mark.asyncio
async def test_rate_limit_exhaustion_raises():
    client = OpenRouterClient(api_key="sk-test")
    client._session = _session(*[_FakeResponse(429, {}) for _ in range(3)])
    with patch("agent_runtime.models.openrouter.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(OpenRouterError) as excinfo:
            await client.chat("m", [])
    assert excinfo.value.status_code == 429


@pytest.mark.asyncio
async def test_empty_choices_raise():
    client = OpenRouterClient(api_key="sk-test")
    client._session = _session(_FakeResponse(200, {"choices": []}))
    with pytest.raises(OpenRouterError):
        await client.chat("m", [])


@pytest.mark.asyncio
async def test_embed_orders_by_index():
    client = OpenRouterClient(api_key="sk-test")
    client._session = _session(_FakeResponse(200, {"data": [
        {"index": 1, "embedding": [2.0]},
        {"index": 0, "embedding": [1.0]},
    ]}))
    assert await client.embed("e", ["a", "b"]) == [[1.0], [2.0]]
    assert await client.embed("e", []) == []


@pytest.mark.asyncio
async def test_close_is_idempotent():
    client = OpenRouterClient(api_key="sk-test")
    session = _session()
    client._session = session
    await client.close()
    await client.close()
    session.close.assert_awaited_once()


# ---------------------------------------------------------------------------
# Registry and router
# ---------------------------------------------------------------------------


def test_resolve_models_applies_overrides():
    models = resolve_models({ModelType.TEXT_LARGE: "x/large", ModelType.TEXT_SMALL: None})
    assert models[ModelType.TEXT_LARGE].id == "x/large"
    assert models[ModelType.TEXT_LARGE].max_tokens == DEFAULT_MODELS[ModelType.TEXT_LARGE].max_tokens
    assert models[ModelType.TEXT_SMALL] == DEFAULT_MODELS[ModelType.TEXT_SMALL]


@pytest.fixture
def client():
    mock = AsyncMock(spec=OpenRouterClient)
    mock.chat.return_value = ChatResponse(
        content="generated", model="m", input_tokens=1, output_tokens=1, cost=0.0, finish_reason="stop"
    )
    mock.embed.return_value = [[0.5, 0.5]]
    return mock


@pytest.mark.asyncio
async def test_text_call_uses_spec_and_system_prompt(client):
    router = ModelRouter(client, resolve_models(), system_prompt="You are Ada.")
    assert await router.use_model(ModelType.TEXT_SMALL, prompt="hello") == "generated"

    kwargs = client.chat.await_args.kwargs
    spec = DEFAULT_MODELS[ModelType.TEXT_SMALL]
    assert kwargs["model"] == spec.id
    assert kwargs["temperature"] == spec.temperature
    assert kwargs["max_tokens"] == spec.max_tokens
    assert kwargs["messages"] == [
        {"role": "system", "content": "You are Ada."},
        {"role": "user", "content": "hello"},
    ]


@pytest.mark.asyncio
async def test_embedding_call_returns_first_vector(client):
    router = ModelRouter(client, resolve_models())
    assert await router.use_model("TEXT_EMBEDDING", text="hello") == [0.5, 0.5]
    client.embed.assert_awaited_once_with(DEFAULT_MODELS[ModelType.TEXT_EMBEDDING].id, ["hello"])


@pytest.mark.asyncio
async def test_router_errors(client):
    router = ModelRouter(client, {ModelType.TEXT_SMALL: DEFAULT_MODELS[ModelType.TEXT_SMALL]})
    with pytest.raises(ModelError):
        await router.use_model(ModelType.TEXT_LARGE, prompt="x")
    with pytest.raises(ModelError):
        await router.use_model(ModelType.TEXT_SMALL)
    with pytest.raises(ModelError):
        await router.use_model("NOT_A_TYPE", prompt="x")

    full = ModelRouter(client, resolve_models())
    with pytest.raises(ModelError):
        await full.use_model(ModelType.TEXT_EMBEDDING, text="")
    client.embed.return_value = []
    with pytest.raises(ModelError):
        await full.use_model(ModelType.TEXT_EMBEDDING, text="hi")
