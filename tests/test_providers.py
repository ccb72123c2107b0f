"""Tests for provider routing, the client registry and the three session adapters.

Provider SDK clients are replaced with mocks injected through the registry;
no network calls are made.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import anthropic_response

from casechat.agents.providers import (
    VARIANTS,
    ClientRegistry,
    MissingCredentialsError,
    Provider,
    ProviderConfigError,
    create_session,
    detect_provider,
    generate_json,
)
from casechat.models.session import Message, MessageRole

OPENING = Message(role=MessageRole.MODEL, content="Hello Jane, what do you think?")


def _make_openai_client(text: str = "Tell me more.", cached: int = 0) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(
            prompt_tokens=200,
            completion_tokens=40,
            prompt_tokens_details=SimpleNamespace(cached_tokens=cached),
        ),
    ))
    return client


def _make_gemini_client(text: str = "Tell me more.") -> tuple[MagicMock, MagicMock]:
    chat = MagicMock()
    chat.send_message = AsyncMock(return_value=SimpleNamespace(
        text=text,
        usage_metadata=SimpleNamespace(
            prompt_token_count=300, cached_content_token_count=250, candidates_token_count=20
        ),
    ))
    client = MagicMock()
    client.aio.chats.create.return_value = chat
    return client, chat


# ---------------------------------------------------------------------------
# TestDetectProvider
# ---------------------------------------------------------------------------


class TestDetectProvider:
    @pytest.mark.parametrize("model_id,expected", [
        ("gpt-4o", Provider.OPENAI),
        ("o1-mini", Provider.OPENAI),
        ("azure-openai-gpt", Provider.OPENAI),
        ("claude-sonnet-4-5", Provider.ANTHROPIC),
        ("my-anthropic-proxy", Provider.ANTHROPIC),
        ("gemini-2.5-flash", Provider.GEMINI),
        ("something-else", Provider.GEMINI),
    ])
    def test_routing(self, model_id, expected):
        assert detect_provider(model_id) == expected

    def test_idempotent(self):
        assert detect_provider("GPT-4o") == detect_provider("GPT-4o") == Provider.OPENAI

    def test_every_provider_has_variant(self):
        assert set(VARIANTS) == set(Provider)


# ---------------------------------------------------------------------------
# TestClientRegistry
# ---------------------------------------------------------------------------


class TestClientRegistry:
    def test_missing_key_raises(self):
        registry = ClientRegistry(api_keys={Provider.OPENAI: ""})
        with pytest.raises(MissingCredentialsError, match="OPENAI_API_KEY"):
            registry.client(Provider.OPENAI)

    def test_injected_client_returned(self):
        fake = MagicMock()
        assert ClientRegistry(clients={Provider.GEMINI: fake}).client(Provider.GEMINI) is fake

    def test_create_session_fails_fast_without_key(self):
        with pytest.raises(MissingCredentialsError):
            create_session(ClientRegistry(), "system", "claude-test")

    def test_empty_model_rejected(self):
        with pytest.raises(ProviderConfigError):
            create_session(ClientRegistry(), "system", "  ")


# ---------------------------------------------------------------------------
# TestAnthropicAdapter
# ---------------------------------------------------------------------------


class TestAnthropicAdapter:
    async def test_system_prompt_cached_and_history_resent(self, registry, anthropic_client):
        session = create_session(registry, "SYSTEM", "claude-test", prior_history=[OPENING])
        reply = await session.send("We should stay in catering")

        assert reply.text == "Interesting. Why do you say that?"
        kwargs = anthropic_client.messages.create.call_args.kwargs
        assert kwargs["system"][0]["cache_control"] == {"type": "ephemeral"}
        assert kwargs["system"][0]["text"] == "SYSTEM"
        roles = [m["role"] for m in kwargs["messages"]]
        # Synthetic user turn in front of the opening assistant message
        assert roles == ["user", "assistant", "user"]
        assert kwargs["messages"][-1]["content"][0]["text"] == "We should stay in catering"

    async def test_history_grows_after_success(self, registry):
        session = create_session(registry, "SYSTEM", "claude-test", prior_history=[OPENING])
        await session.send("first")
        await session.send("second")
        assert [m.role for m in session.history] == [
            MessageRole.MODEL, MessageRole.USER, MessageRole.MODEL, MessageRole.USER, MessageRole.MODEL,
        ]

    async def test_failed_send_leaves_history(self, registry, anthropic_client):
        anthropic_client.messages.create.side_effect = RuntimeError("overloaded")
        session = create_session(registry, "SYSTEM", "claude-test", prior_history=[OPENING])
        with pytest.raises(RuntimeError):
            await session.send("hello")
        assert session.history == [OPENING]

    async def test_cache_metrics(self, registry, anthropic_client):
        anthropic_client.messages.create.return_value = anthropic_response(
            "ok", input_tokens=50, cache_read=900, cache_write=10
        )
        session = create_session(registry, "SYSTEM", "claude-test")
        reply = await session.send("hello")
        assert reply.cache.cache_hit is True
        assert reply.cache.cache_read_tokens == 900
        assert reply.cache.cache_write_tokens == 10
        assert reply.cache.cached_tokens == 910
        assert session.last_cache == reply.cache


# ---------------------------------------------------------------------------
# TestOpenAIAdapter
# ---------------------------------------------------------------------------


class TestOpenAIAdapter:
    async def test_flattened_history(self):
        client = _make_openai_client(cached=128)
        registry = ClientRegistry(clients={Provider.OPENAI: client})
        session = create_session(registry, "SYSTEM", "gpt-4o", prior_history=[OPENING])

        reply = await session.send("We should stay")

        messages = client.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "SYSTEM"}
        assert messages[1] == {"role": "assistant", "content": OPENING.content}
        assert messages[2] == {"role": "user", "content": "We should stay"}
        assert reply.cache.cached_tokens == 128
        assert reply.cache.cache_hit is True

    async def test_temperature_omitted_for_reasoning_models(self):
        from casechat.agents.providers import GenerationParams

        client = _make_openai_client()
        registry = ClientRegistry(
            clients={Provider.OPENAI: client}, params=GenerationParams(temperature=0.3)
        )
        await create_session(registry, "SYSTEM", "o1-mini").send("hi")
        assert "temperature" not in client.chat.completions.create.call_args.kwargs

        await create_session(registry, "SYSTEM", "gpt-4o").send("hi")
        assert client.chat.completions.create.call_args.kwargs["temperature"] == 0.3

    async def test_generate_json_requests_json_object(self):
        client = _make_openai_client(text='{"criteria": []}')
        registry = ClientRegistry(clients={Provider.OPENAI: client})
        raw = await generate_json(registry, "gpt-4o", "PROMPT")
        assert raw == '{"criteria": []}'
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][-1] == {"role": "user", "content": "PROMPT"}


# ---------------------------------------------------------------------------
# TestGeminiAdapter
# ---------------------------------------------------------------------------


class TestGeminiAdapter:
    async def test_chat_created_with_history_and_only_new_text_sent(self):
        client, chat = _make_gemini_client()
        registry = ClientRegistry(clients={Provider.GEMINI: client})
        session = create_session(registry, "SYSTEM", "gemini-2.5-flash", prior_history=[OPENING])

        reply = await session.send("We should stay")

        create_kwargs = client.aio.chats.create.call_args.kwargs
        assert create_kwargs["model"] == "gemini-2.5-flash"
        assert create_kwargs["history"] == [{"role": "model", "parts": [{"text": OPENING.content}]}]
        assert create_kwargs["config"].system_instruction == "SYSTEM"
        chat.send_message.assert_awaited_once_with("We should stay")
        assert reply.cache.cached_tokens == 250
        assert reply.cache.input_tokens == 300

    async def test_generate_json(self):
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text='{"a": 1}'))
        registry = ClientRegistry(clients={Provider.GEMINI: client})
        assert await generate_json(registry, "gemini-2.5-flash", "PROMPT") == '{"a": 1}'
        config = client.aio.models.generate_content.call_args.kwargs["config"]
        assert config.response_mime_type == "application/json"
