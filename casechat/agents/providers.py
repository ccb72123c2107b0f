"""Provider session adapters: one chat/evaluation interface over Gemini, OpenAI and Anthropic.

Each provider is a ``ProviderVariant`` carrying its own closures for opening
a chat and for one-shot JSON generation. ``ProviderSession`` wraps whichever
variant the model id routes to and owns the replayable history.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import anthropic
import openai
from google import genai
from google.genai import types as genai_types
from pydantic import BaseModel

from casechat.config import Settings, settings
from casechat.models.session import Message, MessageRole

logger = logging.getLogger(__name__)

JSON_ONLY_SYSTEM = "Return only JSON matching the expected evaluation schema."
GEMINI_TOP_P = 0.9


class Provider(str, Enum):
    GEMINI = "google"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class ProviderError(Exception):
    """Raised when a provider cannot be used for a request."""


class MissingCredentialsError(ProviderError):
    """Raised when the API key for the routed provider is not configured."""


class ProviderConfigError(ProviderError):
    """Raised for an unusable model configuration (e.g. empty model id)."""


class CacheMetrics(BaseModel):
    provider: Provider
    cache_hit: bool = False
    input_tokens: int = 0
    cached_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ProviderReply:
    text: str
    cache: CacheMetrics


@dataclass
class GenerationParams:
    max_tokens: int = 1024
    temperature: float | None = None


def detect_provider(model_id: str) -> Provider:
    """Route a model id to exactly one provider. Unrecognised ids go to Gemini."""
    mid = (model_id or "").lower()
    if mid.startswith("gpt") or mid.startswith("o1") or "openai" in mid:
        return Provider.OPENAI
    if mid.startswith("claude") or "anthropic" in mid:
        return Provider.ANTHROPIC
    return Provider.GEMINI


def _is_openai_reasoning(model_id: str) -> bool:
    mid = model_id.lower()
    return mid.startswith("o1") or mid.startswith("gpt-5")


# ---------------------------------------------------------------------------
# Client registry
# ---------------------------------------------------------------------------

_KEY_ENV_NAMES = {
    Provider.GEMINI: "GEMINI_API_KEY",
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
}

_CLIENT_FACTORIES: dict[Provider, Callable[[str], Any]] = {
    Provider.GEMINI: lambda key: genai.Client(api_key=key),
    Provider.OPENAI: lambda key: openai.AsyncOpenAI(api_key=key),
    Provider.ANTHROPIC: lambda key: anthropic.AsyncAnthropic(api_key=key),
}


class ClientRegistry:
    """Provider SDK clients for the lifetime of the process.

    Clients are built on first use from the configured API keys, or supplied
    up front via *clients* (tests inject fakes this way).
    """

    def __init__(
        self,
        api_keys: dict[Provider, str] | None = None,
        clients: dict[Provider, Any] | None = None,
        params: GenerationParams | None = None,
        eval_max_tokens: int = 2048,
    ):
        self._api_keys = api_keys or {}
        self._clients: dict[Provider, Any] = dict(clients or {})
        self.params = params or GenerationParams()
        self.eval_max_tokens = eval_max_tokens

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> ClientRegistry:
        config = config or settings
        return cls(
            api_keys={
                Provider.GEMINI: config.gemini_api_key,
                Provider.OPENAI: config.openai_api_key,
                Provider.ANTHROPIC: config.anthropic_api_key,
            },
            params=GenerationParams(
                max_tokens=config.chat_max_tokens, temperature=config.temperature
            ),
            eval_max_tokens=config.eval_max_tokens,
        )

    def client(self, provider: Provider) -> Any:
        if provider in self._clients:
            return self._clients[provider]
        key = (self._api_keys.get(provider) or "").strip()
        if not key:
            raise MissingCredentialsError(f"{_KEY_ENV_NAMES[provider]} is not set on the server")
        self._clients[provider] = _CLIENT_FACTORIES[provider](key)
        logger.info("Initialized %s client", provider.value)
        return self._clients[provider]


# ---------------------------------------------------------------------------
# Provider variants
# ---------------------------------------------------------------------------

ChatSender = Callable[[str], Awaitable[ProviderReply]]


@dataclass
class ChatRequest:
    model_id: str
    system_prompt: str
    history: list[Message]  # shared with the owning ProviderSession, read-only here
    params: GenerationParams


@dataclass(frozen=True)
class ProviderVariant:
    provider: Provider
    open_chat: Callable[[Any, ChatRequest], ChatSender]
    generate_json: Callable[[Any, str, str, GenerationParams], Awaitable[str]]


def _usage_int(usage: Any, name: str) -> int:
    value = getattr(usage, name, None) if usage is not None else None
    return int(value or 0)


# -- Adapter A: Gemini keeps the conversation in a chat object ---------------

def _gemini_history(history: list[Message]) -> list[dict[str, Any]]:
    return [{"role": m.role.value, "parts": [{"text": m.content}]} for m in history]


def _gemini_open_chat(client: Any, request: ChatRequest) -> ChatSender:
    config = genai_types.GenerateContentConfig(
        system_instruction=request.system_prompt,
        temperature=request.params.temperature,
        top_p=GEMINI_TOP_P,
        max_output_tokens=request.params.max_tokens,
    )
    chat = client.aio.chats.create(
        model=request.model_id,
        history=_gemini_history(request.history),
        config=config,
    )

    async def send(text: str) -> ProviderReply:
        response = await chat.send_message(text)
        usage = getattr(response, "usage_metadata", None)
        cached = _usage_int(usage, "cached_content_token_count")
        return ProviderReply(
            text=(response.text or "").strip(),
            cache=CacheMetrics(
                provider=Provider.GEMINI,
                cache_hit=cached > 0,
                input_tokens=_usage_int(usage, "prompt_token_count"),
                cached_tokens=cached,
                cache_read_tokens=cached,
                output_tokens=_usage_int(usage, "candidates_token_count"),
            ),
        )

    return send


async def _gemini_generate_json(client: Any, model_id: str, prompt: str, params: GenerationParams) -> str:
    response = await client.aio.models.generate_content(
        model=model_id,
        contents=prompt,
        config=genai_types.GenerateContentConfig(
            response_mime_type="application/json",
            temperature=params.temperature,
            max_output_tokens=params.max_tokens,
        ),
    )
    text = response.text or ""
    if not text:
        raise ProviderError("Gemini returned an empty evaluation response")
    return text


# -- Adapter B: OpenAI resends the flattened history every call --------------

def _openai_messages(system_prompt: str, history: list[Message], text: str) -> list[dict[str, str]]:
    messages = [{"role": "system", "content": system_prompt}]
    messages.extend(
        {"role": "assistant" if m.role == MessageRole.MODEL else "user", "content": m.content}
        for m in history
    )
    messages.append({"role": "user", "content": text})
    return messages


def _openai_kwargs(model_id: str, params: GenerationParams) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"model": model_id}
    if params.temperature is not None and not _is_openai_reasoning(model_id):
        kwargs["temperature"] = params.temperature
    return kwargs


def _openai_open_chat(client: Any, request: ChatRequest) -> ChatSender:
    async def send(text: str) -> ProviderReply:
        response = await client.chat.completions.create(
            messages=_openai_messages(request.system_prompt, request.history, text),
            **_openai_kwargs(request.model_id, request.params),
        )
        usage = getattr(response, "usage", None)
        details = getattr(usage, "prompt_tokens_details", None)
        cached = _usage_int(details, "cached_tokens")
        return ProviderReply(
            text=(response.choices[0].message.content or "").strip(),
            cache=CacheMetrics(
                provider=Provider.OPENAI,
                cache_hit=cached > 0,
                input_tokens=_usage_int(usage, "prompt_tokens"),
                cached_tokens=cached,
                cache_read_tokens=cached,
                output_tokens=_usage_int(usage, "completion_tokens"),
            ),
        )

    return send


async def _openai_generate_json(client: Any, model_id: str, prompt: str, params: GenerationParams) -> str:
    response = await client.chat.completions.create(
        response_format={"type": "json_object"},
        messages=[
            {"role": "system", "content": JSON_ONLY_SYSTEM},
            {"role": "user", "content": prompt},
        ],
        **_openai_kwargs(model_id, params),
    )
    return response.choices[0].message.content or "{}"


# -- Adapter C: Anthropic resends history with a cacheable system prompt -----

def _anthropic_messages(history: list[Message], text: str) -> list[dict[str, Any]]:
    messages = [
        {
            "role": "assistant" if m.role == MessageRole.MODEL else "user",
            "content": [{"type": "text", "text": m.content}],
        }
        for m in history
    ]
    # The Messages API requires the first turn to come from the user.
    if messages and messages[0]["role"] == "assistant":
        messages.insert(0, {"role": "user", "content": [{"type": "text", "text": "[Meeting begins.]"}]})
    messages.append({"role": "user", "content": [{"type": "text", "text": text}]})
    return messages


def _anthropic_open_chat(client: Any, request: ChatRequest) -> ChatSender:
    system = [
        {
            "type": "text",
            "text": request.system_prompt,
            "cache_control": {"type": "ephemeral"},
        }
    ]

    async def send(text: str) -> ProviderReply:
        kwargs: dict[str, Any] = {}
        if request.params.temperature is not None:
            kwargs["temperature"] = request.params.temperature
        response = await client.messages.create(
            model=request.model_id,
            max_tokens=request.params.max_tokens,
            system=system,
            messages=_anthropic_messages(request.history, text),
            **kwargs,
        )
        usage = getattr(response, "usage", None)
        read = _usage_int(usage, "cache_read_input_tokens")
        written = _usage_int(usage, "cache_creation_input_tokens")
        return ProviderReply(
            text=_anthropic_text(response).strip(),
            cache=CacheMetrics(
                provider=Provider.ANTHROPIC,
                cache_hit=read > 0,
                input_tokens=_usage_int(usage, "input_tokens"),
                cached_tokens=read + written,
                cache_read_tokens=read,
                cache_write_tokens=written,
                output_tokens=_usage_int(usage, "output_tokens"),
            ),
        )

    return send


def _anthropic_text(response: Any) -> str:
    return "".join(
        block.text for block in response.content if getattr(block, "type", "") == "text"
    )


async def _anthropic_generate_json(client: Any, model_id: str, prompt: str, params: GenerationParams) -> str:
    kwargs: dict[str, Any] = {}
    if params.temperature is not None:
        kwargs["temperature"] = params.temperature
    response = await client.messages.create(
        model=model_id,
        max_tokens=params.max_tokens,
        system=JSON_ONLY_SYSTEM,
        messages=[{"role": "user", "content": [{"type": "text", "text": prompt}]}],
        **kwargs,
    )
    return _anthropic_text(response) or "{}"


VARIANTS: dict[Provider, ProviderVariant] = {
    Provider.GEMINI: ProviderVariant(Provider.GEMINI, _gemini_open_chat, _gemini_generate_json),
    Provider.OPENAI: ProviderVariant(Provider.OPENAI, _openai_open_chat, _openai_generate_json),
    Provider.ANTHROPIC: ProviderVariant(Provider.ANTHROPIC, _anthropic_open_chat, _anthropic_generate_json),
}

_missing = set(Provider) - set(VARIANTS)
if _missing:
    raise RuntimeError(f"No provider variant registered for: {sorted(p.value for p in _missing)}")


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

@dataclass
class ProviderSession:
    """A chat bound to one provider, model and system prompt."""

    provider: Provider
    model_id: str
    system_prompt: str
    history: list[Message]
    _sender: ChatSender = field(repr=False)
    last_cache: CacheMetrics | None = None

    async def send(self, text: str) -> ProviderReply:
        reply = await self._sender(text)
        # Only a completed exchange enters the replay history.
        self.history.append(Message(role=MessageRole.USER, content=text))
        self.history.append(Message(role=MessageRole.MODEL, content=reply.text))
        self.last_cache = reply.cache
        logger.debug(
            "%s reply for %s: input=%d cached=%d (read=%d write=%d) output=%d",
            self.provider.value, self.model_id, reply.cache.input_tokens,
            reply.cache.cached_tokens, reply.cache.cache_read_tokens,
            reply.cache.cache_write_tokens, reply.cache.output_tokens,
        )
        return reply


def create_session(
    registry: ClientRegistry,
    system_prompt: str,
    model_id: str,
    prior_history: list[Message] | None = None,
) -> ProviderSession:
    """Open a chat session; raises immediately if the provider is unusable."""
    if not (model_id or "").strip():
        raise ProviderConfigError("A chat model must be selected before starting a conversation")
    provider = detect_provider(model_id)
    client = registry.client(provider)
    history = list(prior_history or [])
    request = ChatRequest(
        model_id=model_id,
        system_prompt=system_prompt,
        history=history,
        params=registry.params,
    )
    sender = VARIANTS[provider].open_chat(client, request)
    logger.info("Opened %s chat session with model %s", provider.value, model_id)
    return ProviderSession(
        provider=provider,
        model_id=model_id,
        system_prompt=system_prompt,
        history=history,
        _sender=sender,
    )


async def generate_json(registry: ClientRegistry, model_id: str, prompt: str) -> str:
    """One-shot call asking the routed provider for a JSON document."""
    if not (model_id or "").strip():
        raise ProviderConfigError("An evaluation model must be selected")
    provider = detect_provider(model_id)
    client = registry.client(provider)
    params = GenerationParams(
        max_tokens=registry.eval_max_tokens, temperature=registry.params.temperature
    )
    return await VARIANTS[provider].generate_json(client, model_id, prompt, params)
