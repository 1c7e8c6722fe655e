"""
Agent LLM: OpenAI (primary) or Anthropic, both through their function-calling APIs.

The executor keeps its context in OpenAI chat format ({"role": "system"|"user"|"assistant"|"tool", ...});
AnthropicChat converts that context to Messages API blocks on each call.
Transient provider errors (rate limit, timeout, connection, 5xx) are retried with backoff.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import anthropic
import openai
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.config import (
    ANTHROPIC_API_KEY,
    ANTHROPIC_LLM_MODEL,
    LLM_API_TIMEOUT,
    LLM_MAX_RETRIES,
    LLM_PROVIDER,
    OPENAI_API_KEY,
    OPENAI_LLM_MODEL,
)
from app.core.errors import LLMUnavailableError

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
    anthropic.RateLimitError,
    anthropic.APITimeoutError,
    anthropic.APIConnectionError,
    anthropic.InternalServerError,
)

_with_retries = retry(
    retry=retry_if_exception_type(_TRANSIENT_ERRORS),
    stop=stop_after_attempt(LLM_MAX_RETRIES + 1),
    wait=wait_exponential(multiplier=1, min=1, max=20),
    reraise=True,
)


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class LLMResponse:
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


class ChatLLM(Protocol):
    provider: str
    model: str

    def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int = 1024,
        allow_tools: bool = True,
    ) -> LLMResponse:
        """allow_tools=False keeps the declarations (the context may reference them) but forbids new calls."""
        ...


def _decode_arguments(raw: Any, tool_name: str) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        args = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("[llm] invalid JSON arguments for tool=%s: %r", tool_name, str(raw)[:200])
        return {}
    return args if isinstance(args, dict) else {}


class OpenAIChat:
    provider = "openai"

    def __init__(self, api_key: str = OPENAI_API_KEY, model: str = OPENAI_LLM_MODEL) -> None:
        if not api_key:
            raise LLMUnavailableError("OPENAI_API_KEY must be set in .env")
        # Retries are handled by tenacity so backoff is the same for both providers
        self._client = openai.OpenAI(api_key=api_key, timeout=LLM_API_TIMEOUT, max_retries=0)
        self.model = model

    @_with_retries
    def _create(self, **kwargs):
        return self._client.chat.completions.create(**kwargs)

    def complete(self, messages, tools=None, max_tokens=1024, allow_tools=True) -> LLMResponse:
        kwargs: dict[str, Any] = {"model": self.model, "messages": messages, "max_tokens": max_tokens}
        if tools:
            kwargs["tools"] = tools
            if not allow_tools:
                kwargs["tool_choice"] = "none"
        logger.info("[llm:openai] IN  messages=%d tools=%d", len(messages), len(tools or []))
        try:
            response = self._create(**kwargs)
        except openai.OpenAIError as e:
            logger.exception("[llm:openai] request failed")
            raise LLMUnavailableError(f"OpenAI request failed: {e}") from e
        msg = response.choices[0].message if response.choices else None
        if msg is None:
            return LLMResponse()
        tool_calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=_decode_arguments(tc.function.arguments, tc.function.name))
            for tc in (msg.tool_calls or [])
            if getattr(tc, "function", None)
        ]
        out = LLMResponse(content=(msg.content or "").strip(), tool_calls=tool_calls)
        logger.info("[llm:openai] OUT content_len=%d tool_calls=%s", len(out.content), [t.name for t in tool_calls])
        return out


def to_anthropic_messages(messages: list[dict[str, Any]]) -> tuple[str, list[dict[str, Any]]]:
    """
    Convert OpenAI-format context to (system, messages) for the Anthropic Messages API.
    Tool results become user-side tool_result blocks; consecutive same-role turns are merged.
    """
    system_parts: list[str] = []
    out: list[dict[str, Any]] = []

    def push(role: str, blocks: list[dict[str, Any]]) -> None:
        if not blocks:
            return
        if out and out[-1]["role"] == role:
            out[-1]["content"].extend(blocks)
        else:
            out.append({"role": role, "content": list(blocks)})

    for m in messages:
        role = m.get("role")
        content = m.get("content") or ""
        if role == "system":
            if content:
                system_parts.append(content)
        elif role == "user":
            push("user", [{"type": "text", "text": content}] if content else [])
        elif role == "assistant":
            blocks: list[dict[str, Any]] = [{"type": "text", "text": content}] if content else []
            for tc in m.get("tool_calls") or []:
                fn = tc.get("function") or {}
                blocks.append({
                    "type": "tool_use",
                    "id": tc.get("id", ""),
                    "name": fn.get("name", ""),
                    "input": _decode_arguments(fn.get("arguments"), fn.get("name", "")),
                })
            push("assistant", blocks)
        elif role == "tool":
            push("user", [{"type": "tool_result", "tool_use_id": m.get("tool_call_id", ""), "content": content}])
    return "\n\n".join(system_parts), out


class AnthropicChat:
    provider = "anthropic"

    def __init__(self, api_key: str = ANTHROPIC_API_KEY, model: str = ANTHROPIC_LLM_MODEL) -> None:
        if not api_key:
            raise LLMUnavailableError("ANTHROPIC_API_KEY must be set in .env")
        self._client = anthropic.Anthropic(api_key=api_key, timeout=LLM_API_TIMEOUT, max_retries=0)
        self.model = model

    @_with_retries
    def _create(self, **kwargs):
        return self._client.messages.create(**kwargs)

    def complete(self, messages, tools=None, max_tokens=1024, allow_tools=True) -> LLMResponse:
        system, converted = to_anthropic_messages(messages)
        kwargs: dict[str, Any] = {"model": self.model, "messages": converted, "max_tokens": max_tokens}
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = tools
            if not allow_tools:
                kwargs["tool_choice"] = {"type": "none"}
        logger.info("[llm:anthropic] IN  messages=%d tools=%d", len(converted), len(tools or []))
        try:
            response = self._create(**kwargs)
        except anthropic.AnthropicError as e:
            logger.exception("[llm:anthropic] request failed")
            raise LLMUnavailableError(f"Anthropic request failed: {e}") from e
        texts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in response.content or []:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=_decode_arguments(block.input, block.name)))
        out = LLMResponse(content="".join(texts).strip(), tool_calls=tool_calls)
        logger.info("[llm:anthropic] OUT content_len=%d tool_calls=%s stop_reason=%s",
                    len(out.content), [t.name for t in tool_calls], response.stop_reason)
        return out


_llm: ChatLLM | None = None


def get_llm() -> ChatLLM:
    """
    Return the configured chat LLM. LLM_PROVIDER picks explicitly; otherwise OpenAI
    when OPENAI_API_KEY is set, else Anthropic when ANTHROPIC_API_KEY is set.
    """
    global _llm
    if _llm is not None:
        return _llm
    provider = LLM_PROVIDER or ("openai" if OPENAI_API_KEY else "anthropic" if ANTHROPIC_API_KEY else "")
    if provider == "openai":
        _llm = OpenAIChat()
    elif provider == "anthropic":
        _llm = AnthropicChat()
    elif not provider:
        raise LLMUnavailableError("No LLM configured: set OPENAI_API_KEY or ANTHROPIC_API_KEY in .env")
    else:
        raise LLMUnavailableError(f"Unknown LLM_PROVIDER {provider!r}; use 'openai' or 'anthropic'")
    logger.info("[llm] provider=%s model=%s", _llm.provider, _llm.model)
    return _llm
