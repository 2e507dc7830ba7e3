"""
This module defines the completion-service contract consumed by the gated turn
engine and the LangChain-backed client that fulfils it.

Every request the engine makes (probe, exploration, verification, main response
and summary refresh) is expressed as a `CompletionRequest`, and every response
is reduced to a `CompletionResponse` holding the generated text and, when the
provider returned them, the per-token log-probabilities. Provider payloads are
normalized in exactly one place (`normalize_response`) so the rest of the
package never inspects raw response shapes. Missing log-probabilities are a
valid state: the token list is simply empty.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol

from langchain.chat_models import init_chat_model
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from .errors import CompletionError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ChatMessage:
    """A role-tagged message (`system`, `user` or `assistant`)."""

    role: str
    content: str


@dataclass(slots=True)
class TopLogprob:
    token: str
    logprob: float


@dataclass(slots=True)
class TokenLogprob:
    token: str
    logprob: float
    top_logprobs: List[TopLogprob] = field(default_factory=list)


@dataclass(slots=True)
class CompletionRequest:
    """
    A single request to the completion service.

    Attributes:
        model: Provider-qualified model identifier.
        messages: Ordered role-tagged messages.
        temperature: Sampling temperature.
        max_tokens: Maximum number of output tokens.
        logprobs: Whether per-token log-probabilities are requested.
        top_logprobs: Number of ranked alternatives per position, if any.
    """

    model: str
    messages: List[ChatMessage]
    temperature: float
    max_tokens: int
    logprobs: bool = False
    top_logprobs: Optional[int] = None


@dataclass(slots=True)
class CompletionResponse:
    text: str
    token_logprobs: List[TokenLogprob] = field(default_factory=list)


class CompletionClient(Protocol):
    """Anything that can turn a `CompletionRequest` into a `CompletionResponse`."""

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        ...


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def _coerce_logprob(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_token_logprobs(raw: Any) -> List[TokenLogprob]:
    """
    Map a provider log-probability payload onto `TokenLogprob` records.

    Accepts a bare list of token entries, or a mapping carrying the list under
    ``content`` or ``tokens``. Entries without a token string or a numeric
    logprob are dropped.
    """
    if raw is None:
        return []
    entries: Iterable[Any]
    if isinstance(raw, list):
        entries = raw
    elif isinstance(_field(raw, "content"), list):
        entries = _field(raw, "content")
    elif isinstance(_field(raw, "tokens"), list):
        entries = _field(raw, "tokens")
    else:
        return []

    tokens: List[TokenLogprob] = []
    for entry in entries:
        token = _field(entry, "token")
        logprob = _coerce_logprob(_field(entry, "logprob"))
        if not isinstance(token, str) or logprob is None:
            continue
        alternatives: List[TopLogprob] = []
        for alt in _field(entry, "top_logprobs") or []:
            alt_token = _field(alt, "token")
            alt_logprob = _coerce_logprob(_field(alt, "logprob"))
            if isinstance(alt_token, str) and alt_logprob is not None:
                alternatives.append(TopLogprob(token=alt_token, logprob=alt_logprob))
        tokens.append(TokenLogprob(token=token, logprob=logprob, top_logprobs=alternatives))
    return tokens


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: List[str] = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") in {"text", "output_text"}:
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return "" if content is None else str(content)


def normalize_response(message: Any) -> CompletionResponse:
    """
    Reduce a chat-model result to a `CompletionResponse`.

    Args:
        message: A LangChain `AIMessage` (or any object exposing ``content``
                 and ``response_metadata``).

    Returns:
        The generated text and whatever token log-probabilities the provider
        attached to the message metadata.
    """
    text = _message_text(getattr(message, "content", message))
    metadata = getattr(message, "response_metadata", None) or {}
    raw_logprobs = metadata.get("logprobs") if isinstance(metadata, dict) else None
    return CompletionResponse(text=text, token_logprobs=normalize_token_logprobs(raw_logprobs))


def to_langchain_messages(messages: Iterable[ChatMessage]) -> List[BaseMessage]:
    converted: List[BaseMessage] = []
    for message in messages:
        if message.role == "system":
            converted.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(HumanMessage(content=message.content))
    return converted


class LangChainCompletionClient:
    """
    Completion client backed by LangChain chat models.

    Models are created lazily through `init_chat_model` and cached per model
    identifier. Sampling parameters and log-probability options are bound per
    request, and the blocking ``invoke`` runs in a worker thread. Any provider
    exception is re-raised as `CompletionError`.
    """

    def __init__(self) -> None:
        self._llms: Dict[str, Any] = {}
        self._llm_lock = asyncio.Lock()

    async def _ensure_llm(self, model: str) -> Any:
        llm = self._llms.get(model)
        if llm is not None:
            return llm
        async with self._llm_lock:
            llm = self._llms.get(model)
            if llm is None:
                LOGGER.debug("Initializing chat model %s", model)
                llm = init_chat_model(model)
                self._llms[model] = llm
        return llm

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        params: Dict[str, Any] = {
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if request.logprobs:
            params["logprobs"] = True
            if request.top_logprobs:
                params["top_logprobs"] = request.top_logprobs

        try:
            llm = await self._ensure_llm(request.model)
            bound = llm.bind(**params)
            message = await asyncio.to_thread(
                bound.invoke, to_langchain_messages(request.messages)
            )
        except Exception as exc:
            raise CompletionError(str(exc) or exc.__class__.__name__, model=request.model) from exc

        return normalize_response(message)
