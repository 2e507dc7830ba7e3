"""Pytest configuration for shared fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Sequence, Tuple

import pytest
from dotenv import load_dotenv
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from spiral_gate.completion import CompletionRequest, CompletionResponse, TokenLogprob, TopLogprob
from spiral_gate.config import GateConfig
from spiral_gate.engine import GatedTurnEngine
from spiral_gate.metrics import TurnMetricsEmitter
from spiral_gate.mock import request_phase
from spiral_gate.session_store import SessionStore


def _load_env_files(paths: Iterable[Path]) -> None:
    """Load local dotenv files without overriding any pre-set environment vars."""
    for env_path in paths:
        if env_path.exists():
            load_dotenv(env_path, override=False)


_REPO_ROOT = Path(__file__).resolve().parent.parent
_load_env_files((_REPO_ROOT / ".env",))


PROBE_TEXT = "DIM: GOAL\nFOCUS: release plan\nNEXT: list the open tasks\nWHY: the user wants to ship"

CANDIDATES_TEXT = (
    "DIM: RISK\nFOCUS: rollback path\nNEXT: check the rollback steps\nWHY: shipping can fail\n"
    "\n"
    "DIM: NOVELTY\nFOCUS: staged rollout\nNEXT: propose a canary\nWHY: new way to ship\n"
    "\n"
    "DIM: OPPORTUNITY\nFOCUS: automation\nNEXT: script the release\nWHY: saves time later"
)


class _StubChatModel:
    """Minimal chat model stub that mirrors LangChain's bind/invoke contract."""

    def __init__(self, model_name: str):
        self.model_name = model_name
        self.bound: List[Dict[str, Any]] = []
        self.response_metadata: Dict[str, Any] = {}
        self.error: Exception | None = None

    def bind(self, **kwargs: Any) -> "_StubChatModel":
        self.bound.append(kwargs)
        return self

    def invoke(self, messages: Sequence[BaseMessage], *_, **__) -> AIMessage:
        if self.error is not None:
            raise self.error
        text = ""
        for message in reversed(messages):
            if isinstance(message, HumanMessage):
                text = str(message.content)
                break
        return AIMessage(
            content=f"[stub:{self.model_name}] {text.strip()}",
            response_metadata=dict(self.response_metadata),
        )


@pytest.fixture(autouse=True)
def stub_langchain_chat_models(monkeypatch: pytest.MonkeyPatch) -> Dict[str, _StubChatModel]:
    """
    Prevent external LLM calls during tests by stubbing LangChain chat model factory.
    """
    created: Dict[str, _StubChatModel] = {}

    def _factory(model_name: str, *_, **__) -> _StubChatModel:
        model = _StubChatModel(model_name)
        created[model_name] = model
        return model

    monkeypatch.setattr("spiral_gate.completion.init_chat_model", _factory, raising=True)
    return created


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SPIRAL_GATE_MOCK_MODE", raising=False)
    monkeypatch.delenv("SPIRAL_GATE_METRICS_EMIT_MODE", raising=False)


def token_logprobs(
    tokens: Sequence[Tuple[str, float]],
    alternatives: Sequence[Sequence[float]] | None = None,
) -> List[TokenLogprob]:
    """Build `TokenLogprob` records; ``alternatives[i]`` are the top-k logprobs of token i."""
    built: List[TokenLogprob] = []
    for index, (token, logprob) in enumerate(tokens):
        top: List[TopLogprob] = []
        if alternatives is not None and index < len(alternatives):
            top = [TopLogprob(token=f"alt{rank}", logprob=value) for rank, value in enumerate(alternatives[index])]
        built.append(TokenLogprob(token=token, logprob=logprob, top_logprobs=top))
    return built


Scripted = Any  # str | CompletionResponse | Exception | callable | list of those


class FakeCompletionClient:
    """
    Completion client scripted per engine phase.

    Each phase maps to a reply: a string, a `CompletionResponse`, an exception
    to raise, a callable receiving the request, or a list consumed one item
    per call (the last item repeats).
    """

    def __init__(self, **responses: Scripted) -> None:
        self.responses: Dict[str, Scripted] = {
            "probe": PROBE_TEXT,
            "exploration": CANDIDATES_TEXT,
            "verify": "PICK: 2",
            "main": "Here is the plan.",
            "summary": "User is planning a release.",
        }
        self.responses.update(responses)
        self.requests: List[Tuple[str, CompletionRequest]] = []

    def phases(self) -> List[str]:
        return [phase for phase, _ in self.requests]

    def requests_for(self, phase: str) -> List[CompletionRequest]:
        return [request for name, request in self.requests if name == phase]

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        phase = request_phase(request)
        self.requests.append((phase, request))
        reply = self.responses[phase]
        if isinstance(reply, list):
            reply = reply.pop(0) if len(reply) > 1 else reply[0]
        if callable(reply) and not isinstance(reply, type):
            reply = reply(request)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            return CompletionResponse(text=reply)
        return reply


@pytest.fixture
def fake_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def build_logprobs() -> Callable[..., List[TokenLogprob]]:
    return token_logprobs


@pytest.fixture
def gate_config() -> GateConfig:
    return GateConfig(metrics_enabled=False)


@pytest.fixture
def make_engine(gate_config: GateConfig) -> Callable[..., GatedTurnEngine]:
    def _make(client: Any, config: GateConfig | None = None) -> GatedTurnEngine:
        config = config or gate_config
        return GatedTurnEngine(
            client,
            store=SessionStore(config),
            config=config,
            emitter=TurnMetricsEmitter(config),
        )

    return _make


@pytest.fixture
def make_client() -> Callable[..., FakeCompletionClient]:
    return FakeCompletionClient
