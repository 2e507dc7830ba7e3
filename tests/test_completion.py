from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from spiral_gate.completion import (
    ChatMessage,
    CompletionRequest,
    LangChainCompletionClient,
    normalize_response,
    normalize_token_logprobs,
    to_langchain_messages,
)
from spiral_gate.errors import CompletionError

MODEL = "openai:gpt-4.1"


def _request(**overrides) -> CompletionRequest:
    params = {
        "model": MODEL,
        "messages": [ChatMessage("system", "be brief"), ChatMessage("user", "hello")],
        "temperature": 0.2,
        "max_tokens": 90,
    }
    params.update(overrides)
    return CompletionRequest(**params)


def test_normalizes_openai_style_payload() -> None:
    payload = {
        "content": [
            {"token": "DIM", "logprob": -0.5, "top_logprobs": [{"token": "DIM", "logprob": -0.5}]},
            {"token": ":", "logprob": "-0.25", "top_logprobs": []},
        ]
    }

    tokens = normalize_token_logprobs(payload)

    assert [(token.token, token.logprob) for token in tokens] == [("DIM", -0.5), (":", -0.25)]
    assert tokens[0].top_logprobs[0].token == "DIM"
    assert tokens[1].top_logprobs == []


def test_normalizes_object_and_list_payloads() -> None:
    entry = SimpleNamespace(token="GOAL", logprob=-1.0, top_logprobs=[SimpleNamespace(token="RISK", logprob=-2.0)])

    assert normalize_token_logprobs(SimpleNamespace(content=[entry]))[0].top_logprobs[0].logprob == -2.0
    assert normalize_token_logprobs({"tokens": [{"token": "a", "logprob": -1}]})[0].token == "a"
    assert len(normalize_token_logprobs([{"token": "a", "logprob": -1}])) == 1


def test_malformed_entries_are_dropped() -> None:
    payload = [
        {"token": "ok", "logprob": -1.0, "top_logprobs": [{"token": None, "logprob": -1.0}]},
        {"token": "bad", "logprob": "not a number"},
        {"logprob": -1.0},
    ]

    tokens = normalize_token_logprobs(payload)

    assert [token.token for token in tokens] == ["ok"]
    assert tokens[0].top_logprobs == []
    assert normalize_token_logprobs(None) == []
    assert normalize_token_logprobs({"unexpected": 1}) == []


def test_normalize_response_reads_text_parts_and_metadata() -> None:
    message = AIMessage(
        content=[{"type": "text", "text": "DIM: RISK"}, {"type": "image_url", "image_url": "x"}, "\nFOCUS: y"],
        response_metadata={"logprobs": {"content": [{"token": "DIM", "logprob": -0.1}]}},
    )

    response = normalize_response(message)

    assert response.text == "DIM: RISK\nFOCUS: y"
    assert len(response.token_logprobs) == 1
    assert normalize_response(AIMessage(content="plain")).token_logprobs == []


def test_roles_map_to_langchain_messages() -> None:
    converted = to_langchain_messages(
        [ChatMessage("system", "s"), ChatMessage("user", "u"), ChatMessage("assistant", "a")]
    )

    assert [type(message) for message in converted] == [SystemMessage, HumanMessage, AIMessage]


def test_client_binds_sampling_and_logprob_options(stub_langchain_chat_models) -> None:
    client = LangChainCompletionClient()

    response = asyncio.run(client.complete(_request(logprobs=True, top_logprobs=20)))

    assert response.text == f"[stub:{MODEL}] hello"
    stub = stub_langchain_chat_models[MODEL]
    assert stub.bound == [{"temperature": 0.2, "max_tokens": 90, "logprobs": True, "top_logprobs": 20}]


def test_client_reuses_model_and_returns_logprobs(stub_langchain_chat_models) -> None:
    client = LangChainCompletionClient()
    asyncio.run(client.complete(_request()))
    stub = stub_langchain_chat_models[MODEL]
    stub.response_metadata = {"logprobs": {"content": [{"token": "DIM", "logprob": -0.3, "top_logprobs": []}]}}

    response = asyncio.run(client.complete(_request()))

    assert len(stub_langchain_chat_models) == 1
    assert stub.bound[-1] == {"temperature": 0.2, "max_tokens": 90}
    assert response.token_logprobs[0].logprob == -0.3


def test_provider_errors_become_completion_errors(stub_langchain_chat_models) -> None:
    client = LangChainCompletionClient()
    asyncio.run(client.complete(_request()))
    stub_langchain_chat_models[MODEL].error = RuntimeError("rate limited")

    with pytest.raises(CompletionError, match="rate limited") as excinfo:
        asyncio.run(client.complete(_request()))

    assert excinfo.value.model == MODEL
