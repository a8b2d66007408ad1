"""Tests for the OpenAI-compatible LLM adapter, using httpx.MockTransport."""

from __future__ import annotations

import json
from typing import List

import httpx
import pytest

from askdocs.errors import GenerationError
from askdocs.llm import LLMAdapter
from askdocs.prompting import assemble
from askdocs.schemas import ContextChunk, TextDelta


def _sse(*payloads) -> bytes:
    lines = [f"data: {json.dumps(p)}" for p in payloads] + ["data: [DONE]"]
    return ("\n\n".join(lines) + "\n\n").encode("utf-8")


def _delta(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


class Recorder:
    def __init__(self, response_for_stream=None, response_for_once=None) -> None:
        self.requests: List[httpx.Request] = []
        self.response_for_stream = response_for_stream
        self.response_for_once = response_for_once

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = json.loads(request.content)
        if body["stream"]:
            return self.response_for_stream()
        return self.response_for_once()

    def body(self, i: int = 0) -> dict:
        return json.loads(self.requests[i].content)


@pytest.fixture()
def payload(fragments):
    return assemble(fragments, "What is PDQ Connect?")


@pytest.mark.asyncio
async def test_generate_without_streaming(settings, payload) -> None:
    recorder = Recorder(
        response_for_once=lambda: httpx.Response(
            200, json={"choices": [{"message": {"content": " It is a tool. "}}]}
        )
    )
    adapter = LLMAdapter(settings, transport=httpx.MockTransport(recorder))

    answer = await adapter.generate(payload)
    await adapter.shutdown()

    assert answer == "It is a tool."
    body = recorder.body()
    assert body["model"] == "gpt-4o-mini"
    assert body["temperature"] == 0.0
    assert body["stream"] is False
    assert "Question: What is PDQ Connect?" in body["messages"][0]["content"]
    assert recorder.requests[0].headers["Authorization"] == "Bearer test-key"
    assert recorder.requests[0].url.path.endswith("/chat/completions")


@pytest.mark.asyncio
async def test_stream_yields_context_first_then_deltas(settings, payload, fragments) -> None:
    recorder = Recorder(
        response_for_stream=lambda: httpx.Response(
            200,
            content=_sse({"choices": [{"delta": {"role": "assistant"}}]}, _delta("Hel"), _delta("lo")),
            headers={"content-type": "text/event-stream"},
        )
    )
    adapter = LLMAdapter(settings, transport=httpx.MockTransport(recorder))

    chunks = [c async for c in adapter.generate(payload, stream=True)]
    await adapter.shutdown()

    assert chunks[0] == ContextChunk(tuple(fragments))
    assert chunks[1:] == [TextDelta("Hel"), TextDelta("lo")]
    assert recorder.body()["stream"] is True


@pytest.mark.asyncio
async def test_stream_without_context_propagation(settings, payload) -> None:
    recorder = Recorder(
        response_for_stream=lambda: httpx.Response(200, content=_sse(_delta("Hi")))
    )
    adapter = LLMAdapter(settings, transport=httpx.MockTransport(recorder), propagate_context=False)

    chunks = [c async for c in adapter.generate(payload, stream=True)]

    assert chunks == [TextDelta("Hi")]


@pytest.mark.asyncio
async def test_generate_is_lazy_until_iterated(settings, payload) -> None:
    recorder = Recorder(response_for_stream=lambda: httpx.Response(200, content=_sse(_delta("x"))))
    adapter = LLMAdapter(settings, transport=httpx.MockTransport(recorder))

    stream = adapter.generate(payload, stream=True)
    assert recorder.requests == []
    await stream.aclose()
    assert recorder.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 429, 500])
async def test_http_errors_become_generation_errors(settings, payload, status) -> None:
    recorder = Recorder(
        response_for_once=lambda: httpx.Response(status, json={"error": {"message": "nope"}}),
        response_for_stream=lambda: httpx.Response(status, json={"error": {"message": "nope"}}),
    )
    adapter = LLMAdapter(settings, transport=httpx.MockTransport(recorder))

    with pytest.raises(GenerationError) as excinfo:
        await adapter.generate(payload)
    assert str(status) in str(excinfo.value)

    with pytest.raises(GenerationError):
        async for _ in adapter.generate(payload, stream=True):
            pass


@pytest.mark.asyncio
async def test_transport_failure_becomes_generation_error(settings, payload) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    adapter = LLMAdapter(settings, transport=httpx.MockTransport(handler))

    with pytest.raises(GenerationError):
        await adapter.generate(payload)


@pytest.mark.asyncio
async def test_error_payload_mid_stream_is_raised(settings, payload) -> None:
    recorder = Recorder(
        response_for_stream=lambda: httpx.Response(
            200, content=_sse(_delta("Hello"), {"error": {"message": "overloaded"}}, _delta("never"))
        )
    )
    adapter = LLMAdapter(settings, transport=httpx.MockTransport(recorder))

    received = []
    with pytest.raises(GenerationError):
        async for chunk in adapter.generate(payload, stream=True):
            received.append(chunk)

    assert received[1:] == [TextDelta("Hello")]


@pytest.mark.asyncio
async def test_malformed_completion_is_generation_error(settings, payload) -> None:
    recorder = Recorder(response_for_once=lambda: httpx.Response(200, json={"unexpected": True}))
    adapter = LLMAdapter(settings, transport=httpx.MockTransport(recorder))

    with pytest.raises(GenerationError):
        await adapter.generate(payload)


@pytest.mark.asyncio
async def test_truncated_stream_chunk_raises(settings, payload) -> None:
    body = (
        f"data: {json.dumps(_delta('Hello'))}\n\n"
        'data: {"choices": [{"delta": {"content": " wor\n\n'
        f"data: {json.dumps(_delta('!'))}\n\n"
        "data: [DONE]\n\n"
    ).encode("utf-8")
    recorder = Recorder(response_for_stream=lambda: httpx.Response(200, content=body))
    adapter = LLMAdapter(settings, transport=httpx.MockTransport(recorder))

    received = []
    with pytest.raises(GenerationError):
        async for chunk in adapter.generate(payload, stream=True):
            received.append(chunk)

    assert received[1:] == [TextDelta("Hello")]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "bad",
    [{"choices": ["x"]}, {"choices": [{"delta": "x"}]}, {"choices": {"0": {}}}, ["not", "an", "object"]],
)
async def test_misshapen_stream_chunk_raises(settings, payload, bad) -> None:
    recorder = Recorder(response_for_stream=lambda: httpx.Response(200, content=_sse(_delta("Hi"), bad)))
    adapter = LLMAdapter(settings, transport=httpx.MockTransport(recorder), propagate_context=False)

    received = []
    with pytest.raises(GenerationError):
        async for chunk in adapter.generate(payload, stream=True):
            received.append(chunk)

    assert received == [TextDelta("Hi")]


def test_extract_delta_text_variants() -> None:
    assert LLMAdapter._extract_delta_text(json.dumps(_delta("a"))) == "a"
    assert LLMAdapter._extract_delta_text(json.dumps({"choices": []})) is None
    assert LLMAdapter._extract_delta_text(json.dumps({"choices": [{"delta": {"role": "assistant"}}]})) is None
    assert LLMAdapter._extract_delta_text(json.dumps({"choices": [{"delta": {}}], "content": "b"})) == "b"
    with pytest.raises(GenerationError):
        LLMAdapter._extract_delta_text("not json")
    with pytest.raises(GenerationError):
        LLMAdapter._extract_delta_text(json.dumps({"choices": ["x"]}))
