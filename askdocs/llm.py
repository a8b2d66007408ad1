# askdocs/llm.py
from __future__ import annotations
from contextlib import aclosing
from typing import AsyncGenerator, AsyncIterator, Awaitable, Dict, List, Optional, Protocol, Union
import json
import logging

import httpx

from .config import Settings
from .errors import GenerationError
from .prompting import build_messages
from .schemas import AnswerChunk, ContextChunk, PromptPayload, TextDelta

log = logging.getLogger(__name__)


class Generator(Protocol):
    def generate(
        self, prompt: PromptPayload, stream: bool = False
    ) -> Union[Awaitable[str], AsyncIterator[AnswerChunk]]:
        ...


def _as_generation_error(exc: httpx.HTTPError) -> GenerationError:
    if isinstance(exc, httpx.HTTPStatusError):
        return GenerationError(f"LLM returned HTTP {exc.response.status_code}")
    if isinstance(exc, httpx.TimeoutException):
        return GenerationError("LLM request timed out")
    return GenerationError(f"LLM request failed: {type(exc).__name__}")


class LLMAdapter:
    """
    Client for an OpenAI-compatible /chat/completions endpoint.

    generate(prompt) awaits the full completion; generate(prompt, stream=True)
    returns a single-pass async generator of AnswerChunk, with the consulted
    fragments first when context propagation is on.
    """

    def __init__(
        self,
        _settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        propagate_context: Optional[bool] = None,
    ) -> None:
        self._settings = _settings
        self._transport = transport
        self.propagate_context = (
            _settings.PROPAGATE_CONTEXT if propagate_context is None else propagate_context
        )
        self.client: Optional[httpx.AsyncClient] = None

    async def startup(self) -> None:
        if self.client is None:
            limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
            self.client = httpx.AsyncClient(
                base_url=self._settings.LLM_BASE_URL.rstrip("/"),
                timeout=httpx.Timeout(self._settings.LLM_TIMEOUT),
                http2=True,
                limits=limits,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self._settings.require_llm()}",
                    "Content-Type": "application/json",
                },
            )

    async def shutdown(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None

    def _payload(self, messages: List[Dict], stream: bool) -> Dict:
        return {
            "model": self._settings.LLM_MODEL,
            "messages": messages,
            "temperature": self._settings.LLM_TEMPERATURE,
            "stream": stream,
        }

    async def complete(self, messages: List[Dict]) -> str:
        await self.startup()
        assert self.client
        try:
            r = await self.client.post("/chat/completions", json=self._payload(messages, stream=False))
            r.raise_for_status()
        except httpx.HTTPError as exc:
            raise _as_generation_error(exc) from exc
        try:
            content = r.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise GenerationError("Malformed LLM response") from exc
        return (content or "").strip()

    async def stream(self, messages: List[Dict]) -> AsyncGenerator[str, None]:
        """Yields the raw `data:` payloads of the SSE stream until [DONE]."""
        await self.startup()
        assert self.client
        try:
            async with self.client.stream(
                "POST", "/chat/completions", json=self._payload(messages, stream=True)
            ) as r:
                r.raise_for_status()
                async for line in r.aiter_lines():
                    if not line or not line.startswith("data:"):
                        continue
                    chunk = line.removeprefix("data:").strip()
                    if chunk == "[DONE]":
                        break
                    yield chunk
        except httpx.HTTPError as exc:
            raise _as_generation_error(exc) from exc

    def generate(
        self, prompt: PromptPayload, stream: bool = False
    ) -> Union[Awaitable[str], AsyncIterator[AnswerChunk]]:
        messages = build_messages(prompt, self._settings.PRODUCT_NAME)
        if stream:
            return self._generate_stream(prompt, messages)
        return self.complete(messages)

    async def _generate_stream(
        self, prompt: PromptPayload, messages: List[Dict]
    ) -> AsyncGenerator[AnswerChunk, None]:
        if self.propagate_context:
            yield ContextChunk(prompt.fragments)
        async with aclosing(self.stream(messages)) as lines:
            async for chunk in lines:
                text = self._extract_delta_text(chunk)
                if text:
                    yield TextDelta(text)

    @staticmethod
    def _extract_delta_text(chunk: str) -> Optional[str]:
        """
        Expects one JSON payload of the OpenAI stream (data: {...}).
        Returns choices[0].delta.content when present.
        Anything that is not a well-formed chunk raises GenerationError.
        """
        try:
            obj = json.loads(chunk)
        except ValueError as exc:
            log.warning("Unparsable LLM stream chunk (%d chars)", len(chunk))
            raise GenerationError("Malformed LLM stream chunk") from exc
        if not isinstance(obj, dict):
            raise GenerationError("Malformed LLM stream chunk")
        if obj.get("error"):
            raise GenerationError("LLM reported an error mid-stream")

        choices = obj.get("choices") or []
        if not isinstance(choices, list):
            raise GenerationError("Malformed LLM stream chunk")
        if not choices:
            return None
        first = choices[0]
        if not isinstance(first, dict):
            raise GenerationError("Malformed LLM stream chunk")
        delta = first.get("delta") or {}
        if not isinstance(delta, dict):
            raise GenerationError("Malformed LLM stream chunk")
        text = delta.get("content")
        # some providers stream "content" at the top level
        if text is None:
            text = obj.get("content")
        if text is not None and not isinstance(text, str):
            raise GenerationError("Malformed LLM stream chunk")
        return text
