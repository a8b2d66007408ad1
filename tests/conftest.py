"""Shared fixtures and test doubles."""

from __future__ import annotations

from typing import List, Optional, Sequence

import pytest

from askdocs.config import Settings, get_settings
from askdocs.core import AnsweringPipeline, RetrievalChain
from askdocs.errors import GenerationError
from askdocs.schemas import ContextChunk, PromptPayload, RetrievedFragment, TextDelta


class DummyRetriever:
    """Returns a fixed fragment list and records the queries."""

    def __init__(self, fragments: Sequence[RetrievedFragment] = ()) -> None:
        self.fragments = list(fragments)
        self.calls: List[tuple] = []

    async def retrieve(self, query: str, k: Optional[int] = None) -> List[RetrievedFragment]:
        self.calls.append((query, k))
        return list(self.fragments)


class DummyGenerator:
    """Generator stub: fixed answer, or a scripted delta stream."""

    def __init__(
        self,
        answer: str = "Hello world",
        deltas: Sequence[str] = ("Hello", " world"),
        fail_after: Optional[int] = None,
        propagate_context: bool = True,
    ) -> None:
        self.answer = answer
        self.deltas = list(deltas)
        self.fail_after = fail_after
        self.propagate_context = propagate_context
        self.prompts: List[PromptPayload] = []
        self.closed = False
        self.pulled = 0

    def generate(self, prompt: PromptPayload, stream: bool = False):
        self.prompts.append(prompt)
        if stream:
            return self._stream(prompt)
        return self._once()

    async def _once(self) -> str:
        if self.fail_after is not None:
            raise GenerationError("rate limited")
        return self.answer

    async def _stream(self, prompt: PromptPayload):
        try:
            if self.propagate_context:
                yield ContextChunk(prompt.fragments)
            for i, delta in enumerate(self.deltas):
                if self.fail_after is not None and i == self.fail_after:
                    raise GenerationError("rate limited")
                self.pulled += 1
                yield TextDelta(delta)
        finally:
            self.closed = True


@pytest.fixture()
def settings() -> Settings:
    return Settings(_env_file=None, LLM_API_KEY="test-key", CRAWL_DELAY_SECONDS=0)


@pytest.fixture()
def fragments() -> List[RetrievedFragment]:
    return [
        RetrievedFragment(text="PDQ Connect is an agent-based tool.", source_url="https://docs.example.com/a"),
        RetrievedFragment(text="Agents report inventory every hour.", source_url="https://docs.example.com/b"),
    ]


@pytest.fixture()
def make_pipeline(settings):
    """Builds a pipeline whose chain is made of the given doubles."""

    def _make(retriever: DummyRetriever, generator: DummyGenerator) -> AnsweringPipeline:
        chain = RetrievalChain(retriever, generator, top_k=settings.TOP_K)
        return AnsweringPipeline(chain_factory=lambda _s: chain, settings_loader=lambda: settings)

    return _make


@pytest.fixture()
def clean_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
