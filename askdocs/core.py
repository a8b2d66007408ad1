# askdocs/core.py
from __future__ import annotations
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncGenerator, AsyncIterator, Callable, Dict, Iterable, Optional, Union
import asyncio
import json
import logging
import time

from .config import Settings, get_settings
from .db import KnowledgeBase
from .errors import ValidationError
from .llm import Generator, LLMAdapter
from .prompting import assemble
from .retrieval import ChromaRetriever, Retriever
from .schemas import AnswerChunk, ContextChunk, PromptPayload

log = logging.getLogger(__name__)
metrics_log = logging.getLogger("metrics")

SOURCES_HEADER = "\n\n### Sources:\n"


def _ms(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None or b is None:
        return None
    return round((b - a) * 1000.0, 2)


@dataclass
class RequestMetrics:
    """Per-request timings, logged as one JSON line on the "metrics" logger."""
    t0: float = field(default_factory=time.perf_counter)
    t_retrieval_start: Optional[float] = None
    t_retrieval_end: Optional[float] = None
    t_prompt_start: Optional[float] = None
    t_prompt_end: Optional[float] = None
    t_llm_req: Optional[float] = None
    t_first_token: Optional[float] = None
    t_last_token: Optional[float] = None
    emitted_chars: int = 0
    chunks: int = 0

    def delta(self, text: str) -> None:
        now = time.perf_counter()
        if self.t_first_token is None:
            self.t_first_token = now
        self.t_last_token = now
        self.emitted_chars += len(text)
        self.chunks += 1

    def as_dict(self, ok: bool) -> Dict:
        end = self.t_last_token or self.t_prompt_end or self.t_retrieval_end or time.perf_counter()
        return {
            "durations_ms": {
                "retrieval": _ms(self.t_retrieval_start, self.t_retrieval_end),
                "prompt_build": _ms(self.t_prompt_start, self.t_prompt_end),
                "llm_time_to_first_token": _ms(self.t_llm_req, self.t_first_token),
                "llm_stream_duration": _ms(self.t_first_token, self.t_last_token),
                "total": _ms(self.t0, end),
            },
            "sizes": {"emitted_chars": self.emitted_chars, "chunks": self.chunks},
            "ok": ok,
        }

    def log(self, ok: bool) -> None:
        metrics_log.info(json.dumps(self.as_dict(ok), ensure_ascii=False))


def format_sources(urls: Iterable[str]) -> str:
    return SOURCES_HEADER + "\n".join(f"- [{u}]({u})" for u in urls)


async def frame_stream(
    chunks: AsyncIterator[AnswerChunk],
    metrics: Optional[RequestMetrics] = None,
) -> AsyncGenerator[str, None]:
    """
    Turns an AnswerChunk sequence into plain text:
      - the context item is consumed silently; its source URLs are collected
        once each, in first-seen order
      - every text delta is forwarded as soon as it arrives
      - a "### Sources:" block follows the last delta if any source was seen
    The upstream iterator is closed however this generator ends.
    """
    sources: Dict[str, None] = {}
    try:
        async for chunk in chunks:
            if isinstance(chunk, ContextChunk):
                for frag in chunk.fragments:
                    if frag.source_url:
                        sources.setdefault(frag.source_url, None)
                continue
            if not chunk.text:
                continue
            if metrics is not None:
                metrics.delta(chunk.text)
            yield chunk.text
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()

    if sources:
        yield format_sources(sources)


class RetrievalChain:
    """
    Retrieval -> prompt assembly -> generation, for one question at a time.
    Holds no per-question state.
    """

    def __init__(
        self,
        retriever: Retriever,
        generator: Generator,
        top_k: Optional[int] = None,
        max_context_chars: int = 0,
    ) -> None:
        self.retriever = retriever
        self.generator = generator
        self.top_k = top_k
        self.max_context_chars = max_context_chars

    async def prepare(self, question: str, metrics: Optional[RequestMetrics] = None) -> PromptPayload:
        m = metrics or RequestMetrics()
        m.t_retrieval_start = time.perf_counter()
        fragments = await self.retriever.retrieve(question, self.top_k)
        m.t_retrieval_end = m.t_prompt_start = time.perf_counter()
        payload = assemble(fragments, question, self.max_context_chars)
        m.t_prompt_end = time.perf_counter()
        log.debug("Retrieved %d fragments, context %d chars", len(fragments), len(payload.context_block))
        return payload

    async def invoke(self, question: str, metrics: Optional[RequestMetrics] = None) -> str:
        m = metrics or RequestMetrics()
        payload = await self.prepare(question, m)
        m.t_llm_req = time.perf_counter()
        answer = await self.generator.generate(payload, stream=False)
        m.delta(answer)
        return answer

    async def stream(
        self, question: str, metrics: Optional[RequestMetrics] = None
    ) -> AsyncGenerator[AnswerChunk, None]:
        m = metrics or RequestMetrics()
        payload = await self.prepare(question, m)
        m.t_llm_req = time.perf_counter()
        async with aclosing(self.generator.generate(payload, stream=True)) as chunks:
            async for chunk in chunks:
                yield chunk

    async def aclose(self) -> None:
        shutdown = getattr(self.generator, "shutdown", None)
        if shutdown is not None:
            await shutdown()


def build_chain(settings: Settings) -> RetrievalChain:
    """
    Default chain: Chroma retrieval + OpenAI-compatible generation.
    Blocking (opens the store, loads the embedder); run it off the event loop.
    """
    settings.require_llm()
    kb = KnowledgeBase(settings)
    kb.collection()
    return RetrievalChain(
        retriever=ChromaRetriever(kb, top_k=settings.TOP_K),
        generator=LLMAdapter(settings),
        top_k=settings.TOP_K,
        max_context_chars=settings.CONTEXT_MAX_CHARS,
    )


class AnsweringPipeline:
    """
    Orchestration: question -> chain -> answer text or text stream.

    The chain is built once per process, on first use. Concurrent first
    callers wait on the same lock and reuse the single instance; a failed
    build leaves the pipeline uninitialized so the next call retries.
    """

    def __init__(
        self,
        chain_factory: Callable[[Settings], RetrievalChain] = build_chain,
        settings_loader: Callable[[], Settings] = get_settings,
    ) -> None:
        self._chain_factory = chain_factory
        self._settings_loader = settings_loader
        self._chain: Optional[RetrievalChain] = None
        self._lock = asyncio.Lock()

    @property
    def ready(self) -> bool:
        return self._chain is not None

    async def ensure_ready(self) -> RetrievalChain:
        if self._chain is not None:
            return self._chain
        async with self._lock:
            if self._chain is None:
                log.info("Setting up chain...")
                settings = self._settings_loader()
                self._chain = await asyncio.to_thread(self._chain_factory, settings)
                log.info("Chain ready")
        return self._chain

    async def answer(self, question: str, streaming: bool = False) -> Union[str, AsyncIterator[str]]:
        """
        Non-streaming: the complete answer string.
        Streaming: an async iterator of text pieces, sources block last.
        Errors are raised (typed, see errors.py), never turned into text.
        """
        if not question or not question.strip():
            raise ValidationError("Empty question")
        chain = await self.ensure_ready()
        log.info("Invoking chain with question: %s", question)
        if streaming:
            return self._stream(chain, question)
        return await self._answer_once(chain, question)

    async def _answer_once(self, chain: RetrievalChain, question: str) -> str:
        m = RequestMetrics()
        ok = False
        try:
            answer = await chain.invoke(question, m)
            ok = True
            return answer
        except Exception:
            log.exception("Error answering question")
            raise
        finally:
            m.log(ok)

    async def _stream(self, chain: RetrievalChain, question: str) -> AsyncGenerator[str, None]:
        m = RequestMetrics()
        ok = False
        try:
            async with aclosing(frame_stream(chain.stream(question, m), m)) as pieces:
                async for piece in pieces:
                    yield piece
            ok = True
        except Exception:
            log.exception("Error streaming answer")
            raise
        finally:
            m.log(ok)

    async def aclose(self) -> None:
        if self._chain is not None:
            await self._chain.aclose()
