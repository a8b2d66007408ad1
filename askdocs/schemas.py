"""Shared dataclasses passed between retrieval, prompting and generation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple, Union


@dataclass(frozen=True, slots=True)
class RetrievedFragment:
    """A retrieved span of documentation plus the page it came from."""

    text: str
    source_url: str


@dataclass(frozen=True, slots=True)
class PromptPayload:
    """Context block and question handed to the generator exactly once."""

    context_block: str
    question: str
    fragments: Tuple[RetrievedFragment, ...] = field(default=())


@dataclass(frozen=True, slots=True)
class ContextChunk:
    """First streamed item: the fragments consulted for this answer."""

    fragments: Tuple[RetrievedFragment, ...]


@dataclass(frozen=True, slots=True)
class TextDelta:
    """Incremental piece of answer text, provider granularity."""

    text: str


AnswerChunk = Union[ContextChunk, TextDelta]
