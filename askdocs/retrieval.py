# askdocs/retrieval.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol
import asyncio

from langchain_text_splitters import RecursiveCharacterTextSplitter

from .db import KnowledgeBase
from .schemas import RetrievedFragment


def chunk_text(text: str, size: int, overlap: int) -> List[str]:
    """
    Recursive character chunking (paragraph -> line -> word -> character).
    Every chunk is at most `size` characters and repeats up to `overlap`
    characters from the end of the previous one.
    """
    text = (text or "").strip()
    if not text:
        return []
    splitter = RecursiveCharacterTextSplitter(chunk_size=size, chunk_overlap=overlap)
    return [c for c in splitter.split_text(text) if c.strip()]


def fragments_from_result(raw: Dict[str, Any]) -> List[RetrievedFragment]:
    """Map a Chroma query result (single query) to fragments, keeping rank order."""
    documents = (raw.get("documents") or [[]])[0] or []
    metadatas = (raw.get("metadatas") or [[]])[0] or []
    out: List[RetrievedFragment] = []
    for i, doc in enumerate(documents):
        if not doc:
            continue
        meta = (metadatas[i] if i < len(metadatas) else None) or {}
        out.append(RetrievedFragment(text=doc, source_url=str(meta.get("source") or "")))
    return out


class Retriever(Protocol):
    async def retrieve(self, query: str, k: Optional[int] = None) -> List[RetrievedFragment]:
        ...


@dataclass
class ChromaRetriever:
    """
    Similarity search over the Chroma collection.
    The Chroma client is blocking, so the query runs in a worker thread.
    """
    kb: KnowledgeBase
    top_k: int = 4

    async def retrieve(self, query: str, k: Optional[int] = None) -> List[RetrievedFragment]:
        raw = await asyncio.to_thread(self.kb.query, query, k or self.top_k)
        return fragments_from_result(raw)
