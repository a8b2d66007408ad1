# askdocs/ingest.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import asyncio
import hashlib
import logging

import httpx

from .config import Settings
from .crawl import HEADERS, crawl, fetch_sitemap
from .db import KnowledgeBase
from .retrieval import chunk_text

log = logging.getLogger(__name__)


@dataclass
class IngestPipeline:
    """
    Crawled page -> chunks -> Chroma.
    Chunk ids derive from the page URL, so re-indexing a page overwrites its
    chunks in place and drops the ones past the new chunk count.
    """
    kb: KnowledgeBase
    _settings: Settings

    def ingest_page(self, url: str, text: str) -> int:
        chunks = chunk_text(text, self._settings.CHUNK_SIZE, self._settings.CHUNK_OVERLAP)
        if not chunks:
            return 0
        base = hashlib.sha1(url.encode("utf-8")).hexdigest()
        ids = [f"{base}-{i}" for i in range(len(chunks))]
        metas = [{"source": url} for _ in chunks]
        # old chunks stay until the new ones are written
        self.kb.add_chunks(chunks, metas, ids)
        removed = self.kb.prune_source(url, ids)
        if removed:
            log.debug("Removed %d stale chunks of %s", removed, url)
        return len(chunks)

    async def index_sitemap(
        self,
        sitemap_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> int:
        url = sitemap_url or self._settings.SITEMAP_URL
        total = 0
        async with httpx.AsyncClient(
            headers=HEADERS, timeout=30.0, follow_redirects=True, transport=transport
        ) as client:
            urls = await fetch_sitemap(client, url)
            log.info("Starting to process %d URLs from sitemap", len(urls))
            async for page_url, text in crawl(client, urls, self._settings.CRAWL_DELAY_SECONDS):
                n = await asyncio.to_thread(self.ingest_page, page_url, text)
                log.info("Indexed %d chunks from %s", n, page_url)
                total += n
        log.info("Indexing completed: %d chunks", total)
        return total
