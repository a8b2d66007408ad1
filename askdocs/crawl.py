# askdocs/crawl.py
"""
Sequential sitemap crawler: fetch the sitemap, then scrape the <article>
text of each page with a fixed delay in between.
"""
from __future__ import annotations
from typing import AsyncGenerator, List, Sequence, Tuple
import asyncio
import logging

import httpx
from bs4 import BeautifulSoup

log = logging.getLogger(__name__)

HEADERS = {"User-Agent": "askdocs-indexer/0.1"}


async def fetch_sitemap(client: httpx.AsyncClient, url: str) -> List[str]:
    try:
        r = await client.get(url)
        r.raise_for_status()
    except httpx.HTTPError as e:
        log.error("Error fetching sitemap %s: %s", url, e)
        return []
    soup = BeautifulSoup(r.text, "html.parser")
    urls = [loc.get_text(strip=True) for loc in soup.find_all("loc")]
    urls = [u for u in urls if u]
    log.info("Fetched %d URLs from sitemap", len(urls))
    return urls


async def scrape_content(client: httpx.AsyncClient, url: str) -> str:
    try:
        r = await client.get(url)
        r.raise_for_status()
    except httpx.HTTPError as e:
        log.error("Error scraping %s: %s", url, e)
        return ""
    article = BeautifulSoup(r.text, "html.parser").find("article")
    if article is None:
        return ""
    return article.get_text("\n", strip=True)


async def crawl(
    client: httpx.AsyncClient,
    urls: Sequence[str],
    delay: float,
) -> AsyncGenerator[Tuple[str, str], None]:
    """Yields (url, text) for every page with article content."""
    for i, url in enumerate(urls, start=1):
        log.info("Processing [%d/%d] %s", i, len(urls), url)
        content = await scrape_content(client, url)
        if content:
            yield url, content
        if i < len(urls):
            await asyncio.sleep(delay)
