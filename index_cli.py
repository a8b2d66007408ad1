#!/usr/bin/env python3
"""Crawl the documentation sitemap and index its articles into Chroma."""
import argparse
import asyncio
import logging
import sys

from askdocs.config import get_settings
from askdocs.db import KnowledgeBase
from askdocs.errors import AskDocsError
from askdocs.ingest import IngestPipeline

log = logging.getLogger("index_cli")


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--sitemap", help="Sitemap URL (default: SITEMAP_URL)")
    parser.add_argument("--delay", type=float, help="Seconds between pages (default: CRAWL_DELAY_SECONDS)")
    parser.add_argument("--collection", help="Chroma collection (default: CHROMA_COLLECTION)")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stdout,
    )

    try:
        settings = get_settings()
        updates = {}
        if args.delay is not None:
            updates["CRAWL_DELAY_SECONDS"] = args.delay
        if args.collection:
            updates["CHROMA_COLLECTION"] = args.collection
        if updates:
            settings = settings.model_copy(update=updates)

        pipeline = IngestPipeline(KnowledgeBase(settings), settings)
        total = asyncio.run(pipeline.index_sitemap(args.sitemap))
    except AskDocsError as e:
        log.error("Error during indexing: %s", e)
        sys.exit(1)

    print(f"Indexed {total} chunks into {settings.CHROMA_COLLECTION!r}.")


if __name__ == "__main__":
    main()
