# askdocs/__init__.py
"""
Documentation Q&A service (retrieval-augmented).
Layout:
- config.py      : Settings via pydantic-settings, loaded lazily
- errors.py      : error taxonomy (configuration, backend, generation, validation)
- schemas.py     : RetrievedFragment, PromptPayload, ContextChunk / TextDelta
- db.py          : KnowledgeBase (Chroma connection + collection)
- retrieval.py   : ChromaRetriever, chunk_text
- prompting.py   : prompt template and assembly
- llm.py         : LLMAdapter (OpenAI-compatible, streaming)
- core.py        : AnsweringPipeline (cached chain, stream framing, sources)
- api.py         : FastAPI endpoints (/health, /, /api/answer, /api/answer/stream)
- crawl.py       : sitemap crawler
- ingest.py      : IngestPipeline (page -> chunks -> Chroma)
"""
