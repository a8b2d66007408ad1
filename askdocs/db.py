# askdocs/db.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
import logging

import chromadb
import httpx
from chromadb.api import ClientAPI
from chromadb.api.models.Collection import Collection
from chromadb.config import Settings as ChromaSettings
from chromadb.errors import NotFoundError
from chromadb.utils.embedding_functions import SentenceTransformerEmbeddingFunction

from .config import Settings
from .errors import BackendUnavailable, IndexNotFound

log = logging.getLogger(__name__)

# Errors chromadb raises when the server cannot be reached / handshake fails
_UNREACHABLE = (httpx.HTTPError, ConnectionError, TimeoutError)


def _sanitize(meta: Dict[str, Any]) -> Dict[str, Any]:
    """
    Chroma only accepts scalar metadata values (str, int, float, bool, None).
    Lists/tuples/sets become comma-separated strings, anything else str(value).
    """
    out: Dict[str, Any] = {}
    for k, v in (meta or {}).items():
        if isinstance(v, (str, int, float, bool)) or v is None:
            out[k] = v
        elif isinstance(v, (list, tuple, set)):
            out[k] = ", ".join(str(x) for x in v if str(x).strip())
        else:
            out[k] = str(v)
    return out


@dataclass
class KnowledgeBase:
    """
    Wraps the Chroma connection and the named collection.
    Holds no ranking logic, only persist/query.
    """
    _settings: Settings
    client: Optional[ClientAPI] = None
    _collection: Optional[Collection] = field(default=None, init=False, repr=False)
    _embedding_fn: Optional[SentenceTransformerEmbeddingFunction] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.client is None:
            self.client = self._connect()

    def _connect(self) -> ClientAPI:
        s = self._settings
        try:
            if s.CHROMA_HOST:
                headers = {"x-chroma-token": s.CHROMA_API_KEY} if s.CHROMA_API_KEY else None
                log.info("Connecting to Chroma at %s:%s", s.CHROMA_HOST, s.CHROMA_PORT)
                return chromadb.HttpClient(
                    host=s.CHROMA_HOST,
                    port=s.CHROMA_PORT,
                    ssl=s.CHROMA_SSL,
                    headers=headers,
                    settings=ChromaSettings(anonymized_telemetry=False),
                )
            log.info("Opening local Chroma at %s", s.CHROMA_PATH)
            return chromadb.PersistentClient(
                path=s.ensure_chroma_path(),
                settings=ChromaSettings(allow_reset=False, anonymized_telemetry=False),
            )
        except _UNREACHABLE as exc:
            raise BackendUnavailable("Chroma server unreachable") from exc
        except ValueError as exc:
            # chromadb reports a failed tenant/database handshake as ValueError
            raise BackendUnavailable(f"Chroma handshake failed: {exc}") from exc

    @property
    def embedding_fn(self) -> SentenceTransformerEmbeddingFunction:
        if self._embedding_fn is None:
            self._embedding_fn = SentenceTransformerEmbeddingFunction(
                model_name=self._settings.EMBEDDING_MODEL,
                device="cpu",
                normalize_embeddings=True,
            )
        return self._embedding_fn

    def collection(self, create: bool = False) -> Collection:
        """
        Query side uses an existing collection (IndexNotFound otherwise);
        the indexer passes create=True.
        """
        if self._collection is not None:
            return self._collection
        name = self._settings.CHROMA_COLLECTION
        assert self.client is not None
        try:
            if create:
                coll = self.client.get_or_create_collection(
                    name=name,
                    embedding_function=self.embedding_fn,
                    metadata={"hnsw:space": "cosine"},
                )
            else:
                coll = self.client.get_collection(name=name, embedding_function=self.embedding_fn)
        except NotFoundError as exc:
            raise IndexNotFound(f"Chroma collection {name!r} does not exist") from exc
        except _UNREACHABLE as exc:
            raise BackendUnavailable("Chroma server unreachable") from exc
        self._collection = coll
        return coll

    # -------- Persist/Query ----------
    def add_chunks(self, documents: List[str], metadatas: List[Dict[str, Any]], ids: List[str]) -> None:
        safe_metas = [_sanitize(m) for m in metadatas]
        try:
            self.collection(create=True).upsert(documents=documents, metadatas=safe_metas, ids=ids)
        except _UNREACHABLE as exc:
            raise BackendUnavailable("Chroma server unreachable") from exc

    def prune_source(self, url: str, keep_ids: Iterable[str]) -> int:
        """Delete chunks of `url` whose id is not in keep_ids. Returns how many."""
        keep = set(keep_ids)
        try:
            coll = self.collection(create=True)
            stored = coll.get(where={"source": url}, include=[])
            stale = [i for i in stored.get("ids") or [] if i not in keep]
            if stale:
                coll.delete(ids=stale)
        except _UNREACHABLE as exc:
            raise BackendUnavailable("Chroma server unreachable") from exc
        return len(stale)

    def query(self, query: str, n: int = 4) -> Dict[str, Any]:
        try:
            return self.collection().query(query_texts=[query], n_results=n)
        except NotFoundError as exc:
            # collection dropped after we cached the handle
            self._collection = None
            raise IndexNotFound(f"Chroma collection {self._settings.CHROMA_COLLECTION!r} does not exist") from exc
        except _UNREACHABLE as exc:
            raise BackendUnavailable("Chroma server unreachable") from exc
