"""Text embedding generation using sentence-transformers."""

import hashlib
from typing import Dict, List, Optional, Sequence

import numpy as np
import structlog

from pm_indexer.config import settings
from pm_indexer.normalization.normalizer import build_embedding_text
from pm_indexer.utils.cache import CacheClient, get_cache

logger = structlog.get_logger()

# Lazy load sentence transformer model
_model = None


def get_model():
    """Get sentence transformer model (lazy loaded)."""
    global _model
    if _model is None:
        try:
            from sentence_transformers import SentenceTransformer

            _model = SentenceTransformer(settings.embedding_model)
            logger.info("embedding_model_loaded", model=settings.embedding_model)
        except Exception as e:
            logger.error("embedding_model_load_failed", error=str(e))
            raise
    return _model


def query_cache_key(text: str, model_name: str) -> str:
    normalized = " ".join(text.strip().lower().split())
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()
    return f"embedding:query:{model_name}:{digest}"


class EmbeddingGenerator:
    """Embeds market text and search queries.

    Failures propagate: callers (sync pass, job worker) own the retry.
    """

    def __init__(
        self,
        model=None,
        model_name: Optional[str] = None,
        batch_size: Optional[int] = None,
        cache: Optional[CacheClient] = None,
        query_cache_ttl: Optional[int] = None,
    ):
        self._model = model
        self.model_name = model_name or settings.embedding_model
        self.batch_size = batch_size or settings.embedding_batch_size
        self._cache = cache
        self.query_cache_ttl = (
            settings.query_embedding_cache_ttl_sec if query_cache_ttl is None else query_cache_ttl
        )

    @property
    def model(self):
        if self._model is None:
            self._model = get_model()
        return self._model

    @property
    def cache(self) -> CacheClient:
        if self._cache is None:
            self._cache = get_cache()
        return self._cache

    def embed(self, text: str) -> List[float]:
        """Embed one text."""
        if not text:
            raise ValueError("cannot embed empty text")

        embedding = self.model.encode(text, convert_to_numpy=True)
        return np.asarray(embedding, dtype=float).tolist()

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed many texts; output order matches input order."""
        if not texts:
            return []

        logger.info("batch_generate_embeddings_start", count=len(texts), batch_size=self.batch_size)

        embeddings: List[List[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = list(texts[i:i + self.batch_size])
            vectors = self.model.encode(batch, convert_to_numpy=True)
            embeddings.extend(np.asarray(v, dtype=float).tolist() for v in vectors)

            logger.debug("batch_embeddings_generated", batch_start=i, batch_size=len(batch))

        if len(embeddings) != len(texts):
            raise RuntimeError(f"embedding count mismatch: {len(embeddings)} for {len(texts)} texts")

        logger.info("batch_generate_embeddings_complete", total=len(embeddings))
        return embeddings

    def embed_markets(self, markets: Sequence) -> Dict[str, List[float]]:
        """Embed markets, keyed by market id."""
        if not markets:
            return {}

        texts = [build_embedding_text(m) for m in markets]
        vectors = self.embed_batch(texts)
        return {m.id: v for m, v in zip(markets, vectors)}

    def embed_query(self, text: str) -> List[float]:
        """Embed a search query, reusing cached vectors for repeated queries."""
        if self.query_cache_ttl <= 0:
            return self.embed(text)

        key = query_cache_key(text, self.model_name)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        embedding = self.embed(text.strip())
        self.cache.set(key, embedding, ttl=self.query_cache_ttl)
        return embedding


# Global generator instance
_generator = None


def get_embedding_generator() -> EmbeddingGenerator:
    """Get global embedding generator."""
    global _generator
    if _generator is None:
        _generator = EmbeddingGenerator()
    return _generator
