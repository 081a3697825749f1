"""
Query embedder backed by sentence-transformers (e5 family, 768 dimensions).

Only queries are embedded here; the event corpus is embedded by the ingestion
workers with the matching "passage: " prefix. Encoding runs in a worker thread
so the event loop is never blocked, and the model is loaded lazily on first use.
"""

import asyncio
import logging
import threading
from collections import OrderedDict

import numpy as np

from services.lens.config import settings

logger = logging.getLogger(__name__)

# e5 models are trained with these task prefixes
_QUERY_PREFIX = "query: "

_MEMO_SIZE = 128


class QueryEmbedder:
    """Thread-safe lazy model with a small memo for repeated queries."""

    def __init__(self, model_name: str | None = None) -> None:
        self._model_name = model_name or settings.embedding_model
        self._model = None
        self._lock = threading.Lock()
        self._memo: OrderedDict[str, list[float]] = OrderedDict()

    @property
    def model_name(self) -> str:
        return self._model_name

    def _load_model(self):
        if self._model is not None:
            return
        with self._lock:
            if self._model is not None:
                return
            from sentence_transformers import SentenceTransformer

            logger.info("Loading embedding model: %s", self._model_name)
            self._model = SentenceTransformer(self._model_name)
            logger.info("Embedding model loaded successfully")

    def encode(self, text: str) -> list[float]:
        """Embed one query. Returns an L2-normalized vector."""
        key = text.strip().lower()
        with self._lock:
            cached = self._memo.get(key)
        if cached is not None:
            return cached

        self._load_model()
        vector = self._model.encode(
            _QUERY_PREFIX + key,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        result = np.asarray(vector, dtype=np.float32).tolist()

        with self._lock:
            self._memo[key] = result
            while len(self._memo) > _MEMO_SIZE:
                self._memo.popitem(last=False)
        return result

    async def embed_query(self, text: str) -> list[float]:
        """Async embed function handed to the vector backend."""
        return await asyncio.to_thread(self.encode, text)
