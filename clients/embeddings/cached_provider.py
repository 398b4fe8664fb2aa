"""
In-process embedding cache.

Wraps any embedding provider with a SHA-256-keyed LRU cache. Utterances repeat
a lot in voice use ("stop the timer"), and catalog centroids are rebuilt from
the same descriptions on every start.
"""
import hashlib
import logging
import threading
from collections import OrderedDict
from typing import Optional

import numpy as np

from dispatch.core.interfaces import EmbeddingProvider

logger = logging.getLogger(__name__)


class CachingEmbeddingProvider:
    """
    Args:
        provider: Provider computing embeddings on a miss
        max_entries: LRU capacity; 0 disables caching
        key_prefix: Namespaces keys when several models share a process
    """

    def __init__(self, provider: EmbeddingProvider, max_entries: int = 1024, key_prefix: str = "embedding"):
        self.logger = logging.getLogger("embedding_cache")
        self.provider = provider
        self.max_entries = max_entries
        self.key_prefix = key_prefix
        self._entries: "OrderedDict[str, np.ndarray]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _cache_key(self, text: str) -> str:
        return f"{self.key_prefix}:{hashlib.sha256(text.encode('utf-8')).hexdigest()}"

    def get(self, text: str) -> Optional[np.ndarray]:
        key = self._cache_key(text)
        with self._lock:
            embedding = self._entries.get(key)
            if embedding is None:
                return None
            self._entries.move_to_end(key)
            return embedding.copy()

    def set(self, text: str, embedding: np.ndarray) -> None:
        if self.max_entries <= 0:
            return
        key = self._cache_key(text)
        with self._lock:
            self._entries[key] = np.array(embedding, copy=True)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def generate(self, text: str) -> np.ndarray:
        key = self._cache_key(text)
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                self._entries.move_to_end(key)
                self.hits += 1
                return cached.copy()
            self.misses += 1

        embedding = self.provider.generate(text)
        self.set(text, embedding)
        return embedding

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        self.logger.debug("Embedding cache cleared")

    def close(self) -> None:
        self.clear()
        close = getattr(self.provider, "close", None)
        if close is not None:
            close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
