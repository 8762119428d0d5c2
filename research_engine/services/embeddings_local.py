from __future__ import annotations

import asyncio
import time
from typing import Any

from research_engine.config import settings
from research_engine.services.logger import logger


class LocalEmbeddingService:
    """Sentence-transformers embeddings, loaded lazily on first use."""

    def __init__(self, model_name: str | None = None, batch_size: int | None = None):
        self.model_name = model_name or settings.local_embed_model
        self.batch_size = batch_size or int(settings.local_embed_batch_size)
        self._model: Any | None = None
        self._lock = asyncio.Lock()

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        async with self._lock:
            if self._model is None:
                self._model = await asyncio.to_thread(self._load_model)
        return await asyncio.to_thread(self._embed_sync, texts)

    async def embed_text(self, text: str) -> list[float]:
        vectors = await self.embed_texts([text])
        return vectors[0]

    def _load_model(self) -> Any:
        from sentence_transformers import SentenceTransformer

        logger.info(f"Loading embedding model {self.model_name}")
        return SentenceTransformer(self.model_name)

    def _embed_sync(self, texts: list[str]) -> list[list[float]]:
        retries = 3
        for attempt in range(retries):
            try:
                vectors = self._model.encode(
                    texts,
                    batch_size=self.batch_size,
                    normalize_embeddings=True,
                    show_progress_bar=False,
                )
                return [list(map(float, row)) for row in vectors]
            except Exception as e:
                if attempt == retries - 1:
                    raise
                logger.warning(f"Embedding attempt {attempt + 1} failed: {e}")
                time.sleep(0.2 * (attempt + 1))
        return []


_embedder: LocalEmbeddingService | None = None


def get_embedder() -> LocalEmbeddingService:
    global _embedder
    if _embedder is None:
        _embedder = LocalEmbeddingService()
    return _embedder
