import asyncio
import logging

import numpy as np
import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from knowledge_hub.core.exceptions import EmbeddingUnavailable, EmbeddingDimensionMismatch

logger = logging.getLogger(__name__)

# Lỗi tạm thời -> caller có thể retry
TRANSIENT_ERRORS = (
    google_exceptions.DeadlineExceeded,
    google_exceptions.ResourceExhausted,
    google_exceptions.ServiceUnavailable,
    google_exceptions.InternalServerError,
)


class Embedder:
    """
    Bọc lời gọi embedding model của Google. Dùng chung một instance cho cả
    ingestion lẫn truy vấn để vector nằm trong cùng một không gian.
    """

    def __init__(self, api_key: str, model: str = "models/text-embedding-004", dimension: int = 768):
        if api_key:
            genai.configure(api_key=api_key)
        self.model = model
        self.dimension = dimension

    async def embed(self, text: str) -> np.ndarray:
        """Chuyển một đoạn văn bản thành vector float32 độ dài cố định"""
        if not text or not text.strip():
            raise EmbeddingUnavailable("Cannot embed empty text", retryable=False)

        try:
            result = await asyncio.to_thread(genai.embed_content, model=self.model, content=text)
        except TRANSIENT_ERRORS as e:
            raise EmbeddingUnavailable(f"Embedding upstream unavailable: {e}", retryable=True) from e
        except Exception as e:
            raise EmbeddingUnavailable(f"Embedding request failed: {e}", retryable=False) from e

        return self._to_vector(result)

    def _to_vector(self, result) -> np.ndarray:
        values = result.get("embedding") if isinstance(result, dict) else None
        if not values:
            raise EmbeddingUnavailable("Embedding response contained no vector", retryable=False)

        vector = np.asarray(values, dtype=np.float32)
        if vector.ndim != 1:
            raise EmbeddingUnavailable(f"Unexpected embedding shape {vector.shape}", retryable=False)
        if vector.shape[0] != self.dimension:
            raise EmbeddingDimensionMismatch(self.dimension, int(vector.shape[0]))
        return vector
