"""Text embedding backends."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from connectsphere.core.errors import KnowledgeUnavailableError
from connectsphere.log import get_logger

logger = get_logger(__name__)


class Embedder(ABC):
    """Turns text into a vector for nearest-neighbour search."""

    @abstractmethod
    async def embed(self, text: str, task_type: str = "retrieval_query") -> list[float]:
        """Raise KnowledgeUnavailableError when credentials are missing or rejected."""
        ...


class GeminiEmbedder(Embedder):
    """Google Gemini embeddings.

    The genai.embed_content SDK call is synchronous, so it runs in a worker
    thread with a timeout.
    """

    def __init__(self, api_key: str, model: str = "models/text-embedding-004", timeout: float = 15.0):
        self._model = model
        self._timeout = timeout
        self._configured = bool(api_key)
        if self._configured:
            genai.configure(api_key=api_key)
            logger.info("gemini_embedder_initialized", model=model)
        else:
            logger.warning("gemini_embedder_disabled", reason="no API key configured")

    async def embed(self, text: str, task_type: str = "retrieval_query") -> list[float]:
        if not self._configured:
            raise KnowledgeUnavailableError("Embedding API key is not configured")
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(
                    genai.embed_content,
                    model=self._model,
                    content=text,
                    task_type=task_type,
                ),
                timeout=self._timeout,
            )
        except (google_exceptions.PermissionDenied, google_exceptions.Unauthenticated) as e:
            raise KnowledgeUnavailableError(f"Embedding credentials rejected: {e}") from e
        except google_exceptions.InvalidArgument as e:
            # An invalid key is reported as a bad request
            if "api key" in str(e).lower():
                raise KnowledgeUnavailableError(f"Embedding credentials rejected: {e}") from e
            raise
        except asyncio.TimeoutError:
            logger.error("gemini_embed_timeout", text_len=len(text), timeout_seconds=self._timeout)
            raise
        embedding: list[float] = result["embedding"]
        logger.debug("gemini_embed_ok", text_len=len(text), vector_dim=len(embedding))
        return embedding
