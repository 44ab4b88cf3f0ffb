"""
Embedding Client

This module implements the embedding provider used by the indexer and the
search routes. It talks to the OpenAI embeddings API (or any compatible
provider) and is responsible for:

- Efficient batching of text inputs
- Truncating each input to the provider's character limit
- Network and transport error isolation
- Strict response validation

The client performs no retries: a failed call raises EmbeddingProviderError
and the caller decides what to do with the affected item.
"""

from __future__ import annotations

from typing import List, Sequence, Optional
import logging
import httpx

from ..config import settings
from ..core.errors import EmbeddingProviderError

logger = logging.getLogger("rag.embedder")


class Embedder:
    """
    Asynchronous embedding generator for batches of text.

    The class is stateless and safe to share across requests.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_input_chars: Optional[int] = None,
    ) -> None:
        """
        Initialize an Embedder.

        Parameters
        ----------
        api_key : Optional[str]
            Optional override for the API key. Defaults to settings.openai_api_key.

        model : Optional[str]
            Optional override for the embedding model. Defaults to settings.embedding_model.

        base_url : Optional[str]
            Embeddings endpoint URL. Defaults to settings.embedding_base_url.

        timeout : Optional[float]
            HTTP timeout for each request.

        max_input_chars : Optional[int]
            Inputs longer than this are cut before sending.
        """
        if api_key is None and settings.openai_api_key is not None:
            api_key = settings.openai_api_key.get_secret_value()

        self.api_key = api_key
        self.model = model or settings.embedding_model
        self.base_url = base_url or settings.embedding_base_url
        self.timeout = timeout or settings.embedding_timeout
        self.max_input_chars = max_input_chars or settings.embedding_max_input_chars

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def model_id(self) -> str:
        return self.model

    async def embed(
        self,
        texts: Sequence[str],
        batch_size: Optional[int] = None,
    ) -> List[List[float]]:
        """
        Generate embeddings for a sequence of input texts.

        Parameters
        ----------
        texts : Sequence[str]
            Input text strings.

        batch_size : Optional[int]
            Maximum batch size per request. Defaults to settings.embedding_batch_size.

        Returns
        -------
        List[List[float]]
            One embedding per input text, in input order.

        Raises
        ------
        EmbeddingProviderError
            If no API key is configured, any batch fails, or the response
            is malformed.
        """
        if not texts:
            return []

        if not self.api_key:
            raise EmbeddingProviderError("No embedding API key configured.")

        batch_size = batch_size or settings.embedding_batch_size
        all_embeddings: List[List[float]] = []
        headers = {"Authorization": f"Bearer {self.api_key}"}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for start in range(0, len(texts), batch_size):
                batch = [t[: self.max_input_chars] for t in texts[start : start + batch_size]]
                payload = {
                    "model": self.model,
                    "input": batch,
                }

                try:
                    response = await client.post(
                        self.base_url,
                        json=payload,
                        headers=headers,
                    )
                    response.raise_for_status()
                except httpx.HTTPError as exc:
                    logger.error(
                        "Embedding request failed (%s): batch size=%d, error=%s",
                        type(exc).__name__,
                        len(batch),
                        str(exc),
                    )
                    raise EmbeddingProviderError(
                        f"Embedding generation failed: {type(exc).__name__}"
                    ) from exc

                embeddings = self._extract_embeddings(response.json())
                if len(embeddings) != len(batch):
                    raise EmbeddingProviderError(
                        f"Provider returned {len(embeddings)} embeddings for {len(batch)} inputs."
                    )
                all_embeddings.extend(embeddings)

        logger.debug("Embedded %d texts with %s", len(texts), self.model)
        return all_embeddings

    async def embed_query(self, text: str) -> List[float]:
        """Embed a single search query."""
        return (await self.embed([text]))[0]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_embeddings(data: dict) -> List[List[float]]:
        """
        Parse and validate embedding output format.

        OpenAI returns:
            { "data": [ {"index": 0, "embedding": [...]}, ... ] }

        Records are re-sorted by ``index`` when present, since the API does
        not promise input order.

        Raises
        ------
        EmbeddingProviderError
            If the API returns unexpected structure.
        """
        if not isinstance(data, dict) or "data" not in data:
            raise EmbeddingProviderError("Embedding response missing 'data' field.")

        records = data["data"]
        if not isinstance(records, list):
            raise EmbeddingProviderError("'data' field must be a list.")

        if all(isinstance(r, dict) and isinstance(r.get("index"), int) for r in records):
            records = sorted(records, key=lambda r: r["index"])

        embeddings: List[List[float]] = []

        for index, record in enumerate(records):
            if not isinstance(record, dict) or "embedding" not in record:
                raise EmbeddingProviderError(
                    f"Malformed embedding record at index {index}."
                )

            emb = record["embedding"]
            if not isinstance(emb, list) or not all(
                isinstance(x, (float, int)) for x in emb
            ):
                raise EmbeddingProviderError(
                    f"Invalid embedding vector at index {index}: must be float list."
                )

            embeddings.append([float(x) for x in emb])

        return embeddings
