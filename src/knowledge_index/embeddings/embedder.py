"""
Embedding Client

This module turns text into vectors through an external embeddings API. It is
split in two layers:

- ``OpenAIProviderClient`` performs exactly ONE HTTP call for N inputs against
  an OpenAI-compatible ``/v1/embeddings`` endpoint and parses the response.
- ``RetryingBatchEmbedder`` validates inputs, splits them into bounded
  batches, retries transient provider failures with exponential backoff, and
  validates that every batch came back with one finite vector per input.

Both classes are stateless apart from configuration and safe to reuse across
requests. No vectors are cached here; caching is the index's job.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence

import httpx

from ..config import settings
from ..core.errors import ProviderError, ValidationError

logger = logging.getLogger("kindex.embedder")


class MalformedResponseError(ValueError):
    """Raised when the provider answers with an unexpected payload shape."""


class ProviderClient(Protocol):
    """One embeddings call: N texts in, N vectors out, same order."""

    async def embed(self, model: str, inputs: Sequence[str]) -> List[List[float]]: ...


class TextEmbedder(Protocol):
    """What the rest of the service needs from an embedder."""

    model: str

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]: ...

    async def embed_one(self, text: str) -> List[float]: ...


# ---------------------------------------------------------------------
# Provider Client
# ---------------------------------------------------------------------

class OpenAIProviderClient:
    """
    Asynchronous client for an OpenAI-compatible embeddings endpoint.

    HTTP failures surface as ``httpx.HTTPStatusError`` (carrying the status
    code), ``httpx.TimeoutException`` or ``httpx.ConnectError`` so the caller
    can classify them. Payload problems raise ``MalformedResponseError``.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Parameters
        ----------
        api_key : Optional[str]
            Optional override for the API key. Defaults to settings.openai_api_key.

        base_url : Optional[str]
            Full URL of the embeddings endpoint.

        timeout : Optional[float]
            HTTP timeout for each request.

        transport : Optional[httpx.AsyncBaseTransport]
            Custom transport, used by tests to stub the network.
        """
        self.api_key = api_key or settings.openai_api_key.get_secret_value()
        self.base_url = base_url or settings.embedding_base_url
        self.timeout = timeout if timeout is not None else settings.embedding_timeout
        self._transport = transport

    async def embed(self, model: str, inputs: Sequence[str]) -> List[List[float]]:
        payload = {
            "model": model,
            "input": list(inputs),
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.post(self.base_url, json=payload, headers=headers)
            response.raise_for_status()

        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponseError("Embedding response is not valid JSON.") from exc

        return self._extract_embeddings(data)

    @staticmethod
    def _extract_embeddings(data: dict) -> List[List[float]]:
        """
        Parse and validate embedding output format.

        OpenAI returns:
            { "data": [ {"index": 0, "embedding": [...]}, ... ] }

        Items are re-ordered by ``index`` when every item carries one.
        """
        if not isinstance(data, dict) or "data" not in data:
            raise MalformedResponseError("Embedding response missing 'data' field.")

        records = data["data"]
        if not isinstance(records, list):
            raise MalformedResponseError("'data' field must be a list.")

        if records and all(isinstance(r, dict) and isinstance(r.get("index"), int) for r in records):
            records = sorted(records, key=lambda r: r["index"])

        embeddings: List[List[float]] = []

        for index, record in enumerate(records):
            if not isinstance(record, dict) or "embedding" not in record:
                raise MalformedResponseError(
                    f"Malformed embedding record at index {index}."
                )

            emb = record["embedding"]
            if not isinstance(emb, list):
                raise MalformedResponseError(
                    f"Invalid embedding vector at index {index}: must be a list."
                )

            embeddings.append(emb)

        return embeddings


# ---------------------------------------------------------------------
# Retry Classification
# ---------------------------------------------------------------------

def is_transient(exc: BaseException) -> bool:
    """
    True for failures expected to succeed on retry: HTTP 429, any 5xx,
    connection errors and timeouts.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or 500 <= code < 600

    return isinstance(exc, (httpx.TimeoutException, httpx.ConnectError))


def _describe(exc: BaseException) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code} from provider"
    return str(exc) or type(exc).__name__


# ---------------------------------------------------------------------
# Retrying Batch Embedder
# ---------------------------------------------------------------------

class RetryingBatchEmbedder:
    """
    Maps an ordered list of texts to an equal-length, order-preserving list of
    vectors.

    Batches are dispatched sequentially, so total latency is the sum of the
    per-batch latencies. There is no cancellation API; wrapping a call in
    ``asyncio.wait_for`` cancels it at the current provider call or backoff
    sleep.
    """

    def __init__(
        self,
        provider: Optional[ProviderClient] = None,
        model: Optional[str] = None,
        max_batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider or OpenAIProviderClient()
        self.model = model or settings.embedding_model
        self.max_batch_size = max_batch_size or settings.embedding_batch_size
        self.max_retries = (
            max_retries if max_retries is not None else settings.embedding_max_retries
        )
        self.base_delay = (
            base_delay if base_delay is not None else settings.embedding_retry_base_delay
        )
        self._sleep = sleep

        if self.max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed_one(self, text: str) -> List[float]:
        """
        Embed a single text. Whitespace is trimmed first.
        """
        trimmed = text.strip() if isinstance(text, str) else ""
        if not trimmed:
            raise ValidationError("embed_one: input text is empty or whitespace-only.")

        [vector] = await self.embed_many([trimmed])
        return vector

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Generate embeddings for a sequence of input texts.

        Returns
        -------
        List[List[float]]
            One vector per input, in input order.

        Raises
        ------
        ValidationError
            If ``texts`` is empty or any entry is blank.
        ProviderError
            If a batch fails for good or comes back malformed.
        """
        normalized = self._normalize(texts)

        if len(normalized) <= self.max_batch_size:
            return await self._embed_batch(normalized)

        results: List[List[float]] = []
        for start in range(0, len(normalized), self.max_batch_size):
            chunk = normalized[start : start + self.max_batch_size]
            logger.debug(
                "embed_many: processing chunk %d (%d items)",
                start // self.max_batch_size + 1,
                len(chunk),
            )
            results.extend(await self._embed_batch(chunk))

        if len(results) != len(normalized):
            raise ProviderError(
                f"embed_many: final output length mismatch. "
                f"Expected={len(normalized)} Actual={len(results)}"
            )

        return results

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize(texts: Sequence[str]) -> List[str]:
        if isinstance(texts, str) or not texts:
            raise ValidationError("embed_many: texts must be a non-empty sequence of strings.")

        normalized = []
        for idx, text in enumerate(texts):
            trimmed = text.strip() if isinstance(text, str) else ""
            if not trimmed:
                raise ValidationError(
                    f"embed_many: text at index {idx} is empty or whitespace-only."
                )
            normalized.append(trimmed)

        return normalized

    async def _embed_batch(self, batch: List[str]) -> List[List[float]]:
        """
        One provider call wrapped by the retry policy.
        """
        operation = f"embed_batch(model={self.model}, count={len(batch)})"
        attempt = 0

        while True:
            attempt += 1
            if attempt > 1:
                logger.info(
                    "%s: retry attempt %d of %d",
                    operation,
                    attempt - 1,
                    self.max_retries,
                )

            try:
                vectors = await self._provider.embed(self.model, batch)
            except Exception as exc:
                retryable = is_transient(exc)
                if not retryable or attempt > self.max_retries:
                    cause = _describe(exc)
                    logger.error(
                        "%s failed (%s): attempts=%d retryable=%s",
                        operation,
                        type(exc).__name__,
                        attempt,
                        retryable,
                    )
                    raise ProviderError(
                        f"{operation} failed after {attempt} attempt(s). "
                        f"attempts={attempt} retryable={retryable} model={self.model}. "
                        f"Root error: {cause}",
                        attempts=attempt,
                        retryable=retryable,
                        cause=cause,
                    ) from exc

                delay = self.base_delay * 2 ** (attempt - 1)
                logger.warning(
                    "%s: transient error (%s). Backing off for %.3fs before retry.",
                    operation,
                    _describe(exc),
                    delay,
                )
                await self._sleep(delay)
                continue

            return self._validate_vectors(vectors, len(batch), attempt, operation)

    def _validate_vectors(
        self,
        vectors: object,
        expected: int,
        attempt: int,
        operation: str,
    ) -> List[List[float]]:
        """
        Enforce one finite, non-empty vector per input. Violations are
        contract breaches, never retried.
        """

        def _fail(reason: str) -> ProviderError:
            return ProviderError(
                f"{operation} returned an invalid response: {reason}",
                attempts=attempt,
                retryable=False,
                cause=reason,
            )

        if not isinstance(vectors, (list, tuple)) or len(vectors) != expected:
            actual = len(vectors) if isinstance(vectors, (list, tuple)) else 0
            raise _fail(
                f"Embedding response length mismatch. Expected={expected} Actual={actual}."
            )

        validated: List[List[float]] = []
        for idx, vec in enumerate(vectors):
            if not isinstance(vec, (list, tuple)) or not vec:
                raise _fail(f"Missing or empty embedding vector at index {idx}.")
            values = []
            for x in vec:
                if isinstance(x, bool) or not isinstance(x, (int, float)):
                    raise _fail(f"Non-numeric value in vector at index {idx}.")
                try:
                    fx = float(x)
                except OverflowError:
                    raise _fail(f"Out-of-range value in vector at index {idx}.") from None
                if not math.isfinite(fx):
                    raise _fail(f"Non-finite value in vector at index {idx}.")
                values.append(fx)
            validated.append(values)

        return validated
