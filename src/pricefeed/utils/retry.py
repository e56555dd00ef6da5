import asyncio
from collections.abc import Mapping
from typing import Any

import httpx
from loguru import logger

from pricefeed.errors import FetchError, ServerError, TransportError

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_S = 0.5
DEFAULT_TIMEOUT_S = 15.0


class RetryingFetcher:
    """Bounded, fixed-delay retry around a single HTTP GET.

    Any `httpx.RequestError` (transport failures, timeouts, undecodable
    bodies, redirect loops) and non-2xx responses are retried until
    `max_attempts` is reached, sleeping `delay_s` between attempts.
    Cancellation of the calling task is never retried: `asyncio.CancelledError`
    escapes from the request or from the retry sleep immediately.

    Usage:
        fetcher = RetryingFetcher(client, max_attempts=3, delay_s=0.5)
        body = await fetcher.fetch(url, params={"ids": "bitcoin"})
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        delay_s: float = DEFAULT_RETRY_DELAY_S,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        name: str = "fetcher",
    ) -> None:
        """Initializes the fetcher.

        Args:
            client: The shared httpx.AsyncClient used for every attempt.
            max_attempts: Total attempts, including the first one. Must be >= 1.
            delay_s: Fixed pause between a failed attempt and the next one.
            timeout_s: Absolute timeout applied to each attempt.
            name: Label used in log messages.
        """
        if not isinstance(max_attempts, int) or max_attempts < 1:
            err_msg = "max_attempts must be a positive integer."
            raise ValueError(err_msg)
        if delay_s < 0:
            err_msg = "delay_s must not be negative."
            raise ValueError(err_msg)
        if timeout_s <= 0:
            err_msg = "timeout_s must be a positive number."
            raise ValueError(err_msg)

        self.client = client
        self.max_attempts = max_attempts
        self.delay_s = delay_s
        self.timeout_s = timeout_s
        self.name = name

    async def fetch(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> bytes:
        """Performs the GET request, retrying transient failures.

        Returns:
            The raw response body of the first successful attempt.

        Raises:
            FetchError: All attempts failed. `last_error` holds the final
                `TransportError` or `ServerError`.
            asyncio.CancelledError: The calling task was cancelled.
        """
        last_error: TransportError | ServerError | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self.client.get(
                    url, params=params, headers=headers, timeout=self.timeout_s
                )
                if not response.is_success:
                    raise ServerError(url, response.status_code)
                return response.content
            except httpx.RequestError as e:
                last_error = TransportError(url, e)
            except ServerError as e:
                last_error = e

            if attempt < self.max_attempts:
                logger.warning(
                    f"[{self.name}] Attempt {attempt}/{self.max_attempts} failed: "
                    f"{last_error}. Retrying in {self.delay_s}s..."
                )
                await asyncio.sleep(self.delay_s)

        logger.error(
            f"[{self.name}] All {self.max_attempts} attempts failed: {last_error}"
        )
        raise FetchError(url, self.max_attempts, last_error) from last_error
