# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""HTTP retry logic for transient failures.

Provides ``HttpRetryConfig`` for opt-in retry of transient HTTP errors
(429, 502, 503, 504) and connection failures, and ``RetryingTransport``,
which wraps any HTTP client with the ``post(url, *, content, headers)``
shape used by :class:`twirp_rpc.client.Client`.

When retries are exhausted on a retryable status the last response is
returned unchanged, so the client classifies it like any other failure
(a bare 503 from a proxy becomes an ``unavailable`` intermediary error).

Logger: ``twirp_rpc.http.retry``, retry attempts are logged at DEBUG level.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING

import httpx

from twirp_rpc.client import _find_header

if TYPE_CHECKING:
    from collections.abc import Callable

    from twirp_rpc.client import HttpClient, HttpClientResponse

_logger = logging.getLogger("twirp_rpc.http.retry")

# Default status codes produced by reverse proxies (nginx, ALB, etc.)
# that indicate transient failures safe to retry.
_DEFAULT_RETRYABLE: frozenset[int] = frozenset({429, 502, 503, 504})

# Statuses on which RFC 9110 defines Retry-After.
_RETRY_AFTER_STATUSES: frozenset[int] = frozenset({429, 503})


@dataclass(frozen=True)
class HttpRetryConfig:
    """Configuration for retrying transient HTTP failures.

    Attributes:
        max_retries: Number of retry attempts (total calls = max_retries + 1).
        backoff_base: Exponential backoff base in seconds
            (delay = base * 2^attempt).
        backoff_max: Maximum backoff delay in seconds.
        retryable_status_codes: HTTP status codes eligible for retry.
        retry_on_connection_error: Whether to retry on ``httpx.ConnectError``
            and ``httpx.TimeoutException``.
        respect_retry_after: Whether to honor the ``Retry-After`` header
            on 429/503 responses (see :func:`retry_after_seconds`).

    Raises:
        ValueError: If *max_retries* < 0, *backoff_base* < 0, or
            *backoff_max* < 0.

    """

    max_retries: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 30.0
    retryable_status_codes: frozenset[int] = field(default_factory=lambda: _DEFAULT_RETRYABLE)
    retry_on_connection_error: bool = True
    respect_retry_after: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.backoff_base < 0:
            raise ValueError(f"backoff_base must be >= 0, got {self.backoff_base}")
        if self.backoff_max < 0:
            raise ValueError(f"backoff_max must be >= 0, got {self.backoff_max}")

    def backoff(self, attempt: int, server_delay: float | None = None) -> float:
        """Seconds to wait before retry *attempt* (zero-based).

        Full-jitter exponential backoff capped at ``backoff_max``.  A
        *server_delay* from ``Retry-After`` sets the floor when
        ``respect_retry_after`` is enabled, and is capped the same way.
        """
        delay = min(random.uniform(0, self.backoff_base * 2**attempt), self.backoff_max)
        if server_delay is not None and self.respect_retry_after:
            delay = max(delay, min(server_delay, self.backoff_max))
        return delay


def retry_after_seconds(resp: HttpClientResponse) -> float | None:
    """Seconds a 429 or 503 response asks the client to wait, from ``Retry-After``.

    Accepts both forms of RFC 9110 section 10.2.3: integer delta-seconds and
    an HTTP-date (a date in the past means no wait).  Other statuses and
    values that parse as neither form yield ``None``.
    """
    if resp.status_code not in _RETRY_AFTER_STATUSES:
        return None
    value = (_find_header(resp.headers, "Retry-After") or "").strip()
    if not value:
        return None
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(tz=UTC)).total_seconds())


class RetryingTransport:
    """HTTP client wrapper that retries transient failures.

    Usage::

        transport = RetryingTransport(httpx.Client(), HttpRetryConfig(max_retries=5))
        client = Client(HABERDASHER, "http://localhost:8080/twirp", http_client=transport)

    Twirp calls are POSTs, but every rpc is expected to be safe to resend
    when the request never reached the service (connection errors) or a
    proxy rejected it (retryable statuses).  Do not wrap clients of
    non-idempotent rpcs.
    """

    __slots__ = ("_client", "_config", "_sleep")

    def __init__(
        self,
        http_client: HttpClient,
        config: HttpRetryConfig | None = None,
        *,
        _sleep: Callable[[float], object] = time.sleep,
    ) -> None:
        """Wrap *http_client*.

        Args:
            http_client: The client to send requests with.
            config: Retry configuration; defaults to ``HttpRetryConfig()``.
            _sleep: Sleep function (injectable for tests).

        """
        self._client = http_client
        self._config = config if config is not None else HttpRetryConfig()
        self._sleep = _sleep

    @property
    def config(self) -> HttpRetryConfig:
        """The retry configuration."""
        return self._config

    def post(self, url: str, *, content: bytes, headers: dict[str, str]) -> HttpClientResponse:
        """Execute ``post()`` on the wrapped client with retry on transient failures.

        Returns:
            The first non-retryable response, or the last response once
            retries are exhausted.

        Raises:
            httpx.ConnectError: If connection errors exhaust retries (when
                ``retry_on_connection_error`` is enabled).
            httpx.TimeoutException: If timeouts exhaust retries.

        """
        config = self._config
        attempt = 0
        while True:
            try:
                resp = self._client.post(url, content=content, headers=headers)
            except (httpx.ConnectError, httpx.TimeoutException):
                if not config.retry_on_connection_error or attempt >= config.max_retries:
                    raise
                delay = config.backoff(attempt)
                _logger.debug(
                    "Connection error on POST %s (attempt %d/%d), retrying in %.2fs",
                    url,
                    attempt + 1,
                    config.max_retries + 1,
                    delay,
                )
                self._sleep(delay)
                attempt += 1
                continue

            if resp.status_code not in config.retryable_status_codes or attempt >= config.max_retries:
                return resp

            delay = config.backoff(attempt, retry_after_seconds(resp))
            _logger.debug(
                "HTTP %d on POST %s (attempt %d/%d), retrying in %.2fs",
                resp.status_code,
                url,
                attempt + 1,
                config.max_retries + 1,
                delay,
            )
            self._sleep(delay)
            attempt += 1

    def close(self) -> None:
        """Close the wrapped client."""
        self._client.close()
