"""Tests for HTTP retry logic (HttpRetryConfig, RetryingTransport, Retry-After parsing).

Tests use ``_TransientFailureClient`` wrappers and ``_sleep`` recorders so
nothing actually waits.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import UTC, datetime

import httpx
import pytest

from twirp_rpc import Client, ErrorCode
from twirp_rpc.client import INTERMEDIARY_META_KEY
from twirp_rpc.http import HttpRetryConfig, RetryingTransport, _SyncTestClient, _SyncTestResponse
from twirp_rpc.http._retry import retry_after_seconds

from .conftest import BASE_URL
from .fake_services import HABERDASHER, Size

# ---------------------------------------------------------------------------
# Test infrastructure: failure-injecting wrappers around _SyncTestClient
# ---------------------------------------------------------------------------


class _TransientFailureClient:
    """Wraps a ``_SyncTestClient``, injecting transient failure responses.

    The first ``failures`` requests return a configurable HTTP error status.
    Subsequent requests delegate to the real client.
    """

    def __init__(
        self,
        real: _SyncTestClient,
        *,
        failure_status: int = 502,
        failures: int = 1,
        retry_after: str | None = None,
    ) -> None:
        self._real = real
        self._failure_status = failure_status
        self._failures_remaining = failures
        self._retry_after = retry_after
        self.call_count = 0

    def post(self, url: str, *, content: bytes, headers: dict[str, str]) -> _SyncTestResponse:
        """Intercept POST requests, optionally returning a failure."""
        self.call_count += 1
        if self._failures_remaining > 0:
            self._failures_remaining -= 1
            fail_headers: dict[str, str] = {"Content-Type": "text/html"}
            if self._retry_after is not None:
                fail_headers["Retry-After"] = self._retry_after
            return _SyncTestResponse(self._failure_status, b"<html>Bad Gateway</html>", headers=fail_headers)
        return self._real.post(url, content=content, headers=headers)

    def close(self) -> None:
        """Close the real client."""
        self._real.close()


class _RaisingClient:
    """Raises ``exc`` for the first N calls, then delegates."""

    def __init__(self, real: _SyncTestClient, exc: Exception, *, failures: int = 1) -> None:
        self._real = real
        self._exc = exc
        self._failures_remaining = failures
        self.call_count = 0

    def post(self, url: str, *, content: bytes, headers: dict[str, str]) -> _SyncTestResponse:
        """Intercept POST requests, optionally raising."""
        self.call_count += 1
        if self._failures_remaining > 0:
            self._failures_remaining -= 1
            raise self._exc
        return self._real.post(url, content=content, headers=headers)

    def close(self) -> None:
        """Close the real client."""
        self._real.close()


class _SleepRecorder:
    """Stands in for ``time.sleep``."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _client(transport: object) -> Client:
    return Client(HABERDASHER, BASE_URL, http_client=transport)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sleeps() -> _SleepRecorder:
    """Record requested delays instead of sleeping."""
    return _SleepRecorder()


@pytest.fixture
def real_client(http_client: _SyncTestClient) -> Iterator[_SyncTestClient]:
    """The in-process client for the haberdasher service."""
    yield http_client


# ---------------------------------------------------------------------------
# Unit tests: HttpRetryConfig
# ---------------------------------------------------------------------------


class TestHttpRetryConfig:
    """Tests for HttpRetryConfig dataclass."""

    def test_defaults(self) -> None:
        """Default config has sensible values."""
        cfg = HttpRetryConfig()
        assert cfg.max_retries == 3
        assert cfg.backoff_base == 0.5
        assert cfg.backoff_max == 30.0
        assert cfg.retryable_status_codes == frozenset({429, 502, 503, 504})
        assert cfg.retry_on_connection_error is True
        assert cfg.respect_retry_after is True

    def test_frozen(self) -> None:
        """Config is immutable."""
        cfg = HttpRetryConfig()
        with pytest.raises(AttributeError):
            cfg.max_retries = 5  # type: ignore[misc]

    @pytest.mark.parametrize(
        ("kwargs", "match"),
        [
            ({"max_retries": -1}, "max_retries must be >= 0"),
            ({"backoff_base": -0.5}, "backoff_base must be >= 0"),
            ({"backoff_max": -1.0}, "backoff_max must be >= 0"),
        ],
    )
    def test_negative_values_rejected(self, kwargs: dict[str, float], match: str) -> None:
        """Negative numeric settings raise ValueError at construction."""
        with pytest.raises(ValueError, match=match):
            HttpRetryConfig(**kwargs)  # type: ignore[arg-type]

    def test_zero_values_accepted(self) -> None:
        """Zero is a valid value for all numeric fields."""
        cfg = HttpRetryConfig(max_retries=0, backoff_base=0.0, backoff_max=0.0)
        assert cfg.max_retries == 0


# ---------------------------------------------------------------------------
# Unit tests: Retry-After and backoff
# ---------------------------------------------------------------------------


class _HeaderOnlyResponse:
    """Response carrying a plain-dict ``headers`` mapping."""

    def __init__(self, status_code: int, headers: dict[str, str]) -> None:
        self.status_code = status_code
        self.headers = headers
        self.content = b""


def _throttled(value: str, status: int = 429) -> _SyncTestResponse:
    return _SyncTestResponse(status, b"", headers={"Retry-After": value})


class TestRetryAfterSeconds:
    """Tests for reading Retry-After off a response."""

    @pytest.mark.parametrize("status", [429, 503])
    def test_delta_seconds(self, status: int) -> None:
        """Integer delta-seconds are read on 429 and 503."""
        assert retry_after_seconds(_throttled("120", status)) == 120.0

    def test_http_date(self) -> None:
        """An HTTP-date in the future yields the remaining wait."""
        from email.utils import format_datetime

        future = datetime(2099, 1, 1, 0, 0, 30, tzinfo=UTC)
        result = retry_after_seconds(_throttled(format_datetime(future, usegmt=True)))
        assert result is not None
        assert result > 0

    def test_http_date_in_past_returns_zero(self) -> None:
        """An HTTP-date in the past means retry now."""
        assert retry_after_seconds(_throttled("Mon, 01 Jan 2001 00:00:00 GMT")) == 0.0

    @pytest.mark.parametrize("value", ["1.5", "-3", "not-a-number-or-date", ""])
    def test_invalid_values_ignored(self, value: str) -> None:
        """Fractional, negative and unparseable values are ignored."""
        assert retry_after_seconds(_throttled(value)) is None

    @pytest.mark.parametrize("status", [200, 502, 504])
    def test_other_statuses_ignored(self, status: int) -> None:
        """Retry-After only counts on 429 and 503."""
        assert retry_after_seconds(_throttled("5", status)) is None

    def test_case_insensitive_plain_dict(self) -> None:
        """Header lookup ignores case on plain dicts."""
        assert retry_after_seconds(_HeaderOnlyResponse(503, {"retry-after": "10"})) == 10.0
        assert retry_after_seconds(_HeaderOnlyResponse(503, {"RETRY-AFTER": " 15 "})) == 15.0

    def test_missing(self) -> None:
        """No header means no server-requested wait."""
        assert retry_after_seconds(_SyncTestResponse(429, b"")) is None
        assert retry_after_seconds(_HeaderOnlyResponse(429, {"Content-Type": "text/html"})) is None


class TestBackoff:
    """Tests for HttpRetryConfig.backoff."""

    def test_exponential_progression(self) -> None:
        """Delay upper bound grows exponentially."""
        cfg = HttpRetryConfig(backoff_base=1.0, backoff_max=100.0)
        for attempt in range(4):
            upper = cfg.backoff_base * (2**attempt)
            for _ in range(20):
                assert 0 <= cfg.backoff(attempt) <= upper + 0.001

    def test_clamped_to_max(self) -> None:
        """Delay never exceeds backoff_max."""
        cfg = HttpRetryConfig(backoff_base=100.0, backoff_max=2.0)
        for _ in range(50):
            assert cfg.backoff(5) <= 2.0 + 0.001

    def test_zero_base_never_waits(self) -> None:
        """A zero base disables waiting between attempts."""
        cfg = HttpRetryConfig(backoff_base=0.0)
        assert cfg.backoff(3) == 0.0

    def test_server_delay_is_floor(self) -> None:
        """A longer server delay wins over the jittered backoff."""
        cfg = HttpRetryConfig(backoff_base=0.001, backoff_max=100.0)
        assert cfg.backoff(0, 10.0) >= 10.0

    def test_server_delay_clamped(self) -> None:
        """The server delay is capped at backoff_max."""
        cfg = HttpRetryConfig(backoff_base=0.001, backoff_max=5.0)
        assert cfg.backoff(0, 100.0) <= 5.0 + 0.001

    def test_respect_retry_after_false(self) -> None:
        """With respect_retry_after=False the server delay is ignored."""
        cfg = HttpRetryConfig(backoff_base=0.001, backoff_max=100.0, respect_retry_after=False)
        for _ in range(50):
            assert cfg.backoff(0, 999.0) <= 0.002


# ---------------------------------------------------------------------------
# RetryingTransport
# ---------------------------------------------------------------------------


class TestRetryingTransport:
    """Retrying a real client against the in-process server."""

    def test_retries_on_502(self, real_client: _SyncTestClient, sleeps: _SleepRecorder) -> None:
        """Retries on 502 and succeeds after transient failures."""
        wrapper = _TransientFailureClient(real_client, failure_status=502, failures=2)
        transport = RetryingTransport(wrapper, HttpRetryConfig(max_retries=3, backoff_base=0.001), _sleep=sleeps)
        resp = _client(transport).call("MakeHat", Size(inches=3))
        assert resp.unwrap().inches == 3
        assert wrapper.call_count == 3
        assert len(sleeps.delays) == 2

    def test_exhausted_returns_last_response(self, real_client: _SyncTestClient, sleeps: _SleepRecorder) -> None:
        """Once retries run out, the last response is classified by the client."""
        wrapper = _TransientFailureClient(real_client, failure_status=503, failures=10)
        transport = RetryingTransport(wrapper, HttpRetryConfig(max_retries=2, backoff_base=0.001), _sleep=sleeps)
        resp = _client(transport).call("MakeHat", Size(inches=3))
        assert resp.error is not None
        assert resp.error.code is ErrorCode.UNAVAILABLE
        assert resp.error.meta[INTERMEDIARY_META_KEY] == "true"
        assert wrapper.call_count == 3

    def test_non_retryable_status_not_retried(self, real_client: _SyncTestClient, sleeps: _SleepRecorder) -> None:
        """Statuses outside the retryable set are returned at once."""
        wrapper = _TransientFailureClient(real_client, failure_status=500, failures=1)
        transport = RetryingTransport(wrapper, HttpRetryConfig(), _sleep=sleeps)
        resp = _client(transport).call("MakeHat", Size(inches=3))
        assert resp.error is not None
        assert wrapper.call_count == 1
        assert sleeps.delays == []

    def test_twirp_errors_not_retried(self, real_client: _SyncTestClient, sleeps: _SleepRecorder) -> None:
        """Application errors with non-retryable statuses pass straight through."""
        wrapper = _TransientFailureClient(real_client, failures=0)
        transport = RetryingTransport(wrapper, HttpRetryConfig(), _sleep=sleeps)
        resp = _client(transport).call("MakeHat", Size(inches=0))
        assert resp.error is not None
        assert resp.error.code is ErrorCode.INVALID_ARGUMENT
        assert wrapper.call_count == 1

    def test_retry_after_used(self, real_client: _SyncTestClient, sleeps: _SleepRecorder) -> None:
        """The Retry-After header sets a floor on the delay."""
        wrapper = _TransientFailureClient(real_client, failure_status=429, failures=1, retry_after="7")
        transport = RetryingTransport(wrapper, HttpRetryConfig(backoff_base=0.001), _sleep=sleeps)
        assert _client(transport).call("MakeHat", Size(inches=1)).ok
        assert sleeps.delays == [7.0]

    def test_retry_after_ignored_on_502(self, real_client: _SyncTestClient, sleeps: _SleepRecorder) -> None:
        """A Retry-After on a 502 does not stretch the backoff."""
        wrapper = _TransientFailureClient(real_client, failure_status=502, failures=1, retry_after="7")
        transport = RetryingTransport(wrapper, HttpRetryConfig(backoff_base=0.001), _sleep=sleeps)
        assert _client(transport).call("MakeHat", Size(inches=1)).ok
        assert len(sleeps.delays) == 1
        assert sleeps.delays[0] <= 0.002

    def test_zero_retries(self, real_client: _SyncTestClient, sleeps: _SleepRecorder) -> None:
        """max_retries=0 sends exactly once."""
        wrapper = _TransientFailureClient(real_client, failure_status=502, failures=1)
        transport = RetryingTransport(wrapper, HttpRetryConfig(max_retries=0), _sleep=sleeps)
        assert not _client(transport).call("MakeHat", Size(inches=1)).ok
        assert wrapper.call_count == 1

    @pytest.mark.parametrize(
        "exc",
        [httpx.ConnectError("Connection refused"), httpx.ReadTimeout("Read timed out")],
        ids=["connect", "timeout"],
    )
    def test_connection_errors_retried(
        self, real_client: _SyncTestClient, sleeps: _SleepRecorder, exc: Exception
    ) -> None:
        """Connection errors and timeouts are retried."""
        wrapper = _RaisingClient(real_client, exc, failures=2)
        transport = RetryingTransport(wrapper, HttpRetryConfig(backoff_base=0.001), _sleep=sleeps)
        assert _client(transport).call("MakeHat", Size(inches=1)).ok
        assert wrapper.call_count == 3

    def test_connection_errors_exhausted(self, real_client: _SyncTestClient, sleeps: _SleepRecorder) -> None:
        """The last connection error propagates once retries run out."""
        wrapper = _RaisingClient(real_client, httpx.ConnectError("Connection refused"), failures=10)
        transport = RetryingTransport(wrapper, HttpRetryConfig(max_retries=2), _sleep=sleeps)
        with pytest.raises(httpx.ConnectError):
            _client(transport).call("MakeHat", Size(inches=1))
        assert wrapper.call_count == 3

    def test_connection_retry_disabled(self, real_client: _SyncTestClient, sleeps: _SleepRecorder) -> None:
        """retry_on_connection_error=False raises on the first failure."""
        wrapper = _RaisingClient(real_client, httpx.ConnectError("Connection refused"), failures=1)
        transport = RetryingTransport(wrapper, HttpRetryConfig(retry_on_connection_error=False), _sleep=sleeps)
        with pytest.raises(httpx.ConnectError):
            _client(transport).call("MakeHat", Size(inches=1))
        assert wrapper.call_count == 1

    def test_other_errors_not_retried(self, real_client: _SyncTestClient, sleeps: _SleepRecorder) -> None:
        """Errors that are not transient propagate immediately."""
        wrapper = _RaisingClient(real_client, httpx.UnsupportedProtocol("ftp"), failures=1)
        transport = RetryingTransport(wrapper, HttpRetryConfig(), _sleep=sleeps)
        with pytest.raises(httpx.UnsupportedProtocol):
            _client(transport).call("MakeHat", Size(inches=1))
        assert wrapper.call_count == 1

    def test_retries_logged(
        self, real_client: _SyncTestClient, sleeps: _SleepRecorder, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Each retry is logged at DEBUG."""
        wrapper = _TransientFailureClient(real_client, failure_status=504, failures=1)
        transport = RetryingTransport(wrapper, HttpRetryConfig(backoff_base=0.001), _sleep=sleeps)
        with caplog.at_level(logging.DEBUG, logger="twirp_rpc.http.retry"):
            _client(transport).call("MakeHat", Size(inches=1))
        messages = [r.getMessage() for r in caplog.records if r.name == "twirp_rpc.http.retry"]
        assert len(messages) == 1
        assert messages[0].startswith("HTTP 504 on POST http://testserver/twirp/example.Haberdasher/MakeHat")

    def test_default_config_and_close(self, real_client: _SyncTestClient) -> None:
        """Defaults to HttpRetryConfig() and closes the wrapped client."""

        class Closable:
            closed = False

            def post(self, url: str, *, content: bytes, headers: dict[str, str]) -> _SyncTestResponse:
                return _SyncTestResponse(200, b"")

            def close(self) -> None:
                self.closed = True

        inner = Closable()
        transport = RetryingTransport(inner)
        assert transport.config == HttpRetryConfig()
        transport.close()
        assert inner.closed
