# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Twirp error codes, their HTTP status mapping, and the error value type.

``TwirpError`` is a *value*: handlers return it, clients receive it.  It is
never raised.  ``TwirpException`` wraps one for call sites that prefer
exceptions (``ClientResp.unwrap()``, handlers that raise instead of return).

Wire form::

    {"code": "<error_code>", "msg": "<string>", "meta": {"<k>": "<v>"}}

``meta`` is omitted entirely when empty.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Final


class ErrorCode(StrEnum):
    """Closed set of Twirp error codes."""

    CANCELED = "canceled"
    INVALID_ARGUMENT = "invalid_argument"
    MALFORMED = "malformed"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    NOT_FOUND = "not_found"
    BAD_ROUTE = "bad_route"
    ALREADY_EXISTS = "already_exists"
    PERMISSION_DENIED = "permission_denied"
    UNAUTHENTICATED = "unauthenticated"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    FAILED_PRECONDITION = "failed_precondition"
    ABORTED = "aborted"
    OUT_OF_RANGE = "out_of_range"
    INTERNAL = "internal"
    UNKNOWN = "unknown"
    UNIMPLEMENTED = "unimplemented"
    UNAVAILABLE = "unavailable"
    DATA_LOSS = "data_loss"


ERROR_CODES_TO_HTTP_STATUS: Final[Mapping[ErrorCode, int]] = MappingProxyType(
    {
        ErrorCode.CANCELED: 408,
        ErrorCode.INVALID_ARGUMENT: 400,
        ErrorCode.MALFORMED: 400,
        ErrorCode.DEADLINE_EXCEEDED: 408,
        ErrorCode.NOT_FOUND: 404,
        ErrorCode.BAD_ROUTE: 404,
        ErrorCode.ALREADY_EXISTS: 409,
        ErrorCode.PERMISSION_DENIED: 403,
        ErrorCode.UNAUTHENTICATED: 401,
        ErrorCode.RESOURCE_EXHAUSTED: 429,
        ErrorCode.FAILED_PRECONDITION: 412,
        ErrorCode.ABORTED: 409,
        ErrorCode.OUT_OF_RANGE: 400,
        ErrorCode.INTERNAL: 500,
        ErrorCode.UNKNOWN: 500,
        ErrorCode.UNIMPLEMENTED: 501,
        ErrorCode.UNAVAILABLE: 503,
        ErrorCode.DATA_LOSS: 500,
    }
)


_VALID_CODES: Final[frozenset[str]] = frozenset(code.value for code in ErrorCode)


def is_valid_code(code: object) -> bool:
    """Return ``True`` if *code* names one of the Twirp error codes."""
    return isinstance(code, str) and code in _VALID_CODES


def code_to_http_status(code: ErrorCode | str) -> int:
    """Return the HTTP status for a Twirp error code.

    Raises:
        ValueError: If *code* is not a valid error code.

    """
    return ERROR_CODES_TO_HTTP_STATUS[ErrorCode(code)]


def _validate_meta(meta: Mapping[str, str] | None) -> Mapping[str, str]:
    if meta is None:
        return MappingProxyType({})
    if not isinstance(meta, Mapping):
        raise TypeError(f"TwirpError meta must be a mapping, but it is a {type(meta).__name__}")
    for key, value in meta.items():
        if not isinstance(key, str):
            raise TypeError(f"TwirpError meta keys must be strings, got {type(key).__name__} {key!r}")
        if not isinstance(value, str):
            raise TypeError(
                f"TwirpError meta values must be strings, but key {key!r} has the value "
                f"<{type(value).__name__}> {value!r}"
            )
    return MappingProxyType(dict(meta))


@dataclass(frozen=True)
class TwirpError:
    """An error response from a Twirp service.

    Attributes:
        code: One of the :class:`ErrorCode` values.
        msg: Human-readable error message.
        meta: String-to-string metadata, read-only.
        cause: The exception this error wraps, if any.  Available to hooks
            for inspection but never serialized.

    """

    code: ErrorCode
    msg: str = ""
    meta: Mapping[str, str] = field(default_factory=dict)
    cause: BaseException | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        """Validate the code and freeze the metadata."""
        try:
            code = ErrorCode(self.code)
        except ValueError:
            raise ValueError(f"Invalid Twirp error code: {self.code!r}") from None
        object.__setattr__(self, "code", code)
        object.__setattr__(self, "msg", str(self.msg))
        object.__setattr__(self, "meta", _validate_meta(self.meta))

    @property
    def http_status(self) -> int:
        """HTTP status used when this error is rendered by a server."""
        return ERROR_CODES_TO_HTTP_STATUS[self.code]

    def with_meta(self, **meta: str) -> TwirpError:
        """Return a copy with *meta* merged over the existing metadata."""
        return TwirpError(self.code, self.msg, {**self.meta, **meta}, cause=self.cause)

    def to_dict(self) -> dict[str, Any]:
        """Key-value representation, ready for JSON serialization."""
        d: dict[str, Any] = {"code": self.code.value, "msg": self.msg}
        if self.meta:
            d["meta"] = dict(self.meta)
        return d

    def to_json(self) -> bytes:
        """Serialize to the compact JSON wire form."""
        return json.dumps(self.to_dict(), separators=(",", ":")).encode()

    @classmethod
    def from_dict(cls, attrs: object) -> TwirpError | None:
        """Build an error from a decoded wire body.

        Returns ``None`` when *attrs* is not a trustworthy Twirp error:
        not an object, missing or unknown ``code``, or metadata that is not
        a string-to-string object.
        """
        if not isinstance(attrs, dict):
            return None
        code = attrs.get("code")
        if not is_valid_code(code):
            return None
        meta = attrs.get("meta") or {}
        if not isinstance(meta, dict) or not all(isinstance(k, str) and isinstance(v, str) for k, v in meta.items()):
            return None
        msg = attrs.get("msg")
        return cls(ErrorCode(code), "" if msg is None else str(msg), meta)

    @classmethod
    def internal_with(cls, exc: BaseException) -> TwirpError:
        """Wrap an exception as an ``internal`` error.

        The message is ``str(exc)`` and ``meta["cause"]`` is the exception
        class name.  The exception itself is kept on :attr:`cause`.
        """
        return cls(ErrorCode.INTERNAL, str(exc), {"cause": type(exc).__name__}, cause=exc)

    # Per-code constructors, so that an invalid code can never be used.

    @classmethod
    def canceled(cls, msg: str, **meta: str) -> TwirpError:
        """Build a ``canceled`` error."""
        return cls(ErrorCode.CANCELED, msg, meta)

    @classmethod
    def invalid_argument(cls, msg: str, **meta: str) -> TwirpError:
        """Build an ``invalid_argument`` error."""
        return cls(ErrorCode.INVALID_ARGUMENT, msg, meta)

    @classmethod
    def malformed(cls, msg: str, **meta: str) -> TwirpError:
        """Build a ``malformed`` error."""
        return cls(ErrorCode.MALFORMED, msg, meta)

    @classmethod
    def deadline_exceeded(cls, msg: str, **meta: str) -> TwirpError:
        """Build a ``deadline_exceeded`` error."""
        return cls(ErrorCode.DEADLINE_EXCEEDED, msg, meta)

    @classmethod
    def not_found(cls, msg: str, **meta: str) -> TwirpError:
        """Build a ``not_found`` error."""
        return cls(ErrorCode.NOT_FOUND, msg, meta)

    @classmethod
    def bad_route(cls, msg: str, **meta: str) -> TwirpError:
        """Build a ``bad_route`` error."""
        return cls(ErrorCode.BAD_ROUTE, msg, meta)

    @classmethod
    def already_exists(cls, msg: str, **meta: str) -> TwirpError:
        """Build an ``already_exists`` error."""
        return cls(ErrorCode.ALREADY_EXISTS, msg, meta)

    @classmethod
    def permission_denied(cls, msg: str, **meta: str) -> TwirpError:
        """Build a ``permission_denied`` error."""
        return cls(ErrorCode.PERMISSION_DENIED, msg, meta)

    @classmethod
    def unauthenticated(cls, msg: str, **meta: str) -> TwirpError:
        """Build an ``unauthenticated`` error."""
        return cls(ErrorCode.UNAUTHENTICATED, msg, meta)

    @classmethod
    def resource_exhausted(cls, msg: str, **meta: str) -> TwirpError:
        """Build a ``resource_exhausted`` error."""
        return cls(ErrorCode.RESOURCE_EXHAUSTED, msg, meta)

    @classmethod
    def failed_precondition(cls, msg: str, **meta: str) -> TwirpError:
        """Build a ``failed_precondition`` error."""
        return cls(ErrorCode.FAILED_PRECONDITION, msg, meta)

    @classmethod
    def aborted(cls, msg: str, **meta: str) -> TwirpError:
        """Build an ``aborted`` error."""
        return cls(ErrorCode.ABORTED, msg, meta)

    @classmethod
    def out_of_range(cls, msg: str, **meta: str) -> TwirpError:
        """Build an ``out_of_range`` error."""
        return cls(ErrorCode.OUT_OF_RANGE, msg, meta)

    @classmethod
    def internal(cls, msg: str, **meta: str) -> TwirpError:
        """Build an ``internal`` error."""
        return cls(ErrorCode.INTERNAL, msg, meta)

    @classmethod
    def unknown(cls, msg: str, **meta: str) -> TwirpError:
        """Build an ``unknown`` error."""
        return cls(ErrorCode.UNKNOWN, msg, meta)

    @classmethod
    def unimplemented(cls, msg: str, **meta: str) -> TwirpError:
        """Build an ``unimplemented`` error."""
        return cls(ErrorCode.UNIMPLEMENTED, msg, meta)

    @classmethod
    def unavailable(cls, msg: str, **meta: str) -> TwirpError:
        """Build an ``unavailable`` error."""
        return cls(ErrorCode.UNAVAILABLE, msg, meta)

    @classmethod
    def data_loss(cls, msg: str, **meta: str) -> TwirpError:
        """Build a ``data_loss`` error."""
        return cls(ErrorCode.DATA_LOSS, msg, meta)


class TwirpException(Exception):
    """Exception carrying a :class:`TwirpError`.

    Raised by ``ClientResp.unwrap()``.  Handlers may raise it instead of
    returning the error; the dispatcher renders the wrapped error as is.
    """

    def __init__(self, error: TwirpError) -> None:
        """Initialize with the wrapped error."""
        self.error = error
        super().__init__(f"{error.code.value}: {error.msg}")

    @property
    def code(self) -> ErrorCode:
        """Code of the wrapped error."""
        return self.error.code

    @property
    def msg(self) -> str:
        """Message of the wrapped error."""
        return self.error.msg

    @property
    def meta(self) -> Mapping[str, str]:
        """Metadata of the wrapped error."""
        return self.error.meta
