# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Ordered hook lists invoked by the dispatcher.

Four extension points, each appended to at setup time and run in insertion
order:

- ``before(request, ctx)`` after routing and decoding, before the handler.
  Returning a :class:`TwirpError` aborts the call.
- ``on_success(ctx)`` after the handler produced ``ctx.output``.  Returning
  a :class:`TwirpError` replaces the response.
- ``on_error(error, ctx)`` for every rendered Twirp error.  Observe only;
  the return value is ignored.
- ``exception_raised(exc, ctx)`` when an unexpected exception is contained
  by the dispatcher.  Diagnostic only.

Each registration method returns the hook, so it doubles as a decorator::

    @service.before
    def require_user(request, ctx):
        ...
"""

from __future__ import annotations

from collections.abc import Callable

from twirp_rpc.context import HttpRequest, RequestContext
from twirp_rpc.errors import TwirpError

type BeforeHook = Callable[[HttpRequest, RequestContext], TwirpError | None]
type SuccessHook = Callable[[RequestContext], TwirpError | None]
type ErrorHook = Callable[[TwirpError, RequestContext], object]
type ExceptionHook = Callable[[BaseException, RequestContext], object]


class HookPipeline:
    """Holds the four hook lists of a service."""

    __slots__ = ("_before", "_exception_raised", "_on_error", "_on_success")

    def __init__(self) -> None:
        """Start with no hooks."""
        self._before: list[BeforeHook] = []
        self._on_success: list[SuccessHook] = []
        self._on_error: list[ErrorHook] = []
        self._exception_raised: list[ExceptionHook] = []

    def before(self, hook: BeforeHook) -> BeforeHook:
        """Register a before hook."""
        self._before.append(hook)
        return hook

    def on_success(self, hook: SuccessHook) -> SuccessHook:
        """Register a success hook."""
        self._on_success.append(hook)
        return hook

    def on_error(self, hook: ErrorHook) -> ErrorHook:
        """Register an error hook."""
        self._on_error.append(hook)
        return hook

    def exception_raised(self, hook: ExceptionHook) -> ExceptionHook:
        """Register an exception hook."""
        self._exception_raised.append(hook)
        return hook

    def run_before(self, request: HttpRequest, ctx: RequestContext) -> TwirpError | None:
        """Run before hooks, stopping at the first one that returns an error."""
        for hook in self._before:
            result = hook(request, ctx)
            if isinstance(result, TwirpError):
                return result
        return None

    def run_on_success(self, ctx: RequestContext) -> TwirpError | None:
        """Run success hooks, stopping at the first one that returns an error."""
        for hook in self._on_success:
            result = hook(ctx)
            if isinstance(result, TwirpError):
                return result
        return None

    def run_on_error(self, error: TwirpError, ctx: RequestContext) -> None:
        """Run every error hook."""
        for hook in self._on_error:
            hook(error, ctx)

    def run_exception_raised(self, exc: BaseException, ctx: RequestContext) -> BaseException:
        """Run exception hooks and return the exception to report.

        Exceptions raised here are not contained again: if a hook fails, its
        exception replaces *exc* and the remaining hooks are skipped.
        """
        try:
            for hook in self._exception_raised:
                hook(exc, ctx)
        except Exception as hook_exc:
            return hook_exc
        return exc
