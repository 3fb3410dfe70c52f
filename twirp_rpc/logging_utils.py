# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""JSON formatter for the ``twirp_rpc`` loggers.

:class:`TwirpJsonFormatter` renders each record as one JSON line.  Records
from ``twirp_rpc.access`` always carry the full access schema (``service``,
``method``, ``content_type``, ``status``, ``http_status``, ``error_code``,
``duration_ms``, ``request_id``) with ``null`` for missing values, so log
pipelines can rely on the keys.  Any record formatted while a request is
being served (handler logging included) is stamped with that request's
``X-Request-ID``.  Remaining ``extra`` fields are passed through.

This module is **not** auto-imported by ``twirp_rpc``; import it explicitly::

    handler = logging.StreamHandler()
    handler.setFormatter(TwirpJsonFormatter())
    logging.getLogger("twirp_rpc").addHandler(handler)
"""

from __future__ import annotations

import json
import logging

from twirp_rpc.context import _current_request_id

__all__ = ["ACCESS_LOG_FIELDS", "TwirpJsonFormatter"]

ACCESS_LOGGER = "twirp_rpc.access"

ACCESS_LOG_FIELDS: tuple[str, ...] = (
    "service",
    "method",
    "content_type",
    "status",
    "http_status",
    "error_code",
    "duration_ms",
    "request_id",
)

# Present on every LogRecord; anything else arrived through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
}

# Keys the formatter owns; ``extra`` cannot replace them.
_OWN_KEYS: frozenset[str] = frozenset({"timestamp", "level", "logger", "message", "exception", "stack_info"})


class TwirpJsonFormatter(logging.Formatter):
    """Format records as single-line JSON objects.

    Key order is ``timestamp``, ``level``, ``logger``, ``message``, the
    access fields (access records only), ``request_id``, then other extras.
    Values that are not JSON serializable are written with ``str``.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format *record*."""
        extras = {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS and k not in _OWN_KEYS}
        obj: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.name == ACCESS_LOGGER:
            for key in ACCESS_LOG_FIELDS:
                obj[key] = extras.pop(key, None)
        request_id = extras.pop("request_id", None) or obj.get("request_id") or _current_request_id.get()
        if request_id:
            obj["request_id"] = request_id
        obj.update(extras)
        if record.exc_info and record.exc_info[1]:
            obj["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            obj["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(obj, default=str)
