# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Content types and message (de)serialization.

Binary payloads use the protobuf wire format; JSON payloads go through
``google.protobuf.json_format`` with original proto field names and
default-valued fields always emitted, so both sides of a call see the same
document regardless of which fields happen to be zero.
"""

from __future__ import annotations

import json
from typing import Any, Final

from google.protobuf import json_format
from google.protobuf.message import Message

PROTO: Final = "application/protobuf"
JSON: Final = "application/json"
JSON_STRICT: Final = "application/json; strict=true"
"""Opt-in JSON variant that rejects unknown fields.  Handy with ``curl``."""

VALID_CONTENT_TYPES: Final[tuple[str, ...]] = (PROTO, JSON, JSON_STRICT)


def is_valid_content_type(content_type: str | None) -> bool:
    """Return ``True`` if *content_type* is exactly one of the Twirp content types."""
    return content_type in VALID_CONTENT_TYPES


def _check_content_type(content_type: str) -> None:
    if not is_valid_content_type(content_type):
        raise ValueError(f"Invalid content_type {content_type!r}. Expected one of {list(VALID_CONTENT_TYPES)}")


def decode[M: Message](data: bytes, msg_class: type[M], content_type: str) -> M:
    """Decode *data* into an instance of *msg_class*.

    Args:
        data: Raw request or response body.
        msg_class: Generated protobuf message class.
        content_type: One of :data:`VALID_CONTENT_TYPES`.

    Returns:
        The decoded message.

    Raises:
        ValueError: If *content_type* is not recognized.
        google.protobuf.message.DecodeError: On malformed binary payloads.
        google.protobuf.json_format.ParseError: On malformed JSON payloads,
            including an empty body (or unknown fields with :data:`JSON_STRICT`).
            Empty bytes are only valid for protobuf.

    """
    _check_content_type(content_type)
    if content_type == PROTO:
        return msg_class.FromString(data)
    msg = msg_class()
    json_format.Parse(data, msg, ignore_unknown_fields=content_type == JSON)
    return msg


def encode(msg: Message, content_type: str) -> bytes:
    """Encode *msg* for the given content type.

    Raises:
        ValueError: If *content_type* is not recognized.

    """
    _check_content_type(content_type)
    if content_type == PROTO:
        return msg.SerializeToString()
    attrs = json_format.MessageToDict(
        msg,
        always_print_fields_with_no_presence=True,
        preserving_proto_field_name=True,
    )
    return encode_json(attrs)


def coerce[M: Message](value: M | dict[str, Any] | None, msg_class: type[M]) -> M:
    """Return *value* as a *msg_class* instance, building it from attributes if needed.

    Raises:
        TypeError: If *value* is neither a *msg_class* instance nor a dict.

    """
    if value is None:
        return msg_class()
    if isinstance(value, msg_class):
        return value
    if isinstance(value, dict):
        return msg_class(**value)
    raise TypeError(f"Expected {msg_class.__name__} or dict, got {type(value).__name__}")


def encode_json(attrs: Any) -> bytes:
    """Serialize plain attributes (error bodies, dynamic JSON clients) as compact JSON."""
    return json.dumps(attrs, separators=(",", ":")).encode()


def decode_json(data: bytes) -> Any:
    """Parse a JSON body.

    Raises:
        ValueError: If *data* is not valid JSON (``json.JSONDecodeError``
            and ``UnicodeDecodeError`` are both ``ValueError`` subclasses).

    """
    return json.loads(data)
