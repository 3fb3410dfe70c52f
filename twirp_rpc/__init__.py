# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Twirp RPC protocol engine: protobuf services over HTTP POST."""

import logging

from twirp_rpc.client import (
    INTERMEDIARY_META_KEY,
    Client,
    ClientResp,
    JSONClient,
    error_from_response,
)
from twirp_rpc.context import HttpRequest, HttpResponse, RequestContext
from twirp_rpc.descriptor import RpcDefinition, ServiceBuilder, ServiceDescriptor
from twirp_rpc.encoding import JSON, JSON_STRICT, PROTO, VALID_CONTENT_TYPES
from twirp_rpc.errors import (
    ERROR_CODES_TO_HTTP_STATUS,
    ErrorCode,
    TwirpError,
    TwirpException,
    code_to_http_status,
    is_valid_code,
)
from twirp_rpc.hooks import HookPipeline
from twirp_rpc.http import HttpRetryConfig, RetryingTransport, make_sync_client, make_wsgi_app
from twirp_rpc.service import Service

__all__ = [
    # Errors
    "ERROR_CODES_TO_HTTP_STATUS",
    "ErrorCode",
    "TwirpError",
    "TwirpException",
    "code_to_http_status",
    "is_valid_code",
    # Content types
    "JSON",
    "JSON_STRICT",
    "PROTO",
    "VALID_CONTENT_TYPES",
    # Definitions
    "RpcDefinition",
    "ServiceBuilder",
    "ServiceDescriptor",
    # Server
    "HookPipeline",
    "HttpRequest",
    "HttpResponse",
    "RequestContext",
    "Service",
    # Client
    "INTERMEDIARY_META_KEY",
    "Client",
    "ClientResp",
    "JSONClient",
    "error_from_response",
    # HTTP
    "HttpRetryConfig",
    "RetryingTransport",
    "make_sync_client",
    "make_wsgi_app",
]

# Attach NullHandler to the package logger so library users don't get
# "No handler found" warnings.
logging.getLogger("twirp_rpc").addHandler(logging.NullHandler())
