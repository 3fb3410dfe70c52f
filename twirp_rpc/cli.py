# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Command-line interface for Twirp services.

Provides a ``call`` command that invokes any rpc of any Twirp service over
JSON, without generated message classes.

Usage::

    twirp-rpc --url http://localhost:8080/twirp call example.Haberdasher MakeHat inches=12
    twirp-rpc --url http://localhost:8080/twirp call example.Haberdasher MakeHat --json '{"inches": 12}'

"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from typing import Annotated

import httpx
import typer

from twirp_rpc.client import HttpClient, JSONClient
from twirp_rpc.errors import TwirpError
from twirp_rpc.http import HttpRetryConfig, RetryingTransport
from twirp_rpc.logging_utils import TwirpJsonFormatter

# ---------------------------------------------------------------------------
# CLI config
# ---------------------------------------------------------------------------


@dataclass
class _CliConfig:
    """Holds resolved CLI options."""

    url: str | None = None
    timeout: float = 30.0
    retries: int = 0
    pretty: bool = False
    verbose: bool = False
    log_json: bool = False


app = typer.Typer(
    name="twirp-rpc",
    help="CLI client for Twirp services.",
    add_completion=False,
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def _main(
    ctx: typer.Context,
    url: Annotated[
        str | None, typer.Option("--url", "-u", help="Base URL including the prefix, e.g. http://host:8080/twirp")
    ] = None,
    timeout: Annotated[float, typer.Option("--timeout", "-t", help="Request timeout in seconds")] = 30.0,
    retries: Annotated[int, typer.Option("--retries", help="Retries on transient HTTP failures")] = 0,
    pretty: Annotated[bool, typer.Option("--pretty", help="Indent JSON output")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log twirp_rpc debug output on stderr")] = False,
    log_json: Annotated[bool, typer.Option("--log-json", help="Emit --verbose logs as JSON lines")] = False,
) -> None:
    """Configure transport and output options."""
    if retries < 0:
        raise typer.BadParameter("--retries must be >= 0")
    ctx.obj = _CliConfig(url=url, timeout=timeout, retries=retries, pretty=pretty, verbose=verbose, log_json=log_json)
    if verbose:
        _configure_logging(log_json)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _configure_logging(log_json: bool) -> None:
    """Send ``twirp_rpc`` DEBUG logs to stderr."""
    handler = logging.StreamHandler(sys.stderr)
    if log_json:
        handler.setFormatter(TwirpJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    handler.set_name("twirp_rpc.cli")
    logger = logging.getLogger("twirp_rpc")
    for existing in [h for h in logger.handlers if h.get_name() == "twirp_rpc.cli"]:
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)


def _coerce_value(value_str: str) -> object:
    """Interpret a key=value argument as JSON, falling back to the raw string.

    ``inches=12`` sends a number, ``color=red`` sends a string, and
    ``tags=["a","b"]`` sends a list.
    """
    try:
        return json.loads(value_str)
    except ValueError:
        return value_str


def _parse_key_value_args(args: list[str]) -> dict[str, object]:
    """Parse key=value args.

    Raises:
        typer.BadParameter: If an argument has no ``=``.

    """
    result: dict[str, object] = {}
    for arg in args:
        if "=" not in arg:
            raise typer.BadParameter(f"Expected key=value, got: {arg}")
        key, value = arg.split("=", 1)
        result[key] = _coerce_value(value)
    return result


def _parse_headers(headers: list[str]) -> dict[str, str]:
    """Parse ``'Name: value'`` header options."""
    result: dict[str, str] = {}
    for header in headers:
        name, sep, value = header.partition(":")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Expected 'Name: value' header, got: {header}")
        result[name.strip()] = value.strip()
    return result


def _split_service(full_name: str) -> tuple[str, str]:
    """Split ``package.Service`` into ``(package, service)``."""
    package, _, service = full_name.rpartition(".")
    return package, service


def _make_http_client(config: _CliConfig) -> HttpClient:
    """Build the HTTP client used for calls."""
    client: HttpClient = httpx.Client(follow_redirects=False, timeout=config.timeout)
    if config.retries:
        client = RetryingTransport(client, HttpRetryConfig(max_retries=config.retries))
    return client


def _print_json(data: object, *, pretty: bool = False) -> None:
    """Print JSON to stdout."""
    if pretty:
        typer.echo(json.dumps(data, indent=2, default=str))
    else:
        typer.echo(json.dumps(data, default=str))


def _emit_twirp_error(error: TwirpError) -> None:
    """Write a TwirpError to stderr in its wire form."""
    typer.echo(json.dumps({"error": error.to_dict()}, default=str), err=True)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def call(
    ctx: typer.Context,
    service: Annotated[str, typer.Argument(help="Service full name, e.g. example.Haberdasher")],
    method: Annotated[str, typer.Argument(help="Wire method name, e.g. MakeHat")],
    args: Annotated[list[str] | None, typer.Argument(help="key=value request fields")] = None,
    json_input: Annotated[str | None, typer.Option("--json", "-j", help="JSON request body")] = None,
    strict: Annotated[bool, typer.Option("--strict", help="Reject unknown fields (strict JSON)")] = False,
    header: Annotated[list[str] | None, typer.Option("--header", "-H", help="Extra header 'Name: value'")] = None,
) -> None:
    """Call a method on a Twirp service and print the response as JSON."""
    config: _CliConfig = ctx.obj
    if not config.url:
        raise typer.BadParameter("--url is required")
    if json_input and args:
        raise typer.BadParameter("--json and key=value args are mutually exclusive")

    attrs: dict[str, object]
    if json_input:
        try:
            attrs = json.loads(json_input)
        except ValueError as e:
            raise typer.BadParameter(f"--json is not valid JSON: {e}") from None
        if not isinstance(attrs, dict):
            raise typer.BadParameter("--json must be a JSON object")
    else:
        attrs = _parse_key_value_args(args or [])
    headers = _parse_headers(header or [])

    package, name = _split_service(service)
    if not name:
        raise typer.BadParameter(f"Invalid service name: {service!r}")

    http_client = _make_http_client(config)
    client = JSONClient(config.url, service=name, package=package, strict=strict, http_client=http_client)
    try:
        resp = client.call(method, attrs, headers=headers)
    except httpx.HTTPError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    except ValueError as e:
        typer.echo(f"Error: invalid response: {e}", err=True)
        raise typer.Exit(1) from None
    finally:
        http_client.close()

    if resp.error is not None:
        _emit_twirp_error(resp.error)
        raise typer.Exit(1)
    _print_json(resp.data, pretty=config.pretty)
