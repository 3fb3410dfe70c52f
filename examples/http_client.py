"""Client for the haberdasher example server.

Uses :class:`~twirp_rpc.JSONClient`, so no message classes are needed on
this side, and retries transient failures with ``RetryingTransport``.

Start the server first::

    python examples/http_server.py

Then run this client::

    python examples/http_client.py
"""

from __future__ import annotations

import sys

import httpx

from twirp_rpc import JSONClient
from twirp_rpc.http import HttpRetryConfig, RetryingTransport

PORT = 8080


def main(port: int = PORT) -> None:
    """Connect to the HTTP server and make calls."""
    transport = RetryingTransport(httpx.Client(timeout=5.0), HttpRetryConfig(max_retries=2))
    with JSONClient(
        f"http://127.0.0.1:{port}/twirp", service="Haberdasher", package="example", http_client=transport
    ) as client:
        for inches in (12, 0):
            resp = client.call("MakeHat", {"inches": inches})
            if resp.error is None:
                print(f"MakeHat({inches}): {resp.data}")
            else:
                print(f"MakeHat({inches}) failed: {resp.error.code.value}: {resp.error.msg}")
    transport.close()


if __name__ == "__main__":
    main(int(sys.argv[1]) if len(sys.argv) > 1 else PORT)
