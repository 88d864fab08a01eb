# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Endpoint and retry configuration.

Both values are frozen dataclasses built once per run and passed explicitly
into the client and the workflow. Nothing below the CLI reads the process
environment; :meth:`EndpointConfig.from_env` exists for that edge only.

Environment Variables:
    SOLANA_RPC_URL: JSON-RPC endpoint, defaults to the public devnet.
    SOLANA_RPC_TOKEN: Optional bearer token for authenticated endpoints.

Examples:
    Devnet with a slower polling budget::

        endpoint = EndpointConfig("https://api.devnet.solana.com")
        budget = RetryBudget(max_attempts=60, delay=1.0)

    Authenticated endpoint that skips preflight simulation::

        endpoint = EndpointConfig(
            "https://rpc.example.com",
            auth_token="secret",
            skip_preflight=True,
        )
"""

import math
import os
import unittest
from dataclasses import dataclass
from typing import Mapping, Optional

import httpx

from .exceptions import ConfigError

DEFAULT_RPC_URL = "https://api.devnet.solana.com"
RPC_URL_ENV = "SOLANA_RPC_URL"
RPC_TOKEN_ENV = "SOLANA_RPC_TOKEN"

COMMITMENT_LEVELS = ("processed", "confirmed", "finalized")


@dataclass(frozen=True)
class EndpointConfig:
    """Where and how to reach the ledger endpoint.

    Attributes:
        url: JSON-RPC endpoint URL, http or https.
        auth_token: Optional bearer token sent as ``Authorization``.
        http2: Negotiate HTTP/2 when the endpoint supports it.
        timeout: Per-request timeout in seconds.
        skip_preflight: Ask the endpoint not to simulate before forwarding.
        preflight_commitment: Commitment level used for preflight simulation.
    """

    url: str
    auth_token: Optional[str] = None
    http2: bool = True
    timeout: float = 60.0
    skip_preflight: bool = False
    preflight_commitment: str = "confirmed"

    def __post_init__(self):
        if not self.url:
            raise ConfigError("endpoint url is required")
        try:
            parsed = httpx.URL(self.url)
        except httpx.InvalidURL as e:
            raise ConfigError(f"invalid endpoint url {self.url!r}: {e}")
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise ConfigError(f"endpoint url must be http(s): {self.url!r}")
        if self.auth_token is not None and not self.auth_token.strip():
            raise ConfigError("auth token must not be blank")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        if self.preflight_commitment not in COMMITMENT_LEVELS:
            raise ConfigError(
                f"unknown commitment {self.preflight_commitment!r}, "
                f"expected one of {', '.join(COMMITMENT_LEVELS)}"
            )

    @staticmethod
    def from_env(
        environ: Optional[Mapping[str, str]] = None,
        url: Optional[str] = None,
        auth_token: Optional[str] = None,
        **kwargs,
    ) -> "EndpointConfig":
        """Build a config from explicit values, falling back to the environment."""
        environ = os.environ if environ is None else environ
        return EndpointConfig(
            url=url or environ.get(RPC_URL_ENV, DEFAULT_RPC_URL),
            auth_token=auth_token or environ.get(RPC_TOKEN_ENV) or None,
            **kwargs,
        )


@dataclass(frozen=True)
class RetryBudget:
    """Bounds the confirmation polling loop.

    Attributes:
        max_attempts: Number of status polls before giving up, at least 1.
        delay: Seconds slept between consecutive polls.
    """

    max_attempts: int = 30
    delay: float = 2.0

    def __post_init__(self):
        if isinstance(self.max_attempts, bool) or not isinstance(
            self.max_attempts, int
        ):
            raise ConfigError(f"max_attempts must be an integer: {self.max_attempts!r}")
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if isinstance(self.delay, bool) or not isinstance(self.delay, (int, float)):
            raise ConfigError(f"delay must be a number of seconds: {self.delay!r}")
        if not math.isfinite(self.delay) or self.delay < 0:
            raise ConfigError(f"delay must be finite and not negative, got {self.delay}")


class Test(unittest.TestCase):
    def test_endpoint_validation(self):
        EndpointConfig("http://127.0.0.1:8899")
        for url in ["", "ftp://example.com", "not a url", "https://"]:
            with self.assertRaises(ConfigError, msg=url):
                EndpointConfig(url)
        with self.assertRaises(ConfigError):
            EndpointConfig(DEFAULT_RPC_URL, auth_token="  ")
        with self.assertRaises(ConfigError):
            EndpointConfig(DEFAULT_RPC_URL, preflight_commitment="max")
        with self.assertRaises(ConfigError):
            EndpointConfig(DEFAULT_RPC_URL, timeout=0)

    def test_from_env(self):
        config = EndpointConfig.from_env({})
        self.assertEqual(config.url, DEFAULT_RPC_URL)
        self.assertIsNone(config.auth_token)

        environ = {RPC_URL_ENV: "https://rpc.example.com", RPC_TOKEN_ENV: "tok"}
        config = EndpointConfig.from_env(environ)
        self.assertEqual(config.url, "https://rpc.example.com")
        self.assertEqual(config.auth_token, "tok")

        config = EndpointConfig.from_env(
            environ, url="http://localhost:8899", skip_preflight=True
        )
        self.assertEqual(config.url, "http://localhost:8899")
        self.assertTrue(config.skip_preflight)

    def test_retry_budget(self):
        self.assertEqual(RetryBudget(1, 0).max_attempts, 1)
        for attempts in [0, -3, 2.5, True]:
            with self.assertRaises(ConfigError, msg=repr(attempts)):
                RetryBudget(max_attempts=attempts)
        self.assertEqual(RetryBudget(delay=3).delay, 3)
        for delay in [-1, float("nan"), float("inf"), "2", None, False]:
            with self.assertRaises(ConfigError, msg=repr(delay)):
                RetryBudget(delay=delay)


if __name__ == "__main__":
    unittest.main()
