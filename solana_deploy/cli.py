# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Command-line interface for submitting signed deployments.

Supported Commands:
- submit: Send the transaction named by a manifest and wait for confirmation
- status: Query the current status of a signature once
- health: Report endpoint health and node version

Examples:
    Submit an NFT mint and keep a history log::

        python -m solana_deploy.cli submit \
            --manifest ./mint.toml \
            --rpc-url https://api.devnet.solana.com \
            --max-attempts 30 --delay 2 \
            --history ./deployments.jsonl

    Follow up on a timed-out submission::

        python -m solana_deploy.cli status --signature 5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW

Exit Codes:
    0: the transaction was confirmed or finalized (or the probe succeeded)
    1: the submission was not confirmed: send failure, rejection or timeout
    2: invalid arguments, configuration or manifest

Environment Variables:
    SOLANA_RPC_URL: Used when ``--rpc-url`` is not given
    SOLANA_RPC_TOKEN: Used when ``--auth-token`` is not given
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import io
import json
import logging
import os
import sys
import tempfile
import unittest
import unittest.mock
from typing import List, Optional

import httpx

from .async_client import ApiError, RpcClient
from .config import EndpointConfig, RetryBudget
from .exceptions import (
    ConfigError,
    FailureReason,
    SubmissionRejected,
    SubmissionTimeout,
)
from .history import DeploymentHistory, HistoryRecord
from .manifest import DeploymentManifest
from .models import SignatureStatus, Submission
from .workflow import submit_and_confirm


async def submit_manifest(
    manifest: DeploymentManifest,
    endpoint: EndpointConfig,
    retry_budget: RetryBudget,
    history_path: Optional[str] = None,
) -> Submission:
    """Submit the transaction in ``manifest`` and wait for it to settle.

    When ``history_path`` is set, one record is appended whatever the outcome.

    :raises FailureReason: If the transaction was not confirmed
    """
    try:
        submission = await submit_and_confirm(
            manifest.transaction, endpoint, retry_budget
        )
    except FailureReason as e:
        if history_path:
            record = HistoryRecord.from_submission(
                manifest, endpoint.url, e.submission, str(e)
            )
            with DeploymentHistory(history_path) as history:
                history.append(record)
        raise

    if history_path:
        with DeploymentHistory(history_path) as history:
            history.append(
                HistoryRecord.from_submission(manifest, endpoint.url, submission)
            )
    return submission


def describe_failure(manifest: DeploymentManifest, error: FailureReason) -> str:
    lines = [f"FAILED  {manifest.kind.value} '{manifest.label}'"]
    if error.signature:
        lines.append(f"  signature: {error.signature}")
    if isinstance(error, SubmissionRejected):
        lines.append(f"  rejected: {json.dumps(error.error, default=str)}")
    elif isinstance(error, SubmissionTimeout):
        lines.append(
            f"  outcome unknown after {error.attempts} poll(s); check later with:"
        )
        lines.append(f"    python -m solana_deploy.cli status --signature {error.signature}")
    else:
        lines.append(f"  not sent: {error}")
    return "\n".join(lines)


def describe_success(manifest: DeploymentManifest, submission: Submission) -> str:
    lines = [
        f"OK      {manifest.kind.value} '{manifest.label}' {submission.status.value}",
        f"  signature: {submission.signature}",
        f"  slot: {submission.slot}",
    ]
    if manifest.metadata_uri:
        lines.append(f"  metadata: {manifest.metadata_uri}")
    return "\n".join(lines)


def describe_status(signature: str, status: Optional[SignatureStatus]) -> str:
    if status is None:
        return f"{signature}: not found"
    summary = status.submission_status().value
    if status.err is not None:
        summary += f" ({json.dumps(status.err, default=str)})"
    return f"{signature}: {summary} in slot {status.slot}"


async def main(args: List[str]) -> int:
    """Parse ``args``, run the command and return the process exit code."""
    parser = argparse.ArgumentParser(description="Solana deployment submitter")
    parser.add_argument(
        "command",
        type=str,
        help="The command to execute",
        choices=["submit", "status", "health"],
    )
    parser.add_argument(
        "--manifest", help="Path to a .json or .toml deployment manifest", type=str
    )
    parser.add_argument(
        "--signature", help="Transaction signature to query", type=str
    )
    parser.add_argument(
        "--rpc-url",
        help="JSON-RPC endpoint URL (default: $SOLANA_RPC_URL or devnet)",
        type=str,
    )
    parser.add_argument(
        "--auth-token", help="Bearer token (default: $SOLANA_RPC_TOKEN)", type=str
    )
    parser.add_argument(
        "--skip-preflight",
        help="Do not ask the endpoint to simulate before forwarding",
        action="store_true",
    )
    parser.add_argument(
        "--max-attempts", help="Status polls before giving up", type=int, default=30
    )
    parser.add_argument(
        "--delay", help="Seconds between status polls", type=float, default=2.0
    )
    parser.add_argument(
        "--history", help="Append a JSON line per submission to this file", type=str
    )
    parser.add_argument(
        "-v", "--verbose", help="Log each submission step", action="store_true"
    )
    parsed_args = parser.parse_args(args)

    logging.basicConfig(level=logging.INFO if parsed_args.verbose else logging.WARNING)

    try:
        endpoint = EndpointConfig.from_env(
            url=parsed_args.rpc_url,
            auth_token=parsed_args.auth_token,
            skip_preflight=parsed_args.skip_preflight,
        )
    except ConfigError as e:
        parser.error(str(e))

    if parsed_args.command == "submit":
        if parsed_args.manifest is None:
            parser.error("Missing required argument '--manifest'")
        try:
            retry_budget = RetryBudget(parsed_args.max_attempts, parsed_args.delay)
            manifest = DeploymentManifest.load(parsed_args.manifest)
        except ConfigError as e:
            parser.error(str(e))

        try:
            submission = await submit_manifest(
                manifest, endpoint, retry_budget, parsed_args.history
            )
        except FailureReason as e:
            print(describe_failure(manifest, e))
            return 1
        print(describe_success(manifest, submission))
        return 0

    async with RpcClient(endpoint) as client:
        try:
            if parsed_args.command == "status":
                if parsed_args.signature is None:
                    parser.error("Missing required argument '--signature'")
                status = await client.signature_status(parsed_args.signature)
                print(describe_status(parsed_args.signature, status))
                return 0 if status is not None else 1

            healthy = await client.health()
            version = await client.version()
        except (ApiError, httpx.HTTPError) as e:
            print(f"{endpoint.url}: request failed: {e!r}")
            return 1
        print(
            f"{endpoint.url}: {'healthy' if healthy else 'unhealthy'}, "
            f"solana-core {version['solana-core']}"
        )
        return 0 if healthy else 1


def run():
    sys.exit(asyncio.run(main(sys.argv[1:])))


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.manifest = os.path.join(self.tmp.name, "mint.json")
        self.history = os.path.join(self.tmp.name, "history.jsonl")
        with open(self.manifest, "w") as f:
            json.dump(
                {
                    "kind": "nft",
                    "label": "genesis",
                    "transaction": "AQID",
                    "metadata_uri": "ipfs://cid",
                },
                f,
            )

    def patch(self, method: str, **kwargs):
        patcher = unittest.mock.patch(
            f"solana_deploy.async_client.RpcClient.{method}", **kwargs
        )
        mock = patcher.start()
        self.addCleanup(patcher.stop)
        return mock

    async def run_cli(self, *args: str):
        output = io.StringIO()
        with contextlib.redirect_stdout(output):
            code = await main(
                list(args) + ["--rpc-url", "http://127.0.0.1:8899", "--delay", "0"]
            )
        return code, output.getvalue()

    async def test_submit_confirmed(self):
        send = self.patch("send_transaction", return_value="5sig")
        self.patch(
            "signature_status",
            side_effect=[None, SignatureStatus(40, 1, "confirmed", None)],
        )
        code, output = await self.run_cli(
            "submit", "--manifest", self.manifest, "--history", self.history
        )
        self.assertEqual(code, 0)
        self.assertIn("5sig", output)
        self.assertIn("ipfs://cid", output)
        send.assert_awaited_once_with(b"\x01\x02\x03")

        records = list(DeploymentHistory.read(self.history))
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].status, "confirmed")
        self.assertEqual(records[0].slot, 40)

    async def test_submit_timeout(self):
        self.patch("send_transaction", return_value="5sig")
        status = self.patch("signature_status", return_value=None)
        code, output = await self.run_cli(
            "submit",
            "--manifest",
            self.manifest,
            "--max-attempts",
            "2",
            "--history",
            self.history,
        )
        self.assertEqual(code, 1)
        self.assertEqual(status.await_count, 2)
        self.assertIn("status --signature 5sig", output)
        records = list(DeploymentHistory.read(self.history))
        self.assertEqual(records[0].status, "timed-out")

    async def test_submit_network_down(self):
        self.patch("send_transaction", side_effect=httpx.ConnectError("down"))
        status = self.patch("signature_status")
        code, output = await self.run_cli(
            "submit", "--manifest", self.manifest, "--history", self.history
        )
        self.assertEqual(code, 1)
        self.assertEqual(status.await_count, 0)
        self.assertIn("not sent", output)
        records = list(DeploymentHistory.read(self.history))
        self.assertEqual(records[0].status, "failed")
        self.assertIsNone(records[0].signature)

    async def test_config_errors(self):
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit) as cm:
                await self.run_cli("submit")
            self.assertEqual(cm.exception.code, 2)
            with self.assertRaises(SystemExit) as cm:
                await self.run_cli("submit", "--manifest", self.manifest + ".missing")
            self.assertEqual(cm.exception.code, 2)
            with self.assertRaises(SystemExit) as cm:
                await self.run_cli(
                    "submit", "--manifest", self.manifest, "--max-attempts", "0"
                )
            self.assertEqual(cm.exception.code, 2)

    async def test_status(self):
        self.patch(
            "signature_status",
            return_value=SignatureStatus(9, None, "finalized", None),
        )
        code, output = await self.run_cli("status", "--signature", "5sig")
        self.assertEqual(code, 0)
        self.assertIn("5sig: finalized in slot 9", output)

    async def test_health(self):
        self.patch("health", return_value=True)
        self.patch("version", return_value={"solana-core": "1.18.4"})
        code, output = await self.run_cli("health")
        self.assertEqual(code, 0)
        self.assertIn("healthy, solana-core 1.18.4", output)


if __name__ == "__main__":
    unittest.main()
