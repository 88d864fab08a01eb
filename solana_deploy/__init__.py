# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
solana-deploy - submit signed Solana deployments and wait for them to settle.

Programs, token mints, NFT mints and account creations all end the same way:
a signed transaction is handed to a JSON-RPC endpoint and somebody has to
watch it until the ledger confirms it, rejects it, or the watcher gives up.
This package is that watcher, with a small CLI around it.

Core Features:
- **Deployment Workflow**: send once, poll a bounded number of times, stop on
  the first terminal status
- **RPC Client**: async ``httpx`` client for the submission, status and probe calls
- **Manifests**: JSON or TOML files describing what a signed transaction deploys
- **History**: append-only JSON-lines log of every attempt

Quick Start::

    import asyncio
    from solana_deploy.config import EndpointConfig, RetryBudget
    from solana_deploy.exceptions import FailureReason
    from solana_deploy.workflow import submit_and_confirm

    async def main(signed_bytes: bytes):
        try:
            submission = await submit_and_confirm(
                signed_bytes,
                EndpointConfig("https://api.devnet.solana.com"),
                RetryBudget(max_attempts=30, delay=2.0),
            )
            print(f"{submission.signature} {submission.status.value}")
        except FailureReason as e:
            print(f"not confirmed: {e}")

    asyncio.run(main(open("deploy.bin", "rb").read()))

Module Organization:
    - **workflow**: submit-and-confirm loop
    - **async_client**: JSON-RPC client
    - **config**: endpoint and retry budget values
    - **models**: submissions, signature statuses, u64 decoding
    - **exceptions**: failure taxonomy
    - **manifest**: deployment manifest loading
    - **history**: deployment log writer
    - **cli**: ``submit``, ``status`` and ``health`` commands
    - **metadata**: client identification header

Note:
    Signing is out of scope. Transactions must arrive fully signed from a
    wallet or key-management tool; this package never handles private keys.
"""
