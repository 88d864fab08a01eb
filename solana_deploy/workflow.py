# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Submit a signed transaction and wait for the ledger to settle it.

The workflow has three phases:

1. **Send**: the payload goes to the endpoint exactly once. A failed send is
   never retried, because re-sending may create a duplicate write.
2. **Poll**: the signature status is queried at most ``max_attempts`` times
   with a fixed delay in between. ``confirmed`` or ``finalized`` ends the loop
   with success, an explicit error ends it with a rejection. Transient poll
   failures count against the budget like a pending answer.
3. **Give up**: an exhausted budget raises :class:`SubmissionTimeout`; the
   transaction may still land later.

Examples:
    One-shot helper that owns its client::

        from solana_deploy.config import EndpointConfig, RetryBudget
        from solana_deploy.workflow import submit_and_confirm

        submission = await submit_and_confirm(
            signed_bytes,
            EndpointConfig("https://api.devnet.solana.com"),
            RetryBudget(max_attempts=20, delay=1.5),
        )
        print(submission.signature, submission.status.value)

    Reusing a client across several deployments::

        async with RpcClient(endpoint) as client:
            workflow = DeploymentWorkflow(client, RetryBudget())
            for payload in payloads:
                await workflow.submit_and_confirm(payload)
"""

import asyncio
import logging
import unittest
import unittest.mock
from typing import Awaitable, Callable, List, Optional

import httpx
from typing_extensions import Protocol

from .async_client import RpcClient
from .config import EndpointConfig, RetryBudget
from .exceptions import (
    ApiError,
    ConfigError,
    SubmissionError,
    SubmissionRejected,
    SubmissionTimeout,
)
from .models import SignatureStatus, Submission, SubmissionStatus

SleepFunction = Callable[[float], Awaitable[None]]


class LedgerEndpoint(Protocol):
    """The submission and status interfaces the workflow consumes."""

    async def send_transaction(self, payload: bytes) -> str:
        ...

    async def signature_status(self, signature: str) -> Optional[SignatureStatus]:
        ...


class DeploymentWorkflow:
    """Drives one or more submissions against a single endpoint."""

    _client: LedgerEndpoint
    _retry_budget: RetryBudget
    _sleep: SleepFunction

    def __init__(
        self,
        client: LedgerEndpoint,
        retry_budget: RetryBudget = RetryBudget(),
        sleep: SleepFunction = asyncio.sleep,
    ):
        self._client = client
        self._retry_budget = retry_budget
        self._sleep = sleep

    async def submit(self, payload: bytes) -> Submission:
        """Send ``payload`` once and return a pending submission holding its signature."""
        if not isinstance(payload, (bytes, bytearray)) or len(payload) == 0:
            raise ConfigError("payload must be a non-empty signed transaction")

        submission = Submission(bytes(payload))
        try:
            submission.signature = await self._client.send_transaction(
                submission.payload
            )
        except ApiError as ae:
            if ae.is_rpc_error:
                submission.status = SubmissionStatus.FAILED
                submission.error = ae.data if ae.data is not None else str(ae)
                logging.error(f"endpoint rejected transaction: {ae}")
                raise SubmissionRejected(
                    f"endpoint rejected transaction: {ae}", submission.error, submission
                ) from ae
            submission.status = SubmissionStatus.FAILED
            submission.error = str(ae)
            logging.error(f"failed to submit transaction: {ae}")
            raise SubmissionError(
                f"failed to submit transaction: {ae}", submission
            ) from ae
        except httpx.HTTPError as e:
            submission.status = SubmissionStatus.FAILED
            submission.error = repr(e)
            logging.error(f"failed to submit transaction: {e!r}")
            raise SubmissionError(
                f"failed to submit transaction: {e!r}", submission
            ) from e

        logging.info(f"submitted transaction {submission.signature}")
        return submission

    async def poll(self, submission: Submission) -> SubmissionStatus:
        """Query the status once and record it on ``submission``.

        A failed query leaves the submission pending; it still uses up an attempt.
        """
        try:
            status = await self._client.signature_status(submission.signature)
        except (ApiError, httpx.HTTPError) as e:
            logging.warning(
                f"status query for {submission.signature} failed, will retry: {e!r}"
            )
            status = None
        return submission.observe(status)

    async def confirm(self, submission: Submission) -> Submission:
        """Poll until ``submission`` reaches a terminal status or the budget runs out."""
        max_attempts = self._retry_budget.max_attempts
        for attempt in range(1, max_attempts + 1):
            status = await self.poll(submission)
            if status.is_success:
                logging.info(
                    f"transaction {submission.signature} {status.value} "
                    f"in slot {submission.slot} after {attempt} poll(s)"
                )
                return submission
            if status is SubmissionStatus.FAILED:
                logging.error(
                    f"transaction {submission.signature} failed: {submission.error}"
                )
                raise SubmissionRejected(
                    f"transaction {submission.signature} failed: {submission.error}",
                    submission.error,
                    submission,
                )
            if attempt < max_attempts:
                await self._sleep(self._retry_budget.delay)

        submission.time_out()
        logging.warning(
            f"transaction {submission.signature} not confirmed after {max_attempts} "
            "poll(s); outcome unknown"
        )
        raise SubmissionTimeout(
            f"transaction {submission.signature} was not confirmed after "
            f"{max_attempts} poll(s); query its status later to learn the outcome",
            max_attempts,
            submission,
        )

    async def submit_and_confirm(self, payload: bytes) -> Submission:
        submission = await self.submit(payload)
        return await self.confirm(submission)


async def submit_and_confirm(
    payload: bytes,
    endpoint: EndpointConfig,
    retry_budget: RetryBudget = RetryBudget(),
    sleep: SleepFunction = asyncio.sleep,
) -> Submission:
    """
    Submit ``payload`` to ``endpoint`` and wait for confirmation.

    :return: The confirmed or finalized submission
    :raises ConfigError: If ``payload`` is empty or not bytes
    :raises SubmissionError: If the payload could not be sent
    :raises SubmissionRejected: If the endpoint reported the payload as failed
    :raises SubmissionTimeout: If ``retry_budget`` ran out first
    """
    async with RpcClient(endpoint) as client:
        workflow = DeploymentWorkflow(client, retry_budget, sleep)
        return await workflow.submit_and_confirm(payload)


class FakeClock:
    """Records requested sleeps instead of waiting."""

    def __init__(self):
        self.sleeps: List[float] = []

    async def sleep(self, delay: float):
        self.sleeps.append(delay)

    @property
    def elapsed(self) -> float:
        return sum(self.sleeps)


PENDING = None
PROCESSED = SignatureStatus(10, 0, "processed", None)
CONFIRMED = SignatureStatus(11, 1, "confirmed", None)
FINALIZED = SignatureStatus(12, None, "finalized", None)
FAILED = SignatureStatus(13, 1, "confirmed", {"InstructionError": [0, "Custom"]})


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.endpoint = EndpointConfig("http://127.0.0.1:8899", http2=False)

    def patch(self, method: str, **kwargs) -> unittest.mock.AsyncMock:
        patcher = unittest.mock.patch(
            f"solana_deploy.async_client.RpcClient.{method}", **kwargs
        )
        mock = patcher.start()
        self.addCleanup(patcher.stop)
        return mock

    async def run_workflow(self, statuses, max_attempts: int, delay: float = 2.0):
        self.send = self.patch("send_transaction", return_value="5sig")
        self.status = self.patch("signature_status", side_effect=statuses)
        return await submit_and_confirm(
            b"\x01signed",
            self.endpoint,
            RetryBudget(max_attempts, delay),
            self.clock.sleep,
        )

    async def test_first_poll_confirmed(self):
        submission = await self.run_workflow([CONFIRMED], max_attempts=5)
        self.assertEqual(submission.status, SubmissionStatus.CONFIRMED)
        self.assertEqual(submission.signature, "5sig")
        self.assertEqual(submission.slot, 11)
        self.assertEqual(self.status.await_count, 1)
        self.assertEqual(self.clock.sleeps, [])

    async def test_pending_pending_confirmed(self):
        submission = await self.run_workflow(
            [PENDING, PROCESSED, CONFIRMED], max_attempts=3, delay=2
        )
        self.assertEqual(submission.status, SubmissionStatus.CONFIRMED)
        self.assertEqual(submission.attempts, 3)
        self.assertEqual(self.status.await_count, 3)
        self.assertGreaterEqual(self.clock.elapsed, 4)

    async def test_finalized_is_success(self):
        submission = await self.run_workflow([PENDING, FINALIZED], max_attempts=3)
        self.assertEqual(submission.status, SubmissionStatus.FINALIZED)

    async def test_always_pending_times_out(self):
        for max_attempts in [1, 2, 7]:
            self.clock = FakeClock()
            with self.assertRaises(SubmissionTimeout) as cm:
                await self.run_workflow([PENDING] * max_attempts, max_attempts)
            self.assertEqual(self.status.await_count, max_attempts)
            self.assertEqual(cm.exception.attempts, max_attempts)
            self.assertEqual(cm.exception.signature, "5sig")
            self.assertEqual(
                cm.exception.submission.status, SubmissionStatus.TIMED_OUT
            )
            self.assertEqual(len(self.clock.sleeps), max_attempts - 1)
            unittest.mock.patch.stopall()

    async def test_rejected_stops_polling(self):
        with self.assertRaises(SubmissionRejected) as cm:
            await self.run_workflow([PENDING, FAILED, CONFIRMED], max_attempts=5)
        self.assertEqual(self.status.await_count, 2)
        self.assertEqual(cm.exception.error, {"InstructionError": [0, "Custom"]})
        self.assertEqual(cm.exception.submission.status, SubmissionStatus.FAILED)
        self.assertEqual(cm.exception.signature, "5sig")

    async def test_transient_poll_error_counts_against_budget(self):
        submission = await self.run_workflow(
            [httpx.ConnectError("reset"), ApiError("busy", 503), CONFIRMED],
            max_attempts=3,
        )
        self.assertEqual(submission.status, SubmissionStatus.CONFIRMED)
        self.assertEqual(self.status.await_count, 3)

        unittest.mock.patch.stopall()
        with self.assertRaises(SubmissionTimeout):
            await self.run_workflow(
                [httpx.ReadTimeout("slow"), httpx.ReadTimeout("slow")], max_attempts=2
            )

    async def test_send_failure_is_not_retried(self):
        self.send = self.patch(
            "send_transaction", side_effect=httpx.ConnectError("network down")
        )
        self.status = self.patch("signature_status")
        with self.assertRaises(SubmissionError) as cm:
            await submit_and_confirm(
                b"\x01", self.endpoint, RetryBudget(3, 1), self.clock.sleep
            )
        self.assertEqual(self.send.await_count, 1)
        self.assertEqual(self.status.await_count, 0)
        self.assertIsNone(cm.exception.signature)
        self.assertNotIsInstance(cm.exception, SubmissionRejected)
        self.assertEqual(cm.exception.submission.status, SubmissionStatus.FAILED)
        self.assertIn("network down", cm.exception.submission.error)

    async def test_send_http_error_is_not_rejection(self):
        for error in [
            ApiError("busy", 503),
            ApiError("undecodable response to sendTransaction: <html>", 200),
            ApiError("unexpected sendTransaction result: 7", None),
        ]:
            self.send = self.patch("send_transaction", side_effect=error)
            self.status = self.patch("signature_status")
            with self.assertRaises(SubmissionError) as cm:
                await submit_and_confirm(
                    b"\x01", self.endpoint, RetryBudget(3, 1), self.clock.sleep
                )
            self.assertNotIsInstance(cm.exception, SubmissionRejected)
            self.assertEqual(self.send.await_count, 1)
            self.assertEqual(self.status.await_count, 0)
            self.assertEqual(cm.exception.submission.status, SubmissionStatus.FAILED)
            self.assertEqual(cm.exception.submission.error, str(error))
            unittest.mock.patch.stopall()

    async def test_send_rpc_error_is_rejection(self):
        self.send = self.patch(
            "send_transaction",
            side_effect=ApiError(
                "Transaction simulation failed", 200, -32002, {"err": "X"}
            ),
        )
        self.status = self.patch("signature_status")
        with self.assertRaises(SubmissionRejected) as cm:
            await submit_and_confirm(b"\x01", self.endpoint, RetryBudget(3, 1))
        self.assertEqual(cm.exception.error, {"err": "X"})
        self.assertEqual(self.status.await_count, 0)

    async def test_empty_payload(self):
        workflow = DeploymentWorkflow(unittest.mock.AsyncMock(), RetryBudget())
        with self.assertRaises(ConfigError):
            await workflow.submit(b"")
        with self.assertRaises(ConfigError):
            await workflow.submit("not bytes")
        self.assertEqual(workflow._client.send_transaction.await_count, 0)


if __name__ == "__main__":
    unittest.main()
