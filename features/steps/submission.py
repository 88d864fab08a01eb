import asyncio
import typing

import httpx
from behave import given, then, use_step_matcher, when

from solana_deploy.config import RetryBudget
from solana_deploy.exceptions import FailureReason
from solana_deploy.models import SignatureStatus, Submission
from solana_deploy.workflow import DeploymentWorkflow, FakeClock

# Use regular expressions
use_step_matcher("re")

STATUSES: typing.Dict[str, typing.Any] = {
    "pending": None,
    "processed": SignatureStatus(10, 0, "processed", None),
    "confirmed": SignatureStatus(11, 1, "confirmed", None),
    "finalized": SignatureStatus(12, None, "finalized", None),
    "failed": SignatureStatus(13, 1, "confirmed", {"InstructionError": [0, "X"]}),
    "transport-error": httpx.ReadTimeout("status query timed out"),
}


class ScriptedLedger:
    """Answers status queries from a fixed script."""

    def __init__(self, statuses: typing.List[typing.Any], reachable: bool = True):
        self.statuses = list(statuses)
        self.reachable = reachable
        self.polls = 0

    async def send_transaction(self, payload: bytes) -> str:
        if not self.reachable:
            raise httpx.ConnectError("network is unreachable")
        return "5sig"

    async def signature_status(
        self, signature: str
    ) -> typing.Optional[SignatureStatus]:
        self.polls += 1
        status = self.statuses.pop(0)
        if isinstance(status, Exception):
            raise status
        return status


@given(r"a retry budget of (?P<attempts>\d+) attempts? with a delay of (?P<delay>[\d.]+)")
def given_budget(context: typing.Any, attempts: str, delay: str):
    context.budget = RetryBudget(int(attempts), float(delay))


@given(r"the endpoint reports statuses \[(?P<statuses>.*)\]")
def given_statuses(context: typing.Any, statuses: str):
    names = [s.strip() for s in statuses.split(",") if s.strip()]
    context.ledger = ScriptedLedger([STATUSES[name] for name in names])


@given(r"the endpoint is unreachable")
def given_unreachable(context: typing.Any):
    context.ledger = ScriptedLedger([], reachable=False)


@when(r"the transaction is submitted")
def when_submitted(context: typing.Any):
    context.clock = FakeClock()
    context.submission = None
    context.error = None
    workflow = DeploymentWorkflow(context.ledger, context.budget, context.clock.sleep)
    try:
        context.submission = asyncio.run(workflow.submit_and_confirm(b"\x01signed"))
    except FailureReason as e:
        context.error = e


@then(r"the submission should be (?P<status>confirmed|finalized) after (?P<polls>\d+) polls?")
def then_success(context: typing.Any, status: str, polls: str):
    assert context.error is None, f"Unexpected failure {context.error!r}"
    submission: Submission = context.submission
    assert submission.status.value == status, f"Got {submission.status.value}"
    assert context.ledger.polls == int(polls), f"Polled {context.ledger.polls} times"


@then(
    r"the submission should fail with (?P<reason>SubmissionError|SubmissionRejected|SubmissionTimeout) after (?P<polls>\d+) polls?"
)
def then_failure(context: typing.Any, reason: str, polls: str):
    assert context.error is not None, "Expected a failure"
    assert type(context.error).__name__ == reason, (
        "Expected " + reason + " but got " + type(context.error).__name__
    )
    assert context.ledger.polls == int(polls), f"Polled {context.ledger.polls} times"


@then(r"at least (?P<units>[\d.]+) time units should have elapsed")
def then_elapsed_at_least(context: typing.Any, units: str):
    assert context.clock.elapsed >= float(units), f"Elapsed {context.clock.elapsed}"


@then(r"exactly (?P<units>[\d.]+) time units should have elapsed")
def then_elapsed_exactly(context: typing.Any, units: str):
    assert context.clock.elapsed == float(units), f"Elapsed {context.clock.elapsed}"
