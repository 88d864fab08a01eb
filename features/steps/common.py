import json
import typing

from behave import given, then, use_step_matcher, when

from solana_deploy.exceptions import ApiError
from solana_deploy.models import decode_u64

# Use regular expressions
use_step_matcher("re")


@given(r"the JSON value (?P<raw>\S+)")
def given_json_value(context: typing.Any, raw: str):
    context.input = json.loads(raw)


@when(r"it is decoded as u64")
def when_decoded(context: typing.Any):
    context.output = None
    context.error = None
    try:
        context.output = decode_u64(context.input)
    except ApiError as e:
        context.error = e


@then(r"the result should be u64 (?P<expected>\d+)")
def then_result(context: typing.Any, expected: str):
    assert context.error is None, f"Unexpected error {context.error}"
    assert context.output == int(expected), (
        "Expected " + expected + " but got " + str(context.output)
    )


@then(r"decoding should fail")
def then_decoding_fails(context: typing.Any):
    assert context.error is not None, (
        "Expected an error but got " + str(context.output)
    )
