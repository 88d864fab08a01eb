# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Value types shared by the RPC client and the deployment workflow.

Some endpoints encode 64-bit integers (slots, lamport balances) as JSON
floating point numbers, which cannot represent every u64 exactly. Fields
of that shape are read through :func:`decode_u64`, which accepts exact
integers and decimal strings and refuses any float that may have lost
precision instead of rounding it silently.
"""

from __future__ import annotations

import unittest
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .exceptions import ApiError

U64_MAX = 18446744073709551615
# Largest magnitude below which every integer has an exact binary64 representation.
MAX_EXACT_FLOAT_INT = 2**53


def decode_u64(value: Any, field: str = "value") -> int:
    """Decode an unsigned 64-bit integer from a JSON value.

    :param value: an ``int``, a decimal ``str`` or an integral ``float`` no larger
        than 2**53
    :param field: name used in the error message
    :raises ApiError: if the value is not an exact u64
    """
    if isinstance(value, bool):
        raise ApiError(f"{field}: expected an integer, got {value!r}", None)
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        if not (text.isascii() and text.isdigit()):
            raise ApiError(f"{field}: expected a decimal integer, got {value!r}", None)
        result = int(text)
    elif isinstance(value, float):
        if not value.is_integer() or abs(value) > MAX_EXACT_FLOAT_INT:
            raise ApiError(
                f"{field}: {value!r} cannot be decoded as an exact integer", None
            )
        result = int(value)
    else:
        raise ApiError(f"{field}: expected an integer, got {value!r}", None)

    if result < 0 or result > U64_MAX:
        raise ApiError(f"{field}: {result} is outside the u64 range", None)
    return result


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"
    TIMED_OUT = "timed-out"

    @property
    def is_terminal(self) -> bool:
        return self is not SubmissionStatus.PENDING

    @property
    def is_success(self) -> bool:
        return self in (SubmissionStatus.CONFIRMED, SubmissionStatus.FINALIZED)


@dataclass
class SignatureStatus:
    """One entry of a ``getSignatureStatuses`` response."""

    slot: int
    confirmations: Optional[int]
    confirmation_status: Optional[str]
    err: Any

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> SignatureStatus:
        if not isinstance(data, dict) or "slot" not in data:
            raise ApiError(f"malformed signature status: {data!r}", None)
        confirmations = data.get("confirmations")
        return SignatureStatus(
            slot=decode_u64(data["slot"], "slot"),
            confirmations=None
            if confirmations is None
            else decode_u64(confirmations, "confirmations"),
            confirmation_status=data.get("confirmationStatus"),
            err=data.get("err"),
        )

    def submission_status(self) -> SubmissionStatus:
        if self.err is not None:
            return SubmissionStatus.FAILED
        if self.confirmation_status == "finalized":
            return SubmissionStatus.FINALIZED
        if self.confirmation_status == "confirmed":
            return SubmissionStatus.CONFIRMED
        # Endpoints predating confirmationStatus report rooted slots as null confirmations.
        if self.confirmation_status is None and self.confirmations is None:
            return SubmissionStatus.FINALIZED
        return SubmissionStatus.PENDING


@dataclass
class Submission:
    """One attempted write to the ledger."""

    payload: bytes
    signature: Optional[str] = None
    status: SubmissionStatus = SubmissionStatus.PENDING
    attempts: int = 0
    slot: Optional[int] = None
    error: Any = None

    def observe(self, status: Optional[SignatureStatus]) -> SubmissionStatus:
        """Record the result of one status poll.

        ``None`` means the endpoint does not know the signature yet, or the poll
        itself failed; either way the submission stays pending.
        """
        if self.status.is_terminal:
            raise RuntimeError(
                f"submission {self.signature} is already {self.status.value}"
            )
        self.attempts += 1
        if status is None:
            return self.status
        self.slot = status.slot
        self.status = status.submission_status()
        if self.status is SubmissionStatus.FAILED:
            self.error = status.err
        return self.status

    def time_out(self):
        if self.status.is_terminal:
            raise RuntimeError(
                f"submission {self.signature} is already {self.status.value}"
            )
        self.status = SubmissionStatus.TIMED_OUT


class Test(unittest.TestCase):
    def test_decode_u64_exact(self):
        self.assertEqual(decode_u64(0), 0)
        self.assertEqual(decode_u64(U64_MAX), U64_MAX)
        self.assertEqual(decode_u64("18446744073709551615"), U64_MAX)
        self.assertEqual(decode_u64(" 42 "), 42)
        self.assertEqual(decode_u64(123456.0), 123456)

    def test_decode_u64_imprecise_float(self):
        with self.assertRaises(ApiError):
            decode_u64(1.8446744073709552e19)
        with self.assertRaises(ApiError):
            decode_u64(float(2**53 + 2))
        with self.assertRaises(ApiError):
            decode_u64(1.5)

    def test_decode_u64_invalid(self):
        for value in [-1, U64_MAX + 1, "-5", "0x10", "", None, True, [1]]:
            with self.assertRaises(ApiError, msg=repr(value)):
                decode_u64(value)

    def test_signature_status(self):
        status = SignatureStatus.from_dict(
            {
                "slot": "72",
                "confirmations": 10,
                "confirmationStatus": "confirmed",
                "err": None,
            }
        )
        self.assertEqual(status.slot, 72)
        self.assertEqual(status.submission_status(), SubmissionStatus.CONFIRMED)

        processed = SignatureStatus(5, 0, "processed", None)
        self.assertEqual(processed.submission_status(), SubmissionStatus.PENDING)

        legacy_rooted = SignatureStatus(5, None, None, None)
        self.assertEqual(legacy_rooted.submission_status(), SubmissionStatus.FINALIZED)

        failed = SignatureStatus(5, 1, "confirmed", {"InstructionError": [0, "X"]})
        self.assertEqual(failed.submission_status(), SubmissionStatus.FAILED)

        with self.assertRaises(ApiError):
            SignatureStatus.from_dict({"confirmations": 1})

    def test_submission_terminal_is_never_observed_again(self):
        submission = Submission(b"\x01", "sig")
        self.assertEqual(submission.observe(None), SubmissionStatus.PENDING)
        self.assertEqual(
            submission.observe(SignatureStatus(9, None, "finalized", None)),
            SubmissionStatus.FINALIZED,
        )
        self.assertEqual(submission.attempts, 2)
        self.assertEqual(submission.slot, 9)
        with self.assertRaises(RuntimeError):
            submission.observe(None)
        with self.assertRaises(RuntimeError):
            submission.time_out()


if __name__ == "__main__":
    unittest.main()
