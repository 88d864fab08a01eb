# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Exception hierarchy for ledger submissions.

``ApiError`` describes a single bad exchange with the endpoint. The
``DeploymentError`` family describes the outcome of a whole submission and
always carries the :class:`~solana_deploy.models.Submission` as far as it got,
so a caller holding a signature can follow up manually::

    try:
        submission = await workflow.submit_and_confirm(payload)
    except SubmissionTimeout as e:
        print(f"outcome unknown, check {e.signature} later")
    except SubmissionRejected as e:
        print(f"ledger rejected {e.signature}: {e.error}")
    except SubmissionError as e:
        print(f"could not send: {e}")
"""

from __future__ import annotations

import typing
from typing import Any, Optional

if typing.TYPE_CHECKING:
    from .models import Submission


class ApiError(Exception):
    """The endpoint returned a non-success status code, a JSON-RPC error object or a
    body that could not be decoded."""

    status_code: Optional[int]
    code: Optional[int]
    data: Any

    def __init__(
        self,
        message: str,
        status_code: Optional[int],
        code: Optional[int] = None,
        data: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.data = data

    @property
    def is_rpc_error(self) -> bool:
        """True when the endpoint answered with an explicit JSON-RPC ``error`` object."""
        return self.code is not None


class DeploymentError(Exception):
    """Base class for everything the deployment workflow raises."""

    submission: Optional[Submission]

    def __init__(self, message: str, submission: Optional[Submission] = None):
        super().__init__(message)
        self.submission = submission

    @property
    def signature(self) -> Optional[str]:
        if self.submission is None:
            return None
        return self.submission.signature


class FailureReason(DeploymentError):
    """A submission ended without a confirmed or finalized status."""


class SubmissionError(FailureReason):
    """The payload could not be handed to the endpoint. Never retried, since sending
    again may produce a duplicate write."""


class SubmissionRejected(FailureReason):
    """The endpoint explicitly reported that the payload failed."""

    error: Any

    def __init__(
        self, message: str, error: Any, submission: Optional[Submission] = None
    ):
        super().__init__(message, submission)
        self.error = error


class SubmissionTimeout(FailureReason):
    """The retry budget ran out before a terminal status was seen. The payload may
    still land; treat this as an unknown outcome."""

    attempts: int

    def __init__(
        self, message: str, attempts: int, submission: Optional[Submission] = None
    ):
        super().__init__(message, submission)
        self.attempts = attempts


class ConfigError(DeploymentError):
    """Missing or invalid endpoint, credentials, budget or manifest. Raised before any
    network call is made."""
