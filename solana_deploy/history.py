# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Append-only log of deployment attempts.

Each attempt becomes one JSON line. The writer is a context manager that
opens the file for appending on entry, flushes after every record and closes
on every exit path, so concurrent readers only ever see whole lines::

    with DeploymentHistory("deployments.jsonl") as history:
        history.append(HistoryRecord.from_submission(manifest, url, submission))

    for record in DeploymentHistory.read("deployments.jsonl"):
        print(record.timestamp, record.label, record.status)
"""

import json
import os
import tempfile
import typing
import unittest
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from .manifest import DeploymentKind, DeploymentManifest
from .models import Submission, SubmissionStatus


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class HistoryRecord:
    label: str
    kind: str
    endpoint: str
    status: str
    signature: Optional[str] = None
    slot: Optional[int] = None
    metadata_uri: Optional[str] = None
    error: Any = None
    timestamp: str = field(default_factory=_now)

    @staticmethod
    def from_submission(
        manifest: DeploymentManifest,
        endpoint: str,
        submission: Optional[Submission],
        error: Any = None,
    ) -> "HistoryRecord":
        """Summarize one attempt; ``submission`` is ``None`` if nothing was sent."""
        if submission is None:
            return HistoryRecord(
                label=manifest.label,
                kind=manifest.kind.value,
                endpoint=endpoint,
                status=SubmissionStatus.FAILED.value,
                metadata_uri=manifest.metadata_uri,
                error=error,
            )
        return HistoryRecord(
            label=manifest.label,
            kind=manifest.kind.value,
            endpoint=endpoint,
            status=submission.status.value,
            signature=submission.signature,
            slot=submission.slot,
            metadata_uri=manifest.metadata_uri,
            error=error if submission.error is None else submission.error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "HistoryRecord":
        return HistoryRecord(**data)


class DeploymentHistory:
    path: str
    _file: Optional[typing.TextIO]

    def __init__(self, path: str):
        self.path = path
        self._file = None

    def __enter__(self) -> "DeploymentHistory":
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._file = open(self.path, "a", encoding="utf-8")
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        if self._file is not None:
            self._file.close()
            self._file = None

    def append(self, record: HistoryRecord):
        if self._file is None:
            raise RuntimeError("deployment history is not open")
        # default=str keeps unusual error payloads from aborting the write.
        self._file.write(json.dumps(record.to_dict(), sort_keys=True, default=str))
        self._file.write("\n")
        self._file.flush()

    @staticmethod
    def read(path: str) -> Iterator[HistoryRecord]:
        if not os.path.exists(path):
            return
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield HistoryRecord.from_dict(json.loads(line))


class Test(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.path = os.path.join(self.tmp.name, "logs", "deployments.jsonl")
        self.manifest = DeploymentManifest(
            DeploymentKind.TOKEN, "usdx mint", b"\x01", "ipfs://meta"
        )

    def test_append_and_read(self):
        confirmed = Submission(b"\x01", "sig1", SubmissionStatus.CONFIRMED, 2, 77)
        with DeploymentHistory(self.path) as history:
            history.append(
                HistoryRecord.from_submission(self.manifest, "http://rpc", confirmed)
            )
        with DeploymentHistory(self.path) as history:
            history.append(
                HistoryRecord.from_submission(
                    self.manifest, "http://rpc", None, "network down"
                )
            )

        records = list(DeploymentHistory.read(self.path))
        self.assertEqual(len(records), 2)
        self.assertEqual(records[0].signature, "sig1")
        self.assertEqual(records[0].slot, 77)
        self.assertEqual(records[0].status, "confirmed")
        self.assertEqual(records[0].metadata_uri, "ipfs://meta")
        self.assertEqual(records[1].status, "failed")
        self.assertEqual(records[1].error, "network down")
        self.assertIsNone(records[1].signature)

    def test_closed_on_error(self):
        history = DeploymentHistory(self.path)
        with self.assertRaises(KeyError):
            with history:
                history.append(
                    HistoryRecord("a", "nft", "http://rpc", "timed-out", "sig")
                )
                raise KeyError("boom")
        with self.assertRaises(RuntimeError):
            history.append(HistoryRecord("b", "nft", "http://rpc", "pending"))
        self.assertEqual(len(list(DeploymentHistory.read(self.path))), 1)

    def test_read_missing(self):
        self.assertEqual(list(DeploymentHistory.read(self.path)), [])


if __name__ == "__main__":
    unittest.main()
