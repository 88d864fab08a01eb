# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Deployment manifests: the payload-description files handed to the CLI.

A manifest names one already-signed transaction together with what it
deploys. Signing happens elsewhere; the manifest only carries the result.
Both JSON and TOML are accepted, chosen by file extension::

    # mint.toml
    kind = "nft"
    label = "genesis drop #1"
    metadata_uri = "ipfs://bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"
    transaction = "AQAB..."            # base64 wire-format transaction

or, with the signed bytes kept next to the manifest::

    {"kind": "program", "label": "counter v2", "transaction_file": "deploy.bin"}

``metadata_uri`` comes from an off-chain storage service and is carried
through as an opaque string.
"""

import base64
import binascii
import json
import os
import tempfile
import unittest
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import tomli

from .exceptions import ConfigError


class DeploymentKind(str, Enum):
    PROGRAM = "program"
    TOKEN = "token"
    NFT = "nft"
    ACCOUNT = "account"
    OTHER = "other"


@dataclass
class DeploymentManifest:
    kind: DeploymentKind
    label: str
    transaction: bytes
    metadata_uri: Optional[str] = None

    @staticmethod
    def load(path: str) -> "DeploymentManifest":
        """Read a ``.json`` or ``.toml`` manifest.

        :raises ConfigError: If the file is missing, unparsable or incomplete.
        """
        extension = os.path.splitext(path)[1].lower()
        try:
            if extension == ".toml":
                with open(path, "rb") as f:
                    data = tomli.load(f)
            elif extension == ".json":
                with open(path) as f:
                    data = json.load(f)
            else:
                raise ConfigError(f"unsupported manifest format: {path}")
        except OSError as e:
            raise ConfigError(f"cannot read manifest {path}: {e}")
        except (tomli.TOMLDecodeError, json.JSONDecodeError) as e:
            raise ConfigError(f"cannot parse manifest {path}: {e}")
        return DeploymentManifest.from_dict(data, os.path.dirname(path))

    @staticmethod
    def from_dict(data: Dict[str, Any], base_dir: str = ".") -> "DeploymentManifest":
        if not isinstance(data, dict):
            raise ConfigError("manifest must be a table of fields")

        try:
            kind = DeploymentKind(data.get("kind", DeploymentKind.OTHER.value))
        except ValueError:
            choices = ", ".join(k.value for k in DeploymentKind)
            raise ConfigError(f"unknown kind {data.get('kind')!r}, expected {choices}")

        label = data.get("label")
        if not isinstance(label, str) or not label.strip():
            raise ConfigError("manifest requires a non-empty 'label'")

        metadata_uri = data.get("metadata_uri")
        if metadata_uri is not None and not isinstance(metadata_uri, str):
            raise ConfigError("'metadata_uri' must be a string")

        encoded = data.get("transaction")
        transaction_file = data.get("transaction_file")
        if (encoded is None) == (transaction_file is None):
            raise ConfigError(
                "manifest requires exactly one of 'transaction' or 'transaction_file'"
            )
        if encoded is not None:
            if not isinstance(encoded, str):
                raise ConfigError("'transaction' must be a base64 string")
            try:
                transaction = base64.b64decode(encoded, validate=True)
            except binascii.Error as e:
                raise ConfigError(f"'transaction' is not valid base64: {e}")
        else:
            transaction_path = os.path.join(base_dir, str(transaction_file))
            try:
                with open(transaction_path, "rb") as f:
                    transaction = f.read()
            except OSError as e:
                raise ConfigError(f"cannot read transaction file: {e}")

        if not transaction:
            raise ConfigError("signed transaction is empty")

        return DeploymentManifest(kind, label.strip(), transaction, metadata_uri)


class Test(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def write(self, name: str, content: str) -> str:
        path = os.path.join(self.tmp.name, name)
        with open(path, "w") as f:
            f.write(content)
        return path

    def test_load_toml(self):
        path = self.write(
            "mint.toml",
            'kind = "nft"\n'
            'label = " genesis drop #1 "\n'
            'metadata_uri = "ipfs://cid"\n'
            'transaction = "AQID"\n',
        )
        manifest = DeploymentManifest.load(path)
        self.assertEqual(manifest.kind, DeploymentKind.NFT)
        self.assertEqual(manifest.label, "genesis drop #1")
        self.assertEqual(manifest.metadata_uri, "ipfs://cid")
        self.assertEqual(manifest.transaction, b"\x01\x02\x03")

    def test_load_json_with_transaction_file(self):
        with open(os.path.join(self.tmp.name, "deploy.bin"), "wb") as f:
            f.write(b"\xff\x00")
        path = self.write(
            "deploy.json",
            json.dumps(
                {"kind": "program", "label": "counter", "transaction_file": "deploy.bin"}
            ),
        )
        manifest = DeploymentManifest.load(path)
        self.assertEqual(manifest.kind, DeploymentKind.PROGRAM)
        self.assertEqual(manifest.transaction, b"\xff\x00")
        self.assertIsNone(manifest.metadata_uri)

    def test_invalid_manifests(self):
        cases = [
            {"label": "x"},
            {"label": "x", "transaction": "AQID", "transaction_file": "a.bin"},
            {"label": "", "transaction": "AQID"},
            {"label": "x", "kind": "rocket", "transaction": "AQID"},
            {"label": "x", "transaction": "not base64!"},
            {"label": "x", "transaction": ""},
            {"label": "x", "transaction": "AQID", "metadata_uri": 5},
            {"label": "x", "transaction_file": "missing.bin"},
        ]
        for case in cases:
            with self.assertRaises(ConfigError, msg=repr(case)):
                DeploymentManifest.from_dict(case, self.tmp.name)

    def test_unreadable_files(self):
        with self.assertRaises(ConfigError):
            DeploymentManifest.load(os.path.join(self.tmp.name, "absent.json"))
        with self.assertRaises(ConfigError):
            DeploymentManifest.load(self.write("broken.toml", "kind = "))
        with self.assertRaises(ConfigError):
            DeploymentManifest.load(self.write("manifest.yaml", "kind: nft"))


if __name__ == "__main__":
    unittest.main()
