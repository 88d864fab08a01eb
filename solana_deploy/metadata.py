# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Client identification for requests sent to ledger endpoints.

Every request made by :class:`solana_deploy.async_client.RpcClient` carries a
header naming this package and its installed version, so operators of an RPC
endpoint can tell deployment traffic apart from wallets and explorers when
troubleshooting.

Examples:
    Build the header by hand::

        from solana_deploy.metadata import Metadata

        headers = {Metadata.CLIENT_HEADER: Metadata.get_client_header_val()}
        # {"x-solana-deploy-client": "solana-deploy/0.1.0"}
"""

import importlib.metadata as metadata

# Package name constant for metadata lookup
PACKAGE_NAME = "solana-deploy"


class Metadata:
    """Static helpers for the client identification header."""

    CLIENT_HEADER = "x-solana-deploy-client"

    @staticmethod
    def get_client_header_val() -> str:
        """Return ``"solana-deploy/{version}"`` for the installed package.

        Source checkouts that were never installed report ``0.0.0``.
        """
        try:
            version = metadata.version(PACKAGE_NAME)
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        return f"{PACKAGE_NAME}/{version}"
