# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Asynchronous JSON-RPC client for Solana ledger endpoints.

The client covers exactly the calls a deployment needs: handing a signed
transaction to the endpoint, asking for its status, and probing the endpoint
before a run. Everything else (building and signing transactions, uploading
off-chain metadata) belongs to other tools.

Key Features:
- **Submission**: ``sendTransaction`` with base64 encoding and preflight control
- **Status**: ``getSignatureStatuses`` including transaction history search
- **Probes**: ``getHealth``, ``getVersion``, ``getSlot`` and ``getBalance``
- **Defensive decoding**: u64 fields are decoded exactly or rejected

Examples:
    Submit and query by hand::

        from solana_deploy.async_client import RpcClient
        from solana_deploy.config import EndpointConfig

        async with RpcClient(EndpointConfig("https://api.devnet.solana.com")) as client:
            signature = await client.send_transaction(signed_bytes)
            status = await client.signature_status(signature)

Error Handling:
    HTTP status codes of 400 and above, JSON-RPC ``error`` objects and
    malformed bodies all raise :class:`ApiError`. Transport failures surface
    as the underlying ``httpx`` exceptions.

Note:
    Always close the client, or use it as an async context manager, so the
    connection pool is released.
"""

import base64
import json
import logging
import unittest
from typing import Any, Dict, List, Optional

import httpx

from .config import EndpointConfig
from .exceptions import ApiError
from .metadata import Metadata
from .models import SignatureStatus, decode_u64

__all__ = ["ApiError", "RpcClient"]


class RpcClient:
    """Async client for a Solana JSON-RPC endpoint.

    Attributes:
        client: Underlying HTTP client with connection pooling
        endpoint: Immutable endpoint configuration
    """

    _request_id: int
    client: httpx.AsyncClient
    endpoint: EndpointConfig

    def __init__(
        self,
        endpoint: EndpointConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = endpoint
        # Default limits
        limits = httpx.Limits()
        # Do not set a pool timeout, polling loops wait as long as progress is being made.
        timeout = httpx.Timeout(endpoint.timeout, pool=None)
        headers = {
            Metadata.CLIENT_HEADER: Metadata.get_client_header_val(),
            "Content-Type": "application/json",
        }
        self.client = httpx.AsyncClient(
            http2=endpoint.http2,
            limits=limits,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )
        self._request_id = 0
        if endpoint.auth_token:
            self.client.headers["Authorization"] = f"Bearer {endpoint.auth_token}"

    async def __aenter__(self) -> "RpcClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def close(self):
        """Close the underlying HTTP client connection."""
        await self.client.aclose()

    #
    # Submission and status
    #

    async def send_transaction(self, payload: bytes) -> str:
        """
        Hand a fully signed, serialized transaction to the endpoint.

        :param payload: The wire-format signed transaction
        :return: The transaction signature, used as the submission identifier
        :raises ApiError: If the endpoint rejects the request or preflight fails
        """
        encoded = base64.b64encode(payload).decode("ascii")
        options = {
            "encoding": "base64",
            "skipPreflight": self.endpoint.skip_preflight,
            "preflightCommitment": self.endpoint.preflight_commitment,
        }
        signature = await self._call("sendTransaction", [encoded, options])
        if not isinstance(signature, str) or not signature:
            raise ApiError(f"unexpected sendTransaction result: {signature!r}", None)
        return signature

    async def signature_statuses(
        self, signatures: List[str]
    ) -> List[Optional[SignatureStatus]]:
        """
        Fetch the status of several signatures at once.

        Entries are ``None`` for signatures the endpoint has not seen.
        """
        result = await self._call(
            "getSignatureStatuses",
            [signatures, {"searchTransactionHistory": True}],
        )
        try:
            values = result["value"]
        except (KeyError, TypeError):
            raise ApiError(f"malformed getSignatureStatuses result: {result!r}", None)
        if not isinstance(values, list) or len(values) != len(signatures):
            raise ApiError(f"malformed getSignatureStatuses result: {result!r}", None)
        return [
            None if value is None else SignatureStatus.from_dict(value)
            for value in values
        ]

    async def signature_status(self, signature: str) -> Optional[SignatureStatus]:
        """Fetch the status of a single signature, ``None`` if it is unknown."""
        return (await self.signature_statuses([signature]))[0]

    #
    # Endpoint probes
    #

    async def health(self) -> bool:
        """
        Report whether the endpoint considers itself healthy.

        An unhealthy node answers ``getHealth`` with a JSON-RPC error, which is
        reported as ``False``; HTTP and transport failures still raise.
        """
        try:
            return await self._call("getHealth") == "ok"
        except ApiError as ae:
            if not ae.is_rpc_error:
                raise
            logging.info(f"endpoint reports unhealthy: {ae}")
            return False

    async def version(self) -> Dict[str, Any]:
        """Return the node software version and feature set."""
        result = await self._call("getVersion")
        if not isinstance(result, dict) or "solana-core" not in result:
            raise ApiError(f"malformed getVersion result: {result!r}", None)
        if result.get("feature-set") is not None:
            result["feature-set"] = decode_u64(result["feature-set"], "feature-set")
        return result

    async def slot(self, commitment: Optional[str] = None) -> int:
        params = [{"commitment": commitment}] if commitment else []
        return decode_u64(await self._call("getSlot", params), "slot")

    async def balance(self, pubkey: str) -> int:
        """Return the balance of ``pubkey`` in lamports."""
        result = await self._call("getBalance", [pubkey])
        try:
            return decode_u64(result["value"], "balance")
        except (KeyError, TypeError):
            raise ApiError(f"malformed getBalance result: {result!r}", None)

    async def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        self._request_id += 1
        request = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": [] if params is None else params,
        }
        response = await self.client.post(self.endpoint.url, json=request)
        if response.status_code >= 400:
            raise ApiError(f"{response.text} - {method}", response.status_code)
        try:
            data = response.json()
        except ValueError:
            raise ApiError(
                f"undecodable response to {method}: {response.text}",
                response.status_code,
            )
        if not isinstance(data, dict):
            raise ApiError(f"unexpected response to {method}: {data!r}", None)

        error = data.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise ApiError(
                    f"{error.get('message', error)} - {method}",
                    response.status_code,
                    error.get("code", -1),
                    error.get("data"),
                )
            raise ApiError(f"{error} - {method}", response.status_code, -1)
        if "result" not in data:
            raise ApiError(f"missing result in response to {method}", None)
        return data["result"]


class Test(unittest.IsolatedAsyncioTestCase):
    def rpc_client(self, handler, **kwargs) -> RpcClient:
        self.requests: List[Dict[str, Any]] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(json.loads(request.content))
            self.headers = request.headers
            return handler(request)

        endpoint = EndpointConfig("http://127.0.0.1:8899", http2=False, **kwargs)
        return RpcClient(endpoint, httpx.MockTransport(record))

    async def test_send_transaction(self):
        client = self.rpc_client(
            lambda request: httpx.Response(
                200, json={"jsonrpc": "2.0", "id": 1, "result": "5sig"}
            ),
            auth_token="tok",
            skip_preflight=True,
        )
        self.assertEqual(await client.send_transaction(b"\x01\x02\x03"), "5sig")
        await client.close()

        request = self.requests[0]
        self.assertEqual(request["method"], "sendTransaction")
        self.assertEqual(request["params"][0], "AQID")
        self.assertEqual(
            request["params"][1],
            {
                "encoding": "base64",
                "skipPreflight": True,
                "preflightCommitment": "confirmed",
            },
        )
        self.assertEqual(self.headers["authorization"], "Bearer tok")
        self.assertTrue(
            self.headers[Metadata.CLIENT_HEADER].startswith("solana-deploy/")
        )

    async def test_rpc_error(self):
        client = self.rpc_client(
            lambda request: httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": 1,
                    "error": {
                        "code": -32002,
                        "message": "Transaction simulation failed",
                        "data": {"err": "BlockhashNotFound"},
                    },
                },
            )
        )
        with self.assertRaises(ApiError) as cm:
            await client.send_transaction(b"\x00")
        await client.close()
        self.assertTrue(cm.exception.is_rpc_error)
        self.assertEqual(cm.exception.code, -32002)
        self.assertEqual(cm.exception.data, {"err": "BlockhashNotFound"})

    async def test_http_error(self):
        client = self.rpc_client(lambda request: httpx.Response(503, text="busy"))
        with self.assertRaises(ApiError) as cm:
            await client.slot()
        await client.close()
        self.assertEqual(cm.exception.status_code, 503)
        self.assertFalse(cm.exception.is_rpc_error)

    async def test_signature_statuses(self):
        client = self.rpc_client(
            lambda request: httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": 1,
                    "result": {
                        "context": {"slot": 82},
                        "value": [
                            {
                                "slot": 72,
                                "confirmations": 10,
                                "err": None,
                                "confirmationStatus": "confirmed",
                            },
                            None,
                        ],
                    },
                },
            )
        )
        statuses = await client.signature_statuses(["a", "b"])
        await client.close()
        self.assertEqual(statuses[0], SignatureStatus(72, 10, "confirmed", None))
        self.assertIsNone(statuses[1])
        self.assertEqual(
            self.requests[0]["params"], [["a", "b"], {"searchTransactionHistory": True}]
        )

    async def test_imprecise_float_slot(self):
        client = self.rpc_client(
            lambda request: httpx.Response(
                200,
                content=b'{"jsonrpc":"2.0","id":1,"result":1.8446744073709552e19}',
            )
        )
        with self.assertRaises(ApiError):
            await client.slot()
        await client.close()

    async def test_string_encoded_balance(self):
        client = self.rpc_client(
            lambda request: httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": 1,
                    "result": {"context": {"slot": 1}, "value": "18446744073709551615"},
                },
            )
        )
        self.assertEqual(await client.balance("Pubkey1111"), 18446744073709551615)
        await client.close()

    async def test_health_and_version(self):
        def handler(request: httpx.Request) -> httpx.Response:
            method = json.loads(request.content)["method"]
            if method == "getHealth":
                return httpx.Response(
                    200,
                    json={
                        "jsonrpc": "2.0",
                        "id": 1,
                        "error": {"code": -32005, "message": "Node is behind"},
                    },
                )
            return httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": 2,
                    "result": {"solana-core": "1.18.4", "feature-set": 3469865029},
                },
            )

        client = self.rpc_client(handler)
        self.assertFalse(await client.health())
        version = await client.version()
        await client.close()
        self.assertEqual(version["solana-core"], "1.18.4")
        self.assertEqual(version["feature-set"], 3469865029)
        self.assertEqual([r["id"] for r in self.requests], [1, 2])

    async def test_undecodable_body(self):
        client = self.rpc_client(lambda request: httpx.Response(200, text="<html>"))
        with self.assertRaises(ApiError):
            await client.health()
        await client.close()


if __name__ == "__main__":
    unittest.main()
