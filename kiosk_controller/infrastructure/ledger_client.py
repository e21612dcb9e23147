"""
JSON-RPC ledger client.

Reads the chain head and full blocks from an Ethereum-compatible node over
HTTP. Transactions are validated at this boundary; records that fail
validation are skipped with a warning so one odd transaction never hides
the rest of its block.
"""

import itertools
from typing import Any, Optional

import httpx

from core.exceptions import ChainQueryError, MalformedTransactionError
from core.value_objects import ChainTransaction, LedgerBlock, hex_to_int
from loggers import logger


class JsonRpcLedgerClient:
    """
    LedgerReader over JSON-RPC.

    Attributes:
        rpc_url: Node endpoint.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            rpc_url: Node endpoint.
            timeout: Per-request timeout in seconds.
            client: Shared HTTP client; one is created when omitted.
        """
        if not rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")

        self.rpc_url = rpc_url
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._owns_client = client is None
        self._ids = itertools.count(1)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def current_height(self) -> int:
        """Latest block height."""
        result = await self._call("eth_blockNumber", [])
        try:
            return hex_to_int(result)
        except ValueError as e:
            raise ChainQueryError(f"Invalid block number {result!r}", method="eth_blockNumber") from e

    async def block_with_transactions(self, height: int) -> LedgerBlock:
        """
        Block at ``height`` with full transaction objects.

        Raises:
            ChainQueryError: On transport, HTTP or JSON-RPC errors, or if the
                node does not know the block.
        """
        result = await self._call("eth_getBlockByNumber", [hex(height), True])
        if not isinstance(result, dict):
            raise ChainQueryError(f"Block {height} not available", method="eth_getBlockByNumber")

        transactions = []
        for raw in result.get("transactions") or []:
            try:
                transactions.append(ChainTransaction.from_rpc(raw))
            except MalformedTransactionError as e:
                logger.warning(f"Skipping transaction in block {height}: {e.message}")

        return LedgerBlock(height=height, transactions=tuple(transactions))

    async def _call(self, method: str, params: list[Any]) -> Any:
        body = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        try:
            response = await self._client.post(self.rpc_url, json=body)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            raise ChainQueryError(f"{method} failed: {e}", method=method) from e
        except ValueError as e:
            raise ChainQueryError(f"{method} returned invalid JSON", method=method) from e

        if not isinstance(payload, dict):
            raise ChainQueryError(f"{method} returned {type(payload).__name__}", method=method)

        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ChainQueryError(f"{method} error: {message}", method=method)

        return payload.get("result")
