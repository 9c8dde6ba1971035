"""
LendTrust — On-chain Data Provider (Base)

Read-only access to a wallet's balance, nonce and transaction history.

    JSON-RPC  — eth_getBalance, eth_getTransactionCount (any Base node)
    Explorer  — account/txlist (Basescan-compatible API, needs a key)
"""
from typing import Any, Dict, List, Optional, Protocol

import httpx
import structlog

from lendtrust.errors import ChainProviderError

logger = structlog.get_logger()

_TIMEOUT = httpx.Timeout(10.0, connect=5.0)


class ChainDataProvider(Protocol):
    explorer_enabled: bool

    async def get_balance(self, address: str) -> int: ...
    async def get_transaction_count(self, address: str) -> int: ...
    async def get_transactions(self, address: str) -> List[Dict[str, Any]]: ...


class BaseChainClient:
    """
    Usage:
        chain = BaseChainClient(rpc_url="https://mainnet.base.org", explorer_key="...")
        wei = await chain.get_balance("0xabc...")
    """

    def __init__(
        self,
        rpc_url: str,
        explorer_url: str = "https://api.basescan.org/api",
        explorer_key: str = "",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._rpc_url = rpc_url
        self._explorer_url = explorer_url
        self._explorer_key = explorer_key
        self._client = client
        self._request_id = 0

    @property
    def explorer_enabled(self) -> bool:
        return bool(self._explorer_key)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=_TIMEOUT)
        return self._client

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        body = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            resp = await self._http().post(self._rpc_url, json=body)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ChainProviderError(f"{method}: {e}") from e
        if "error" in data:
            raise ChainProviderError(f"{method}: {data['error']}")
        return data.get("result")

    async def get_balance(self, address: str) -> int:
        result = await self._rpc("eth_getBalance", [address, "latest"])
        return int(result or "0x0", 16)

    async def get_transaction_count(self, address: str) -> int:
        result = await self._rpc("eth_getTransactionCount", [address, "latest"])
        return int(result or "0x0", 16)

    async def get_transactions(self, address: str) -> List[Dict[str, Any]]:
        """Full history, oldest first. Raises when the explorer reports failure."""
        params = {
            "module": "account",
            "action": "txlist",
            "address": address,
            "startblock": 0,
            "endblock": 99999999,
            "sort": "asc",
            "apikey": self._explorer_key,
        }
        try:
            resp = await self._http().get(self._explorer_url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ChainProviderError(f"txlist: {e}") from e

        result = data.get("result")
        if data.get("status") == "1" and isinstance(result, list):
            return result
        # "No transactions found" comes back as status 0 with an empty list
        if isinstance(result, list) and not result:
            return []
        raise ChainProviderError(f"txlist: {data.get('message', 'unexpected response')}")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
