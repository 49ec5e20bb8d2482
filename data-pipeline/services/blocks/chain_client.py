"""JSON-RPC chain client used by the block finder.

The client does not retry. Engine call sites wrap each call with
``call_rpc`` from ``services.blocks.retry``.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

import aiohttp
import structlog

logger = structlog.get_logger()


class ChainRpcError(Exception):
    """Raised when the node returns a JSON-RPC error payload."""
    pass


@dataclass(frozen=True)
class BlockSample:
    """A block number paired with its Unix timestamp."""

    number: int
    timestamp: int


class ChainClient(Protocol):
    async def get_block_number(self) -> int: ...

    async def get_block(self, number: int) -> Optional[BlockSample]: ...

    async def get_network(self) -> int: ...


class JsonRpcChainClient:
    """Async client for an EVM JSON-RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        timeout: int = 30,
        rate_limit_semaphore: Optional[asyncio.Semaphore] = None,
    ):
        """Initialize chain client.

        Args:
            rpc_url: JSON-RPC endpoint URL
            timeout: Request timeout in seconds
            rate_limit_semaphore: Optional semaphore bounding in-flight requests

        Raises:
            ValueError: If rpc_url is empty
        """
        if not rpc_url:
            raise ValueError("rpc_url is required")

        self.rpc_url = rpc_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.rate_limit = rate_limit_semaphore or asyncio.Semaphore(5)
        self._request_id = 0

        self.logger = logger.bind(component="chain_client")

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        """Make a single JSON-RPC call.

        Raises:
            ChainRpcError: On JSON-RPC error responses
            aiohttp.ClientError: On HTTP/transport errors (including 429)
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        async with self.rate_limit:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.rpc_url, json=payload) as response:
                    response.raise_for_status()
                    data = await response.json()

        if "error" in data:
            error = data["error"] or {}
            code = error.get("code", "unknown")
            error_msg = error.get("message", "Unknown error")
            self.logger.error("rpc_error", method=method, code=code, error=error_msg)
            raise ChainRpcError(f"RPC error {code} on {method}: {error_msg}")

        return data.get("result")

    async def get_block_number(self) -> int:
        """Current chain height."""
        result = await self._rpc_call("eth_blockNumber", [])
        return int(result, 16)

    async def get_block(self, number: int) -> Optional[BlockSample]:
        """Block header by number, or None when the node does not have it."""
        result = await self._rpc_call("eth_getBlockByNumber", [hex(number), False])
        if result is None:
            return None

        return BlockSample(
            number=int(result["number"], 16),
            timestamp=int(result["timestamp"], 16),
        )

    async def get_network(self) -> int:
        """Chain id reported by the node."""
        result = await self._rpc_call("eth_chainId", [])
        return int(result, 16)
