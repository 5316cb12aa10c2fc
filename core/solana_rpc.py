"""
Minimal Solana JSON-RPC client.

Only the two reads the watcher needs:
- getSignaturesForAddress (newest first, bounded)
- getTransaction (jsonParsed or json encoding)
"""
import asyncio
import itertools
import logging
from typing import Any, List, Optional

import aiohttp

from core.errors import TransientFetchError

logger = logging.getLogger(__name__)

ENCODING_PARSED = "jsonParsed"
ENCODING_RAW = "json"


class SolanaRPCClient:
    """Async Solana RPC client over a shared aiohttp session."""

    def __init__(
        self,
        rpc_url: str,
        commitment: str = "confirmed",
        timeout: float = 15,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize the client; the session is created lazily if not given."""
        self.rpc_url = rpc_url
        self.commitment = commitment
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._ids = itertools.count(1)

    async def _ensure_session(self):
        """Ensure aiohttp session exists."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def close(self):
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _call(self, method: str, params: list, signature: Optional[str] = None) -> Any:
        """
        Perform one JSON-RPC call and return its ``result``.

        Raises:
            TransientFetchError: on HTTP, transport, timeout or RPC errors
        """
        await self._ensure_session()

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        try:
            async with self._session.post(self.rpc_url, json=payload, timeout=self._timeout) as response:
                if response.status != 200:
                    raise TransientFetchError(method, f"HTTP {response.status}", signature)
                data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            raise TransientFetchError(method, "request timed out", signature)
        except aiohttp.ClientError as e:
            raise TransientFetchError(method, f"transport error: {e}", signature)
        except ValueError as e:
            raise TransientFetchError(method, f"invalid JSON response: {e}", signature)

        if not isinstance(data, dict):
            raise TransientFetchError(method, "unexpected response shape", signature)

        error = data.get("error")
        if error:
            message = error.get("message", error) if isinstance(error, dict) else error
            raise TransientFetchError(method, f"RPC error: {message}", signature)

        return data.get("result")

    async def get_signatures_for_address(self, address: str, limit: int) -> List[dict]:
        """
        Recent signatures involving an address, newest first.

        Returns:
            List of {signature, slot, err, blockTime, ...} dicts
        """
        result = await self._call(
            "getSignaturesForAddress",
            [address, {"limit": limit, "commitment": self.commitment}],
        )
        if not isinstance(result, list):
            return []
        return [item for item in result if isinstance(item, dict) and item.get("signature")]

    async def get_transaction(self, signature: str, encoding: str = ENCODING_PARSED) -> Optional[dict]:
        """
        Full transaction detail, or None if the node does not have it.
        """
        result = await self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": encoding,
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
            signature=signature,
        )
        if result is None:
            logger.debug(f"Transaction {signature} not found ({encoding})")
            return None
        return result if isinstance(result, dict) else None
