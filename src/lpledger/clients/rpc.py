"""Lightweight JSON-RPC client for Ethereum-compatible nodes.

This module provides:
- `RPC`: an async client with sane timeouts/connection limits
- Helper utilities to format block numbers, topics and call data

Transport and node errors surface as `CollaboratorError` (retryable); the
client itself never retries.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx

from lpledger.core.errors import CollaboratorError
from lpledger.core.models import EventLog


def to_hex_block(x: int) -> str:
    """Return a 0x-prefixed hex block number."""
    return hex(x)


def pad_topic(value: int) -> str:
    """Encode an integer as a 32-byte topic (64 hex chars)."""
    return "0x" + format(value, "064x")


def encode_uint(value: int) -> str:
    return format(value, "064x")


def encode_address(address: str) -> str:
    return address.lower().removeprefix("0x").rjust(64, "0")


def _hex_int(v: Any) -> int | None:
    if isinstance(v, str) and v.startswith("0x"):
        return int(v, 16)
    if isinstance(v, int):
        return v
    return None


class RPC:
    """Minimal async RPC client.

    Parameters
    ----------
    url : str
        RPC endpoint URL.
    timeout_s : int
        Per-operation timeout in seconds (connect/read/write).
    max_connections : int
        Maximum concurrent connections to keep in the pool.
    """

    def __init__(self, url: str, *, timeout_s: int = 20, max_connections: int = 16) -> None:
        self.url = url
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=timeout_s,
                read=timeout_s,
                write=timeout_s,
                pool=max(30, timeout_s * 3),
            ),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max(1, max_connections // 2),
            ),
            http2=True,
        )

    async def call(self, method: str, params: list[Any]) -> Any:
        """Send one JSON-RPC request and return its ``result``."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            r = await self.client.post(self.url, json=payload)
            r.raise_for_status()
            data = r.json()
        except httpx.HTTPError as e:
            raise CollaboratorError(f"RPC {method} failed: {type(e).__name__}: {e}") from e
        if "error" in data:
            e = data["error"]
            raise CollaboratorError(f"RPC error: {e.get('code')} {e.get('message')}")
        return data.get("result")

    async def latest_block(self) -> int:
        """Return the latest block number as an int."""
        return int(await self.call("eth_blockNumber", []), 16)

    async def block_number_by_tag(self, tag: str) -> int | None:
        """Return the number of the block for ``tag`` (e.g. ``"finalized"``), or None."""
        block = await self.call("eth_getBlockByNumber", [tag, False])
        if not block:
            return None
        return int(block["number"], 16)

    async def block_timestamp(self, block_number: int) -> int:
        block = await self.call("eth_getBlockByNumber", [to_hex_block(block_number), False])
        if not block:
            raise CollaboratorError(f"Block {block_number} not found")
        return int(block["timestamp"], 16)

    async def eth_call(self, *, to: str, data: str, block_number: int | None = None) -> bytes:
        """Execute a read-only call, optionally at a historic block."""
        block = to_hex_block(block_number) if block_number is not None else "latest"
        result = await self.call("eth_call", [{"to": to, "data": data}, block])
        return bytes.fromhex((result or "0x")[2:])

    async def get_logs(
        self,
        *,
        address: str,
        topics: Sequence[Sequence[str] | str | None],
        from_block: int,
        to_block: int,
    ) -> list[EventLog]:
        """Fetch logs for an address matching a topic filter within a block range."""
        params = [
            {
                "address": address.lower(),
                "fromBlock": to_hex_block(from_block),
                "toBlock": to_hex_block(to_block),
                "topics": [
                    t if t is None or isinstance(t, str) else [x.lower() for x in t] for t in topics
                ],
            }
        ]
        result = await self.call("eth_getLogs", params)

        out: list[EventLog] = []
        for rl in result or []:
            out.append(
                EventLog(
                    address=rl["address"].lower(),
                    topics=tuple(t.lower() for t in rl.get("topics", [])),
                    data_hex=str(rl.get("data") or "0x"),
                    block_number=int(rl["blockNumber"], 16),
                    tx_hash=(rl.get("transactionHash") or "").lower(),
                    tx_index=int(rl["transactionIndex"], 16),
                    log_index=int(rl["logIndex"], 16),
                    block_timestamp=_hex_int(rl.get("blockTimestamp")),
                    removed=bool(rl.get("removed", False)),
                )
            )
        return out

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()
