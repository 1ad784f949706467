"""Chain client interface and its web3.py implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Protocol, Sequence, Tuple, Union

from eth_abi import decode, encode
from web3 import AsyncWeb3, Web3

from .errors import ChainReadError

LOGGER = logging.getLogger(__name__)

MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"
"""Canonical Multicall3 deployment, identical on every major EVM chain."""

BlockIdentifier = Union[int, str]


def function_selector(signature: str) -> bytes:
    """Return the 4-byte selector for a Solidity function signature."""

    return bytes(Web3.keccak(text=signature)[:4])


def event_topic(signature: str) -> str:
    """Return the 0x-prefixed topic hash for a Solidity event signature."""

    return "0x" + bytes(Web3.keccak(text=signature)).hex()


AGGREGATE3_SELECTOR = function_selector("aggregate3((address,bool,bytes)[])")


@dataclass(frozen=True, slots=True)
class CallRequest:
    """A single read-only contract call inside a batch."""

    target: str
    data: bytes


@dataclass(frozen=True, slots=True)
class CallResult:
    """Outcome of one call inside a batch."""

    success: bool
    return_data: bytes = b""


@dataclass(frozen=True, slots=True)
class LogEntry:
    """Minimal view of an emitted event log."""

    address: str
    block_number: int
    topics: Tuple[str, ...] = field(default_factory=tuple)


class ChainClient(Protocol):
    """Subset of chain access required by the liveness tracker."""

    async def current_height(self) -> int:  # pragma: no cover - protocol
        """Return the latest block number."""

    async def batch_call(
        self,
        calls: Sequence[CallRequest],
        *,
        block_identifier: BlockIdentifier = "latest",
    ) -> List[CallResult]:  # pragma: no cover - protocol
        """Execute ``calls`` in one round-trip, returning one result per call."""

    async def get_logs(
        self,
        addresses: Sequence[str],
        topic: str,
        from_block: int,
        to_block: int,
    ) -> List[LogEntry]:  # pragma: no cover - protocol
        """Return logs emitted by ``addresses`` with ``topic`` in the inclusive range."""


def _hex_topic(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


class Web3ChainClient:
    """Async web3.py client batching reads through Multicall3."""

    def __init__(
        self,
        rpc_url: str,
        *,
        multicall_address: str = MULTICALL3_ADDRESS,
        web3: AsyncWeb3 | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._multicall = Web3.to_checksum_address(multicall_address)
        self.web3 = web3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        LOGGER.debug("Chain client initialised for %s", rpc_url)

    async def ensure_connection(self) -> int:
        """Return the chain id, raising :class:`ChainReadError` when unreachable."""

        try:
            chain_id = await self.web3.eth.chain_id
        except Exception as exc:
            raise ChainReadError(f"Unable to reach RPC endpoint: {exc}", stage="connect") from exc
        return int(chain_id)

    async def current_height(self) -> int:
        try:
            return int(await self.web3.eth.block_number)
        except Exception as exc:
            raise ChainReadError(f"Failed to read block height: {exc}", stage="height") from exc

    async def batch_call(
        self,
        calls: Sequence[CallRequest],
        *,
        block_identifier: BlockIdentifier = "latest",
    ) -> List[CallResult]:
        if not calls:
            return []
        payload = encode(
            ["(address,bool,bytes)[]"],
            [[(Web3.to_checksum_address(call.target), True, call.data) for call in calls]],
        )
        transaction = {"to": self._multicall, "data": "0x" + (AGGREGATE3_SELECTOR + payload).hex()}
        try:
            raw = await self.web3.eth.call(transaction, block_identifier=block_identifier)
        except Exception as exc:
            raise ChainReadError(f"Multicall of {len(calls)} calls failed: {exc}", stage="batch_call") from exc
        try:
            (results,) = decode(["(bool,bytes)[]"], bytes(raw))
        except Exception as exc:
            raise ChainReadError(f"Malformed multicall response: {exc}", stage="batch_call") from exc
        if len(results) != len(calls):
            raise ChainReadError(
                f"Multicall returned {len(results)} results for {len(calls)} calls",
                stage="batch_call",
            )
        return [CallResult(success=bool(ok), return_data=bytes(data)) for ok, data in results]

    async def get_logs(
        self,
        addresses: Sequence[str],
        topic: str,
        from_block: int,
        to_block: int,
    ) -> List[LogEntry]:
        if not addresses:
            return []
        filter_params = {
            "address": [Web3.to_checksum_address(address) for address in addresses],
            "topics": [topic],
            "fromBlock": int(from_block),
            "toBlock": int(to_block),
        }
        try:
            logs = await self.web3.eth.get_logs(filter_params)
        except Exception as exc:
            raise ChainReadError(
                f"Log query {from_block}-{to_block} for {len(addresses)} addresses failed: {exc}",
                stage="logs",
            ) from exc
        return [
            LogEntry(
                address=str(log["address"]).lower(),
                block_number=int(log["blockNumber"]),
                topics=tuple(_hex_topic(item) for item in log.get("topics", ())),
            )
            for log in logs
        ]


__all__ = [
    "AGGREGATE3_SELECTOR",
    "BlockIdentifier",
    "CallRequest",
    "CallResult",
    "ChainClient",
    "LogEntry",
    "MULTICALL3_ADDRESS",
    "Web3ChainClient",
    "event_topic",
    "function_selector",
]
