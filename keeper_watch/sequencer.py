"""Sequencer (coordinator) and job contract reads."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from eth_abi import decode, encode

from .chain import BlockIdentifier, CallRequest, ChainClient, LogEntry, event_topic, function_selector
from .errors import ChainReadError
from .state import normalize_address

LOGGER = logging.getLogger(__name__)

DEFAULT_SEQUENCER_ADDRESS = "0x238b4E35dAed6100C6162fAE4510261f88996EC9"

NUM_JOBS_SELECTOR = function_selector("numJobs()")
JOB_AT_SELECTOR = function_selector("jobAt(uint256)")
GET_MASTER_SELECTOR = function_selector("getMaster()")
WORKABLE_SELECTOR = function_selector("workable(bytes32)")
WORK_EVENT_TOPIC = event_topic("Work(bytes32)")

ZERO_LEADER = b"\x00" * 32


@dataclass(frozen=True, slots=True)
class WorkableResult:
    """Decoded ``workable`` answer for one job.

    ``ok`` is false when the individual call reverted or returned data that
    could not be decoded; ``can_work`` and ``reason`` are meaningless then.
    """

    address: str
    ok: bool
    can_work: bool = False
    reason: bytes = b""


def is_zero_leader(leader: Optional[bytes]) -> bool:
    return not leader or bytes(leader) == ZERO_LEADER


class Sequencer:
    """Reads the job registry and leader identifier from the sequencer contract."""

    def __init__(self, client: ChainClient, address: str = DEFAULT_SEQUENCER_ADDRESS) -> None:
        self._client = client
        self.address = normalize_address(address)

    async def _call_one(self, data: bytes, *, stage: str, block_identifier: BlockIdentifier) -> bytes:
        results = await self._client.batch_call(
            [CallRequest(self.address, data)], block_identifier=block_identifier
        )
        if not results or not results[0].success:
            raise ChainReadError(f"Sequencer call reverted ({stage})", stage=stage)
        return results[0].return_data

    async def leader(self, *, block_identifier: BlockIdentifier = "latest") -> bytes:
        """Return the active network identifier (``getMaster()``)."""

        raw = await self._call_one(GET_MASTER_SELECTOR, stage="leader", block_identifier=block_identifier)
        try:
            (value,) = decode(["bytes32"], raw)
        except Exception as exc:
            raise ChainReadError(f"Malformed getMaster() response: {exc}", stage="leader") from exc
        return bytes(value)

    async def job_count(self, *, block_identifier: BlockIdentifier = "latest") -> int:
        raw = await self._call_one(NUM_JOBS_SELECTOR, stage="registry", block_identifier=block_identifier)
        try:
            (value,) = decode(["uint256"], raw)
        except Exception as exc:
            raise ChainReadError(f"Malformed numJobs() response: {exc}", stage="registry") from exc
        return int(value)

    async def list_jobs(self, *, block_identifier: BlockIdentifier = "latest") -> List[str]:
        """Enumerate every registered job address, lower-cased."""

        count = await self.job_count(block_identifier=block_identifier)
        if count == 0:
            return []
        calls = [
            CallRequest(self.address, JOB_AT_SELECTOR + encode(["uint256"], [index]))
            for index in range(count)
        ]
        results = await self._client.batch_call(calls, block_identifier=block_identifier)
        if len(results) != count:
            raise ChainReadError(f"jobAt() batch returned {len(results)} of {count} results", stage="registry")
        jobs: List[str] = []
        for index, result in enumerate(results):
            if not result.success:
                raise ChainReadError(f"jobAt({index}) reverted", stage="registry")
            try:
                (address,) = decode(["address"], result.return_data)
            except Exception as exc:
                raise ChainReadError(f"Malformed jobAt({index}) response: {exc}", stage="registry") from exc
            jobs.append(normalize_address(address))
        return jobs

    async def workable(
        self,
        jobs: Sequence[str],
        leader: bytes,
        *,
        block_identifier: BlockIdentifier = "latest",
    ) -> List[WorkableResult]:
        """Evaluate ``workable(leader)`` for every job in one batch."""

        if not jobs:
            return []
        data = WORKABLE_SELECTOR + encode(["bytes32"], [bytes(leader)])
        results = await self._client.batch_call(
            [CallRequest(job, data) for job in jobs], block_identifier=block_identifier
        )
        if len(results) != len(jobs):
            raise ChainReadError(
                f"workable() batch returned {len(results)} results for {len(jobs)} jobs",
                stage="workable",
            )
        decoded: List[WorkableResult] = []
        for job, result in zip(jobs, results):
            if not result.success:
                decoded.append(WorkableResult(address=job, ok=False))
                continue
            try:
                can_work, reason = decode(["bool", "bytes"], result.return_data)
            except Exception:
                LOGGER.warning("Undecodable workable() response for job %s", job)
                decoded.append(WorkableResult(address=job, ok=False))
                continue
            decoded.append(WorkableResult(address=job, ok=True, can_work=bool(can_work), reason=bytes(reason)))
        return decoded

    async def work_logs(self, jobs: Sequence[str], from_block: int, to_block: int) -> List[LogEntry]:
        """Return ``Work`` events emitted by ``jobs`` in the inclusive range."""

        return await self._client.get_logs(jobs, WORK_EVENT_TOPIC, from_block, to_block)


__all__ = [
    "DEFAULT_SEQUENCER_ADDRESS",
    "GET_MASTER_SELECTOR",
    "JOB_AT_SELECTOR",
    "NUM_JOBS_SELECTOR",
    "Sequencer",
    "WORKABLE_SELECTOR",
    "WORK_EVENT_TOPIC",
    "WorkableResult",
    "ZERO_LEADER",
    "is_zero_leader",
]
