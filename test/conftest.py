"""Shared fakes for the keeper watch suites."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest
from eth_abi import decode, encode

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from keeper_watch.chain import CallRequest, CallResult, LogEntry
from keeper_watch.errors import AlertDeliveryError, ChainReadError
from keeper_watch.metrics import WatchMetrics
from keeper_watch.sequencer import (
    GET_MASTER_SELECTOR,
    JOB_AT_SELECTOR,
    NUM_JOBS_SELECTOR,
    WORK_EVENT_TOPIC,
    WORKABLE_SELECTOR,
    Sequencer,
)
from keeper_watch.state import JobStateStore
from keeper_watch.tracker import LivenessTracker

SEQUENCER = "0x238b4e35daed6100c6162fae4510261f88996ec9"
LEADER = b"\x11" * 32


class FakeChain:
    """In-memory chain answering sequencer and job calls with ABI-encoded data."""

    def __init__(self, *, height: int = 5000, jobs: Sequence[str] = ()) -> None:
        self.height = height
        self.jobs: List[str] = list(jobs)
        self.default_leader: bytes = LEADER
        self.leaders: Dict[int, bytes] = {}
        self.workable: Dict[str, Tuple[bool, bytes]] = {}
        self.workable_at: Dict[Tuple[int, str], Tuple[bool, bytes]] = {}
        self.reverting: Set[str] = set()
        self.work_events: Dict[str, List[int]] = {}
        self.fail_height = False
        self.fail_leader = False
        self.fail_workable = False
        self.fail_logs_for: Set[str] = set()
        self.fail_logs = False
        self.log_queries: List[Tuple[Tuple[str, ...], int, int]] = []
        self.workable_blocks: List[object] = []

    def set_workable(self, job: str, can_work: bool, reason: bytes | str = b"") -> None:
        raw = reason.encode("utf-8") if isinstance(reason, str) else reason
        self.workable[job] = (can_work, raw)

    def add_work(self, job: str, block: int) -> None:
        self.work_events.setdefault(job, []).append(block)

    def leader_at(self, block: object) -> bytes:
        if isinstance(block, int) and block in self.leaders:
            return self.leaders[block]
        return self.default_leader

    async def current_height(self) -> int:
        await asyncio.sleep(0)
        if self.fail_height:
            raise ChainReadError("height unavailable", stage="height")
        return self.height

    async def batch_call(self, calls: Sequence[CallRequest], *, block_identifier: object = "latest") -> List[CallResult]:
        await asyncio.sleep(0)
        results: List[CallResult] = []
        for call in calls:
            selector, args = call.data[:4], call.data[4:]
            if selector == GET_MASTER_SELECTOR:
                if self.fail_leader:
                    raise ChainReadError("getMaster failed", stage="leader")
                results.append(CallResult(True, encode(["bytes32"], [self.leader_at(block_identifier)])))
            elif selector == NUM_JOBS_SELECTOR:
                results.append(CallResult(True, encode(["uint256"], [len(self.jobs)])))
            elif selector == JOB_AT_SELECTOR:
                (index,) = decode(["uint256"], args)
                results.append(CallResult(True, encode(["address"], [self.jobs[index]])))
            elif selector == WORKABLE_SELECTOR:
                if self.fail_workable:
                    raise ChainReadError("multicall failed", stage="batch_call")
                self.workable_blocks.append(block_identifier)
                if call.target in self.reverting:
                    results.append(CallResult(False, b""))
                    continue
                answer = self.workable_at.get((block_identifier, call.target))  # type: ignore[arg-type]
                can_work, reason = answer or self.workable.get(call.target, (True, b""))
                results.append(CallResult(True, encode(["bool", "bytes"], [can_work, reason])))
            else:
                results.append(CallResult(False, b""))
        return results

    async def get_logs(self, addresses: Sequence[str], topic: str, from_block: int, to_block: int) -> List[LogEntry]:
        await asyncio.sleep(0)
        assert topic == WORK_EVENT_TOPIC
        self.log_queries.append((tuple(addresses), from_block, to_block))
        if self.fail_logs or any(address in self.fail_logs_for for address in addresses):
            raise ChainReadError("eth_getLogs failed", stage="logs")
        entries: List[LogEntry] = []
        for address in addresses:
            for block in self.work_events.get(address, []):
                if from_block <= block <= to_block:
                    entries.append(LogEntry(address=address, block_number=block, topics=(topic,)))
        return entries


class RecordingDispatcher:
    """Alert sink remembering every delivery; optionally failing."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, int, int, Optional[str]]] = []
        self.fail = False

    async def send(self, job_address: str, unworked_blocks: int, current_block: int, reason: Optional[str]) -> None:
        await asyncio.sleep(0)
        if self.fail:
            raise AlertDeliveryError("webhook unavailable", status_code=503)
        self.sent.append((job_address, unworked_blocks, current_block, reason))


class ManualClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store() -> JobStateStore:
    return JobStateStore()


@pytest.fixture
def make_tracker(chain: FakeChain, store: JobStateStore, dispatcher: RecordingDispatcher, clock: ManualClock):
    def _build(threshold: int = 10, ignored: Sequence[str] = ("No work to do",)) -> LivenessTracker:
        return LivenessTracker(
            chain,
            Sequencer(chain, SEQUENCER),
            store,
            dispatcher,
            threshold=threshold,
            ignored_reasons=ignored,
            metrics=WatchMetrics(),
            clock=clock,
        )

    return _build
