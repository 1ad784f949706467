"""Block-by-block liveness reconciliation for keeper jobs.

For every block the tracker asks each job whether it still needs work and, when
a job claims it does not, confirms against the ``Work`` event log that the work
really happened since the last reconciled block. The resulting unworked streak
drives alerting: once it reaches the configured threshold an alert is sent and
the streak restarts, unless the job's reason is a known benign "nothing to do"
message, in which case the alert is suppressed and the streak keeps growing.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Union

from .alerting import AlertDispatcher
from .chain import ChainClient
from .errors import AlertDeliveryError, BootstrapError, ChainReadError
from .metrics import WatchMetrics
from .sequencer import Sequencer, WorkableResult, is_zero_leader
from .state import SYSTEM_ADDRESS, JobLivenessRecord, JobStateStore, normalize_address

LOGGER = logging.getLogger(__name__)

BOOTSTRAP_LOOKBACK_BLOCKS = 1000
MAX_LOG_QUERY_SPAN = 999
"""Largest number of blocks requested in one log query after bootstrap."""


def decode_reason(raw: bytes) -> str:
    """Decode a ``workable`` reason, falling back to a hex sentinel."""

    try:
        return bytes(raw).decode("utf-8")
    except UnicodeDecodeError:
        return f"Non-UTF8 args: 0x{bytes(raw).hex()}"


@dataclass(slots=True)
class BlockReport:
    """Summary of one reconciled block."""

    block_number: int
    skipped: bool = False
    reconciled: int = 0
    alerts: int = 0
    suppressed: int = 0
    failures: int = 0


class LivenessTracker:
    """Owns reconciliation of the job state store against the chain."""

    def __init__(
        self,
        client: ChainClient,
        sequencer: Sequencer,
        store: JobStateStore,
        dispatcher: AlertDispatcher,
        *,
        threshold: int,
        ignored_reasons: Iterable[str] = (),
        metrics: WatchMetrics | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if threshold <= 0:
            raise ValueError("threshold must be positive")
        self._client = client
        self._sequencer = sequencer
        self._store = store
        self._dispatcher = dispatcher
        self._threshold = threshold
        self._ignored: FrozenSet[str] = frozenset(ignored_reasons)
        self._metrics = metrics or WatchMetrics()
        self._clock = clock

    @property
    def store(self) -> JobStateStore:
        return self._store

    @property
    def metrics(self) -> WatchMetrics:
        return self._metrics

    # ------------------------------------------------------------------
    # Bootstrap
    async def bootstrap(self, jobs: Sequence[str]) -> int:
        """Seed one record per job from recent ``Work`` history.

        Returns the block height the records were seeded at. Any chain failure
        raises :class:`BootstrapError` and leaves the store untouched.
        """

        addresses = _unique_jobs(jobs)
        LOGGER.info("Initializing job states for %d jobs...", len(addresses))
        try:
            height = await self._client.current_height()
            floor = max(0, height - BOOTSTRAP_LOOKBACK_BLOCKS)
            leader = await self._sequencer.leader(block_identifier=height)
            LOGGER.info("Fetching Work events from block %d to %d for %d jobs...", floor, height, len(addresses))
            logs = await self._sequencer.work_logs(addresses, floor, height) if addresses else []
        except ChainReadError as exc:
            self._metrics.chain_errors.labels(exc.stage).inc()
            raise BootstrapError(f"Job state initialization failed: {exc}") from exc

        LOGGER.info("Fetched %d Work events from the blockchain.", len(logs))
        tracked = set(addresses)
        last_worked: Dict[str, int] = {}
        for log in logs:
            if log.address not in tracked or not floor <= log.block_number <= height:
                continue
            if log.block_number > last_worked.get(log.address, -1):
                last_worked[log.address] = log.block_number

        now = self._clock()
        records: List[JobLivenessRecord] = []
        for address in addresses:
            worked = last_worked.get(address)
            if worked is None:
                LOGGER.info("Job %s NOT worked in the last %d blocks.", address, height - floor)
                worked_block, streak = floor, height - floor
            else:
                LOGGER.info("Job %s last worked at block %d", address, worked)
                worked_block, streak = worked, height - worked
            records.append(JobLivenessRecord(address, worked_block, height, streak, now))
        for record in records:
            self._store.upsert(record)
        self._metrics.tracked_jobs.set(len(self._store))

        if is_zero_leader(leader):
            LOGGER.info("No active master network at block %d; skipping workable() status.", height)
        else:
            await self._log_workable_status(addresses, leader, height)
        LOGGER.info("Initialization complete. Job states have been set up for %d jobs.", len(self._store))
        return height

    async def _log_workable_status(self, addresses: Sequence[str], leader: bytes, height: int) -> None:
        try:
            results = await self._sequencer.workable(addresses, leader, block_identifier=height)
        except ChainReadError as exc:
            LOGGER.warning("Unable to read workable() status during initialization: %s", exc)
            return
        for result in results:
            record = self._store.get(result.address)
            if not result.ok or record is None:
                LOGGER.info("workable() for job %s unavailable at block %d", result.address, height)
                continue
            LOGGER.info(
                "workable() for job %s: canWork=%s args=%r streak=%d",
                result.address,
                result.can_work,
                decode_reason(result.reason),
                record.consecutive_unworked_blocks,
            )

    # ------------------------------------------------------------------
    # Per-block reconciliation
    async def process_block(self, block_number: int) -> BlockReport:
        """Reconcile every tracked job against ``block_number``.

        Raises :class:`ChainReadError` when the leader lookup or the batched
        ``workable`` call fails; nothing is mutated in that case.
        """

        report = BlockReport(block_number)
        try:
            leader = await self._sequencer.leader(block_identifier=block_number)
        except ChainReadError as exc:
            self._metrics.chain_errors.labels("leader").inc()
            LOGGER.error("[Block %d] Error fetching network identifier: %s", block_number, exc)
            raise

        if is_zero_leader(leader):
            LOGGER.info("[Block %d] No active master network. Skipping job processing.", block_number)
            self._metrics.blocks_skipped.inc()
            report.skipped = True
            return report

        jobs = self._store.addresses()
        try:
            results = await self._sequencer.workable(jobs, leader, block_identifier=block_number)
        except ChainReadError as exc:
            self._metrics.chain_errors.labels("workable").inc()
            LOGGER.error("[Block %d] Error in batched workable() calls: %s", block_number, exc)
            raise
        LOGGER.debug("[Block %d] Received workable() results for %d jobs", block_number, len(results))

        lookups = await self._lookup_work(results, block_number)
        for result in results:
            await self._reconcile_job(result, block_number, lookups, report)

        self._metrics.blocks_processed.inc()
        LOGGER.info(
            "[Block %d] Reconciled %d jobs (alerts=%d suppressed=%d failures=%d)",
            block_number,
            report.reconciled,
            report.alerts,
            report.suppressed,
            report.failures,
        )
        return report

    async def _lookup_work(
        self, results: Sequence[WorkableResult], block_number: int
    ) -> Dict[str, Union[bool, ChainReadError]]:
        """Check the ``Work`` log for every job that claims it needs no work."""

        ranges: Dict[str, int] = {}
        for result in results:
            record = self._store.get(result.address)
            if not result.ok or result.can_work or record is None:
                continue
            if block_number <= record.last_checked_block:
                continue
            ranges[result.address] = max(record.last_checked_block + 1, block_number - MAX_LOG_QUERY_SPAN + 1)

        addresses = list(ranges)
        outcomes = await asyncio.gather(
            *(self._was_worked(address, ranges[address], block_number) for address in addresses),
            return_exceptions=True,
        )
        resolved: Dict[str, Union[bool, ChainReadError]] = {}
        for address, outcome in zip(addresses, outcomes):
            if isinstance(outcome, BaseException) and not isinstance(outcome, ChainReadError):
                raise outcome
            resolved[address] = outcome
        return resolved

    async def _was_worked(self, address: str, from_block: int, to_block: int) -> bool:
        logs = await self._sequencer.work_logs([address], from_block, to_block)
        return any(log.address == address for log in logs)

    async def _reconcile_job(
        self,
        result: WorkableResult,
        block_number: int,
        lookups: Dict[str, Union[bool, ChainReadError]],
        report: BlockReport,
    ) -> None:
        record = self._store.get(result.address)
        if record is None:
            return
        if not result.ok:
            LOGGER.warning("[Block %d] No workable result for job %s. Skipping.", block_number, result.address)
            report.failures += 1
            return
        if block_number <= record.last_checked_block:
            LOGGER.debug("[Block %d] Job %s already reconciled", block_number, result.address)
            return

        reason = decode_reason(result.reason)
        LOGGER.debug(
            "[Block %d] workable() result for job %s: canWork=%s args=%r",
            block_number,
            result.address,
            result.can_work,
            reason,
        )
        elapsed = block_number - record.last_checked_block
        updated = replace(record)
        if result.can_work:
            updated.consecutive_unworked_blocks += elapsed
        else:
            worked = lookups.get(result.address)
            if not isinstance(worked, bool):
                self._metrics.chain_errors.labels("logs").inc()
                LOGGER.warning(
                    "[Block %d] Could not confirm Work events for job %s: %s",
                    block_number,
                    result.address,
                    worked,
                )
                report.failures += 1
                return
            if worked:
                updated.last_worked_block = block_number
                updated.consecutive_unworked_blocks = 0
            else:
                updated.consecutive_unworked_blocks += elapsed
        updated.last_checked_block = block_number
        updated.last_update_time = self._clock()

        if updated.consecutive_unworked_blocks >= self._threshold:
            await self._maybe_alert(updated, block_number, reason, report)

        self._store.upsert(updated)
        report.reconciled += 1
        LOGGER.debug("[Block %d] Job %s state updated: %s", block_number, updated.address, updated.as_log_dict())

    async def _maybe_alert(
        self,
        record: JobLivenessRecord,
        block_number: int,
        reason: Optional[str],
        report: BlockReport,
    ) -> None:
        if reason is not None and reason in self._ignored:
            LOGGER.info(
                "[Alert suppressed] Job %s unworked for %d blocks due to ignored reason: %s",
                record.address,
                record.consecutive_unworked_blocks,
                reason,
            )
            self._metrics.alerts_suppressed.inc()
            report.suppressed += 1
            return
        try:
            await self._dispatcher.send(record.address, record.consecutive_unworked_blocks, block_number, reason)
        except AlertDeliveryError as exc:
            LOGGER.error("[Block %d] Error sending alert for job %s: %s", block_number, record.address, exc)
            self._metrics.alert_failures.inc()
            report.failures += 1
            return
        self._metrics.alerts_dispatched.inc()
        report.alerts += 1
        record.consecutive_unworked_blocks = 0


def _unique_jobs(jobs: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for job in jobs:
        address = normalize_address(job)
        if address == SYSTEM_ADDRESS:
            LOGGER.warning("Ignoring reserved system address in job list")
            continue
        seen.setdefault(address, None)
    return list(seen)


__all__ = [
    "BOOTSTRAP_LOOKBACK_BLOCKS",
    "BlockReport",
    "LivenessTracker",
    "MAX_LOG_QUERY_SPAN",
    "decode_reason",
]
