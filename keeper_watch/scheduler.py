"""Tick drivers for block reconciliation and janitor sweeps."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from .chain import ChainClient
from .janitor import Janitor
from .tracker import LivenessTracker

LOGGER = logging.getLogger(__name__)

TickAction = Callable[[], Awaitable[object]]


class Ticker:
    """Invoke ``action`` every ``interval_seconds`` until ``stop`` is set.

    Failures inside a tick are logged and the ticker carries on with the next
    interval. A tick that is already running is never interrupted by ``stop``;
    the loop exits once it returns.
    """

    def __init__(self, name: str, interval_seconds: float, action: TickAction, stop: asyncio.Event) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self._interval = interval_seconds
        self._action = action
        self._stop = stop

    async def run(self) -> None:
        LOGGER.debug("[%s] ticker started (interval=%.1fs)", self.name, self._interval)
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            else:
                break
            try:
                await self._action()
            except Exception:
                LOGGER.exception("[%s] tick failed", self.name)
        LOGGER.debug("[%s] ticker stopped", self.name)


class BlockScheduler:
    """Feeds new blocks to the tracker in order and owns the processed watermark."""

    def __init__(
        self,
        client: ChainClient,
        tracker: LivenessTracker,
        *,
        blocks_per_batch: int = 1,
        last_processed_block: Optional[int] = None,
    ) -> None:
        self._client = client
        self._tracker = tracker
        self._blocks_per_batch = max(1, blocks_per_batch)
        self._last_processed_block = last_processed_block
        self._processing = False

    @property
    def last_processed_block(self) -> Optional[int]:
        return self._last_processed_block

    @property
    def busy(self) -> bool:
        return self._processing

    async def tick(self) -> int:
        """Process every block since the watermark; returns how many were applied.

        A block failure propagates after the watermark has been advanced past
        every block that did succeed, so the next tick resumes at the failed one.
        """

        if self._processing:
            LOGGER.info("Already processing blocks, skipping this interval.")
            return 0
        self._processing = True
        processed = 0
        try:
            height = await self._client.current_height()
            if self._last_processed_block is None:
                self._last_processed_block = height - 1
                LOGGER.info("Initializing last processed block to %d", self._last_processed_block)
            start = self._last_processed_block + 1
            for chunk_start in range(start, height + 1, self._blocks_per_batch):
                chunk_end = min(chunk_start + self._blocks_per_batch - 1, height)
                LOGGER.info("Processing blocks from %d to %d", chunk_start, chunk_end)
                for block_number in range(chunk_start, chunk_end + 1):
                    await self._tracker.process_block(block_number)
                    self._advance(block_number)
                    processed += 1
            LOGGER.info("Last processed block is now %s (current block %d)", self._last_processed_block, height)
            return processed
        finally:
            self._processing = False

    def sweep(self, janitor: Janitor) -> List[str]:
        """Run ``janitor`` unless a block tick currently owns the store."""

        if self._processing:
            LOGGER.info("Block processing in progress; deferring janitor sweep.")
            return []
        return janitor.sweep()

    def _advance(self, block_number: int) -> None:
        current = self._last_processed_block
        if current is not None and block_number <= current:
            raise RuntimeError(f"watermark cannot move from {current} to {block_number}")
        self._last_processed_block = block_number


__all__ = ["BlockScheduler", "Ticker"]
