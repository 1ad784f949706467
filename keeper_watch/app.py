"""Process wiring: configuration, bootstrap, tickers and shutdown."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import time
from typing import Callable, Optional, Sequence

from .alerting import AlertDispatcher, WebhookAlertDispatcher
from .chain import ChainClient, Web3ChainClient
from .config import WatchConfig, load_config
from .errors import AlertDeliveryError, BootstrapError, ChainReadError, ConfigError
from .janitor import Janitor
from .metrics import WatchMetrics
from .scheduler import BlockScheduler, Ticker
from .sequencer import Sequencer
from .state import SYSTEM_ADDRESS, JobStateStore
from .tracker import LivenessTracker

LOGGER = logging.getLogger("keeper_watch")

EXIT_OK = 0
EXIT_FAILURE = 1


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


class KeeperWatch:
    """Bootstraps the job store and drives the block and janitor tickers."""

    def __init__(
        self,
        config: WatchConfig,
        *,
        client: ChainClient | None = None,
        dispatcher: AlertDispatcher | None = None,
        metrics: WatchMetrics | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.client = client or Web3ChainClient(config.rpc_url, multicall_address=config.multicall_address)
        self.dispatcher = dispatcher or WebhookAlertDispatcher(
            config.webhook_url, alert_log_path=config.alert_log_path
        )
        self.metrics = metrics or WatchMetrics()
        self.store = JobStateStore()
        self.sequencer = Sequencer(self.client, config.sequencer_address)
        self.tracker = LivenessTracker(
            self.client,
            self.sequencer,
            self.store,
            self.dispatcher,
            threshold=config.unworked_blocks_threshold,
            ignored_reasons=config.ignored_reasons,
            metrics=self.metrics,
            clock=clock,
        )
        self.janitor = Janitor(self.store, config.max_job_age_seconds, metrics=self.metrics, clock=clock)
        self.scheduler: Optional[BlockScheduler] = None

    async def start(self) -> int:
        """Enumerate jobs and seed their records; returns the bootstrap height."""

        try:
            if isinstance(self.client, Web3ChainClient):
                chain_id = await self.client.ensure_connection()
                LOGGER.info("Connected to Ethereum network (chainId: %d)", chain_id)
            jobs = await self.sequencer.list_jobs()
        except ChainReadError as exc:
            raise BootstrapError(f"Unable to enumerate active jobs: {exc}") from exc
        LOGGER.info("Active jobs: %s", ", ".join(jobs) or "none")

        height = await self.tracker.bootstrap(jobs)
        self.scheduler = BlockScheduler(
            self.client,
            self.tracker,
            blocks_per_batch=self.config.blocks_per_batch,
            last_processed_block=height,
        )
        LOGGER.info("Last processed block initialized to: %d", height)
        LOGGER.info("Block batch interval: %s minute(s)", self.config.block_batch_interval_minutes)
        await self._notify(f"Keeper watch started, tracking {len(self.store)} jobs", height)
        return height

    async def run(self, stop: asyncio.Event) -> None:
        """Run both tickers until ``stop`` is set, then send the shutdown notice."""

        if self.scheduler is None:
            raise RuntimeError("start() must complete before run()")
        scheduler = self.scheduler

        async def sweep() -> None:
            scheduler.sweep(self.janitor)

        tickers = [
            Ticker("blocks", self.config.tick_interval_seconds, scheduler.tick, stop),
            Ticker("janitor", self.config.janitor_interval_seconds, sweep, stop),
        ]
        await asyncio.gather(*(ticker.run() for ticker in tickers))
        await self._notify("Keeper watch stopping", scheduler.last_processed_block or 0)

    async def _notify(self, message: str, block_number: int) -> None:
        try:
            await self.dispatcher.send(SYSTEM_ADDRESS, 0, block_number, message)
        except AlertDeliveryError as exc:
            LOGGER.warning("System notice not delivered: %s", exc)


async def serve(config: WatchConfig, *, stop: asyncio.Event | None = None) -> int:
    """Run the watch until SIGINT/SIGTERM (or ``stop``) and return an exit code."""

    watch = KeeperWatch(config)
    if config.metrics_port:
        watch.metrics.serve(config.metrics_port)
        LOGGER.info("Serving metrics on port %d", config.metrics_port)
    try:
        await watch.start()
    except BootstrapError as exc:
        LOGGER.error("[Fatal Error] Application initialization failed: %s", exc)
        return EXIT_FAILURE

    stop = stop or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)
    await watch.run(stop)
    LOGGER.info("Shutdown complete")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Alert when keeper jobs stop being worked.")
    parser.add_argument("--config", help="Optional YAML configuration file")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        configure_logging()
        LOGGER.error("Invalid configuration: %s", exc)
        return EXIT_FAILURE
    configure_logging(args.log_level or config.log_level)
    return asyncio.run(serve(config))


__all__ = ["KeeperWatch", "build_parser", "configure_logging", "main", "serve"]
