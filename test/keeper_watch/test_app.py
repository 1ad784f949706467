import asyncio

import pytest

from keeper_watch.app import EXIT_FAILURE, KeeperWatch, build_parser, main
from keeper_watch.config import WatchConfig
from keeper_watch.errors import BootstrapError
from keeper_watch.state import SYSTEM_ADDRESS

JOB_A = "0x" + "a" * 40
JOB_B = "0x" + "b" * 40


def _config(**overrides):
    values = dict(
        rpc_url="http://localhost:8545",
        webhook_url="LOCAL",
        block_check_interval_seconds=0.01,
        block_batch_interval_minutes=0.0005,
        unworked_blocks_threshold=5000,
    )
    values.update(overrides)
    return WatchConfig(**values)


def _watch(chain, dispatcher, clock, **overrides):
    return KeeperWatch(_config(**overrides), client=chain, dispatcher=dispatcher, clock=clock)


def test_start_seeds_store_and_announces(chain, dispatcher, clock):
    chain.jobs = [JOB_A, JOB_B]
    watch = _watch(chain, dispatcher, clock)

    height = asyncio.run(watch.start())

    assert height == 5000
    assert watch.store.addresses() == [JOB_A, JOB_B]
    assert watch.scheduler.last_processed_block == 5000
    assert dispatcher.sent == [(SYSTEM_ADDRESS, 0, 5000, "Keeper watch started, tracking 2 jobs")]


def test_start_survives_undelivered_notice(chain, dispatcher, clock):
    chain.jobs = [JOB_A]
    dispatcher.fail = True
    watch = _watch(chain, dispatcher, clock)

    assert asyncio.run(watch.start()) == 5000
    assert JOB_A in watch.store


def test_start_fails_when_chain_is_unavailable(chain, dispatcher, clock):
    chain.jobs = [JOB_A]
    chain.fail_height = True
    watch = _watch(chain, dispatcher, clock)

    with pytest.raises(BootstrapError):
        asyncio.run(watch.start())

    assert len(watch.store) == 0
    assert dispatcher.sent == []


def test_run_processes_new_blocks_until_stopped(chain, dispatcher, clock):
    chain.jobs = [JOB_A, JOB_B]
    watch = _watch(chain, dispatcher, clock)

    async def scenario():
        await watch.start()
        chain.height = 5003
        stop = asyncio.Event()
        task = asyncio.create_task(watch.run(stop))
        while watch.scheduler.last_processed_block != 5003:
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=5)

    asyncio.run(scenario())

    assert watch.store.get(JOB_A).last_checked_block == 5003
    assert watch.store.get(JOB_A).consecutive_unworked_blocks == 1003
    assert dispatcher.sent[-1] == (SYSTEM_ADDRESS, 0, 5003, "Keeper watch stopping")


def test_run_requires_start(chain, dispatcher, clock):
    watch = _watch(chain, dispatcher, clock)

    with pytest.raises(RuntimeError):
        asyncio.run(watch.run(asyncio.Event()))


def test_main_reports_missing_configuration():
    assert main([]) == EXIT_FAILURE


def test_main_reports_missing_config_file(tmp_path):
    assert main(["--config", str(tmp_path / "absent.yaml")]) == EXIT_FAILURE


def test_parser_accepts_config_and_log_level():
    args = build_parser().parse_args(["--config", "watch.yaml", "--log-level", "debug"])

    assert args.config == "watch.yaml"
    assert args.log_level == "debug"
