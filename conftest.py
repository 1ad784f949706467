"""Repository-wide pytest configuration.

Keeps the repository root importable regardless of the invocation directory and
makes sure configuration environment variables from the caller's shell do not
leak into suites that exercise :func:`keeper_watch.config.load_config`.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _isolate_config_env(monkeypatch: pytest.MonkeyPatch):
    """Clear keeper watch settings so each test sees only what it sets."""

    for key in [
        "KEEPER_WATCH_CONFIG",
        "ETHEREUM_RPC_URL",
        "DISCORD_WEBHOOK_URL",
        "BLOCK_CHECK_INTERVAL",
        "BLOCK_BATCH_INTERVAL",
        "UNWORKED_BLOCKS_THRESHOLD",
        "MAX_JOB_AGE",
        "IGNORED_ARGS_MESSAGES",
        "SEQUENCER_ADDRESS",
        "MULTICALL_ADDRESS",
        "LOG_LEVEL",
        "METRICS_PORT",
        "ALERT_LOG_PATH",
    ]:
        if key in os.environ:
            monkeypatch.delenv(key)
    yield
