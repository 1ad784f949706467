"""Keeper job liveness watch."""

from .alerting import AlertDispatcher, JobAlert, WebhookAlertDispatcher
from .chain import CallRequest, CallResult, ChainClient, LogEntry, Web3ChainClient
from .config import WatchConfig, load_config
from .errors import AlertDeliveryError, BootstrapError, ChainReadError, ConfigError, KeeperWatchError
from .janitor import Janitor
from .scheduler import BlockScheduler, Ticker
from .sequencer import Sequencer
from .state import SYSTEM_ADDRESS, JobLivenessRecord, JobStateStore
from .tracker import BlockReport, LivenessTracker

__all__ = [
    "AlertDeliveryError",
    "AlertDispatcher",
    "BlockReport",
    "BlockScheduler",
    "BootstrapError",
    "CallRequest",
    "CallResult",
    "ChainClient",
    "ChainReadError",
    "ConfigError",
    "Janitor",
    "JobAlert",
    "JobLivenessRecord",
    "JobStateStore",
    "KeeperWatchError",
    "LivenessTracker",
    "LogEntry",
    "SYSTEM_ADDRESS",
    "Sequencer",
    "Ticker",
    "WatchConfig",
    "Web3ChainClient",
    "WebhookAlertDispatcher",
    "load_config",
]
