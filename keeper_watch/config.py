"""Configuration loader for the keeper watch."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import yaml

from .chain import MULTICALL3_ADDRESS
from .errors import ConfigError
from .sequencer import DEFAULT_SEQUENCER_ADDRESS
from .state import normalize_address

CONFIG_PATH_ENV = "KEEPER_WATCH_CONFIG"
LOCAL_WEBHOOK = "LOCAL"

DEFAULT_IGNORED_REASONS: Tuple[str, ...] = (
    "No ilks ready",
    "Flap not possible",
    "No distribution",
    "No work to do",
    "shouldUpdate is false",
)

# field name -> (environment variable, file keys)
_SOURCES: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "rpc_url": ("ETHEREUM_RPC_URL", ("rpc_url", "rpcUrl", "ethereumRpcUrl")),
    "webhook_url": ("DISCORD_WEBHOOK_URL", ("webhook_url", "webhookUrl", "discordWebhookUrl")),
    "block_check_interval_ms": ("BLOCK_CHECK_INTERVAL", ("block_check_interval", "blockCheckInterval")),
    "block_batch_interval_minutes": ("BLOCK_BATCH_INTERVAL", ("block_batch_interval", "blockBatchInterval")),
    "unworked_blocks_threshold": (
        "UNWORKED_BLOCKS_THRESHOLD",
        ("unworked_blocks_threshold", "unworkedBlocksThreshold"),
    ),
    "max_job_age_ms": ("MAX_JOB_AGE", ("max_job_age", "maxJobAge")),
    "ignored_reasons": ("IGNORED_ARGS_MESSAGES", ("ignored_reasons", "ignoredReasons", "ignoredArgsMessages")),
    "sequencer_address": ("SEQUENCER_ADDRESS", ("sequencer_address", "sequencerAddress")),
    "multicall_address": ("MULTICALL_ADDRESS", ("multicall_address", "multicallAddress")),
    "log_level": ("LOG_LEVEL", ("log_level", "logLevel")),
    "metrics_port": ("METRICS_PORT", ("metrics_port", "metricsPort")),
    "alert_log_path": ("ALERT_LOG_PATH", ("alert_log_path", "alertLogPath")),
}


@dataclass(slots=True)
class WatchConfig:
    """Runtime configuration for the keeper watch."""

    rpc_url: str
    webhook_url: str
    block_check_interval_seconds: float = 15.0
    block_batch_interval_minutes: float = 5.0
    unworked_blocks_threshold: int = 1000
    max_job_age_seconds: float = 86400.0
    ignored_reasons: Tuple[str, ...] = field(default_factory=lambda: DEFAULT_IGNORED_REASONS)
    sequencer_address: str = DEFAULT_SEQUENCER_ADDRESS
    multicall_address: str = MULTICALL3_ADDRESS
    log_level: str = "INFO"
    metrics_port: Optional[int] = None
    alert_log_path: Optional[Path] = None

    def __post_init__(self) -> None:
        if not isinstance(self.rpc_url, str) or not self.rpc_url.strip():
            raise ConfigError("Missing ETHEREUM_RPC_URL in environment variables.")
        if not isinstance(self.webhook_url, str) or not self.webhook_url.strip():
            raise ConfigError("Missing DISCORD_WEBHOOK_URL in environment variables.")
        self.rpc_url = self.rpc_url.strip()
        self.webhook_url = self.webhook_url.strip()
        if self.block_check_interval_seconds <= 0:
            raise ConfigError("block check interval must be positive")
        if self.block_batch_interval_minutes <= 0:
            raise ConfigError("block batch interval must be positive")
        if self.unworked_blocks_threshold <= 0:
            raise ConfigError("unworked blocks threshold must be positive")
        if self.max_job_age_seconds <= 0:
            raise ConfigError("max job age must be positive")
        if self.metrics_port is not None and not (0 < self.metrics_port < 65536):
            raise ConfigError("metrics port must be between 1 and 65535")
        try:
            self.sequencer_address = normalize_address(self.sequencer_address)
            self.multicall_address = normalize_address(self.multicall_address)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
        self.ignored_reasons = tuple(self.ignored_reasons)
        self.log_level = self.log_level.strip().upper() or "INFO"

    @property
    def local_alerts(self) -> bool:
        return self.webhook_url.upper() == LOCAL_WEBHOOK

    @property
    def tick_interval_seconds(self) -> float:
        return self.block_batch_interval_minutes * 60.0

    @property
    def blocks_per_batch(self) -> int:
        return max(1, int(self.tick_interval_seconds // self.block_check_interval_seconds))

    @property
    def janitor_interval_seconds(self) -> float:
        return self.block_check_interval_seconds * 4


def _coerce_float(value: object, name: str) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be numeric, got {value!r}") from exc


def _coerce_int(value: object, name: str) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc


def _coerce_reasons(value: object) -> Tuple[str, ...]:
    if isinstance(value, str):
        items: Sequence[object] = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        raise ConfigError(f"ignored reasons must be a list or comma separated string, got {value!r}")
    return tuple(str(item).strip() for item in items if str(item).strip())


def _load_file(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"Configuration file not found: {path}") from exc
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Configuration file {path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("keeper watch configuration must be a mapping")
    return data


def _resolve(name: str, payload: Mapping[str, Any], environ: Mapping[str, str]) -> Any:
    env_key, file_keys = _SOURCES[name]
    raw_env = environ.get(env_key)
    if raw_env is not None and raw_env.strip() != "":
        return raw_env
    for key in file_keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def load_config(path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> WatchConfig:
    """Build a :class:`WatchConfig` from defaults, an optional YAML file and the environment.

    Interval and age settings keep their historical units: ``BLOCK_CHECK_INTERVAL``
    and ``MAX_JOB_AGE`` are milliseconds, ``BLOCK_BATCH_INTERVAL`` is minutes.
    """

    env = os.environ if environ is None else environ
    file_path = path or env.get(CONFIG_PATH_ENV)
    payload = _load_file(Path(file_path).expanduser()) if file_path else {}

    values: Dict[str, Any] = {
        "rpc_url": _resolve("rpc_url", payload, env) or "",
        "webhook_url": _resolve("webhook_url", payload, env) or "",
    }
    check_ms = _resolve("block_check_interval_ms", payload, env)
    if check_ms is not None:
        values["block_check_interval_seconds"] = _coerce_float(check_ms, "BLOCK_CHECK_INTERVAL") / 1000.0
    batch_minutes = _resolve("block_batch_interval_minutes", payload, env)
    if batch_minutes is not None:
        values["block_batch_interval_minutes"] = _coerce_float(batch_minutes, "BLOCK_BATCH_INTERVAL")
    threshold = _resolve("unworked_blocks_threshold", payload, env)
    if threshold is not None:
        values["unworked_blocks_threshold"] = _coerce_int(threshold, "UNWORKED_BLOCKS_THRESHOLD")
    max_age_ms = _resolve("max_job_age_ms", payload, env)
    if max_age_ms is not None:
        values["max_job_age_seconds"] = _coerce_float(max_age_ms, "MAX_JOB_AGE") / 1000.0
    reasons = _resolve("ignored_reasons", payload, env)
    if reasons is not None:
        values["ignored_reasons"] = _coerce_reasons(reasons)
    for name in ("sequencer_address", "multicall_address", "log_level"):
        value = _resolve(name, payload, env)
        if value is not None:
            values[name] = str(value)
    metrics_port = _resolve("metrics_port", payload, env)
    if metrics_port is not None:
        values["metrics_port"] = _coerce_int(metrics_port, "METRICS_PORT")
    alert_log = _resolve("alert_log_path", payload, env)
    if alert_log is not None:
        values["alert_log_path"] = Path(str(alert_log)).expanduser()
    return WatchConfig(**values)


__all__ = ["DEFAULT_IGNORED_REASONS", "LOCAL_WEBHOOK", "WatchConfig", "load_config"]
