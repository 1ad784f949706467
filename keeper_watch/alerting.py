"""Alert delivery for unworked jobs and system notices."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import httpx

from .config import LOCAL_WEBHOOK
from .errors import AlertDeliveryError
from .state import SYSTEM_ADDRESS

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class JobAlert:
    """Structured alert payload for a single notification."""

    job_address: str
    unworked_blocks: int
    current_block: int
    reason: Optional[str] = None

    @property
    def is_system(self) -> bool:
        return self.job_address == SYSTEM_ADDRESS

    def content(self) -> str:
        if self.is_system:
            return f"ℹ️ Keeper watch notice (block {self.current_block}): {self.reason}"
        return (
            f"🚨 Alert! Job {self.job_address} hasn't been worked for {self.unworked_blocks} blocks "
            f"(current block: {self.current_block}). Reason: {self.reason}"
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "address": self.job_address,
            "unworked_blocks": self.unworked_blocks,
            "current_block": self.current_block,
            "reason": self.reason,
            "timestamp": time.time(),
        }


class AlertDispatcher(Protocol):
    """Sink for job alerts; raises :class:`AlertDeliveryError` on failure."""

    async def send(
        self,
        job_address: str,
        unworked_blocks: int,
        current_block: int,
        reason: Optional[str],
    ) -> None:  # pragma: no cover - protocol
        """Deliver one alert."""


def _persist(path: Path, alert: JobAlert) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(alert.to_json(), ensure_ascii=False) + "\n")


class WebhookAlertDispatcher:
    """Posts Discord-style ``{"content": ...}`` payloads to a webhook.

    A webhook URL of ``LOCAL`` routes alerts to the log instead of the network.
    """

    def __init__(
        self,
        webhook_url: str,
        *,
        timeout: float = 10.0,
        alert_log_path: Path | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._webhook_url = webhook_url.strip()
        self._timeout = timeout
        self._alert_log_path = alert_log_path
        self._transport = transport

    @property
    def local(self) -> bool:
        return self._webhook_url.upper() == LOCAL_WEBHOOK

    async def send(
        self,
        job_address: str,
        unworked_blocks: int,
        current_block: int,
        reason: Optional[str],
    ) -> None:
        alert = JobAlert(job_address, unworked_blocks, current_block, reason)
        if self.local:
            _LOGGER.warning("[Alert - LOCAL MODE] %s", alert.content())
        else:
            await self._post(alert)
            _LOGGER.info("Alert sent for %s", job_address)
        if self._alert_log_path is not None:
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, _persist, self._alert_log_path, alert)
            except OSError:
                _LOGGER.warning("Unable to append alert to %s", self._alert_log_path, exc_info=True)

    async def notify_system(self, message: str, current_block: int) -> None:
        """Send an operational notice that is not tied to a tracked job."""

        await self.send(SYSTEM_ADDRESS, 0, current_block, message)

    async def _post(self, alert: JobAlert) -> None:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._webhook_url, json={"content": alert.content()})
        except httpx.HTTPError as exc:
            raise AlertDeliveryError(f"Error sending alert for {alert.job_address}: {exc}") from exc
        if response.status_code >= 400:
            raise AlertDeliveryError(
                f"Failed to send alert. Status: {response.status_code}, Body: {response.text}",
                status_code=response.status_code,
            )


__all__ = ["AlertDispatcher", "JobAlert", "WebhookAlertDispatcher"]
