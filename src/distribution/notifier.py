"""Operational notifications about pipeline runs.

Notifications are best-effort. ``send_bounded`` runs one notifier call
on its own asyncio task and gives up after a timeout, so a slow or
broken notification channel can neither block nor fail a pipeline run.
"""

import asyncio
import enum
import logging
from abc import ABC, abstractmethod
from collections.abc import Coroutine
from datetime import datetime, timezone
from typing import Any

import httpx

from src.distribution.schemas import DistributionResult

logger = logging.getLogger(__name__)


class NotificationOutcome(str, enum.Enum):
    """What happened to one bounded notification."""
    SENT = "sent"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


class OpsNotifier(ABC):
    """Abstract operational notifier. Methods may raise; callers bound them."""

    @abstractmethod
    async def notify_complete(
        self,
        digest_title: str,
        digest_id: str,
        distribution_results: list[DistributionResult],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """A digest was produced and stored."""

    @abstractmethod
    async def notify_failure(self, error: str, phase: str | None = None) -> None:
        """A run failed fatally."""

    @abstractmethod
    async def notify_info(
        self, title: str, message: str, metadata: dict[str, Any] | None = None
    ) -> None:
        """Free-form informational message."""


class LogOpsNotifier(OpsNotifier):
    """Notifier that only writes to the log."""

    async def notify_complete(
        self,
        digest_title: str,
        digest_id: str,
        distribution_results: list[DistributionResult],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        published = [r.platform for r in distribution_results if r.success]
        logger.info(
            "Digest %s complete: %r (published to %s)",
            digest_id, digest_title, ", ".join(published) or "nowhere",
        )

    async def notify_failure(self, error: str, phase: str | None = None) -> None:
        logger.error("Digest pipeline failed%s: %s", f" during {phase}" if phase else "", error)

    async def notify_info(
        self, title: str, message: str, metadata: dict[str, Any] | None = None
    ) -> None:
        logger.info("%s: %s", title, message)


class SlackOpsNotifier(OpsNotifier):
    """Posts run notifications to an operations Slack webhook.

    Raises on delivery failure; ``send_bounded`` turns that into a
    ``failed`` outcome.
    """

    def __init__(
        self,
        webhook_url: str,
        channel: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._webhook_url = webhook_url
        self._channel = channel
        self._timeout = timeout

    def _format_message(
        self,
        kind: str,
        title: str,
        message: str,
        details: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> dict:
        """Build Slack Block Kit payload for one notification."""
        emoji = {
            "success": ":white_check_mark:",
            "error": ":x:",
            "info": ":information_source:",
        }.get(kind, ":white_circle:")

        blocks: list[dict] = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"{emoji} {title}"},
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": message},
            },
        ]
        if error:
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Error:* `{error}`"},
            })
        if details:
            lines = "\n".join(f"• *{key}:* {value}" for key, value in details.items())
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Details:*\n{lines}"},
            })
        blocks.append({
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": f"digest-pipeline • {datetime.now(timezone.utc):%Y-%m-%d %H:%M} UTC",
                },
            ],
        })

        payload: dict = {"text": title, "blocks": blocks}
        if self._channel:
            payload["channel"] = self._channel
        return payload

    async def _post(self, payload: dict) -> None:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(self._webhook_url, json=payload)
            resp.raise_for_status()

    async def notify_complete(
        self,
        digest_title: str,
        digest_id: str,
        distribution_results: list[DistributionResult],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        details = dict(metadata or {})
        details["digest_id"] = digest_id
        for result in distribution_results:
            if result.success:
                details[result.platform] = f"<{result.url}|posted>" if result.url else "posted"
            else:
                details[result.platform] = f"failed ({result.error})"

        await self._post(self._format_message(
            "success",
            "Digest published",
            f'New digest "{digest_title}" has been generated.',
            details,
        ))

    async def notify_failure(self, error: str, phase: str | None = None) -> None:
        message = "The digest pipeline failed"
        message += f" during {phase}." if phase else "."
        await self._post(self._format_message(
            "error", "Digest pipeline failed", message, error=error
        ))

    async def notify_info(
        self, title: str, message: str, metadata: dict[str, Any] | None = None
    ) -> None:
        await self._post(self._format_message("info", title, message, metadata))


def _discard_result(task: asyncio.Future) -> None:
    # Retrieve the abandoned send's exception so asyncio does not log it
    if not task.cancelled():
        task.exception()


async def send_bounded(
    notification: Coroutine[Any, Any, None] | None,
    timeout: float,
) -> NotificationOutcome:
    """
    Run a notifier call for at most ``timeout`` seconds.

    The call runs as a separate task. On timeout the task is cancelled
    and ``timed_out`` is returned. Exceptions from the call are logged
    and reported as ``failed``; nothing propagates except cancellation
    of the caller itself.

    Args:
        notification: Coroutine from an OpsNotifier method, or None to skip
        timeout: Upper bound in seconds

    Returns:
        NotificationOutcome
    """
    if notification is None:
        return NotificationOutcome.SKIPPED

    task = asyncio.ensure_future(notification)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task not in done:
        task.cancel()
        task.add_done_callback(_discard_result)
        logger.warning("Notification timed out after %.1fs", timeout)
        return NotificationOutcome.TIMED_OUT

    if task.cancelled():
        logger.warning("Notification cancelled before it finished")
        return NotificationOutcome.FAILED

    error = task.exception()
    if error is not None:
        logger.warning("Notification failed: %s", error, exc_info=error)
        return NotificationOutcome.FAILED

    return NotificationOutcome.SENT
