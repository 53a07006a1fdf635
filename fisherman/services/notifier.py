"""Best-effort chat notifications of deployment results.

``DiscordNotifier`` posts one message per result to a Discord channel through
the REST API.  Delivery problems are logged and dropped: a failed
notification never changes the outcome of the deployment it describes.
``NullNotifier`` is used when no endpoint is configured and
``InMemoryNotifier`` captures messages in tests.
"""

from __future__ import annotations

from typing import Protocol

import httpx
import structlog

from fisherman.config import DiscordConfig
from fisherman.schemas.deployments import DeploymentOutcome, DeploymentResult

logger = structlog.get_logger()

DISCORD_API_URL = "https://discord.com/api/v10"
NOTIFY_TIMEOUT_SECONDS = 10.0
MAX_DETAIL_CHARS = 1500
MAX_SUBJECT_CHARS = 200

_HEADLINES = {
    DeploymentOutcome.SUCCESS: "deployed",
    DeploymentOutcome.SKIPPED_WRONG_BRANCH: "skipped (not the tracked branch)",
    DeploymentOutcome.SKIPPED_CONCURRENT: "skipped (deployment already in progress)",
    DeploymentOutcome.AUTH_FAILED: "rejected (invalid signature)",
    DeploymentOutcome.MALFORMED_PAYLOAD: "rejected (malformed payload)",
    DeploymentOutcome.SYNC_FAILED: "failed to synchronize",
    DeploymentOutcome.BUILD_FAILED: "failed to build",
}


class Notifier(Protocol):
    """Protocol for reporting a terminal deployment result."""

    async def notify(self, result: DeploymentResult) -> None:
        """Send ``result`` once. Must not raise on delivery failure."""
        ...


def format_message(result: DeploymentResult) -> str:
    """Render ``result`` as a short Markdown message."""
    headline = _HEADLINES[result.outcome]
    commit = f" `{result.short_sha}`" if result.short_sha else ""

    message = f"`{result.identity}` {headline}{commit}"
    if result.outcome is DeploymentOutcome.SUCCESS and result.commit_message:
        subject = result.commit_message.splitlines()[0]
        if len(subject) > MAX_SUBJECT_CHARS:
            subject = subject[:MAX_SUBJECT_CHARS] + "..."
        message += f": {subject}"
    if result.detail:
        detail = result.detail.strip()
        if len(detail) > MAX_DETAIL_CHARS:
            detail = "..." + detail[-MAX_DETAIL_CHARS:]
        message += f"\n```\n{detail}\n```"
    return message


class DiscordNotifier:
    """Production implementation posting to ``/channels/{id}/messages``."""

    def __init__(
        self,
        config: DiscordConfig,
        *,
        base_url: str = DISCORD_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._base_url = base_url
        self._transport = transport

    async def notify(self, result: DeploymentResult) -> None:
        url = f"{self._base_url}/channels/{self._config.channel_id}/messages"
        headers = {"Authorization": f"{self._config.auth_scheme} {self._config.token}"}
        try:
            async with httpx.AsyncClient(
                timeout=NOTIFY_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                resp = await client.post(
                    url, json={"content": format_message(result)}, headers=headers
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "notification_failed",
                repository=result.identity,
                outcome=result.outcome.value,
                error=str(exc),
            )
            return
        logger.debug("notification_sent", repository=result.identity, outcome=result.outcome.value)


class NullNotifier:
    """No endpoint configured: notifications are dropped."""

    async def notify(self, result: DeploymentResult) -> None:
        return None


class InMemoryNotifier:
    """Test double that records results and rendered messages."""

    def __init__(self) -> None:
        self.results: list[DeploymentResult] = []
        self.messages: list[str] = []

    async def notify(self, result: DeploymentResult) -> None:
        self.results.append(result)
        self.messages.append(format_message(result))
