"""
Slack Web API client for outbound messages (immediate warnings and the
daily digest). Uses `chat.postMessage` with the bot token.

Slack reports most failures as HTTP 200 with `{"ok": false}`; that, HTTP
errors and replies that are not JSON all surface as AlertSendError.
Transport errors are retried.
"""
from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from emopulse.core.config import Settings
from emopulse.core.errors import AlertSendError

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 200


def excerpt(text: str, limit: int = EXCERPT_LENGTH) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def section(text: str) -> list[dict]:
    return [{"type": "section", "text": {"type": "mrkdwn", "text": text}}]


class Notifier(Protocol):
    def post_message(
        self, channel: str, text: str, thread_ts: Optional[str] = None
    ) -> str: ...


class SlackNotifier:
    def __init__(self, token: str, base_url: str = "https://slack.com/api",
                 client: Optional[httpx.Client] = None, timeout: float = 10.0):
        self.client = client or httpx.Client(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json;charset=UTF-8",
            },
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SlackNotifier":
        return cls(token=settings.BOT_OAUTH_TOKEN, base_url=settings.SLACK_API_URL)

    @retry(
        wait=wait_exponential(multiplier=0.5, max=5),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = self.client.post(f"/{method}", json=payload)
        if response.status_code != 200:
            raise AlertSendError(
                message=f"Slack {method} returned HTTP {response.status_code}",
                details={"channel": payload.get("channel")},
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise AlertSendError(
                message=f"Slack {method} returned a non-JSON body",
                details={"channel": payload.get("channel")},
            ) from exc
        if not isinstance(body, dict):
            body = {"error": "unexpected_response"}
        if not body.get("ok", False):
            raise AlertSendError(
                message=f"Slack {method} failed: {body.get('error', 'unknown_error')}",
                details={"channel": payload.get("channel")},
            )
        return body

    def post_message(self, channel: str, text: str, thread_ts: Optional[str] = None) -> str:
        """Post a mrkdwn section; returns the message ts (usable as a thread parent)."""
        payload: dict[str, Any] = {"channel": channel, "text": text, "blocks": section(text)}
        if thread_ts:
            payload["thread_ts"] = thread_ts
        try:
            body = self._call("chat.postMessage", payload)
        except httpx.TransportError as exc:
            raise AlertSendError(
                message=f"Slack unreachable: {exc}", details={"channel": channel}
            ) from exc
        except httpx.HTTPError as exc:
            raise AlertSendError(
                message=f"Slack request failed: {exc}", details={"channel": channel}
            ) from exc
        return str(body.get("ts", ""))

    def close(self) -> None:
        self.client.close()
