"""Push-notification delivery through an HTTP push gateway."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

log = logging.getLogger(__name__)

_USER_AGENT = "MentorLedger/1.0"


@dataclass(frozen=True)
class PushResult:
    success_count: int
    failure_count: int


class PushClient(Protocol):
    def send(self, tokens: list[str], title: str, body: str, data: dict[str, str]) -> PushResult: ...


class LogPushClient:
    """Logs messages instead of delivering them (no gateway configured)."""

    def __init__(self) -> None:
        self.sent: list[dict] = []

    def send(self, tokens: list[str], title: str, body: str, data: dict[str, str]) -> PushResult:
        self.sent.append({"tokens": list(tokens), "title": title, "body": body, "data": dict(data)})
        log.info("[push:dry-run] %s -> %d token(s): %s", title, len(tokens), body)
        return PushResult(success_count=len(tokens), failure_count=0)


class HttpPushClient:
    """Multicast sender for an FCM-style gateway.

    Posts ``{"tokens", "notification": {"title", "body"}, "data"}`` and reads
    ``successCount`` / ``failureCount`` from the reply. Delivery is
    fire-and-forget: transport errors and per-token failures are logged, not
    raised.
    """

    def __init__(
        self, endpoint: str, api_key: str = "", timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"User-Agent": _USER_AGENT, "Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.endpoint = endpoint
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout), headers=headers, transport=transport,
        )

    def send(self, tokens: list[str], title: str, body: str, data: dict[str, str]) -> PushResult:
        if not tokens:
            return PushResult(0, 0)
        payload = {
            "tokens": list(tokens),
            "notification": {"title": title, "body": body},
            "data": {str(k): str(v) for k, v in data.items()},
        }
        try:
            resp = self._client.post(self.endpoint, json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            log.warning("Push delivery to %d token(s) failed: %s", len(tokens), exc)
            return PushResult(success_count=0, failure_count=len(tokens))

        try:
            reply = resp.json()
        except ValueError:
            reply = {}
        success = int(reply.get("successCount", len(tokens)))
        failure = int(reply.get("failureCount", 0))
        if failure:
            log.warning("Push '%s': %d of %d token(s) rejected", title, failure, len(tokens))
        return PushResult(success_count=success, failure_count=failure)

    def close(self) -> None:
        self._client.close()


def get_push_client() -> PushClient:
    from mentor.config import get_settings
    settings = get_settings()
    if not settings.push_endpoint:
        return LogPushClient()
    return HttpPushClient(
        settings.push_endpoint, api_key=settings.push_api_key,
        timeout=settings.push_timeout_seconds,
    )
