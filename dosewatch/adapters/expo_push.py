# dosewatch/adapters/expo_push.py
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import httpx

from dosewatch.core.logging_utils import kv

log = logging.getLogger("dosewatch.notifier")


def _is_ok(result: Any) -> bool:
    """Expo answers with {data: [{status}]}, {data: {status}} or {status}."""
    if not isinstance(result, Mapping):
        return False
    data = result.get("data")
    if isinstance(data, list):
        return bool(data) and isinstance(data[0], Mapping) and data[0].get("status") == "ok"
    if isinstance(data, Mapping):
        return data.get("status") == "ok"
    return result.get("status") == "ok"


class ExpoPushClient:
    """Expo push service. Never raises on transport errors: returns False and logs."""

    provider = "expo"

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str = "https://exp.host/--/api/v2/push/send",
        access_token: Optional[str] = None,
        channel_id: str = "medication-reminders",
    ):
        self._client = client
        self._url = url
        self._access_token = access_token
        self._channel_id = channel_id

    @property
    def headers(self) -> dict[str, str]:
        h = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self._access_token:
            h["Authorization"] = f"Bearer {self._access_token}"
        return h

    def payload(
        self, token: str, title: str, body: str, data: Optional[Mapping[str, Any]] = None
    ) -> dict[str, Any]:
        return {
            "to": token,
            "title": title,
            "body": body,
            "data": dict(data or {}),
            "sound": "default",
            "priority": "high",
            "channelId": self._channel_id,
        }

    async def send(
        self, token: str, title: str, body: str, data: Optional[Mapping[str, Any]] = None
    ) -> bool:
        try:
            response = await self._client.post(
                self._url, json=self.payload(token, title, body, data), headers=self.headers
            )
        except httpx.TimeoutException:
            log.error("push.expo.timeout " + kv(token=token[:20]))
            return False
        except httpx.HTTPError as e:
            log.error("push.expo.http_error " + kv(token=token[:20], error=str(e)))
            return False

        try:
            result = response.json()
        except ValueError:
            result = None

        if response.is_success and _is_ok(result):
            log.debug("push.expo.ok " + kv(token=token[:20]))
            return True

        log.error(
            "push.expo.failed "
            + kv(token=token[:20], status_code=response.status_code, body=response.text[:300])
        )
        return False
