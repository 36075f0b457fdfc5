# dosewatch/adapters/notifier.py
"""
Notifier capability used by the dispatcher and the escalation monitor.

The pipeline only sees a bool for push and an SmsResult for SMS; transport
details stay in the concrete clients. Push tokens are routed by shape: Expo
tokens to the Expo service, native FCM/APNs tokens to Firebase when it is
configured.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

import httpx

from dosewatch.adapters.expo_push import ExpoPushClient
from dosewatch.adapters.fcm_push import FcmPushClient, init_app as init_firebase
from dosewatch.adapters.sms_gateway import SmsGatewayClient, SmsResult
from dosewatch.core.push_tokens import is_expo_token, is_native_token

__all__ = ["Notifier", "HttpNotifier", "SmsResult", "build_notifier"]


class Notifier(Protocol):
    sms_provider: str

    def supports_push(self, token: str) -> bool: ...

    def push_provider_for(self, token: str) -> str: ...

    async def send_push(
        self, token: str, title: str, body: str, data: Optional[Mapping[str, Any]] = None
    ) -> bool: ...

    async def send_sms(self, phone_number: str, message: str) -> SmsResult: ...


@dataclass
class HttpNotifier:
    """
    Expo for Expo tokens, FCM (optional) for native tokens, an HTTP gateway
    for SMS (optional). Owns the shared httpx client and closes it once.
    """

    push: ExpoPushClient
    sms: Optional[SmsGatewayClient] = None
    fcm: Optional[FcmPushClient] = None
    client: Optional[httpx.AsyncClient] = None

    @property
    def push_provider(self) -> str:
        return self.push.provider

    @property
    def sms_provider(self) -> str:
        return self.sms.provider if self.sms else "none"

    def _route(self, token: str):
        token = token.strip()
        if is_expo_token(token):
            return self.push
        if is_native_token(token):
            return self.fcm
        return None

    def supports_push(self, token: str) -> bool:
        return self._route(token) is not None

    def push_provider_for(self, token: str) -> str:
        client = self._route(token)
        return client.provider if client else "none"

    async def send_push(
        self, token: str, title: str, body: str, data: Optional[Mapping[str, Any]] = None
    ) -> bool:
        client = self._route(token)
        if client is None:
            return False
        return await client.send(token.strip(), title, body, data)

    async def send_sms(self, phone_number: str, message: str) -> SmsResult:
        if self.sms is None:
            return SmsResult(success=False, error="sms gateway not configured")
        return await self.sms.send(phone_number, message)

    async def aclose(self) -> None:
        if self.client is not None and not self.client.is_closed:
            await self.client.aclose()


def build_notifier(cfg: Any, client: Optional[httpx.AsyncClient] = None) -> HttpNotifier:
    """Wire the HTTP clients on one shared httpx.AsyncClient; FCM only with credentials."""
    client = client or httpx.AsyncClient(timeout=cfg.HTTP_TIMEOUT_S)
    channel_id = getattr(cfg, "PUSH_CHANNEL_ID", "medication-reminders")
    push = ExpoPushClient(
        client,
        url=cfg.EXPO_PUSH_URL,
        access_token=getattr(cfg, "EXPO_ACCESS_TOKEN", None),
        channel_id=channel_id,
    )
    sms = None
    if getattr(cfg, "SMS_GATEWAY_URL", None):
        sms = SmsGatewayClient(
            client,
            base_url=cfg.SMS_GATEWAY_URL,
            provider=getattr(cfg, "SMS_PROVIDER", "educanet"),
            country_code=str(getattr(cfg, "SMS_COUNTRY_CODE", "216")),
        )
    fcm = None
    creds = getattr(cfg, "FIREBASE_CREDENTIALS_FILE", None)
    if creds:
        fcm = FcmPushClient(init_firebase(creds), channel_id=channel_id)
    return HttpNotifier(push=push, sms=sms, fcm=fcm, client=client)
