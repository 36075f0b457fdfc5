# dosewatch/adapters/sms_gateway.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import httpx

from dosewatch.core.logging_utils import kv
from dosewatch.core.phone import gateway_number

log = logging.getLogger("dosewatch.notifier")


@dataclass(frozen=True)
class SmsResult:
    success: bool
    provider_id: Optional[str] = None
    error: Optional[str] = None


class SmsGatewayClient:
    """
    URL-path SMS gateway: GET {base_url}/{number}/{url-encoded message}.
    JSON answers carry {"etat": "ok"}; a 2xx with a non-JSON body is also accepted.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        provider: str = "educanet",
        country_code: str = "216",
    ):
        self._client = client
        self._base_url = base_url.rstrip("/")
        self.provider = provider
        self._country_code = country_code

    def url_for(self, phone_number: str, message: str) -> str:
        number = gateway_number(phone_number, self._country_code)
        return f"{self._base_url}/{number}/{quote(message, safe='')}"

    async def send(self, phone_number: str, message: str) -> SmsResult:
        url = self.url_for(phone_number, message)
        try:
            response = await self._client.get(url)
        except httpx.TimeoutException:
            log.error("sms.timeout " + kv(provider=self.provider, phone=phone_number))
            return SmsResult(False, error="timeout")
        except httpx.HTTPError as e:
            log.error("sms.http_error " + kv(provider=self.provider, phone=phone_number, error=str(e)))
            return SmsResult(False, error=str(e))

        provider_id = f"{self.provider}_{int(time.time() * 1000)}"
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict):
            if str(body.get("etat", "")).lower() == "ok":
                log.debug("sms.ok " + kv(provider=self.provider, phone=phone_number))
                return SmsResult(True, provider_id=provider_id)
            err = body.get("message") or body.get("error") or f"gateway answered {body!r}"
            log.error("sms.failed " + kv(provider=self.provider, phone=phone_number, error=err))
            return SmsResult(False, error=str(err))

        if response.is_success:
            return SmsResult(True, provider_id=provider_id)

        log.error(
            "sms.failed "
            + kv(provider=self.provider, phone=phone_number, status_code=response.status_code)
        )
        return SmsResult(False, error=f"HTTP {response.status_code}: {response.text[:200]}")
