# dosewatch/adapters/fcm_push.py
"""
Firebase Cloud Messaging for native device tokens (FCM registration ids and
APNs tokens registered through Firebase). Expo tokens never come here.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Mapping, Optional

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from dosewatch.core.logging_utils import kv

log = logging.getLogger("dosewatch.notifier")

APP_NAME = "dosewatch"


def init_app(credentials_file: str) -> firebase_admin.App:
    """Initialise (once) the named Firebase app from a service-account JSON file."""
    try:
        return firebase_admin.get_app(APP_NAME)
    except ValueError:
        return firebase_admin.initialize_app(credentials.Certificate(credentials_file), name=APP_NAME)


def _as_str(value: Any) -> str:
    # FCM data payloads are string -> string
    return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)


class FcmPushClient:
    """
    Wraps the blocking firebase_admin.messaging.send in a worker thread.
    Never raises on delivery errors: returns False and logs.
    """

    provider = "fcm"

    def __init__(
        self,
        app: Optional[firebase_admin.App] = None,
        channel_id: str = "medication-reminders",
        send: Optional[Callable[..., str]] = None,
    ):
        self._app = app
        self._channel_id = channel_id
        self._send = send or messaging.send

    def message(
        self, token: str, title: str, body: str, data: Optional[Mapping[str, Any]] = None
    ) -> messaging.Message:
        return messaging.Message(
            token=token,
            notification=messaging.Notification(title=title, body=body),
            data={k: _as_str(v) for k, v in (data or {}).items() if v is not None},
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(
                    channel_id=self._channel_id,
                    default_sound=True,
                    default_vibrate_timings=True,
                ),
            ),
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", badge=1)),
            ),
        )

    async def send(
        self, token: str, title: str, body: str, data: Optional[Mapping[str, Any]] = None
    ) -> bool:
        msg = self.message(token, title, body, data)
        try:
            message_id = await asyncio.to_thread(self._send, msg, app=self._app)
        except exceptions.FirebaseError as e:
            log.error("push.fcm.failed " + kv(token=token[:20], code=e.code, error=str(e)))
            return False
        except ValueError as e:
            log.error("push.fcm.invalid " + kv(token=token[:20], error=str(e)))
            return False
        log.debug("push.fcm.ok " + kv(token=token[:20], message_id=message_id))
        return True
