# file: app/services/notification_dispatcher.py

"""
Notification Dispatcher: one `deliver(target, title, body)` contract over two channels.

- PushChannel: multicast to a user's registered device tokens (FCM via
  firebase_admin, Expo tokens via the Expo push API).
- LocalAlertChannel: an alert raised inside the user's open session, gated by
  the session's notification permission.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional
from zoneinfo import ZoneInfo

import httpx
from firebase_admin import messaging
from firebase_admin.exceptions import FirebaseError

from app.config import EXPO_PUSH_URL, PERMISSION_PROMPT_TIMEOUT_SECONDS, REMINDER_TIMEZONE
from app.services.firebase_app import init_firebase
from app.services.recurrence import format_time, parse_time

logger = logging.getLogger(__name__)

EXPO_TOKEN_PREFIXES = ("ExponentPushToken[", "ExpoPushToken[")
PERMISSION_STATES = {"default", "prompted", "granted", "denied", "unsupported"}


@dataclass
class DeliveryOutcome:
    channel: str
    success_count: int = 0
    failure_count: int = 0

    @property
    def attempted(self) -> int:
        return self.success_count + self.failure_count


def build_message(title: str, scheduled_time, tz: Optional[ZoneInfo] = None) -> tuple[str, str]:
    """Returns the (title, body) pair shown to the user for a reminder."""
    tz = tz or ZoneInfo(REMINDER_TIMEZONE)
    local_time = parse_time(scheduled_time).astimezone(tz)
    return f"Time for: {title}", f"It's {local_time:%H:%M}. Get ready to workout!"


class DeliveryChannel:
    name = "base"

    async def deliver(self, target, title: str, body: str) -> DeliveryOutcome:
        raise NotImplementedError


class PushChannel(DeliveryChannel):
    """
    Multicast push to device tokens. Failing tokens are reported in the
    outcome but never removed from the registry.
    """
    name = "push"

    def __init__(self, expo_url: str = EXPO_PUSH_URL, http_timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.expo_url = expo_url
        self.http_timeout = http_timeout
        self.transport = transport

    async def deliver(self, target: Iterable[str], title: str, body: str, data: Optional[dict] = None) -> DeliveryOutcome:
        tokens = list(dict.fromkeys(t for t in (target or []) if t))
        outcome = DeliveryOutcome(channel=self.name)
        if not tokens:
            logger.info("No push tokens to deliver '%s' to; skipping.", title)
            return outcome

        expo_tokens = [t for t in tokens if t.startswith(EXPO_TOKEN_PREFIXES)]
        fcm_tokens = [t for t in tokens if not t.startswith(EXPO_TOKEN_PREFIXES)]

        if fcm_tokens:
            success, failure = await self._send_fcm(fcm_tokens, title, body, data)
            outcome.success_count += success
            outcome.failure_count += failure
        if expo_tokens:
            success, failure = await self._send_expo(expo_tokens, title, body, data)
            outcome.success_count += success
            outcome.failure_count += failure

        logger.info("Push '%s': %d succeeded, %d failed", title, outcome.success_count, outcome.failure_count)
        return outcome

    async def _send_fcm(self, tokens: list[str], title: str, body: str, data: Optional[dict]) -> tuple[int, int]:
        init_firebase()
        message = messaging.MulticastMessage(
            tokens=tokens,
            notification=messaging.Notification(title=title, body=body),
            data={k: str(v) for k, v in (data or {}).items()},
        )
        try:
            # The Admin SDK is blocking; keep the event loop free for the other reminders
            response = await asyncio.to_thread(messaging.send_each_for_multicast, message)
        except (FirebaseError, ValueError) as e:
            logger.error("FCM multicast failed for %d tokens: %s", len(tokens), e)
            return 0, len(tokens)
        return response.success_count, response.failure_count

    async def _send_expo(self, tokens: list[str], title: str, body: str, data: Optional[dict]) -> tuple[int, int]:
        headers = {
            'Accept': 'application/json',
            'Accept-Encoding': 'gzip, deflate',
            'Content-Type': 'application/json',
        }
        payload = [
            {
                'to': token,
                'sound': 'default',
                'title': title,
                'body': body,
                'data': data or {},
                'channelId': 'default',  # Required for custom Android notification channels
            }
            for token in tokens
        ]
        async with httpx.AsyncClient(timeout=self.http_timeout, transport=self.transport) as client:
            try:
                response = await client.post(self.expo_url, json=payload, headers=headers)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.error("Expo push rejected with %s: %s", e.response.status_code, e.response.text)
                return 0, len(tokens)
            except httpx.RequestError as e:
                logger.error("An error occurred while requesting Expo's push service: %s", e)
                return 0, len(tokens)

        tickets = response.json().get('data', [])
        success = sum(1 for ticket in tickets if ticket.get('status') == 'ok')
        return success, len(tokens) - success


class LocalAlertChannel(DeliveryChannel):
    """
    Alerts raised in the user's open session.

    Permission follows default -> prompted -> granted|denied. The first
    delivery asks the session and waits up to `prompt_timeout` for an answer;
    an unanswered prompt falls back to default and is asked again next time.
    Denied and unsupported sessions make delivery a silent no-op.
    """
    name = "local"

    def __init__(self, send: Callable[[dict], Awaitable[None]], permission: str = "default",
                 prompt_timeout: float = PERMISSION_PROMPT_TIMEOUT_SECONDS):
        if permission not in PERMISSION_STATES:
            raise ValueError(f"Unknown permission state '{permission}'")
        self._send = send
        self.permission = permission
        self.prompt_timeout = prompt_timeout
        self._answered = asyncio.Event()

    def resolve_permission(self, state: str):
        """Records the session's answer to a permission prompt."""
        if state not in PERMISSION_STATES - {"prompted"}:
            raise ValueError(f"Unknown permission state '{state}'")
        self.permission = state
        self._answered.set()

    async def request_permission(self) -> str:
        if self.permission != "default":
            return self.permission

        self.permission = "prompted"
        self._answered.clear()
        await self._send({"type": "permission_request"})
        try:
            await asyncio.wait_for(self._answered.wait(), timeout=self.prompt_timeout)
        except asyncio.TimeoutError:
            logger.info("Notification permission prompt went unanswered")
            if self.permission == "prompted":
                self.permission = "default"
        return self.permission

    async def deliver(self, target, title: str, body: str) -> DeliveryOutcome:
        outcome = DeliveryOutcome(channel=self.name)
        permission = await self.request_permission()
        if permission != "granted":
            logger.info("Local alert '%s' not shown (permission: %s)", title, permission)
            return outcome

        await self._send({"type": "notification", "reminder_id": target, "title": title, "body": body,
                          "sent_at": format_time(datetime.now(timezone.utc))})
        outcome.success_count = 1
        return outcome
