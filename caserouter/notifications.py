"""
Outbound notification queue and the notifier that drains it.

The core only enqueues NotificationRequests after its batch commits. The notifier pops
each request once (at-most-once) and POSTs a Slack/Discord-style payload to WEBHOOK_URL;
delivery errors are logged and dropped.
"""

import asyncio
import json
import logging
import ssl
import threading
import urllib.request
from collections import deque
from typing import Any, Optional, Protocol

import redis

from caserouter.config import REDIS_URL, WEBHOOK_URL
from caserouter.errors import DependencyFailure
from caserouter.models import NotificationRequest

logger = logging.getLogger(__name__)

OUTBOUND_LIST = "notifications:outbound"


class NotificationQueue(Protocol):
    def put(self, request: NotificationRequest) -> None:
        ...

    def pop(self) -> Optional[NotificationRequest]:
        ...

    def size(self) -> int:
        ...


class InMemoryNotificationQueue:
    def __init__(self):
        self._queue: deque[NotificationRequest] = deque()
        self._lock = threading.Lock()

    def put(self, request: NotificationRequest) -> None:
        with self._lock:
            self._queue.append(request)

    def pop(self) -> Optional[NotificationRequest]:
        with self._lock:
            return self._queue.popleft() if self._queue else None

    def size(self) -> int:
        with self._lock:
            return len(self._queue)


class RedisNotificationQueue:
    """FIFO list shared between the API/worker producers and the notifier."""

    def __init__(self, url: str = REDIS_URL, client=None):
        self._url = url
        self._client = client

    def _redis(self):
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    def put(self, request: NotificationRequest) -> None:
        try:
            self._redis().rpush(OUTBOUND_LIST, request.model_dump_json())
        except redis.RedisError as e:
            raise DependencyFailure("notification-queue", f"enqueue failed: {e}") from e

    def pop(self) -> Optional[NotificationRequest]:
        try:
            raw = self._redis().lpop(OUTBOUND_LIST)
        except redis.RedisError as e:
            raise DependencyFailure("notification-queue", f"pop failed: {e}") from e
        return NotificationRequest.model_validate_json(raw) if raw else None

    def size(self) -> int:
        try:
            return self._redis().llen(OUTBOUND_LIST)
        except redis.RedisError as e:
            raise DependencyFailure("notification-queue", f"size failed: {e}") from e


def enqueue_notification(
    queue: NotificationQueue,
    item_id: str,
    target_agent_id: Optional[str],
    reason: str,
    cc_list: Optional[list[str]] = None,
) -> NotificationRequest:
    request = NotificationRequest(
        item_id=item_id,
        target_agent_id=target_agent_id,
        reason=reason,
        cc_list=[cc for cc in cc_list or [] if cc],
    )
    queue.put(request)
    return request


def _build_slack_payload(request: NotificationRequest) -> dict[str, Any]:
    cc = ", ".join(request.cc_list) or "-"
    return {
        "text": f"Work item {request.item_id}: {request.reason}",
        "blocks": [
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        f"*Item:* `{request.item_id}`\n*To:* {request.target_agent_id or '-'}\n"
                        f"*Cc:* {cc}\n*Reason:* {request.reason}"
                    ),
                },
            },
        ],
    }


def _do_post(url: str, payload: dict[str, Any]) -> None:
    """Synchronous POST (run in thread)."""
    data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    ctx = ssl.create_default_context()
    urllib.request.urlopen(req, timeout=5, context=ctx)


class Notifier:
    """Consumes the outbound queue. A request that fails to send is not retried."""

    def __init__(self, queue: NotificationQueue, webhook_url: str = WEBHOOK_URL):
        self.queue = queue
        self.webhook_url = webhook_url

    async def send(self, request: NotificationRequest) -> bool:
        if not self.webhook_url:
            logger.info(
                "Notification for item %s to %s (%s); no WEBHOOK_URL set.",
                request.item_id, request.target_agent_id, request.reason,
            )
            return True
        try:
            await asyncio.to_thread(_do_post, self.webhook_url, _build_slack_payload(request))
            return True
        except Exception as e:
            logger.warning("Notification for item %s not delivered: %s", request.item_id, e)
            return False

    async def dispatch_pending(self, limit: int = 100) -> int:
        """Pop and send up to `limit` requests. Returns how many were delivered."""
        delivered = 0
        for _ in range(limit):
            try:
                request = self.queue.pop()
            except DependencyFailure as e:
                logger.warning("Notification queue unavailable: %s", e)
                break
            if request is None:
                break
            if await self.send(request):
                delivered += 1
        return delivered


async def run_dispatch_loop(notifier: Notifier, interval: float, limit: int = 100) -> None:
    """Drain the queue every `interval` seconds until cancelled."""
    while True:
        delivered = await notifier.dispatch_pending(limit=limit)
        if delivered:
            logger.info("Dispatched %d notifications.", delivered)
        await asyncio.sleep(interval)
