"""Notification delivery and engine event fan-out.

Both are fire-and-forget: a failure is logged and never undoes the
transition that triggered it.
"""

import json
from typing import Any

from expertdesk.collaborators import NotificationSink
from expertdesk.logging_config import get_logger

logger = get_logger(__name__)

EVENTS_CHANNEL = "expertdesk:events"


class RedisNotificationSink:
    """Publishes notifications on a per-user Redis channel for the push service."""

    def __init__(self, redis):
        self._redis = redis

    async def notify(self, user_id: int, event_kind: str, payload: dict[str, Any]) -> None:
        message = json.dumps(
            {"user_id": user_id, "event": event_kind, "payload": payload},
            default=str,
        )
        await self._redis.publish(f"notify:{user_id}", message)


async def send_notification(
    notifier: NotificationSink,
    user_id: int,
    event_kind: str,
    payload: dict[str, Any] | None = None,
) -> bool:
    """Notify a user, swallowing and logging delivery failures. Returns True if sent."""
    try:
        await notifier.notify(user_id, event_kind, payload or {})
    except Exception as e:
        logger.warning(
            "notification_failed",
            user_id=user_id,
            event_kind=event_kind,
            error=str(e),
        )
        return False
    return True


async def publish_event(redis, event_kind: str, payload: dict[str, Any]) -> None:
    """Publish an engine event (e.g. triage requests) to the shared channel."""
    logger.info("engine_event", event_kind=event_kind, **payload)
    if redis is None:
        return
    event = json.dumps({"event": event_kind, **payload}, default=str)
    try:
        await redis.publish(EVENTS_CHANNEL, event)
    except Exception as e:
        logger.warning("redis_publish_failed", channel=EVENTS_CHANNEL, error=str(e))
