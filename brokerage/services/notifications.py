"""
Notification sinks.

The workflow treats notification delivery as a fire-and-forget side
effect: messages are handed over *after* the primary transaction has
committed, and ``notify_safely`` logs a failing sink instead of raising.

Two adapters ship with the project:

* ``DatabaseNotificationSink`` -- inserts into the ``notifications`` table
  (the user inbox) in a transaction of its own.
* ``RedisNotificationSink``    -- publishes a JSON payload on
  ``<prefix>:<user_id>`` for live clients.
"""

from __future__ import annotations

import json
import logging
from typing import Iterable, Protocol

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from brokerage.domain.entities import Actor, Notification
from brokerage.domain.errors import NotFound
from brokerage.infrastructure.models import NotificationModel
from brokerage.infrastructure.repositories import (
    CompanyRepository,
    DriverRepository,
    NotificationRepository,
)

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def send(self, notification: Notification) -> None: ...


class DatabaseNotificationSink:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def send(self, notification: Notification) -> None:
        async with self.session_factory() as session, session.begin():
            await NotificationRepository(session).create(
                user_id=notification.user_id,
                title=notification.title,
                message=notification.message,
            )


class RedisNotificationSink:
    def __init__(self, client: aioredis.Redis, channel_prefix: str = "notifications"):
        self.redis = client
        self.channel_prefix = channel_prefix

    def channel_for(self, user_id: int) -> str:
        return f"{self.channel_prefix}:{user_id}"

    async def send(self, notification: Notification) -> None:
        payload = json.dumps(
            {"title": notification.title, "message": notification.message}
        )
        await self.redis.publish(self.channel_for(notification.user_id), payload)


class NullNotificationSink:
    """Drops every message.  Used when no delivery backend is configured."""

    async def send(self, notification: Notification) -> None:
        return None


async def notify_safely(sink: NotificationSink, notifications: Iterable[Notification]) -> int:
    """Deliver each message; a failure is logged and the rest still go out."""
    delivered = 0
    for notification in notifications:
        try:
            await sink.send(notification)
            delivered += 1
        except Exception:
            logger.exception(
                "Notification to user %s failed (%s)",
                notification.user_id,
                notification.title,
            )
    return delivered


class NotificationInbox:
    """Read side of the ``notifications`` table for a company or driver."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_for(self, actor: Actor) -> list[NotificationModel]:
        async with self.session_factory() as session:
            if actor.is_company:
                party = await CompanyRepository(session).get_by_id(actor.id)
                resource = "Company"
            else:
                party = await DriverRepository(session).get_by_id(actor.id)
                resource = "Driver"
            if party is None:
                raise NotFound(resource, actor.id)
            return await NotificationRepository(session).list_for_user(party.user_id)
