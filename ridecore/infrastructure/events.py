"""
Event sinks.

The notification dispatcher and analytics consumers subscribe to the Redis
channel; the core never talks to push / SMS / email itself.
"""

from __future__ import annotations

import json
import logging

import redis.asyncio as aioredis

from ridecore.domain.events import PaymentEvent, RideStateChanged, event_payload
from ridecore.domain.ports import EventSink

logger = logging.getLogger(__name__)


class RedisEventSink(EventSink):
    """Publishes each event as JSON on a pub/sub channel."""

    def __init__(self, client: aioredis.Redis, channel: str):
        self.redis = client
        self.channel = channel

    async def publish(self, event: RideStateChanged | PaymentEvent) -> None:
        payload = json.dumps(event_payload(event))
        try:
            await self.redis.publish(self.channel, payload)
        except aioredis.RedisError:
            # Events are best-effort; the ride state is already persisted
            logger.exception("Failed to publish %s for ride %s", event.name, event.ride_id)
