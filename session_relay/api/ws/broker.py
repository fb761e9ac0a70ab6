"""Redis pub/sub adapter.

Wraps the redis.asyncio client behind the three operations the relay
needs: ping the backend, open a pattern subscription, and iterate the
messages it yields.
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from session_relay.core.exceptions import (
    BrokerConnectionError,
    BrokerUnavailableError,
    SubscriptionError,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BrokerMessage:
    """A message received on a subscribed topic."""

    topic: str
    payload: str | bytes


class Subscription(Protocol):
    """Stream of messages from one pattern subscription."""

    pattern: str

    def __aiter__(self) -> AsyncIterator[BrokerMessage]: ...

    async def close(self) -> None: ...


class Broker(Protocol):
    """Pub/sub backend the relay consumes from."""

    async def ping(self) -> None: ...

    async def subscribe_pattern(self, pattern: str) -> Subscription: ...

    async def close(self) -> None: ...


def decode_payload(data: bytes) -> str | bytes:
    """Return UTF-8 payloads as text and anything else unchanged."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data


class RedisSubscription:
    """A confirmed Redis pattern subscription.

    Iterating yields BrokerMessage objects until the connection to Redis
    breaks, at which point BrokerConnectionError is raised.
    """

    def __init__(self, pubsub: aioredis.client.PubSub, pattern: str) -> None:
        self._pubsub = pubsub
        self.pattern = pattern

    async def __aiter__(self) -> AsyncIterator[BrokerMessage]:
        try:
            async for message in self._pubsub.listen():
                if message["type"] != "pmessage":
                    continue

                try:
                    topic = message["channel"].decode("utf-8")
                except UnicodeDecodeError:
                    logger.warning("redis_topic_not_utf8", channel=repr(message["channel"]))
                    continue

                yield BrokerMessage(topic=topic, payload=decode_payload(message["data"]))
        except (RedisError, OSError) as e:
            raise BrokerConnectionError(f"Subscription to {self.pattern} broke: {e}") from e

    async def close(self) -> None:
        """Unsubscribe and release the pub/sub connection."""
        try:
            await self._pubsub.punsubscribe()
        except (RedisError, OSError) as e:
            logger.debug("redis_punsubscribe_failed", pattern=self.pattern, error=str(e))
        await self._pubsub.aclose()


class RedisBroker:
    """Redis implementation of the Broker interface.

    Example:
        >>> broker = RedisBroker("redis://127.0.0.1:6379/0")
        >>> await broker.ping()
        >>> subscription = await broker.subscribe_pattern("session.*")
        >>> async for message in subscription:
        ...     print(message.topic, message.payload)
    """

    def __init__(self, redis_url: str, subscribe_timeout: float = 5.0) -> None:
        """Initialize the broker.

        Args:
            redis_url: Redis connection URL.
            subscribe_timeout: Max seconds to wait for a subscription to be
                confirmed.
        """
        self.redis_url = redis_url
        self.subscribe_timeout = subscribe_timeout
        # Payloads are passed through verbatim, so keep them as bytes
        self._redis = aioredis.from_url(redis_url, decode_responses=False)

    async def ping(self) -> None:
        """Check that Redis answers.

        Raises:
            BrokerUnavailableError: If Redis cannot be reached.
        """
        try:
            await self._redis.ping()
        except (RedisError, OSError) as e:
            logger.error("redis_ping_failed", redis_url=self.redis_url, error=str(e))
            raise BrokerUnavailableError(f"Unable to connect to Redis: {e}") from e

    async def subscribe_pattern(self, pattern: str) -> RedisSubscription:
        """Subscribe to a topic pattern and wait for Redis to confirm it.

        Args:
            pattern: Glob-style channel pattern, e.g. ``session.*``.

        Returns:
            The confirmed subscription.

        Raises:
            SubscriptionError: If the subscription is not confirmed.
        """
        pubsub = self._redis.pubsub()
        try:
            await pubsub.psubscribe(pattern)
            await asyncio.wait_for(self._confirm(pubsub), timeout=self.subscribe_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            await pubsub.aclose()
            logger.error("redis_pattern_subscribe_failed", pattern=pattern, error=str(e))
            raise SubscriptionError(
                pattern, f"Failed to create subscription for {pattern}: {e}"
            ) from e

        logger.info("redis_pattern_subscribed", pattern=pattern)
        return RedisSubscription(pubsub, pattern)

    @staticmethod
    async def _confirm(pubsub: aioredis.client.PubSub) -> None:
        while True:
            message = await pubsub.get_message(timeout=1.0)
            if message is not None and message["type"] == "psubscribe":
                return

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self._redis.aclose()
