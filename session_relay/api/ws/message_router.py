"""Routes backend pub/sub messages to the connections bound to a session.

A single subscription to ``<prefix>*`` covers every session. The session
id is whatever follows the fixed prefix in the topic name, so ids may
contain any character, including the prefix delimiter.
"""

import asyncio
from collections.abc import Callable

import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from session_relay.api.ws.broker import Broker, Subscription
from session_relay.api.ws.connection import ClientConnection
from session_relay.api.ws.registry import SessionRegistry
from session_relay.core.exceptions import (
    BrokerError,
    DeliveryError,
    SubscriptionLostError,
)

logger = structlog.get_logger(__name__)


class MessageRouter:
    """Fans backend messages out to the matching client connections.

    Delivery failures are logged and counted but never unbind a
    connection; only the connection's own handler does that.

    Example:
        >>> router = MessageRouter(registry, broker, topic_prefix="session.")
        >>> await router.start()
        >>> # ... messages flow until stop() or the subscription is lost ...
        >>> await router.stop()
    """

    def __init__(
        self,
        registry: SessionRegistry,
        broker: Broker,
        topic_prefix: str = "session.",
        delivery_timeout: float = 5.0,
        resubscribe_max_attempts: int = 5,
        resubscribe_initial_delay: float = 0.5,
        resubscribe_max_delay: float = 10.0,
        on_fatal: Callable[[BaseException], None] | None = None,
    ) -> None:
        """Initialize the router.

        Args:
            registry: Registry to look up session connections in.
            broker: Backend to subscribe to.
            topic_prefix: Literal prefix in front of every session id.
            delivery_timeout: Max seconds for a single client write.
            resubscribe_max_attempts: Attempts to re-establish a lost
                subscription before giving up.
            resubscribe_initial_delay: First backoff delay in seconds.
            resubscribe_max_delay: Upper bound on the backoff delay.
            on_fatal: Called with the error when the router stops for
                good because its subscription cannot be restored.
        """
        self.registry = registry
        self.broker = broker
        self.topic_prefix = topic_prefix
        self.delivery_timeout = delivery_timeout
        self.resubscribe_max_attempts = resubscribe_max_attempts
        self.resubscribe_initial_delay = resubscribe_initial_delay
        self.resubscribe_max_delay = resubscribe_max_delay
        self.on_fatal = on_fatal

        self.messages_received = 0
        self.deliveries_succeeded = 0
        self.deliveries_failed = 0

        self._subscription: Subscription | None = None
        self._task: asyncio.Task | None = None

    @property
    def topic_pattern(self) -> str:
        """Pattern covering every session topic."""
        return f"{self.topic_prefix}*"

    @property
    def is_running(self) -> bool:
        """Check if the routing loop is alive."""
        return self._task is not None and not self._task.done()

    def session_id_from_topic(self, topic: str) -> str | None:
        """Strip the fixed prefix from a topic.

        Returns:
            The session id, or None if the topic does not carry the prefix.
        """
        if not topic.startswith(self.topic_prefix):
            return None
        return topic[len(self.topic_prefix):]

    async def start(self) -> None:
        """Subscribe and start the routing loop.

        Raises:
            BrokerError: If the initial subscription cannot be created.
                There is no retry at startup.
        """
        if self.is_running:
            logger.debug("message_router_already_running")
            return

        self._subscription = await self.broker.subscribe_pattern(self.topic_pattern)
        self._task = asyncio.create_task(self.run(), name="message-router")
        self._task.add_done_callback(self._on_task_done)
        logger.info("message_router_started", pattern=self.topic_pattern)

    async def stop(self) -> None:
        """Cancel the routing loop and close the subscription."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                # Already reported by _on_task_done
                logger.debug("message_router_exited_with_error", error=str(e))
            self._task = None

        await self._close_subscription()
        logger.info("message_router_stopped")

    async def run(self) -> None:
        """Consume the subscription until cancelled.

        When the stream ends or breaks, the subscription is re-created
        with exponential backoff.

        Raises:
            SubscriptionLostError: If resubscribing fails on every attempt.
        """
        if self._subscription is None:
            self._subscription = await self.broker.subscribe_pattern(self.topic_pattern)

        while True:
            try:
                async for message in self._subscription:
                    await self.dispatch(message.topic, message.payload)
                logger.warning("redis_subscription_ended", pattern=self.topic_pattern)
            except BrokerError as e:
                logger.warning(
                    "redis_subscription_broken",
                    pattern=self.topic_pattern,
                    error=e.message,
                )

            await self._close_subscription()
            self._subscription = await self._resubscribe()

    async def dispatch(self, topic: str, payload: str | bytes) -> int:
        """Deliver one backend message to every connection of its session.

        Args:
            topic: Topic the message arrived on.
            payload: Message body, passed through unchanged.

        Returns:
            Number of connections that received the payload.
        """
        self.messages_received += 1

        session_id = self.session_id_from_topic(topic)
        if session_id is None:
            logger.warning("topic_without_session_prefix", topic=topic)
            return 0

        logger.debug("redis_message_received", session_id=session_id, size=len(payload))

        connections = await self.registry.matching_connections(session_id)
        if not connections:
            return 0

        # The whole batch finishes before the next message is taken, which
        # keeps per-connection order.
        results = await asyncio.gather(
            *(self._deliver(conn, session_id, payload) for conn in connections)
        )
        sent_count = sum(results)

        logger.debug(
            "redis_message_forwarded",
            session_id=session_id,
            recipients=sent_count,
            failed=len(results) - sent_count,
        )
        return sent_count

    async def _deliver(
        self,
        conn: ClientConnection,
        session_id: str,
        payload: str | bytes,
    ) -> bool:
        try:
            await conn.send(payload, timeout=self.delivery_timeout)
        except DeliveryError as e:
            self.deliveries_failed += 1
            logger.warning(
                "websocket_send_failed",
                connection_id=conn.connection_id,
                session_id=session_id,
                error=e.message,
            )
            return False

        self.deliveries_succeeded += 1
        return True

    async def _resubscribe(self) -> Subscription:
        """Re-create the pattern subscription with exponential backoff."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.resubscribe_max_attempts),
                wait=wait_exponential_jitter(
                    initial=self.resubscribe_initial_delay,
                    max=self.resubscribe_max_delay,
                ),
                retry=retry_if_exception_type(BrokerError),
            ):
                with attempt:
                    logger.info(
                        "redis_resubscribe_attempt",
                        pattern=self.topic_pattern,
                        attempt_number=attempt.retry_state.attempt_number,
                    )
                    subscription = await self.broker.subscribe_pattern(self.topic_pattern)
        except RetryError as e:
            last_error = e.last_attempt.exception() if e.last_attempt else None
            raise SubscriptionLostError(
                self.topic_pattern,
                self.resubscribe_max_attempts,
                str(last_error) if last_error else None,
            ) from last_error

        logger.info("redis_resubscribed", pattern=self.topic_pattern)
        return subscription

    async def _close_subscription(self) -> None:
        if self._subscription is None:
            return
        subscription, self._subscription = self._subscription, None
        try:
            await subscription.close()
        except Exception as e:
            logger.debug("redis_subscription_close_failed", error=str(e))

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return

        logger.critical(
            "message_router_failed",
            pattern=self.topic_pattern,
            error=str(error),
            error_type=type(error).__name__,
        )
        if self.on_fatal is not None:
            self.on_fatal(error)
