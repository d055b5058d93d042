"""
Event Bus - Client Signal Hub
=============================
Central asynchronous event bus for pub/sub communication between the sync
components and the UI layer.

Delivery Guarantee: AT_MOST_ONCE by default (``max_retries=0``)
Memory Safe: NO defaultdict, explicit cleanup
Error Isolation: Subscriber crashes don't affect others
"""

import asyncio
from typing import Callable, Any, Dict, List

from .logger import get_logger

logger = get_logger(__name__)


# Event Topics - UI layer subscribes to these
TOPICS = {
    "notification.raised": {
        "description": "User-visible notification produced by a push event",
        "data_structure": {
            "title": "str",
            "body": "str",
            "priority": "str (normal/low)",
            "kind": "str (event kind that caused it)",
            "timestamp": "float (epoch seconds)"
        }
    },
    "connection.status_changed": {
        "description": "Passive connectivity indicator for the push channel",
        "data_structure": {
            "previous": "str",
            "status": "str (connecting/open/closing/closed/reconnecting)",
            "attempt": "int"
        }
    },
    "connection.error": {
        "description": "Transport error surfaced by the push channel",
        "data_structure": {
            "error": "str",
            "error_type": "str"
        }
    },
    "session.state_changed": {
        "description": "Session state machine transition",
        "data_structure": {
            "previous": "str (unknown/authenticated/unauthenticated)",
            "status": "str",
            "user_id": "int (optional)"
        }
    },
    "cache.invalidated": {
        "description": "Cache entry marked stale",
        "data_structure": {
            "key": "str",
            "refetching": "bool"
        }
    },
    "navigation.requested": {
        "description": "Hard navigation to a path (logout, session loss)",
        "data_structure": {
            "path": "str",
            "reason": "str"
        }
    }
}


class EventBus:
    """
    Asyncio EventBus for client-side signals.

    Features:
    - Subscribe/publish/unsubscribe pattern
    - Optional retry with exponential backoff (off by default)
    - Error isolation: subscriber crash doesn't affect others
    - Memory safe: NO defaultdict, explicit cleanup
    """

    def __init__(self, max_retries: int = 0):
        self._subscribers: Dict[str, List[Callable]] = {}
        self._shutdown_requested = False
        self._max_retries = max_retries
        self._lock = asyncio.Lock()
        self._published = 0
        self._delivery_failures = 0

    async def subscribe(self, topic: str, handler: Callable[[Any], Any]) -> None:
        """
        Subscribe to topic with handler (sync or async).

        Raises:
            ValueError: If topic or handler is invalid
        """
        if not topic or not isinstance(topic, str):
            raise ValueError("Topic must be a non-empty string")
        if not callable(handler):
            raise ValueError("Handler must be callable")

        async with self._lock:
            if topic not in self._subscribers:
                self._subscribers[topic] = []

            self._subscribers[topic].append(handler)
            subscriber_count = len(self._subscribers[topic])

        logger.debug("event_bus.subscribed", {"topic": topic, "subscribers": subscriber_count})

    async def publish(self, topic: str, data: Dict[str, Any]) -> None:
        """
        Publish event to all subscribers of ``topic`` in subscription order.

        Raises:
            ValueError: If topic or data is invalid
        """
        if not topic or not isinstance(topic, str):
            raise ValueError("Topic must be a non-empty string")
        if not isinstance(data, dict):
            raise ValueError("Data must be a dictionary")

        if self._shutdown_requested:
            logger.warning("event_bus.publish_blocked", {"topic": topic, "reason": "shutdown"})
            return

        # Snapshot subscribers, deliver outside the lock
        async with self._lock:
            subscribers = list(self._subscribers.get(topic, ()))

        self._published += 1
        if not subscribers:
            logger.debug("event_bus.no_subscribers", {"topic": topic})
            return

        for subscriber in subscribers:
            await self._deliver(topic, subscriber, data)

    async def _deliver(self, topic: str, subscriber: Callable, data: Dict[str, Any]) -> None:
        """
        Deliver one event to one subscriber.

        Failed deliveries are retried ``max_retries`` times with a 1s, 2s, 4s...
        backoff, then dropped with an error log.
        """
        retries = 0

        while True:
            try:
                result = subscriber(data)
                if asyncio.iscoroutine(result):
                    await result
                return

            except Exception as e:
                retries += 1
                if retries > self._max_retries:
                    self._delivery_failures += 1
                    logger.error("event_bus.delivery_failed", {
                        "topic": topic,
                        "attempts": retries,
                        "error": str(e),
                        "error_type": type(e).__name__
                    })
                    return

                backoff = 2 ** (retries - 1)
                logger.warning("event_bus.delivery_retry", {
                    "topic": topic,
                    "attempt": retries,
                    "max_retries": self._max_retries,
                    "backoff_seconds": backoff
                })
                await asyncio.sleep(backoff)

    async def unsubscribe(self, topic: str, handler: Callable) -> None:
        """Unsubscribe handler from topic; empty topics are removed."""
        async with self._lock:
            if topic in self._subscribers and handler in self._subscribers[topic]:
                self._subscribers[topic].remove(handler)
                remaining = len(self._subscribers[topic])

                if remaining == 0:
                    del self._subscribers[topic]

                logger.debug("event_bus.unsubscribed", {"topic": topic, "remaining": remaining})

    async def list_topics(self) -> List[str]:
        async with self._lock:
            return [
                f"{topic} ({len(subscribers)} subscribers)"
                for topic, subscribers in self._subscribers.items()
            ]

    async def health_check(self) -> Dict[str, Any]:
        """Return basic EventBus state for diagnostics."""
        async with self._lock:
            active_subscribers = sum(
                len(subscribers) for subscribers in self._subscribers.values()
            )
            total_topics = len(self._subscribers)

        return {
            "healthy": not self._shutdown_requested,
            "active_subscribers": active_subscribers,
            "total_topics": total_topics,
            "total_published": self._published,
            "delivery_failures": self._delivery_failures,
            "shutdown_requested": self._shutdown_requested,
        }

    async def shutdown(self) -> None:
        """Drop all subscriptions and refuse further publishes."""
        self._shutdown_requested = True

        async with self._lock:
            topic_count = len(self._subscribers)
            subscriber_count = sum(len(subs) for subs in self._subscribers.values())
            self._subscribers.clear()

        logger.info("event_bus.shutdown_completed", {
            "cleared_subscribers": subscriber_count,
            "cleared_topics": topic_count
        })
