"""Publish/subscribe event bus.

Instances are constructed explicitly and injected into the orchestrator and
runtime; there is no process-wide bus.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from ..base.loggable import Loggable


@dataclass
class Subscription:
    token: str
    topic: str
    func: Callable[..., Any]


class PubSub(Loggable):
    """Topic-based fan-out with a record of every published topic.

    Subscribers are called synchronously, in subscription order, with the
    published ``data``. A subscriber that raises is logged and does not stop
    delivery to the others.
    """

    def __init__(self) -> None:
        super().__init__()
        self.instance_id = str(uuid.uuid4())
        self.topics: List[Subscription] = []
        self.published_topics: List[str] = []
        self._uid = -1

    def subscribe(
        self,
        topic: str,
        func: Callable[..., Any],
        run_if_already_published: bool = False,
    ) -> Optional[str]:
        """Subscribe ``func`` to ``topic``.

        Args:
            topic: Topic name.
            func: Callback receiving the published data.
            run_if_already_published: Call ``func`` with ``None`` right away
                if the topic was published before subscribing.

        Returns:
            Optional[str]: Token for `unsubscribe`, or None if ``func`` is not
            callable.
        """
        if not callable(func):
            return None

        if run_if_already_published and self.has_published(topic):
            self._deliver(Subscription(token="", topic=topic, func=func), None)

        self._uid += 1
        token = str(self._uid)
        self.topics.append(Subscription(token=token, topic=topic, func=func))
        return token

    def unsubscribe(self, topic: str, token: str) -> bool:
        """Remove a subscription; returns False if it was not found."""
        for index, subscription in enumerate(self.topics):
            if subscription.token == token and subscription.topic == topic:
                del self.topics[index]
                return True
        return False

    def publish(self, topic: str, data: Any = None) -> None:
        """Record ``topic`` as published and deliver ``data`` to its subscribers."""
        self.published_topics.append(topic)

        for subscription in list(self.topics):
            if subscription.topic == topic:
                self._deliver(subscription, data)

    def has_published(self, topic: str) -> bool:
        return topic in self.published_topics

    def clear(self) -> None:
        """Drop all subscriptions and the published-topic history."""
        self.topics = []
        self.published_topics = []
        self._uid = -1

    def _deliver(self, subscription: Subscription, data: Any) -> None:
        try:
            subscription.func(data)
        except Exception as e:
            self.logger.error(f"Subscriber for '{subscription.topic}' failed: {e}")
