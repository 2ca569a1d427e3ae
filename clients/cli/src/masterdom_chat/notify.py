from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(eq=False)
class Subscription(Generic[T]):
    topic: str
    callback: Callable[[T], None]

    def deliver(self, value: T) -> None:
        self.callback(value)


class Subscribers(Generic[T]):
    """Registers listeners for one topic and notifies them on every change."""

    def __init__(self, topic: str) -> None:
        self.topic = topic
        self._subscriptions: List[Subscription[T]] = []

    def __len__(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, callback: Callable[[T], None]) -> Subscription[T]:
        subscription = Subscription(topic=self.topic, callback=callback)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription[T]) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            return

    def broadcast(self, value: T) -> None:
        for subscription in list(self._subscriptions):
            try:
                subscription.deliver(value)
            except Exception:
                logger.exception("listener for %s failed", self.topic)
