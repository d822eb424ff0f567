"""
Event bus for billing domain events.

Synchronous in-process pub/sub. Handlers execute immediately in the same
thread as the publisher. Handler errors are logged but never propagate: the
primary operation (store write + audit) has already committed, and a failed
receipt email must not turn a reconciled payment into a webhook error.
"""

import logging
from typing import Callable, Dict, Iterable, List

from core.events import BillingEvent

logger = logging.getLogger(__name__)


class EventBus:
    """
    In-process event bus for billing domain events.

    Subscribe by event class or class name, publish by event instance.
    Subscribing to a base class ('PaymentEvent') receives every subclass.
    Handlers are called in subscription order, most specific type first.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str | type, callback: Callable):
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Event class, or its name (e.g. 'PaymentCompleted')
            callback: Function to call when event is published
        """
        name = event_type if isinstance(event_type, str) else event_type.__name__
        self._subscribers.setdefault(name, []).append(callback)

    def publish(self, event: BillingEvent):
        """
        Publish an event to all subscribers of its type and base types.

        Args:
            event: BillingEvent instance to publish
        """
        for cls in type(event).__mro__:
            for callback in self._subscribers.get(cls.__name__, []):
                try:
                    callback(event)
                except Exception:
                    logger.exception(
                        "Handler %s failed for %s (event_id=%s)",
                        getattr(callback, "__name__", repr(callback)),
                        type(event).__name__,
                        event.event_id,
                    )
            if cls is BillingEvent:
                break

    def publish_all(self, events: Iterable[BillingEvent]):
        """Publish events in order."""
        for event in events:
            self.publish(event)
