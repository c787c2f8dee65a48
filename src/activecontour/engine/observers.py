"""Observer protocol and EventBus for typed synchronous event dispatch.

Optimizers perform pure computation; observers react to run events
(timing, energy tracing, logging) without touching optimizer state.

Delivery is synchronous and ordered. An observer subscribed to a parent
event type also receives every subclass of it. If an observer raises, a
warning is logged and delivery continues to the remaining observers.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Protocol, runtime_checkable

from activecontour.engine.events import Event

logger = logging.getLogger(__name__)


@runtime_checkable
class Observer(Protocol):
    """Structural protocol for run event observers.

    Example::

        class PrintObserver:
            def on_event(self, event: Event) -> None:
                print(type(event).__name__)

        bus = EventBus()
        bus.subscribe(IterationComplete, PrintObserver())
    """

    def on_event(self, event: Event) -> None:
        """Receive a dispatched event.

        Args:
            event: One of the event subclasses from
                ``activecontour.engine.events``.
        """
        ...


class EventBus:
    """Typed, synchronous event dispatcher.

    Events are delivered to observers subscribed to the exact event type
    first, then to observers of each ancestor type in MRO order. An observer
    registered under several matching types receives each event once.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[type[Event], list[Observer]] = defaultdict(list)

    def subscribe(self, event_type: type[Event], observer: Observer) -> None:
        """Register *observer* to receive events of *event_type*.

        Args:
            event_type: Event class to subscribe to; ``Event`` receives all.
            observer: Any object satisfying :class:`Observer`.
        """
        self._subscriptions[event_type].append(observer)

    def unsubscribe(self, event_type: type[Event], observer: Observer) -> None:
        """Remove *observer* from *event_type*; no-op when not subscribed."""
        observers = self._subscriptions.get(event_type)
        if observers and observer in observers:
            observers.remove(observer)

    def emit(self, event: Event) -> None:
        """Deliver *event* synchronously to all matching observers.

        Args:
            event: The event to dispatch.
        """
        delivered: set[int] = set()
        for ancestor in type(event).__mro__:
            if not (isinstance(ancestor, type) and issubclass(ancestor, Event)):
                continue
            for obs in list(self._subscriptions.get(ancestor, [])):
                if id(obs) in delivered:
                    continue
                delivered.add(id(obs))
                try:
                    obs.on_event(event)
                except Exception:
                    logger.warning(
                        "Observer %r failed on %s; continuing with remaining observers",
                        obs,
                        type(event).__name__,
                        exc_info=True,
                    )


__all__ = ["EventBus", "Observer"]
