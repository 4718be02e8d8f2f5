"""Event source contract and an in-process broadcast bus.

An :class:`EventSource` delivers named :class:`Event` objects to every
current subscriber whose name filter matches.  :class:`EventBus` is the
reference implementation: the BlueZ backend publishes translated D-Bus
signals into one, and tests publish into one directly.

Subscription is synchronous.  When :meth:`EventBus.subscribe` returns,
the subscription is registered and every later :meth:`EventBus.publish`
reaches it, even one issued before the caller first awaits the
subscription.  Composing operations rely on this to register their
listener before they issue a radio command.

:class:`RadioControl` is the command surface of the adapter.  It lives
here beside :class:`EventSource` because together they are the only two
seams between this package and the outside world.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from .const import DEFAULT_MAX_PENDING
from .exc import SubscriptionOverflowError

if TYPE_CHECKING:
    from .models import BondState

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    """A named broadcast with a small payload."""

    name: str
    payload: Mapping[str, Any] = field(default_factory=dict)


class Subscription:
    """A registered listener for a set of event names.

    Iterate it with ``async for`` to receive matching events in the
    order they were published.  Closing it (directly, via ``with`` or
    by its owner) unregisters it from the source, ends iteration and
    drops any event published afterwards.

    Parameters
    ----------
    event_names:
        Names this subscription receives.
    on_close:
        Called once with this subscription when it is closed.
    max_pending:
        Queue limit; ``0`` means unbounded.
    """

    def __init__(
        self,
        event_names: Iterable[str],
        on_close: Callable[[Subscription], None] | None = None,
        max_pending: int = DEFAULT_MAX_PENDING,
    ) -> None:
        self._event_names = frozenset(event_names)
        if not self._event_names:
            raise ValueError("a subscription needs at least one event name")
        self._on_close = on_close
        self._max_pending = max_pending
        # None is the wake-up marker queued on close or overflow.
        self._queue: asyncio.Queue[Event | None] = asyncio.Queue()
        self._closed = False
        self._overflowed = False

    @property
    def event_names(self) -> frozenset[str]:
        return self._event_names

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Return the number of events queued but not yet consumed."""
        return self._queue.qsize()

    def matches(self, event: Event) -> bool:
        return event.name in self._event_names

    def deliver(self, event: Event) -> None:
        """Queue *event* for the consumer.  Never blocks."""
        if self._closed or self._overflowed:
            return
        if self._max_pending and self._queue.qsize() >= self._max_pending:
            _LOGGER.warning(
                "Subscription to %s overflowed (%d pending events)",
                sorted(self._event_names),
                self._max_pending,
            )
            self._overflowed = True
            self._queue.put_nowait(None)
            return
        self._queue.put_nowait(event)

    def drain(self) -> list[Event]:
        """Remove and return the events queued so far, without waiting."""
        events: list[Event] = []
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is None:
                # The wake-up marker is always last; keep it for __anext__.
                self._queue.put_nowait(None)
                break
            events.append(event)
        return events

    def close(self) -> None:
        """Unregister and end iteration.

        Safe to call multiple times.
        """
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)
        if self._on_close is not None:
            self._on_close(self)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> Event:
        if self._closed:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is not None:
            return event
        if self._overflowed and not self._closed:
            self.close()
            raise SubscriptionOverflowError(
                f"subscriber to {sorted(self._event_names)} fell more than "
                f"{self._max_pending} events behind"
            )
        raise StopAsyncIteration

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class EventSource(Protocol):
    """Anything that hands out :class:`Subscription` objects."""

    def subscribe(self, event_names: Iterable[str]) -> Subscription:
        """Register and return a subscription for *event_names*."""
        ...


class RadioControl(Protocol):
    """Command surface of the radio adapter.

    Each method issues a single command and reports its immediate
    outcome.  The resulting state changes arrive later as events.
    """

    async def is_enabled(self) -> bool: ...

    async def enable(self) -> bool: ...

    async def disable(self) -> bool: ...

    async def start_discovery(self) -> None: ...

    async def bond_state(self, address: str) -> BondState: ...

    async def create_bond(self, address: str) -> None: ...


class EventBus:
    """In-process broadcast bus implementing :class:`EventSource`.

    :meth:`publish` must be called from the event loop that consumes
    the subscriptions.  Use :meth:`publish_threadsafe` from other
    threads.

    Parameters
    ----------
    max_pending:
        Queue limit applied to every subscription; ``0`` means unbounded.
    """

    def __init__(self, *, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self._max_pending = max_pending
        self._subscriptions: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        """Return the number of open subscriptions."""
        return len(self._subscriptions)

    def subscribe(self, event_names: Iterable[str]) -> Subscription:
        subscription = Subscription(
            event_names,
            on_close=self._unsubscribe,
            max_pending=self._max_pending,
        )
        self._subscriptions.append(subscription)
        _LOGGER.debug(
            "Subscribed to %s (%d open)",
            sorted(subscription.event_names),
            len(self._subscriptions),
        )
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            return
        _LOGGER.debug(
            "Unsubscribed from %s (%d open)",
            sorted(subscription.event_names),
            len(self._subscriptions),
        )

    def publish(self, event: Event) -> None:
        """Deliver *event* to every matching subscription, in order."""
        # Copy: a consumer may close its subscription while we iterate.
        for subscription in list(self._subscriptions):
            if subscription.matches(event):
                subscription.deliver(event)

    def publish_threadsafe(
        self, loop: asyncio.AbstractEventLoop, event: Event
    ) -> None:
        """Schedule :meth:`publish` on *loop* from another thread."""
        loop.call_soon_threadsafe(self.publish, event)

    def close(self) -> None:
        """Close every open subscription."""
        for subscription in list(self._subscriptions):
            subscription.close()
