"""Typed view over an event source subscription.

:class:`StateStream` is the single point where raw events enter the
package.  It filters by event name and decodes each event with an
``extract`` function; it never drops, reorders or terminates.  All
skip/take/dedup rules live in the components built on top of it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Generic, TypeVar

from .events import Event, EventSource, Subscription
from .exc import DecodeError

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class TypedSubscription(Generic[T]):
    """An open :class:`Subscription` that yields decoded values.

    Closing it closes the underlying subscription.  A decode failure
    closes it too and is raised as :class:`DecodeError`.
    """

    def __init__(
        self, subscription: Subscription, extract: Callable[[Event], T]
    ) -> None:
        self._subscription = subscription
        self._extract = extract

    @property
    def closed(self) -> bool:
        return self._subscription.closed

    def close(self) -> None:
        self._subscription.close()

    def __aiter__(self) -> TypedSubscription[T]:
        return self

    async def __anext__(self) -> T:
        event = await self._subscription.__anext__()
        try:
            return self._extract(event)
        except DecodeError:
            _LOGGER.debug("Closing subscription on malformed %s event", event.name)
            self.close()
            raise
        except (KeyError, TypeError, ValueError) as exc:
            _LOGGER.debug("Closing subscription on malformed %s event", event.name)
            self.close()
            raise DecodeError(event.name, str(exc)) from exc

    def __enter__(self) -> TypedSubscription[T]:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class StateStream(Generic[T]):
    """Lazy, restartable sequence of values decoded from named events.

    Nothing is registered until :meth:`subscribe` (or ``async for``)
    is called, and every call registers a fresh, independent
    subscription.

    Parameters
    ----------
    source:
        The event source to subscribe to.
    event_names:
        Event names to receive.
    extract:
        Decodes one event into a value.
    """

    def __init__(
        self,
        source: EventSource,
        event_names: Iterable[str],
        extract: Callable[[Event], T],
    ) -> None:
        self._source = source
        self._event_names = frozenset(event_names)
        self._extract = extract

    @property
    def event_names(self) -> frozenset[str]:
        return self._event_names

    def subscribe(self) -> TypedSubscription[T]:
        """Register a subscription now and return it.

        Registration is complete when this returns, so events published
        immediately afterwards are not missed.
        """
        return TypedSubscription(
            self._source.subscribe(self._event_names), self._extract
        )

    def __aiter__(self) -> TypedSubscription[T]:
        return self.subscribe()


def subscribe_typed(
    source: EventSource,
    event_names: Iterable[str],
    extract: Callable[[Event], T],
) -> StateStream[T]:
    """Return a :class:`StateStream` of ``extract(event)`` values."""
    return StateStream(source, event_names, extract)
