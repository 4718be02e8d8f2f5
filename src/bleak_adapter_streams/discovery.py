"""Device discovery sessions.

The central rule here is *subscribe, then command*: a discovery round
can finish (or report devices) before a listener registered after
``start_discovery`` would see it.  :meth:`DiscoverySession.start_discovery`
therefore registers one subscription covering device-found and
discovery-finished, and only then asks the radio to scan.  A single
subscription keeps found/finished events in bus order, so a device
reported before the finish is never lost to it.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable

from .const import DEVICE_FOUND, DISCOVERY_FINISHED, DISCOVERY_STARTED
from .events import Event, EventSource, RadioControl
from .models import (
    DiscoveredDevice,
    DiscoveryPhase,
    decode_device,
    decode_discovery_phase,
)
from .state_stream import StateStream

_LOGGER = logging.getLogger(__name__)


async def _first_by_address(
    items: AsyncIterable[DiscoveredDevice | DiscoveryPhase],
) -> AsyncIterator[DiscoveredDevice]:
    """Yield each address once; stop at the first FINISHED marker."""
    seen: set[str] = set()
    async for item in items:
        if item is DiscoveryPhase.FINISHED:
            return
        if not isinstance(item, DiscoveredDevice) or item.address in seen:
            continue
        seen.add(item.address)
        yield item


class DiscoverySession:
    """Start discovery rounds and observe their devices and phases.

    Parameters
    ----------
    radio:
        The adapter's command surface.
    source:
        Event source carrying device-found and discovery events.
    decode_device:
        Extracts a :class:`DiscoveredDevice` from a device-found event.
    """

    def __init__(
        self,
        radio: RadioControl,
        source: EventSource,
        *,
        decode_device: Callable[[Event], DiscoveredDevice] = decode_device,
    ) -> None:
        self._radio = radio
        self._decode_device = decode_device
        self._devices = StateStream(source, {DEVICE_FOUND}, decode_device)
        self._phases = StateStream(
            source, {DISCOVERY_STARTED, DISCOVERY_FINISHED}, decode_discovery_phase
        )
        self._round = StateStream(
            source, {DEVICE_FOUND, DISCOVERY_FINISHED}, self._decode_round_event
        )

    def _decode_round_event(self, event: Event) -> DiscoveredDevice | DiscoveryPhase:
        if event.name == DISCOVERY_FINISHED:
            return DiscoveryPhase.FINISHED
        return self._decode_device(event)

    async def observe_discovered_devices(self) -> AsyncIterator[DiscoveredDevice]:
        """Yield found devices indefinitely, each address only once."""
        with self._devices.subscribe() as devices:
            async for device in _first_by_address(devices):
                yield device

    def observe_discovery_phase(self) -> StateStream[DiscoveryPhase]:
        """Return STARTED/FINISHED for every round, indefinitely."""
        return self._phases

    async def observe_discovery_window(self) -> AsyncIterator[DiscoveryPhase]:
        """Yield one round's phases, through its FINISHED.

        A FINISHED still pending from an earlier round is skipped, so
        the window only closes on a round that started after
        subscription.  Subscribe before the round starts, or its
        STARTED is missed and this waits for the next round.
        """
        skipping = True
        with self._phases.subscribe() as phases:
            async for phase in phases:
                if skipping and phase is DiscoveryPhase.FINISHED:
                    _LOGGER.debug("Skipping stale discovery finish")
                    continue
                skipping = False
                yield phase
                if phase is DiscoveryPhase.FINISHED:
                    return

    async def observe_discovery_finish(self) -> AsyncIterator[DiscoveryPhase]:
        """Yield the first FINISHED seen after subscription, then stop.

        Any FINISHED is accepted, including one left over from a round
        that started before subscription.
        """
        with self._phases.subscribe() as phases:
            async for phase in phases:
                if phase is DiscoveryPhase.FINISHED:
                    yield phase
                    return

    async def start_discovery(self) -> AsyncIterator[DiscoveredDevice]:
        """Start a discovery round and yield its devices until it finishes.

        Each address is yielded once.  The round's FINISHED ends the
        iterator without being yielded.  An exception from the radio's
        ``start_discovery`` is raised from the iterator.
        """
        with self._round.subscribe() as events:
            _LOGGER.info("Starting discovery")
            await self._radio.start_discovery()
            count = 0
            async for device in _first_by_address(events):
                count += 1
                _LOGGER.debug("%s: Discovered (%s)", device.address, device.name)
                yield device
            _LOGGER.debug("Discovery finished, %d devices", count)
