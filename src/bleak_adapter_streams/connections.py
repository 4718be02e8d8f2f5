"""ACL connection and disconnection streams."""

from __future__ import annotations

from collections.abc import Callable

from .const import ACL_CONNECTED, ACL_DISCONNECTED
from .events import Event, EventSource
from .models import DiscoveredDevice, decode_device
from .state_stream import StateStream


class ConnectionMonitor:
    """Observe devices connecting to and disconnecting from the adapter.

    Both streams are unbounded; every call to ``async for`` registers
    a new subscription.
    """

    def __init__(
        self,
        source: EventSource,
        *,
        decode_device: Callable[[Event], DiscoveredDevice] = decode_device,
    ) -> None:
        self._connections = StateStream(source, {ACL_CONNECTED}, decode_device)
        self._disconnections = StateStream(source, {ACL_DISCONNECTED}, decode_device)

    def observe_connections(self) -> StateStream[DiscoveredDevice]:
        """Return a device each time one connects."""
        return self._connections

    def observe_disconnections(self) -> StateStream[DiscoveredDevice]:
        """Return a device each time one disconnects."""
        return self._disconnections
