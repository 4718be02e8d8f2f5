"""Constants and configuration dataclasses for bleak-adapter-streams."""

from __future__ import annotations

import platform
from dataclasses import dataclass

IS_LINUX = platform.system() == "Linux"

# ── Event names ────────────────────────────────────────────────────
#
# These are the names every EventSource must use.  Payload keys are
# listed next to each name.

POWER_STATE_CHANGED = "power-state-changed"  # state
DEVICE_FOUND = "device-found"  # device
DISCOVERY_STARTED = "discovery-started"
DISCOVERY_FINISHED = "discovery-finished"
BOND_STATE_CHANGED = "bond-state-changed"  # address, state
ACL_CONNECTED = "acl-connected"  # device
ACL_DISCONNECTED = "acl-disconnected"  # device

# Per-subscription queue limit.  0 means unbounded.
DEFAULT_MAX_PENDING = 0

# How long the BlueZ backend waits for org.bluez to show up on D-Bus.
DEFAULT_READY_TIMEOUT = 30.0

# BlueZ scans until the client calls StopDiscovery, so the BlueZ radio
# ends each round itself after this many seconds.
DEFAULT_DISCOVERY_TIMEOUT = 12.0


@dataclass
class BlueZConfig:
    """Configuration for the BlueZ radio and event backends.

    Parameters
    ----------
    adapter:
        The adapter to control and observe (e.g. ``"hci0"``).
    max_pending:
        Maximum queued events per subscription before the subscription
        fails with :class:`~bleak_adapter_streams.exc.SubscriptionOverflowError`.
        ``0`` disables the limit.
    ready_timeout:
        Seconds :meth:`BlueZEventSource.start` waits for ``org.bluez``
        to appear on the system bus.
    discovery_timeout:
        Seconds after a successful ``StartDiscovery`` before
        :class:`BlueZRadio` issues ``StopDiscovery``.  ``None`` leaves
        the adapter scanning until stopped explicitly.
    """

    adapter: str = "hci0"
    max_pending: int = DEFAULT_MAX_PENDING
    ready_timeout: float = DEFAULT_READY_TIMEOUT
    discovery_timeout: float | None = DEFAULT_DISCOVERY_TIMEOUT

    @property
    def adapter_path(self) -> str:
        """Return the BlueZ D-Bus object path of the adapter."""
        return f"/org/bluez/{self.adapter}"
