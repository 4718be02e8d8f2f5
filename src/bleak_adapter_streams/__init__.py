"""bleak-adapter-streams: Bluetooth adapter notifications as async streams.

Turns the adapter's broadcast notifications (power changes, discovery,
bonding, ACL connections) into independent, terminating, race-free
async iterators, backed by BlueZ via dbus-fast or by any event source.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .bluez import (
    BlueZEventSource,
    BlueZRadio,
    address_to_bluez_path,
    bluez_path_to_address,
)
from .bonding import BondingSession
from .connections import ConnectionMonitor
from .const import (
    ACL_CONNECTED,
    ACL_DISCONNECTED,
    BOND_STATE_CHANGED,
    DEVICE_FOUND,
    DISCOVERY_FINISHED,
    DISCOVERY_STARTED,
    IS_LINUX,
    POWER_STATE_CHANGED,
    BlueZConfig,
)
from .dbus_bus import close_bus, wait_for_bluez
from .discovery import DiscoverySession
from .events import Event, EventBus, EventSource, RadioControl, Subscription
from .exc import (
    AdapterStateError,
    AdapterStreamError,
    BondingStateError,
    CommandRejectedError,
    DecodeError,
    PreconditionError,
    SubscriptionOverflowError,
)
from .models import (
    BondChange,
    BondState,
    DiscoveredDevice,
    DiscoveryPhase,
    PowerState,
    decode_bond_change,
    decode_device,
    decode_discovery_phase,
    decode_power_state,
)
from .power import AdapterPowerController
from .state_stream import StateStream, TypedSubscription, subscribe_typed

__all__ = [
    # Components
    "AdapterPowerController",
    "DiscoverySession",
    "BondingSession",
    "ConnectionMonitor",
    # Event plumbing
    "Event",
    "EventBus",
    "EventSource",
    "RadioControl",
    "Subscription",
    "StateStream",
    "TypedSubscription",
    "subscribe_typed",
    # Models and decoders
    "BondChange",
    "BondState",
    "DiscoveredDevice",
    "DiscoveryPhase",
    "PowerState",
    "decode_bond_change",
    "decode_device",
    "decode_discovery_phase",
    "decode_power_state",
    # Errors
    "AdapterStreamError",
    "PreconditionError",
    "AdapterStateError",
    "BondingStateError",
    "CommandRejectedError",
    "DecodeError",
    "SubscriptionOverflowError",
    # BlueZ backend
    "BlueZConfig",
    "BlueZEventSource",
    "BlueZRadio",
    "address_to_bluez_path",
    "bluez_path_to_address",
    "close_bus",
    "wait_for_bluez",
    # Constants
    "ACL_CONNECTED",
    "ACL_DISCONNECTED",
    "BOND_STATE_CHANGED",
    "DEVICE_FOUND",
    "DISCOVERY_FINISHED",
    "DISCOVERY_STARTED",
    "IS_LINUX",
    "POWER_STATE_CHANGED",
]
