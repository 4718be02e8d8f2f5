"""Value types carried by adapter events, and their payload decoders.

The decoders are the default ``extract`` functions handed to
:class:`~bleak_adapter_streams.state_stream.StateStream`.  Components
accept replacements for them so an event source with a different
payload layout can be plugged in without touching the composition
rules.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any

from bleak.backends.device import BLEDevice

from .const import DISCOVERY_FINISHED, DISCOVERY_STARTED
from .exc import DecodeError

if TYPE_CHECKING:
    from .events import Event


class PowerState(IntEnum):
    """Adapter power state, as carried in power-state-changed payloads."""

    OFF = 10
    TURNING_ON = 11
    ON = 12
    TURNING_OFF = 13

    @property
    def is_settled(self) -> bool:
        """Return whether this state ends a power transition."""
        return self in (PowerState.ON, PowerState.OFF)


class BondState(IntEnum):
    """Per-device bonding (pairing) state."""

    NONE = 10
    BONDING = 11
    BONDED = 12


class DiscoveryPhase(str, Enum):
    """Start/finish signal of one discovery round."""

    STARTED = "started"
    FINISHED = "finished"


def normalize_address(address: str) -> str:
    """Return *address* in the canonical upper-case form used as identity."""
    return address.upper()


@dataclass(frozen=True)
class DiscoveredDevice:
    """A device surfaced by a device-found or ACL event.

    Attributes
    ----------
    address:
        The device's Bluetooth address, upper case.  This is the
        identity key used for deduplication.
    name:
        Display name, when the event carried one.
    bond_state:
        Bonding state reported alongside the device.
    details:
        Backend-specific data (the BlueZ backend stores the D-Bus
        object path under ``"path"``).
    """

    address: str
    name: str | None = None
    bond_state: BondState = BondState.NONE
    details: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", normalize_address(self.address))

    @classmethod
    def from_ble_device(
        cls, device: BLEDevice, bond_state: BondState = BondState.NONE
    ) -> DiscoveredDevice:
        """Build a DiscoveredDevice from a bleak ``BLEDevice``."""
        details = dict(device.details) if isinstance(device.details, dict) else {}
        return cls(
            address=device.address,
            name=device.name,
            bond_state=bond_state,
            details=details,
        )

    def to_ble_device(self) -> BLEDevice:
        """Return a bleak ``BLEDevice`` usable with ``BleakClient``."""
        return BLEDevice(self.address, self.name, dict(self.details))


@dataclass(frozen=True)
class BondChange:
    """One decoded bond-state-changed event."""

    address: str
    state: BondState

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", normalize_address(self.address))


# ── Decoders ───────────────────────────────────────────────────────


def _field(event: Event, key: str) -> Any:
    try:
        return event.payload[key]
    except (KeyError, TypeError) as exc:
        raise DecodeError(event.name, f"missing {key!r}") from exc


def decode_power_state(event: Event) -> PowerState:
    """Extract the ``state`` field of a power-state-changed event."""
    raw = _field(event, "state")
    try:
        return PowerState(raw)
    except ValueError as exc:
        raise DecodeError(event.name, f"unknown power state {raw!r}") from exc


def decode_bond_change(event: Event) -> BondChange:
    """Extract ``address`` and ``state`` of a bond-state-changed event."""
    address = _field(event, "address")
    raw = _field(event, "state")
    if not isinstance(address, str):
        raise DecodeError(event.name, f"address is not a string: {address!r}")
    try:
        return BondChange(address, BondState(raw))
    except ValueError as exc:
        raise DecodeError(event.name, f"unknown bond state {raw!r}") from exc


def decode_device(event: Event) -> DiscoveredDevice:
    """Extract the ``device`` field of a device-found or ACL event.

    Accepts a :class:`DiscoveredDevice`, a bleak ``BLEDevice`` or a
    mapping with ``address`` and optional ``name`` / ``bond_state``.
    """
    raw = _field(event, "device")
    if isinstance(raw, DiscoveredDevice):
        return raw
    if isinstance(raw, BLEDevice):
        return DiscoveredDevice.from_ble_device(raw)
    if isinstance(raw, Mapping):
        address = raw.get("address")
        if not isinstance(address, str):
            raise DecodeError(event.name, "device record has no address")
        try:
            bond_state = BondState(raw.get("bond_state", BondState.NONE))
        except ValueError as exc:
            raise DecodeError(
                event.name, f"unknown bond state {raw.get('bond_state')!r}"
            ) from exc
        return DiscoveredDevice(
            address=address,
            name=raw.get("name"),
            bond_state=bond_state,
            details=dict(raw.get("details") or {}),
        )
    raise DecodeError(event.name, f"unsupported device record {type(raw).__name__}")


def decode_discovery_phase(event: Event) -> DiscoveryPhase:
    """Map a discovery-started/finished event to its phase."""
    if event.name == DISCOVERY_STARTED:
        return DiscoveryPhase.STARTED
    if event.name == DISCOVERY_FINISHED:
        return DiscoveryPhase.FINISHED
    raise DecodeError(event.name, "not a discovery status event")
