"""Exceptions raised through adapter event sequences.

Everything derives from :class:`bleak.exc.BleakError` so code that
already guards bleak calls with ``except BleakError`` also catches
failures surfaced here.
"""

from __future__ import annotations

from bleak.exc import BleakError


class AdapterStreamError(BleakError):
    """Base class for all bleak-adapter-streams errors."""


class PreconditionError(AdapterStreamError):
    """The adapter or device is already in the requested state.

    Raised before any command is issued.
    """


class AdapterStateError(PreconditionError):
    """The adapter is already enabled (or already disabled)."""


class BondingStateError(PreconditionError):
    """The device is already bonded or already bonding."""

    def __init__(self, address: str, message: str) -> None:
        super().__init__(f"{address}: {message}")
        self.address = address


class CommandRejectedError(AdapterStreamError):
    """The radio refused a command (enable, disable, discovery, bond)."""


class DecodeError(AdapterStreamError):
    """An event payload did not match the event's contract."""

    def __init__(self, event_name: str, reason: str) -> None:
        super().__init__(f"malformed {event_name} event: {reason}")
        self.event_name = event_name


class SubscriptionOverflowError(AdapterStreamError):
    """A subscriber fell more than ``max_pending`` events behind."""
