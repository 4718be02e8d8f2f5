"""Per-device bonding (pairing) sessions.

A bonding attempt moves one device through NONE -> BONDING ->
BONDED or back to NONE.  :meth:`BondingSession.bond` checks the current
state once, registers for bond-state changes and only then asks the
radio to bond, so the BONDING broadcast can not slip past it.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable

from .const import BOND_STATE_CHANGED
from .events import Event, EventSource, RadioControl
from .exc import BondingStateError
from .models import BondChange, BondState, decode_bond_change, normalize_address
from .state_stream import StateStream

_LOGGER = logging.getLogger(__name__)

_TERMINAL_STATES = (BondState.BONDED, BondState.NONE)


def _as_bond_change(change: BondChange) -> BondChange:
    """Return *change* with its state as a :class:`BondState` member."""
    return BondChange(change.address, BondState(change.state))


async def _follow_attempt(
    changes: AsyncIterable[BondChange], address: str
) -> AsyncIterator[BondState]:
    """Yield BONDING through the next BONDED/NONE for *address*.

    Anything before the first BONDING is left over from an earlier
    attempt and is skipped.
    """
    bonding = False
    async for change in changes:
        if change.address != address:
            continue
        if not bonding:
            if change.state is not BondState.BONDING:
                _LOGGER.debug(
                    "%s: Skipping stale bond state %s", address, change.state.name
                )
                continue
            bonding = True
        yield change.state
        if change.state in _TERMINAL_STATES:
            return


class BondingSession:
    """Bond devices and observe bonding attempts.

    Parameters
    ----------
    radio:
        The adapter's command surface.
    source:
        Event source carrying bond-state-changed events.
    decode_change:
        Extracts a :class:`BondChange` from a bond-state-changed event.
    """

    def __init__(
        self,
        radio: RadioControl,
        source: EventSource,
        *,
        decode_change: Callable[[Event], BondChange] = decode_bond_change,
    ) -> None:
        self._radio = radio
        self._changes = StateStream(
            source,
            {BOND_STATE_CHANGED},
            lambda event: _as_bond_change(decode_change(event)),
        )

    async def observe_bonding(self, address: str) -> AsyncIterator[BondState]:
        """Yield the next bonding attempt of *address*: BONDING, then BONDED or NONE.

        Subscribe before the attempt starts, otherwise its BONDING is
        missed and this waits for a later attempt.
        """
        address = normalize_address(address)
        with self._changes.subscribe() as changes:
            async for state in _follow_attempt(changes, address):
                yield state

    async def bond(self, address: str) -> AsyncIterator[BondState]:
        """Bond *address* and yield its states until bonding ends.

        Raises :class:`BondingStateError` without issuing a command if
        the device is already bonded or bonding.  An exception from the
        radio's ``create_bond`` is raised from the iterator.
        """
        address = normalize_address(address)
        current = BondState(await self._radio.bond_state(address))
        if current is BondState.BONDED:
            raise BondingStateError(address, "device is already bonded")
        if current is BondState.BONDING:
            raise BondingStateError(
                address, "device is already in the process of bonding"
            )

        with self._changes.subscribe() as changes:
            _LOGGER.info("%s: Requesting bond", address)
            await self._radio.create_bond(address)
            async for state in _follow_attempt(changes, address):
                _LOGGER.debug("%s: Bond state %s", address, state.name)
                yield state
