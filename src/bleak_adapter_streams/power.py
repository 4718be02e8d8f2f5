"""Adapter power control with terminating transition streams.

:meth:`AdapterPowerController.enable` and
:meth:`AdapterPowerController.disable` return async iterators that
issue the radio command when first awaited, then yield power states
until the adapter settles at ON or OFF::

    controller = AdapterPowerController(radio, events)
    async for state in controller.enable():
        print(state)   # TURNING_ON, ON

Nothing happens if the iterator is created but never iterated.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable

from .const import POWER_STATE_CHANGED
from .events import Event, EventSource, RadioControl
from .exc import AdapterStateError, CommandRejectedError
from .models import PowerState, decode_power_state
from .state_stream import StateStream

_LOGGER = logging.getLogger(__name__)


class AdapterPowerController:
    """Turn the adapter on and off and observe its power state.

    Parameters
    ----------
    radio:
        The adapter's command surface.
    source:
        Event source carrying power-state-changed events.
    decode_state:
        Extracts a :class:`PowerState` from a power-state-changed event.
    """

    def __init__(
        self,
        radio: RadioControl,
        source: EventSource,
        *,
        decode_state: Callable[[Event], PowerState] = decode_power_state,
    ) -> None:
        self._radio = radio
        self._states = StateStream(
            source,
            {POWER_STATE_CHANGED},
            lambda event: PowerState(decode_state(event)),
        )

    def observe_state(self) -> StateStream[PowerState]:
        """Return every power state change, indefinitely."""
        return self._states

    async def observe_state_on_off(self) -> AsyncIterator[PowerState]:
        """Yield settled ON/OFF states, dropping repeats of the last one."""
        last: PowerState | None = None
        with self._states.subscribe() as states:
            async for state in states:
                if not state.is_settled or state is last:
                    continue
                last = state
                yield state

    def enable(self) -> AsyncIterator[PowerState]:
        """Enable the adapter and follow the transition until it settles.

        Raises :class:`AdapterStateError` if the adapter is already on
        and :class:`CommandRejectedError` if the radio refuses.
        """
        return self._transition(enabled=True)

    def disable(self) -> AsyncIterator[PowerState]:
        """Disable the adapter and follow the transition until it settles.

        Raises :class:`AdapterStateError` if the adapter is already off
        and :class:`CommandRejectedError` if the radio refuses.
        """
        return self._transition(enabled=False)

    async def _transition(self, enabled: bool) -> AsyncIterator[PowerState]:
        action = "enable" if enabled else "disable"
        if await self._radio.is_enabled() == enabled:
            raise AdapterStateError(f"bluetooth is already {action}d")

        with self._states.subscribe() as states:
            command = self._radio.enable if enabled else self._radio.disable
            _LOGGER.info("Requesting adapter %s", action)
            if not await command():
                _LOGGER.warning("Adapter refused to %s", action)
                raise CommandRejectedError(f"cannot {action} bluetooth")

            async for state in states:
                _LOGGER.debug("Adapter power state: %s", state.name)
                yield state
                if state.is_settled:
                    return
