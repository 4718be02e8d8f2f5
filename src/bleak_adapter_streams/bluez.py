"""BlueZ backends for the radio command surface and the event source.

:class:`BlueZRadio` implements
:class:`~bleak_adapter_streams.events.RadioControl` with ``org.bluez``
``Adapter1``/``Device1`` method calls.  :class:`BlueZEventSource` is an
:class:`~bleak_adapter_streams.events.EventBus` fed by BlueZ D-Bus
signals for one adapter:

==========================================  ==========================
BlueZ signal                                Event
==========================================  ==========================
Adapter1 ``PowerState`` / ``Powered``       power-state-changed
Adapter1 ``Discovering``                    discovery-started/finished
``InterfacesAdded`` Device1, Device1 RSSI   device-found
Device1 ``Paired``                          bond-state-changed
Device1 ``Connected``                       acl-connected/disconnected
==========================================  ==========================

BlueZ never broadcasts an in-progress pairing, so :class:`BlueZRadio`
publishes BONDING itself (and the outcome of its ``Pair`` call) when
given the event bus.

Uses ``dbus-fast`` directly, the same library bleak uses internally,
through the shared bus in :mod:`bleak_adapter_streams.dbus_bus`.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any

from .const import (
    ACL_CONNECTED,
    ACL_DISCONNECTED,
    BOND_STATE_CHANGED,
    DEVICE_FOUND,
    DISCOVERY_FINISHED,
    DISCOVERY_STARTED,
    POWER_STATE_CHANGED,
    BlueZConfig,
)
from .dbus_bus import (
    BLUEZ_SERVICE,
    DBUS_SERVICE,
    PROPERTIES_INTERFACE,
    add_match,
    call_bluez,
    error_text,
    get_bus,
    get_name_owner,
    is_error,
    remove_match,
    wait_for_bluez,
)
from .events import Event, EventBus, Subscription
from .exc import AdapterStreamError, CommandRejectedError
from .models import BondState, DiscoveredDevice, PowerState, normalize_address

_LOGGER = logging.getLogger(__name__)

# D-Bus constants
ADAPTER_INTERFACE = "org.bluez.Adapter1"
DEVICE_INTERFACE = "org.bluez.Device1"
_OBJECT_MANAGER_INTERFACE = "org.freedesktop.DBus.ObjectManager"

# Adapter1.PowerState values (BlueZ >= 5.64).
_POWER_STATES = {
    "on": PowerState.ON,
    "off": PowerState.OFF,
    "off-blocked": PowerState.OFF,
    "off-enabling": PowerState.TURNING_ON,
    "on-disabling": PowerState.TURNING_OFF,
}


def address_to_bluez_path(address: str, adapter: str = "hci0") -> str:
    """Convert a BLE address + adapter to a BlueZ D-Bus object path.

    Example::

        >>> address_to_bluez_path("AA:BB:CC:DD:EE:FF", "hci0")
        '/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF'
    """
    dev_part = f"dev_{address.upper().replace(':', '_')}"
    return f"/org/bluez/{adapter}/{dev_part}"


def bluez_path_to_address(path: str) -> str | None:
    """Return the address encoded in a BlueZ device path, or ``None``.

    Example::

        >>> bluez_path_to_address("/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF")
        'AA:BB:CC:DD:EE:FF'
    """
    leaf = path.rsplit("/", 1)[-1]
    if not leaf.startswith("dev_"):
        return None
    return leaf[len("dev_"):].replace("_", ":").upper()


def _unwrap(value: Any) -> Any:
    """Return the payload of a dbus-fast ``Variant`` (or *value* itself)."""
    return value.value if hasattr(value, "value") else value


class BlueZEventSource(EventBus):
    """Event source translating BlueZ signals for one adapter.

    Subscriptions can be taken before :meth:`start`; they receive
    events once the source is started.  Use as an async context
    manager to start and stop it::

        async with BlueZEventSource(BlueZConfig(adapter="hci1")) as events:
            ...
    """

    def __init__(self, config: BlueZConfig | None = None) -> None:
        self._config = config or BlueZConfig()
        super().__init__(max_pending=self._config.max_pending)
        self._adapter_path = self._config.adapter_path
        self._bus: Any | None = None
        # Keep one bound method so remove_message_handler() finds it.
        self._handler = self._on_message
        self._devices: dict[str, DiscoveredDevice] = {}
        # Unique name of bluetoothd; only its signals are translated.
        self._bluez_owner: str | None = None

    @property
    def is_running(self) -> bool:
        return self._bus is not None

    def _match_rules(self) -> list[str]:
        base = f"type='signal',sender='{BLUEZ_SERVICE}'"
        return [
            f"{base},interface='{PROPERTIES_INTERFACE}',"
            f"member='PropertiesChanged',path_namespace='{self._adapter_path}'",
            f"{base},interface='{_OBJECT_MANAGER_INTERFACE}',member='InterfacesAdded'",
            f"{base},interface='{_OBJECT_MANAGER_INTERFACE}',member='InterfacesRemoved'",
            f"type='signal',sender='{DBUS_SERVICE}',interface='{DBUS_SERVICE}',"
            f"member='NameOwnerChanged',arg0='{BLUEZ_SERVICE}'",
        ]

    async def start(self) -> None:
        """Wait for BlueZ, register match rules and start translating.

        Calling ``start()`` on a running source is a no-op.
        """
        if self._bus is not None:
            return
        if not await wait_for_bluez(self._config.ready_timeout):
            raise AdapterStreamError("BlueZ is not available on D-Bus")
        bus = await get_bus()
        for rule in self._match_rules():
            await add_match(rule)
        self._bluez_owner = await get_name_owner(BLUEZ_SERVICE)
        bus.add_message_handler(self._handler)
        self._bus = bus
        _LOGGER.info("BlueZEventSource: started on %s", self._config.adapter)

    async def stop(self) -> None:
        """Stop translating signals.

        Open subscriptions stay registered.  Safe to call multiple
        times or before ``start()``.
        """
        bus, self._bus = self._bus, None
        if bus is None:
            return
        bus.remove_message_handler(self._handler)
        for rule in self._match_rules():
            try:
                await remove_match(rule)
            except Exception:
                _LOGGER.debug(
                    "BlueZEventSource: RemoveMatch failed for %s", rule, exc_info=True
                )
        self._bluez_owner = None
        self._devices.clear()
        _LOGGER.info("BlueZEventSource: stopped on %s", self._config.adapter)

    async def __aenter__(self) -> BlueZEventSource:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()

    # ── Signal translation ─────────────────────────────────────────

    def _on_message(self, message: Any) -> None:
        from dbus_fast import MessageType

        if message.message_type != MessageType.SIGNAL:
            return
        try:
            if message.member == "NameOwnerChanged":
                if message.sender == DBUS_SERVICE:
                    self._on_owner_changed(*message.body[:3])
                return
            if self._bluez_owner is None or message.sender != self._bluez_owner:
                return
            if message.member == "PropertiesChanged":
                interface, changed = message.body[0], message.body[1]
                self._on_properties_changed(
                    message.path,
                    interface,
                    {key: _unwrap(value) for key, value in changed.items()},
                )
            elif message.member == "InterfacesAdded":
                path, interfaces = message.body[0], message.body[1]
                props = interfaces.get(DEVICE_INTERFACE)
                if props is not None and self._owns(path):
                    self._on_device_added(
                        path, {key: _unwrap(value) for key, value in props.items()}
                    )
            elif message.member == "InterfacesRemoved":
                path, interfaces = message.body[0], message.body[1]
                if DEVICE_INTERFACE in interfaces:
                    self._devices.pop(path, None)
        except (AttributeError, IndexError, TypeError, ValueError):
            _LOGGER.warning(
                "BlueZEventSource: unexpected %s signal on %s",
                message.member,
                message.path,
                exc_info=True,
            )

    def _owns(self, path: str) -> bool:
        return path.startswith(f"{self._adapter_path}/dev_")

    def _on_owner_changed(self, name: str, old_owner: str, new_owner: str) -> None:
        if name != BLUEZ_SERVICE:
            return
        # bluetoothd restarted: its object paths and unique name are new.
        self._devices.clear()
        self._bluez_owner = new_owner or None
        _LOGGER.info(
            "BlueZEventSource: org.bluez owner changed %r -> %r", old_owner, new_owner
        )

    def _on_properties_changed(
        self, path: str, interface: str, changed: dict[str, Any]
    ) -> None:
        if interface == ADAPTER_INTERFACE and path == self._adapter_path:
            self._on_adapter_changed(changed)
        elif interface == DEVICE_INTERFACE and self._owns(path):
            self._on_device_changed(path, changed)

    def _on_adapter_changed(self, changed: dict[str, Any]) -> None:
        state: PowerState | None = None
        if "PowerState" in changed:
            state = _POWER_STATES.get(changed["PowerState"])
        elif "Powered" in changed:
            state = PowerState.ON if changed["Powered"] else PowerState.OFF
        if state is not None:
            self.publish(Event(POWER_STATE_CHANGED, {"state": state}))

        if "Discovering" in changed:
            name = DISCOVERY_STARTED if changed["Discovering"] else DISCOVERY_FINISHED
            self.publish(Event(name))

    def _device(self, path: str) -> DiscoveredDevice:
        device = self._devices.get(path)
        if device is None:
            address = bluez_path_to_address(path) or path
            device = DiscoveredDevice(address=address, details={"path": path})
            self._devices[path] = device
        return device

    def _on_device_added(self, path: str, props: dict[str, Any]) -> None:
        address = props.get("Address") or bluez_path_to_address(path) or path
        device = DiscoveredDevice(
            address=address,
            name=props.get("Name"),
            bond_state=BondState.BONDED if props.get("Paired") else BondState.NONE,
            details={"path": path},
        )
        self._devices[path] = device
        self.publish(Event(DEVICE_FOUND, {"device": device}))

    def _on_device_changed(self, path: str, changed: dict[str, Any]) -> None:
        device = self._device(path)
        if "Name" in changed or "Paired" in changed:
            device = DiscoveredDevice(
                address=device.address,
                name=changed.get("Name", device.name),
                bond_state=(
                    (BondState.BONDED if changed["Paired"] else BondState.NONE)
                    if "Paired" in changed
                    else device.bond_state
                ),
                details=device.details,
            )
            self._devices[path] = device

        if "Paired" in changed:
            self.publish(
                Event(
                    BOND_STATE_CHANGED,
                    {"address": device.address, "state": device.bond_state},
                )
            )
        if "Connected" in changed:
            name = ACL_CONNECTED if changed["Connected"] else ACL_DISCONNECTED
            self.publish(Event(name, {"device": device}))
        if "RSSI" in changed:
            self.publish(Event(DEVICE_FOUND, {"device": device}))


class BlueZRadio:
    """Radio command surface backed by BlueZ.

    Parameters
    ----------
    config:
        Selects the adapter.
    events:
        If given, bonding progress that BlueZ does not broadcast
        (BONDING, and the result of the ``Pair`` call) is published
        here.  Normally the :class:`BlueZEventSource` for the same
        adapter.
    """

    def __init__(
        self,
        config: BlueZConfig | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._config = config or BlueZConfig()
        self._events = events
        self._pairing: dict[str, asyncio.Task[bool]] = {}
        self._discovery_timer: asyncio.Task[None] | None = None

    @property
    def adapter(self) -> str:
        return self._config.adapter

    def _device_path(self, address: str) -> str:
        return address_to_bluez_path(address, self._config.adapter)

    async def _get_property(self, path: str, interface: str, name: str) -> Any:
        reply = await call_bluez(
            path, PROPERTIES_INTERFACE, "Get", "ss", [interface, name]
        )
        if is_error(reply):
            _LOGGER.debug(
                "Get %s.%s on %s failed: %s", interface, name, path, error_text(reply)
            )
            return None
        return _unwrap(reply.body[0])

    async def is_enabled(self) -> bool:
        powered = await self._get_property(
            self._config.adapter_path, ADAPTER_INTERFACE, "Powered"
        )
        return bool(powered)

    async def enable(self) -> bool:
        return await self._set_powered(True)

    async def disable(self) -> bool:
        return await self._set_powered(False)

    async def _set_powered(self, powered: bool) -> bool:
        from dbus_fast import Variant

        try:
            reply = await call_bluez(
                self._config.adapter_path,
                PROPERTIES_INTERFACE,
                "Set",
                "ssv",
                [ADAPTER_INTERFACE, "Powered", Variant("b", powered)],
            )
        except Exception:
            _LOGGER.debug(
                "Failed to set Powered=%s on %s",
                powered,
                self._config.adapter,
                exc_info=True,
            )
            return False
        if is_error(reply):
            _LOGGER.warning(
                "%s refused Powered=%s: %s",
                self._config.adapter,
                powered,
                error_text(reply),
            )
            return False
        return True

    async def start_discovery(self) -> None:
        """Start a discovery round on the adapter.

        BlueZ keeps scanning until told otherwise, so unless
        ``discovery_timeout`` is ``None`` a ``StopDiscovery`` is
        scheduled to end the round (``Discovering`` turns false once no
        other client is scanning).
        """
        reply = await call_bluez(
            self._config.adapter_path, ADAPTER_INTERFACE, "StartDiscovery"
        )
        if is_error(reply):
            raise CommandRejectedError(
                f"cannot start discovery on {self._config.adapter}: "
                f"{error_text(reply)}"
            )
        timeout = self._config.discovery_timeout
        if timeout is None:
            return
        if self._discovery_timer is not None:
            self._discovery_timer.cancel()
        self._discovery_timer = asyncio.ensure_future(
            self._stop_discovery_after(timeout)
        )

    async def _stop_discovery_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._discovery_timer = None
        try:
            await self.stop_discovery()
        except Exception:
            _LOGGER.warning(
                "Failed to stop discovery on %s", self._config.adapter, exc_info=True
            )

    async def stop_discovery(self) -> None:
        """End this client's discovery round."""
        reply = await call_bluez(
            self._config.adapter_path, ADAPTER_INTERFACE, "StopDiscovery"
        )
        if is_error(reply):
            _LOGGER.debug(
                "StopDiscovery on %s failed: %s",
                self._config.adapter,
                error_text(reply),
            )

    async def bond_state(self, address: str) -> BondState:
        address = normalize_address(address)
        if address in self._pairing:
            return BondState.BONDING
        paired = await self._get_property(
            self._device_path(address), DEVICE_INTERFACE, "Paired"
        )
        return BondState.BONDED if paired else BondState.NONE

    async def create_bond(self, address: str) -> None:
        """Start pairing *address* in the background.

        Returns once pairing is under way; the outcome arrives as
        bond-state-changed events.  Every attempt ends with BONDED or
        NONE, including one cancelled by :meth:`close`.
        """
        address = normalize_address(address)
        if address in self._pairing:
            raise CommandRejectedError(f"{address}: pairing already in progress")
        # Surface a missing bus here rather than as a NONE event later.
        await get_bus()
        watch = None
        if self._events is not None:
            # Sees the Paired signal, so its outcome is not published twice.
            watch = self._events.subscribe({BOND_STATE_CHANGED})
        self._publish_bond(address, BondState.BONDING)
        task = asyncio.ensure_future(self._pair(address))
        task.add_done_callback(partial(self._pair_done, address, watch))
        self._pairing[address] = task

    async def _pair(self, address: str) -> bool:
        try:
            reply = await call_bluez(self._device_path(address), DEVICE_INTERFACE, "Pair")
        except Exception:
            _LOGGER.warning("%s: Pair failed", address, exc_info=True)
            return False
        if is_error(reply):
            _LOGGER.warning("%s: Pair failed: %s", address, error_text(reply))
            return False
        return True

    def _pair_done(
        self,
        address: str,
        watch: Subscription | None,
        task: asyncio.Task[bool],
    ) -> None:
        # Runs even when the task was cancelled before it started.
        self._pairing.pop(address, None)
        if task.cancelled():
            _LOGGER.debug("%s: Pair cancelled", address)
            paired = False
        else:
            paired = task.result()
        self._finish_pair(
            address, BondState.BONDED if paired else BondState.NONE, watch
        )

    def _finish_pair(
        self, address: str, outcome: BondState, watch: Subscription | None
    ) -> None:
        if watch is not None:
            reported = any(
                event.payload.get("address") == address
                and event.payload.get("state") == outcome
                for event in watch.drain()
            )
            watch.close()
            if reported:
                _LOGGER.debug("%s: Bond state %s already reported", address, outcome.name)
                return
        self._publish_bond(address, outcome)

    def _publish_bond(self, address: str, state: BondState) -> None:
        if self._events is not None:
            self._events.publish(
                Event(BOND_STATE_CHANGED, {"address": address, "state": state})
            )

    async def close(self) -> None:
        """Cancel pairing attempts and end a discovery round still running.

        Cancelled pairing attempts are reported as NONE.
        """
        tasks = list(self._pairing.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._pairing.clear()

        timer, self._discovery_timer = self._discovery_timer, None
        if timer is not None and not timer.done():
            timer.cancel()
            await asyncio.gather(timer, return_exceptions=True)
            try:
                await self.stop_discovery()
            except Exception:
                _LOGGER.debug(
                    "Failed to stop discovery on %s",
                    self._config.adapter,
                    exc_info=True,
                )
