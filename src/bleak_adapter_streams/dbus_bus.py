"""Shared D-Bus system bus for the BlueZ backend.

One long-lived ``MessageBus`` connection is reused for every BlueZ
method call and for the signal subscriptions of
:class:`~bleak_adapter_streams.bluez.BlueZEventSource`.  Signals only
arrive while the connection that registered the match rules stays
open, so a per-call bus would not work here.

All calls go through raw ``bus.call(Message(...))`` rather than proxy
objects, which skips the ``introspect()`` round-trip and the
fire-and-forget ``AddMatch`` that ``get_proxy_object()`` issues.

The bus is lazily created on first use and recreated if it drops or
if the running event loop changes.  There is no cross-thread sharing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .const import IS_LINUX

_LOGGER = logging.getLogger(__name__)

BLUEZ_SERVICE = "org.bluez"
DBUS_SERVICE = "org.freedesktop.DBus"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"

_bus: Any | None = None  # dbus_fast.aio.MessageBus, typed loosely to avoid import on non-Linux
_bus_loop: asyncio.AbstractEventLoop | None = None


async def get_bus():
    """Get the shared system D-Bus connection, creating or reconnecting as needed.

    Raises ``RuntimeError`` on non-Linux platforms.
    """
    global _bus, _bus_loop

    if not IS_LINUX:
        raise RuntimeError("Shared D-Bus bus is only available on Linux")

    from dbus_fast.aio import MessageBus
    from dbus_fast.constants import BusType

    current_loop = asyncio.get_running_loop()

    if _bus is not None:
        if _bus_loop is not current_loop:
            _LOGGER.debug(
                "Shared D-Bus bus was created on a different event loop, "
                "reconnecting on current loop"
            )
            _disconnect_quietly(_bus)
            _bus = None
        elif _bus.connected:
            return _bus
        else:
            _LOGGER.debug("Shared D-Bus bus disconnected, reconnecting")

    _bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
    _bus_loop = current_loop
    _LOGGER.debug("Shared D-Bus bus connected")
    return _bus


def _disconnect_quietly(bus: Any) -> None:
    try:
        bus.disconnect()
    except Exception:
        _LOGGER.debug("Ignoring error while disconnecting D-Bus bus", exc_info=True)


async def call_bluez(
    path: str,
    interface: str,
    member: str,
    signature: str = "",
    body: list[Any] | None = None,
):
    """Call a BlueZ method and return the reply ``Message``.

    Error replies are returned, not raised; check ``reply.message_type``.
    """
    from dbus_fast import Message

    bus = await get_bus()
    return await bus.call(
        Message(
            destination=BLUEZ_SERVICE,
            path=path,
            interface=interface,
            member=member,
            signature=signature,
            body=body or [],
        )
    )


def is_error(reply: Any) -> bool:
    """Return whether *reply* is a D-Bus error (or missing)."""
    from dbus_fast import MessageType

    return reply is None or reply.message_type == MessageType.ERROR


def error_text(reply: Any) -> str:
    """Return ``"<error name>: <message>"`` for an error reply."""
    if reply is None:
        return "no reply"
    detail = reply.body[0] if reply.body else ""
    return f"{reply.error_name}: {detail}" if detail else str(reply.error_name)


async def _bus_daemon_call(member: str, argument: str):
    from dbus_fast import Message

    bus = await get_bus()
    return await bus.call(
        Message(
            destination=DBUS_SERVICE,
            path="/org/freedesktop/DBus",
            interface=DBUS_SERVICE,
            member=member,
            signature="s",
            body=[argument],
        )
    )


async def add_match(rule: str) -> None:
    """Register a signal match rule on the shared bus."""
    reply = await _bus_daemon_call("AddMatch", rule)
    if is_error(reply):
        raise RuntimeError(f"AddMatch {rule!r} failed: {error_text(reply)}")


async def remove_match(rule: str) -> None:
    """Remove a previously added match rule."""
    reply = await _bus_daemon_call("RemoveMatch", rule)
    if is_error(reply):
        raise RuntimeError(f"RemoveMatch {rule!r} failed: {error_text(reply)}")


async def get_name_owner(name: str) -> str | None:
    """Return the unique connection name owning *name*, or ``None``.

    Signals carry the sender's unique name (``":1.42"``), never the
    well-known one, so this is what incoming signals are checked against.
    """
    reply = await _bus_daemon_call("GetNameOwner", name)
    if is_error(reply):
        _LOGGER.debug("GetNameOwner %s failed: %s", name, error_text(reply))
        return None
    return reply.body[0]


async def _ping_bluez() -> bool:
    """Single fast D-Bus check for ``org.bluez`` availability.

    Returns ``True`` if BlueZ responded (any non-ServiceUnknown reply).
    """
    try:
        reply = await call_bluez(
            "/org/bluez",
            PROPERTIES_INTERFACE,
            "GetAll",
            "s",
            ["org.bluez.AgentManager1"],
        )
    except Exception:
        return False
    if not is_error(reply):
        return True
    error_name = reply.error_name or ""
    return "ServiceUnknown" not in error_name and "UnknownObject" not in error_name


async def wait_for_bluez(
    timeout: float = 30.0,
    poll_interval: float = 1.0,
) -> bool:
    """Wait until ``org.bluez`` is available on the system D-Bus.

    BLE services often start before ``bluetoothd`` has registered on
    D-Bus; any BlueZ call made before that fails with
    ``org.freedesktop.DBus.Error.ServiceUnknown``.

    Returns ``True`` if BlueZ became available, ``False`` on timeout.
    Always ``True`` on non-Linux platforms.
    """
    if not IS_LINUX:
        return True

    elapsed = 0.0
    while elapsed < timeout:
        if await _ping_bluez():
            if elapsed > 0:
                _LOGGER.info("BlueZ ready on D-Bus after %.1fs", elapsed)
            else:
                _LOGGER.debug("BlueZ ready on D-Bus")
            return True

        _LOGGER.debug(
            "Waiting for BlueZ on D-Bus (%.1fs / %.0fs)...",
            elapsed, timeout,
        )
        await asyncio.sleep(poll_interval)
        elapsed += poll_interval

    _LOGGER.error("BlueZ did not appear on D-Bus after %.0fs", timeout)
    return False


async def close_bus() -> None:
    """Disconnect the shared bus if it's open.

    Safe to call even if no bus was ever created.
    """
    global _bus, _bus_loop
    if _bus is not None:
        _disconnect_quietly(_bus)
        _bus = None
        _bus_loop = None
