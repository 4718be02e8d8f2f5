"""Tests for models module — value types and payload decoders."""

import pytest
from bleak.backends.device import BLEDevice

from bleak_adapter_streams.const import (
    BOND_STATE_CHANGED,
    DEVICE_FOUND,
    DISCOVERY_FINISHED,
    DISCOVERY_STARTED,
    POWER_STATE_CHANGED,
)
from bleak_adapter_streams.events import Event
from bleak_adapter_streams.exc import DecodeError
from bleak_adapter_streams.models import (
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


def test_power_state_settled():
    assert PowerState.ON.is_settled
    assert PowerState.OFF.is_settled
    assert not PowerState.TURNING_ON.is_settled
    assert not PowerState.TURNING_OFF.is_settled


def test_discovered_device_normalizes_address():
    device = DiscoveredDevice("aa:bb:cc:dd:ee:ff", "Sensor")
    assert device.address == "AA:BB:CC:DD:EE:FF"


def test_discovered_device_identity_ignores_details():
    first = DiscoveredDevice("AA:BB:CC:DD:EE:FF", details={"path": "/a"})
    second = DiscoveredDevice("AA:BB:CC:DD:EE:FF", details={"path": "/b"})
    assert first == second
    assert len({first, second}) == 1


def test_discovered_device_ble_device_conversion():
    ble_device = BLEDevice(
        "AA:BB:CC:DD:EE:FF", "Sensor", {"path": "/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF"}
    )
    device = DiscoveredDevice.from_ble_device(ble_device, BondState.BONDED)
    assert device.bond_state is BondState.BONDED
    assert device.details["path"].endswith("dev_AA_BB_CC_DD_EE_FF")

    back = device.to_ble_device()
    assert back.address == "AA:BB:CC:DD:EE:FF"
    assert back.name == "Sensor"
    assert back.details == {"path": "/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF"}


def test_bond_change_normalizes_address():
    assert BondChange("aa:bb:cc:dd:ee:ff", BondState.NONE).address == "AA:BB:CC:DD:EE:FF"


# ── decode_power_state ────────────────────────────────────────────


def test_decode_power_state():
    event = Event(POWER_STATE_CHANGED, {"state": 12})
    assert decode_power_state(event) is PowerState.ON


def test_decode_power_state_missing_field():
    with pytest.raises(DecodeError, match="missing 'state'"):
        decode_power_state(Event(POWER_STATE_CHANGED))


def test_decode_power_state_unknown_value():
    with pytest.raises(DecodeError, match="unknown power state"):
        decode_power_state(Event(POWER_STATE_CHANGED, {"state": 3}))


# ── decode_bond_change ────────────────────────────────────────────


def test_decode_bond_change():
    event = Event(BOND_STATE_CHANGED, {"address": "aa:bb:cc:dd:ee:ff", "state": 11})
    assert decode_bond_change(event) == BondChange("AA:BB:CC:DD:EE:FF", BondState.BONDING)


def test_decode_bond_change_bad_address():
    with pytest.raises(DecodeError, match="address is not a string"):
        decode_bond_change(Event(BOND_STATE_CHANGED, {"address": 1, "state": 11}))


def test_decode_bond_change_unknown_state():
    with pytest.raises(DecodeError, match="unknown bond state"):
        decode_bond_change(
            Event(BOND_STATE_CHANGED, {"address": "AA:BB:CC:DD:EE:FF", "state": -1})
        )


# ── decode_device ─────────────────────────────────────────────────


def test_decode_device_passthrough():
    device = DiscoveredDevice("AA:BB:CC:DD:EE:FF")
    assert decode_device(Event(DEVICE_FOUND, {"device": device})) is device


def test_decode_device_from_mapping():
    device = decode_device(
        Event(
            DEVICE_FOUND,
            {"device": {"address": "aa:bb:cc:dd:ee:ff", "name": "Sensor", "bond_state": 12}},
        )
    )
    assert device == DiscoveredDevice("AA:BB:CC:DD:EE:FF", "Sensor", BondState.BONDED)


def test_decode_device_from_ble_device():
    ble_device = BLEDevice("AA:BB:CC:DD:EE:FF", None, {})
    device = decode_device(Event(DEVICE_FOUND, {"device": ble_device}))
    assert device.address == "AA:BB:CC:DD:EE:FF"
    assert device.name is None


def test_decode_device_mapping_without_address():
    with pytest.raises(DecodeError, match="no address"):
        decode_device(Event(DEVICE_FOUND, {"device": {"name": "x"}}))


def test_decode_device_mapping_bad_bond_state():
    with pytest.raises(DecodeError, match="unknown bond state"):
        decode_device(
            Event(DEVICE_FOUND, {"device": {"address": "AA:BB:CC:DD:EE:FF", "bond_state": 0}})
        )


def test_decode_device_unsupported_record():
    with pytest.raises(DecodeError, match="unsupported device record"):
        decode_device(Event(DEVICE_FOUND, {"device": 42}))


# ── decode_discovery_phase ────────────────────────────────────────


def test_decode_discovery_phase():
    assert decode_discovery_phase(Event(DISCOVERY_STARTED)) is DiscoveryPhase.STARTED
    assert decode_discovery_phase(Event(DISCOVERY_FINISHED)) is DiscoveryPhase.FINISHED


def test_decode_discovery_phase_other_event():
    with pytest.raises(DecodeError):
        decode_discovery_phase(Event(DEVICE_FOUND))
