"""Shared fixtures for the positioning engine tests."""

import pytest

from ble_indoor_locator.beacon_store import BeaconRegistry
from ble_indoor_locator.config_manager import EngineSettings
from ble_indoor_locator.models import (
    BeaconIdentity,
    BeaconObservation,
    BeaconSighting,
    RegisteredBeacon,
)

UUID = "f7826da6-4fa2-4e98-8024-bc5b71e0893e"


def ident(minor, major="1"):
    return BeaconIdentity.of(UUID, major, minor)


def observation(minor, lat, lon, distance, rssi=-60, observed_at=0):
    return BeaconObservation(
        identity=ident(minor),
        rssi=rssi,
        reported_distance=distance,
        latitude=lat,
        longitude=lon,
        observed_at=observed_at,
    )


def sighting(minor, rssi=-60, distance=2.0, major="1"):
    return BeaconSighting(identity=ident(minor, major), rssi=rssi, reported_distance=distance)


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, now=0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock(1_000)


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def registry():
    return BeaconRegistry.from_beacons(
        [
            RegisteredBeacon(ident("1"), 22.3000, 114.1700),
            RegisteredBeacon(ident("2"), 22.3000, 114.1710),
            RegisteredBeacon(ident("3"), 22.3010, 114.1700),
            RegisteredBeacon(ident("4"), 22.3010, 114.1710),
            RegisteredBeacon(ident("5"), 22.3005, 114.1705, is_active=False),
        ]
    )
