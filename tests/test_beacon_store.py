"""Unit tests for ble_indoor_locator.beacon_store."""

import pytest

from ble_indoor_locator.beacon_store import BeaconRegistry
from ble_indoor_locator.config_manager import ConfigManager

from conftest import UUID, ident


def write_registry(path, body):
    path.write_text("uuid,major,minor,latitude,longitude,is_active\n" + body, encoding="utf-8")
    return str(path)


class TestBeaconRegistry:
    def test_load_csv(self, tmp_path):
        csv = write_registry(
            tmp_path / "registry.csv",
            f"{UUID.upper()},1,1,22.3,114.17,true\n"
            f"{UUID},1,2,22.4,114.18,false\n"
            f"{UUID},1,3,not-a-number,114.18,true\n"
            f"{UUID},1,4,22.5,114.19,\n",
        )
        registry = BeaconRegistry().load(csv)

        assert len(registry) == 2
        beacon = registry.lookup(ident("1"))
        assert beacon.latitude == pytest.approx(22.3)
        assert beacon.longitude == pytest.approx(114.17)
        assert registry.lookup(ident("2")) is None  # inactive
        assert registry.lookup(ident("3")) is None  # bad coordinates
        assert registry.lookup(ident("4")) is not None  # blank flag counts as active

    def test_duplicate_identity_keeps_last_row(self, tmp_path):
        csv = write_registry(
            tmp_path / "registry.csv",
            f"{UUID},1,1,22.3,114.17,true\n{UUID},1,1,22.6,114.20,true\n",
        )
        registry = BeaconRegistry().load(csv)
        assert len(registry) == 1
        assert registry.lookup(ident("1")).latitude == pytest.approx(22.6)

    def test_missing_columns(self, tmp_path):
        path = tmp_path / "registry.csv"
        path.write_text("uuid,major,minor\nx,1,1\n", encoding="utf-8")
        with pytest.raises(KeyError):
            BeaconRegistry().load(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            BeaconRegistry().load(str(tmp_path / "nope.csv"))

    def test_path_from_config(self, tmp_path):
        csv = write_registry(tmp_path / "registry.csv", f"{UUID},1,1,22.3,114.17,1\n")
        config = ConfigManager(str(tmp_path / "config.yaml"))
        config.config["paths"]["beacon_registry"] = csv

        registry = BeaconRegistry(config).load()
        assert registry.lookup(ident("1")) is not None

    def test_from_beacons_skips_inactive(self, registry):
        assert len(registry) == 4
        assert registry.lookup(ident("5")) is None
        assert all(registry.lookup(ident(m)) is not None for m in "1234")
