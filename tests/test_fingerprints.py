"""Unit tests for ble_indoor_locator.fingerprints."""

import pytest

from ble_indoor_locator.fingerprints import (
    FingerprintDatabase,
    beacon_overlap,
    build_fingerprint,
    rank_beacons,
    rssi_similarity,
)
from ble_indoor_locator.models import Position

from conftest import ident


def position(lat=10.0, lon=10.0, accuracy=1.0):
    return Position(latitude=lat, longitude=lon, accuracy=accuracy, computed_at=0)


class TestFingerprintConstruction:
    def test_rank_keeps_strongest_k(self):
        smoothed = {ident(str(i)): -50.0 - i for i in range(1, 7)}
        assert rank_beacons(smoothed, 4) == tuple(ident(str(i)) for i in range(1, 5))

    def test_average_over_all_beacons(self):
        smoothed = {ident(str(i)): -50.0 - 10 * i for i in range(1, 6)}
        fp = build_fingerprint(position(), smoothed, top_k=4, captured_at=42)

        assert fp.average_rssi == pytest.approx(-80.0)
        assert len(fp.ranked_beacon_ids) == 4
        assert fp.captured_at == 42


class TestSimilarity:
    def test_rssi_similarity_identical(self):
        a = {ident("1"): -60.0, ident("2"): -70.0}
        assert rssi_similarity(a, dict(a)) == pytest.approx(1.0)

    def test_rssi_similarity_common_beacons_only(self):
        a = {ident("1"): -60.0, ident("2"): -70.0, ident("3"): -40.0}
        b = {ident("1"): -63.0, ident("2"): -74.0, ident("9"): -90.0}
        # RMS over common beacons: sqrt((9 + 16) / 2)
        expected = 1.0 / (1.0 + (12.5 ** 0.5))
        assert rssi_similarity(a, b) == pytest.approx(expected)

    def test_rssi_similarity_disjoint(self):
        assert rssi_similarity({ident("1"): -60.0}, {ident("2"): -60.0}) == 0.0

    def test_beacon_overlap(self):
        a = [ident("1"), ident("2"), ident("3"), ident("4")]
        b = [ident("3"), ident("4"), ident("5")]
        assert beacon_overlap(a, b, 4) == pytest.approx(0.5)


class TestFingerprintDatabase:
    def test_capacity_evicts_oldest_by_capture_time(self):
        db = FingerprintDatabase(capacity=3)
        for t in (5, 1, 3):
            assert db.add(build_fingerprint(position(), {ident("1"): -60.0}, 4, t)) == []

        evicted = db.add(build_fingerprint(position(), {ident("1"): -60.0}, 4, 4))

        assert [fp.captured_at for fp in evicted] == [1]
        assert len(db) == 3
        assert sorted(fp.captured_at for fp in db) == [3, 4, 5]

    def test_never_exceeds_capacity(self):
        db = FingerprintDatabase(capacity=10)
        for t in range(25):
            db.add(build_fingerprint(position(), {ident("1"): -60.0}, 4, t))
            assert len(db) <= 10
        assert [fp.captured_at for fp in db] == list(range(15, 25))

