"""Unit tests for ble_indoor_locator.mqtt_processor (no broker needed)."""

import json
from types import SimpleNamespace

import pytest

from ble_indoor_locator.config_manager import ConfigManager
from ble_indoor_locator.mqtt_processor import MQTTDataProcessor

from conftest import UUID


class FakeClient:
    def __init__(self):
        self.published = []
        self.subscribed = []

    def publish(self, topic, payload):
        self.published.append((topic, payload))

    def subscribe(self, topic):
        self.subscribed.append(topic)


def message(text):
    return SimpleNamespace(payload=text.encode("utf-8"))


def payload(device="dev-1", count=3):
    items = [f"{UUID},1,{m},{-50 - 5 * m},{float(m)}" for m in range(1, count + 1)]
    return ";".join(items + [device])


@pytest.fixture
def processor(tmp_path, registry):
    return MQTTDataProcessor(ConfigManager(str(tmp_path / "config.yaml")), registry=registry)


class TestMQTTDataProcessor:
    def test_message_publishes_location(self, processor):
        client = FakeClient()
        processor.on_message(client, None, message(payload()))

        [(topic, body)] = client.published
        assert topic == "/device/location/dev-1"
        data = json.loads(body)
        assert data["status"] == "success"
        assert data["beacon_count"] == 3
        assert 22.3 <= data["latitude"] <= 22.301

    def test_insufficient_beacons_still_published(self, processor):
        client = FakeClient()
        processor.on_message(client, None, message(payload(count=2)))

        [(_, body)] = client.published
        data = json.loads(body)
        assert data["status"] == "no_fix"
        assert "latitude" not in data

    def test_malformed_payload_is_skipped(self, processor):
        client = FakeClient()
        processor.on_message(client, None, message("not a record"))
        processor.on_message(client, None, message(f"{UUID},1,1,x,1.0;dev-1"))
        assert client.published == []

    def test_one_session_per_device(self, processor):
        client = FakeClient()
        processor.on_message(client, None, message(payload("dev-1")))
        processor.on_message(client, None, message(payload("dev-2")))
        processor.on_message(client, None, message(payload("dev-1")))

        assert set(processor.sessions) == {"dev-1", "dev-2"}
        assert [t for t, _ in client.published] == [
            "/device/location/dev-1",
            "/device/location/dev-2",
            "/device/location/dev-1",
        ]

    def test_on_connect_subscribes(self, processor):
        client = FakeClient()
        processor.on_connect(client, None, {}, 0, None)
        assert client.subscribed == ["/device/blueTooth/station/+"]

    def test_on_connect_failure_does_not_subscribe(self, processor):
        client = FakeClient()
        processor.on_connect(client, None, {}, 5, None)
        assert client.subscribed == []

    def test_stop_stops_sessions(self, processor):
        processor.on_message(FakeClient(), None, message(payload()))
        processor.stop_mqtt_client()
        assert not processor.sessions["dev-1"].is_running
