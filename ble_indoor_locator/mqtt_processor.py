from __future__ import annotations

import json
import logging
import threading
from typing import Dict, Optional

import paho.mqtt.client as mqtt
from paho.mqtt.client import MQTTMessage

from .beacon_store import BeaconRegistry
from .calculator import create_estimator
from .config_manager import ConfigManager
from .models import LocationUpdate, SightingRecord
from .observation_cache import ObservationCache
from .session import LocationSession


logger = logging.getLogger(__name__)


class MQTTDataProcessor:
    def __init__(self, config_manager: ConfigManager, registry: Optional[BeaconRegistry] = None):
        self.lock = threading.Lock()
        self.config_manager = config_manager
        self.settings = config_manager.get_engine_settings()

        # 信标表
        if registry is None:
            registry = BeaconRegistry(self.config_manager).load()
        self.registry = registry

        # 每个设备独立的定位会话（缓存、平滑状态、指纹库互不共享）
        self.sessions: Dict[str, LocationSession] = {}
        self.client: Optional[mqtt.Client] = None

    def session_for(self, device_id: str) -> LocationSession:
        session = self.sessions.get(device_id)
        if session is None:
            session = LocationSession(
                cache=ObservationCache(self.registry, ttl_ms=self.settings.observation_ttl_ms),
                estimator=create_estimator(self.settings.estimator, self.settings),
                cycle_period=self.settings.cycle_period,
            )
            session.start()
            self.sessions[device_id] = session
            logger.info("为设备 %s 创建定位会话", device_id)
        return session

    # ---------- Core processing ----------
    def handle_record(self, record: SightingRecord) -> Optional[LocationUpdate]:
        update = self.session_for(record.device_id).process_cycle(record.sightings)
        if update is None:
            return None
        if update.error:
            logger.warning("设备 %s 位置计算失败: %s", record.device_id, update.error)
        elif update.position is not None:
            logger.info(
                "设备 %s 位置计算成功: (%.6f, %.6f), 精度: %.2f, 信标数: %s",
                record.device_id,
                update.position.latitude,
                update.position.longitude,
                update.position.accuracy,
                len(update.nearby_beacons),
            )
        else:
            logger.debug("设备 %s 有效信标不足，信标数: %s", record.device_id, len(update.nearby_beacons))
        return update

    # ---------- MQTT ----------
    def start_mqtt_client(self):
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message
        try:
            mqtt_config = self.config_manager.get_mqtt_config()
            self.client.connect(mqtt_config["ip"], mqtt_config["port"], 60)
            logger.info("连接到MQTT服务器 %s:%s", mqtt_config["ip"], mqtt_config["port"])
            self.client.loop_forever()
        except Exception as e:
            logger.error("MQTT连接错误: %s", e)

    def stop_mqtt_client(self):
        for session in self.sessions.values():
            session.stop()
        if self.client is not None:
            try:
                self.client.disconnect()
                self.client.loop_stop()
                logger.info("MQTT连接已断开")
            except Exception as e:
                logger.error("断开MQTT连接时出错: %s", e)

    # ---------- MQTT handlers ----------
    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            logger.info("成功连接到MQTT服务器")
            mqtt_config = self.config_manager.get_mqtt_config()
            topic = mqtt_config.get("downlink_topic", "/device/blueTooth/station/+")
            client.subscribe(topic)
            self.current_topic = topic
            logger.info("已订阅主题: %s", topic)
        else:
            logger.error("连接失败，返回码: %s", reason_code)

    def on_message(self, client, userdata, msg: MQTTMessage):
        try:
            payload = msg.payload.decode("utf-8")
            with self.lock:
                record = SightingRecord.parse(payload)
                if record is None or record.is_empty:
                    logger.warning("消息解析无有效信标数据: %s", payload)
                    return
                update = self.handle_record(record)
                if update is not None:
                    mqtt_config = self.config_manager.get_mqtt_config()
                    topic = mqtt_config.get("uplink_topic", "/device/location/{deviceId}")
                    message = json.dumps(update.to_dict(), ensure_ascii=False)
                    client.publish(topic.format(deviceId=record.device_id), message)
        except Exception as e:
            logger.exception("处理消息时出错: %s", e)
