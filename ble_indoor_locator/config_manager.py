from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable

import yaml

from .models import EstimatorType


logger = logging.getLogger(__name__)


def _env_or_default(env_key: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    v = os.environ.get(env_key)
    if v is not None:
        try:
            return cast(v)
        except Exception:
            return v
    return default


DEFAULT_CONFIG_PATH = _env_or_default(
    "BLE_LOCATOR_CONFIG",
    os.path.join(".", "config", "config.yaml"),
)


@dataclass(frozen=True)
class EngineSettings:
    """定位引擎的可调常量"""

    estimator: EstimatorType = EstimatorType.WEIGHTED_CENTROID
    smoothing_alpha: float = 0.5
    top_k: int = 4
    fingerprint_capacity: int = 1000
    damping: float = 0.6
    max_iterations: int = 100
    convergence_epsilon: float = 1e-6
    min_beacons: int = 3
    min_distance: float = 0.1
    max_distance: float = 1000.0
    default_accuracy: float = 10.0
    observation_ttl_ms: int = 10_000
    cycle_period: float = 1.1

    def __post_init__(self):
        if not 0.0 < self.smoothing_alpha <= 1.0:
            raise ValueError(f"smoothing_alpha 必须在 (0, 1] 内: {self.smoothing_alpha}")
        if not 0.0 <= self.damping < 1.0:
            raise ValueError(f"damping 必须在 [0, 1) 内: {self.damping}")
        for name in ("top_k", "fingerprint_capacity", "max_iterations", "min_beacons", "observation_ttl_ms"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} 必须为正数: {getattr(self, name)}")
        if self.convergence_epsilon <= 0:
            raise ValueError(f"convergence_epsilon 必须为正数: {self.convergence_epsilon}")
        if not 0.0 <= self.min_distance < self.max_distance:
            raise ValueError(f"距离区间无效: [{self.min_distance}, {self.max_distance}]")
        if self.default_accuracy < 0:
            raise ValueError(f"default_accuracy 不能为负: {self.default_accuracy}")
        if self.cycle_period <= 0:
            raise ValueError(f"cycle_period 必须为正数: {self.cycle_period}")


class ConfigManager:
    """配置管理类，负责读写YAML配置文件"""

    def __init__(self, config_file: str | None = None):
        self.config_file = config_file or DEFAULT_CONFIG_PATH
        self.default_config = {
            "mqtt": {
                "ip": _env_or_default("BLE_MQTT_IP", "localhost"),
                "port": _env_or_default("BLE_MQTT_PORT", 1883, int),
                "uplink_topic": _env_or_default("BLE_MQTT_UPLINK_TOPIC", "/device/location/{deviceId}"),
                "downlink_topic": _env_or_default("BLE_MQTT_DOWNLINK_TOPIC", "/device/blueTooth/station/+"),
            },
            "positioning": {
                "estimator": _env_or_default("BLE_POS_ESTIMATOR", EstimatorType.WEIGHTED_CENTROID.value),
                "smoothing_alpha": _env_or_default("BLE_POS_SMOOTHING_ALPHA", 0.5, float),
                "top_k": _env_or_default("BLE_POS_TOP_K", 4, int),
                "fingerprint_capacity": _env_or_default("BLE_POS_FINGERPRINT_CAPACITY", 1000, int),
                "damping": _env_or_default("BLE_POS_DAMPING", 0.6, float),
                "max_iterations": _env_or_default("BLE_POS_MAX_ITERATIONS", 100, int),
                "convergence_epsilon": _env_or_default("BLE_POS_EPSILON", 1e-6, float),
                "min_beacons": _env_or_default("BLE_POS_MIN_BEACONS", 3, int),
                "min_distance": _env_or_default("BLE_POS_MIN_DISTANCE", 0.1, float),
                "max_distance": _env_or_default("BLE_POS_MAX_DISTANCE", 1000.0, float),
                "default_accuracy": _env_or_default("BLE_POS_DEFAULT_ACCURACY", 10.0, float),
            },
            "cache": {
                "ttl_ms": _env_or_default("BLE_CACHE_TTL_MS", 10_000, int),
            },
            "session": {
                "cycle_period": _env_or_default("BLE_SESSION_CYCLE_PERIOD", 1.1, float),
            },
            "paths": {
                "beacon_registry": _env_or_default(
                    "BLE_PATH_BEACON_REGISTRY", os.path.join(".", "beacon", "registry.csv")
                ),
            },
            "logging": {
                "level": _env_or_default("BLE_LOG_LEVEL", "INFO"),
            },
        }
        self.load_config()

    def load_config(self) -> None:
        """加载配置文件，如果不存在则创建默认配置"""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r", encoding="utf-8") as f:
                    self.config = yaml.safe_load(f) or {}
                self._merge_default_config()
            else:
                self.config = self._default_copy()
                self.save_config()
        except (OSError, yaml.YAMLError) as e:
            logger.warning("读取配置文件 %s 失败，使用默认配置: %s", self.config_file, e)
            self.config = self._default_copy()

    def _default_copy(self) -> dict:
        return {section: dict(values) for section, values in self.default_config.items()}

    def _merge_default_config(self) -> None:
        def merge_dict(default, current):
            for key, value in default.items():
                if key not in current:
                    current[key] = dict(value) if isinstance(value, dict) else value
                elif isinstance(value, dict) and isinstance(current[key], dict):
                    merge_dict(value, current[key])

        merge_dict(self.default_config, self.config)

    def save_config(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.config_file) or ".", exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.dump(
                    self.config,
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    indent=2,
                )
        except OSError as e:
            logger.warning("保存配置文件 %s 失败: %s", self.config_file, e)

    # ---------- Accessors ----------
    def get_mqtt_config(self):
        return self.config["mqtt"]

    def get_positioning_config(self):
        return self.config["positioning"]

    def get_paths(self):
        return self.config.get("paths", {})

    def get_beacon_registry_path(self):
        return self.get_paths()["beacon_registry"]

    def get_log_level(self) -> str:
        return str(self.config.get("logging", {}).get("level", "INFO")).upper()

    def get_engine_settings(self) -> EngineSettings:
        p = self.get_positioning_config()
        return EngineSettings(
            estimator=EstimatorType(p["estimator"]),
            smoothing_alpha=float(p["smoothing_alpha"]),
            top_k=int(p["top_k"]),
            fingerprint_capacity=int(p["fingerprint_capacity"]),
            damping=float(p["damping"]),
            max_iterations=int(p["max_iterations"]),
            convergence_epsilon=float(p["convergence_epsilon"]),
            min_beacons=int(p["min_beacons"]),
            min_distance=float(p["min_distance"]),
            max_distance=float(p["max_distance"]),
            default_accuracy=float(p["default_accuracy"]),
            observation_ttl_ms=int(self.config["cache"]["ttl_ms"]),
            cycle_period=float(self.config["session"]["cycle_period"]),
        )

    def set_estimator(self, estimator: EstimatorType):
        self.config["positioning"]["estimator"] = estimator.value
        self.save_config()
