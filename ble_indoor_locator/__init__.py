"""BLE Indoor Locator package.

This package provides:
- ConfigManager / EngineSettings: YAML-based configuration management
- BeaconRegistry: registered beacon coordinates (pandas + CSV)
- ObservationCache: registry join and expiry of beacon sightings
- WeightedCentroidEstimator / FingerprintRefinedEstimator: position estimation
- LocationSession: continuous stream of location updates
- MQTTDataProcessor: MQTT ingestion and publication
"""

from .config_manager import ConfigManager, EngineSettings
from .beacon_store import BeaconRegistry
from .observation_cache import ObservationCache
from .calculator import (
    FingerprintRefinedEstimator,
    PositionEstimator,
    WeightedCentroidEstimator,
    create_estimator,
)
from .session import LocationSession
from .mqtt_processor import MQTTDataProcessor

__all__ = [
    "ConfigManager",
    "EngineSettings",
    "BeaconRegistry",
    "ObservationCache",
    "PositionEstimator",
    "WeightedCentroidEstimator",
    "FingerprintRefinedEstimator",
    "create_estimator",
    "LocationSession",
    "MQTTDataProcessor",
]
