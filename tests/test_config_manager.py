"""Unit tests for ble_indoor_locator.config_manager."""

import pytest
import yaml

from ble_indoor_locator.config_manager import ConfigManager, EngineSettings
from ble_indoor_locator.models import EstimatorType


class TestConfigManager:
    def test_missing_file_writes_defaults(self, tmp_path):
        path = tmp_path / "config" / "config.yaml"
        config = ConfigManager(str(path))

        assert path.exists()
        with open(path, encoding="utf-8") as f:
            saved = yaml.safe_load(f)
        assert saved["positioning"]["top_k"] == 4
        assert config.get_engine_settings() == EngineSettings()

    def test_partial_file_is_merged_with_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "positioning:\n  estimator: fingerprint_refined\n  smoothing_alpha: 0.3\ncache:\n  ttl_ms: 5000\n",
            encoding="utf-8",
        )
        settings = ConfigManager(str(path)).get_engine_settings()

        assert settings.estimator is EstimatorType.FINGERPRINT_REFINED
        assert settings.smoothing_alpha == pytest.approx(0.3)
        assert settings.observation_ttl_ms == 5000
        assert settings.fingerprint_capacity == 1000
        assert settings.convergence_epsilon == pytest.approx(1e-6)

    def test_broken_yaml_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("positioning: [unclosed\n", encoding="utf-8")
        config = ConfigManager(str(path))
        assert config.get_engine_settings() == EngineSettings()

    def test_set_estimator_persists(self, tmp_path):
        path = tmp_path / "config.yaml"
        ConfigManager(str(path)).set_estimator(EstimatorType.FINGERPRINT_REFINED)
        assert ConfigManager(str(path)).get_engine_settings().estimator is EstimatorType.FINGERPRINT_REFINED


class TestEngineSettings:
    def test_defaults(self):
        s = EngineSettings()
        assert (s.smoothing_alpha, s.top_k, s.fingerprint_capacity) == (0.5, 4, 1000)
        assert (s.damping, s.max_iterations, s.convergence_epsilon) == (0.6, 100, 1e-6)
        assert (s.min_beacons, s.min_distance, s.max_distance, s.default_accuracy) == (3, 0.1, 1000.0, 10.0)
        assert s.observation_ttl_ms == 10_000

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"smoothing_alpha": 0.0},
            {"damping": 1.0},
            {"top_k": 0},
            {"fingerprint_capacity": -1},
            {"min_distance": 5.0, "max_distance": 1.0},
            {"convergence_epsilon": 0.0},
        ],
    )
    def test_invalid_values_raise(self, kwargs):
        with pytest.raises(ValueError):
            EngineSettings(**kwargs)
