"""
Tests for configuration dataclasses and profile management.
"""

import json

import pytest

from scs_emulator.config import (
    ConfigurationManager,
    EmulatorConfig,
    ServoConfig,
    build_registry,
    create_default_config,
)
from scs_emulator.exceptions import ConfigurationError
from scs_emulator.fault_injector import FaultConfig


class TestServoConfig:
    @pytest.mark.parametrize("kwargs", [
        {"device_id": 254},
        {"device_id": -1},
        {"device_id": 1, "velocity_limit": -5.0},
        {"device_id": 1, "initial_position": 70000},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            ServoConfig(**kwargs)


class TestEmulatorConfig:
    def test_duplicate_servo_ids(self):
        with pytest.raises(ConfigurationError):
            EmulatorConfig(servos=[ServoConfig(1), ServoConfig(1)])

    def test_serial_needs_port(self):
        with pytest.raises(ConfigurationError):
            EmulatorConfig(transport="serial")

    def test_unknown_transport(self):
        with pytest.raises(ConfigurationError):
            EmulatorConfig(transport="can")

    def test_non_positive_tick(self):
        with pytest.raises(ConfigurationError):
            EmulatorConfig(tick_interval_ms=0)

    def test_tick_interval_seconds(self):
        assert EmulatorConfig(tick_interval_ms=2.0).tick_interval == pytest.approx(0.002)

    def test_dict_roundtrip(self):
        config = EmulatorConfig(
            servos=[ServoConfig(1, initial_position=10), ServoConfig(5, velocity_limit=50.0)],
            faults=FaultConfig(packet_drop_rate=0.1, timeout_device_ids=frozenset({5}), random_seed=3),
        )
        data = json.loads(json.dumps(config.to_dict()))
        restored = EmulatorConfig.from_dict(data)
        assert restored == config

    def test_from_dict_rejects_unknown_fields(self):
        with pytest.raises(ConfigurationError):
            EmulatorConfig.from_dict({"latency_ms": 2})


def test_create_default_config():
    config = create_default_config(num_servos=3, start_id=4, velocity_limit=25.0)
    assert [servo.device_id for servo in config.servos] == [4, 5, 6]
    assert all(servo.velocity_limit == 25.0 for servo in config.servos)
    with pytest.raises(ConfigurationError):
        create_default_config(num_servos=0)


def test_build_registry():
    registry = build_registry([ServoConfig(2, initial_position=300), ServoConfig(7)])
    assert registry.device_ids == [2, 7]
    assert registry.servo(2).model.current_position == 300


class TestConfigurationManager:
    @pytest.fixture
    def manager(self, tmp_path):
        return ConfigurationManager(str(tmp_path))

    def test_creates_profiles_dir(self, manager, tmp_path):
        assert (tmp_path / "profiles").is_dir()

    def test_save_load_roundtrip(self, manager):
        config = create_default_config(2)
        config.faults = FaultConfig(checksum_corruption_rate=0.5, random_seed=8)
        assert manager.save_config(config, "noisy")
        loaded = manager.load_config("noisy")
        assert loaded.servos == config.servos
        assert loaded.faults == config.faults
        assert manager.list_profiles() == ["noisy"]

    def test_load_missing_returns_none(self, manager):
        assert manager.load_config("absent") is None

    def test_load_invalid_returns_none(self, manager):
        (manager.profiles_dir / "broken.json").write_text(json.dumps({"transport": "can"}))
        assert manager.load_config("broken") is None
        (manager.profiles_dir / "garbage.json").write_text("{not json")
        assert manager.load_config("garbage") is None

    def test_delete_profile(self, manager):
        manager.save_config(create_default_config(), "one")
        assert manager.delete_profile("one")
        assert not manager.delete_profile("one")
        assert manager.list_profiles() == []

    def test_rejects_path_like_names(self, manager):
        with pytest.raises(ConfigurationError):
            manager.load_config("../escape")
