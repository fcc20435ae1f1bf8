"""
Configuration for the SCS servo emulator.

This module provides:
- Dataclasses describing the servos on the bus, the transport and the fault policy
- Configuration profiles (save/load named emulator setups as JSON)
- Construction of a BusRegistry from a configuration
"""

import json
import logging
import os
from dataclasses import dataclass, asdict, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import constants as const
from .bus_registry import BusRegistry
from .exceptions import ConfigurationError
from .fault_injector import FaultConfig
from .servo import EmulatedServo

logger = logging.getLogger(__name__)

TRANSPORTS = ("tcp", "serial")


@dataclass
class ServoConfig:
    """Configuration for a single servo."""
    device_id: int
    initial_position: int = 0
    velocity_limit: float = const.DEFAULT_VELOCITY_LIMIT
    model_number: int = const.DEFAULT_MODEL_NUMBER

    def __post_init__(self):
        if not (const.MIN_DEVICE_ID <= self.device_id <= const.MAX_DEVICE_ID):
            raise ConfigurationError(
                f"Servo id {self.device_id} is outside {const.MIN_DEVICE_ID}-{const.MAX_DEVICE_ID}.",
                device_id=self.device_id,
            )
        if self.velocity_limit < 0:
            raise ConfigurationError(
                f"velocity_limit must be >= 0, got {self.velocity_limit}.", device_id=self.device_id
            )
        if not (0 <= self.initial_position <= 0xFFFF):
            raise ConfigurationError(
                f"initial_position {self.initial_position} does not fit a position register.",
                device_id=self.device_id,
            )


@dataclass
class EmulatorConfig:
    """Main emulator configuration."""
    # Transport settings
    transport: str = "tcp"
    host: str = const.DEFAULT_HOST
    port: int = const.DEFAULT_PORT
    serial_port: Optional[str] = None
    baudrate: int = const.DEFAULT_BAUDRATE

    # Loop settings
    tick_interval_ms: float = const.DEFAULT_TICK_INTERVAL_S * 1000.0
    log_level: str = "INFO"

    # Interface settings
    debug_api: bool = False
    debug_api_port: int = const.DEFAULT_DEBUG_API_PORT
    no_color: bool = False

    servos: List[ServoConfig] = field(default_factory=list)
    faults: FaultConfig = field(default_factory=FaultConfig)

    # Metadata
    name: str = "default"
    description: str = "Default emulator configuration"
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    modified_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def __post_init__(self):
        if self.transport not in TRANSPORTS:
            raise ConfigurationError(f"Unknown transport {self.transport!r}, expected one of {TRANSPORTS}.")
        if self.transport == "serial" and not self.serial_port:
            raise ConfigurationError("The serial transport needs a serial_port.")
        if self.tick_interval_ms <= 0:
            raise ConfigurationError(f"tick_interval_ms must be positive, got {self.tick_interval_ms}.")
        seen = set()
        for servo in self.servos:
            if servo.device_id in seen:
                raise ConfigurationError(f"Duplicate servo id {servo.device_id}.", device_id=servo.device_id)
            seen.add(servo.device_id)

    @property
    def tick_interval(self) -> float:
        """Tick interval in seconds."""
        return self.tick_interval_ms / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["faults"] = self.faults.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmulatorConfig":
        data = dict(data)
        try:
            data["servos"] = [ServoConfig(**servo) for servo in data.get("servos", [])]
            data["faults"] = FaultConfig.from_dict(data.get("faults", {}))
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid emulator configuration: {e}") from e


def create_default_config(
    num_servos: int = 1,
    start_id: int = 1,
    velocity_limit: float = const.DEFAULT_VELOCITY_LIMIT,
) -> EmulatorConfig:
    """Create a default configuration with consecutive servo ids."""
    if num_servos < 1:
        raise ConfigurationError("Number of servos must be at least 1.")
    servos = [
        ServoConfig(device_id=start_id + i, velocity_limit=velocity_limit)
        for i in range(num_servos)
    ]
    return EmulatorConfig(servos=servos)


def build_registry(servos: List[ServoConfig]) -> BusRegistry:
    """Creates a BusRegistry with one EmulatedServo per ServoConfig."""
    registry = BusRegistry()
    for servo_config in servos:
        registry.add_servo(EmulatedServo(
            device_id=servo_config.device_id,
            initial_position=servo_config.initial_position,
            velocity_limit=servo_config.velocity_limit,
            model_number=servo_config.model_number,
        ))
    return registry


class ConfigurationManager:
    """Manages named emulator configuration profiles on disk."""

    def __init__(self, config_dir: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            config_dir: Directory to store configuration files. Defaults to ~/.scs_emulator_config
        """
        if config_dir is None:
            config_dir = os.path.expanduser("~/.scs_emulator_config")

        self.config_dir = Path(config_dir)
        self.profiles_dir = self.config_dir / "profiles"
        self.profiles_dir.mkdir(parents=True, exist_ok=True)
        self.current_config: Optional[EmulatorConfig] = None

        logger.info(f"Configuration manager initialized with config dir: {self.config_dir}")

    def _profile_path(self, name: str) -> Path:
        if not name or os.sep in name or name.startswith("."):
            raise ConfigurationError(f"Invalid profile name {name!r}.")
        return self.profiles_dir / f"{name}.json"

    def load_config(self, name: str) -> Optional[EmulatorConfig]:
        """Load a configuration profile.

        Returns:
            EmulatorConfig if found and valid, None otherwise
        """
        config_file = self._profile_path(name)
        if not config_file.exists():
            logger.warning(f"Configuration file not found: {config_file}")
            return None

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                config = EmulatorConfig.from_dict(json.load(f))
        except (OSError, ValueError, ConfigurationError) as e:
            logger.error(f"Error loading configuration {name}: {e}")
            return None

        logger.info(f"Loaded configuration: {name}")
        return config

    def save_config(self, config: EmulatorConfig, name: str) -> bool:
        """Save a configuration profile. Returns True if saved successfully."""
        config_file = self._profile_path(name)
        config.modified_at = datetime.now().isoformat()
        try:
            with open(config_file, "w", encoding="utf-8") as f:
                json.dump(config.to_dict(), f, indent=2)
        except OSError as e:
            logger.error(f"Error saving configuration {name}: {e}")
            return False

        logger.info(f"Saved configuration: {name}")
        return True

    def list_profiles(self) -> List[str]:
        """List all available configuration profiles."""
        return sorted(profile_file.stem for profile_file in self.profiles_dir.glob("*.json"))

    def delete_profile(self, name: str) -> bool:
        profile_file = self._profile_path(name)
        if not profile_file.exists():
            logger.warning(f"Profile not found: {name}")
            return False
        try:
            profile_file.unlink()
        except OSError as e:
            logger.error(f"Error deleting profile {name}: {e}")
            return False
        logger.info(f"Deleted profile: {name}")
        return True
