# scs_emulator/servo.py
"""
One emulated servo: its control table and kinematic model, kept consistent.

Writing GOAL_POSITION updates the model goal synchronously, inside the same
instruction step. After every tick the read-only status registers are
republished from the model.
"""
import logging
from typing import Any, Dict, Optional

from . import constants as const
from .device_model import DeviceModel
from .register_table import RegisterTable, build_control_table

logger = logging.getLogger(__name__)

SPEED_SIGN_BIT = 0x8000


def encode_signed_magnitude(value: float) -> int:
    """Feetech status words carry the direction in bit 15."""
    magnitude = min(int(round(abs(value))), SPEED_SIGN_BIT - 1)
    return magnitude | SPEED_SIGN_BIT if value < 0 else magnitude


class EmulatedServo:
    def __init__(
        self,
        device_id: int,
        initial_position: int = 0,
        velocity_limit: float = const.DEFAULT_VELOCITY_LIMIT,
        model_number: int = const.DEFAULT_MODEL_NUMBER,
        registers: Optional[RegisterTable] = None,
    ):
        self.device_id = device_id
        self.registers = registers or build_control_table(device_id, initial_position, model_number)
        self.model = DeviceModel(device_id, initial_position, velocity_limit)
        self.registers.add_write_listener(self._on_register_write)
        self.publish_status()
        logger.info(
            f"EmulatedServo ID {device_id} initialized. Pos: {initial_position}, "
            f"velocity limit: {velocity_limit} units/s."
        )

    def _on_register_write(self, address: int, value: int) -> None:
        if address != const.ADDR_GOAL_POSITION:
            return
        low = self.registers.read(const.ADDR_MIN_ANGLE_LIMIT)
        high = self.registers.read(const.ADDR_MAX_ANGLE_LIMIT)
        goal = value
        if low <= high:
            goal = max(low, min(value, high))
            if goal != value:
                logger.warning(
                    f"Servo {self.device_id}: goal {value} clamped to angle limits [{low}, {high}]."
                )
        self.model.set_goal(goal)
        self.publish_status()

    def tick(self, dt: float) -> float:
        step = self.model.tick(dt)
        self.publish_status()
        return step

    def advance_to(self, now: float) -> float:
        step = self.model.advance_to(now)
        self.publish_status()
        return step

    def publish_status(self) -> None:
        table = self.registers
        table.publish(const.ADDR_PRESENT_POSITION, int(round(self.model.current_position)))
        table.publish(const.ADDR_PRESENT_SPEED, encode_signed_magnitude(self.model.current_speed))
        table.publish(const.ADDR_MOVING, 1 if self.model.is_moving else 0)

    def status(self) -> Dict[str, Any]:
        """JSON-friendly snapshot of the servo."""
        return {
            "id": self.device_id,
            "current_position": self.model.current_position,
            "goal_position": self.model.goal_position,
            "current_speed": self.model.current_speed,
            "velocity_limit": self.model.velocity_limit,
            "moving": self.model.is_moving,
            "pending_writes": [
                {"address": p.address, "value": p.value} for p in self.registers.pending
            ],
            "registers": self.registers.snapshot(),
        }
