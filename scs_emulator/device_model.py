# scs_emulator/device_model.py
"""
Kinematic model of one servo.

Position moves toward the goal at no more than `velocity_limit` units per
second and never overshoots it within a tick. Electrical, thermal and
torque behavior are not modeled.
"""
import logging
from typing import Optional

from . import constants as const

logger = logging.getLogger(__name__)


class DeviceModel:
    def __init__(
        self,
        device_id: int,
        initial_position: float = 0.0,
        velocity_limit: float = const.DEFAULT_VELOCITY_LIMIT,
        last_tick: Optional[float] = None,
    ):
        if velocity_limit < 0:
            raise ValueError(f"velocity_limit must be >= 0, got {velocity_limit}")
        self.device_id = device_id
        self.current_position: float = float(initial_position)
        self.goal_position: float = float(initial_position)
        self.velocity_limit = float(velocity_limit)
        self.current_speed: float = 0.0
        self.last_step: float = 0.0
        self.last_tick = last_tick

    @property
    def distance_to_goal(self) -> float:
        return abs(self.goal_position - self.current_position)

    @property
    def is_moving(self) -> bool:
        return self.current_position != self.goal_position

    def set_goal(self, goal: float) -> None:
        if goal != self.goal_position:
            logger.debug(
                f"Servo {self.device_id}: goal {self.goal_position:.2f} -> {goal:.2f} "
                f"(current {self.current_position:.2f})"
            )
        self.goal_position = float(goal)

    def tick(self, dt: float) -> float:
        """
        Advances the position toward the goal by at most velocity_limit * dt.

        Args:
            dt: Elapsed time in seconds. Non-positive values are ignored.

        Returns:
            The signed position change applied by this tick.
        """
        if dt <= 0:
            return 0.0
        remaining = self.goal_position - self.current_position
        if remaining == 0:
            self.last_step = 0.0
            self.current_speed = 0.0
            return 0.0

        max_step = self.velocity_limit * dt
        if abs(remaining) <= max_step:
            step = remaining
            self.current_position = self.goal_position  # Snap, no float drift past the goal
        else:
            step = max_step if remaining > 0 else -max_step
            self.current_position += step

        self.last_step = step
        self.current_speed = step / dt
        return step

    def advance_to(self, now: float) -> float:
        """Ticks by the wall-clock time elapsed since the previous call."""
        if self.last_tick is None:
            self.last_tick = now
            return 0.0
        dt = now - self.last_tick
        self.last_tick = now
        return self.tick(dt)

    def __repr__(self):
        return (
            f"DeviceModel(id={self.device_id}, current={self.current_position:.2f}, "
            f"goal={self.goal_position:.2f}, velocity_limit={self.velocity_limit})"
        )
