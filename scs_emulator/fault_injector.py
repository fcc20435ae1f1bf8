# scs_emulator/fault_injector.py
"""
Fault injection stage for outbound responses.

For every response the injector decides, from its own seeded random
generator, whether to drop it, whether to corrupt its checksum byte, and
how long to hold it before transmission. With a fixed seed and the same
sequence of responses the decisions are identical from run to run.
"""
import heapq
import itertools
import logging
import random
from collections import deque
from dataclasses import dataclass, asdict, field
from typing import Any, Deque, Dict, FrozenSet, List, Optional, Tuple

from . import constants as const
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FaultConfig:
    """Immutable fault policy. Replace it wholesale, never field by field."""
    packet_drop_rate: float = 0.0
    checksum_corruption_rate: float = 0.0
    response_delay_range: Tuple[float, float] = (0.0, 0.0)  # milliseconds
    timeout_simulation: bool = False
    timeout_device_ids: Optional[FrozenSet[int]] = None  # None: every device
    random_seed: int = 0

    def __post_init__(self):
        for name in ("packet_drop_rate", "checksum_corruption_rate"):
            rate = getattr(self, name)
            if not (0.0 <= rate <= 1.0):
                raise ConfigurationError(f"{name} must be within [0, 1], got {rate}.")
        try:
            low, high = (float(v) for v in self.response_delay_range)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"response_delay_range must be a (min_ms, max_ms) pair, got {self.response_delay_range!r}."
            ) from None
        if low < 0 or high < low:
            raise ConfigurationError(f"Invalid response_delay_range ({low}, {high}).")
        object.__setattr__(self, "response_delay_range", (low, high))
        if self.timeout_device_ids is not None:
            object.__setattr__(self, "timeout_device_ids", frozenset(self.timeout_device_ids))
        if isinstance(self.random_seed, bool) or not isinstance(self.random_seed, int):
            raise ConfigurationError(f"random_seed must be an integer, got {self.random_seed!r}.")

    def times_out(self, device_id: int) -> bool:
        if not self.timeout_simulation:
            return False
        return self.timeout_device_ids is None or device_id in self.timeout_device_ids

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["response_delay_range"] = list(self.response_delay_range)
        if self.timeout_device_ids is not None:
            data["timeout_device_ids"] = sorted(self.timeout_device_ids)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FaultConfig":
        data = dict(data)
        if "response_delay_range" in data:
            data["response_delay_range"] = tuple(data["response_delay_range"])
        if data.get("timeout_device_ids") is not None:
            data["timeout_device_ids"] = frozenset(data["timeout_device_ids"])
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid fault configuration: {e}") from e


@dataclass(frozen=True)
class FaultDecision:
    device_id: int
    dropped: bool
    corrupted: bool = False
    delay_s: float = 0.0
    timed_out: bool = False


@dataclass
class FaultStats:
    submitted: int = 0
    dropped: int = 0
    timed_out: int = 0
    corrupted: int = 0
    delayed: int = 0
    released: int = 0
    discarded_on_shutdown: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(order=True)
class _Scheduled:
    due: float
    sequence: int
    data: bytes = field(compare=False)


class FaultInjector:
    def __init__(self, config: Optional[FaultConfig] = None, history_length: int = 1000):
        self._history_length = history_length
        self._sequence = itertools.count()
        self._queue: List[_Scheduled] = []
        self.reload(config or FaultConfig())

    def reload(self, config: FaultConfig) -> None:
        """Swaps the policy, reseeds the generator and forgets pending transmissions."""
        self.config = config
        self._random = random.Random(config.random_seed)
        self._queue = []
        self.decisions: Deque[FaultDecision] = deque(maxlen=self._history_length)
        self.stats = FaultStats()
        logger.info(f"Fault configuration loaded: {config.to_dict()}")

    def decide(self, device_id: int) -> FaultDecision:
        """Draws the fate of one response. Consumes random draws only for devices that answer."""
        config = self.config
        if config.times_out(device_id):
            decision = FaultDecision(device_id, dropped=True, timed_out=True)
        elif self._random.random() < config.packet_drop_rate:
            decision = FaultDecision(device_id, dropped=True)
        else:
            corrupted = self._random.random() < config.checksum_corruption_rate
            low, high = config.response_delay_range
            delay_ms = self._random.uniform(low, high)
            decision = FaultDecision(device_id, dropped=False, corrupted=corrupted, delay_s=delay_ms / 1000.0)
        self.decisions.append(decision)
        return decision

    def submit(self, frame: bytes, device_id: int, now: float) -> FaultDecision:
        """
        Passes one outbound frame through the fault policy.

        Args:
            frame: The serialized response.
            device_id: Id of the responding servo.
            now: Current time on the emulator clock, in seconds.

        Returns:
            The decision taken for this frame.
        """
        self.stats.submitted += 1
        decision = self.decide(device_id)
        if decision.dropped:
            if decision.timed_out:
                self.stats.timed_out += 1
            else:
                self.stats.dropped += 1
            logger.debug(f"Dropping response from ID {device_id} (timeout={decision.timed_out})")
            return decision

        if decision.corrupted:
            frame = corrupt_checksum(frame)
            self.stats.corrupted += 1
            logger.debug(f"Corrupting checksum of response from ID {device_id}")
        if decision.delay_s > 0:
            self.stats.delayed += 1
        heapq.heappush(self._queue, _Scheduled(now + decision.delay_s, next(self._sequence), frame))
        return decision

    def pop_due(self, now: float) -> List[bytes]:
        """Returns the frames whose delay has elapsed, in due order."""
        due = []
        while self._queue and self._queue[0].due <= now:
            due.append(heapq.heappop(self._queue).data)
        self.stats.released += len(due)
        return due

    @property
    def next_due(self) -> Optional[float]:
        return self._queue[0].due if self._queue else None

    @property
    def pending(self) -> int:
        return len(self._queue)

    def clear(self) -> int:
        """Drops every scheduled transmission. Returns how many were lost."""
        lost = len(self._queue)
        self._queue = []
        self.stats.discarded_on_shutdown += lost
        return lost


def corrupt_checksum(frame: bytes) -> bytes:
    """Flips a fixed bit pattern into the checksum byte, leaving the rest intact."""
    corrupted = bytearray(frame)
    corrupted[-1] ^= const.CHECKSUM_CORRUPTION_MASK
    return bytes(corrupted)
