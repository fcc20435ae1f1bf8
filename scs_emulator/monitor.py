"""
Traffic history and status snapshots for the SCS servo emulator.

Everything returned here is JSON-serializable so it can be served by the
debug API or dumped by a test harness after a failing run.
"""
import time
from collections import deque
from dataclasses import dataclass, asdict
from typing import Any, Deque, Dict, List, Optional

from . import constants as const
from .bus_registry import BusRegistry, DispatchStats
from .fault_injector import FaultInjector, FaultStats
from .packet_codec import DiscardedFrame, Packet


@dataclass
class CommandRecord:
    """Record of one dispatched request"""
    timestamp: float
    device_id: int
    instruction: int
    instruction_name: str
    params_hex: str
    responded: bool
    response_hex: Optional[str] = None


@dataclass
class LinkCounters:
    bytes_received: int = 0
    frames_discarded: int = 0
    responses_sent: int = 0
    bytes_sent: int = 0


class EmulatorMonitor:
    """
    Observes one bus: every dispatched request, discarded frame and
    transmitted response.
    """

    def __init__(
        self,
        registry: BusRegistry,
        injector: FaultInjector,
        history_length: int = const.HISTORY_LENGTH,
    ):
        self.registry = registry
        self.injector = injector
        self.command_history: Deque[CommandRecord] = deque(maxlen=history_length)
        self.discarded_frames: Deque[Dict[str, Any]] = deque(maxlen=history_length)
        self.counters = LinkCounters()
        self.start_time = time.time()
        registry.add_command_listener(self.record_command)

    def record_command(self, request: Packet, response: Optional[Packet]) -> None:
        self.command_history.append(CommandRecord(
            timestamp=time.time(),
            device_id=request.device_id,
            instruction=request.instruction,
            instruction_name=const.INSTRUCTION_NAMES.get(request.instruction, "UNKNOWN"),
            params_hex=request.params.hex(),
            responded=response is not None,
            response_hex=response.to_bytes().hex() if response is not None else None,
        ))

    def record_received(self, size: int) -> None:
        self.counters.bytes_received += size

    def record_discarded(self, frame: DiscardedFrame) -> None:
        self.counters.frames_discarded += 1
        self.discarded_frames.append({
            "timestamp": time.time(),
            "reason": frame.reason,
            "raw_hex": frame.raw.hex(),
        })

    def record_sent(self, frame: bytes) -> None:
        self.counters.responses_sent += 1
        self.counters.bytes_sent += len(frame)

    def reset_stats(self) -> None:
        self.counters = LinkCounters()
        self.command_history.clear()
        self.discarded_frames.clear()
        self.registry.stats = DispatchStats()
        self.injector.stats = FaultStats()

    def get_device_status(self, device_id: int) -> Optional[Dict[str, Any]]:
        if device_id not in self.registry:
            return None
        return self.registry.servo(device_id).status()

    def get_command_history(self, device_id: Optional[int] = None, limit: int = 50) -> List[Dict[str, Any]]:
        records = [
            r for r in self.command_history
            if device_id is None or r.device_id == device_id
        ]
        return [asdict(r) for r in records[-limit:]] if limit > 0 else []

    def get_system_status(self) -> Dict[str, Any]:
        return {
            "timestamp": time.time(),
            "uptime_seconds": time.time() - self.start_time,
            "devices": {str(servo.device_id): servo.status() for servo in self.registry},
            "dispatch": self.registry.stats.to_dict(),
            "link": asdict(self.counters),
            "faults": {
                "config": self.injector.config.to_dict(),
                "stats": self.injector.stats.to_dict(),
                "pending_transmissions": self.injector.pending,
            },
        }
