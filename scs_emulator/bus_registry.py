# scs_emulator/bus_registry.py
"""
Bus Registry for the SCS servo emulator.
Owns every servo sharing one logical bus and executes decoded requests
against them. Errors never leave this layer: a request that cannot be
served is answered with silence, as a real bus would.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Callable, Dict, Iterator, List, Optional

from . import constants as const
from .constants import Instruction
from .exceptions import ConfigurationError, DeviceNotFound, EmulatorError, ProtocolViolation
from .packet_codec import Packet
from .servo import EmulatedServo

logger = logging.getLogger(__name__)

CommandListener = Callable[[Packet, Optional[Packet]], None]


@dataclass
class DispatchStats:
    requests: int = 0
    responses: int = 0
    unknown_instructions: int = 0
    unknown_devices: int = 0
    protocol_violations: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class BusRegistry:
    def __init__(self):
        self._servos: Dict[int, EmulatedServo] = {}
        self.stats = DispatchStats()
        self._listeners: List[CommandListener] = []

    # --- Registration ------------------------------------------------------

    def add_servo(self, servo: EmulatedServo) -> EmulatedServo:
        if not (const.MIN_DEVICE_ID <= servo.device_id <= const.MAX_DEVICE_ID):
            raise ConfigurationError(
                f"Servo id {servo.device_id} is outside {const.MIN_DEVICE_ID}-{const.MAX_DEVICE_ID}.",
                device_id=servo.device_id,
            )
        if servo.device_id in self._servos:
            raise ConfigurationError(
                f"Servo id {servo.device_id} is already registered on this bus.",
                device_id=servo.device_id,
            )
        self._servos[servo.device_id] = servo
        logger.info(f"Added emulated servo with ID {servo.device_id} to the bus.")
        return servo

    def remove_servo(self, device_id: int) -> EmulatedServo:
        servo = self.servo(device_id)
        del self._servos[device_id]
        logger.info(f"Removed emulated servo with ID {device_id}.")
        return servo

    def servo(self, device_id: int) -> EmulatedServo:
        try:
            return self._servos[device_id]
        except KeyError:
            raise DeviceNotFound(f"No servo registered with ID {device_id}.", device_id=device_id) from None

    def __contains__(self, device_id: int) -> bool:
        return device_id in self._servos

    def __len__(self) -> int:
        return len(self._servos)

    def __iter__(self) -> Iterator[EmulatedServo]:
        return iter(self._servos[device_id] for device_id in sorted(self._servos))

    @property
    def device_ids(self) -> List[int]:
        return sorted(self._servos)

    def add_command_listener(self, listener: CommandListener) -> None:
        """Registers a callback invoked with (request, response-or-None) after each dispatch."""
        self._listeners.append(listener)

    # --- Physics -----------------------------------------------------------

    def tick(self, dt: float) -> None:
        for servo in self._servos.values():
            servo.tick(dt)

    def advance_to(self, now: float) -> None:
        for servo in self._servos.values():
            servo.advance_to(now)

    # --- Dispatch ----------------------------------------------------------

    def dispatch(self, packet: Packet) -> Optional[Packet]:
        """
        Executes one decoded request.

        Args:
            packet: A request that already passed checksum validation.

        Returns:
            The response packet, or None when the bus stays silent
            (broadcast, unknown device, unknown instruction, violation).
        """
        self.stats.requests += 1
        response = None
        try:
            response = self._execute(packet)
        except DeviceNotFound as e:
            self.stats.unknown_devices += 1
            logger.debug(f"No response: {e}")
        except ProtocolViolation as e:
            self.stats.protocol_violations += 1
            logger.warning(f"Ignoring request 0x{packet.instruction:02X} for ID {packet.device_id}: {e}")

        if response is not None:
            self.stats.responses += 1
        for listener in self._listeners:
            listener(packet, response)
        return response

    def _execute(self, packet: Packet) -> Optional[Packet]:
        try:
            instruction = Instruction(packet.instruction)
        except ValueError:
            self.stats.unknown_instructions += 1
            logger.warning(
                f"Unknown instruction 0x{packet.instruction:02X} for ID {packet.device_id}. Ignoring."
            )
            return None

        logger.debug(
            f"ID {packet.device_id}: {instruction.name} params={packet.params.hex() or 'None'}"
        )

        if instruction is Instruction.PING:
            return self._ping(packet)
        elif instruction is Instruction.READ:
            return self._read(packet)
        elif instruction is Instruction.WRITE:
            return self._write(packet, buffered=False)
        elif instruction is Instruction.REG_WRITE:
            return self._write(packet, buffered=True)
        elif instruction is Instruction.ACTION:
            return self._action(packet)
        elif instruction is Instruction.SYNC_WRITE:
            self._sync_write(packet)
            return None
        return None

    def _ack(self, device_id: int, params: bytes = b"") -> Packet:
        return Packet(device_id, const.STATUS_OK, params)

    def _ping(self, packet: Packet) -> Optional[Packet]:
        if packet.is_broadcast:
            return None
        self.servo(packet.device_id)
        return self._ack(packet.device_id)

    def _read(self, packet: Packet) -> Optional[Packet]:
        if len(packet.params) != 2:
            raise ProtocolViolation(
                f"READ expects 2 parameters, got {len(packet.params)}.", device_id=packet.device_id
            )
        if packet.is_broadcast:
            return None
        address, count = packet.params[0], packet.params[1]
        if count + 2 > const.MAX_LENGTH:
            raise ProtocolViolation(
                f"READ of {count} bytes would not fit in a response.", device_id=packet.device_id
            )
        servo = self.servo(packet.device_id)
        return self._ack(packet.device_id, servo.registers.read_bytes(address, count))

    def _write(self, packet: Packet, buffered: bool) -> Optional[Packet]:
        if len(packet.params) < 2:
            raise ProtocolViolation(
                f"WRITE expects an address and data, got {len(packet.params)} byte(s).",
                device_id=packet.device_id,
            )
        address, data = packet.params[0], packet.params[1:]

        if packet.is_broadcast:
            for servo in self._servos.values():
                self._apply_write(servo, address, data, buffered)
            return None

        servo = self.servo(packet.device_id)
        if buffered:
            servo.registers.stage_bytes(address, data)
        else:
            servo.registers.write_bytes(address, data)
        return self._ack(packet.device_id)

    def _apply_write(self, servo: EmulatedServo, address: int, data: bytes, buffered: bool) -> bool:
        """Writes to one servo as part of a fan-out; a failure only skips that servo."""
        try:
            if buffered:
                servo.registers.stage_bytes(address, data)
            else:
                servo.registers.write_bytes(address, data)
            return True
        except EmulatorError as e:
            self.stats.protocol_violations += 1
            logger.warning(f"Servo {servo.device_id}: skipped in fan-out write: {e}")
            return False

    def _action(self, packet: Packet) -> Optional[Packet]:
        if packet.is_broadcast:
            for servo in self._servos.values():
                if servo.registers.pending:
                    servo.registers.commit()
            return None
        servo = self.servo(packet.device_id)
        servo.registers.commit()
        return self._ack(packet.device_id)

    def _sync_write(self, packet: Packet) -> None:
        params = packet.params
        if len(params) < 2:
            raise ProtocolViolation("SYNC_WRITE is missing address and width.")
        address, width = params[0], params[1]
        body = params[2:]
        group = width + 1
        if width == 0 or not body or len(body) % group:
            raise ProtocolViolation(
                f"SYNC_WRITE body of {len(body)} bytes does not split into groups of {group}."
            )
        for offset in range(0, len(body), group):
            device_id = body[offset]
            data = body[offset + 1:offset + group]
            servo = self._servos.get(device_id)
            if servo is None:
                logger.debug(f"SYNC_WRITE skipping unregistered ID {device_id}")
                continue
            self._apply_write(servo, address, data, buffered=False)
