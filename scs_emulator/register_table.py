# scs_emulator/register_table.py
"""
Per-servo control table.

A RegisterTable is a fixed mapping from address to RegisterEntry. Wire
writes respect the access mode of each entry; read-only status registers
are refreshed by the owning servo through publish(). Buffered writes
(REG_WRITE) are staged and stay invisible to reads until commit().
"""
import logging
import struct
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from . import constants as const
from .exceptions import (
    ConfigurationError,
    NoSuchAddress,
    ProtocolViolation,
    ReadOnlyViolation,
)

logger = logging.getLogger(__name__)

_WIDTH_FORMATS = {1: "<B", 2: "<H"}

WriteListener = Callable[[int, int], None]


@dataclass
class RegisterEntry:
    address: int
    name: str
    width: int
    access: str
    value: int = 0

    @property
    def writable(self) -> bool:
        return self.access == const.ACCESS_RW

    @property
    def max_value(self) -> int:
        return (1 << (8 * self.width)) - 1

    def encode(self, value: Optional[int] = None) -> bytes:
        """Splits a value into wire bytes, low byte first."""
        return struct.pack(_WIDTH_FORMATS[self.width], self.value if value is None else value)

    def decode(self, data: bytes) -> int:
        return struct.unpack(_WIDTH_FORMATS[self.width], bytes(data))[0]


@dataclass(frozen=True)
class PendingWrite:
    address: int
    value: int


class RegisterTable:
    def __init__(self, entries: Iterable[RegisterEntry], device_id: Optional[int] = None):
        self.device_id = device_id
        self._entries: Dict[int, RegisterEntry] = {}
        self._byte_owner: Dict[int, int] = {}
        self._pending: List[PendingWrite] = []
        self._listeners: List[WriteListener] = []

        for entry in entries:
            if entry.width not in _WIDTH_FORMATS:
                raise ConfigurationError(
                    f"Register {entry.name} has unsupported width {entry.width}.",
                    device_id=device_id, address=entry.address,
                )
            for offset in range(entry.width):
                byte_address = entry.address + offset
                if byte_address in self._byte_owner:
                    raise ConfigurationError(
                        f"Register {entry.name} overlaps register at address "
                        f"{self._byte_owner[byte_address]}.",
                        device_id=device_id, address=entry.address,
                    )
                self._byte_owner[byte_address] = entry.address
            self._entries[entry.address] = entry

    def __contains__(self, address: int) -> bool:
        return address in self._entries

    def __iter__(self):
        return iter(sorted(self._entries.values(), key=lambda e: e.address))

    def entry(self, address: int) -> RegisterEntry:
        try:
            return self._entries[address]
        except KeyError:
            raise NoSuchAddress(
                f"No register at address {address}.", device_id=self.device_id, address=address
            ) from None

    def add_write_listener(self, listener: WriteListener) -> None:
        """Registers a callback invoked with (address, value) after every applied write."""
        self._listeners.append(listener)

    @property
    def pending(self) -> Tuple[PendingWrite, ...]:
        return tuple(self._pending)

    # --- Entry-level operations -------------------------------------------

    def read(self, address: int) -> int:
        """Returns the last committed value of the register at `address`."""
        return self.entry(address).value

    def write(self, address: int, value: int) -> None:
        """
        Applies a write immediately.

        Raises:
            NoSuchAddress: if no register starts at `address`.
            ReadOnlyViolation: if the register is read-only.
            ProtocolViolation: if the value does not fit the register width.
        """
        entry = self._check_writable(address, value)
        self._apply(entry, value)

    def buffered_write(self, address: int, value: int) -> None:
        """Stages a write; it becomes visible only after commit()."""
        self._check_writable(address, value)
        self._pending.append(PendingWrite(address, value))
        logger.debug(f"Servo {self.device_id}: staged write {value} -> address {address}")

    def commit(self) -> List[PendingWrite]:
        """
        Applies all staged writes in staging order and clears the stage.

        Returns:
            The writes that were applied (empty if nothing was staged).
        """
        applied, self._pending = self._pending, []
        for pending in applied:
            self._apply(self._entries[pending.address], pending.value)
        if applied:
            logger.debug(f"Servo {self.device_id}: committed {len(applied)} staged write(s)")
        return applied

    def discard_pending(self) -> None:
        self._pending = []

    def publish(self, address: int, value: int) -> None:
        """Internal status update that bypasses the access mode. Never reachable from the wire."""
        entry = self.entry(address)
        entry.value = max(0, min(int(value), entry.max_value))

    # --- Byte-range operations used by the wire instructions -------------

    def read_bytes(self, address: int, count: int) -> bytes:
        """Reads `count` bytes starting at `address`, low byte first per entry."""
        entries = self.resolve_range(address, count)
        return b"".join(entry.encode() for entry in entries)

    def write_bytes(self, address: int, data: bytes) -> None:
        """Validates the whole range first, then applies every entry in it."""
        writes = self._decode_range(address, data)
        for entry, value in writes:
            self._apply(entry, value)

    def stage_bytes(self, address: int, data: bytes) -> None:
        writes = self._decode_range(address, data)
        for entry, value in writes:
            self._pending.append(PendingWrite(entry.address, value))
        logger.debug(f"Servo {self.device_id}: staged {len(writes)} write(s) from address {address}")

    def resolve_range(self, address: int, count: int) -> List[RegisterEntry]:
        """
        Maps a byte range onto whole entries.

        Raises:
            NoSuchAddress: if a byte in the range is unmapped, or the range
                starts or ends inside a multi-byte register.
        """
        if count <= 0:
            raise ProtocolViolation(
                f"Empty register range at address {address}.", device_id=self.device_id, address=address
            )
        entries = []
        cursor = address
        end = address + count
        while cursor < end:
            entry = self._entries.get(cursor)
            if entry is None or cursor + entry.width > end:
                raise NoSuchAddress(
                    f"Range {address}..{end - 1} is not aligned to the control table at {cursor}.",
                    device_id=self.device_id, address=cursor,
                )
            entries.append(entry)
            cursor += entry.width
        return entries

    def snapshot(self) -> Dict[str, int]:
        return {entry.name: entry.value for entry in self}

    # --- Internals ---------------------------------------------------------

    def _decode_range(self, address: int, data: bytes) -> List[Tuple[RegisterEntry, int]]:
        writes = []
        offset = 0
        for entry in self.resolve_range(address, len(data)):
            value = entry.decode(data[offset:offset + entry.width])
            self._check_writable(entry.address, value)
            writes.append((entry, value))
            offset += entry.width
        return writes

    def _check_writable(self, address: int, value: int) -> RegisterEntry:
        entry = self.entry(address)
        if not entry.writable:
            raise ReadOnlyViolation(
                f"Register {entry.name} is read-only.", device_id=self.device_id, address=address
            )
        if not (0 <= value <= entry.max_value):
            raise ProtocolViolation(
                f"Value {value} does not fit register {entry.name}.",
                device_id=self.device_id, address=address,
            )
        return entry

    def _apply(self, entry: RegisterEntry, value: int) -> None:
        entry.value = value
        for listener in self._listeners:
            listener(entry.address, value)


def build_control_table(
    device_id: int,
    initial_position: int = 0,
    model_number: int = const.DEFAULT_MODEL_NUMBER,
) -> RegisterTable:
    """Creates the default control table of one servo."""
    defaults = {
        const.ADDR_MODEL_NUMBER: model_number,
        const.ADDR_FIRMWARE_VERSION: const.DEFAULT_FIRMWARE_VERSION,
        const.ADDR_ID: device_id,
        const.ADDR_MIN_ANGLE_LIMIT: const.DEFAULT_MIN_ANGLE,
        const.ADDR_MAX_ANGLE_LIMIT: const.DEFAULT_MAX_ANGLE,
        const.ADDR_TORQUE_ENABLE: 1,
        const.ADDR_GOAL_POSITION: initial_position,
        const.ADDR_PRESENT_POSITION: initial_position,
        const.ADDR_PRESENT_LOAD: const.PLACEHOLDER_LOAD,
        const.ADDR_PRESENT_VOLTAGE: const.DEFAULT_VOLTAGE,
        const.ADDR_PRESENT_TEMPERATURE: const.DEFAULT_TEMPERATURE,
    }
    entries = [
        RegisterEntry(address, name, width, access, defaults.get(address, 0))
        for address, name, width, access in const.CONTROL_TABLE
    ]
    return RegisterTable(entries, device_id=device_id)
