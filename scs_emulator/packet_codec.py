# scs_emulator/packet_codec.py
"""
Incremental parser and serializer for the SCS servo wire framing.

    [0xFF][0xFF][id][length][instruction][params: length - 2][checksum]

The parser is a resumable state machine: bytes may arrive in chunks of any
size and a frame split across several feed() calls is reassembled. Frames
with a bad checksum or an implausible length are discarded and the parser
resynchronizes on the next header, the same way servo firmware ignores
garbage on the line.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from . import constants as const
from .checksum import calculate_checksum
from .exceptions import FrameTooLong, ProtocolViolation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Packet:
    """One complete frame. `instruction` holds the status byte for responses."""
    device_id: int
    instruction: int
    params: bytes = b""

    @property
    def length(self) -> int:
        return len(self.params) + 2

    @property
    def checksum(self) -> int:
        return calculate_checksum(self.device_id, self.length, self.instruction, self.params)

    @property
    def is_broadcast(self) -> bool:
        return self.device_id == const.BROADCAST_ID

    def to_bytes(self) -> bytes:
        return serialize(self.device_id, self.instruction, self.params)


@dataclass(frozen=True)
class DiscardedFrame:
    """A frame the parser threw away, with the bytes it had consumed."""
    reason: str
    raw: bytes = field(default=b"")


FeedResult = Union[Packet, DiscardedFrame]


class CodecState(Enum):
    SEEKING_HEADER = "seeking_header"
    READING_ID = "reading_id"
    READING_LENGTH = "reading_length"
    READING_BODY = "reading_body"


def serialize(device_id: int, instruction: int, params: bytes = b"") -> bytes:
    """
    Builds the exact byte sequence of a frame.

    Args:
        device_id: Target or source id (0-254).
        instruction: Instruction code, or status byte for a response.
        params: Parameter bytes.

    Returns:
        The frame, header and checksum included.

    Raises:
        ProtocolViolation: if the id or instruction does not fit in a byte.
        FrameTooLong: if the parameters exceed the maximum frame length.
    """
    if not (0 <= device_id <= const.BROADCAST_ID):
        raise ProtocolViolation(f"Device id {device_id} is out of range 0-254.")
    if not (0 <= instruction <= 0xFF):
        raise ProtocolViolation(f"Instruction 0x{instruction:X} does not fit in a byte.")
    params = bytes(params)
    length = len(params) + 2
    if length > const.MAX_LENGTH:
        raise FrameTooLong(
            f"Frame length {length} exceeds maximum {const.MAX_LENGTH}.", device_id=device_id
        )
    checksum = calculate_checksum(device_id, length, instruction, params)
    return const.HEADER + bytes([device_id, length, instruction]) + params + bytes([checksum])


class PacketCodec:
    """
    Resumable frame parser.

    Every call to feed() returns the frames completed by that chunk, in
    arrival order: decoded Packets and DiscardedFrame markers. Partial
    frames stay buffered until the remaining bytes arrive.
    """

    def __init__(self, max_length: int = const.MAX_LENGTH):
        self.max_length = max_length
        self.packets_decoded = 0
        self.frames_discarded = 0
        self.reset()

    def reset(self) -> None:
        """Drops any partially received frame and starts seeking a header."""
        self.state = CodecState.SEEKING_HEADER
        self._header_count = 0
        self._frame = bytearray()
        self._device_id = 0
        self._length = 0

    @property
    def buffered(self) -> int:
        """Number of bytes held for the frame currently being assembled."""
        return len(self._frame)

    def feed(self, data: bytes) -> List[FeedResult]:
        results: List[FeedResult] = []
        buf = bytearray(data)
        i = 0
        while i < len(buf):
            byte = buf[i]

            if self.state is CodecState.SEEKING_HEADER:
                i += 1
                if byte == const.HEADER_BYTE:
                    self._header_count += 1
                    if self._header_count == 2:
                        self._frame = bytearray(const.HEADER)
                        self.state = CodecState.READING_ID
                else:
                    self._header_count = 0

            elif self.state is CodecState.READING_ID:
                i += 1
                if byte == const.HEADER_BYTE:
                    # 0xFF is never a valid id: treat it as a repeated header byte
                    continue
                self._frame.append(byte)
                self._device_id = byte
                self.state = CodecState.READING_LENGTH

            elif self.state is CodecState.READING_LENGTH:
                i += 1
                self._frame.append(byte)
                if byte < const.MIN_LENGTH or byte > self.max_length:
                    logger.warning(
                        f"Discarding frame for ID {self._device_id}: declared length {byte} "
                        f"outside {const.MIN_LENGTH}-{self.max_length}."
                    )
                    discarded = self._discard("length")
                    results.append(discarded)
                    # Rescan everything after the first header byte for a real header
                    buf[i:i] = discarded.raw[1:]
                    continue
                self._length = byte
                self.state = CodecState.READING_BODY

            elif self.state is CodecState.READING_BODY:
                needed = self._length - (len(self._frame) - 4)
                chunk = buf[i:i + needed]
                self._frame.extend(chunk)
                i += len(chunk)
                if len(chunk) == needed:
                    results.append(self._validate())

        return results

    def _validate(self) -> FeedResult:
        frame = bytes(self._frame)
        instruction = frame[4]
        params = frame[5:-1]
        expected = calculate_checksum(self._device_id, self._length, instruction, params)
        if expected != frame[-1]:
            logger.warning(
                f"Discarding frame for ID {self._device_id}: checksum 0x{frame[-1]:02X}, "
                f"expected 0x{expected:02X}."
            )
            return self._discard("checksum")
        packet = Packet(self._device_id, instruction, params)
        self.packets_decoded += 1
        self.reset()
        logger.debug(f"Decoded frame {frame.hex()}")
        return packet

    def _discard(self, reason: str) -> DiscardedFrame:
        discarded = DiscardedFrame(reason=reason, raw=bytes(self._frame))
        self.frames_discarded += 1
        self.reset()
        return discarded


def decode_frame(frame: bytes) -> Optional[Packet]:
    """Decodes a single complete frame, or returns None if it does not decode."""
    for result in PacketCodec().feed(frame):
        if isinstance(result, Packet):
            return result
    return None
