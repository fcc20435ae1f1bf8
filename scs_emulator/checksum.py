# scs_emulator/checksum.py
"""
Checksum utility for SCS servo packets.
"""
from typing import Iterable

from .exceptions import MalformedFrame


def calculate_checksum(device_id: int, length: int, instruction: int, params: Iterable[int]) -> int:
    """
    Calculates the 8-bit checksum of a packet.
    The formula is CHK = ~(ID + LENGTH + INSTRUCTION + P1 + ... + Pn) & 0xFF.

    Args:
        device_id: Id byte of the packet (0-254).
        length: Length byte (number of parameters + 2).
        instruction: Instruction byte, or status byte for responses.
        params: Parameter bytes.

    Returns:
        The checksum byte.
    """
    total = device_id + length + instruction + sum(params)
    return ~total & 0xFF


def verify_checksum(frame: bytes) -> bool:
    """
    Verifies the checksum of a complete frame, header included.

    Args:
        frame: All bytes of the frame from the 0xFF 0xFF header up to and
               including the checksum byte.

    Returns:
        True if the checksum matches, False otherwise.

    Raises:
        MalformedFrame: if the frame is too short to carry a checksum.
    """
    if len(frame) < 6:
        raise MalformedFrame(f"Frame of {len(frame)} bytes is too short to verify.")
    device_id, length, instruction = frame[2], frame[3], frame[4]
    params = frame[5:-1]
    return calculate_checksum(device_id, length, instruction, params) == frame[-1]
