# scs_emulator/constants.py
"""
Constants for the SCS servo bus emulator.
Includes framing bytes, instruction codes, the register control table
and emulator defaults for Feetech SCS/STS-style half-duplex servos.
"""
from enum import IntEnum

# Framing
HEADER = b"\xFF\xFF"
HEADER_BYTE = 0xFF
MIN_LENGTH = 2  # instruction + checksum
MAX_LENGTH = 64  # Anything larger is treated as line noise, not a frame

# Device ids
MIN_DEVICE_ID = 0
MAX_DEVICE_ID = 253
BROADCAST_ID = 0xFE


class Instruction(IntEnum):
    """The closed set of instruction codes understood by the bus."""

    PING = 0x01
    READ = 0x02
    WRITE = 0x03
    REG_WRITE = 0x04
    ACTION = 0x05
    SYNC_WRITE = 0x83


INSTRUCTION_NAMES = {int(instr): instr.name for instr in Instruction}

# Status byte carried in the instruction slot of a response packet
STATUS_OK = 0x00

# Register access modes
ACCESS_RO = "ro"
ACCESS_RW = "rw"

# Control table addresses
ADDR_MODEL_NUMBER = 0
ADDR_FIRMWARE_VERSION = 2
ADDR_ID = 5
ADDR_BAUD_RATE = 6
ADDR_RETURN_DELAY_TIME = 7
ADDR_MIN_ANGLE_LIMIT = 9
ADDR_MAX_ANGLE_LIMIT = 11
ADDR_TORQUE_ENABLE = 40
ADDR_ACCELERATION = 41
ADDR_GOAL_POSITION = 42
ADDR_RUNNING_TIME = 44
ADDR_GOAL_SPEED = 46
ADDR_LOCK = 55
ADDR_PRESENT_POSITION = 56
ADDR_PRESENT_SPEED = 58
ADDR_PRESENT_LOAD = 60
ADDR_PRESENT_VOLTAGE = 62
ADDR_PRESENT_TEMPERATURE = 63
ADDR_MOVING = 66

# (address, name, width, access)
CONTROL_TABLE = (
    (ADDR_MODEL_NUMBER, "MODEL_NUMBER", 2, ACCESS_RO),
    (ADDR_FIRMWARE_VERSION, "FIRMWARE_VERSION", 1, ACCESS_RO),
    (ADDR_ID, "ID", 1, ACCESS_RO),
    (ADDR_BAUD_RATE, "BAUD_RATE", 1, ACCESS_RW),
    (ADDR_RETURN_DELAY_TIME, "RETURN_DELAY_TIME", 1, ACCESS_RW),
    (ADDR_MIN_ANGLE_LIMIT, "MIN_ANGLE_LIMIT", 2, ACCESS_RW),
    (ADDR_MAX_ANGLE_LIMIT, "MAX_ANGLE_LIMIT", 2, ACCESS_RW),
    (ADDR_TORQUE_ENABLE, "TORQUE_ENABLE", 1, ACCESS_RW),
    (ADDR_ACCELERATION, "ACCELERATION", 1, ACCESS_RW),
    (ADDR_GOAL_POSITION, "GOAL_POSITION", 2, ACCESS_RW),
    (ADDR_RUNNING_TIME, "RUNNING_TIME", 2, ACCESS_RW),
    (ADDR_GOAL_SPEED, "GOAL_SPEED", 2, ACCESS_RW),
    (ADDR_LOCK, "LOCK", 1, ACCESS_RW),
    (ADDR_PRESENT_POSITION, "PRESENT_POSITION", 2, ACCESS_RO),
    (ADDR_PRESENT_SPEED, "PRESENT_SPEED", 2, ACCESS_RO),
    (ADDR_PRESENT_LOAD, "PRESENT_LOAD", 2, ACCESS_RO),
    (ADDR_PRESENT_VOLTAGE, "PRESENT_VOLTAGE", 1, ACCESS_RO),
    (ADDR_PRESENT_TEMPERATURE, "PRESENT_TEMPERATURE", 1, ACCESS_RO),
    (ADDR_MOVING, "MOVING", 1, ACCESS_RO),
)

# Servo defaults
DEFAULT_MODEL_NUMBER = 777  # STS3215
DEFAULT_FIRMWARE_VERSION = 1
DEFAULT_VELOCITY_LIMIT = 1000.0  # position units per second
DEFAULT_MIN_ANGLE = 0
DEFAULT_MAX_ANGLE = 4095
DEFAULT_VOLTAGE = 120  # 0.1 V units -> 12.0 V
DEFAULT_TEMPERATURE = 30  # degrees C
PLACEHOLDER_LOAD = 0

# Emulator defaults
DEFAULT_TICK_INTERVAL_S = 0.001
DEFAULT_READ_SIZE = 256
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 6790
DEFAULT_BAUDRATE = 1_000_000
DEFAULT_DEBUG_API_PORT = 8766
HISTORY_LENGTH = 500

# Fault injection
CHECKSUM_CORRUPTION_MASK = 0xFF
