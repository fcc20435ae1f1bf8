"""
SCS Servo Bus Emulator
======================

Stands in for one or more SCS/STS-protocol serial-bus servos so a driver
stack can be developed and tested without hardware. Includes the packet
codec, per-servo register tables and kinematics, bus dispatch, a seeded
fault injector and an asyncio loop that ties them to a byte transport.
"""

__version__ = "0.1.0"

from . import constants as const

from .checksum import calculate_checksum, verify_checksum
from .packet_codec import DiscardedFrame, Packet, PacketCodec, serialize
from .register_table import PendingWrite, RegisterEntry, RegisterTable, build_control_table
from .device_model import DeviceModel
from .servo import EmulatedServo
from .bus_registry import BusRegistry
from .fault_injector import FaultConfig, FaultDecision, FaultInjector
from .transport import ByteTransport, LoopbackTransport, SerialTransport, StreamTransport
from .monitor import EmulatorMonitor
from .emulator import Emulator, TcpEmulatorServer
from .config import ConfigurationManager, EmulatorConfig, ServoConfig, build_registry

from .exceptions import (
    EmulatorError,
    MalformedFrame,
    ProtocolViolation,
    NoSuchAddress,
    ReadOnlyViolation,
    FrameTooLong,
    DeviceNotFound,
    TransportClosed,
    ConfigurationError,
)
