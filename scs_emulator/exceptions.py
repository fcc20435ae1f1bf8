"""
Custom exceptions for the SCS servo bus emulator.

Only TransportClosed is meant to escape the emulator loop. The protocol
errors are raised inside the codec and register layers and translated to
silence on the bus, the same way real servos ignore bad input.
"""


class EmulatorError(Exception):
    """Base exception class for all emulator errors."""
    def __init__(self, message, *args, device_id=None, address=None):
        super().__init__(message, *args)
        self.message = message
        self.device_id = device_id
        self.address = address

    def __str__(self):
        base_message = super().__str__()

        details = []
        if self.device_id is not None:
            details.append(f"Device ID: {self.device_id}")
        if self.address is not None:
            details.append(f"Address: {self.address}")

        if details:
            return f"{base_message} ({', '.join(details)})"
        return base_message


class MalformedFrame(EmulatorError):
    """A frame failed header, length or checksum validation."""


class ProtocolViolation(EmulatorError):
    """A well-formed request asked for something the device cannot do."""


class NoSuchAddress(ProtocolViolation):
    """The requested register address is not in the control table."""


class ReadOnlyViolation(ProtocolViolation):
    """A write targeted a read-only register."""


class FrameTooLong(ProtocolViolation):
    """A frame declared a length above the supported maximum."""


class DeviceNotFound(EmulatorError):
    """No servo is registered under the requested id."""


class TransportClosed(EmulatorError):
    """The byte transport under the emulator went away."""


class ConfigurationError(EmulatorError):
    """Errors related to emulator or fault configuration."""
