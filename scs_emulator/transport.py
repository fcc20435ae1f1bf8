# scs_emulator/transport.py
"""
Byte transports the emulator can sit behind.

The emulator only needs byte-stream semantics: read whatever is available,
write whole frames. A transport that goes away raises TransportClosed,
which terminates the emulator loop.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import serial

from . import constants as const
from .exceptions import TransportClosed

logger = logging.getLogger(__name__)


class ByteTransport(ABC):
    """Bidirectional byte stream between the emulator and the driver under test."""

    @abstractmethod
    async def read(self, max_bytes: int = const.DEFAULT_READ_SIZE) -> bytes:
        """Waits for at least one byte and returns up to `max_bytes`."""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Writes all of `data`."""

    async def close(self) -> None:
        pass


class LoopbackTransport(ByteTransport):
    """
    In-memory transport with a host-side endpoint.

    The test harness (or an embedding driver) pushes request bytes with
    send() and collects everything the emulator wrote with take_output()
    or wait_for_output().
    """

    def __init__(self):
        self._inbound: "asyncio.Queue[Optional[bytes]]" = asyncio.Queue()
        self._leftover = b""
        self._output = bytearray()
        self._output_event = asyncio.Event()
        self.writes = 0
        self.closed = False

    # --- Host side ---------------------------------------------------------

    def send(self, data: bytes) -> None:
        """Delivers bytes to the emulator side."""
        if data:
            self._inbound.put_nowait(bytes(data))

    def disconnect(self) -> None:
        """Simulates the link going away under the emulator."""
        self._inbound.put_nowait(None)

    def take_output(self) -> bytes:
        data = bytes(self._output)
        self._output.clear()
        self._output_event.clear()
        return data

    async def wait_for_output(self, min_bytes: int = 1, timeout: float = 1.0) -> bytes:
        """Waits until at least `min_bytes` have been written, then takes them."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while len(self._output) < min_bytes:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            self._output_event.clear()
            try:
                await asyncio.wait_for(self._output_event.wait(), remaining)
            except asyncio.TimeoutError:
                break
        return self.take_output()

    # --- Emulator side -----------------------------------------------------

    async def read(self, max_bytes: int = const.DEFAULT_READ_SIZE) -> bytes:
        if self.closed:
            raise TransportClosed("Loopback transport is closed.")
        if not self._leftover:
            chunk = await self._inbound.get()
            if chunk is None:
                self.closed = True
                raise TransportClosed("Loopback transport disconnected.")
            self._leftover = chunk
        data, self._leftover = self._leftover[:max_bytes], self._leftover[max_bytes:]
        return data

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise TransportClosed("Loopback transport is closed.")
        self._output.extend(data)
        self.writes += 1
        self._output_event.set()

    async def close(self) -> None:
        self.closed = True


class StreamTransport(ByteTransport):
    """Wraps an asyncio StreamReader/StreamWriter pair, e.g. one TCP client."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._reader = reader
        self._writer = writer
        self.peer = writer.get_extra_info("peername")

    async def read(self, max_bytes: int = const.DEFAULT_READ_SIZE) -> bytes:
        try:
            data = await self._reader.read(max_bytes)
        except (ConnectionError, asyncio.IncompleteReadError) as e:
            raise TransportClosed(f"Connection to {self.peer} lost: {e}") from e
        if not data:
            raise TransportClosed(f"Client {self.peer} disconnected.")
        return data

    async def write(self, data: bytes) -> None:
        try:
            self._writer.write(data)
            await self._writer.drain()
        except ConnectionError as e:
            raise TransportClosed(f"Connection to {self.peer} lost: {e}") from e

    async def close(self) -> None:
        if self._writer.is_closing():
            return
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except ConnectionError:
            logger.debug(f"Connection to {self.peer} reset while closing.")


class SerialTransport(ByteTransport):
    """
    A physical or virtual serial port through pyserial.

    pyserial is blocking, so every call runs in the default executor. The
    port is opened with a short read timeout; empty reads are retried
    until data arrives or the port closes.
    """

    def __init__(self, port: str, baudrate: int = const.DEFAULT_BAUDRATE, timeout: float = 0.01):
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self._serial = None

    def open(self) -> None:
        try:
            self._serial = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.timeout,
            )
        except serial.SerialException as e:
            raise TransportClosed(f"Failed to open serial port {self.port}: {e}") from e
        logger.info(f"Opened serial port {self.port} at {self.baudrate} baud.")

    def _read_blocking(self, max_bytes: int) -> bytes:
        try:
            waiting = self._serial.in_waiting
            return self._serial.read(max(1, min(max_bytes, waiting)))
        except (serial.SerialException, OSError) as e:
            raise TransportClosed(f"Serial port {self.port} failed: {e}") from e

    def _write_blocking(self, data: bytes) -> None:
        try:
            self._serial.write(data)
            self._serial.flush()
        except (serial.SerialException, OSError) as e:
            raise TransportClosed(f"Serial port {self.port} failed: {e}") from e

    async def read(self, max_bytes: int = const.DEFAULT_READ_SIZE) -> bytes:
        if self._serial is None:
            self.open()
        loop = asyncio.get_running_loop()
        while True:
            if not self._serial.is_open:
                raise TransportClosed(f"Serial port {self.port} is closed.")
            data = await loop.run_in_executor(None, self._read_blocking, max_bytes)
            if data:
                return data

    async def write(self, data: bytes) -> None:
        if self._serial is None:
            self.open()
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_blocking, data)

    async def close(self) -> None:
        if self._serial is not None and self._serial.is_open:
            self._serial.close()
            logger.info(f"Closed serial port {self.port}.")
