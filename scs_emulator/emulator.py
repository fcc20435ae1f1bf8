# scs_emulator/emulator.py
"""
Emulator loop for the SCS servo bus.

Inbound bytes go through the PacketCodec, decoded requests through the
BusRegistry, responses through the FaultInjector and out on the transport.
A fixed-rate tick advances every servo by the measured wall-clock delta
and releases delayed responses whose time has come.

Everything runs on one asyncio event loop: the reader task and the tick
task never execute protocol or physics code concurrently, so servo state
needs no locking.
"""
import asyncio
import logging
import time
from typing import Callable, List, Optional

from . import constants as const
from .bus_registry import BusRegistry
from .exceptions import ConfigurationError, TransportClosed
from .fault_injector import FaultConfig, FaultDecision, FaultInjector
from .monitor import EmulatorMonitor
from .packet_codec import DiscardedFrame, PacketCodec
from .transport import ByteTransport, StreamTransport

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class Emulator:
    def __init__(
        self,
        registry: BusRegistry,
        transport: Optional[ByteTransport] = None,
        fault_config: Optional[FaultConfig] = None,
        tick_interval: float = const.DEFAULT_TICK_INTERVAL_S,
        clock: Clock = time.monotonic,
        injector: Optional[FaultInjector] = None,
        monitor: Optional[EmulatorMonitor] = None,
        read_size: int = const.DEFAULT_READ_SIZE,
    ):
        if tick_interval <= 0:
            raise ConfigurationError(f"tick_interval must be positive, got {tick_interval}.")
        self.registry = registry
        self.transport = transport
        self.tick_interval = tick_interval
        self.read_size = read_size
        self._clock = clock
        self.codec = PacketCodec()
        if injector is None:
            injector = FaultInjector(fault_config)
        elif fault_config is not None:
            injector.reload(fault_config)
        self.injector = injector
        self.monitor = monitor or EmulatorMonitor(registry, self.injector)
        self._tasks: List[asyncio.Task] = []
        self._write_lock: Optional[asyncio.Lock] = None
        self.running = False

    # --- Synchronous core ---------------------------------------------------

    def handle_inbound(self, data: bytes, now: Optional[float] = None) -> List[FaultDecision]:
        """
        Parses inbound bytes and dispatches every completed request.

        Args:
            data: Bytes as delivered by the transport, any chunk size.
            now: Emulator clock time; defaults to the configured clock.

        Returns:
            The fault decisions taken for the responses produced.
        """
        now = self._clock() if now is None else now
        self.monitor.record_received(len(data))
        decisions = []
        for result in self.codec.feed(data):
            if isinstance(result, DiscardedFrame):
                self.monitor.record_discarded(result)
                continue
            response = self.registry.dispatch(result)
            if response is None:
                continue
            decisions.append(self.injector.submit(response.to_bytes(), response.device_id, now))
        return decisions

    def tick(self, now: Optional[float] = None) -> None:
        """Advances every servo by the time elapsed since its previous tick."""
        self.registry.advance_to(self._clock() if now is None else now)

    def flush_due(self, now: Optional[float] = None) -> List[bytes]:
        return self.injector.pop_due(self._clock() if now is None else now)

    def reload_faults(self, config: FaultConfig) -> None:
        self.injector.reload(config)

    # --- Async loop ---------------------------------------------------------

    async def _transmit(self, frames: List[bytes]) -> None:
        if not frames:
            return
        async with self._write_lock:
            for frame in frames:
                await self.transport.write(frame)
                self.monitor.record_sent(frame)
                logger.debug(f"Sent {frame.hex()}")

    async def _reader_loop(self) -> None:
        while True:
            data = await self.transport.read(self.read_size)
            now = self._clock()
            self.handle_inbound(data, now)
            await self._transmit(self.flush_due(now))

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            now = self._clock()
            self.tick(now)
            await self._transmit(self.flush_due(now))

    async def run(self) -> None:
        """
        Runs until stop() is called or the transport closes.

        Raises:
            TransportClosed: if the link went away. The loop has already
                been shut down cleanly when this propagates.
        """
        if self.transport is None:
            raise ConfigurationError("Emulator has no transport to run on.")
        if self.running:
            logger.warning("Emulator loop already running.")
            return
        self.running = True
        self._write_lock = asyncio.Lock()
        self.tick(self._clock())
        self._tasks = [
            asyncio.create_task(self._reader_loop(), name="scs-emulator-reader"),
            asyncio.create_task(self._tick_loop(), name="scs-emulator-tick"),
        ]
        logger.info(f"Emulator loop started with {len(self.registry)} servo(s).")
        try:
            done, _ = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task.cancelled():
                    continue
                error = task.exception()
                if isinstance(error, TransportClosed):
                    logger.info(f"Transport closed: {error}")
                if error is not None:
                    raise error
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stops the tick and reader tasks and releases the transport. Pending delayed responses are lost."""
        if not self.running:
            return
        self.running = False
        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current and not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []
        lost = self.injector.clear()
        if lost:
            logger.info(f"Discarded {lost} delayed response(s) on shutdown.")
        await self.transport.close()
        logger.info("Emulator loop stopped.")


class TcpEmulatorServer:
    """
    Serves one bus over TCP. Each accepted client drives the same servos;
    a new connection replaces the previous one, like re-plugging the
    adapter of a real bus.
    """

    def __init__(
        self,
        registry: BusRegistry,
        host: str = const.DEFAULT_HOST,
        port: int = const.DEFAULT_PORT,
        fault_config: Optional[FaultConfig] = None,
        tick_interval: float = const.DEFAULT_TICK_INTERVAL_S,
    ):
        self.registry = registry
        self.host = host
        self.port = port
        self.tick_interval = tick_interval
        self.injector = FaultInjector(fault_config)
        self.monitor = EmulatorMonitor(registry, self.injector)
        self.current: Optional[Emulator] = None
        self._server: Optional[asyncio.AbstractServer] = None

    def reload_faults(self, config: FaultConfig) -> None:
        self.injector.reload(config)

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        transport = StreamTransport(reader, writer)
        logger.info(f"Client {transport.peer} connected to the servo bus.")
        if self.current is not None:
            logger.warning("New client replaces the active connection.")
            await self.current.stop()

        emulator = Emulator(
            self.registry,
            transport,
            tick_interval=self.tick_interval,
            injector=self.injector,
            monitor=self.monitor,
        )
        self.current = emulator
        try:
            await emulator.run()
        except TransportClosed:
            logger.info(f"Client {transport.peer} disconnected.")
        finally:
            if self.current is emulator:
                self.current = None

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle_client, self.host, self.port)
        addr = self._server.sockets[0].getsockname()
        self.port = addr[1]
        logger.info(f"Servo bus emulator listening on {addr}")

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        async with self._server:
            await self._server.serve_forever()

    async def close(self) -> None:
        if self.current is not None:
            await self.current.stop()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("Servo bus emulator server closed.")
