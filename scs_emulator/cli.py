"""
Command-Line Interface for the SCS servo bus emulator.
Uses 'click' for CLI argument parsing and 'rich' for the startup summary.
"""
import asyncio
import logging
import signal
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from . import constants as const
from .config import ConfigurationManager, EmulatorConfig, build_registry, create_default_config
from .emulator import Emulator, TcpEmulatorServer
from .exceptions import ConfigurationError, TransportClosed
from .fault_injector import FaultConfig
from .http_debug_server import DebugHTTPServer
from .transport import SerialTransport

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("SCSEmulatorCLI")


def print_startup_summary(console: Console, config: EmulatorConfig) -> None:
    """Prints the registered servos and the active fault configuration."""
    if config.transport == "tcp":
        link = f"tcp://{config.host}:{config.port}"
    else:
        link = f"{config.serial_port} @ {config.baudrate} baud"
    console.print(f"[bold]SCS Servo Emulator[/bold] on {link} (tick {config.tick_interval_ms} ms)")

    servo_table = Table(show_header=True, header_style="bold magenta", title="Servos")
    servo_table.add_column("ID", justify="right")
    servo_table.add_column("Initial position", justify="right")
    servo_table.add_column("Velocity limit", justify="right")
    servo_table.add_column("Model", justify="right")
    for servo in config.servos:
        servo_table.add_row(
            str(servo.device_id),
            str(servo.initial_position),
            f"{servo.velocity_limit:g}/s",
            str(servo.model_number),
        )
    console.print(servo_table)

    faults = config.faults
    fault_table = Table(show_header=False, header_style="bold cyan", title="Faults")
    fault_table.add_column("Setting")
    fault_table.add_column("Value", justify="right")
    fault_table.add_row("Drop rate", f"{faults.packet_drop_rate:.3f}")
    fault_table.add_row("Checksum corruption rate", f"{faults.checksum_corruption_rate:.3f}")
    low, high = faults.response_delay_range
    fault_table.add_row("Response delay", f"{low:g}-{high:g} ms")
    if faults.timeout_simulation:
        ids = "all" if faults.timeout_device_ids is None else ", ".join(map(str, sorted(faults.timeout_device_ids)))
        fault_table.add_row("Timeout simulation", ids)
    else:
        fault_table.add_row("Timeout simulation", "off")
    fault_table.add_row("Seed", str(faults.random_seed))
    console.print(fault_table)


async def run_emulator(config: EmulatorConfig) -> None:
    """
    Runs the emulator described by `config` until SIGINT/SIGTERM or, on a
    serial link, until the port goes away.
    """
    loop = asyncio.get_running_loop()
    registry = build_registry(config.servos)

    if config.transport == "tcp":
        server = TcpEmulatorServer(
            registry,
            config.host,
            config.port,
            fault_config=config.faults,
            tick_interval=config.tick_interval,
        )
        await server.start()
        fault_target = server
        monitor = server.monitor
        main_task = asyncio.create_task(server.serve_forever())
    else:
        transport = SerialTransport(config.serial_port, config.baudrate)
        transport.open()
        emulator = Emulator(registry, transport, config.faults, config.tick_interval)
        fault_target = emulator
        monitor = emulator.monitor
        main_task = asyncio.create_task(emulator.run())

    debug_server_task: Optional[asyncio.Task] = None
    if config.debug_api:
        debug_server = DebugHTTPServer(monitor, fault_target, config.debug_api_port)
        debug_server_task = asyncio.create_task(debug_server.start_server())
        logger.info(f"Debug API server starting on http://127.0.0.1:{config.debug_api_port}")
        logger.info(f"API documentation available at http://127.0.0.1:{config.debug_api_port}/docs")

    stop_requested = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    stop_task = asyncio.create_task(stop_requested.wait())
    logger.info("Emulator running. Press Ctrl+C to stop.")
    try:
        await asyncio.wait([main_task, stop_task], return_when=asyncio.FIRST_COMPLETED)
    finally:
        logger.info("Shutting down emulator...")
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        stop_task.cancel()
        if debug_server_task is not None:
            debug_server_task.cancel()
            await asyncio.gather(debug_server_task, return_exceptions=True)
        if isinstance(fault_target, TcpEmulatorServer):
            await fault_target.close()
        else:
            await fault_target.stop()
        if not main_task.done():
            main_task.cancel()
        results = await asyncio.gather(main_task, return_exceptions=True)
        if isinstance(results[0], TransportClosed):
            logger.error(f"Link lost: {results[0]}")
        logger.info("Emulator shutdown complete.")


def _fault_config_from_options(
    drop_rate: float,
    corruption_rate: float,
    delay_min_ms: float,
    delay_max_ms: float,
    timeout_simulation: bool,
    timeout_ids: Tuple[int, ...],
    seed: int,
) -> FaultConfig:
    return FaultConfig(
        packet_drop_rate=drop_rate,
        checksum_corruption_rate=corruption_rate,
        response_delay_range=(delay_min_ms, delay_max_ms),
        timeout_simulation=timeout_simulation or bool(timeout_ids),
        timeout_device_ids=frozenset(timeout_ids) if timeout_ids else None,
        random_seed=seed,
    )


@click.command()
@click.option("--transport", type=click.Choice(["tcp", "serial"]), default="tcp",
              help="Byte transport the emulated bus is exposed on.", show_default=True)
@click.option("--host", default=const.DEFAULT_HOST, help="Host for the TCP virtual link.", show_default=True)
@click.option("--port", default=const.DEFAULT_PORT, type=int, help="Port for the TCP virtual link.", show_default=True)
@click.option("--serial-port", type=str, help="Serial device for the serial transport, e.g. /dev/ttyUSB0.")
@click.option("--baudrate", default=const.DEFAULT_BAUDRATE, type=int, help="Serial baud rate.", show_default=True)
@click.option("--num-servos", default=1, type=int, help="Number of emulated servos.", show_default=True)
@click.option("--start-id", default=1, type=int, help="Id of the first emulated servo.", show_default=True)
@click.option("--velocity-limit", default=const.DEFAULT_VELOCITY_LIMIT, type=float,
              help="Velocity limit of every servo, in position units per second.", show_default=True)
@click.option("--tick-ms", default=const.DEFAULT_TICK_INTERVAL_S * 1000.0, type=float,
              help="Kinematic tick interval in milliseconds.", show_default=True)
@click.option("--drop-rate", default=0.0, type=float, help="Probability of dropping a response.", show_default=True)
@click.option("--corruption-rate", default=0.0, type=float,
              help="Probability of corrupting a response checksum.", show_default=True)
@click.option("--delay-min-ms", default=0.0, type=float, help="Minimum response delay.", show_default=True)
@click.option("--delay-max-ms", default=0.0, type=float, help="Maximum response delay.", show_default=True)
@click.option("--timeout-simulation", is_flag=True, help="Suppress every response (devices never answer).")
@click.option("--timeout-id", "timeout_ids", type=int, multiple=True,
              help="Suppress responses from this servo id only. Repeatable.")
@click.option("--seed", default=0, type=int, help="Seed of the fault random generator.", show_default=True)
@click.option("--log-level", default="INFO", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Logging level for the emulator.", show_default=True)
@click.option("--debug-api", is_flag=True, help="Enable HTTP debug API server.")
@click.option("--debug-api-port", default=const.DEFAULT_DEBUG_API_PORT, type=int,
              help="Port for HTTP debug API server.", show_default=True)
@click.option("--no-color", is_flag=True, help="Disable color output for compatibility.")
@click.option("--config-profile", type=str, help="Load configuration from named profile.")
@click.option("--save-config", type=str, help="Save current configuration as named profile.")
@click.option("--config-dir", type=str, help="Directory for configuration files (default: ~/.scs_emulator_config).")
@click.option("--list-profiles", is_flag=True, help="List saved configuration profiles and exit.")
def main(
    transport: str,
    host: str,
    port: int,
    serial_port: Optional[str],
    baudrate: int,
    num_servos: int,
    start_id: int,
    velocity_limit: float,
    tick_ms: float,
    drop_rate: float,
    corruption_rate: float,
    delay_min_ms: float,
    delay_max_ms: float,
    timeout_simulation: bool,
    timeout_ids: Tuple[int, ...],
    seed: int,
    log_level: str,
    debug_api: bool,
    debug_api_port: int,
    no_color: bool,
    config_profile: Optional[str],
    save_config: Optional[str],
    config_dir: Optional[str],
    list_profiles: bool,
):
    """
    SCS Servo Bus Emulator.

    Emulates one or more SCS/STS-protocol servos on a virtual TCP link or a
    serial port, so a driver stack can be developed and tested without
    physical hardware.
    """
    numeric_log_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.getLogger().setLevel(numeric_log_level)
    logger.setLevel(numeric_log_level)

    config_manager = ConfigurationManager(config_dir)
    if list_profiles:
        for name in config_manager.list_profiles():
            click.echo(name)
        return

    try:
        if config_profile:
            config = config_manager.load_config(config_profile)
            if config is None:
                raise click.ClickException(f"Failed to load configuration profile: {config_profile}")
            logger.info(f"Loaded configuration profile: {config_profile}")
        else:
            config = create_default_config(num_servos, start_id, velocity_limit)
            config.transport = transport
            config.host = host
            config.port = port
            config.serial_port = serial_port
            config.baudrate = baudrate
            config.tick_interval_ms = tick_ms
            config.log_level = log_level.upper()
            config.debug_api = debug_api
            config.debug_api_port = debug_api_port
            config.no_color = no_color
            config.faults = _fault_config_from_options(
                drop_rate, corruption_rate, delay_min_ms, delay_max_ms,
                timeout_simulation, timeout_ids, seed,
            )
            # Field assignment skips __post_init__, so validate the final combination.
            config = EmulatorConfig.from_dict(config.to_dict())
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    config_manager.current_config = config
    if save_config:
        if config_manager.save_config(config, save_config):
            logger.info(f"Configuration saved as profile: {save_config}")
        else:
            logger.error(f"Failed to save configuration profile: {save_config}")

    print_startup_summary(Console(no_color=config.no_color), config)

    try:
        asyncio.run(run_emulator(config))
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received directly by CLI.")
    except (TransportClosed, OSError) as e:
        raise click.ClickException(f"Emulator failed: {e}")
    logger.info("Emulator CLI finished.")


if __name__ == "__main__":
    main()
