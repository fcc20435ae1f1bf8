"""
HTTP debug server for programmatic access to emulator state.

Provides a REST API that lets test harnesses and other tools query servo
state and traffic history, and swap the fault configuration between runs
without restarting the emulator.
"""

from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from . import __version__
from . import constants as const
from .exceptions import ConfigurationError
from .fault_injector import FaultConfig
from .monitor import EmulatorMonitor


class FaultConfigPayload(BaseModel):
    packet_drop_rate: float = 0.0
    checksum_corruption_rate: float = 0.0
    response_delay_range: List[float] = Field(default_factory=lambda: [0.0, 0.0])
    timeout_simulation: bool = False
    timeout_device_ids: Optional[List[int]] = None
    random_seed: int = 0

    def to_fault_config(self) -> FaultConfig:
        return FaultConfig(
            packet_drop_rate=self.packet_drop_rate,
            checksum_corruption_rate=self.checksum_corruption_rate,
            response_delay_range=tuple(self.response_delay_range),
            timeout_simulation=self.timeout_simulation,
            timeout_device_ids=(
                frozenset(self.timeout_device_ids) if self.timeout_device_ids is not None else None
            ),
            random_seed=self.random_seed,
        )


class DebugHTTPServer:
    """
    HTTP server exposing the EmulatorMonitor over REST.

    Args:
        monitor: EmulatorMonitor of the bus being served
        fault_target: Object with a reload_faults(FaultConfig) method, usually
            the Emulator or TcpEmulatorServer. Without it PUT /faults is refused.
        port: Port to bind server to
        host: Host address to bind to
    """

    def __init__(
        self,
        monitor: EmulatorMonitor,
        fault_target=None,
        port: int = const.DEFAULT_DEBUG_API_PORT,
        host: str = "127.0.0.1",
    ):
        self.monitor = monitor
        self.fault_target = fault_target
        self.port = port
        self.host = host

        self.app = FastAPI(
            title="SCS Servo Emulator Debug API",
            description="Inspection and fault control for the SCS servo bus emulator",
            version=__version__,
            docs_url="/docs",
            redoc_url="/redoc",
        )
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes"""

        @self.app.get("/", summary="API information")
        async def root():
            return {
                "name": "SCS Servo Emulator Debug API",
                "version": __version__,
                "endpoints": {
                    "/status": "Get complete system status",
                    "/devices/{device_id}": "Get specific servo status",
                    "/history": "Get command history",
                    "/faults": "Get (GET) or replace (PUT) the fault configuration",
                    "/stats/reset": "Reset counters and history (POST)",
                    "/health": "Health check",
                    "/docs": "Interactive API documentation",
                },
            }

        @self.app.get("/health", summary="Health check")
        async def health_check():
            status = self.monitor.get_system_status()
            return {
                "status": "healthy",
                "uptime": status["uptime_seconds"],
                "devices_count": len(status["devices"]),
                "requests_processed": status["dispatch"]["requests"],
            }

        @self.app.get("/status", summary="Get complete system status")
        async def get_status():
            return self.monitor.get_system_status()

        @self.app.get("/devices/{device_id}", summary="Get specific servo status")
        async def get_device_status(device_id: int):
            """
            Get registers and kinematic state of one servo.

            Raises:
                HTTPException: If no servo answers to device_id
            """
            status = self.monitor.get_device_status(device_id)
            if status is None:
                raise HTTPException(status_code=404, detail=f"Device {device_id} not found")
            return status

        @self.app.get("/history", summary="Get command history")
        async def get_command_history(device_id: Optional[int] = None, limit: int = 50):
            return {
                "history": self.monitor.get_command_history(device_id, limit),
                "total_commands": len(self.monitor.command_history),
                "filter": {"device_id": device_id, "limit": limit},
            }

        @self.app.get("/faults", summary="Get active fault configuration")
        async def get_faults():
            injector = self.monitor.injector
            return {
                "config": injector.config.to_dict(),
                "stats": injector.stats.to_dict(),
                "pending_transmissions": injector.pending,
            }

        @self.app.put("/faults", summary="Replace the fault configuration")
        async def put_faults(payload: FaultConfigPayload):
            """
            Swap the fault configuration wholesale. The random generator is
            reseeded and responses still held for delay are forgotten.
            """
            if self.fault_target is None:
                raise HTTPException(status_code=409, detail="Fault reload is not available")
            try:
                config = payload.to_fault_config()
            except ConfigurationError as e:
                raise HTTPException(status_code=422, detail=str(e))
            self.fault_target.reload_faults(config)
            return {"success": True, "config": config.to_dict()}

        @self.app.post("/stats/reset", summary="Reset counters and history")
        async def reset_stats():
            self.monitor.reset_stats()
            return {"success": True, "message": "Statistics reset"}

    async def start_server(self):
        """
        Start the HTTP debug server.

        Runs the server indefinitely until cancelled.
        """
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
        )
        server = uvicorn.Server(config)
        await server.serve()

    def get_server_info(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "base_url": f"http://{self.host}:{self.port}",
            "docs_url": f"http://{self.host}:{self.port}/docs",
            "status_url": f"http://{self.host}:{self.port}/status",
        }
