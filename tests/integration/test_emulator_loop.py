"""
Integration tests: the emulator loop running its reader and tick tasks
over real transports.
"""

import asyncio

import pytest

from scs_emulator import constants as const
from scs_emulator.constants import Instruction
from scs_emulator.emulator import Emulator, TcpEmulatorServer
from scs_emulator.exceptions import TransportClosed
from scs_emulator.fault_injector import FaultConfig
from scs_emulator.packet_codec import serialize

ACK_1 = serialize(1, const.STATUS_OK)


def read_request(device_id, address, count):
    return serialize(device_id, Instruction.READ, bytes([address, count]))


@pytest.mark.integration
class TestLoopbackLoop:
    @pytest.mark.asyncio
    async def test_ping_roundtrip(self, running_emulator, loopback):
        loopback.send(serialize(1, Instruction.PING))
        assert await loopback.wait_for_output(len(ACK_1)) == ACK_1

    @pytest.mark.asyncio
    async def test_request_split_across_reads(self, running_emulator, loopback):
        frame = read_request(2, const.ADDR_ID, 1)
        loopback.send(frame[:2])
        await asyncio.sleep(0.01)
        loopback.send(frame[2:5])
        await asyncio.sleep(0.01)
        loopback.send(frame[5:])
        assert await loopback.wait_for_output(7) == serialize(2, const.STATUS_OK, b"\x02")

    @pytest.mark.asyncio
    async def test_tick_task_moves_servo_without_traffic(self, running_emulator, loopback, registry):
        goal = serialize(1, Instruction.WRITE, bytes([const.ADDR_GOAL_POSITION, 20, 0]))
        loopback.send(goal)
        assert await loopback.wait_for_output(6) == ACK_1
        await asyncio.sleep(0.5)
        loopback.send(read_request(1, const.ADDR_PRESENT_POSITION, 2))
        response = await loopback.wait_for_output(8)
        assert response == serialize(1, const.STATUS_OK, bytes([20, 0]))
        assert not registry.servo(1).model.is_moving

    @pytest.mark.asyncio
    async def test_broadcast_produces_no_bytes(self, running_emulator, loopback):
        loopback.send(serialize(const.BROADCAST_ID, Instruction.PING))
        assert await loopback.wait_for_output(1, timeout=0.05) == b""


@pytest.mark.integration
class TestLifecycle:
    @pytest.mark.asyncio
    async def test_transport_loss_ends_run(self, registry, loopback):
        emulator = Emulator(registry, loopback)
        task = asyncio.create_task(emulator.run())
        await asyncio.sleep(0.01)
        loopback.disconnect()
        with pytest.raises(TransportClosed):
            await asyncio.wait_for(task, 1.0)
        assert not emulator.running
        assert loopback.closed

    @pytest.mark.asyncio
    async def test_stop_discards_delayed_responses(self, registry, loopback):
        emulator = Emulator(registry, loopback, FaultConfig(response_delay_range=(500.0, 500.0)))
        task = asyncio.create_task(emulator.run())
        loopback.send(serialize(1, Instruction.PING))
        await asyncio.sleep(0.02)
        assert emulator.injector.pending == 1
        await emulator.stop()
        await asyncio.wait_for(task, 1.0)
        assert emulator.injector.pending == 0
        assert emulator.injector.stats.discarded_on_shutdown == 1
        assert loopback.take_output() == b""

    @pytest.mark.asyncio
    async def test_delayed_response_is_sent_by_tick_task(self, registry, loopback):
        emulator = Emulator(registry, loopback, FaultConfig(response_delay_range=(30.0, 30.0)))
        task = asyncio.create_task(emulator.run())
        loop = asyncio.get_running_loop()
        started = loop.time()
        loopback.send(serialize(1, Instruction.PING))
        assert await loopback.wait_for_output(6, timeout=1.0) == ACK_1
        assert loop.time() - started >= 0.025
        await emulator.stop()
        await task

    @pytest.mark.asyncio
    async def test_reload_faults_while_running(self, running_emulator, loopback):
        running_emulator.reload_faults(FaultConfig(timeout_simulation=True))
        loopback.send(serialize(1, Instruction.PING))
        assert await loopback.wait_for_output(1, timeout=0.05) == b""
        running_emulator.reload_faults(FaultConfig())
        loopback.send(serialize(1, Instruction.PING))
        assert await loopback.wait_for_output(6) == ACK_1

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, running_emulator):
        await running_emulator.stop()
        await running_emulator.stop()
        assert not running_emulator.running


@pytest.mark.integration
class TestTcpServer:
    @pytest.mark.asyncio
    async def test_client_roundtrip(self, registry):
        server = TcpEmulatorServer(registry, "127.0.0.1", 0)
        await server.start()
        serve_task = asyncio.create_task(server.serve_forever())
        try:
            reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
            writer.write(serialize(1, Instruction.PING) + read_request(3, const.ADDR_ID, 1))
            await writer.drain()
            assert await asyncio.wait_for(reader.readexactly(6), 1.0) == ACK_1
            assert await asyncio.wait_for(reader.readexactly(7), 1.0) == serialize(3, const.STATUS_OK, b"\x03")
            history = server.monitor.get_command_history()
            assert [r["device_id"] for r in history] == [1, 3]
            writer.close()
            await writer.wait_closed()
        finally:
            await server.close()
            serve_task.cancel()
            await asyncio.gather(serve_task, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_faults_apply_to_every_connection(self, registry):
        server = TcpEmulatorServer(registry, "127.0.0.1", 0, fault_config=FaultConfig(packet_drop_rate=1.0))
        await server.start()
        serve_task = asyncio.create_task(server.serve_forever())
        try:
            reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
            writer.write(serialize(1, Instruction.PING))
            await writer.drain()
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(reader.readexactly(6), 0.1)
            server.reload_faults(FaultConfig())
            writer.write(serialize(1, Instruction.PING))
            await writer.drain()
            assert await asyncio.wait_for(reader.readexactly(6), 1.0) == ACK_1
            writer.close()
            await writer.wait_closed()
        finally:
            await server.close()
            serve_task.cancel()
            await asyncio.gather(serve_task, return_exceptions=True)
