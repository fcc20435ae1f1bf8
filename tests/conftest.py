"""
Shared test fixtures for the SCS servo bus emulator.

The fixtures build a bus of three servos and, for loop tests, an emulator
sitting behind an in-memory LoopbackTransport driven by a manual clock, so
timing-dependent behavior (kinematics, delayed responses) can be tested
without sleeping.

## Usage Patterns

### Wire-level compliance:
```python
@pytest.mark.compliance
class TestFraming:
    def test_ping(self, emulator, clock):
        emulator.handle_inbound(serialize(1, Instruction.PING))
        assert emulator.flush_due() == [serialize(1, STATUS_OK)]
```

### Loop over a transport:
```python
@pytest.mark.integration
class TestLoop:
    @pytest.mark.asyncio
    async def test_roundtrip(self, running_emulator, loopback):
        loopback.send(serialize(1, Instruction.PING))
        assert await loopback.wait_for_output(6) == serialize(1, STATUS_OK)
```
"""

import asyncio

import pytest
import pytest_asyncio

from scs_emulator import BusRegistry, EmulatedServo, Emulator, LoopbackTransport
from scs_emulator.fault_injector import FaultConfig


SERVO_IDS = (1, 2, 3)
TEST_VELOCITY_LIMIT = 100.0  # units per second


def pytest_configure(config):
    config.addinivalue_line("markers", "compliance: wire-level protocol property tests")
    config.addinivalue_line("markers", "integration: emulator loop over a transport")


class ManualClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def clock_factory():
    """For tests that need several independent clocks."""
    return ManualClock


@pytest.fixture
def registry():
    """A bus with servos 1, 2 and 3 resting at position 0."""
    bus = BusRegistry()
    for device_id in SERVO_IDS:
        bus.add_servo(EmulatedServo(device_id, initial_position=0, velocity_limit=TEST_VELOCITY_LIMIT))
    return bus


@pytest.fixture
def fault_config():
    """No faults. Override in a test module to run the loop with a policy."""
    return FaultConfig()


@pytest.fixture
def emulator(registry, fault_config, clock):
    """Emulator without a transport, driven through its synchronous core."""
    return Emulator(registry, fault_config=fault_config, clock=clock)


@pytest_asyncio.fixture
async def loopback():
    return LoopbackTransport()


@pytest_asyncio.fixture
async def running_emulator(registry, fault_config, loopback):
    """Emulator running its reader and tick tasks over the loopback transport."""
    emu = Emulator(registry, loopback, fault_config, tick_interval=0.001)
    task = asyncio.create_task(emu.run())
    await asyncio.sleep(0)
    yield emu
    await emu.stop()
    await asyncio.gather(task, return_exceptions=True)
