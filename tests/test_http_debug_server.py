import unittest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from scs_emulator import constants as const
from scs_emulator.bus_registry import BusRegistry
from scs_emulator.constants import Instruction
from scs_emulator.emulator import Emulator
from scs_emulator.fault_injector import FaultConfig
from scs_emulator.http_debug_server import DebugHTTPServer
from scs_emulator.packet_codec import serialize
from scs_emulator.servo import EmulatedServo


class TestDebugHTTPServer(unittest.TestCase):
    def setUp(self):
        self.registry = BusRegistry()
        self.registry.add_servo(EmulatedServo(1, initial_position=100))
        self.registry.add_servo(EmulatedServo(2))
        self.emulator = Emulator(self.registry, clock=lambda: 0.0)
        self.debug_server = DebugHTTPServer(self.emulator.monitor, fault_target=self.emulator)
        self.client = TestClient(self.debug_server.app)

    def test_root_endpoint(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["name"], "SCS Servo Emulator Debug API")
        self.assertIn("/faults", data["endpoints"])

    def test_health_endpoint(self):
        self.emulator.handle_inbound(serialize(1, Instruction.PING))
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["status"], "healthy")
        self.assertEqual(data["devices_count"], 2)
        self.assertEqual(data["requests_processed"], 1)

    def test_status_endpoint(self):
        response = self.client.get("/status")
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(set(data["devices"]), {"1", "2"})
        self.assertEqual(data["devices"]["1"]["registers"]["PRESENT_POSITION"], 100)

    def test_device_endpoint(self):
        response = self.client.get("/devices/2")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["id"], 2)

    def test_device_not_found(self):
        response = self.client.get("/devices/99")
        self.assertEqual(response.status_code, 404)
        self.assertIn("99", response.json()["detail"])

    def test_history_endpoint_with_filter(self):
        self.emulator.handle_inbound(serialize(1, Instruction.PING) + serialize(2, Instruction.PING))
        response = self.client.get("/history", params={"device_id": 2, "limit": 10})
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["total_commands"], 2)
        self.assertEqual([r["device_id"] for r in data["history"]], [2])

    def test_get_faults(self):
        response = self.client.get("/faults")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["config"], FaultConfig().to_dict())

    def test_put_faults_reloads(self):
        payload = {
            "packet_drop_rate": 0.5,
            "response_delay_range": [1, 2],
            "timeout_simulation": True,
            "timeout_device_ids": [2],
            "random_seed": 11,
        }
        response = self.client.put("/faults", json=payload)
        self.assertEqual(response.status_code, 200)
        config = self.emulator.injector.config
        self.assertEqual(config.packet_drop_rate, 0.5)
        self.assertEqual(config.response_delay_range, (1.0, 2.0))
        self.assertEqual(config.timeout_device_ids, frozenset({2}))
        self.assertEqual(config.random_seed, 11)

    def test_put_faults_invalid_rate(self):
        response = self.client.put("/faults", json={"packet_drop_rate": 1.5})
        self.assertEqual(response.status_code, 422)
        self.assertEqual(self.emulator.injector.config, FaultConfig())

    def test_put_faults_invalid_delay_range(self):
        response = self.client.put("/faults", json={"response_delay_range": [5, 1]})
        self.assertEqual(response.status_code, 422)

    def test_put_faults_wrong_type(self):
        response = self.client.put("/faults", json={"packet_drop_rate": "often"})
        self.assertEqual(response.status_code, 422)

    def test_put_faults_without_target(self):
        server = DebugHTTPServer(self.emulator.monitor)
        response = TestClient(server.app).put("/faults", json={})
        self.assertEqual(response.status_code, 409)

    def test_put_faults_uses_reload_faults(self):
        target = MagicMock()
        server = DebugHTTPServer(self.emulator.monitor, fault_target=target)
        response = TestClient(server.app).put("/faults", json={"checksum_corruption_rate": 0.25})
        self.assertEqual(response.status_code, 200)
        target.reload_faults.assert_called_once_with(FaultConfig(checksum_corruption_rate=0.25))

    def test_reset_stats(self):
        self.emulator.handle_inbound(serialize(1, Instruction.PING))
        response = self.client.post("/stats/reset")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["success"])
        self.assertEqual(self.client.get("/history").json()["total_commands"], 0)
        self.assertEqual(self.client.get("/status").json()["dispatch"]["requests"], 0)

    def test_server_info(self):
        info = self.debug_server.get_server_info()
        self.assertEqual(info["port"], const.DEFAULT_DEBUG_API_PORT)
        self.assertEqual(info["docs_url"], f"http://127.0.0.1:{const.DEFAULT_DEBUG_API_PORT}/docs")


if __name__ == "__main__":
    unittest.main()
