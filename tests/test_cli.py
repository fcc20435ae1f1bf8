"""
Tests for the command-line entry point. The emulator itself is replaced
with a mock so no sockets or serial ports are opened.
"""

import pytest
from click.testing import CliRunner

from scs_emulator import cli
from scs_emulator.config import ConfigurationManager, create_default_config
from scs_emulator.fault_injector import FaultConfig


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def run_emulator(mocker):
    return mocker.patch("scs_emulator.cli.run_emulator", new_callable=mocker.AsyncMock)


def test_help(runner):
    result = runner.invoke(cli.main, ["--help"])
    assert result.exit_code == 0
    assert "--drop-rate" in result.output
    assert "--timeout-id" in result.output


def test_builds_config_from_options(runner, run_emulator, tmp_path):
    result = runner.invoke(cli.main, [
        "--config-dir", str(tmp_path),
        "--num-servos", "3",
        "--start-id", "5",
        "--velocity-limit", "250",
        "--port", "7001",
        "--drop-rate", "0.1",
        "--delay-min-ms", "1",
        "--delay-max-ms", "3",
        "--timeout-id", "6",
        "--seed", "42",
    ])
    assert result.exit_code == 0, result.output
    (config,), _ = run_emulator.call_args
    assert [s.device_id for s in config.servos] == [5, 6, 7]
    assert config.servos[0].velocity_limit == 250.0
    assert config.port == 7001
    assert config.faults == FaultConfig(
        packet_drop_rate=0.1,
        response_delay_range=(1.0, 3.0),
        timeout_simulation=True,
        timeout_device_ids=frozenset({6}),
        random_seed=42,
    )


def test_invalid_fault_option_is_reported(runner, run_emulator, tmp_path):
    result = runner.invoke(cli.main, ["--config-dir", str(tmp_path), "--drop-rate", "2"])
    assert result.exit_code != 0
    assert "packet_drop_rate" in result.output
    run_emulator.assert_not_called()


def test_serial_transport_requires_port(runner, run_emulator, tmp_path):
    result = runner.invoke(cli.main, ["--config-dir", str(tmp_path), "--transport", "serial"])
    assert result.exit_code != 0
    run_emulator.assert_not_called()


def test_save_and_load_profile(runner, run_emulator, tmp_path):
    result = runner.invoke(cli.main, [
        "--config-dir", str(tmp_path), "--num-servos", "2", "--seed", "9", "--save-config", "bench",
    ])
    assert result.exit_code == 0, result.output
    assert ConfigurationManager(str(tmp_path)).list_profiles() == ["bench"]

    result = runner.invoke(cli.main, ["--config-dir", str(tmp_path), "--config-profile", "bench"])
    assert result.exit_code == 0, result.output
    (config,), _ = run_emulator.call_args
    assert len(config.servos) == 2
    assert config.faults.random_seed == 9


def test_profile_overrides_options(runner, run_emulator, tmp_path):
    saved = create_default_config(num_servos=1, start_id=12)
    ConfigurationManager(str(tmp_path)).save_config(saved, "single")
    result = runner.invoke(cli.main, [
        "--config-dir", str(tmp_path), "--config-profile", "single", "--num-servos", "4",
    ])
    assert result.exit_code == 0, result.output
    (config,), _ = run_emulator.call_args
    assert [s.device_id for s in config.servos] == [12]


def test_missing_profile_fails(runner, run_emulator, tmp_path):
    result = runner.invoke(cli.main, ["--config-dir", str(tmp_path), "--config-profile", "nope"])
    assert result.exit_code != 0
    run_emulator.assert_not_called()


def test_list_profiles(runner, run_emulator, tmp_path):
    manager = ConfigurationManager(str(tmp_path))
    manager.save_config(create_default_config(), "b")
    manager.save_config(create_default_config(), "a")
    result = runner.invoke(cli.main, ["--config-dir", str(tmp_path), "--list-profiles"])
    assert result.exit_code == 0
    assert result.output.split() == ["a", "b"]
    run_emulator.assert_not_called()
