"""
Tests for Simulation Configuration loading
"""

import logging
from pathlib import Path

import pytest
import yaml

from greensched.config import (
    JOULES_PER_KWH,
    LedgerConfig,
    SimulationConfig,
    load_simulation_config,
)


def _write(tmp_path, data):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(data))
    return str(path)


class TestLoadSimulationConfig:
    """Test load_simulation_config."""

    def test_missing_file_uses_defaults(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            config = load_simulation_config(str(tmp_path / "missing.yaml"))
        assert config == SimulationConfig()
        assert "not found" in caplog.text

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_simulation_config(str(path)) == SimulationConfig()

    def test_invalid_yaml(self, tmp_path, caplog):
        path = tmp_path / "config.yaml"
        path.write_text("ledger: [unclosed\n")
        with caplog.at_level(logging.ERROR):
            config = load_simulation_config(str(path))
        assert config == SimulationConfig()
        assert "Failed to load config" in caplog.text

    def test_non_mapping_root(self, tmp_path):
        assert load_simulation_config(_write(tmp_path, [1, 2, 3])) == SimulationConfig()

    def test_sections_are_read(self, tmp_path):
        path = _write(
            tmp_path,
            {
                "ledger": {"validation_interval": 10, "strict_balance": True},
                "profile": {"interval_s": 900, "power_column": "power"},
                "rewards": {
                    "global": {"w1": 0.5, "ema_alpha": 0.1},
                    "local": {"a4": 0.3, "energy_scale_j": 500},
                },
                "normalizer": {"min_observations": 20},
                "oracle": {"base_url": "http://policy:8000", "seed": 7},
                "history": {"enabled": True, "db_path": "x.db"},
            },
        )

        config = load_simulation_config(path)

        assert config.ledger.validation_interval == 10
        assert config.ledger.strict_balance is True
        assert config.ledger.balance_tolerance_j == LedgerConfig.balance_tolerance_j
        assert config.profile.interval_s == 900.0
        assert config.profile.power_column == "power"
        assert config.global_reward.w1 == 0.5
        assert config.global_reward.ema_alpha == 0.1
        assert config.global_reward.w2 == 0.2
        assert config.local_reward.a4 == 0.3
        assert config.local_reward.energy_scale_j == 500.0
        assert config.normalizer.min_observations == 20
        assert config.oracle.base_url == "http://policy:8000"
        assert config.oracle.seed == 7
        assert config.history.enabled is True
        assert config.history.db_path == "x.db"

    def test_invalid_value_falls_back(self, tmp_path, caplog):
        path = _write(tmp_path, {"ledger": {"integration_step_s": "fast"}})
        with caplog.at_level(logging.WARNING):
            config = load_simulation_config(path)
        assert config.ledger.integration_step_s == LedgerConfig.integration_step_s
        assert "Invalid value for integration_step_s" in caplog.text

    def test_non_mapping_section_ignored(self, tmp_path):
        config = load_simulation_config(_write(tmp_path, {"ledger": "nope"}))
        assert config.ledger == LedgerConfig()

    def test_sites(self, tmp_path):
        path = _write(
            tmp_path,
            {
                "sites": [
                    {"name": "dc0", "profile_path": "solar.csv", "initial_stock_kwh": 0.5},
                    {"name": "dc1", "green_aware": False},
                    "not-a-site",
                    {"scaling_factor": 2},
                ]
            },
        )

        config = load_simulation_config(path)

        assert [s.name for s in config.sites] == ["dc0", "dc1", "site_3"]
        assert config.sites[0].initial_stock_j == pytest.approx(0.5 * JOULES_PER_KWH)
        assert config.sites[1].green_aware is False
        assert config.sites[1].profile_path is None
        assert config.sites[2].scaling_factor == 2.0

    def test_sample_config_parses(self):
        """The shipped config.yaml loads with three sites."""
        config = load_simulation_config(str(Path(__file__).resolve().parent.parent / "config.yaml"))
        assert [s.name for s in config.sites] == ["dc0", "dc1", "dc2"]
        assert config.sites[2].green_aware is False
