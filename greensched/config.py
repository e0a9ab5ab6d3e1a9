"""
Simulation Configuration

Loads and validates the greensched configuration from config.yaml.
Every section is optional; missing values fall back to the dataclass
defaults below.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

JOULES_PER_KWH = 3_600_000.0


@dataclass
class LedgerConfig:
    """Per-site green energy accounting parameters."""

    min_update_interval_s: float = 0.01  # Skip re-processing the same instant
    balance_tolerance_j: float = 0.01
    validation_interval: int = 100  # Validate balance every N consume calls
    integration_step_s: float = 60.0  # Max trapezoid sub-step
    initial_stock_j: float = 0.0
    scaling_factor: float = 1.0
    strict_balance: bool = False  # Raise instead of warn on balance violation


@dataclass
class ProfileConfig:
    """Generation profile CSV parsing parameters."""

    interval_s: float = 600.0  # Fixed cadence of the source column
    power_column: str = "OT"
    unit_scale: float = 1000.0  # kW -> W
    max_plausible_w: float = 1.0e7


@dataclass
class GlobalRewardConfig:
    """Site-selection tier reward weights."""

    w1: float = 0.6  # System green ratio
    w2: float = 0.2  # Target ratio vs. EMA baseline
    w3: float = 0.2  # Time penalty
    time_scale_s: float = 100.0
    ema_alpha: float = 0.05


@dataclass
class LocalRewardConfig:
    """Resource-selection tier reward weights."""

    a1: float = 0.40  # Wait time penalty
    a2: float = 0.40  # Execution time penalty
    a3: float = 0.20  # Total energy increment penalty
    a4: float = 0.10  # Green energy increment bonus
    time_scale_s: float = 100.0
    energy_scale_j: float = 1.0


@dataclass
class NormalizerConfig:
    """Default scales used until enough samples are observed."""

    min_observations: int = 100
    surplus_scale_j: float = 50_000.0
    stock_scale_j: float = 100_000.0
    mips_scale: float = 10_000.0
    cpu_requirement_scale: float = 100_000.0
    mem_requirement_scale_mb: float = 8192.0
    queue_length_scale: float = 50.0
    time_period_s: float = 3600.0


@dataclass
class OracleConfig:
    """External policy server connection."""

    base_url: str = "http://localhost:5001"
    timeout_s: float = 10.0
    agent_id: str = "global"
    seed: Optional[int] = None  # Seed for the random fallback


@dataclass
class SiteConfig:
    """One compute site."""

    name: str
    green_aware: bool = True
    profile_path: Optional[str] = None
    initial_stock_kwh: float = 0.0
    scaling_factor: float = 1.0

    @property
    def initial_stock_j(self) -> float:
        return self.initial_stock_kwh * JOULES_PER_KWH


@dataclass
class HistoryConfig:
    """Experience audit log settings."""

    enabled: bool = False
    db_path: str = "data/greensched_experience.db"
    timezone: str = "UTC"


@dataclass
class SimulationConfig:
    """Main configuration."""

    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    profile: ProfileConfig = field(default_factory=ProfileConfig)
    global_reward: GlobalRewardConfig = field(default_factory=GlobalRewardConfig)
    local_reward: LocalRewardConfig = field(default_factory=LocalRewardConfig)
    normalizer: NormalizerConfig = field(default_factory=NormalizerConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)
    sites: List[SiteConfig] = field(default_factory=list)
    history: HistoryConfig = field(default_factory=HistoryConfig)


def _as_float(data: Dict[str, Any], key: str, default: float) -> float:
    try:
        return float(data.get(key, default))
    except (TypeError, ValueError):
        logger.warning("Invalid value for %s: %r, using %s", key, data.get(key), default)
        return default


def _as_int(data: Dict[str, Any], key: str, default: int) -> int:
    try:
        return int(data.get(key, default))
    except (TypeError, ValueError):
        logger.warning("Invalid value for %s: %r, using %s", key, data.get(key), default)
        return default


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        logger.warning("Config section %s is not a mapping, ignoring", key)
        return {}
    return value


def _parse_sites(raw: Any) -> List[SiteConfig]:
    if not isinstance(raw, list):
        return []

    sites = []
    for idx, entry in enumerate(raw):
        if not isinstance(entry, dict):
            logger.warning("Skipping site entry %d: not a mapping", idx)
            continue
        sites.append(
            SiteConfig(
                name=str(entry.get("name", f"site_{idx}")),
                green_aware=bool(entry.get("green_aware", True)),
                profile_path=entry.get("profile_path") or None,
                initial_stock_kwh=_as_float(entry, "initial_stock_kwh", 0.0),
                scaling_factor=_as_float(entry, "scaling_factor", 1.0),
            )
        )
    return sites


def load_simulation_config(config_path: str = "config.yaml") -> SimulationConfig:
    """
    Load simulation configuration from config.yaml.

    Falls back to defaults if the file or any section is missing.
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file not found at %s, using defaults", config_path)
        return SimulationConfig()
    except (OSError, yaml.YAMLError) as e:
        logger.error("Failed to load config: %s", e)
        return SimulationConfig()

    if not isinstance(data, dict):
        logger.error("Config root in %s is not a mapping, using defaults", config_path)
        return SimulationConfig()

    ledger_data = _section(data, "ledger")
    ledger = LedgerConfig(
        min_update_interval_s=_as_float(
            ledger_data, "min_update_interval_s", LedgerConfig.min_update_interval_s
        ),
        balance_tolerance_j=_as_float(
            ledger_data, "balance_tolerance_j", LedgerConfig.balance_tolerance_j
        ),
        validation_interval=_as_int(
            ledger_data, "validation_interval", LedgerConfig.validation_interval
        ),
        integration_step_s=_as_float(
            ledger_data, "integration_step_s", LedgerConfig.integration_step_s
        ),
        initial_stock_j=_as_float(ledger_data, "initial_stock_j", LedgerConfig.initial_stock_j),
        scaling_factor=_as_float(ledger_data, "scaling_factor", LedgerConfig.scaling_factor),
        strict_balance=bool(ledger_data.get("strict_balance", LedgerConfig.strict_balance)),
    )

    profile_data = _section(data, "profile")
    profile = ProfileConfig(
        interval_s=_as_float(profile_data, "interval_s", ProfileConfig.interval_s),
        power_column=str(profile_data.get("power_column", ProfileConfig.power_column)),
        unit_scale=_as_float(profile_data, "unit_scale", ProfileConfig.unit_scale),
        max_plausible_w=_as_float(profile_data, "max_plausible_w", ProfileConfig.max_plausible_w),
    )

    rewards_data = _section(data, "rewards")
    global_data = _section(rewards_data, "global")
    global_reward = GlobalRewardConfig(
        w1=_as_float(global_data, "w1", GlobalRewardConfig.w1),
        w2=_as_float(global_data, "w2", GlobalRewardConfig.w2),
        w3=_as_float(global_data, "w3", GlobalRewardConfig.w3),
        time_scale_s=_as_float(global_data, "time_scale_s", GlobalRewardConfig.time_scale_s),
        ema_alpha=_as_float(global_data, "ema_alpha", GlobalRewardConfig.ema_alpha),
    )

    local_data = _section(rewards_data, "local")
    local_reward = LocalRewardConfig(
        a1=_as_float(local_data, "a1", LocalRewardConfig.a1),
        a2=_as_float(local_data, "a2", LocalRewardConfig.a2),
        a3=_as_float(local_data, "a3", LocalRewardConfig.a3),
        a4=_as_float(local_data, "a4", LocalRewardConfig.a4),
        time_scale_s=_as_float(local_data, "time_scale_s", LocalRewardConfig.time_scale_s),
        energy_scale_j=_as_float(local_data, "energy_scale_j", LocalRewardConfig.energy_scale_j),
    )

    norm_data = _section(data, "normalizer")
    normalizer = NormalizerConfig(
        min_observations=_as_int(
            norm_data, "min_observations", NormalizerConfig.min_observations
        ),
        surplus_scale_j=_as_float(norm_data, "surplus_scale_j", NormalizerConfig.surplus_scale_j),
        stock_scale_j=_as_float(norm_data, "stock_scale_j", NormalizerConfig.stock_scale_j),
        mips_scale=_as_float(norm_data, "mips_scale", NormalizerConfig.mips_scale),
        cpu_requirement_scale=_as_float(
            norm_data, "cpu_requirement_scale", NormalizerConfig.cpu_requirement_scale
        ),
        mem_requirement_scale_mb=_as_float(
            norm_data, "mem_requirement_scale_mb", NormalizerConfig.mem_requirement_scale_mb
        ),
        queue_length_scale=_as_float(
            norm_data, "queue_length_scale", NormalizerConfig.queue_length_scale
        ),
        time_period_s=_as_float(norm_data, "time_period_s", NormalizerConfig.time_period_s),
    )

    oracle_data = _section(data, "oracle")
    oracle = OracleConfig(
        base_url=str(oracle_data.get("base_url", OracleConfig.base_url)),
        timeout_s=_as_float(oracle_data, "timeout_s", OracleConfig.timeout_s),
        agent_id=str(oracle_data.get("agent_id", OracleConfig.agent_id)),
        seed=_as_int(oracle_data, "seed", 0) if oracle_data.get("seed") is not None else None,
    )

    history_data = _section(data, "history")
    history = HistoryConfig(
        enabled=bool(history_data.get("enabled", HistoryConfig.enabled)),
        db_path=str(history_data.get("db_path", HistoryConfig.db_path)),
        timezone=str(history_data.get("timezone", HistoryConfig.timezone)),
    )

    sites = _parse_sites(data.get("sites"))
    if not sites:
        logger.info("No sites configured in %s", config_path)

    return SimulationConfig(
        ledger=ledger,
        profile=profile,
        global_reward=global_reward,
        local_reward=local_reward,
        normalizer=normalizer,
        oracle=oracle,
        sites=sites,
        history=history,
    )
