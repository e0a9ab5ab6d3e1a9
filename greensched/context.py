"""
Simulation Context

Everything one simulation run owns: configuration, sites and their
ledgers, normalizers, per-tier trackers and progress counters, reward
baselines, the oracle client and the optional experience history.
Components receive the context instead of reaching for module-level
state.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import requests

from .config import SimulationConfig
from .history import ExperienceHistory
from .normalizer import StateNormalizer
from .oracle import OracleClient
from .rewards import EMABaseline
from .sites import SiteRegistry
from .tracker import DecisionTracker, EpisodeProgress

logger = logging.getLogger(__name__)

GLOBAL_TIER = "global"
LOCAL_TIER = "local"


@dataclass
class SimulationContext:
    config: SimulationConfig
    sites: SiteRegistry
    oracle: OracleClient
    global_normalizer: StateNormalizer
    local_normalizer: StateNormalizer
    global_tracker: DecisionTracker = field(default_factory=lambda: DecisionTracker(GLOBAL_TIER))
    local_tracker: DecisionTracker = field(default_factory=lambda: DecisionTracker(LOCAL_TIER))
    global_progress: EpisodeProgress = field(default_factory=lambda: EpisodeProgress(GLOBAL_TIER))
    local_progress: EpisodeProgress = field(default_factory=lambda: EpisodeProgress(LOCAL_TIER))
    baseline: Optional[EMABaseline] = None
    history: Optional[ExperienceHistory] = None
    episode: int = 0

    def __post_init__(self) -> None:
        if self.baseline is None:
            self.baseline = EMABaseline(self.config.global_reward.ema_alpha)

    @classmethod
    def from_config(
        cls,
        config: SimulationConfig,
        sites: Optional[SiteRegistry] = None,
        session: Optional[requests.Session] = None,
    ) -> "SimulationContext":
        """Build a run context; sites default to the configured ones."""
        history = None
        if config.history.enabled:
            history = ExperienceHistory(config.history.db_path, config.history.timezone)

        return cls(
            config=config,
            sites=sites if sites is not None else SiteRegistry.from_config(config),
            oracle=OracleClient(config.oracle, session=session),
            global_normalizer=StateNormalizer(config.normalizer),
            local_normalizer=StateNormalizer(config.normalizer),
            history=history,
        )

    def reset_decisions(self) -> None:
        """Drop unresolved decisions from a previous episode."""
        self.global_tracker.clear()
        self.local_tracker.clear()
