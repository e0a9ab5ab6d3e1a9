"""
greensched Package

Green/brown energy accounting and a two-tier (site, resource)
scheduling feedback loop for a learning policy served over HTTP.

Modules:
    profile: Renewable generation profiles and CSV loading
    ledger: Per-site green energy ledger
    sites: Plain and green-aware compute sites
    normalizer: Adaptive state feature normalization
    features: Global and local state vector builders
    tracker: Pending decisions and episode progress
    rewards: Reward strategies and completion handling
    oracle: HTTP client for the policy server
    scheduler: Hierarchical scheduler wiring the tiers together
    context: Per-run simulation context
    episode: Episode lifecycle and statistics
    history: Experience audit log
"""

from .config import SimulationConfig, load_simulation_config
from .context import SimulationContext
from .episode import EpisodeLifecycle, EpisodeStats
from .ledger import EnergyLedger
from .profile import GenerationProfile, load_profile_csv
from .scheduler import HierarchicalScheduler, Task

__all__ = [
    "EnergyLedger",
    "EpisodeLifecycle",
    "EpisodeStats",
    "GenerationProfile",
    "HierarchicalScheduler",
    "SimulationConfig",
    "SimulationContext",
    "Task",
    "load_profile_csv",
    "load_simulation_config",
]
