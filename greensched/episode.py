"""
Episode Lifecycle

Begins and ends training episodes: resets per-episode state, tells the
oracle, collects the energy statistics at the end and reports them.
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .scheduler import HierarchicalScheduler
from .sites import SiteRegistry

logger = logging.getLogger(__name__)


@dataclass
class EpisodeStats:
    """Energy totals over all green-aware sites for one episode (Joules)."""

    total_green_initial: float = 0.0
    total_green_used: float = 0.0
    total_energy_used: float = 0.0
    total_generation: float = 0.0
    total_green_resource: float = 0.0
    total_surplus: float = 0.0
    green_energy_ratio: float = 0.0  # % of used energy that was green
    green_utilization_ratio: float = 0.0  # % of available green energy used
    makespan: float = 0.0
    total_reward: float = 0.0

    def to_metrics(self) -> Dict[str, float]:
        """Payload keys expected by the policy server's metrics endpoint."""
        return {
            "totalInitial": self.total_green_initial,
            "greenUsed": self.total_green_used,
            "totalUsed": self.total_energy_used,
            "greenRatio": self.green_energy_ratio,
            "ratio": self.green_utilization_ratio,
            "totalReward": self.total_reward,
            "totalGreenEnergyResource": self.total_green_resource,
            "totalSurplus": self.total_surplus,
            "makespan": self.makespan,
        }


def collect_episode_stats(
    sites: SiteRegistry, makespan: float = 0.0, total_reward: float = 0.0
) -> EpisodeStats:
    stats = EpisodeStats(makespan=makespan, total_reward=total_reward)

    for ledger in sites.ledgers():
        snapshot = ledger.snapshot()
        stats.total_green_initial += ledger.initial_stock
        stats.total_green_used += snapshot.green_used_j
        stats.total_energy_used += snapshot.total_used_j
        stats.total_generation += snapshot.generated_j
        stats.total_surplus += snapshot.surplus_j

    stats.total_green_resource = stats.total_green_initial + stats.total_generation
    if stats.total_energy_used > 0:
        stats.green_energy_ratio = stats.total_green_used / stats.total_energy_used * 100
    if stats.total_green_resource > 0:
        stats.green_utilization_ratio = stats.total_green_used / stats.total_green_resource * 100
    return stats


class EpisodeLifecycle:
    """Drives begin/end of episodes around a scheduler."""

    def __init__(
        self,
        scheduler: HierarchicalScheduler,
        results_dir: Optional[Union[str, Path]] = None,
    ):
        self.scheduler = scheduler
        self.context = scheduler.context
        self.results_dir = Path(results_dir) if results_dir else None
        self.active = False

    def begin(self, expected_tasks: int, start_time: float = 0.0, reset_ledgers: bool = True) -> int:
        """Start the next episode and return its number (1-based)."""
        ctx = self.context
        if self.active:
            logger.warning("Episode %d was not ended before a new one began", ctx.episode)

        ctx.episode += 1
        ctx.reset_decisions()
        ctx.global_progress.begin(expected_tasks)
        ctx.local_progress.begin(expected_tasks)
        self.scheduler.reset_episode()
        if reset_ledgers:
            ctx.sites.reset(start_time)

        ctx.oracle.start_episode()
        self.active = True
        logger.info("========== Episode %d started (%d tasks) ==========", ctx.episode, expected_tasks)
        return ctx.episode

    def end(self, makespan: Optional[float] = None) -> EpisodeStats:
        """Raise the ending signal, report statistics and close the episode."""
        ctx = self.context
        ctx.global_progress.signal_ending()
        ctx.local_progress.signal_ending()
        self.scheduler.process_completions()

        total_reward = self.scheduler.global_rewards.episode_reward_sum
        stats = collect_episode_stats(
            ctx.sites,
            makespan=makespan if makespan is not None else self.scheduler.status.last_completion_at,
            total_reward=total_reward,
        )

        if self.results_dir is not None:
            self._save_results(stats)

        ctx.oracle.log_episode_metrics(ctx.episode, stats.to_metrics())
        ctx.oracle.end_episode()
        self.active = False

        logger.info(
            "Episode %d: Total Reward = %.4f, Green Ratio = %.2f%%, Makespan = %.1fs",
            ctx.episode,
            total_reward,
            stats.green_energy_ratio,
            stats.makespan,
        )
        return stats

    def _save_results(self, stats: EpisodeStats) -> Path:
        ctx = self.context
        self.results_dir.mkdir(parents=True, exist_ok=True)
        path = self.results_dir / f"episode_{ctx.episode:03d}_results.json"
        results: Dict[str, Any] = {
            "episode": ctx.episode,
            "totalReward": stats.total_reward,
            "stats": asdict(stats),
            "localRewardSum": self.scheduler.local_rewards.episode_reward_sum,
            "baselines": {str(k): v for k, v in ctx.baseline.as_dict().items()},
            "timestamp": datetime.now().isoformat(),
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(results, f, indent=2)
        logger.info("Saved episode results to %s", path)
        return path
