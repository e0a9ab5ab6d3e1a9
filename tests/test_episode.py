"""
Tests for the Episode Lifecycle and end-of-episode statistics
"""

import json
from unittest.mock import MagicMock

import pytest

from greensched.config import SimulationConfig
from greensched.context import SimulationContext
from greensched.episode import EpisodeLifecycle, collect_episode_stats
from greensched.ledger import EnergyLedger
from greensched.normalizer import StateNormalizer
from greensched.oracle import ActionResponse, OracleClient
from greensched.profile import GenerationProfile, GenerationSample
from greensched.rewards import CompletionEvent
from greensched.scheduler import HierarchicalScheduler, Task
from greensched.sites import GreenAwareSite, PlainSite, Resource, SiteRegistry


def _ledger(name, stock, power):
    profile = GenerationProfile([GenerationSample(0.0, power), GenerationSample(1e6, power)], name=name)
    return EnergyLedger(profile, initial_stock_j=stock, name=name)


@pytest.fixture
def sites():
    return SiteRegistry(
        [
            GreenAwareSite("dc0", resources=[Resource("h0")], ledger=_ledger("dc0", 100.0, 10.0)),
            GreenAwareSite("dc1", resources=[Resource("h0")], ledger=_ledger("dc1", 0.0, 0.0)),
            PlainSite("grid", resources=[Resource("h0")]),
        ]
    )


@pytest.fixture
def oracle():
    mock = MagicMock(spec=OracleClient)
    mock.select_action.return_value = ActionResponse(action=0)
    mock.select_action_local.return_value = ActionResponse(action=0)
    return mock


@pytest.fixture
def lifecycle(sites, oracle, tmp_path):
    config = SimulationConfig()
    context = SimulationContext(
        config=config,
        sites=sites,
        oracle=oracle,
        global_normalizer=StateNormalizer(),
        local_normalizer=StateNormalizer(),
    )
    return EpisodeLifecycle(HierarchicalScheduler(context), results_dir=tmp_path / "results")


class TestCollectEpisodeStats:
    def test_totals_and_percentages(self, sites):
        # dc0: 100 J stock + 100 J generated, 300 J demand -> 200 green
        # dc1: 0 stock, 100 J demand -> all brown
        sites.tick(10.0, {"dc0": 30.0, "dc1": 10.0, "grid": 1e6})

        stats = collect_episode_stats(sites, makespan=10.0, total_reward=1.5)

        assert stats.total_green_initial == pytest.approx(100.0)
        assert stats.total_generation == pytest.approx(100.0)
        assert stats.total_green_resource == pytest.approx(200.0)
        assert stats.total_green_used == pytest.approx(200.0)
        assert stats.total_energy_used == pytest.approx(400.0)
        assert stats.green_energy_ratio == pytest.approx(50.0)
        assert stats.green_utilization_ratio == pytest.approx(100.0)
        assert stats.total_surplus == pytest.approx(100.0 - 300.0 - 100.0)

    def test_no_energy_used(self, sites):
        stats = collect_episode_stats(sites)
        assert stats.green_energy_ratio == 0.0
        assert stats.total_energy_used == 0.0

    def test_metrics_payload_keys(self, sites):
        metrics = collect_episode_stats(sites).to_metrics()
        assert set(metrics) == {
            "totalInitial",
            "greenUsed",
            "totalUsed",
            "greenRatio",
            "ratio",
            "totalReward",
            "totalGreenEnergyResource",
            "totalSurplus",
            "makespan",
        }


class TestEpisodeLifecycle:
    """Test begin/end around a scheduler."""

    def test_begin_resets_and_notifies(self, lifecycle, oracle, sites):
        sites.tick(5.0, {"dc0": 100.0})
        episode = lifecycle.begin(expected_tasks=3)

        assert episode == 1
        oracle.start_episode.assert_called_once()
        assert lifecycle.context.global_progress.expected == 3
        assert sites.system_snapshot().total_used_j == 0.0
        assert sites[0].ledger.current_stock() == 100.0

    def test_unresolved_decisions_dropped_on_begin(self, lifecycle):
        lifecycle.begin(expected_tasks=2)
        lifecycle.scheduler.schedule(Task("t1"), now=0.0)
        lifecycle.begin(expected_tasks=2)
        assert len(lifecycle.context.global_tracker) == 0

    def test_end_reports_and_saves(self, lifecycle, oracle, tmp_path):
        lifecycle.begin(expected_tasks=5)
        scheduler = lifecycle.scheduler
        scheduler.schedule(Task("t1"), now=0.0)
        scheduler.on_tick(10.0, {"dc0": 30.0})
        scheduler.post_completion(CompletionEvent("t1", 12.0))

        stats = lifecycle.end()

        # Pending completion is drained under the ending signal, so it is terminal
        experience = oracle.store_experience.call_args.args[0]
        assert experience.done is True
        assert stats.makespan == 12.0
        assert stats.total_reward == pytest.approx(scheduler.global_rewards.episode_reward_sum)

        oracle.log_episode_metrics.assert_called_once_with(1, stats.to_metrics())
        oracle.end_episode.assert_called_once()

        path = tmp_path / "results" / "episode_001_results.json"
        saved = json.loads(path.read_text())
        assert saved["episode"] == 1
        assert saved["stats"]["makespan"] == 12.0
        assert "dc0" in saved["baselines"]

    def test_explicit_makespan(self, lifecycle):
        lifecycle.begin(expected_tasks=0)
        assert lifecycle.end(makespan=99.0).makespan == 99.0

    def test_episode_counter(self, lifecycle):
        lifecycle.begin(1)
        lifecycle.end()
        assert lifecycle.begin(1) == 2
