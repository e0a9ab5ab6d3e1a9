"""
Reward Computation

Resolves a pending decision when its task completes: computes the
tier's reward over the window [decision time, completion time] from the
energy snapshots, sets the done flag and hands the resulting experience
to the submitter.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence, Tuple

from .config import GlobalRewardConfig, LocalRewardConfig
from .normalizer import sanitize_vector
from .tracker import DecisionTracker, EnergySnapshot, EpisodeProgress, PendingDecision

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionEvent:
    """A task finished at completion_time, as reported by the execution engine."""

    task_id: Hashable
    completion_time: float
    wait_time: float = 0.0
    exec_time: float = 0.0


@dataclass
class Experience:
    """One (state, action, reward, next state, done) transition for the policy."""

    state: List[float]
    action: int
    reward: float
    next_state: List[float]
    done: bool
    log_prob: float = 0.0
    value: float = 0.0
    task_id: Hashable = None
    target: Optional[str] = None
    decision_time: float = 0.0
    completion_time: float = 0.0

    def to_payload(self) -> Dict[str, Any]:
        return {
            "state": list(self.state),
            "action": int(self.action),
            "reward": float(self.reward),
            "nextState": list(self.next_state),
            "done": bool(self.done),
            "log_prob": float(self.log_prob),
            "value": float(self.value),
        }


class EMABaseline:
    """Per-target exponential moving average of a green ratio."""

    def __init__(self, alpha: float = 0.05, initial: float = 0.0):
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = alpha
        self.initial = initial
        self._values: Dict[Hashable, float] = {}

    def get(self, target: Hashable) -> float:
        return self._values.get(target, self.initial)

    def update(self, target: Hashable, ratio: float) -> float:
        """Blend ratio into the target's baseline and return the new value."""
        new = (1.0 - self.alpha) * self.get(target) + self.alpha * ratio
        self._values[target] = new
        return new

    def set(self, target: Hashable, value: float) -> None:
        self._values[target] = value

    def as_dict(self) -> Dict[Hashable, float]:
        return dict(self._values)


def _window_ratio(start: EnergySnapshot, end: EnergySnapshot) -> float:
    d_green = end.green_used_j - start.green_used_j
    d_total = end.total_used_j - start.total_used_j
    return d_green / d_total if d_total > 0 else 0.0


class RewardStrategy(ABC):
    """Computes a tier's reward for a resolved decision."""

    name = "base"

    @abstractmethod
    def compute(
        self,
        decision: PendingDecision,
        event: CompletionEvent,
        system_end: EnergySnapshot,
        target_end: EnergySnapshot,
    ) -> float:
        """Reward for `decision` given the snapshots at completion."""


class GlobalGreenReward(RewardStrategy):
    """
    Site-selection reward:

        W1 * ratio_sys + W2 * (ratio_target - baseline_old) - W3 * time_penalty

    The target's EMA baseline is advanced after it is read.
    """

    name = "global"

    def __init__(self, config: Optional[GlobalRewardConfig] = None, baseline: Optional[EMABaseline] = None):
        self.config = config or GlobalRewardConfig()
        if self.config.time_scale_s <= 0:
            raise ValueError("time_scale_s must be positive")
        self.baseline = baseline or EMABaseline(self.config.ema_alpha)

    def compute(self, decision, event, system_end, target_end) -> float:
        cfg = self.config
        duration = max(0.0, event.completion_time - decision.decision_time)
        time_penalty = min(1.0, duration / cfg.time_scale_s)

        ratio_sys = _window_ratio(decision.system_snapshot, system_end)
        ratio_target = _window_ratio(decision.target_snapshot, target_end)

        key = decision.target if decision.target is not None else decision.action
        baseline_old = self.baseline.get(key)
        baseline_new = self.baseline.update(key, ratio_target)

        reward = cfg.w1 * ratio_sys + cfg.w2 * (ratio_target - baseline_old) - cfg.w3 * time_penalty

        logger.debug(
            "Global reward task %s: %.6f (sys: %.3f, target: %.3f, baseline: %.3f -> %.3f, time: %.3f)",
            decision.task_id,
            reward,
            ratio_sys,
            ratio_target,
            baseline_old,
            baseline_new,
            time_penalty,
        )
        return reward


class LocalEfficiencyReward(RewardStrategy):
    """
    Resource-selection reward:

        -A1 * wait - A2 * exec - A3 * energy + A4 * green

    Energy increments are measured on the target site and floored at 0.
    """

    name = "local"

    def __init__(self, config: Optional[LocalRewardConfig] = None):
        self.config = config or LocalRewardConfig()
        if self.config.time_scale_s <= 0:
            raise ValueError("time_scale_s must be positive")

    def compute(self, decision, event, system_end, target_end) -> float:
        cfg = self.config
        wait_penalty = min(1.0, max(0.0, event.wait_time) / cfg.time_scale_s)
        exec_penalty = min(1.0, max(0.0, event.exec_time) / cfg.time_scale_s)

        start = decision.target_snapshot
        d_total = max(0.0, target_end.total_used_j - start.total_used_j)
        d_green = max(0.0, target_end.green_used_j - start.green_used_j)
        energy_scale = max(1e-9, cfg.energy_scale_j)
        energy_penalty = min(1.0, d_total / energy_scale)
        green_bonus = min(1.0, d_green / energy_scale)

        reward = (
            -cfg.a1 * wait_penalty
            - cfg.a2 * exec_penalty
            - cfg.a3 * energy_penalty
            + cfg.a4 * green_bonus
        )

        logger.debug(
            "Local reward task %s: %.6f (wait: %.3f, exec: %.3f, energy: %.3f, green: %.3f)",
            decision.task_id,
            reward,
            wait_penalty,
            exec_penalty,
            energy_penalty,
            green_bonus,
        )
        return reward


SnapshotProvider = Callable[[PendingDecision], Tuple[EnergySnapshot, EnergySnapshot]]
StateProvider = Callable[[PendingDecision, CompletionEvent], Sequence[float]]
ExperienceSubmitter = Callable[[Experience], Any]


class RewardComputer:
    """
    Completion handler for one tier.

    post() looks up and removes the task's pending decision, computes
    the reward from the current energy snapshots, determines the done
    flag and submits the experience. Unknown tasks are logged and
    skipped.
    """

    def __init__(
        self,
        tracker: DecisionTracker,
        progress: EpisodeProgress,
        strategy: RewardStrategy,
        snapshot_provider: SnapshotProvider,
        state_provider: StateProvider,
        submitter: Optional[ExperienceSubmitter] = None,
    ):
        self.tracker = tracker
        self.progress = progress
        self.strategy = strategy
        self.snapshot_provider = snapshot_provider
        self.state_provider = state_provider
        self.submitter = submitter
        self.episode_reward_sum = 0.0
        self.resolved_count = 0
        self._reward_sinks: List[Callable[[float], None]] = []

    @property
    def tier(self) -> str:
        return self.tracker.tier

    def add_reward_sink(self, sink: Callable[[float], None]) -> None:
        self._reward_sinks.append(sink)

    def reset_episode(self) -> None:
        self.episode_reward_sum = 0.0
        self.resolved_count = 0

    def _safe_reward(self, decision: PendingDecision, reward: float) -> float:
        if not math.isfinite(reward):
            logger.error(
                "%s: non-finite reward %s for task %s, using 0.0", self.tier, reward, decision.task_id
            )
            return 0.0
        return reward

    def post(self, event: CompletionEvent) -> Optional[Experience]:
        """Resolve the decision for a completed task into an experience."""
        decision = self.tracker.resolve_decision(event.task_id)
        if decision is None:
            return None

        if event.completion_time < decision.decision_time:
            logger.warning(
                "%s: task %s completed at %.3f before its decision at %.3f",
                self.tier,
                event.task_id,
                event.completion_time,
                decision.decision_time,
            )

        done = self.progress.mark_completed(event.task_id)
        system_end, target_end = self.snapshot_provider(decision)
        reward = self._safe_reward(
            decision, self.strategy.compute(decision, event, system_end, target_end)
        )

        self.episode_reward_sum += reward
        self.resolved_count += 1
        for sink in self._reward_sinks:
            sink(reward)

        next_state = sanitize_vector(self.state_provider(decision, event), f"{self.tier} next state")
        experience = Experience(
            state=list(decision.state),
            action=decision.action,
            reward=reward,
            next_state=next_state,
            done=done,
            log_prob=decision.log_prob,
            value=decision.value,
            task_id=decision.task_id,
            target=decision.target,
            decision_time=decision.decision_time,
            completion_time=event.completion_time,
        )

        logger.debug(
            "%s: task %s reward %.6f, episode sum %.6f, done=%s",
            self.tier,
            decision.task_id,
            reward,
            self.episode_reward_sum,
            done,
        )

        if self.submitter is not None:
            self.submitter(experience)
        return experience

    resolve = post
