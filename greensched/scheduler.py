"""
Hierarchical Scheduler

Two-tier decision pipeline driven by the execution engine's hooks:

1. on_tick: per-site power draw is booked against the site ledgers
2. schedule: the global tier picks a site, the local tier picks a
   resource inside it; both decisions are recorded with energy snapshots
3. post_completion / process_completions: completion events are queued
   and resolved into rewards and experiences for the policy
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Hashable, List, Mapping, Optional, Tuple

from .context import SimulationContext
from .features import GlobalFeatureBuilder, LocalFeatureBuilder
from .rewards import (
    CompletionEvent,
    Experience,
    GlobalGreenReward,
    LocalEfficiencyReward,
    RewardComputer,
)
from .tracker import EnergySnapshot, PendingDecision

logger = logging.getLogger(__name__)


@dataclass
class Task:
    """A unit of work submitted by the execution engine."""

    task_id: Hashable
    length_mi: float = 0.0  # CPU requirement
    mem_mb: float = 0.0
    bw_mbps: float = 0.0
    priority: float = 0.0


@dataclass
class SchedulingResult:
    """Where a task was placed. Indices are None when the tier rejected its action."""

    task_id: Hashable
    site_index: Optional[int] = None
    resource_index: Optional[int] = None
    site_name: Optional[str] = None
    resource_id: Optional[str] = None
    fallback: bool = False

    @property
    def assigned(self) -> bool:
        return self.site_index is not None


@dataclass
class SchedulerStatus:
    """Counters for the current episode."""

    scheduled: int = 0
    unassigned: int = 0
    local_unassigned: int = 0
    oracle_fallbacks: int = 0
    completions: int = 0
    last_decision_at: Optional[float] = None
    last_completion_at: float = 0.0


class HierarchicalScheduler:
    """
    Global (site) and local (resource) routing backed by one policy
    oracle, with rewards resolved on task completion.
    """

    def __init__(self, context: SimulationContext):
        self.context = context
        self.global_features = GlobalFeatureBuilder(context.global_normalizer)
        self.local_features = LocalFeatureBuilder(context.local_normalizer)
        self.status = SchedulerStatus()

        self._tasks: Dict[Hashable, Task] = {}
        self._completions: Deque[CompletionEvent] = deque()
        self._lock = threading.Lock()

        self.global_rewards = RewardComputer(
            tracker=context.global_tracker,
            progress=context.global_progress,
            strategy=GlobalGreenReward(context.config.global_reward, context.baseline),
            snapshot_provider=self._snapshots_for,
            state_provider=self._next_global_state,
            submitter=self._submit_global,
        )
        self.local_rewards = RewardComputer(
            tracker=context.local_tracker,
            progress=context.local_progress,
            strategy=LocalEfficiencyReward(context.config.local_reward),
            snapshot_provider=self._snapshots_for,
            state_provider=self._next_local_state,
            submitter=self._submit_local,
        )

    @property
    def sites(self):
        return self.context.sites

    def global_state_dimension(self) -> int:
        return GlobalFeatureBuilder.dimension(len(self.sites))

    def local_state_dimension(self, site_index: int) -> int:
        return LocalFeatureBuilder.dimension(len(self.sites[site_index].resources))

    # --- Engine hooks -------------------------------------------------

    def on_tick(self, now: float, power_by_site: Mapping[str, float]) -> None:
        """Book one tick of per-site power draw (W)."""
        self.sites.tick(now, power_by_site)

    def schedule(self, task: Task, now: float) -> SchedulingResult:
        """Route a task to a site and a resource within it."""
        ctx = self.context
        result = SchedulingResult(task_id=task.task_id)
        site_count = len(self.sites)

        state = self.global_features.build(self.sites, task, now)
        response = ctx.oracle.select_action(state, site_count)
        result.fallback = response.fallback
        if response.fallback:
            self.status.oracle_fallbacks += 1

        if not 0 <= response.action < site_count:
            logger.error(
                "Invalid site index %d for task %s (%d sites), task left unassigned",
                response.action,
                task.task_id,
                site_count,
            )
            self.status.unassigned += 1
            ctx.global_progress.mark_dropped(task.task_id)
            ctx.local_progress.mark_dropped(task.task_id)
            return result

        site = self.sites[response.action]
        with self._lock:
            self._tasks[task.task_id] = task

        ctx.global_tracker.record_decision(
            task.task_id,
            state,
            response.action,
            now,
            system_snapshot=self.sites.system_snapshot(),
            target_snapshot=site.energy_snapshot(),
            log_prob=response.log_prob,
            value=response.value,
            target=site.name,
        )
        result.site_index = response.action
        result.site_name = site.name
        self.status.scheduled += 1
        self.status.last_decision_at = now

        logger.info("Task %s -> site %s (index %d) at t=%.2f", task.task_id, site.name, response.action, now)

        self._schedule_local(task, site, now, result)
        return result

    def _schedule_local(self, task: Task, site, now: float, result: SchedulingResult) -> None:
        ctx = self.context
        resource_count = len(site.resources)
        local_state = self.local_features.build(site, task)
        response = ctx.oracle.select_action_local(local_state, resource_count, broker_id=site.name)
        if response.fallback:
            self.status.oracle_fallbacks += 1
            result.fallback = True

        if not 0 <= response.action < resource_count:
            logger.error(
                "Invalid resource index %d for task %s at site %s (%d resources)",
                response.action,
                task.task_id,
                site.name,
                resource_count,
            )
            self.status.local_unassigned += 1
            ctx.local_progress.mark_dropped(task.task_id)
            return

        resource = site.resources[response.action]
        ctx.local_tracker.record_decision(
            task.task_id,
            local_state,
            response.action,
            now,
            system_snapshot=self.sites.system_snapshot(),
            target_snapshot=site.energy_snapshot(),
            log_prob=response.log_prob,
            value=response.value,
            target=site.name,
        )
        result.resource_index = response.action
        result.resource_id = resource.resource_id
        logger.debug("Local: task %s -> resource %s on %s", task.task_id, resource.resource_id, site.name)

    # --- Completion ---------------------------------------------------

    def post_completion(self, event: CompletionEvent) -> None:
        """Queue a completion event for the reward handlers."""
        with self._lock:
            self._completions.append(event)

    def process_completions(self) -> List[Tuple[Optional[Experience], Optional[Experience]]]:
        """Resolve every queued completion, in arrival order."""
        resolved = []
        while True:
            with self._lock:
                if not self._completions:
                    break
                event = self._completions.popleft()
            resolved.append(self._resolve(event))
        return resolved

    def on_task_completed(self, event: CompletionEvent) -> Tuple[Optional[Experience], Optional[Experience]]:
        """Post and immediately resolve one completion."""
        self.post_completion(event)
        results = self.process_completions()
        return results[-1]

    def _resolve(self, event: CompletionEvent) -> Tuple[Optional[Experience], Optional[Experience]]:
        self.status.completions += 1
        self.status.last_completion_at = max(self.status.last_completion_at, event.completion_time)
        global_exp = self.global_rewards.post(event)
        local_exp = self.local_rewards.post(event)
        if global_exp is not None or local_exp is not None:
            with self._lock:
                self._tasks.pop(event.task_id, None)
        return global_exp, local_exp

    # --- Reward plumbing ----------------------------------------------

    def _snapshots_for(self, decision: PendingDecision) -> Tuple[EnergySnapshot, EnergySnapshot]:
        site = self.sites.get(decision.target) if decision.target else None
        target = site.energy_snapshot() if site is not None else EnergySnapshot()
        return self.sites.system_snapshot(), target

    def _task_for(self, decision: PendingDecision) -> Task:
        with self._lock:
            task = self._tasks.get(decision.task_id)
        return task if task is not None else Task(task_id=decision.task_id)

    def _next_global_state(self, decision: PendingDecision, event: CompletionEvent) -> List[float]:
        return self.global_features.build(self.sites, self._task_for(decision), event.completion_time)

    def _next_local_state(self, decision: PendingDecision, event: CompletionEvent) -> List[float]:
        site = self.sites.get(decision.target)
        if site is None:
            return list(decision.state)
        return self.local_features.build(site, self._task_for(decision))

    def _submit_global(self, experience: Experience) -> bool:
        submitted = self.context.oracle.store_experience(experience)
        self._log_history(experience, "global", submitted)
        return submitted

    def _submit_local(self, experience: Experience) -> bool:
        submitted = self.context.oracle.store_experience_local(experience, broker_id=experience.target)
        self._log_history(experience, "local", submitted)
        return submitted

    def _log_history(self, experience: Experience, tier: str, submitted: bool) -> None:
        history = self.context.history
        if history is None:
            return
        history.log_experience(
            history.record_for(experience, tier, episode=self.context.episode, submitted=submitted)
        )

    def reset_episode(self) -> None:
        with self._lock:
            self._tasks.clear()
            self._completions.clear()
        self.status = SchedulerStatus()
        self.global_rewards.reset_episode()
        self.local_rewards.reset_episode()
