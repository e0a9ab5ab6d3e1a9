"""
Decision Tracking

Holds the pending (state, action, energy snapshot) record for every
in-flight task until its completion makes the reward computable, and
tracks per-episode completion progress for the done flag.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Hashable, Optional, Sequence, Tuple

from .ledger import LedgerSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnergySnapshot:
    """Cumulative green and total energy used, in Joules."""

    green_used_j: float = 0.0
    total_used_j: float = 0.0

    @classmethod
    def from_ledger(cls, snapshot: LedgerSnapshot) -> "EnergySnapshot":
        return cls(green_used_j=snapshot.green_used_j, total_used_j=snapshot.total_used_j)

    def __add__(self, other: "EnergySnapshot") -> "EnergySnapshot":
        return EnergySnapshot(
            self.green_used_j + other.green_used_j,
            self.total_used_j + other.total_used_j,
        )


@dataclass(frozen=True)
class PendingDecision:
    """A decision waiting for its task to complete."""

    task_id: Hashable
    state: Tuple[float, ...]
    action: int
    decision_time: float
    system_snapshot: EnergySnapshot
    target_snapshot: EnergySnapshot
    log_prob: float = 0.0
    value: float = 0.0
    target: Optional[str] = None


class DecisionTracker:
    """
    Pending decisions for one tier, keyed by task id.

    At most one decision exists per task. resolve_decision pops under a
    lock so a repeated completion event can never resolve twice.
    """

    def __init__(self, tier: str):
        self.tier = tier
        self._pending: Dict[Hashable, PendingDecision] = {}
        self._lock = threading.Lock()

    def record_decision(
        self,
        task_id: Hashable,
        state: Sequence[float],
        action: int,
        now: float,
        system_snapshot: EnergySnapshot,
        target_snapshot: EnergySnapshot,
        log_prob: float = 0.0,
        value: float = 0.0,
        target: Optional[str] = None,
    ) -> PendingDecision:
        decision = PendingDecision(
            task_id=task_id,
            state=tuple(state),
            action=action,
            decision_time=now,
            system_snapshot=system_snapshot,
            target_snapshot=target_snapshot,
            log_prob=log_prob,
            value=value,
            target=target,
        )
        with self._lock:
            if task_id in self._pending:
                logger.error(
                    "%s: duplicate decision for in-flight task %s, overwriting", self.tier, task_id
                )
            self._pending[task_id] = decision
        return decision

    def resolve_decision(self, task_id: Hashable) -> Optional[PendingDecision]:
        """Remove and return the pending decision, or None if the task is not tracked."""
        with self._lock:
            decision = self._pending.pop(task_id, None)
        if decision is None:
            logger.warning("%s: pending decision missing for task %s", self.tier, task_id)
        return decision

    def pending(self, task_id: Hashable) -> Optional[PendingDecision]:
        with self._lock:
            return self._pending.get(task_id)

    def __contains__(self, task_id: Hashable) -> bool:
        with self._lock:
            return task_id in self._pending

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def clear(self) -> int:
        """Drop all pending decisions. Returns how many were dropped."""
        with self._lock:
            dropped = len(self._pending)
            self._pending.clear()
        if dropped:
            logger.info("%s: dropped %d unresolved decisions", self.tier, dropped)
        return dropped


class EpisodeProgress:
    """Completed/expected task counts and the one-shot done flag for a tier."""

    def __init__(self, tier: str, expected: int = 0):
        self.tier = tier
        self._lock = threading.Lock()
        self.expected = expected
        self.completed = 0
        self.ending = False
        self._done_emitted = False

    def begin(self, expected: int) -> None:
        with self._lock:
            self.expected = max(0, int(expected))
            self.completed = 0
            self.ending = False
            self._done_emitted = False
        logger.info("%s: expecting %d tasks this episode", self.tier, self.expected)

    def signal_ending(self) -> None:
        with self._lock:
            self.ending = True
        logger.info("%s: episode ending signal received", self.tier)

    @property
    def done_emitted(self) -> bool:
        return self._done_emitted

    def mark_dropped(self, task_id: Hashable = None) -> None:
        """Take a task that will never complete on this tier out of the expected count."""
        with self._lock:
            self.expected = max(0, self.expected - 1)
            expected = self.expected
        logger.info("%s: task %s dropped, now expecting %d tasks", self.tier, task_id, expected)

    def mark_completed(self, task_id: Hashable = None) -> bool:
        """
        Count one resolved task and report whether it is the terminal one.

        Returns True exactly once per episode: on the first completion that
        reaches the expected count or follows the ending signal.
        """
        with self._lock:
            self.completed += 1
            terminal = self.completed >= self.expected or self.ending
            done = terminal and not self._done_emitted
            if done:
                self._done_emitted = True
        if done:
            logger.info(
                "%s: episode done signal for task %s (completed: %d/%d)",
                self.tier,
                task_id,
                self.completed,
                self.expected,
            )
        return done
