"""
Green Energy Ledger

Per-site accounting of renewable generation, green stock and the
green/brown split of consumed energy. Every public operation runs under
the ledger's lock so accrual, consumption and snapshot calls may
interleave freely.
"""

import logging
import math
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from .config import LedgerConfig
from .profile import GenerationProfile

logger = logging.getLogger(__name__)


class LedgerBalanceError(RuntimeError):
    """Raised in strict mode when the energy balance drifts past tolerance."""


class GreenEnergyStatus(str, Enum):
    ABUNDANT = "abundant"
    SUFFICIENT = "sufficient"
    LOW = "low"
    DEPLETED = "depleted"


@dataclass
class LedgerState:
    """Mutable accounting totals for one site, all energies in Joules."""

    green_stock_j: float = 0.0
    cumulative_generated_j: float = 0.0
    cumulative_green_consumed_j: float = 0.0
    cumulative_brown_consumed_j: float = 0.0
    cumulative_surplus_j: float = 0.0
    last_generation_update_s: float = 0.0
    last_consumption_update_s: float = 0.0
    generation_scaling_factor: float = 1.0


@dataclass(frozen=True)
class LedgerSnapshot:
    """Point-in-time copy of a ledger's totals."""

    time_s: float
    green_stock_j: float
    generated_j: float
    green_used_j: float
    brown_used_j: float
    surplus_j: float

    @property
    def total_used_j(self) -> float:
        return self.green_used_j + self.brown_used_j


@dataclass(frozen=True)
class ConsumptionResult:
    """Split of one consume call."""

    energy_j: float
    green_used_j: float
    brown_used_j: float
    surplus_j: float


def _finite_or_none(value: float) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class EnergyLedger:
    """
    Green/brown energy accounts for one compute site.

    Generation from one or more profiles accrues into a green stock.
    Consumption draws from the stock first and books the remainder as
    brown energy. The balance

        initial + generated - green_consumed - stock == 0

    is checked every `validation_interval` consume calls.
    """

    def __init__(
        self,
        profiles: Union[GenerationProfile, Iterable[GenerationProfile], None] = None,
        initial_stock_j: Optional[float] = None,
        scaling_factor: Optional[float] = None,
        config: Optional[LedgerConfig] = None,
        name: str = "site",
        start_time: float = 0.0,
    ):
        self.config = config or LedgerConfig()
        self.name = name

        if isinstance(profiles, GenerationProfile):
            profiles = [profiles]
        self._profiles: List[GenerationProfile] = list(profiles or [])

        scale = self.config.scaling_factor if scaling_factor is None else scaling_factor
        if not math.isfinite(scale) or scale <= 0:
            raise ValueError(f"scaling_factor must be positive, got {scale}")
        if self.config.validation_interval <= 0:
            raise ValueError("validation_interval must be positive")

        stock = self.config.initial_stock_j if initial_stock_j is None else initial_stock_j
        self._lock = threading.Lock()
        self._initial_stock_j = max(0.0, _finite_or_none(stock) or 0.0)
        self._state = LedgerState(
            green_stock_j=self._initial_stock_j,
            last_generation_update_s=start_time,
            last_consumption_update_s=start_time,
            generation_scaling_factor=scale,
        )
        self._last_tick_generation_j = 0.0
        self._last_tick_energy_used_j = 0.0
        self._last_tick_surplus_j = 0.0
        # Generation accrued but not yet set against a consume call
        self._unbooked_generation_j = 0.0
        self._consume_calls = 0
        self._energy_contributions: Dict[str, float] = {p.name: 0.0 for p in self._profiles}

        if all(p.is_empty() for p in self._profiles):
            logger.warning("Ledger %s has no generation profile, using zero generation", name)

    # --- Generation ---------------------------------------------------

    def add_profile(self, profile: GenerationProfile) -> None:
        """Attach another generation source (e.g. wind next to solar)."""
        with self._lock:
            self._profiles.append(profile)
            self._energy_contributions.setdefault(profile.name, 0.0)

    def accrue_generation(self, now: float) -> float:
        """
        Add generation since the last accrual to the stock.

        Returns the Joules added; 0.0 when the elapsed time is below
        the minimum update interval.
        """
        now_s = _finite_or_none(now)
        if now_s is None:
            logger.warning("Ledger %s: ignoring accrual at non-finite time %r", self.name, now)
            return 0.0

        with self._lock:
            state = self._state
            elapsed = now_s - state.last_generation_update_s
            if elapsed <= self.config.min_update_interval_s:
                return 0.0

            added = 0.0
            for profile in self._profiles:
                energy = profile.energy_over_interval(state.last_generation_update_s, now_s)
                energy *= state.generation_scaling_factor
                self._energy_contributions[profile.name] = (
                    self._energy_contributions.get(profile.name, 0.0) + energy
                )
                added += energy

            state.green_stock_j += added
            state.cumulative_generated_j += added
            state.last_generation_update_s = now_s
            self._last_tick_generation_j = added
            self._unbooked_generation_j += added

            logger.debug(
                "%.2f: %s generated %.2f J over %.2f s (stock %.2f J)",
                now_s,
                self.name,
                added,
                elapsed,
                state.green_stock_j,
            )
            return added

    # --- Consumption --------------------------------------------------

    def consume(self, now: float, demand_power_w: float) -> ConsumptionResult:
        """
        Book demand_power_w drawn since the last consume call.

        Green stock is used first; the shortfall is brown energy. A call
        at the instant already booked is a no-op, so each accrual enters
        the surplus exactly once.
        """
        now_s = _finite_or_none(now)
        power = _finite_or_none(demand_power_w)
        if power is None or power < 0:
            if power is None:
                logger.warning("Ledger %s: non-finite demand %r treated as 0", self.name, demand_power_w)
            power = 0.0

        with self._lock:
            state = self._state
            if now_s is None:
                logger.warning("Ledger %s: ignoring consumption at non-finite time %r", self.name, now)
                return ConsumptionResult(0.0, 0.0, 0.0, 0.0)

            elapsed = now_s - state.last_consumption_update_s
            if elapsed <= self.config.min_update_interval_s:
                return ConsumptionResult(0.0, 0.0, 0.0, 0.0)
            energy = power * elapsed

            green_used = min(energy, max(state.green_stock_j, 0.0))
            brown_used = energy - green_used
            state.green_stock_j = max(0.0, state.green_stock_j - green_used)
            state.cumulative_green_consumed_j += green_used
            state.cumulative_brown_consumed_j += brown_used

            surplus = self._unbooked_generation_j - energy
            self._unbooked_generation_j = 0.0
            state.cumulative_surplus_j += surplus
            state.last_consumption_update_s = now_s

            self._last_tick_energy_used_j = energy
            self._last_tick_surplus_j = surplus

            logger.debug(
                "%.2f: %s used %.2f J (green: %.2f, brown: %.2f, green left: %.2f)",
                now_s,
                self.name,
                energy,
                green_used,
                brown_used,
                state.green_stock_j,
            )

            self._consume_calls += 1
            if self._consume_calls % self.config.validation_interval == 0:
                self._check_balance_locked()

            return ConsumptionResult(energy, green_used, brown_used, surplus)

    # --- Balance ------------------------------------------------------

    def _balance_drift_locked(self) -> float:
        s = self._state
        return (
            self._initial_stock_j
            + s.cumulative_generated_j
            - s.cumulative_green_consumed_j
            - s.green_stock_j
        )

    def _check_balance_locked(self) -> bool:
        drift = self._balance_drift_locked()
        if abs(drift) <= self.config.balance_tolerance_j:
            return True

        s = self._state
        logger.warning(
            "Ledger %s balance violated by %.6f J (initial %.2f, generated %.2f, green used %.2f, stock %.2f)",
            self.name,
            drift,
            self._initial_stock_j,
            s.cumulative_generated_j,
            s.cumulative_green_consumed_j,
            s.green_stock_j,
        )
        if self.config.strict_balance:
            raise LedgerBalanceError(f"Ledger {self.name} balance drift {drift:.6f} J exceeds tolerance")
        return False

    def validate_balance(self) -> bool:
        """Check the energy balance now. Returns False (or raises in strict mode) on drift."""
        with self._lock:
            return self._check_balance_locked()

    def balance_drift(self) -> float:
        with self._lock:
            return self._balance_drift_locked()

    # --- Queries ------------------------------------------------------

    def current_stock(self) -> float:
        with self._lock:
            return self._state.green_stock_j

    def green_ratio(self) -> float:
        """Share of all consumed energy that was green; 1.0 before any consumption."""
        with self._lock:
            s = self._state
            total = s.cumulative_green_consumed_j + s.cumulative_brown_consumed_j
            if total <= 0:
                return 1.0
            return s.cumulative_green_consumed_j / total

    @property
    def initial_stock(self) -> float:
        with self._lock:
            return self._initial_stock_j

    @property
    def surplus_for_current_tick(self) -> float:
        with self._lock:
            return self._last_tick_surplus_j

    @property
    def last_tick_generation(self) -> float:
        with self._lock:
            return self._last_tick_generation_j

    @property
    def state(self) -> LedgerState:
        with self._lock:
            return replace(self._state)

    def self_sufficiency(self) -> float:
        """Last tick's generation over last tick's use, capped at 1."""
        with self._lock:
            if self._last_tick_energy_used_j <= 0:
                return 1.0
            return min(1.0, self._last_tick_generation_j / self._last_tick_energy_used_j)

    def _green_power_locked(self, now: float) -> float:
        scale = self._state.generation_scaling_factor
        return sum(p.power_at(now) for p in self._profiles) * scale

    def _generation_between_locked(self, start: float, end: float) -> float:
        scale = self._state.generation_scaling_factor
        return sum(p.energy_over_interval(start, end) for p in self._profiles) * scale

    def current_green_power(self, now: float) -> float:
        with self._lock:
            return self._green_power_locked(now)

    def generation_between(self, start: float, end: float) -> float:
        """Joules the profiles would produce in [start, end], without booking them."""
        with self._lock:
            return self._generation_between_locked(start, end)

    def predicted_generation(self, now: float, lookahead_s: float = 3600.0) -> float:
        """Expected generation power (W) lookahead_s after now."""
        with self._lock:
            scale = self._state.generation_scaling_factor
            return sum(p.predicted_power(now, lookahead_s) for p in self._profiles) * scale

    def predict_green_availability(
        self, now: float, start: float, end: float, demand_power_w: float
    ) -> float:
        """Green Joules left at `end` if demand_power_w runs from start to end."""
        start = max(start, now)
        demand = max(0.0, _finite_or_none(demand_power_w) or 0.0)
        with self._lock:
            stock = self._state.green_stock_j
            if end <= start:
                return stock
            available = stock + self._generation_between_locked(start, end)
        return max(0.0, available - demand * (end - start))

    def green_status(self, now: float) -> GreenEnergyStatus:
        with self._lock:
            stock = self._state.green_stock_j
            ratio = stock / self._initial_stock_j if self._initial_stock_j > 0 else 0.0
            power = self._green_power_locked(now)

        if ratio > 0.8 and power > 0:
            return GreenEnergyStatus.ABUNDANT
        if ratio > 0.3 or power > 0:
            return GreenEnergyStatus.SUFFICIENT
        if stock > 0:
            return GreenEnergyStatus.LOW
        return GreenEnergyStatus.DEPLETED

    @property
    def energy_contributions(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._energy_contributions)

    def energy_mix(self) -> Dict[str, float]:
        """Percentage of generated energy per source."""
        contributions = self.energy_contributions
        total = sum(contributions.values())
        if total <= 0:
            return {name: 0.0 for name in contributions}
        return {name: value / total * 100.0 for name, value in contributions.items()}

    def snapshot(self, now: Optional[float] = None) -> LedgerSnapshot:
        with self._lock:
            s = self._state
            time_s = now if now is not None else max(
                s.last_generation_update_s, s.last_consumption_update_s
            )
            return LedgerSnapshot(
                time_s=time_s,
                green_stock_j=s.green_stock_j,
                generated_j=s.cumulative_generated_j,
                green_used_j=s.cumulative_green_consumed_j,
                brown_used_j=s.cumulative_brown_consumed_j,
                surplus_j=s.cumulative_surplus_j,
            )

    # --- Lifecycle ----------------------------------------------------

    def reset(self, initial_stock_j: Optional[float] = None, start_time: float = 0.0) -> None:
        """Start a new episode with a fresh stock and zeroed totals."""
        with self._lock:
            if initial_stock_j is not None:
                self._initial_stock_j = max(0.0, _finite_or_none(initial_stock_j) or 0.0)
            scale = self._state.generation_scaling_factor
            self._state = LedgerState(
                green_stock_j=self._initial_stock_j,
                last_generation_update_s=start_time,
                last_consumption_update_s=start_time,
                generation_scaling_factor=scale,
            )
            self._last_tick_generation_j = 0.0
            self._last_tick_energy_used_j = 0.0
            self._last_tick_surplus_j = 0.0
            self._unbooked_generation_j = 0.0
            self._consume_calls = 0
            self._energy_contributions = {name: 0.0 for name in self._energy_contributions}

    def __repr__(self) -> str:
        return f"EnergyLedger(name={self.name!r}, stock={self._state.green_stock_j:.2f} J)"
