"""
State Normalization

Turns raw observations into bounded policy features. Each named feature
keeps Welford running statistics; until a feature has enough samples the
fixed default scales apply, after that the adaptive transforms do.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import numpy as np

from .config import NormalizerConfig

logger = logging.getLogger(__name__)

_EPS = 1e-8


@dataclass
class FeatureStat:
    """Running count, mean, variance, min and max for one feature."""

    count: int = 0
    mean: float = 0.0
    m2: float = 0.0
    min: float = math.inf
    max: float = -math.inf

    def update(self, value: float) -> None:
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (value - self.mean)
        self.min = min(self.min, value)
        self.max = max(self.max, value)

    @property
    def variance(self) -> float:
        return self.m2 / (self.count - 1) if self.count > 1 else 0.0

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)

    def as_dict(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "mean": self.mean,
            "std": self.std,
            "min": self.min if self.count else 0.0,
            "max": self.max if self.count else 0.0,
        }


def _clip(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def sanitize_vector(values: Iterable[float], label: str = "state") -> List[float]:
    """Replace non-finite entries with 0.0, logging each one."""
    arr = np.asarray(list(values), dtype=float)
    bad = ~np.isfinite(arr)
    if bad.any():
        for idx in np.flatnonzero(bad):
            logger.error("Invalid %s value at index %d: %s", label, idx, arr[idx])
        arr[bad] = 0.0
    return arr.tolist()


class StateNormalizer:
    """
    Adaptive feature normalizer.

    Output bounds:
        surplus          (-1, 1)
        stock            [-1, 1]
        ratios           [0, 1]
        time             [-1, 1]
        mips/cpu/mem     [0, 1]
        queue length     [0, 1]

    Any non-finite input or result yields 0.0.
    """

    def __init__(self, config: Optional[NormalizerConfig] = None):
        self.config = config or NormalizerConfig()
        if self.config.min_observations < 1:
            raise ValueError("min_observations must be at least 1")
        if self.config.time_period_s <= 0:
            raise ValueError("time_period_s must be positive")
        self._stats: Dict[str, FeatureStat] = {}

    # --- Observation --------------------------------------------------

    def _stat(self, feature: str) -> FeatureStat:
        stat = self._stats.get(feature)
        if stat is None:
            stat = self._stats[feature] = FeatureStat()
        return stat

    def observe(self, feature: str, value: float) -> None:
        """Record a raw value for feature. Non-finite values are ignored."""
        try:
            number = float(value)
        except (TypeError, ValueError):
            logger.error("Cannot observe %s=%r", feature, value)
            return
        if not math.isfinite(number):
            logger.error("Ignoring non-finite observation %s=%s", feature, number)
            return
        self._stat(feature).update(number)

    def _adaptive(self, stat: FeatureStat) -> bool:
        return stat.count >= self.config.min_observations

    def _prepare(self, feature: str, value: float, observe: bool) -> Optional[float]:
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = math.nan
        if not math.isfinite(number):
            logger.error("Non-finite input for %s: %r, using 0.0", feature, value)
            return None
        if observe:
            self._stat(feature).update(number)
        return number

    @staticmethod
    def _finite(feature: str, result: float) -> float:
        if not math.isfinite(result):
            logger.error("Non-finite normalized %s: %s, using 0.0", feature, result)
            return 0.0
        return result

    # --- Families -----------------------------------------------------

    def normalize_signed(self, value: float, feature: str, scale: float, observe: bool = True) -> float:
        """Signed unbounded value -> (-1, 1): tanh(z/2) once adaptive, tanh(x/scale) before."""
        x = self._prepare(feature, value, observe)
        if x is None:
            return 0.0
        stat = self._stat(feature)
        if self._adaptive(stat) and stat.std > 1e-6:
            z = (x - stat.mean) / (stat.std + _EPS)
            result = math.tanh(z / 2.0)
        else:
            result = math.tanh(x / scale)
        return self._finite(feature, result)

    def normalize_non_negative(
        self, value: float, feature: str, scale: float, observe: bool = True
    ) -> float:
        """Non-negative unbounded value -> [-1, 1]: min-max rescaled, or sigmoid when max == min."""
        x = self._prepare(feature, value, observe)
        if x is None:
            return 0.0
        stat = self._stat(feature)
        if self._adaptive(stat) and stat.max > stat.min:
            unit = (x - stat.min) / (stat.max - stat.min + _EPS)
            result = _clip(unit, 0.0, 1.0) * 2.0 - 1.0
        else:
            # 2*sigmoid(x/scale) - 1 written as tanh to stay finite for large |x|
            result = math.tanh(x / (2.0 * scale))
        return self._finite(feature, result)

    def normalize_ratio(self, value: float, feature: str = "ratio") -> float:
        """Already-bounded ratio or utilization, clipped to [0, 1]."""
        x = self._prepare(feature, value, observe=False)
        if x is None:
            return 0.0
        return _clip(x, 0.0, 1.0)

    def normalize_time(self, t: float) -> float:
        """Cyclical encoding sin(2*pi*(t mod P)/P)."""
        x = self._prepare("time", t, observe=False)
        if x is None:
            return 0.0
        period = self.config.time_period_s
        return self._finite("time", math.sin(2.0 * math.pi * (x % period) / period))

    # --- Named features -----------------------------------------------

    def normalize_green_surplus(self, surplus: float, feature: str = "green_surplus") -> float:
        return self.normalize_signed(surplus, feature, self.config.surplus_scale_j)

    def normalize_green_stock(self, stock: float, feature: str = "green_stock") -> float:
        return self.normalize_non_negative(stock, feature, self.config.stock_scale_j)

    def normalize_cpu_utilization(self, utilization: float) -> float:
        return self.normalize_ratio(utilization, "cpu_utilization")

    def normalize_mips(self, mips: float, feature: str = "mips") -> float:
        x = self._prepare(feature, mips, observe=True)
        if x is None:
            return 0.0
        stat = self._stat(feature)
        if self._adaptive(stat) and stat.max > 0:
            result = x / stat.max
        else:
            result = x / self.config.mips_scale
        return _clip(self._finite(feature, result), 0.0, 1.0)

    def normalize_cpu_requirement(self, requirement: float, feature: str = "cpu_req") -> float:
        x = self._prepare(feature, requirement, observe=True)
        if x is None:
            return 0.0
        stat = self._stat(feature)
        scale = self.config.cpu_requirement_scale
        if self._adaptive(stat):
            adaptive_scale = stat.mean + 2.0 * stat.std
            if adaptive_scale > 0:
                scale = adaptive_scale
        return _clip(self._finite(feature, x / scale), 0.0, 1.0)

    def normalize_mem_requirement(self, requirement: float, feature: str = "mem_req") -> float:
        x = self._prepare(feature, requirement, observe=True)
        if x is None:
            return 0.0
        stat = self._stat(feature)
        if self._adaptive(stat) and stat.max > 0:
            result = x / stat.max
        else:
            result = x / self.config.mem_requirement_scale_mb
        return _clip(self._finite(feature, result), 0.0, 1.0)

    def normalize_queue_length(self, length: float, feature: str = "queue_length") -> float:
        x = self._prepare(feature, length, observe=True)
        if x is None:
            return 0.0
        x = max(0.0, x)
        stat = self._stat(feature)
        if self._adaptive(stat):
            result = 1.0 - math.exp(-x / (max(stat.mean, 0.0) + 1.0))
        else:
            result = x / self.config.queue_length_scale
        return _clip(self._finite(feature, result), 0.0, 1.0)

    # --- Introspection ------------------------------------------------

    def feature_stat(self, feature: str) -> Optional[FeatureStat]:
        return self._stats.get(feature)

    def statistics(self) -> Dict[str, Dict[str, float]]:
        return {name: stat.as_dict() for name, stat in self._stats.items() if stat.count}

    def log_statistics(self) -> None:
        for name, stats in sorted(self.statistics().items()):
            logger.info(
                "%s: count=%d, mean=%.2f, std=%.2f, min=%.2f, max=%.2f",
                name,
                stats["count"],
                stats["mean"],
                stats["std"],
                stats["min"],
                stats["max"],
            )
