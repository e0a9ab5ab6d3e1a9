"""
Renewable Generation Profiles

Time-ordered power samples for one renewable source, with point
(interpolated) and interval (integrated) queries, plus the CSV loader
that turns a fixed-cadence power column into a profile.
"""

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .config import ProfileConfig

logger = logging.getLogger(__name__)

DEFAULT_INTEGRATION_STEP_S = 60.0


@dataclass(frozen=True)
class GenerationSample:
    """One power reading at a simulation time."""

    time_s: float
    power_w: float


def _to_float(value: Any) -> Optional[float]:
    """Parse a finite float, or None for anything unusable."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


class GenerationProfile:
    """
    Immutable generation time series for one source.

    Samples are kept sorted with unique timestamps. An empty profile
    generates nothing at any time.
    """

    def __init__(
        self,
        samples: Iterable[GenerationSample] = (),
        name: str = "renewable",
        integration_step_s: float = DEFAULT_INTEGRATION_STEP_S,
    ):
        if integration_step_s <= 0:
            raise ValueError(f"integration_step_s must be positive, got {integration_step_s}")

        ordered = sorted(samples, key=lambda s: s.time_s)
        unique: list[GenerationSample] = []
        for sample in ordered:
            if unique and unique[-1].time_s == sample.time_s:
                # Keep the first reading for a repeated timestamp
                continue
            unique.append(sample)

        self.name = name
        self.integration_step_s = float(integration_step_s)
        self._samples: Tuple[GenerationSample, ...] = tuple(unique)
        self._times = np.array([s.time_s for s in unique], dtype=float)
        self._powers = np.array([s.power_w for s in unique], dtype=float)

    @classmethod
    def load(
        cls,
        samples: Iterable[Any],
        name: str = "renewable",
        integration_step_s: float = DEFAULT_INTEGRATION_STEP_S,
    ) -> "ProfileLoadResult":
        """
        Build a profile from (time, power) pairs.

        Malformed pairs are skipped and counted. A load that leaves no
        valid sample yields an always-zero profile.
        """
        valid: list[GenerationSample] = []
        skipped = 0
        seen: set[float] = set()

        for idx, entry in enumerate(samples):
            try:
                raw_time, raw_power = entry
            except (TypeError, ValueError):
                logger.debug("Skipping malformed sample %d for %s: %r", idx, name, entry)
                skipped += 1
                continue

            time_s = _to_float(raw_time)
            power_w = _to_float(raw_power)
            if time_s is None or power_w is None or time_s in seen:
                logger.debug("Skipping malformed sample %d for %s: %r", idx, name, entry)
                skipped += 1
                continue

            seen.add(time_s)
            valid.append(GenerationSample(time_s, max(0.0, power_w)))

        if not valid:
            logger.warning(
                "No valid generation samples for %s (%d skipped), using zero generation",
                name,
                skipped,
            )
        elif skipped:
            logger.info("Loaded %d samples for %s, skipped %d", len(valid), name, skipped)

        profile = cls(valid, name=name, integration_step_s=integration_step_s)
        return ProfileLoadResult(profile=profile, valid_count=len(valid), skipped_count=skipped)

    @classmethod
    def empty(cls, name: str = "renewable") -> "GenerationProfile":
        return cls((), name=name)

    @property
    def samples(self) -> Tuple[GenerationSample, ...]:
        return self._samples

    def __len__(self) -> int:
        return len(self._samples)

    def is_empty(self) -> bool:
        return not self._samples

    @property
    def start_time(self) -> float:
        return float(self._times[0]) if self._samples else 0.0

    @property
    def end_time(self) -> float:
        return float(self._times[-1]) if self._samples else 0.0

    def power_at(self, t: float) -> float:
        """
        Interpolated power in watts at time t.

        Outside the sampled range the nearest sample's value is held, so
        there is never an extrapolated spike.
        """
        if not self._samples or not math.isfinite(t):
            return 0.0
        return float(np.interp(t, self._times, self._powers))

    def energy_over_interval(self, t0: float, t1: float) -> float:
        """
        Joules generated in [t0, t1] by trapezoidal integration.

        Inside the sampled range the grid holds every sample time plus
        sub-steps of at most integration_step_s. Before the first and
        after the last sample the power is held constant, so those tails
        are added directly and the grid never grows with the interval.
        """
        if not self._samples:
            return 0.0
        if not (math.isfinite(t0) and math.isfinite(t1)) or t0 >= t1:
            return 0.0

        first, last = float(self._times[0]), float(self._times[-1])
        total = 0.0
        if t0 < first:
            total += float(self._powers[0]) * (min(t1, first) - t0)
        if t1 > last:
            total += float(self._powers[-1]) * (t1 - max(t0, last))

        lo, hi = max(t0, first), min(t1, last)
        if hi > lo:
            steps = max(1, math.ceil((hi - lo) / self.integration_step_s))
            inside = self._times[(self._times > lo) & (self._times < hi)]
            times = np.union1d(np.linspace(lo, hi, steps + 1), inside)
            powers = np.interp(times, self._times, self._powers)
            widths = np.diff(times)
            total += float(np.sum((powers[:-1] + powers[1:]) * 0.5 * widths))
        return total

    def predicted_power(self, now: float, lookahead_s: float) -> float:
        return self.power_at(now + max(0.0, lookahead_s))

    def statistics(self) -> Dict[str, float]:
        """Summary of the loaded series."""
        if not self._samples:
            return {
                "count": 0,
                "mean_power_w": 0.0,
                "min_power_w": 0.0,
                "max_power_w": 0.0,
                "duration_s": 0.0,
                "capacity_factor": 0.0,
            }

        peak = float(self._powers.max())
        mean = float(self._powers.mean())
        return {
            "count": len(self._samples),
            "mean_power_w": mean,
            "min_power_w": float(self._powers.min()),
            "max_power_w": peak,
            "duration_s": self.end_time - self.start_time,
            "capacity_factor": mean / peak if peak > 0 else 0.0,
        }

    def __repr__(self) -> str:
        return f"GenerationProfile(name={self.name!r}, samples={len(self._samples)})"


@dataclass
class ProfileLoadResult:
    """Outcome of building a profile, including what was rejected."""

    profile: GenerationProfile
    valid_count: int = 0
    skipped_count: int = 0
    stats: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.stats:
            self.stats = self.profile.statistics()

    @property
    def ok(self) -> bool:
        return self.valid_count > 0


def _find_column(columns: Iterable[str], wanted: str) -> Optional[str]:
    wanted_norm = wanted.strip().lower()
    for column in columns:
        if str(column).strip().lower() == wanted_norm:
            return column
    return None


def load_profile_csv(
    path: Union[str, Path],
    config: Optional[ProfileConfig] = None,
    name: Optional[str] = None,
    integration_step_s: float = DEFAULT_INTEGRATION_STEP_S,
) -> ProfileLoadResult:
    """
    Load a generation profile from a CSV power column.

    The i-th valid row is placed at i * interval_s seconds and scaled by
    unit_scale (kW -> W by default). Blank or non-numeric rows are
    skipped and counted; negative readings clamp to zero. Any failure to
    read the file yields an empty (zero generation) profile.
    """
    cfg = config or ProfileConfig()
    profile_name = name or Path(path).stem

    def _fallback(skipped: int = 0) -> ProfileLoadResult:
        return ProfileLoadResult(
            profile=GenerationProfile.empty(profile_name),
            valid_count=0,
            skipped_count=skipped,
        )

    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=False)
    except FileNotFoundError:
        logger.warning("Generation profile not found at %s, using zero generation", path)
        return _fallback()
    except (OSError, pd.errors.EmptyDataError, pd.errors.ParserError) as e:
        logger.error("Failed to read generation profile %s: %s", path, e)
        return _fallback()

    column = _find_column(df.columns, cfg.power_column)
    if column is None:
        logger.error(
            "Column %s not found in %s (columns: %s), using zero generation",
            cfg.power_column,
            path,
            list(df.columns),
        )
        return _fallback()

    samples: list[GenerationSample] = []
    skipped = 0
    implausible = 0

    for row_idx, raw in enumerate(df[column].tolist()):
        value = _to_float(raw)
        if value is None:
            logger.debug("Skipping row %d in %s: %r", row_idx + 2, path, raw)
            skipped += 1
            continue

        power_w = value * cfg.unit_scale
        if power_w < 0:
            logger.debug("Clamping negative power %.3f W at row %d in %s", power_w, row_idx + 2, path)
            power_w = 0.0
        elif power_w > cfg.max_plausible_w:
            implausible += 1
            logger.warning(
                "Implausible power %.1f W at row %d in %s (kept)", power_w, row_idx + 2, path
            )

        samples.append(GenerationSample(len(samples) * cfg.interval_s, power_w))

    if not samples:
        logger.error("No valid rows in %s (%d skipped), using zero generation", path, skipped)
        return _fallback(skipped)

    profile = GenerationProfile(samples, name=profile_name, integration_step_s=integration_step_s)
    result = ProfileLoadResult(profile=profile, valid_count=len(samples), skipped_count=skipped)
    stats = result.stats
    logger.info(
        "Loaded %s: %d rows (%d skipped, %d implausible), mean %.1f W, peak %.1f W, %.1f h",
        profile_name,
        len(samples),
        skipped,
        implausible,
        stats["mean_power_w"],
        stats["max_power_w"],
        stats["duration_s"] / 3600.0,
    )
    return result
