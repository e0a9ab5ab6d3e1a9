"""
Compute Sites

Sites come in two variants fixed at construction: PlainSite draws only
grid energy and keeps no ledger; GreenAwareSite owns an EnergyLedger fed
through its tick hook. The registry holds the ordered site list the
global tier indexes into.
"""

import logging
from dataclasses import dataclass, field
from typing import ClassVar, Dict, Iterator, List, Mapping, Optional, Union

from .config import SimulationConfig, SiteConfig
from .ledger import ConsumptionResult, EnergyLedger
from .profile import GenerationProfile, load_profile_csv
from .tracker import EnergySnapshot

logger = logging.getLogger(__name__)


@dataclass
class Resource:
    """One schedulable host inside a site, as last reported by the engine."""

    resource_id: str
    mips: float = 0.0
    cpu_utilization: float = 0.0
    ram_mb: float = 0.0
    ram_used_mb: float = 0.0
    bw: float = 0.0
    bw_used: float = 0.0
    active: bool = True
    vm_count: int = 0

    @property
    def free_ram_ratio(self) -> float:
        if self.ram_mb <= 0:
            return 0.0
        return max(0.0, min(1.0, (self.ram_mb - self.ram_used_mb) / self.ram_mb))

    @property
    def free_bw_ratio(self) -> float:
        if self.bw <= 0:
            return 0.0
        return max(0.0, min(1.0, (self.bw - self.bw_used) / self.bw))


@dataclass
class _SiteBase:
    name: str
    resources: List[Resource] = field(default_factory=list)
    queue_length: int = 0

    green_aware: ClassVar[bool] = False

    @property
    def average_mips(self) -> float:
        if not self.resources:
            return 0.0
        return sum(r.mips for r in self.resources) / len(self.resources)

    @property
    def cpu_utilization(self) -> float:
        if not self.resources:
            return 0.0
        return sum(r.cpu_utilization for r in self.resources) / len(self.resources)

    @property
    def overall_load(self) -> float:
        """Weighted CPU/RAM/bandwidth load in [0, 1]."""
        if not self.resources:
            return 0.0
        ram_load = sum(1.0 - r.free_ram_ratio for r in self.resources) / len(self.resources)
        bw_load = sum(1.0 - r.free_bw_ratio for r in self.resources) / len(self.resources)
        cpu_load = max(0.0, min(1.0, self.cpu_utilization))
        return 0.5 * cpu_load + 0.3 * ram_load + 0.2 * bw_load


@dataclass
class PlainSite(_SiteBase):
    """Grid-only site with no green accounting."""

    def on_tick(self, now: float, power_w: float) -> Optional[ConsumptionResult]:
        return None

    def energy_snapshot(self) -> EnergySnapshot:
        return EnergySnapshot()

    def green_ratio(self) -> float:
        return 0.0


@dataclass
class GreenAwareSite(_SiteBase):
    """Site whose energy use is booked against a green ledger."""

    ledger: EnergyLedger = field(default_factory=EnergyLedger)

    green_aware: ClassVar[bool] = True

    def on_tick(self, now: float, power_w: float) -> Optional[ConsumptionResult]:
        """Engine hook: accrue generation up to now, then book the draw."""
        self.ledger.accrue_generation(now)
        return self.ledger.consume(now, power_w)

    def energy_snapshot(self) -> EnergySnapshot:
        return EnergySnapshot.from_ledger(self.ledger.snapshot())

    def green_ratio(self) -> float:
        return self.ledger.green_ratio()


Site = Union[PlainSite, GreenAwareSite]


def build_site(site_config: SiteConfig, config: SimulationConfig) -> Site:
    """Create the site variant described by site_config."""
    if not site_config.green_aware:
        return PlainSite(name=site_config.name)

    if site_config.profile_path:
        profile = load_profile_csv(
            site_config.profile_path,
            config.profile,
            name=site_config.name,
            integration_step_s=config.ledger.integration_step_s,
        ).profile
    else:
        logger.warning("Site %s has no profile_path, using zero generation", site_config.name)
        profile = GenerationProfile.empty(site_config.name)

    ledger = EnergyLedger(
        profile,
        initial_stock_j=site_config.initial_stock_j,
        scaling_factor=site_config.scaling_factor,
        config=config.ledger,
        name=site_config.name,
    )
    return GreenAwareSite(name=site_config.name, ledger=ledger)


class SiteRegistry:
    """Ordered sites; the global tier's action is an index into this list."""

    def __init__(self, sites: Optional[List[Site]] = None):
        self._sites: List[Site] = []
        self._by_name: Dict[str, Site] = {}
        for site in sites or []:
            self.add(site)

    @classmethod
    def from_config(cls, config: SimulationConfig) -> "SiteRegistry":
        registry = cls([build_site(site_cfg, config) for site_cfg in config.sites])
        logger.info(
            "Configured %d sites (%d green-aware)",
            len(registry),
            len(registry.green_sites()),
        )
        return registry

    def add(self, site: Site) -> int:
        if site.name in self._by_name:
            raise ValueError(f"Duplicate site name: {site.name}")
        self._sites.append(site)
        self._by_name[site.name] = site
        return len(self._sites) - 1

    def __len__(self) -> int:
        return len(self._sites)

    def __iter__(self) -> Iterator[Site]:
        return iter(self._sites)

    def __getitem__(self, index: int) -> Site:
        return self._sites[index]

    def get(self, name: str) -> Optional[Site]:
        return self._by_name.get(name)

    def index_of(self, name: str) -> int:
        for idx, site in enumerate(self._sites):
            if site.name == name:
                return idx
        raise KeyError(name)

    def green_sites(self) -> List[GreenAwareSite]:
        return [site for site in self._sites if site.green_aware]

    def ledgers(self) -> List[EnergyLedger]:
        return [site.ledger for site in self.green_sites()]

    def tick(self, now: float, power_by_site: Mapping[str, float]) -> None:
        """Feed one tick of per-site power draw (W) to every site."""
        for site in self._sites:
            site.on_tick(now, power_by_site.get(site.name, 0.0))

    def system_snapshot(self) -> EnergySnapshot:
        """Cumulative green and total energy over all green-aware sites."""
        total = EnergySnapshot()
        for site in self.green_sites():
            total = total + site.energy_snapshot()
        return total

    def global_green_ratio(self) -> float:
        snapshot = self.system_snapshot()
        if snapshot.total_used_j <= 0:
            return 0.0
        return snapshot.green_used_j / snapshot.total_used_j

    def reset(self, start_time: float = 0.0) -> None:
        for ledger in self.ledgers():
            ledger.reset(start_time=start_time)
