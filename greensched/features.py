"""
State Feature Builders

Global state (per site, then task, then context):
    site:    surplus, stock, mips, cpu utilization, queue length
             (plain sites contribute 0, 0, 0, 1, 1)
    task:    cpu requirement, memory requirement
    context: cyclic time, global green ratio
    -> 5 * sites + 4 values

Local state (per resource, then task, then context):
    resource: mips, cpu utilization, free RAM ratio, free bandwidth
              ratio, active flag, VM count / 10, site green ratio
    task:     cpu requirement, memory requirement, bandwidth / 1000,
              priority / 10
    context:  queue length, site load
    -> 7 * resources + 6 values
"""

import logging
from typing import Any, List

from .normalizer import StateNormalizer, sanitize_vector
from .sites import Site, SiteRegistry

logger = logging.getLogger(__name__)

GLOBAL_SITE_FEATURES = 5
GLOBAL_EXTRA_FEATURES = 4
LOCAL_RESOURCE_FEATURES = 7
LOCAL_EXTRA_FEATURES = 6

PLAIN_SITE_DEFAULTS = (0.0, 0.0, 0.0, 1.0, 1.0)
DEFAULT_SITE_LOAD = 0.5


def _clip01(value: float) -> float:
    return max(0.0, min(1.0, value))


class GlobalFeatureBuilder:
    """Site-selection state."""

    def __init__(self, normalizer: StateNormalizer, stats_every: int = 1000):
        self.normalizer = normalizer
        self.stats_every = stats_every
        self._calls = 0

    @staticmethod
    def dimension(site_count: int) -> int:
        return site_count * GLOBAL_SITE_FEATURES + GLOBAL_EXTRA_FEATURES

    def build(self, sites: SiteRegistry, task: Any, now: float) -> List[float]:
        norm = self.normalizer
        state: List[float] = []

        for site in sites:
            if not site.green_aware:
                state.extend(PLAIN_SITE_DEFAULTS)
                continue
            ledger = site.ledger
            state.append(norm.normalize_green_surplus(ledger.surplus_for_current_tick, f"{site.name}.surplus"))
            state.append(norm.normalize_green_stock(ledger.current_stock(), f"{site.name}.stock"))
            state.append(norm.normalize_mips(site.average_mips, "site_mips"))
            state.append(norm.normalize_cpu_utilization(site.cpu_utilization))
            state.append(norm.normalize_queue_length(site.queue_length, "site_queue_length"))

        state.append(norm.normalize_cpu_requirement(task.length_mi, "task_cpu"))
        state.append(norm.normalize_mem_requirement(task.mem_mb, "task_mem"))

        state.append(norm.normalize_time(now))
        state.append(norm.normalize_ratio(sites.global_green_ratio(), "global_green_ratio"))

        self._calls += 1
        if self.stats_every and self._calls % self.stats_every == 0:
            norm.log_statistics()
            logger.info("Global state dimension: %d for task %s", len(state), task.task_id)

        return sanitize_vector(state, "global state")


class LocalFeatureBuilder:
    """Resource-selection state within one site."""

    def __init__(self, normalizer: StateNormalizer, stats_every: int = 500):
        self.normalizer = normalizer
        self.stats_every = stats_every
        self._calls = 0

    @staticmethod
    def dimension(resource_count: int) -> int:
        return resource_count * LOCAL_RESOURCE_FEATURES + LOCAL_EXTRA_FEATURES

    def build(self, site: Site, task: Any) -> List[float]:
        norm = self.normalizer
        state: List[float] = []
        site_green_ratio = site.green_ratio()

        for resource in site.resources:
            state.append(norm.normalize_mips(resource.mips, "resource_mips"))
            state.append(norm.normalize_cpu_utilization(resource.cpu_utilization))
            state.append(resource.free_ram_ratio)
            state.append(resource.free_bw_ratio)
            state.append(1.0 if resource.active else 0.0)
            state.append(min(resource.vm_count / 10.0, 1.0))
            state.append(_clip01(site_green_ratio))

        state.append(norm.normalize_cpu_requirement(task.length_mi, "local_task_cpu"))
        state.append(norm.normalize_mem_requirement(task.mem_mb, "local_task_mem"))
        state.append(_clip01(task.bw_mbps / 1000.0))
        state.append(_clip01(task.priority / 10.0))

        state.append(norm.normalize_queue_length(site.queue_length, "local_queue_length"))
        state.append(site.overall_load if site.green_aware else DEFAULT_SITE_LOAD)

        self._calls += 1
        if self.stats_every and self._calls % self.stats_every == 0:
            norm.log_statistics()
            logger.info("Local state dimension: %d for task %s", len(state), task.task_id)

        return sanitize_vector(state, "local state")
