"""
Tests for Compute Sites and the SiteRegistry
"""

import logging

import pytest

from greensched.config import JOULES_PER_KWH, SimulationConfig, SiteConfig
from greensched.ledger import EnergyLedger
from greensched.profile import GenerationProfile, GenerationSample
from greensched.sites import (
    GreenAwareSite,
    PlainSite,
    Resource,
    SiteRegistry,
    build_site,
)
from greensched.tracker import EnergySnapshot


def _green_site(name, stock=0.0, power=0.0):
    profile = GenerationProfile(
        [GenerationSample(0.0, power), GenerationSample(1e6, power)], name=name
    )
    return GreenAwareSite(name=name, ledger=EnergyLedger(profile, initial_stock_j=stock, name=name))


class TestResource:
    def test_free_ratios(self):
        resource = Resource("h0", ram_mb=1000, ram_used_mb=250, bw=100, bw_used=100)
        assert resource.free_ram_ratio == 0.75
        assert resource.free_bw_ratio == 0.0

    def test_zero_capacity(self):
        assert Resource("h0").free_ram_ratio == 0.0


class TestSiteVariants:
    """Test PlainSite vs GreenAwareSite behaviour."""

    def test_plain_site_has_no_green_accounting(self):
        site = PlainSite("grid")
        assert site.on_tick(10.0, 500.0) is None
        assert site.energy_snapshot() == EnergySnapshot()
        assert site.green_ratio() == 0.0
        assert not site.green_aware

    def test_green_site_tick_books_energy(self):
        site = _green_site("dc0", stock=100.0, power=10.0)
        result = site.on_tick(10.0, 30.0)

        # 100 J stock + 100 J generated against 300 J demand
        assert result.green_used_j == pytest.approx(200.0)
        assert result.brown_used_j == pytest.approx(100.0)
        snapshot = site.energy_snapshot()
        assert snapshot.green_used_j == pytest.approx(200.0)
        assert snapshot.total_used_j == pytest.approx(300.0)

    def test_repeated_tick_books_surplus_once(self):
        """The engine delivering the same instant twice does not double the surplus."""
        site = _green_site("dc0", power=10.0)
        site.on_tick(10.0, 8.0)
        second = site.on_tick(10.0, 8.0)

        assert second.energy_j == 0.0
        assert site.ledger.state.cumulative_surplus_j == pytest.approx(20.0)
        assert site.energy_snapshot().total_used_j == pytest.approx(80.0)

    def test_overall_load(self):
        site = PlainSite(
            "grid",
            resources=[
                Resource("a", cpu_utilization=1.0, ram_mb=100, ram_used_mb=100, bw=10, bw_used=10),
                Resource("b", cpu_utilization=0.0, ram_mb=100, ram_used_mb=0, bw=10, bw_used=0),
            ],
        )
        assert site.overall_load == pytest.approx(0.5)
        assert site.average_mips == 0.0


class TestBuildSite:
    def test_plain(self):
        site = build_site(SiteConfig("grid", green_aware=False), SimulationConfig())
        assert isinstance(site, PlainSite)

    def test_green_from_csv(self, tmp_path):
        path = tmp_path / "solar.csv"
        path.write_text("OT\n1\n1\n")
        site = build_site(
            SiteConfig("dc0", profile_path=str(path), initial_stock_kwh=0.001, scaling_factor=2.0),
            SimulationConfig(),
        )

        assert isinstance(site, GreenAwareSite)
        assert site.ledger.initial_stock == pytest.approx(0.001 * JOULES_PER_KWH)
        assert site.ledger.current_green_power(0.0) == pytest.approx(2000.0)

    def test_green_without_profile(self, caplog):
        with caplog.at_level(logging.WARNING):
            site = build_site(SiteConfig("dc0"), SimulationConfig())
        assert site.ledger.accrue_generation(100.0) == 0.0
        assert "no profile_path" in caplog.text


class TestSiteRegistry:
    """Test ordering, lookup and system-wide totals."""

    def test_ordering_and_lookup(self):
        registry = SiteRegistry([_green_site("dc0"), PlainSite("grid"), _green_site("dc1")])
        assert [s.name for s in registry] == ["dc0", "grid", "dc1"]
        assert registry[1].name == "grid"
        assert registry.index_of("dc1") == 2
        assert registry.get("missing") is None
        with pytest.raises(KeyError):
            registry.index_of("missing")

    def test_duplicate_name_rejected(self):
        registry = SiteRegistry([PlainSite("a")])
        with pytest.raises(ValueError):
            registry.add(PlainSite("a"))

    def test_system_totals_cover_green_sites_only(self):
        registry = SiteRegistry([_green_site("dc0", stock=50.0), PlainSite("grid")])
        registry.tick(1.0, {"dc0": 100.0, "grid": 1e6})

        snapshot = registry.system_snapshot()
        assert snapshot.total_used_j == pytest.approx(100.0)
        assert snapshot.green_used_j == pytest.approx(50.0)
        assert registry.global_green_ratio() == pytest.approx(0.5)

    def test_global_ratio_zero_before_use(self):
        assert SiteRegistry([_green_site("dc0")]).global_green_ratio() == 0.0

    def test_reset(self):
        registry = SiteRegistry([_green_site("dc0", stock=50.0)])
        registry.tick(1.0, {"dc0": 100.0})
        registry.reset()
        assert registry.system_snapshot() == EnergySnapshot()
        assert registry[0].ledger.current_stock() == 50.0

    def test_from_config(self):
        config = SimulationConfig(sites=[SiteConfig("a"), SiteConfig("b", green_aware=False)])
        registry = SiteRegistry.from_config(config)
        assert len(registry) == 2
        assert [s.name for s in registry.green_sites()] == ["a"]
