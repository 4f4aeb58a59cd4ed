"""Tests for cardwise.settings: snapshots and the layered provider."""

import pytest

from cardwise.database.repository import Repository
from cardwise.settings import (
    DEFAULT_SETTINGS,
    FALLBACK_POINT_VALUE,
    ConfigError,
    ConfigProvider,
    Settings,
)
from tests.conftest import MIGRATIONS_DIR


@pytest.fixture
def repo():
    r = Repository(":memory:")
    r.apply_migrations(MIGRATIONS_DIR)
    yield r
    r.close()


class FakeClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


class TestSettings:
    def test_defaults(self):
        s = Settings()
        assert s.get_float("fuzzy_threshold") == 0.8
        assert s.get_int("max_recommendations") == 5

    def test_from_mapping_overrides(self):
        s = Settings.from_mapping({"max_recommendations": "7"})
        assert s.get_int("max_recommendations") == 7
        assert s.get_float("fuzzy_threshold") == DEFAULT_SETTINGS["fuzzy_threshold"]

    def test_snapshot_is_read_only(self):
        s = Settings()
        with pytest.raises(TypeError):
            s.values["fuzzy_threshold"] = 0.1

    def test_missing_key_raises(self):
        with pytest.raises(ConfigError, match="Missing required setting"):
            Settings().get_float("no_such_key")

    def test_missing_key_uses_default(self):
        assert Settings().get_float("no_such_key", 1.5) == 1.5

    def test_non_numeric_raises(self):
        s = Settings.from_mapping({"fuzzy_threshold": "high"})
        with pytest.raises(ConfigError, match="must be numeric"):
            s.get_float("fuzzy_threshold")

    def test_get_list_lowercases_and_splits(self):
        s = Settings.from_mapping({"preferred_networks": "Visa, RuPay ,"})
        assert s.get_list("preferred_networks") == ["visa", "rupay"]

    def test_get_list_accepts_sequences(self):
        s = Settings.from_mapping({"preferred_networks": ["Visa", "Mastercard"]})
        assert s.get_list("preferred_networks") == ["visa", "mastercard"]


class TestPointValue:
    def test_cashback_is_one(self):
        assert Settings().point_value("cashback") == 1.0

    def test_points_currency_below_one(self):
        assert Settings().point_value("reward_points") == 0.25

    def test_unknown_currency_uses_default(self):
        assert Settings().point_value("mystery_coins") == DEFAULT_SETTINGS["point_value.default"]

    def test_non_positive_falls_back(self):
        s = Settings.from_mapping({"point_value.cashback": 0})
        assert s.point_value("cashback") == FALLBACK_POINT_VALUE

    def test_garbage_falls_back(self):
        s = Settings.from_mapping({"point_value.cashback": "lots"})
        assert s.point_value("cashback") == FALLBACK_POINT_VALUE


class TestConfigProvider:
    def test_layering_store_wins(self, repo):
        repo.set_app_config_value("max_recommendations", "9")
        provider = ConfigProvider(repo=repo, overrides={"max_recommendations": 7})
        assert provider.get_int("max_recommendations") == 9

    def test_file_overrides_beat_defaults(self):
        provider = ConfigProvider(overrides={"max_recommendations": 7})
        assert provider.get_int("max_recommendations") == 7

    def test_ttl_cache_hides_changes_until_expiry(self, repo):
        clock = FakeClock()
        provider = ConfigProvider(repo=repo, ttl_seconds=60, clock=clock)
        assert provider.get_int("max_recommendations") == 5
        repo.set_app_config_value("max_recommendations", "8")
        assert provider.get_int("max_recommendations") == 5
        clock.t = 61
        assert provider.get_int("max_recommendations") == 8

    def test_set_invalidates_cache(self, repo):
        provider = ConfigProvider(repo=repo, ttl_seconds=3600)
        assert provider.get("ranking_mode") == "earnings"
        provider.set("ranking_mode", "net_savings", description="rank by fee-inclusive value")
        assert provider.get("ranking_mode") == "net_savings"

    def test_set_without_store_raises(self):
        with pytest.raises(ConfigError):
            ConfigProvider().set("ranking_mode", "earnings")

    def test_initialize_defaults_includes_file_overrides(self, repo):
        provider = ConfigProvider(repo=repo, overrides={"max_recommendations": 4})
        inserted = provider.initialize_defaults()
        assert inserted == len(DEFAULT_SETTINGS)
        assert repo.get_app_config()["max_recommendations"] == "4"

    def test_initialize_defaults_keeps_existing_rows(self, repo):
        repo.set_app_config_value("fuzzy_threshold", "0.9")
        provider = ConfigProvider(repo=repo)
        inserted = provider.initialize_defaults()
        assert inserted == len(DEFAULT_SETTINGS) - 1
        assert provider.get_float("fuzzy_threshold") == 0.9

    def test_snapshot_is_frozen_against_later_sets(self, repo):
        provider = ConfigProvider(repo=repo)
        snap = provider.snapshot()
        provider.set("max_recommendations", "2")
        assert snap.get_int("max_recommendations") == 5
        assert provider.snapshot().get_int("max_recommendations") == 2
