"""Runtime settings: key → value provider with defaults and a TTL cache.

Resolution order (later wins):
  1. DEFAULT_SETTINGS below
  2. settings.yaml overrides (via Config.settings)
  3. app_config rows in the store (runtime-editable)

Pipeline code never reads the provider directly. Callers take a frozen
``Settings`` snapshot once per job and pass it down, so a value changed
mid-run cannot split one job across two configurations.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)

# Hard-coded point value used when configuration yields a non-positive value
FALLBACK_POINT_VALUE = 0.25

DEFAULT_CACHE_TTL_SECONDS = 300.0

DEFAULT_SETTINGS: dict[str, Any] = {
    # Merchant resolution
    "fuzzy_threshold": 0.8,
    "pattern_min_confidence": 0.6,
    "oracle_batch_size": 5,
    "oracle_batch_delay": 1.0,
    "discovery_store_threshold": 0.8,
    # Categorization confidence
    "review_threshold": 0.6,
    "high_confidence_threshold": 0.85,
    "medium_confidence_threshold": 0.7,
    "manual_review_amount": 2000,
    # Spending analysis
    "min_total_spending": 100,
    "min_category_percentage": 1.0,
    "min_category_amount": 50,
    "max_categories": 10,
    # Recommendations
    "min_recommendation_score": 10,
    "max_recommendations": 5,
    "fallback_recommendations": 3,
    "ranking_mode": "earnings",
    "base_score": 10,
    "weight.first_year_value": 0.25,
    "weight.category_alignment": 0.4,
    "weight.fee_efficiency": 0.2,
    "weight.brand_preference": 0.1,
    "weight.accessibility": 0.05,
    "preferred_networks": "visa,mastercard",
    "preferred_issuers": "",
    "popular_issuers": "hdfc bank,sbi card,icici bank,axis bank",
    "limited_acceptance_networks": "amex,american express,diners,diners club",
    # Point values per reward currency
    "point_value.cashback": 1.0,
    "point_value.statement_credit": 1.0,
    "point_value.amazon_pay_balance": 1.0,
    "point_value.neu_coins": 1.0,
    "point_value.cash_points": 1.0,
    "point_value.reward_points": 0.25,
    "point_value.edge_miles": 0.20,
    "point_value.miles": 0.5,
    "point_value.default": 0.25,
    # Bonuses
    "bonus.lifetime_free": 15,
    "bonus.preferred_network": 30,
    "bonus.preferred_issuer": 20,
    "bonus.popular_issuer": 10,
    "bonus.high_recommendation": 10,
    "bonus.medium_recommendation": 5,
    "bonus.high_satisfaction": 5,
    "bonus.digital_max": 5,
    # Penalties
    "penalty.inactive": 50,
    "penalty.high_fee_low_benefit": 20,
    "penalty.poor_satisfaction": 10,
    "penalty.limited_acceptance": 5,
    # Thresholds
    "threshold.high_annual_fee": 2000,
    "threshold.high_income": 1000000,
    "threshold.excellent_credit": 750,
    "threshold.good_satisfaction": 4.5,
    "threshold.poor_satisfaction": 3.5,
    "threshold.high_recommendation": 85,
    "threshold.medium_recommendation": 75,
    # Job scheduler
    "worker_count": 2,
    "job_timeout_seconds": 600,
    "sweep_interval_seconds": 300,
    "shutdown_grace_seconds": 5.0,
    "backoff_base_seconds": 2.0,
    "backoff_multiplier": 1.5,
    "backoff_max_seconds": 30.0,
    "backoff_max_exponent": 10,
}


class ConfigError(ValueError):
    """Raised for a missing or malformed required setting."""


@dataclass(frozen=True)
class Settings:
    """Immutable snapshot of resolved settings for one pipeline invocation."""

    values: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_SETTINGS))
    )

    @classmethod
    def from_mapping(cls, overrides: Mapping[str, Any] | None = None) -> Settings:
        merged = dict(DEFAULT_SETTINGS)
        if overrides:
            merged.update(overrides)
        return cls(values=MappingProxyType(merged))

    def _raw(self, key: str, default: Any = None) -> Any:
        if key in self.values:
            return self.values[key]
        if default is not None:
            return default
        raise ConfigError(f"Missing required setting: {key}")

    def get_float(self, key: str, default: float | None = None) -> float:
        raw = self._raw(key, default)
        try:
            return float(raw)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Setting {key} must be numeric, got {raw!r}") from e

    def get_int(self, key: str, default: int | None = None) -> int:
        return int(self.get_float(key, default))

    def get_str(self, key: str, default: str | None = None) -> str:
        return str(self._raw(key, default))

    def get_list(self, key: str) -> list[str]:
        """Comma-separated setting as a lowercase list."""
        raw = self.values.get(key, "")
        if isinstance(raw, (list, tuple)):
            items = raw
        else:
            items = str(raw).split(",")
        return [str(i).strip().lower() for i in items if str(i).strip()]

    def point_value(self, currency: str | None) -> float:
        """Monetary value of one unit of a reward currency.

        Unknown currencies use point_value.default. A non-positive or
        unparseable configured value falls back to FALLBACK_POINT_VALUE.
        """
        key = f"point_value.{(currency or 'default').lower()}"
        raw = self.values.get(key, self.values.get("point_value.default"))
        try:
            value = float(raw)
        except (TypeError, ValueError):
            value = 0.0
        if value <= 0:
            logger.warning(
                "Non-positive point value for %s (%r), using fallback %.2f",
                currency, raw, FALLBACK_POINT_VALUE,
            )
            return FALLBACK_POINT_VALUE
        return value


class ConfigProvider:
    """Layered key → value lookups with a TTL cache.

    Args:
        repo: Optional Repository; when given, app_config rows override
            file settings and ``set()`` persists through it.
        overrides: File-level overrides, typically ``Config.settings``.
        ttl_seconds: How long a resolved view is reused before reloading.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        repo=None,
        overrides: Mapping[str, Any] | None = None,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.repo = repo
        self.overrides = dict(overrides or {})
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: dict[str, Any] | None = None
        self._loaded_at = 0.0
        self._lock = threading.Lock()

    def _resolve(self) -> dict[str, Any]:
        merged = dict(DEFAULT_SETTINGS)
        merged.update(self.overrides)
        if self.repo is not None:
            merged.update(self.repo.get_app_config())
        return merged

    def _values(self) -> dict[str, Any]:
        with self._lock:
            now = self._clock()
            if self._cache is None or now - self._loaded_at >= self.ttl_seconds:
                self._cache = self._resolve()
                self._loaded_at = now
            return self._cache

    def invalidate(self) -> None:
        with self._lock:
            self._cache = None

    def get(self, key: str, default: Any = None) -> Any:
        return self._values().get(key, default)

    def get_float(self, key: str, default: float | None = None) -> float:
        return self.snapshot().get_float(key, default)

    def get_int(self, key: str, default: int | None = None) -> int:
        return self.snapshot().get_int(key, default)

    def set(self, key: str, value: Any, description: str | None = None) -> None:
        """Persist a value and invalidate the cache so the next read sees it."""
        if self.repo is None:
            raise ConfigError("Cannot set settings without a backing store")
        self.repo.set_app_config_value(key, str(value), description)
        self.invalidate()
        logger.info("Updated setting %s = %s", key, value)

    def initialize_defaults(self) -> int:
        """Write every file-level value missing from the store.

        Values come from DEFAULT_SETTINGS merged with the file overrides.
        Existing rows are left alone. Returns rows inserted.
        """
        if self.repo is None:
            raise ConfigError("Cannot initialize settings without a backing store")
        inserted = 0
        for key, value in {**DEFAULT_SETTINGS, **self.overrides}.items():
            if self.repo.insert_app_config_default(key, str(value)):
                inserted += 1
        if inserted:
            self.invalidate()
        logger.info("Initialized %d default settings", inserted)
        return inserted

    def snapshot(self) -> Settings:
        return Settings(values=MappingProxyType(dict(self._values())))
