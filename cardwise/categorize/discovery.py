"""Batch merchant → MCC discovery with AI fallback.

Runs MerchantResolver over a set of merchants, then sends whatever is left
to Claude in rate-limited batches. Oracle answers are re-validated through
the CategoryCanonicalizer before they are accepted, and confident ones are
written back as MerchantAlias rows so the next run resolves them locally.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable

from cardwise.categorize.canonical import CategoryCanonicalizer
from cardwise.categorize.claude_ai import OracleResult, discover_batch
from cardwise.categorize.merchant_match import (
    MerchantResolution,
    MerchantResolver,
    normalize_merchant,
)
from cardwise.database.models import MerchantAlias
from cardwise.settings import Settings

logger = logging.getLogger(__name__)

# Confidence caps applied to oracle answers after category re-validation
ORACLE_NON_EXACT_CAP = 0.8
ORACLE_FAILED_MAPPING_CAP = 0.3
FALLBACK_NOTE = " (Category mapping used fallback)"


@dataclass
class DiscoveryStats:
    total_processed: int = 0
    database_matches: int = 0
    fuzzy_matches: int = 0
    pattern_matches: int = 0
    ai_discovered: int = 0
    failed: int = 0
    average_confidence: float = 0.0
    processing_time_ms: int = 0

    _SOURCE_FIELDS = {
        "database": "database_matches",
        "fuzzy_match": "fuzzy_matches",
        "pattern_match": "pattern_matches",
        "ai_discovery": "ai_discovered",
    }

    def record(self, result: MerchantResolution | None) -> None:
        if result is None:
            self.failed += 1
            return
        attr = self._SOURCE_FIELDS.get(result.source)
        if attr:
            setattr(self, attr, getattr(self, attr) + 1)


@dataclass
class DiscoveryOutcome:
    results: dict[str, MerchantResolution | None] = field(default_factory=dict)
    stats: DiscoveryStats = field(default_factory=DiscoveryStats)


def _alias_id(name: str) -> str:
    return "ai_discovery_" + re.sub(r"[^a-z0-9]", "_", name.lower())


class MerchantDiscovery:
    """Resolve many merchants at once.

    Args:
        resolver: Local strategy chain (exact, fuzzy, pattern).
        canonicalizer: Validates oracle category labels.
        repo: Store for alias write-back. None disables persistence.
        claude_fn: Optional callable (system, prompt) -> str. None skips
            the AI fallback entirely.
        settings: Snapshot providing batch size, delay and thresholds.
        sleep: Delay function between oracle batches, injectable for tests.
    """

    def __init__(
        self,
        resolver: MerchantResolver,
        canonicalizer: CategoryCanonicalizer,
        repo=None,
        claude_fn=None,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.resolver = resolver
        self.canonicalizer = canonicalizer
        self.repo = repo
        self.claude_fn = claude_fn
        self.settings = settings or Settings()
        self._sleep = sleep

    def discover(self, merchants: list[str]) -> DiscoveryOutcome:
        started = time.monotonic()
        outcome = DiscoveryOutcome()
        unique = list(dict.fromkeys(m for m in merchants if m and m.strip()))

        unresolved: list[str] = []
        for merchant in unique:
            result = self._resolve_locally(merchant)
            outcome.results[merchant] = result
            if result is None:
                unresolved.append(merchant)

        if unresolved and self.claude_fn is not None:
            discovered = self._discover_with_oracle(unresolved)
            outcome.results.update(discovered)
            self._store_discoveries(discovered)

        confidences = []
        for result in outcome.results.values():
            outcome.stats.record(result)
            if result is not None:
                confidences.append(result.confidence)
        outcome.stats.total_processed = len(unique)
        outcome.stats.average_confidence = (
            sum(confidences) / len(confidences) if confidences else 0.0
        )
        outcome.stats.processing_time_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "MCC discovery: %d merchants, %d database, %d fuzzy, %d pattern,"
            " %d AI, %d unresolved",
            outcome.stats.total_processed, outcome.stats.database_matches,
            outcome.stats.fuzzy_matches, outcome.stats.pattern_matches,
            outcome.stats.ai_discovered, outcome.stats.failed,
        )
        return outcome

    def _resolve_locally(self, merchant: str) -> MerchantResolution | None:
        try:
            return self.resolver.resolve(merchant)
        except Exception:
            logger.exception("Local resolution failed for merchant '%s'", merchant)
            return None

    # ── AI fallback ────────────────────────────────────────

    def _discover_with_oracle(
        self, merchants: list[str],
    ) -> dict[str, MerchantResolution | None]:
        batch_size = max(1, self.settings.get_int("oracle_batch_size"))
        delay = self.settings.get_float("oracle_batch_delay")
        hints = {
            code: mcc.description
            for code, mcc in self.resolver.reference.mcc_codes.items()
        }
        category_names = sorted(c.name for c in self.canonicalizer.categories.values())

        results: dict[str, MerchantResolution | None] = {}
        for start in range(0, len(merchants), batch_size):
            if start and delay > 0:
                self._sleep(delay)
            batch = merchants[start:start + batch_size]
            answers = discover_batch(batch, self.claude_fn, hints, category_names)
            for merchant in batch:
                answer = answers.get(merchant)
                results[merchant] = self._validate(answer) if answer else None
        return results

    def _validate(self, answer: OracleResult) -> MerchantResolution:
        """Re-check the oracle's category and cap its confidence accordingly."""
        mapped = self.canonicalizer.map_category(
            answer.category, answer.sub_category, answer.mcc_code,
        )
        reasoning = answer.reasoning
        if mapped.is_exact_match:
            confidence = answer.confidence
        elif mapped.mapping.category_id == self.canonicalizer.catch_all.id:
            confidence = min(answer.confidence, ORACLE_FAILED_MAPPING_CAP)
            reasoning += FALLBACK_NOTE
        else:
            confidence = min(answer.confidence, ORACLE_NON_EXACT_CAP)
        return MerchantResolution(
            mcc_code=answer.mcc_code,
            confidence=confidence,
            source="ai_discovery",
            matched=answer.merchant_name,
            description=answer.description,
            reasoning=reasoning.strip(),
            category=mapped.mapping.category_name,
            sub_category=mapped.mapping.sub_category_name or "",
        )

    def _store_discoveries(self, discovered: dict[str, MerchantResolution | None]) -> None:
        if self.repo is None:
            return
        threshold = self.settings.get_float("discovery_store_threshold")
        stored = 0
        for merchant, result in discovered.items():
            if result is None or result.confidence < threshold:
                continue
            name = normalize_merchant(merchant) or merchant.upper()
            try:
                self.repo.upsert_merchant_alias(MerchantAlias(
                    id=_alias_id(name),
                    merchant_name=name,
                    aliases=[merchant],
                    mcc_code=result.mcc_code,
                    confidence=result.confidence,
                    usage_count=0,
                    created_by="ai_discovery",
                ))
                self.repo.add_mcc_merchant_pattern(result.mcc_code, name)
                stored += 1
            except Exception:
                logger.exception("Failed to store discovered alias for '%s'", merchant)
        if stored:
            logger.info("Stored %d new merchant aliases from AI discovery", stored)
