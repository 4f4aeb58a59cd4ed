"""Categorization pipeline: merchant → MCC → canonical category per transaction.

Steps for a session:
1.  Load unresolved transactions                     (5%)
2.  Resolve merchants: exact → fuzzy → pattern → AI  (10-40%)
3.  Load taxonomy mappings                           (50%)
4.  Canonicalize, blend and write each transaction  (50-90%)

A transaction that raises is logged and counted as failed; the rest of
the session still gets written.

Merchants nobody can resolve still get a category (pattern lookup or the
catch-all) so every written row satisfies the taxonomy invariant; they
are counted as failed and flagged for review.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Callable

from cardwise.categorize.canonical import CategoryCanonicalizer
from cardwise.categorize.discovery import MerchantDiscovery
from cardwise.categorize.merchant_match import (
    MerchantResolution,
    MerchantResolver,
    ReferenceData,
    infer_from_description,
)
from cardwise.database import queries
from cardwise.database.models import Transaction
from cardwise.database.repository import Repository
from cardwise.settings import Settings

logger = logging.getLogger(__name__)

RESOLVER_WEIGHT = 0.6
CANONICAL_WEIGHT = 0.4
CONSERVATISM_FACTOR = 0.95

ProgressFn = Callable[[int, str], None]


def blend_confidence(resolver_confidence: float, canonical_confidence: float) -> float:
    """Final transaction confidence from resolver and canonicalizer scores."""
    blended = (
        resolver_confidence * RESOLVER_WEIGHT
        + canonical_confidence * CANONICAL_WEIGHT
    ) * CONSERVATISM_FACTOR
    return round(max(0.0, min(1.0, blended)), 4)


def confidence_tier(confidence: float, settings: Settings) -> str:
    if confidence >= settings.get_float("high_confidence_threshold"):
        return "high"
    if confidence >= settings.get_float("medium_confidence_threshold"):
        return "medium"
    return "low"


@dataclass
class CategorizeResult:
    """Outcome of categorizing a single transaction."""
    transaction_id: str
    category_id: str
    category_name: str
    confidence: float
    source: str
    needs_review: bool
    is_verified: bool
    mcc_code: str | None = None
    sub_category_id: str | None = None
    resolved: bool = True


@dataclass
class CategorizationStats:
    """Summary of a categorization run."""
    total_processed: int = 0
    successfully_categorized: int = 0
    high_confidence: int = 0
    medium_confidence: int = 0
    low_confidence: int = 0
    needs_review: int = 0
    failed: int = 0
    by_category: dict[str, int] = field(default_factory=dict)
    by_source: dict[str, int] = field(default_factory=dict)
    average_confidence: float = 0.0
    processing_time_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class CategorizationPipeline:
    """Resolves and canonicalizes a session's transactions.

    Args:
        repo: Store for transactions and reference data.
        settings: Snapshot of thresholds for this run.
        claude_fn: Optional callable (system, prompt) -> str for the AI
            fallback. If None, unresolved merchants skip straight to
            keyword inference.
        catch_all_id: Catch-all category id.
        sleep: Delay between oracle batches.
    """

    def __init__(
        self,
        repo: Repository,
        settings: Settings | None = None,
        claude_fn=None,
        catch_all_id: str = "cat_other",
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repo = repo
        self.settings = settings or Settings()
        self.claude_fn = claude_fn
        self.catch_all_id = catch_all_id
        self._sleep = sleep

    # ── Entry points ───────────────────────────────────────

    def categorize_session(
        self, session_id: str, progress: ProgressFn | None = None,
    ) -> CategorizationStats:
        """Categorize every not-yet-resolved transaction in a session."""
        txns = self.repo.get_unresolved_transactions(session_id)
        return self.categorize_transactions(txns, progress=progress)

    def recategorize_session(
        self,
        session_id: str,
        force: bool = False,
        only_low_confidence: bool = False,
        transaction_ids: list[str] | None = None,
        progress: ProgressFn | None = None,
    ) -> CategorizationStats:
        """Re-run categorization over already-resolved transactions.

        Args:
            force: Re-run every transaction in the session.
            only_low_confidence: Re-run those below the review threshold
                or flagged for review.
            transaction_ids: Re-run exactly these transactions.

        With no option set, only unresolved transactions are processed.
        """
        txns = self.repo.get_session_transactions(session_id)
        if transaction_ids is not None:
            wanted = set(transaction_ids)
            txns = [t for t in txns if t.id in wanted]
        elif only_low_confidence:
            threshold = self.settings.get_float("review_threshold")
            txns = [
                t for t in txns
                if t.needs_review
                or t.resolution_confidence is None
                or t.resolution_confidence < threshold
            ]
        elif not force:
            txns = [t for t in txns if t.category_id is None]
        logger.info("Recategorizing %d transactions in session %s", len(txns), session_id)
        return self.categorize_transactions(txns, progress=progress)

    def categorize_transactions(
        self, txns: list[Transaction], progress: ProgressFn | None = None,
    ) -> CategorizationStats:
        started = time.monotonic()
        report = progress or (lambda pct, step: None)
        stats = CategorizationStats()
        report(5, "loaded_transactions")
        if not txns:
            report(100, "completed")
            return stats

        report(10, "discovering_mcc")
        reference = ReferenceData.from_repository(self.repo)
        canonicalizer = CategoryCanonicalizer.from_repository(
            self.repo, catch_all_id=self.catch_all_id,
        )
        resolver = MerchantResolver(
            reference,
            fuzzy_threshold=self.settings.get_float("fuzzy_threshold"),
            pattern_min_confidence=self.settings.get_float("pattern_min_confidence"),
        )
        discovery = MerchantDiscovery(
            resolver, canonicalizer, repo=self.repo, claude_fn=self.claude_fn,
            settings=self.settings, sleep=self._sleep,
        )
        outcome = discovery.discover([t.merchant_label for t in txns])
        report(40, "mcc_discovered")

        report(50, "mappings_loaded")
        confidences: list[float] = []
        for i, txn in enumerate(txns):
            try:
                resolution = outcome.results.get(txn.merchant_label)
                if resolution is None:
                    resolution = infer_from_description(txn.raw_description, txn.merchant or "")
                result = self.categorize_transaction(txn, resolution, reference, canonicalizer)
                self.repo.update_transaction_resolution(
                    result.transaction_id,
                    mcc_code=result.mcc_code,
                    category_id=result.category_id,
                    sub_category_id=result.sub_category_id,
                    confidence=result.confidence,
                    source=result.source,
                    needs_review=result.needs_review,
                    is_verified=result.is_verified,
                )
            except Exception:
                logger.exception("Failed to categorize transaction %s", txn.id)
                stats.failed += 1
            else:
                self._record(stats, result)
                confidences.append(result.confidence)
            report(50 + int(40 * (i + 1) / len(txns)), "categorizing")

        report(90, "updating_database")
        stats.total_processed = len(txns)
        if confidences:
            stats.average_confidence = round(sum(confidences) / len(confidences), 4)
        stats.processing_time_ms = int((time.monotonic() - started) * 1000)
        report(100, "completed")
        logger.info(
            "Categorized %d transactions: %d resolved, %d flagged, %d failed",
            stats.total_processed, stats.successfully_categorized,
            stats.needs_review, stats.failed,
        )
        return stats

    # ── Per-transaction logic ──────────────────────────────

    def categorize_transaction(
        self,
        txn: Transaction,
        resolution: MerchantResolution | None,
        reference: ReferenceData,
        canonicalizer: CategoryCanonicalizer,
    ) -> CategorizeResult:
        merchant = txn.merchant_label
        if resolution is not None:
            label, sub_label = self._labels_for(resolution, reference, canonicalizer)
            mapped = canonicalizer.map_category(
                label, sub_label, resolution.mcc_code, merchant,
            )
            resolver_confidence = resolution.confidence
            source = resolution.source
            mcc_code = resolution.mcc_code
        else:
            mapped = canonicalizer.map_category(None, None, None, merchant)
            resolver_confidence = 0.0
            source = "unresolved"
            mcc_code = None

        confidence = blend_confidence(resolver_confidence, mapped.mapping.confidence)
        manual = (
            txn.amount > self.settings.get_float("manual_review_amount")
            or mapped.mapping.category_id == canonicalizer.catch_all.id
        )
        needs_review = (
            confidence < self.settings.get_float("review_threshold")
            or mapped.fallback_used
            or manual
        )
        is_verified = (
            confidence >= self.settings.get_float("high_confidence_threshold")
            and not needs_review
        )
        return CategorizeResult(
            transaction_id=txn.id,
            category_id=mapped.mapping.category_id,
            category_name=mapped.mapping.category_name,
            sub_category_id=mapped.mapping.sub_category_id,
            confidence=confidence,
            source=source,
            needs_review=needs_review,
            is_verified=is_verified,
            mcc_code=mcc_code,
            resolved=resolution is not None,
        )

    @staticmethod
    def _labels_for(
        resolution: MerchantResolution,
        reference: ReferenceData,
        canonicalizer: CategoryCanonicalizer,
    ) -> tuple[str | None, str | None]:
        """Category label to canonicalize for a resolved merchant.

        Oracle answers carry their own (already validated) label. Local
        matches use the stored placement of their MCC record, falling back
        to the MCC description.
        """
        if resolution.category:
            return resolution.category, resolution.sub_category or None
        mcc = reference.mcc_codes.get(resolution.mcc_code)
        if mcc is not None and canonicalizer.is_valid_category(mcc.category_id):
            return (
                canonicalizer.category_name(mcc.category_id),
                canonicalizer.sub_category_name(mcc.sub_category_id),
            )
        return resolution.description or None, None

    def _record(self, stats: CategorizationStats, result: CategorizeResult) -> None:
        if result.resolved:
            stats.successfully_categorized += 1
        else:
            stats.failed += 1
        tier = confidence_tier(result.confidence, self.settings)
        if tier == "high":
            stats.high_confidence += 1
        elif tier == "medium":
            stats.medium_confidence += 1
        else:
            stats.low_confidence += 1
        if result.needs_review:
            stats.needs_review += 1
        stats.by_category[result.category_name] = stats.by_category.get(result.category_name, 0) + 1
        stats.by_source[result.source] = stats.by_source.get(result.source, 0) + 1


def get_categorization_insights(
    repo: Repository, session_id: str, settings: Settings | None = None,
) -> dict:
    """Confidence distribution, review counts, sources and top merchants."""
    settings = settings or Settings()
    txns = repo.get_session_transactions(session_id)
    distribution = {"high": 0, "medium": 0, "low": 0, "unresolved": 0}
    for txn in txns:
        if txn.resolution_confidence is None:
            distribution["unresolved"] += 1
        else:
            distribution[confidence_tier(txn.resolution_confidence, settings)] += 1
    return {
        "session_id": session_id,
        "total_transactions": len(txns),
        "confidence_distribution": distribution,
        "needs_review": sum(1 for t in txns if t.needs_review),
        "verified": sum(1 for t in txns if t.is_verified),
        "by_source": queries.count_by_resolution_source(repo.conn, session_id),
        "top_merchants": queries.top_merchants(repo.conn, session_id, limit=10),
    }
