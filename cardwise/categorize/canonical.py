"""Category canonicalization: free-form labels → the fixed taxonomy.

Fallback chain (first success wins):
  1. Exact label match on category id / name / slug     0.95 with sub, 0.9 without
  2. Merchant-pattern lookup from MCC merchant_patterns  0.8
  3. MCC record (or MCC range default)                   0.7 / range confidence
  4. Catch-all "Other"                                   0.3

The taxonomy is closed: nothing here ever creates a category. A taxonomy
without its catch-all is a data-integrity bug and raises TaxonomyError
at construction, before any transaction is touched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cardwise.database.models import Category, MCCCode, SubCategory

logger = logging.getLogger(__name__)

EXACT_WITH_SUB_CONFIDENCE = 0.95
EXACT_CONFIDENCE = 0.9
PATTERN_CONFIDENCE = 0.8
MCC_RECORD_CONFIDENCE = 0.7
CATCH_ALL_CONFIDENCE = 0.3

# (low, high, category label, subcategory label, confidence)
MCC_RANGE_DEFAULTS: list[tuple[int, int, str, str | None, float]] = [
    (3000, 3299, "travel", "airlines", 0.8),
    (3500, 3999, "travel", "hotels", 0.8),
    (4000, 4799, "transportation", None, 0.8),
    (5000, 5999, "shopping", None, 0.7),
    (7000, 7999, "services", None, 0.7),
]


class TaxonomyError(Exception):
    """Raised when the taxonomy is unusable (no catch-all category)."""


@dataclass
class CategoryMapping:
    category_id: str
    category_name: str
    confidence: float
    sub_category_id: str | None = None
    sub_category_name: str | None = None


@dataclass
class CategoryMappingResult:
    mapping: CategoryMapping
    is_exact_match: bool
    fallback_used: bool
    reasoning: str = ""


def mcc_range_default(mcc_code: str | None) -> tuple[str, str | None, float] | None:
    """Coarse (label, sub_label, confidence) for an MCC with no stored record."""
    try:
        code = int(mcc_code or "")
    except ValueError:
        return None
    for low, high, label, sub_label, confidence in MCC_RANGE_DEFAULTS:
        if low <= code <= high:
            return label, sub_label, confidence
    return None


class CategoryCanonicalizer:
    """Maps (label, sub_label, mcc_code) into the fixed taxonomy.

    Args:
        categories: All top-level categories.
        sub_categories: All subcategories.
        mcc_codes: MCC reference records (patterns and stored placements).
        catch_all_id: Id (or slug/name) of the catch-all category.

    Raises:
        TaxonomyError: If the catch-all cannot be found.
    """

    def __init__(
        self,
        categories: list[Category],
        sub_categories: list[SubCategory],
        mcc_codes: list[MCCCode],
        catch_all_id: str = "cat_other",
    ):
        self.categories = {c.id: c for c in categories}
        self.sub_categories = {s.id: s for s in sub_categories}
        self._category_keys: dict[str, Category] = {}
        for cat in categories:
            for key in (cat.id, cat.name, cat.slug):
                if key:
                    self._category_keys.setdefault(key.lower().strip(), cat)
        self._sub_keys: dict[str, list[SubCategory]] = {}
        for sub in sub_categories:
            for key in (sub.id, sub.name, sub.slug):
                if key:
                    self._sub_keys.setdefault(key.lower().strip(), []).append(sub)

        self._pattern_map: dict[str, tuple[str, str | None]] = {}
        self._mcc_map: dict[str, tuple[str, str | None]] = {}
        for mcc in mcc_codes:
            if not mcc.category_id or mcc.category_id not in self.categories:
                continue
            sub_id = mcc.sub_category_id if mcc.sub_category_id in self.sub_categories else None
            self._mcc_map[mcc.code] = (mcc.category_id, sub_id)
            for pattern in mcc.merchant_patterns:
                key = (pattern or "").lower().strip()
                if key and "*" not in key and "?" not in key:
                    self._pattern_map.setdefault(key, (mcc.category_id, sub_id))

        catch_all = self._category_keys.get(catch_all_id.lower()) or self._category_keys.get("other")
        if catch_all is None:
            raise TaxonomyError(
                f"Catch-all category '{catch_all_id}' missing from taxonomy"
            )
        self.catch_all = catch_all

    @classmethod
    def from_repository(cls, repo, catch_all_id: str = "cat_other") -> CategoryCanonicalizer:
        return cls(
            repo.get_categories(), repo.get_sub_categories(),
            repo.get_mcc_codes(), catch_all_id=catch_all_id,
        )

    def is_valid_category(self, category_id: str | None) -> bool:
        return category_id in self.categories

    def category_name(self, category_id: str | None) -> str | None:
        cat = self.categories.get(category_id or "")
        return cat.name if cat else None

    def sub_category_name(self, sub_category_id: str | None) -> str | None:
        sub = self.sub_categories.get(sub_category_id or "")
        return sub.name if sub else None

    # ── Lookup helpers ─────────────────────────────────────

    def _find_category(self, label: str | None) -> Category | None:
        if not label:
            return None
        return self._category_keys.get(label.lower().strip())

    def _find_sub_category(self, label: str | None, category_id: str) -> SubCategory | None:
        if not label:
            return None
        for sub in self._sub_keys.get(label.lower().strip(), []):
            if sub.category_id == category_id:
                return sub
        return None

    def _mapping(
        self, category_id: str, sub_category_id: str | None, confidence: float,
    ) -> CategoryMapping:
        cat = self.categories[category_id]
        sub = self.sub_categories.get(sub_category_id or "")
        if sub is not None and sub.category_id != category_id:
            sub = None
        return CategoryMapping(
            category_id=cat.id,
            category_name=cat.name,
            confidence=confidence,
            sub_category_id=sub.id if sub else None,
            sub_category_name=sub.name if sub else None,
        )

    def _pattern_lookup(self, key: str | None) -> tuple[str, str | None] | None:
        if not key:
            return None
        key = key.lower().strip()
        if not key:
            return None
        direct = self._pattern_map.get(key)
        if direct is not None:
            return direct
        for pattern, target in self._pattern_map.items():
            if pattern in key or (len(key) >= 3 and key in pattern):
                return target
        return None

    # ── Public API ─────────────────────────────────────────

    def map_category(
        self,
        label: str | None,
        sub_label: str | None = None,
        mcc_code: str | None = None,
        merchant: str | None = None,
    ) -> CategoryMappingResult:
        """Map a label into the taxonomy. Never returns an empty mapping."""
        # 1. Exact label match
        cat = self._find_category(label)
        if cat is not None:
            sub = self._find_sub_category(sub_label, cat.id)
            confidence = EXACT_WITH_SUB_CONFIDENCE if sub else EXACT_CONFIDENCE
            return CategoryMappingResult(
                mapping=self._mapping(cat.id, sub.id if sub else None, confidence),
                is_exact_match=True,
                fallback_used=False,
                reasoning=f"Exact category match: {label}",
            )

        # 2. Merchant-pattern lookup
        for key in (label, sub_label, merchant):
            target = self._pattern_lookup(key)
            if target is not None:
                return CategoryMappingResult(
                    mapping=self._mapping(target[0], target[1], PATTERN_CONFIDENCE),
                    is_exact_match=False,
                    fallback_used=False,
                    reasoning=f"Merchant pattern match: {key}",
                )

        # 3. MCC record, then MCC range default
        if mcc_code:
            stored = self._mcc_map.get(mcc_code)
            if stored is not None:
                return CategoryMappingResult(
                    mapping=self._mapping(stored[0], stored[1], MCC_RECORD_CONFIDENCE),
                    is_exact_match=False,
                    fallback_used=True,
                    reasoning=f"Direct MCC mapping: {mcc_code}",
                )
            default = mcc_range_default(mcc_code)
            if default is not None:
                range_label, range_sub, confidence = default
                range_cat = self._find_category(range_label)
                if range_cat is not None and range_cat.id != self.catch_all.id:
                    sub = self._find_sub_category(range_sub, range_cat.id)
                    return CategoryMappingResult(
                        mapping=self._mapping(range_cat.id, sub.id if sub else None, confidence),
                        is_exact_match=False,
                        fallback_used=True,
                        reasoning=f"MCC range default: {mcc_code}",
                    )

        # 4. Catch-all
        logger.debug(
            "Using catch-all category for label=%r sub=%r mcc=%r",
            label, sub_label, mcc_code,
        )
        return CategoryMappingResult(
            mapping=self._mapping(self.catch_all.id, None, CATCH_ALL_CONFIDENCE),
            is_exact_match=False,
            fallback_used=True,
            reasoning="Fallback to catch-all category",
        )
