"""Spending pattern aggregation over a session's resolved transactions.

Pure functions: no store access. Credits and refunds (amount <= 0) never
contribute to a pattern, and percentages are relative to positive spend
only. An empty result means "not enough data" and is not an error.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field

from cardwise.database.models import Transaction
from cardwise.settings import Settings

logger = logging.getLogger(__name__)

UNCATEGORIZED_NAME = "Other"


@dataclass(frozen=True)
class SpendingPattern:
    category_name: str
    total_spent: float
    transaction_count: int
    average_transaction: float
    percentage_of_total: float
    sub_category_name: str | None = None
    mcc_codes: tuple[str, ...] = field(default_factory=tuple)
    merchants: tuple[str, ...] = field(default_factory=tuple)


def aggregate_spending(
    transactions: list[Transaction],
    category_names: dict[str, str],
    sub_category_names: dict[str, str] | None = None,
    settings: Settings | None = None,
) -> list[SpendingPattern]:
    """Group positive spend by canonical category.

    Args:
        transactions: Session transactions (resolved or not).
        category_names: category_id → display name.
        sub_category_names: sub_category_id → display name.
        settings: Floors and caps (min_total_spending, min_category_*,
            max_categories).

    Returns:
        Patterns sorted by total_spent descending, or [] when total
        positive spend is under the floor or nothing is significant.
    """
    settings = settings or Settings()
    sub_category_names = sub_category_names or {}

    spend = [t for t in transactions if t.amount > 0]
    total = sum(t.amount for t in spend)
    if total < settings.get_float("min_total_spending"):
        logger.info(
            "Insufficient spending for analysis: %.2f across %d transactions",
            total, len(spend),
        )
        return []

    groups: dict[str, list[Transaction]] = {}
    for txn in spend:
        name = category_names.get(txn.category_id or "", UNCATEGORIZED_NAME)
        groups.setdefault(name, []).append(txn)

    min_pct = settings.get_float("min_category_percentage")
    min_amount = settings.get_float("min_category_amount")
    patterns: list[SpendingPattern] = []
    for name, txns in groups.items():
        category_total = sum(t.amount for t in txns)
        percentage = category_total / total * 100
        if percentage < min_pct and category_total < min_amount:
            continue
        subs = Counter(
            sub_category_names[t.sub_category_id]
            for t in txns
            if t.sub_category_id in sub_category_names
        )
        patterns.append(SpendingPattern(
            category_name=name,
            sub_category_name=subs.most_common(1)[0][0] if subs else None,
            total_spent=category_total,
            transaction_count=len(txns),
            average_transaction=round(category_total / len(txns), 2),
            percentage_of_total=round(percentage, 2),
            mcc_codes=tuple(sorted({t.mcc_code for t in txns if t.mcc_code})),
            merchants=tuple(dict.fromkeys(t.merchant_label for t in txns)),
        ))

    patterns.sort(key=lambda p: (-p.total_spent, p.category_name))
    return patterns[: settings.get_int("max_categories")]
