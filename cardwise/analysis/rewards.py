"""Reward rule matching and per-offer earnings estimates.

For every spending pattern the matcher picks the one accelerated reward
rule that fits it best. Brand-specific rules only count when the pattern's
merchants match the rule's merchant patterns; everything else competes on
category name, MCC overlap and a few small bonuses. The calculator then
turns the chosen rates into monetary earnings, applying caps with overflow
at the offer's base rate.

Rates are percents (5.0 means 5%).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from cardwise.analysis.brands import merchant_match_score
from cardwise.analysis.spending import UNCATEGORIZED_NAME, SpendingPattern
from cardwise.database.models import Offer, RewardCategory, RewardRule
from cardwise.settings import Settings

logger = logging.getLogger(__name__)

EXACT_NAME_SCORE = 100
SYNONYM_EXACT_SCORE = 80
SYNONYM_MAPPED_SCORE = 60
SYNONYM_PARTIAL_SCORE = 30
MCC_OVERLAP_SCORE = 40
MCC_GROUP_SCORE = 15
BRAND_MATCH_WEIGHT = 100
MERCHANT_PATTERN_WEIGHT = 30
GENERAL_OTHER_SCORE = 20
NON_BRAND_BONUS = 10

WELCOME_BENEFITS = "welcome_benefits"

# Reward category name → taxonomy category names it is known to cover
CATEGORY_SYNONYMS: dict[str, list[str]] = {
    "online shopping": ["e-commerce & online shopping", "ecommerce", "marketplace"],
    "dining & food": ["dining & food delivery", "dining", "food delivery"],
    "grocery": ["groceries & quick commerce", "grocery", "supermarkets"],
    "fuel & petrol": ["fuel & automotive", "fuel", "petrol"],
    "travel & transportation": ["travel & tourism", "transportation", "travel"],
    "utilities & bills": ["utilities & digital services", "utilities", "bills"],
    "entertainment & movies": ["entertainment & ott", "entertainment", "movies"],
    "brand specific": ["retail shopping", "shopping", "brand"],
    "general spends": ["other", "miscellaneous", "general"],
}

# MCC clusters for partial credit when no code overlaps exactly
MCC_GROUPS: dict[str, frozenset[str]] = {
    "dining": frozenset({"5811", "5812", "5813", "5814"}),
    "grocery": frozenset({"5411", "5422", "5441", "5451", "5462", "5499"}),
    "fuel": frozenset({"5172", "5541", "5542", "5983"}),
    "travel": frozenset({"3000", "3001", "3500", "4111", "4121", "4131", "4411",
                         "4511", "4722", "7011", "7512"}),
    "utilities": frozenset({"4812", "4814", "4899", "4900"}),
    "entertainment": frozenset({"7832", "7841", "7922", "7991", "7996", "7997"}),
    "ecommerce": frozenset({"5262", "5310", "5311", "5399", "5964", "5965", "5969"}),
}


def category_synonym_score(reward_name: str, pattern_name: str) -> int:
    """Score a reward category name against a taxonomy category name.

    80 for a case-insensitive exact match, 60 when both sides land in the
    same synonym family, 30 for a plain substring match, else 0.
    """
    reward = reward_name.lower().strip()
    pattern = pattern_name.lower().strip()
    if not reward or not pattern:
        return 0
    if reward == pattern:
        return SYNONYM_EXACT_SCORE
    for key, values in CATEGORY_SYNONYMS.items():
        if (key in reward or reward in key) and any(
            v in pattern or pattern in v for v in values
        ):
            return SYNONYM_MAPPED_SCORE
    if reward in pattern or pattern in reward:
        return SYNONYM_PARTIAL_SCORE
    return 0


def mcc_groups_for(codes) -> set[str]:
    return {name for name, members in MCC_GROUPS.items() if members & set(codes)}


@dataclass
class RuleMatch:
    rule: RewardRule
    score: float


class RewardMatcher:
    """Chooses the best accelerated reward rule per spending pattern.

    Args:
        reward_categories: slug → RewardCategory, used for names and MCCs.
            Rules naming an unknown slug match on the slug alone.
    """

    def __init__(self, reward_categories: dict[str, RewardCategory] | None = None):
        self.reward_categories = reward_categories or {}

    def _category_for(self, rule: RewardRule) -> RewardCategory:
        found = self.reward_categories.get(rule.reward_category)
        if found is not None:
            return found
        return RewardCategory(slug=rule.reward_category, name=rule.reward_category)

    def is_applicable(self, rule: RewardRule, pattern: SpendingPattern) -> bool:
        """Brand-specific rules apply only when a merchant pattern matches."""
        if not rule.is_brand_specific:
            return True
        return merchant_match_score(rule.merchant_patterns, pattern.merchants) > 0

    def score_rule(self, rule: RewardRule, pattern: SpendingPattern) -> float:
        if rule.is_brand_specific:
            return merchant_match_score(rule.merchant_patterns, pattern.merchants) * BRAND_MATCH_WEIGHT

        category = self._category_for(rule)
        score = 0.0
        if category.name == pattern.category_name:
            score += EXACT_NAME_SCORE
        score += category_synonym_score(category.name, pattern.category_name)

        overlap = set(category.mcc_codes) & set(pattern.mcc_codes)
        if overlap:
            score += MCC_OVERLAP_SCORE * len(overlap)
        else:
            shared = mcc_groups_for(category.mcc_codes) & mcc_groups_for(pattern.mcc_codes)
            score += MCC_GROUP_SCORE * len(shared)

        if rule.merchant_patterns:
            score += MERCHANT_PATTERN_WEIGHT * merchant_match_score(
                rule.merchant_patterns, pattern.merchants,
            )
        if category.slug == "general" and pattern.category_name == UNCATEGORIZED_NAME:
            score += GENERAL_OTHER_SCORE
        if score > 0:
            score += NON_BRAND_BONUS
        return score

    def best_rule(self, rules: list[RewardRule], pattern: SpendingPattern) -> RuleMatch | None:
        """Highest-scoring applicable rule, or None. Ties keep list order."""
        best: RuleMatch | None = None
        for rule in rules:
            if not self.is_applicable(rule, pattern):
                continue
            score = self.score_rule(rule, pattern)
            if score <= 0:
                continue
            if best is None or score > best.score:
                best = RuleMatch(rule=rule, score=score)
        return best


@dataclass
class CategoryEarnings:
    """Earnings for one spending pattern under one offer."""
    category_name: str
    spent: float
    rate: float
    earnings: float
    capped: bool = False
    matched_rule: str | None = None
    reward_type: str = ""
    accelerated_earnings: float = 0.0
    overflow_earnings: float = 0.0

    def to_dict(self) -> dict:
        return {
            "category": self.category_name,
            "spent": round(self.spent, 2),
            "rate": self.rate,
            "earnings": round(self.earnings, 2),
            "capped": self.capped,
            "matched_rule": self.matched_rule,
            "reward_type": self.reward_type,
        }


@dataclass
class EarningsAnalysis:
    """Gross earnings estimate for one offer over a statement period.

    ``net_savings`` is a reported figure (first-year value less fees). No
    ranking decision is made here.
    """
    card_id: str
    total_earnings: float = 0.0
    category_breakdown: list[CategoryEarnings] = field(default_factory=list)
    signup_bonus_value: float = 0.0
    joining_fee: float = 0.0
    annual_fee: float = 0.0

    @property
    def total_spend(self) -> float:
        return sum(c.spent for c in self.category_breakdown)

    @property
    def first_year_value(self) -> float:
        return self.total_earnings + self.signup_bonus_value

    @property
    def net_savings(self) -> float:
        return self.first_year_value - self.joining_fee - self.annual_fee

    def to_dict(self) -> dict:
        return {
            "card_id": self.card_id,
            "total_earnings": round(self.total_earnings, 2),
            "category_breakdown": [c.to_dict() for c in self.category_breakdown],
            "signup_bonus_value": round(self.signup_bonus_value, 2),
            "joining_fee": self.joining_fee,
            "annual_fee": self.annual_fee,
            "net_savings": round(self.net_savings, 2),
        }


def apply_rate(spend: float, rate: float, base_rate: float, cap_limit: float | None = None) -> tuple[float, float, bool]:
    """Earnings on ``spend`` at ``rate`` with an optional earnings cap.

    Returns (accelerated, overflow, capped). Accelerated earnings never
    exceed ``cap_limit``; spend beyond the cap's implied spend earns at
    ``base_rate`` as overflow.
    """
    raw = spend * rate / 100
    if cap_limit is None or raw < cap_limit:
        return raw, 0.0, False
    implied_spend = cap_limit / (rate / 100)
    overflow = max(0.0, spend - implied_spend) * base_rate / 100
    return cap_limit, overflow, True


def signup_bonus_value(offer: Offer, point_value: float) -> float:
    """Sum of welcome benefit values, or the legacy signup_bonus in points."""
    total = 0.0
    for group in offer.additional_benefits:
        if group.get("category_id") != WELCOME_BENEFITS:
            continue
        for benefit in group.get("benefits") or []:
            try:
                total += float(benefit.get("benefit_value") or 0)
            except (TypeError, ValueError):
                logger.warning(
                    "Ignoring non-numeric welcome benefit on %s: %r",
                    offer.id, benefit.get("benefit_value"),
                )
    if total == 0 and offer.signup_bonus:
        total = offer.signup_bonus * point_value
    return total


class SavingsCalculator:
    """Estimates what each offer would have earned on a set of patterns.

    Args:
        matcher: Rule selection strategy.
        settings: Source of point values per reward currency.
    """

    def __init__(self, matcher: RewardMatcher | None = None, settings: Settings | None = None):
        self.matcher = matcher or RewardMatcher()
        self.settings = settings or Settings()

    def calculate(self, offer: Offer, patterns: list[SpendingPattern]) -> EarningsAnalysis:
        point_value = self.settings.point_value(offer.reward_currency)
        analysis = EarningsAnalysis(
            card_id=offer.id,
            signup_bonus_value=signup_bonus_value(offer, point_value),
            joining_fee=offer.fee_structure.joining_fee,
            annual_fee=offer.fee_structure.annual_fee,
        )
        for pattern in patterns:
            if pattern.total_spent <= 0:
                continue
            entry = self._category_earnings(offer, pattern, point_value)
            analysis.category_breakdown.append(entry)
            analysis.total_earnings += entry.earnings

        logger.debug(
            "Offer %s: earnings %.2f over %d categories (point value %.2f)",
            offer.id, analysis.total_earnings, len(analysis.category_breakdown), point_value,
        )
        return analysis

    def compare(self, offers: list[Offer], patterns: list[SpendingPattern]) -> list[EarningsAnalysis]:
        return [self.calculate(offer, patterns) for offer in offers]

    def _category_earnings(
        self, offer: Offer, pattern: SpendingPattern, point_value: float,
    ) -> CategoryEarnings:
        match = self.matcher.best_rule(offer.accelerated_rewards, pattern)
        if match is None:
            earned, _, _ = apply_rate(pattern.total_spent, offer.base_reward_rate, offer.base_reward_rate)
            return CategoryEarnings(
                category_name=pattern.category_name,
                spent=pattern.total_spent,
                rate=offer.base_reward_rate,
                earnings=earned * point_value,
                reward_type=offer.reward_currency,
                accelerated_earnings=earned * point_value,
            )

        rule = match.rule
        accelerated, overflow, capped = apply_rate(
            pattern.total_spent,
            rule.rate,
            offer.base_reward_rate,
            rule.cap.limit if rule.cap else None,
        )
        return CategoryEarnings(
            category_name=pattern.category_name,
            spent=pattern.total_spent,
            rate=rule.rate,
            earnings=(accelerated + overflow) * point_value,
            capped=capped,
            matched_rule=rule.reward_category,
            reward_type=rule.reward_type,
            accelerated_earnings=accelerated * point_value,
            overflow_earnings=overflow * point_value,
        )
