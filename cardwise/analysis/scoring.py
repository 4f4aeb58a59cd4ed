"""Composite offer scores.

score = base_score
        + Σ weight_i × factor_i      (five factors, each 0-100)
        + bonuses - penalties
clamped to [MIN_SCORE, MAX_SCORE].

The floor keeps a worst-case offer rankable instead of dropping it.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from cardwise.analysis.rewards import EarningsAnalysis
from cardwise.database.models import Offer
from cardwise.settings import Settings

MIN_SCORE = 5.0
MAX_SCORE = 100.0

# (minimum rate %, alignment points), highest first
RATE_TIERS: list[tuple[float, float]] = [
    (10.0, 100.0),
    (7.5, 85.0),
    (5.0, 70.0),
    (4.0, 60.0),
    (3.0, 50.0),
    (2.0, 40.0),
]
LOW_RATE_POINTS = 20.0

MAX_INCOME_PENALTY = 40.0
EXCELLENT_CREDIT_PENALTY = 30.0
GOOD_CREDIT_SCORE = 700
GOOD_CREDIT_PENALTY = 15.0

# (minimum welcome value, bonus), highest first
WELCOME_TIERS: list[tuple[float, float]] = [(5000, 10.0), (1000, 5.0), (0, 2.0)]

DIGITAL_KEYWORDS = (
    "digital", "instant", "contactless", "mobile", "app", "online",
    "virtual", "tap", "nfc",
)

FACTORS = (
    "first_year_value",
    "category_alignment",
    "fee_efficiency",
    "brand_preference",
    "accessibility",
)


@dataclass(frozen=True)
class UserProfile:
    annual_income: float | None = None
    credit_score: int | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> UserProfile | None:
        if not data:
            return None
        income = data.get("annual_income")
        credit = data.get("credit_score")
        return cls(
            annual_income=float(income) if income is not None else None,
            credit_score=int(credit) if credit is not None else None,
        )


@dataclass
class ScoreBreakdown:
    first_year_value: float = 0.0
    category_alignment: float = 0.0
    fee_efficiency: float = 0.0
    brand_preference: float = 0.0
    accessibility: float = 0.0
    bonuses: float = 0.0
    penalties: float = 0.0
    total: float = MIN_SCORE
    eligible: bool = True

    def to_dict(self) -> dict:
        return {k: round(v, 2) if isinstance(v, float) else v for k, v in asdict(self).items()}


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def rate_tier_points(rate: float) -> float:
    for minimum, points in RATE_TIERS:
        if rate >= minimum:
            return points
    return LOW_RATE_POINTS


def first_year_value_factor(analysis: EarningsAnalysis) -> float:
    """Net first-year return as a percent of spend, x10, within 0-100."""
    spend = analysis.total_spend
    if spend <= 0:
        return 0.0
    return clamp(analysis.net_savings / spend * 100 * 10, 0.0, 100.0)


def category_alignment_factor(analysis: EarningsAnalysis) -> float:
    """Spend-weighted rate-tier points across the breakdown."""
    spend = analysis.total_spend
    if spend <= 0:
        return 0.0
    weighted = sum(rate_tier_points(c.rate) * c.spent for c in analysis.category_breakdown)
    return weighted / spend


def fee_efficiency_factor(offer: Offer, analysis: EarningsAnalysis) -> float:
    fees = offer.fee_structure.joining_fee + offer.fee_structure.annual_fee
    if fees <= 0:
        return 100.0
    return clamp(analysis.total_earnings / fees * 50, 0.0, 100.0)


def brand_preference_factor(offer: Offer, settings: Settings) -> float:
    points = (
        settings.get_float("bonus.preferred_network")
        + settings.get_float("bonus.preferred_issuer")
        + settings.get_float("bonus.popular_issuer")
    )
    if points <= 0:
        return 0.0
    network = offer.network.lower()
    issuer = offer.issuer.lower()
    earned = 0.0
    if network in settings.get_list("preferred_networks"):
        earned += settings.get_float("bonus.preferred_network")
    if issuer in settings.get_list("preferred_issuers"):
        earned += settings.get_float("bonus.preferred_issuer")
    if issuer in settings.get_list("popular_issuers"):
        earned += settings.get_float("bonus.popular_issuer")
    return earned / points * 100


def meets_eligibility(offer: Offer, profile: UserProfile | None) -> bool:
    """Unknown profile fields count as met."""
    if profile is None:
        return True
    if profile.annual_income is not None and profile.annual_income < offer.eligibility.min_income:
        return False
    if profile.credit_score is not None and profile.credit_score < offer.eligibility.min_credit_score:
        return False
    return True


def accessibility_factor(offer: Offer, settings: Settings, profile: UserProfile | None = None) -> float:
    if not meets_eligibility(offer, profile):
        return 0.0
    score = 100.0
    high_income = settings.get_float("threshold.high_income")
    if offer.eligibility.min_income > 0 and high_income > 0:
        score -= MAX_INCOME_PENALTY * min(1.0, offer.eligibility.min_income / high_income)
    min_credit = offer.eligibility.min_credit_score
    if min_credit >= settings.get_int("threshold.excellent_credit"):
        score -= EXCELLENT_CREDIT_PENALTY
    elif min_credit >= GOOD_CREDIT_SCORE:
        score -= GOOD_CREDIT_PENALTY
    return clamp(score, 0.0, 100.0)


def digital_feature_count(offer: Offer) -> int:
    return sum(
        1 for feature in offer.features
        if any(keyword in feature.lower() for keyword in DIGITAL_KEYWORDS)
    )


def bonus_points(offer: Offer, analysis: EarningsAnalysis, settings: Settings) -> float:
    bonus = 0.0
    if offer.is_lifetime_free:
        bonus += settings.get_float("bonus.lifetime_free")
    csat = offer.customer_satisfaction_score
    if csat is not None and csat >= settings.get_float("threshold.good_satisfaction"):
        bonus += settings.get_float("bonus.high_satisfaction")
    bonus += min(digital_feature_count(offer), settings.get_int("bonus.digital_max"))
    if analysis.signup_bonus_value > 0:
        for minimum, points in WELCOME_TIERS:
            if analysis.signup_bonus_value >= minimum:
                bonus += points
                break
    rec = offer.recommendation_score
    if rec is not None:
        if rec >= settings.get_float("threshold.high_recommendation"):
            bonus += settings.get_float("bonus.high_recommendation")
        elif rec >= settings.get_float("threshold.medium_recommendation"):
            bonus += settings.get_float("bonus.medium_recommendation")
    return bonus


def penalty_points(offer: Offer, analysis: EarningsAnalysis, settings: Settings) -> float:
    penalty = 0.0
    if not offer.is_active:
        penalty += settings.get_float("penalty.inactive")
    if offer.network.lower() in settings.get_list("limited_acceptance_networks"):
        penalty += settings.get_float("penalty.limited_acceptance")
    csat = offer.customer_satisfaction_score
    if csat is not None and csat < settings.get_float("threshold.poor_satisfaction"):
        penalty += settings.get_float("penalty.poor_satisfaction")
    annual_fee = offer.fee_structure.annual_fee
    if (
        annual_fee >= settings.get_float("threshold.high_annual_fee")
        and analysis.first_year_value < annual_fee
    ):
        penalty += settings.get_float("penalty.high_fee_low_benefit")
    return penalty


def score_offer(
    offer: Offer,
    analysis: EarningsAnalysis,
    settings: Settings | None = None,
    profile: UserProfile | None = None,
) -> ScoreBreakdown:
    """Composite score for one offer given its earnings analysis."""
    settings = settings or Settings()
    breakdown = ScoreBreakdown(
        first_year_value=first_year_value_factor(analysis),
        category_alignment=category_alignment_factor(analysis),
        fee_efficiency=fee_efficiency_factor(offer, analysis),
        brand_preference=brand_preference_factor(offer, settings),
        accessibility=accessibility_factor(offer, settings, profile),
        bonuses=bonus_points(offer, analysis, settings),
        penalties=penalty_points(offer, analysis, settings),
        eligible=meets_eligibility(offer, profile),
    )
    weighted = sum(
        settings.get_float(f"weight.{name}") * getattr(breakdown, name)
        for name in FACTORS
    )
    raw = settings.get_float("base_score") + weighted + breakdown.bonuses - breakdown.penalties
    breakdown.total = round(clamp(raw, MIN_SCORE, MAX_SCORE), 2)
    return breakdown


def static_score(offer: Offer, settings: Settings | None = None) -> float:
    """Spend-independent score used when there is no spending data.

    Looks only at fees, network, issuer trust and lifetime-free status.
    """
    settings = settings or Settings()
    fees = offer.fee_structure.joining_fee + offer.fee_structure.annual_fee
    score = settings.get_float("base_score")
    if fees <= 0:
        score += 30
    elif fees < settings.get_float("threshold.high_annual_fee"):
        score += 15
    score += brand_preference_factor(offer, settings) * settings.get_float("weight.brand_preference")
    if offer.is_lifetime_free:
        score += settings.get_float("bonus.lifetime_free")
    score -= penalty_points(offer, EarningsAnalysis(card_id=offer.id), settings)
    return round(clamp(score, MIN_SCORE, MAX_SCORE), 2)
