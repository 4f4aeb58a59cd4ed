"""Offer recommendations for a session.

Steps:
1.  Aggregate the session's spend into patterns
2.  Estimate earnings per active offer (SavingsCalculator)
3.  Score each offer (scoring.score_offer)
4.  Rank by the configured key, keep the best, explain each pick
5.  Replace the session's stored recommendations

A session with at least one active offer always gets recommendations:
offers that miss the score threshold are kept as a labelled fallback, and
a session without usable spend is ranked on static offer features.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from cardwise.analysis.rewards import EarningsAnalysis, RewardMatcher, SavingsCalculator
from cardwise.analysis.scoring import (
    ScoreBreakdown,
    UserProfile,
    score_offer,
    static_score,
)
from cardwise.analysis.spending import SpendingPattern, aggregate_spending
from cardwise.database.models import Offer, Recommendation
from cardwise.database.repository import Repository
from cardwise.settings import ConfigError, Settings

logger = logging.getLogger(__name__)

RANKING_MODES = ("earnings", "net_savings")

FALLBACK_PREFIX = "Best available option for your spending profile - "
NO_SPEND_REASON = "Recommended for general spending and building credit history"
NO_SPEND_START_SCORE = 30
NO_SPEND_STEP = 5

ACCELERATED_RATE_FLOOR = 2.0
HIGH_FIRST_YEAR_VALUE = 200
GOOD_FIRST_YEAR_VALUE = 100
GOOD_NET_SAVINGS = 50
HIGH_GENERAL_FEE = 100


def _money(amount: float) -> str:
    return f"₹{amount:,.2f}"


def _rate(rate: float) -> str:
    return f"{rate:g}%"


@dataclass
class ScoredOffer:
    offer: Offer
    analysis: EarningsAnalysis
    breakdown: ScoreBreakdown

    @property
    def score(self) -> float:
        return self.breakdown.total


@dataclass
class RecommendationSummary:
    top_recommendation: str | None = None
    potential_savings: float = 0.0
    average_score: float = 0.0
    categories_analyzed: int = 0

    def to_dict(self) -> dict:
        return {
            "top_recommendation": self.top_recommendation,
            "potential_savings": round(self.potential_savings, 2),
            "average_score": round(self.average_score, 2),
            "categories_analyzed": self.categories_analyzed,
        }


@dataclass
class RecommendationResult:
    session_id: str
    recommendations: list[Recommendation] = field(default_factory=list)
    summary: RecommendationSummary = field(default_factory=RecommendationSummary)
    ranking_mode: str = "earnings"
    used_fallback: bool = False
    total_offers: int = 0
    processing_time_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "ranking_mode": self.ranking_mode,
            "used_fallback": self.used_fallback,
            "total_offers": self.total_offers,
            "processing_time_ms": self.processing_time_ms,
            "summary": self.summary.to_dict(),
            "recommendations": [
                {
                    "rank": r.rank,
                    "card_id": r.card_id,
                    "score": r.score,
                    "estimated_earnings": r.estimated_earnings,
                    "net_savings": r.net_savings,
                    "signup_bonus_value": r.signup_bonus_value,
                    "primary_reason": r.primary_reason,
                    "pros": r.pros,
                    "cons": r.cons,
                }
                for r in self.recommendations
            ],
        }


# ── Explanations ──────────────────────────────────────────


def _no_fee(offer: Offer) -> bool:
    return offer.fee_structure.annual_fee == 0 and offer.fee_structure.joining_fee == 0


def _top_accelerated(analysis: EarningsAnalysis):
    matched = [
        c for c in analysis.category_breakdown
        if c.matched_rule is not None and c.rate >= ACCELERATED_RATE_FLOOR
    ]
    if not matched:
        return None
    return sorted(matched, key=lambda c: (-c.earnings, c.category_name))[0]


def generate_pros(offer: Offer, analysis: EarningsAnalysis, patterns: list[SpendingPattern]) -> list[str]:
    pros: list[str] = []
    if analysis.net_savings > 0:
        pros.append(f"Save {_money(analysis.net_savings)} in the first year based on your spending")
    if analysis.signup_bonus_value > 0:
        pros.append(f"Signup bonus worth {_money(analysis.signup_bonus_value)}")
    if analysis.first_year_value > GOOD_FIRST_YEAR_VALUE:
        pros.append(f"Excellent first-year value: {_money(analysis.first_year_value)}")
    if _no_fee(offer):
        pros.append("No annual fee")
    elif offer.is_lifetime_free:
        pros.append("Lifetime free card")
    if patterns:
        top = patterns[0].category_name
        for entry in analysis.category_breakdown:
            if entry.category_name == top and entry.rate >= ACCELERATED_RATE_FLOOR:
                pros.append(f"{_rate(entry.rate)} rewards on {top}")
                break
    if not pros:
        pros.append("Solid rewards earning potential")
    return pros


def generate_cons(offer: Offer, analysis: EarningsAnalysis, breakdown: ScoreBreakdown, settings: Settings) -> list[str]:
    cons: list[str] = []
    annual_fee = offer.fee_structure.annual_fee
    if annual_fee > 0 and analysis.total_earnings < annual_fee:
        cons.append(f"High annual fee of {_money(annual_fee)}")
    if analysis.net_savings < 0:
        cons.append("May not provide significant savings based on current spending")
    excellent = settings.get_int("threshold.excellent_credit")
    if offer.eligibility.min_credit_score >= excellent:
        cons.append(f"Requires excellent credit ({excellent}+ credit score)")
    if not breakdown.eligible:
        cons.append("Eligibility requirements may not be met")
    return cons


def generate_primary_reason(offer: Offer, analysis: EarningsAnalysis) -> str:
    best = _top_accelerated(analysis)
    if best is not None:
        return f"Excellent {best.category_name} rewards ({_rate(best.rate)} earning rate)"
    if analysis.first_year_value > HIGH_FIRST_YEAR_VALUE:
        return f"Outstanding first-year value of {_money(analysis.first_year_value)}"
    if analysis.net_savings > GOOD_NET_SAVINGS:
        return f"Strong earning potential with {_money(analysis.net_savings)} in first-year savings"
    if _no_fee(offer):
        return "No annual fee with solid rewards earning"
    return "Good overall rewards earning for your spending profile"


def general_pros(offer: Offer) -> list[str]:
    pros = []
    if _no_fee(offer):
        pros.append("No annual fee")
    if offer.is_lifetime_free:
        pros.append("Lifetime free card")
    if offer.signup_bonus > 0 or offer.additional_benefits:
        pros.append("Signup bonus available")
    pros.append("Simple and straightforward rewards")
    return pros


def general_cons(offer: Offer, settings: Settings) -> list[str]:
    cons = []
    if offer.fee_structure.annual_fee > HIGH_GENERAL_FEE:
        cons.append(f"Annual fee of {_money(offer.fee_structure.annual_fee)}")
    if offer.eligibility.min_credit_score >= settings.get_int("threshold.excellent_credit"):
        cons.append("Requires excellent credit")
    return cons


# ── Ranking ───────────────────────────────────────────────


def ranking_mode(settings: Settings) -> str:
    mode = settings.get_str("ranking_mode", "earnings").strip().lower()
    if mode not in RANKING_MODES:
        raise ConfigError(f"ranking_mode must be one of {RANKING_MODES}, got {mode!r}")
    return mode


def _ranking_value(scored: ScoredOffer, mode: str) -> float:
    if mode == "net_savings":
        return scored.analysis.net_savings
    return scored.analysis.total_earnings


def rank_offers(
    offers: list[Offer],
    patterns: list[SpendingPattern],
    settings: Settings | None = None,
    matcher: RewardMatcher | None = None,
    profile: UserProfile | None = None,
    session_id: str = "",
) -> tuple[list[Recommendation], bool]:
    """Score, rank and explain offers for a set of spending patterns.

    Only active offers are considered. Returns (recommendations,
    used_fallback). The list is empty only when no offer is active.
    """
    settings = settings or Settings()
    active = [o for o in offers if o.is_active]
    if not active:
        logger.warning("No active offers to recommend for session %s", session_id)
        return [], False
    if not patterns:
        return static_recommendations(active, settings, session_id), True

    mode = ranking_mode(settings)
    calculator = SavingsCalculator(matcher=matcher, settings=settings)
    scored = []
    for offer in active:
        analysis = calculator.calculate(offer, patterns)
        scored.append(ScoredOffer(offer, analysis, score_offer(offer, analysis, settings, profile)))

    def order(items: list[ScoredOffer]) -> list[ScoredOffer]:
        return sorted(items, key=lambda s: (-_ranking_value(s, mode), -s.score, s.offer.id))

    threshold = settings.get_float("min_recommendation_score")
    limit = settings.get_int("max_recommendations")
    chosen = order([s for s in scored if s.score >= threshold])[:limit]
    used_fallback = False
    if not chosen:
        logger.warning(
            "No offer reached score %.1f for session %s, keeping top %d by score",
            threshold, session_id, settings.get_int("fallback_recommendations"),
        )
        by_score = sorted(scored, key=lambda s: (-s.score, s.offer.id))
        chosen = order(by_score[: settings.get_int("fallback_recommendations")])[:limit]
        used_fallback = True

    recs = []
    for rank, item in enumerate(chosen, start=1):
        reason = generate_primary_reason(item.offer, item.analysis)
        score = item.score
        if used_fallback:
            reason = FALLBACK_PREFIX + reason
            score = max(score, threshold)
        recs.append(Recommendation(
            session_id=session_id,
            card_id=item.offer.id,
            rank=rank,
            score=score,
            estimated_earnings=round(item.analysis.total_earnings, 2),
            signup_bonus_value=round(item.analysis.signup_bonus_value, 2),
            net_savings=round(item.analysis.net_savings, 2),
            primary_reason=reason,
            pros=generate_pros(item.offer, item.analysis, patterns),
            cons=generate_cons(item.offer, item.analysis, item.breakdown, settings),
            category_breakdown=[c.to_dict() for c in item.analysis.category_breakdown],
        ))
    return recs, used_fallback


def static_recommendations(
    offers: list[Offer], settings: Settings | None = None, session_id: str = "",
) -> list[Recommendation]:
    """Rank offers on fee, network, issuer and lifetime-free status only."""
    settings = settings or Settings()
    threshold = settings.get_float("min_recommendation_score")
    ordered = sorted(offers, key=lambda o: (-static_score(o, settings), o.id))
    count = min(settings.get_int("fallback_recommendations"), settings.get_int("max_recommendations"))
    recs = []
    for i, offer in enumerate(ordered[:count]):
        recs.append(Recommendation(
            session_id=session_id,
            card_id=offer.id,
            rank=i + 1,
            score=float(max(threshold, NO_SPEND_START_SCORE - NO_SPEND_STEP * i)),
            primary_reason=NO_SPEND_REASON,
            pros=general_pros(offer),
            cons=general_cons(offer, settings),
        ))
    return recs


def summarize(
    recs: list[Recommendation], patterns: list[SpendingPattern], mode: str = "earnings",
) -> RecommendationSummary:
    if not recs:
        return RecommendationSummary(categories_analyzed=len(patterns))
    top = recs[0]
    return RecommendationSummary(
        top_recommendation=top.card_id,
        potential_savings=top.net_savings if mode == "net_savings" else top.estimated_earnings,
        average_score=sum(r.score for r in recs) / len(recs),
        categories_analyzed=len(patterns),
    )


# ── Entry point ───────────────────────────────────────────


class RecommendationEngine:
    """Builds and stores recommendations for a session.

    Args:
        repo: Store for transactions, taxonomy, offers and results.
        settings: Snapshot of thresholds and weights for this run.
    """

    def __init__(self, repo: Repository, settings: Settings | None = None):
        self.repo = repo
        self.settings = settings or Settings()

    def spending_patterns(self, session_id: str) -> list[SpendingPattern]:
        categories = {c.id: c.name for c in self.repo.get_categories()}
        sub_categories = {s.id: s.name for s in self.repo.get_sub_categories()}
        return aggregate_spending(
            self.repo.get_session_transactions(session_id),
            categories, sub_categories, self.settings,
        )

    def generate(self, session_id: str, profile: UserProfile | None = None) -> RecommendationResult:
        started = time.monotonic()
        mode = ranking_mode(self.settings)
        patterns = self.spending_patterns(session_id)
        offers = self.repo.get_offers(active_only=True)
        matcher = RewardMatcher({rc.slug: rc for rc in self.repo.get_reward_categories()})

        if not patterns:
            logger.warning(
                "No usable spending for session %s, using static fallback", session_id,
            )
        recs, used_fallback = rank_offers(
            offers, patterns, self.settings, matcher=matcher,
            profile=profile, session_id=session_id,
        )
        self.repo.replace_recommendations(session_id, recs)

        result = RecommendationResult(
            session_id=session_id,
            recommendations=recs,
            summary=summarize(recs, patterns, mode),
            ranking_mode=mode,
            used_fallback=used_fallback,
            total_offers=len(offers),
            processing_time_ms=int((time.monotonic() - started) * 1000),
        )
        logger.info(
            "Generated %d recommendations for session %s (top: %s, fallback: %s)",
            len(recs), session_id, result.summary.top_recommendation, used_fallback,
        )
        return result
