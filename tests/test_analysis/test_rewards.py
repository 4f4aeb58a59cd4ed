"""Tests for reward rule matching and earnings estimates."""

import pytest

from cardwise.analysis.rewards import (
    RewardMatcher,
    SavingsCalculator,
    apply_rate,
    category_synonym_score,
    signup_bonus_value,
)
from cardwise.analysis.spending import SpendingPattern
from cardwise.database.models import Offer, OfferValidationError, RewardCategory, RewardRule
from cardwise.settings import Settings

REWARD_CATEGORIES = {
    "dining": RewardCategory(slug="dining", name="Dining & Food", mcc_codes=["5811", "5812", "5814"]),
    "fuel": RewardCategory(slug="fuel", name="Fuel & Petrol", mcc_codes=["5541", "5542"]),
    "general": RewardCategory(slug="general", name="General Spends"),
}


def _pattern(name="Dining & Food Delivery", spent=5000.0, mcc=("5811",), merchants=("SWIGGY",)):
    return SpendingPattern(
        category_name=name, total_spent=spent, transaction_count=10,
        average_transaction=spent / 10, percentage_of_total=100.0,
        mcc_codes=tuple(mcc), merchants=tuple(merchants),
    )


def _offer(**kw) -> Offer:
    data = dict(id="card_x", name="Card X", issuer="Test Bank", network="Visa")
    data.update(kw)
    return Offer.from_dict(data)


def _calculator() -> SavingsCalculator:
    return SavingsCalculator(RewardMatcher(REWARD_CATEGORIES), Settings())


class TestApplyRate:
    def test_uncapped(self):
        assert apply_rate(1000, 5, 1) == (50.0, 0.0, False)

    def test_below_cap(self):
        assert apply_rate(1000, 10, 1, cap_limit=500) == (100.0, 0.0, False)

    def test_exactly_at_cap(self):
        accelerated, overflow, capped = apply_rate(5000, 10, 1, cap_limit=500)
        assert accelerated == 500
        assert overflow == pytest.approx(0.0)
        assert capped is True

    def test_overflow_at_base_rate(self):
        accelerated, overflow, capped = apply_rate(8000, 10, 1, cap_limit=500)
        assert accelerated == 500
        assert overflow == pytest.approx(30.0)
        assert capped is True


class TestCategorySynonyms:
    def test_exact(self):
        assert category_synonym_score("Dining", "dining") == 80

    def test_family(self):
        assert category_synonym_score("Dining & Food", "Dining & Food Delivery") == 60

    def test_substring(self):
        assert category_synonym_score("Books", "Books & Stationery") == 30

    def test_unrelated(self):
        assert category_synonym_score("Fuel & Petrol", "Dining & Food Delivery") == 0


class TestRewardMatcher:
    def test_category_rule_score(self):
        matcher = RewardMatcher(REWARD_CATEGORIES)
        rule = RewardRule(reward_category="dining", rate=10)
        # synonym family 60 + one MCC overlap 40 + non-brand bonus 10
        assert matcher.score_rule(rule, _pattern()) == 110

    def test_mcc_group_partial_credit(self):
        matcher = RewardMatcher(REWARD_CATEGORIES)
        rule = RewardRule(reward_category="dining", rate=10)
        assert matcher.score_rule(rule, _pattern(name="Eating Out", mcc=("5813",))) == 25

    def test_brand_rule_needs_merchant(self):
        matcher = RewardMatcher(REWARD_CATEGORIES)
        rule = RewardRule(reward_category="brand-specific", rate=10, merchant_patterns=["swiggy"])
        assert matcher.is_applicable(rule, _pattern(merchants=("RSP*SWIGGY BANGALORE",)))
        assert not matcher.is_applicable(rule, _pattern(merchants=("ZOMATO",)))

    def test_best_rule_prefers_brand_match(self):
        matcher = RewardMatcher(REWARD_CATEGORIES)
        dining = RewardRule(reward_category="dining", rate=5)
        brand = RewardRule(reward_category="brand-specific", rate=10, merchant_patterns=["swiggy"])
        assert matcher.best_rule([dining, brand], _pattern(mcc=())).rule is brand

    def test_general_rule_for_other(self):
        matcher = RewardMatcher(REWARD_CATEGORIES)
        rule = RewardRule(reward_category="general", rate=2)
        assert matcher.best_rule([rule], _pattern(name="Other", mcc=())).score == 90

    def test_no_applicable_rule(self):
        matcher = RewardMatcher(REWARD_CATEGORIES)
        rule = RewardRule(reward_category="fuel", rate=4)
        assert matcher.best_rule([rule], _pattern()) is None

    def test_unknown_slug_matches_on_slug(self):
        matcher = RewardMatcher(REWARD_CATEGORIES)
        rule = RewardRule(reward_category="Dining & Food Delivery", rate=3)
        assert matcher.best_rule([rule], _pattern(mcc=())).score == 100 + 80 + 10


class TestSignupBonus:
    def test_welcome_benefits_summed(self):
        offer = _offer(additional_benefits=[
            {"category_id": "welcome_benefits", "benefits": [
                {"benefit_value": 1200}, {"benefit_value": "300"}, {"benefit_value": "n/a"},
            ]},
            {"category_id": "lounge_access", "benefits": [{"benefit_value": 5000}]},
        ])
        assert signup_bonus_value(offer, 1.0) == 1500

    def test_legacy_points_converted(self):
        offer = _offer(signup_bonus=2000, reward_currency="reward_points")
        assert signup_bonus_value(offer, 0.25) == 500

    @pytest.mark.parametrize("benefits", [
        "welcome voucher",
        ["welcome voucher"],
        [{"category_id": "welcome_benefits", "benefits": [500]}],
        [{"category_id": "welcome_benefits", "benefits": {"benefit_value": 500}}],
    ])
    def test_malformed_benefits_rejected(self, benefits):
        with pytest.raises(OfferValidationError, match="additional_benefits"):
            _offer(additional_benefits=benefits)


class TestSavingsCalculator:
    def test_capped_dining_card(self):
        offer = _offer(accelerated_rewards=[
            {"reward_category": "dining", "rate": 10, "cap": {"limit": 500, "period": "monthly"}},
        ])
        analysis = _calculator().calculate(offer, [_pattern(spent=5000)])
        [entry] = analysis.category_breakdown
        assert entry.earnings == 500
        assert entry.capped is True
        assert entry.matched_rule == "dining"
        assert analysis.total_earnings == 500

    def test_base_rate_when_no_rule(self):
        offer = _offer(base_reward_rate=1.5)
        analysis = _calculator().calculate(offer, [_pattern(spent=2000)])
        assert analysis.total_earnings == pytest.approx(30.0)
        assert analysis.category_breakdown[0].matched_rule is None

    def test_points_converted_to_money(self):
        offer = _offer(
            reward_currency="reward_points",
            accelerated_rewards=[{"reward_category": "fuel", "rate": 4}],
        )
        analysis = _calculator().calculate(
            offer, [_pattern(name="Fuel & Automotive", spent=10000, mcc=("5542",), merchants=("IOCL",))],
        )
        assert analysis.total_earnings == pytest.approx(100.0)

    def test_net_savings_and_fees(self):
        offer = _offer(
            fee_structure={"joining_fee": 500, "annual_fee": 500},
            additional_benefits=[{"category_id": "welcome_benefits", "benefits": [{"benefit_value": 1200}]}],
        )
        analysis = _calculator().calculate(offer, [_pattern(spent=10000)])
        assert analysis.total_earnings == pytest.approx(100.0)
        assert analysis.first_year_value == pytest.approx(1300.0)
        assert analysis.net_savings == pytest.approx(300.0)
        assert analysis.to_dict()["net_savings"] == 300.0

    def test_zero_spend_patterns_skipped(self):
        analysis = _calculator().calculate(_offer(), [_pattern(spent=0)])
        assert analysis.category_breakdown == []
        assert analysis.total_spend == 0

    def test_compare_keeps_offer_order(self):
        offers = [_offer(id="card_b"), _offer(id="card_a")]
        assert [a.card_id for a in _calculator().compare(offers, [_pattern()])] == ["card_b", "card_a"]
