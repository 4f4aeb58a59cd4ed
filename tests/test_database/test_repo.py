"""Tests for Repository CRUD operations."""

import pytest

from cardwise.database.models import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PROCESSING,
    JOB_QUEUED,
    Cap,
    Category,
    Job,
    MCCCode,
    MerchantAlias,
    Offer,
    Recommendation,
    RewardCategory,
    RewardRule,
    SubCategory,
    Transaction,
)
from cardwise.database.repository import Repository
from tests.conftest import MIGRATIONS_DIR


@pytest.fixture
def repo():
    r = Repository(":memory:")
    r.apply_migrations(MIGRATIONS_DIR)
    yield r
    r.close()


@pytest.fixture
def taxonomy(repo):
    repo.upsert_category(Category(id="cat_dining", name="Dining & Food Delivery", slug="dining"))
    repo.upsert_category(Category(id="cat_other", name="Other", slug="other"))
    repo.upsert_sub_category(SubCategory(
        id="subcat_quick_service", category_id="cat_dining",
        name="Quick Service & Fast Food", slug="quick-service",
    ))


def _make_txn(**overrides) -> Transaction:
    defaults = dict(
        session_id="s1",
        date="2026-01-15",
        raw_description="MCDONALD'S #12345 ANYTOWN USA",
        amount=250.0,
    )
    defaults.update(overrides)
    return Transaction(**defaults)


def _offer(**overrides) -> Offer:
    data = dict(id="card_a", name="Card A", issuer="Test Bank", network="Visa")
    data.update(overrides)
    return Offer.from_dict(data)


# ── Taxonomy ──────────────────────────────────────────────


class TestTaxonomy:
    def test_upsert_and_list(self, repo, taxonomy):
        cats = repo.get_categories()
        assert [c.name for c in cats] == ["Dining & Food Delivery", "Other"]
        subs = repo.get_sub_categories()
        assert subs[0].category_id == "cat_dining"

    def test_upsert_updates_name(self, repo, taxonomy):
        repo.upsert_category(Category(id="cat_other", name="Everything Else", slug="other"))
        names = {c.id: c.name for c in repo.get_categories()}
        assert names["cat_other"] == "Everything Else"


# ── MCC codes and aliases ─────────────────────────────────


class TestMCCCodes:
    def test_round_trip_patterns(self, repo, taxonomy):
        repo.upsert_mcc_code(MCCCode(
            code="5814", description="Quick Service", category_id="cat_dining",
            sub_category_id="subcat_quick_service", merchant_patterns=["kfc", "burger king"],
        ))
        found = repo.get_mcc_code("5814")
        assert found.merchant_patterns == ["kfc", "burger king"]
        assert found.sub_category_id == "subcat_quick_service"

    def test_unknown_code_returns_none(self, repo):
        assert repo.get_mcc_code("0000") is None

    def test_add_pattern_appends_once(self, repo, taxonomy):
        repo.upsert_mcc_code(MCCCode(code="5814", description="QSR", merchant_patterns=["kfc"]))
        assert repo.add_mcc_merchant_pattern("5814", "WENDYS") is True
        assert repo.add_mcc_merchant_pattern("5814", "wendys") is False
        assert repo.get_mcc_code("5814").merchant_patterns == ["kfc", "WENDYS"]

    def test_add_pattern_to_missing_code(self, repo):
        assert repo.add_mcc_merchant_pattern("1234", "NOBODY") is False


class TestMerchantAliases:
    def test_insert_and_get(self, repo):
        repo.upsert_merchant_alias(MerchantAlias(
            id="alias_mcd", merchant_name="MCDONALDS", aliases=["MCD"],
            mcc_code="5814", confidence=0.98,
        ))
        alias = repo.get_merchant_alias("alias_mcd")
        assert alias.aliases == ["MCD"]
        assert alias.usage_count == 0

    def test_upsert_never_lowers_confidence(self, repo):
        repo.upsert_merchant_alias(MerchantAlias(
            id="a1", merchant_name="ZEPTO", mcc_code="5499", confidence=0.9,
        ))
        repo.upsert_merchant_alias(MerchantAlias(
            id="a1", merchant_name="ZEPTO", mcc_code="5499", confidence=0.5,
        ))
        alias = repo.get_merchant_alias("a1")
        assert alias.confidence == 0.9
        assert alias.usage_count == 1

    def test_upsert_raises_confidence(self, repo):
        repo.upsert_merchant_alias(MerchantAlias(
            id="a1", merchant_name="ZEPTO", mcc_code="5499", confidence=0.8,
        ))
        repo.upsert_merchant_alias(MerchantAlias(
            id="a1", merchant_name="ZEPTO", mcc_code="5499", confidence=0.95,
        ))
        assert repo.get_merchant_alias("a1").confidence == 0.95


# ── Offers ────────────────────────────────────────────────


class TestOffers:
    def test_round_trip_rules_and_caps(self, repo):
        repo.upsert_offer(_offer(
            fee_structure={"joining_fee": 500, "annual_fee": 500},
            accelerated_rewards=[{
                "reward_category": "dining", "rate": 10,
                "cap": {"limit": 500, "period": "monthly"},
            }],
            additional_benefits=[{"category_id": "welcome_benefits", "benefits": [{"benefit_value": 100}]}],
        ))
        offer = repo.get_offer("card_a")
        assert offer.fee_structure.annual_fee == 500
        assert offer.accelerated_rewards == [
            RewardRule(reward_category="dining", rate=10.0, cap=Cap(limit=500.0)),
        ]
        assert offer.additional_benefits[0]["benefits"][0]["benefit_value"] == 100

    def test_active_only_filter(self, repo):
        repo.upsert_offer(_offer(id="card_a"))
        repo.upsert_offer(_offer(id="card_b", is_active=False))
        assert [o.id for o in repo.get_offers()] == ["card_a", "card_b"]
        assert [o.id for o in repo.get_offers(active_only=True)] == ["card_a"]

    def test_reward_categories(self, repo):
        repo.upsert_reward_category(RewardCategory(slug="dining", name="Dining & Food", mcc_codes=["5814"]))
        [rc] = repo.get_reward_categories()
        assert rc.mcc_codes == ["5814"]


# ── Transactions ──────────────────────────────────────────


class TestTransactions:
    def test_batch_insert_and_session_listing(self, repo):
        repo.insert_transactions_batch([
            _make_txn(date="2026-01-02"),
            _make_txn(date="2026-01-01"),
            _make_txn(session_id="s2"),
        ])
        txns = repo.get_session_transactions("s1")
        assert [t.date for t in txns] == ["2026-01-01", "2026-01-02"]

    def test_batch_insert_is_atomic(self, repo):
        dup = _make_txn()
        with pytest.raises(Exception):
            repo.insert_transactions_batch([dup, dup])
        assert repo.get_session_transactions("s1") == []

    def test_unresolved_excludes_categorized(self, repo, taxonomy):
        a = repo.insert_transaction(_make_txn())
        b = repo.insert_transaction(_make_txn())
        repo.update_transaction_resolution(
            a.id, mcc_code="5814", category_id="cat_dining",
            sub_category_id="subcat_quick_service", confidence=0.92,
            source="fuzzy_match", needs_review=False, is_verified=True,
        )
        assert [t.id for t in repo.get_unresolved_transactions("s1")] == [b.id]
        resolved = repo.get_transaction(a.id)
        assert resolved.is_verified is True
        assert resolved.resolution_source == "fuzzy_match"


# ── Jobs ──────────────────────────────────────────────────


class TestJobs:
    def _job(self, repo, **kw) -> Job:
        defaults = dict(session_id="s1", kind="recommendation")
        defaults.update(kw)
        return repo.insert_job(Job(**defaults))

    def test_payload_round_trip(self, repo):
        job = self._job(repo, input_payload={"transactions": [{"amount": 1}]})
        assert repo.get_job(job.id).input_payload == {"transactions": [{"amount": 1}]}

    def test_claim_order_priority_then_age(self, repo):
        low = self._job(repo, priority=5, queued_at="2026-01-01T00:00:00.000000+00:00")
        urgent = self._job(repo, priority=1, queued_at="2026-01-02T00:00:00.000000+00:00")
        older = self._job(repo, priority=5, queued_at="2025-12-31T00:00:00.000000+00:00")
        claimed = [repo.claim_next_job("w").id for _ in range(3)]
        assert claimed == [urgent.id, older.id, low.id]
        assert repo.claim_next_job("w") is None

    def test_claim_sets_processing_fields(self, repo):
        job = self._job(repo)
        claimed = repo.claim_next_job("worker-1", now="2026-01-01T00:00:00.000000+00:00")
        assert claimed.id == job.id
        assert claimed.status == JOB_PROCESSING
        assert claimed.worker_id == "worker-1"
        assert claimed.started_at == "2026-01-01T00:00:00.000000+00:00"

    def test_progress_clamped(self, repo):
        job = self._job(repo)
        repo.claim_next_job("w")
        assert repo.update_job_progress(job.id, 140, "finalizing") is True
        assert repo.get_job(job.id).progress == 100

    def test_progress_ignored_when_not_processing(self, repo):
        job = self._job(repo)
        assert repo.update_job_progress(job.id, 50, "analyzing") is False

    def test_complete_and_fail_are_terminal(self, repo):
        a = self._job(repo)
        b = self._job(repo)
        repo.claim_next_job("w")
        repo.claim_next_job("w")
        assert repo.complete_job(a.id, {"ok": True}) is True
        assert repo.fail_job(b.id, "boom") is True
        assert repo.get_job(a.id).status == JOB_COMPLETED
        assert repo.get_job(a.id).output_payload == {"ok": True}
        failed = repo.get_job(b.id)
        assert failed.status == JOB_FAILED
        assert failed.error_message == "boom"
        # No transitions out of a terminal state
        assert repo.fail_job(a.id, "late") is False
        assert repo.complete_job(b.id, None) is False

    def test_fail_stale_jobs(self, repo):
        stale = self._job(repo)
        fresh = self._job(repo)
        repo.claim_next_job("w", now="2026-01-01T00:00:00.000000+00:00")
        repo.claim_next_job("w", now="2026-01-01T00:20:00.000000+00:00")
        failed = repo.fail_stale_jobs(
            "2026-01-01T00:10:00.000000+00:00", "stuck",
            now="2026-01-01T00:25:00.000000+00:00",
        )
        assert failed == [stale.id]
        assert repo.get_job(stale.id).error_message == "stuck"
        assert repo.get_job(fresh.id).status == JOB_PROCESSING

    def test_count_by_status(self, repo):
        self._job(repo)
        self._job(repo)
        repo.claim_next_job("w")
        assert repo.count_jobs_by_status() == {JOB_QUEUED: 1, JOB_PROCESSING: 1}

    def test_session_jobs_newest_first(self, repo):
        first = self._job(repo, queued_at="2026-01-01T00:00:00.000000+00:00")
        second = self._job(repo, queued_at="2026-01-02T00:00:00.000000+00:00")
        assert [j.id for j in repo.get_session_jobs("s1")] == [second.id, first.id]


# ── Recommendations and app config ────────────────────────


class TestRecommendations:
    def test_replace_is_whole_set(self, repo):
        repo.upsert_offer(_offer(id="card_a"))
        repo.upsert_offer(_offer(id="card_b"))
        repo.replace_recommendations("s1", [
            Recommendation(session_id="s1", card_id="card_a", rank=1, score=80, pros=["No annual fee"]),
            Recommendation(session_id="s1", card_id="card_b", rank=2, score=60),
        ])
        repo.replace_recommendations("s1", [
            Recommendation(session_id="s1", card_id="card_b", rank=1, score=70, net_savings=12.5),
        ])
        [rec] = repo.get_recommendations("s1")
        assert rec.card_id == "card_b"
        assert rec.net_savings == 12.5


class TestAppConfig:
    def test_set_and_get(self, repo):
        repo.set_app_config_value("fuzzy_threshold", "0.7", description="lower for noisy data")
        repo.set_app_config_value("fuzzy_threshold", "0.75")
        assert repo.get_app_config() == {"fuzzy_threshold": "0.75"}

    def test_insert_default_only_when_absent(self, repo):
        assert repo.insert_app_config_default("k", "1") is True
        assert repo.insert_app_config_default("k", "2") is False
        assert repo.get_app_config()["k"] == "1"
