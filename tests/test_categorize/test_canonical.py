"""Tests for category canonicalization into the fixed taxonomy."""

import pytest

from cardwise.categorize.canonical import (
    CategoryCanonicalizer,
    TaxonomyError,
    mcc_range_default,
)
from cardwise.config import Config
from cardwise.database.models import Category
from cardwise.database.repository import Repository
from cardwise.database.seed import seed_reference_data
from tests.conftest import FIXTURE_CONFIG_DIR, MIGRATIONS_DIR


@pytest.fixture(scope="module")
def canonicalizer():
    repo = Repository(":memory:")
    repo.apply_migrations(MIGRATIONS_DIR)
    seed_reference_data(repo, Config(FIXTURE_CONFIG_DIR))
    canon = CategoryCanonicalizer.from_repository(repo)
    repo.close()
    return canon


class TestExactMatch:
    def test_name_and_subcategory(self, canonicalizer):
        result = canonicalizer.map_category("Dining & Food Delivery", "Quick Service & Fast Food")
        assert result.mapping.category_id == "cat_dining"
        assert result.mapping.sub_category_id == "subcat_quick_service"
        assert result.mapping.confidence == 0.95
        assert result.is_exact_match is True
        assert result.fallback_used is False

    def test_slug_without_subcategory(self, canonicalizer):
        result = canonicalizer.map_category("grocery")
        assert result.mapping.category_id == "cat_grocery"
        assert result.mapping.sub_category_id is None
        assert result.mapping.confidence == 0.9

    def test_case_insensitive_id(self, canonicalizer):
        assert canonicalizer.map_category("CAT_FUEL").mapping.category_id == "cat_fuel"

    def test_subcategory_under_other_parent_dropped(self, canonicalizer):
        result = canonicalizer.map_category("fuel", "quick-service")
        assert result.mapping.category_id == "cat_fuel"
        assert result.mapping.sub_category_id is None
        assert result.mapping.confidence == 0.9


class TestPatternLookup:
    def test_label_contains_pattern(self, canonicalizer):
        result = canonicalizer.map_category("Zepto Order")
        assert result.mapping.category_id == "cat_grocery"
        assert result.mapping.sub_category_id == "subcat_quick_commerce"
        assert result.mapping.confidence == 0.8
        assert result.is_exact_match is False
        assert result.fallback_used is False

    def test_merchant_used_when_label_unknown(self, canonicalizer):
        result = canonicalizer.map_category("misc", merchant="APOLLO PHARMACY BLR")
        assert result.mapping.category_id == "cat_healthcare"


class TestMCCFallback:
    def test_stored_mcc_record(self, canonicalizer):
        result = canonicalizer.map_category("unknown label", mcc_code="5912")
        assert result.mapping.category_id == "cat_healthcare"
        assert result.mapping.confidence == 0.7
        assert result.fallback_used is True

    def test_range_default(self, canonicalizer):
        result = canonicalizer.map_category(None, mcc_code="3100")
        assert result.mapping.category_id == "cat_travel"
        assert result.mapping.confidence == 0.8
        assert result.fallback_used is True

    def test_range_label_missing_from_taxonomy(self, canonicalizer):
        result = canonicalizer.map_category(None, mcc_code="7299")
        assert result.mapping.category_id == "cat_other"
        assert result.mapping.confidence == 0.3

    def test_range_default_table(self):
        assert mcc_range_default("3600") == ("travel", "hotels", 0.8)
        assert mcc_range_default("9402") is None
        assert mcc_range_default("ABCD") is None
        assert mcc_range_default(None) is None


class TestCatchAll:
    def test_nothing_known(self, canonicalizer):
        result = canonicalizer.map_category(None)
        assert result.mapping.category_id == "cat_other"
        assert result.mapping.category_name == "Other"
        assert result.mapping.confidence == 0.3
        assert result.fallback_used is True

    def test_never_invents_category(self, canonicalizer):
        result = canonicalizer.map_category("Pet Supplies", "Vet Clinics")
        assert canonicalizer.is_valid_category(result.mapping.category_id)

    def test_missing_catch_all_raises(self):
        with pytest.raises(TaxonomyError, match="Catch-all"):
            CategoryCanonicalizer(
                [Category(id="cat_dining", name="Dining", slug="dining")], [], [],
            )

    def test_catch_all_found_by_slug(self):
        canon = CategoryCanonicalizer(
            [Category(id="c9", name="Misc", slug="other")], [], [], catch_all_id="other",
        )
        assert canon.catch_all.id == "c9"
