"""Load YAML reference data into the store.

Taxonomy, MCC codes, merchant aliases, reward categories and the offer
catalog are validated here once; everything downstream reads typed
dataclasses from the Repository.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cardwise.config import Config
from cardwise.database.models import (
    Category,
    MCCCode,
    MerchantAlias,
    Offer,
    RewardCategory,
    SubCategory,
)
from cardwise.database.repository import Repository

logger = logging.getLogger(__name__)


@dataclass
class SeedResult:
    """Counts of reference rows written."""
    categories: int = 0
    sub_categories: int = 0
    mcc_codes: int = 0
    merchant_aliases: int = 0
    reward_categories: int = 0
    offers: int = 0


def _slugify(name: str) -> str:
    out = "".join(c.lower() if c.isalnum() else "-" for c in name)
    while "--" in out:
        out = out.replace("--", "-")
    return out.strip("-")


def seed_reference_data(repo: Repository, config: Config) -> SeedResult:
    """Upsert all reference data from config into the repository.

    Raises:
        ValueError: If the catch-all category is missing, an MCC or alias
            references an unknown category, or an offer fails validation.
    """
    result = SeedResult()
    taxonomy = config.flatten_taxonomy()

    catch_all = config.catch_all_category_id
    if catch_all not in taxonomy or taxonomy[catch_all]["parent_id"] is not None:
        raise ValueError(f"Catch-all category '{catch_all}' not defined in taxonomy.yaml")

    for cat in config.categories:
        repo.upsert_category(Category(
            id=cat["id"], name=cat["name"],
            slug=cat.get("slug") or _slugify(cat["name"]),
        ))
        result.categories += 1
        for sub in cat.get("subcategories", []) or []:
            repo.upsert_sub_category(SubCategory(
                id=sub["id"], category_id=cat["id"], name=sub["name"],
                slug=sub.get("slug") or _slugify(sub["name"]),
            ))
            result.sub_categories += 1

    for entry in config.mcc_codes:
        code = str(entry["code"]).zfill(4)
        category_id = entry.get("category_id")
        sub_category_id = entry.get("sub_category_id")
        if category_id and category_id not in taxonomy:
            raise ValueError(f"MCC {code} references unknown category '{category_id}'")
        if sub_category_id and taxonomy.get(sub_category_id, {}).get("parent_id") != category_id:
            raise ValueError(
                f"MCC {code} subcategory '{sub_category_id}' is not under '{category_id}'"
            )
        repo.upsert_mcc_code(MCCCode(
            code=code,
            description=entry.get("description", f"MCC {code}"),
            category_id=category_id,
            sub_category_id=sub_category_id,
            merchant_patterns=list(entry.get("merchant_patterns") or []),
            confidence=float(entry.get("confidence", 1.0)),
        ))
        result.mcc_codes += 1

    for entry in config.merchant_aliases:
        name = entry["merchant_name"].upper()
        repo.upsert_merchant_alias(MerchantAlias(
            id=entry.get("id") or f"alias_{_slugify(name).replace('-', '_')}",
            merchant_name=name,
            aliases=list(entry.get("aliases") or []),
            mcc_code=str(entry["mcc_code"]).zfill(4),
            confidence=float(entry.get("confidence", 1.0)),
            created_by="seed",
        ))
        result.merchant_aliases += 1

    for entry in config.reward_categories:
        repo.upsert_reward_category(RewardCategory(
            slug=entry["slug"], name=entry["name"],
            mcc_codes=[str(c).zfill(4) for c in entry.get("mcc_codes") or []],
        ))
        result.reward_categories += 1

    known_reward_slugs = {rc["slug"] for rc in config.reward_categories}
    for entry in config.offers:
        offer = Offer.from_dict(entry)
        for rule in offer.accelerated_rewards:
            if rule.reward_category not in known_reward_slugs:
                raise ValueError(
                    f"offer {offer.id}: unknown reward category '{rule.reward_category}'"
                )
        repo.upsert_offer(offer)
        result.offers += 1

    logger.info(
        "Seeded %d categories, %d subcategories, %d MCC codes, %d aliases, %d offers",
        result.categories, result.sub_categories, result.mcc_codes,
        result.merchant_aliases, result.offers,
    )
    return result
