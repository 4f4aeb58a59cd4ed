"""Brand merchant matching for reward rules.

Statement merchants ("RSP*SWIGGY BANGALORE", "ZEPTO") are compared
against the merchant patterns on a brand-specific reward rule ("swiggy",
"amazon_pay_partners"). Both sides are squashed to lowercase alphanumerics
before comparing, and a pattern may name a whole merchant family.
"""

from __future__ import annotations

import re

_RSP_PREFIX = re.compile(r"rsp\*")
_CITY_SUFFIX = re.compile(
    r"\s+(bangalore|mumbai|delhi|pune|hyderabad|chennai|kolkata|ahmedabad"
    r"|gurugram|gurgaon|noida|ghaziabad)$"
)
_NON_ALNUM = re.compile(r"[^a-z0-9]")

# Normalized pattern → merchant spellings it should match
MERCHANT_FAMILIES: dict[str, list[str]] = {
    "amazon": ["amazon", "amzn"],
    "amazonin": ["amazon", "amzn", "amazonin"],
    "flipkart": ["flipkart", "fkrt"],
    "myntra": ["myntra"],
    "swiggy": ["swiggy", "instamart", "swiggygenie", "swiggyinstamart", "swiggyinstamrt"],
    "zomato": ["zomato", "blinkit", "grofers"],
    "uber": ["uber"],
    "ola": ["ola"],
    "pvr": ["pvr", "district", "districtmovie", "districtmovietik", "districtmovietic"],
    "cultfit": ["cult", "cultfit"],
    "cleartrip": ["cleartrip"],
    "zepto": ["zepto", "zeptomarketplace"],
    "blinkit": ["blinkit", "grofers"],
    "bigbasket": ["bigbasket", "bbinstant"],
    "bookmyshow": ["bookmyshow", "bms"],
    "amazonpaypartners": [
        "swiggy", "uber", "bookmyshow", "pvr", "cult", "zepto", "blinkit",
        "instamart", "zeptomarketplace", "swiggyinstamart",
    ],
    "tataneuecosystem": ["tatacliq", "bigbasket", "croma", "westside", "titan", "tanishq"],
    "tatabrands": ["tata", "tatacliq", "bigbasket", "croma", "westside", "titan", "tanishq"],
}

VARIANT_MIN_SIMILARITY = 0.6
RSP_MIN_SIMILARITY = 0.5
RSP_DISCOUNT = 0.9
FUZZY_MIN_LENGTH = 3
FUZZY_MIN_SIMILARITY = 0.7
FUZZY_DISCOUNT = 0.8


def normalize_pattern(pattern: str) -> str:
    return _NON_ALNUM.sub("", (pattern or "").lower())


def normalize_merchant_name(merchant: str) -> str:
    """Lowercase, drop the RSP* prefix and a trailing city, squash to [a-z0-9].

    >>> normalize_merchant_name("RSP*SWIGGY BANGALORE")
    'swiggy'
    """
    text = _RSP_PREFIX.sub("", (merchant or "").lower()).strip()
    text = _CITY_SUFFIX.sub("", text)
    return _NON_ALNUM.sub("", text)


def _length_ratio(a: str, b: str) -> float:
    return min(len(a), len(b)) / max(len(a), len(b))


def _overlaps(a: str, b: str) -> bool:
    return a in b or b in a


def pattern_match_score(pattern: str, merchant: str) -> float:
    """Score one normalized pattern against one normalized merchant (0..1)."""
    if not pattern or not merchant:
        return 0.0
    if pattern == merchant:
        return 1.0

    variants = MERCHANT_FAMILIES.get(pattern, [pattern])
    for variant in variants:
        if _overlaps(variant, merchant):
            ratio = _length_ratio(variant, merchant)
            return ratio if ratio >= VARIANT_MIN_SIMILARITY else 0.0

    if merchant.startswith("rsp"):
        stripped = merchant[3:]
        for variant in variants:
            if stripped and _overlaps(variant, stripped):
                ratio = _length_ratio(variant, stripped)
                return ratio * RSP_DISCOUNT if ratio >= RSP_MIN_SIMILARITY else 0.0

    if len(pattern) >= FUZZY_MIN_LENGTH and len(merchant) >= FUZZY_MIN_LENGTH:
        if _overlaps(pattern, merchant):
            ratio = _length_ratio(pattern, merchant)
            return ratio * FUZZY_DISCOUNT if ratio >= FUZZY_MIN_SIMILARITY else 0.0

    return 0.0


def merchant_match_score(patterns: list[str], merchants: list[str] | tuple[str, ...]) -> float:
    """How well a rule's merchant patterns cover a set of merchants.

    Each pattern contributes the score of the first merchant it matches.
    The total is averaged over the patterns and capped at 1.0, so a rule
    listing many brands needs to see several of them to score fully.
    Returns 0.0 when either side is empty.
    """
    if not patterns or not merchants:
        return 0.0
    normalized_merchants = [normalize_merchant_name(m) for m in merchants]
    total = 0.0
    for raw in patterns:
        pattern = normalize_pattern(raw)
        for merchant in normalized_merchants:
            score = pattern_match_score(pattern, merchant)
            if score > 0:
                total += score
                break
    return min(1.0, total / len(patterns))
