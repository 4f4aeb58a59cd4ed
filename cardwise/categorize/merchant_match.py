"""Merchant matching: maps raw merchant strings to MCC codes.

Strategies, tried in order by MerchantResolver.resolve():
  1. Exact lookup:   normalized name vs. known patterns / merchant names (0.98)
  2. Fuzzy alias:    Levenshtein similarity vs. every alias (>= threshold)
  3. Pattern match:  substring or */? wildcard vs. MCC merchant patterns
  4. Keyword guess:  obvious description keywords (fuel, grocery, ...)

The AI oracle fallback for merchants none of these resolve lives in
discovery.py, since it is batched and has side effects.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from rapidfuzz.distance import Levenshtein

from cardwise.database.models import MCCCode, MerchantAlias

logger = logging.getLogger(__name__)

EXACT_CONFIDENCE = 0.98
WILDCARD_CONFIDENCE = 0.85
FULL_PATTERN_CONFIDENCE = 0.95
PARTIAL_PATTERN_CONFIDENCE = 0.75

# Prefixes shorter than this are too ambiguous to fuzzy-match on their own
MIN_PREFIX_LENGTH = 3

_DISALLOWED_CHARS = re.compile(r"[^a-zA-Z0-9\s&'-]")
_CORPORATE_SUFFIX = re.compile(r"\b(INC|LLC|CORP|LTD|CO)\b", re.IGNORECASE)
_STANDALONE_NUMBER = re.compile(r"\b\d+\b")
_WHITESPACE = re.compile(r"\s+")

# (keywords, mcc_code, confidence) checked against the lowercase description
KEYWORD_RULES: list[tuple[tuple[str, ...], str, float]] = [
    (("gas", "fuel", "petrol", "exxon", "shell"), "5542", 0.75),
    (("grocery", "supermarket", "walmart", "kroger"), "5411", 0.75),
    (("restaurant", "food", "mcdonalds", "starbucks"), "5814", 0.7),
    (("pharmacy", "cvs", "walgreens"), "5912", 0.75),
]


@dataclass
class MerchantResolution:
    """Result of resolving one merchant string."""
    mcc_code: str
    confidence: float
    source: str  # database, fuzzy_match, pattern_match, keyword_inference, ai_discovery
    matched: str = ""
    description: str = ""
    reasoning: str = ""
    # Category hints, only set by the AI oracle path
    category: str = ""
    sub_category: str = ""


# ── Normalization ─────────────────────────────────────────


def clean_merchant_name(name: str) -> str:
    """Strip noise from a raw merchant string, preserving case.

    Collapses whitespace, drops characters outside [A-Za-z0-9 &'-],
    removes corporate suffixes and standalone numbers.
    """
    text = _WHITESPACE.sub(" ", (name or "").strip())
    text = _DISALLOWED_CHARS.sub("", text)
    text = _CORPORATE_SUFFIX.sub("", text)
    text = _STANDALONE_NUMBER.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def normalize_merchant(name: str) -> str:
    """Lookup key: cleaned, uppercased, apostrophes removed.

    >>> normalize_merchant("MCDONALD'S #12345 ANYTOWN USA")
    'MCDONALDS ANYTOWN USA'
    """
    return _WHITESPACE.sub(" ", clean_merchant_name(name).replace("'", "")).upper().strip()


def _prefix_variants(normalized: str) -> list[str]:
    """The full key plus each leading-token prefix (longest first)."""
    tokens = normalized.split()
    variants = [normalized]
    for n in range(len(tokens) - 1, 0, -1):
        prefix = " ".join(tokens[:n])
        if len(prefix) >= MIN_PREFIX_LENGTH:
            variants.append(prefix)
    return variants


def _is_wildcard(pattern: str) -> bool:
    return "*" in pattern or "?" in pattern


def _wildcard_to_regex(pattern: str) -> re.Pattern:
    parts = []
    for ch in pattern:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.IGNORECASE)


# ── Reference data ────────────────────────────────────────


@dataclass
class PatternEntry:
    pattern: str
    mcc_code: str
    description: str
    regex: re.Pattern | None = None


@dataclass
class ReferenceData:
    """Read-only bundle the resolver strategies consult.

    Built once per job from the store; never mutated afterwards.
    """
    mcc_codes: dict[str, MCCCode] = field(default_factory=dict)
    aliases: list[MerchantAlias] = field(default_factory=list)
    exact_index: dict[str, str] = field(default_factory=dict)
    alias_index: list[tuple[str, str, MerchantAlias]] = field(default_factory=list)
    patterns: list[PatternEntry] = field(default_factory=list)

    @classmethod
    def build(
        cls, mcc_codes: list[MCCCode], aliases: list[MerchantAlias],
    ) -> ReferenceData:
        ref = cls(
            mcc_codes={m.code: m for m in mcc_codes},
            aliases=list(aliases),
        )
        for mcc in sorted(mcc_codes, key=lambda m: m.code):
            for pattern in mcc.merchant_patterns:
                if not pattern or not pattern.strip():
                    continue
                if _is_wildcard(pattern):
                    ref.patterns.append(PatternEntry(
                        pattern=pattern, mcc_code=mcc.code,
                        description=mcc.description,
                        regex=_wildcard_to_regex(pattern),
                    ))
                    continue
                key = normalize_merchant(pattern)
                if not key:
                    continue
                ref.exact_index.setdefault(key, mcc.code)
                ref.patterns.append(PatternEntry(
                    pattern=key, mcc_code=mcc.code, description=mcc.description,
                ))
        for alias in aliases:
            key = normalize_merchant(alias.merchant_name)
            if key:
                ref.exact_index.setdefault(key, alias.mcc_code)
            for name in [alias.merchant_name, *alias.aliases]:
                norm = normalize_merchant(name)
                if norm:
                    ref.alias_index.append((norm, name, alias))
        return ref

    @classmethod
    def from_repository(cls, repo) -> ReferenceData:
        return cls.build(repo.get_mcc_codes(), repo.get_merchant_aliases())

    def description_for(self, mcc_code: str) -> str:
        mcc = self.mcc_codes.get(mcc_code)
        return mcc.description if mcc else f"MCC {mcc_code}"


# ── Resolver ──────────────────────────────────────────────


class MerchantResolver:
    """Synchronous strategy chain over a fixed ReferenceData bundle.

    ``resolve`` never raises for ordinary no-match conditions; it returns
    None and lets the caller decide whether to escalate to the AI oracle.
    """

    def __init__(
        self,
        reference: ReferenceData,
        fuzzy_threshold: float = 0.8,
        pattern_min_confidence: float = 0.6,
    ):
        self.reference = reference
        self.fuzzy_threshold = fuzzy_threshold
        self.pattern_min_confidence = pattern_min_confidence

    def resolve(self, merchant: str) -> MerchantResolution | None:
        key = normalize_merchant(merchant)
        if not key:
            return None
        return (
            self.match_exact(key)
            or self.match_fuzzy(key)
            or self.match_pattern(key, merchant)
        )

    def match_exact(self, key: str) -> MerchantResolution | None:
        code = self.reference.exact_index.get(key)
        if code is None:
            return None
        return MerchantResolution(
            mcc_code=code,
            confidence=EXACT_CONFIDENCE,
            source="database",
            matched=key,
            description=self.reference.description_for(code),
            reasoning="Exact match in merchant database",
        )

    def match_fuzzy(self, key: str) -> MerchantResolution | None:
        best_score = 0.0
        best: tuple[str, MerchantAlias] | None = None
        variants = _prefix_variants(key)
        for alias_key, alias_name, alias in self.reference.alias_index:
            for variant in variants:
                score = Levenshtein.normalized_similarity(variant, alias_key)
                if score > best_score:
                    best_score = score
                    best = (alias_name, alias)
        if best is None or best_score < self.fuzzy_threshold:
            return None
        alias_name, alias = best
        return MerchantResolution(
            mcc_code=alias.mcc_code,
            confidence=round(min(best_score, alias.confidence), 4),
            source="fuzzy_match",
            matched=alias_name,
            description=self.reference.description_for(alias.mcc_code),
            reasoning=f"Fuzzy matched with: {alias_name}",
        )

    def match_pattern(self, key: str, raw: str = "") -> MerchantResolution | None:
        best: MerchantResolution | None = None
        for entry in self.reference.patterns:
            confidence = 0.0
            if entry.regex is not None:
                if entry.regex.search(key) or (raw and entry.regex.search(raw)):
                    confidence = WILDCARD_CONFIDENCE
            elif entry.pattern in key or (
                len(key) >= MIN_PREFIX_LENGTH and key in entry.pattern
            ):
                confidence = (
                    FULL_PATTERN_CONFIDENCE
                    if len(entry.pattern) == len(key)
                    else PARTIAL_PATTERN_CONFIDENCE
                )
            if confidence and (best is None or confidence > best.confidence):
                best = MerchantResolution(
                    mcc_code=entry.mcc_code,
                    confidence=confidence,
                    source="pattern_match",
                    matched=entry.pattern,
                    description=entry.description,
                    reasoning=f"Pattern matched: {entry.pattern}",
                )
        if best is None or best.confidence < self.pattern_min_confidence:
            return None
        return best


def infer_from_description(description: str, merchant: str = "") -> MerchantResolution | None:
    """Last-resort MCC guess from obvious keywords in the description."""
    text = f"{description or ''} {merchant or ''}".lower()
    for keywords, code, confidence in KEYWORD_RULES:
        for kw in keywords:
            if re.search(rf"\b{re.escape(kw)}", text):
                return MerchantResolution(
                    mcc_code=code,
                    confidence=confidence,
                    source="keyword_inference",
                    matched=kw,
                    reasoning=f"Inferred from keyword '{kw}'",
                )
    return None
