"""Dataclass models matching the SQLite schema.

Each dataclass corresponds to one table. Fields match column names exactly.
All primary keys are TEXT. Offer sub-structures (fees, rules, caps,
eligibility) are stored as JSON columns and validated into their own
dataclasses by ``Offer.from_dict`` when read from config or the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

JOB_QUEUED = "queued"
JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
JOB_STATUSES = (JOB_QUEUED, JOB_PROCESSING, JOB_COMPLETED, JOB_FAILED)


def _new_id() -> str:
    return str(uuid4())


def _now() -> str:
    return to_timestamp(datetime.now(timezone.utc))


def to_timestamp(dt: datetime) -> str:
    """Fixed-width ISO-8601 UTC string, so stored timestamps sort lexically."""
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


@dataclass
class Job:
    session_id: str
    kind: str
    id: str = field(default_factory=_new_id)
    status: str = JOB_QUEUED
    priority: int = 5
    progress: int = 0
    current_step: str | None = None
    input_payload: dict | None = None
    output_payload: dict | None = None
    error_message: str | None = None
    worker_id: str | None = None
    queued_at: str = field(default_factory=_now)
    started_at: str | None = None
    completed_at: str | None = None
    updated_at: str = field(default_factory=_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JOB_COMPLETED, JOB_FAILED)


@dataclass
class Transaction:
    session_id: str
    date: str
    raw_description: str
    amount: float
    id: str = field(default_factory=_new_id)
    merchant: str | None = None
    mcc_code: str | None = None
    category_id: str | None = None
    sub_category_id: str | None = None
    resolution_confidence: float | None = None
    resolution_source: str | None = None
    needs_review: bool = False
    is_verified: bool = False
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    @property
    def merchant_label(self) -> str:
        """Merchant name if extracted, otherwise the raw description."""
        return self.merchant or self.raw_description


@dataclass
class MCCCode:
    code: str
    description: str
    category_id: str | None = None
    sub_category_id: str | None = None
    merchant_patterns: list[str] = field(default_factory=list)
    confidence: float = 1.0


@dataclass
class MerchantAlias:
    merchant_name: str
    mcc_code: str
    id: str = field(default_factory=_new_id)
    aliases: list[str] = field(default_factory=list)
    confidence: float = 1.0
    usage_count: int = 0
    created_by: str = "seed"
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)


@dataclass
class Category:
    id: str
    name: str
    slug: str


@dataclass
class SubCategory:
    id: str
    category_id: str
    name: str
    slug: str


@dataclass
class RewardCategory:
    slug: str
    name: str
    mcc_codes: list[str] = field(default_factory=list)


# ── Offer catalog ─────────────────────────────────────────


class OfferValidationError(ValueError):
    """Raised when an offer record fails structural validation."""


def _as_float(data: dict, key: str, default: float = 0.0, where: str = "") -> float:
    value = data.get(key, default)
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise OfferValidationError(f"{where}{key} must be numeric, got {value!r}") from e


def _benefit_groups(data: dict, where: str = "") -> list[dict]:
    groups = data.get("additional_benefits") or []
    if not isinstance(groups, list):
        raise OfferValidationError(f"{where}additional_benefits must be a list")
    for i, group in enumerate(groups):
        if not isinstance(group, dict):
            raise OfferValidationError(f"{where}additional_benefits[{i}] must be a mapping")
        benefits = group.get("benefits") or []
        if not isinstance(benefits, list) or not all(isinstance(b, dict) for b in benefits):
            raise OfferValidationError(
                f"{where}additional_benefits[{i}].benefits must be a list of mappings"
            )
    return list(groups)


@dataclass
class Cap:
    limit: float
    period: str = "monthly"


@dataclass
class RewardRule:
    reward_category: str
    rate: float
    reward_type: str = "cashback"
    merchant_patterns: list[str] = field(default_factory=list)
    cap: Cap | None = None
    description: str = ""

    @property
    def is_brand_specific(self) -> bool:
        return self.reward_category == "brand-specific"

    @classmethod
    def from_dict(cls, data: dict, where: str = "") -> RewardRule:
        category = data.get("reward_category")
        if not category:
            raise OfferValidationError(f"{where}reward rule missing reward_category")
        rate = _as_float(data, "rate", where=where)
        if rate < 0:
            raise OfferValidationError(f"{where}reward rate must be >= 0, got {rate}")
        cap = None
        raw_cap = data.get("cap")
        if raw_cap:
            limit = _as_float(raw_cap, "limit", where=where)
            if limit <= 0:
                raise OfferValidationError(f"{where}cap limit must be > 0, got {limit}")
            cap = Cap(limit=limit, period=raw_cap.get("period", "monthly"))
        patterns = data.get("merchant_patterns") or []
        if not isinstance(patterns, list):
            raise OfferValidationError(f"{where}merchant_patterns must be a list")
        return cls(
            reward_category=str(category),
            rate=rate,
            reward_type=data.get("reward_type", "cashback"),
            merchant_patterns=[str(p) for p in patterns],
            cap=cap,
            description=data.get("description", ""),
        )

    def to_dict(self) -> dict:
        out = {
            "reward_category": self.reward_category,
            "rate": self.rate,
            "reward_type": self.reward_type,
            "merchant_patterns": list(self.merchant_patterns),
            "description": self.description,
        }
        if self.cap is not None:
            out["cap"] = {"limit": self.cap.limit, "period": self.cap.period}
        return out


@dataclass
class FeeStructure:
    joining_fee: float = 0.0
    annual_fee: float = 0.0


@dataclass
class Eligibility:
    min_income: float = 0.0
    min_credit_score: int = 0


@dataclass
class Offer:
    id: str
    name: str
    issuer: str
    network: str
    fee_structure: FeeStructure = field(default_factory=FeeStructure)
    base_reward_rate: float = 1.0
    reward_currency: str = "cashback"
    accelerated_rewards: list[RewardRule] = field(default_factory=list)
    eligibility: Eligibility = field(default_factory=Eligibility)
    is_active: bool = True
    is_lifetime_free: bool = False
    customer_satisfaction_score: float | None = None
    recommendation_score: float | None = None
    features: list[str] = field(default_factory=list)
    additional_benefits: list[dict] = field(default_factory=list)
    signup_bonus: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> Offer:
        """Build a validated Offer from a config or store record.

        Raises:
            OfferValidationError: On missing identity fields, negative fees
                or rates, or malformed reward rules or benefits.
        """
        for key in ("id", "name", "issuer", "network"):
            if not data.get(key):
                raise OfferValidationError(f"offer missing required field '{key}'")
        where = f"offer {data['id']}: "

        fees = data.get("fee_structure") or {}
        fee_structure = FeeStructure(
            joining_fee=_as_float(fees, "joining_fee", where=where),
            annual_fee=_as_float(fees, "annual_fee", where=where),
        )
        if fee_structure.joining_fee < 0 or fee_structure.annual_fee < 0:
            raise OfferValidationError(f"{where}fees must be >= 0")

        elig = data.get("eligibility") or {}
        eligibility = Eligibility(
            min_income=_as_float(elig, "min_income", where=where),
            min_credit_score=int(_as_float(elig, "min_credit_score", where=where)),
        )

        rules = [
            RewardRule.from_dict(r, where=where)
            for r in data.get("accelerated_rewards") or []
        ]

        csat = data.get("customer_satisfaction_score")
        rec_score = data.get("recommendation_score")
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            issuer=str(data["issuer"]),
            network=str(data["network"]),
            fee_structure=fee_structure,
            base_reward_rate=_as_float(data, "base_reward_rate", 1.0, where=where),
            reward_currency=data.get("reward_currency", "cashback"),
            accelerated_rewards=rules,
            eligibility=eligibility,
            is_active=bool(data.get("is_active", True)),
            is_lifetime_free=bool(data.get("is_lifetime_free", False)),
            customer_satisfaction_score=float(csat) if csat is not None else None,
            recommendation_score=float(rec_score) if rec_score is not None else None,
            features=[str(f) for f in data.get("features") or []],
            additional_benefits=_benefit_groups(data, where=where),
            signup_bonus=_as_float(data, "signup_bonus", where=where),
        )


# ── Results ───────────────────────────────────────────────


@dataclass
class Recommendation:
    session_id: str
    card_id: str
    rank: int
    score: float
    id: str = field(default_factory=_new_id)
    estimated_earnings: float = 0.0
    signup_bonus_value: float = 0.0
    net_savings: float = 0.0
    primary_reason: str = ""
    pros: list[str] = field(default_factory=list)
    cons: list[str] = field(default_factory=list)
    category_breakdown: list[dict] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
