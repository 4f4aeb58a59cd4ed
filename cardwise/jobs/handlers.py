"""Job handlers, one per job kind.

statement_processing  ingest → categorize → analyze → recommend
categorization        (re)categorize a session's transactions
recommendation        analyze spend and rebuild recommendations

Each handler takes a JobContext and returns the job's output payload.
Any exception fails the job with its message.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from cardwise.analysis.recommend import RecommendationEngine
from cardwise.analysis.scoring import UserProfile
from cardwise.categorize.pipeline import CategorizationPipeline
from cardwise.database.models import Transaction
from cardwise.jobs.scheduler import Handler, JobContext

logger = logging.getLogger(__name__)

STATEMENT_PROCESSING = "statement_processing"
CATEGORIZATION = "categorization"
RECOMMENDATION = "recommendation"

# statement_processing maps categorization's own 0-100 into this band
CATEGORIZE_START = 10
CATEGORIZE_END = 70


class PayloadError(ValueError):
    """Raised when a job's input payload is unusable."""


def parse_transactions(session_id: str, records: list[dict]) -> list[Transaction]:
    """Validate raw statement rows into Transactions.

    Each record needs ``date``, ``description`` and a numeric ``amount``.
    ``merchant`` is optional. Positive amounts are spend, negative are
    credits or refunds.
    """
    if not isinstance(records, list):
        raise PayloadError("transactions must be a list")
    txns = []
    for i, record in enumerate(records):
        if not isinstance(record, dict):
            raise PayloadError(f"transaction {i} is not an object")
        missing = [k for k in ("date", "description", "amount") if record.get(k) in (None, "")]
        if missing:
            raise PayloadError(f"transaction {i} missing {', '.join(missing)}")
        try:
            amount = float(record["amount"])
        except (TypeError, ValueError) as e:
            raise PayloadError(f"transaction {i} amount is not numeric: {record['amount']!r}") from e
        txns.append(Transaction(
            session_id=session_id,
            date=str(record["date"]),
            raw_description=str(record["description"]),
            merchant=record.get("merchant") or None,
            amount=amount,
        ))
    return txns


def _scaled(ctx: JobContext, start: int, end: int) -> Callable[[int, str], None]:
    def report(percent: int, step: str) -> None:
        ctx.progress(start + int((end - start) * percent / 100), f"categorizing: {step}")
    return report


def build_handlers(
    claude_fn=None,
    catch_all_id: str = "cat_other",
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, Handler]:
    """Handlers for every job kind, sharing one AI client."""

    def pipeline_for(ctx: JobContext) -> CategorizationPipeline:
        return CategorizationPipeline(
            ctx.repo, settings=ctx.settings, claude_fn=claude_fn,
            catch_all_id=catch_all_id, sleep=sleep,
        )

    def statement_processing(ctx: JobContext) -> dict:
        payload = ctx.job.input_payload or {}
        session_id = ctx.job.session_id

        ctx.progress(5, "initializing")
        txns = parse_transactions(session_id, payload.get("transactions") or [])

        ctx.progress(10, "ingesting")
        if txns:
            ctx.repo.insert_transactions_batch(txns)
        logger.info("Ingested %d transactions for session %s", len(txns), session_id)

        stats = pipeline_for(ctx).categorize_session(
            session_id, progress=_scaled(ctx, CATEGORIZE_START, CATEGORIZE_END),
        )

        ctx.progress(85, "analyzing")
        result = RecommendationEngine(ctx.repo, ctx.settings).generate(
            session_id, profile=UserProfile.from_dict(payload.get("profile")),
        )

        ctx.progress(95, "finalizing")
        return {
            "transactions_ingested": len(txns),
            "categorization": stats.to_dict(),
            "recommendations": result.to_dict(),
        }

    def categorization(ctx: JobContext) -> dict:
        payload = ctx.job.input_payload or {}
        stats = pipeline_for(ctx).recategorize_session(
            ctx.job.session_id,
            force=bool(payload.get("force", False)),
            only_low_confidence=bool(payload.get("only_low_confidence", False)),
            transaction_ids=payload.get("transaction_ids"),
            progress=ctx.progress,
        )
        return {"categorization": stats.to_dict()}

    def recommendation(ctx: JobContext) -> dict:
        payload = ctx.job.input_payload or {}
        ctx.progress(10, "analyzing")
        result = RecommendationEngine(ctx.repo, ctx.settings).generate(
            ctx.job.session_id, profile=UserProfile.from_dict(payload.get("profile")),
        )
        ctx.progress(90, "finalizing")
        return {"recommendations": result.to_dict()}

    return {
        STATEMENT_PROCESSING: statement_processing,
        CATEGORIZATION: categorization,
        RECOMMENDATION: recommendation,
    }
