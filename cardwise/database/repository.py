"""Repository: CRUD operations against SQLite using raw SQL.

All methods take/return dataclass instances from models.py.
Connection management uses a single connection per Repository with WAL
mode and foreign keys enabled. Each Repository serializes use of its
connection with a re-entrant lock, so one instance may be shared by
threads; workers that need real parallelism open their own Repository
on the same database file.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path

from .models import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PROCESSING,
    JOB_QUEUED,
    Category,
    Job,
    MCCCode,
    MerchantAlias,
    Offer,
    Recommendation,
    RewardCategory,
    SubCategory,
    Transaction,
    _now,
)


class Repository:
    def __init__(self, db_path: str = ":memory:", timeout: float = 30.0):
        self.db_path = db_path
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(
                self.db_path, timeout=self.timeout, check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # ── Migrations ──────────────────────────────────────────

    def apply_migrations(self, migrations_dir: Path):
        """Apply all pending SQL migrations in order.

        Each migration runs in a transaction: if the SQL fails, the
        schema_version row is not inserted, allowing retry on next startup.
        """
        with self._lock:
            self.conn.execute(
                "CREATE TABLE IF NOT EXISTS schema_version ("
                "  version INTEGER PRIMARY KEY,"
                "  description TEXT,"
                "  applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP"
                ")"
            )
            self.conn.commit()

            row = self.conn.execute(
                "SELECT MAX(version) FROM schema_version"
            ).fetchone()
            current = row[0] or 0

            for sql_file in sorted(Path(migrations_dir).glob("*.sql")):
                version = int(sql_file.name.split("_")[0])
                if version > current:
                    try:
                        self.conn.execute("BEGIN")
                        # executescript auto-commits, so we split statements manually
                        sql_text = sql_file.read_text()
                        for statement in sql_text.split(";"):
                            statement = statement.strip()
                            if statement:
                                self.conn.execute(statement)
                        self.conn.execute(
                            "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                            (version, sql_file.stem),
                        )
                        self.conn.commit()
                    except Exception:
                        self.conn.rollback()
                        raise

    # ── Taxonomy ────────────────────────────────────────────

    def upsert_category(self, cat: Category) -> Category:
        with self._lock:
            self.conn.execute(
                "INSERT INTO categories (id, name, slug) VALUES (?, ?, ?)"
                " ON CONFLICT(id) DO UPDATE SET name = excluded.name,"
                "  slug = excluded.slug",
                (cat.id, cat.name, cat.slug),
            )
            self.conn.commit()
        return cat

    def upsert_sub_category(self, sub: SubCategory) -> SubCategory:
        with self._lock:
            self.conn.execute(
                "INSERT INTO sub_categories (id, category_id, name, slug)"
                " VALUES (?, ?, ?, ?)"
                " ON CONFLICT(id) DO UPDATE SET category_id = excluded.category_id,"
                "  name = excluded.name, slug = excluded.slug",
                (sub.id, sub.category_id, sub.name, sub.slug),
            )
            self.conn.commit()
        return sub

    def get_categories(self) -> list[Category]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM categories ORDER BY name"
            ).fetchall()
        return [Category(id=r["id"], name=r["name"], slug=r["slug"]) for r in rows]

    def get_sub_categories(self) -> list[SubCategory]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM sub_categories ORDER BY category_id, name"
            ).fetchall()
        return [
            SubCategory(
                id=r["id"], category_id=r["category_id"],
                name=r["name"], slug=r["slug"],
            )
            for r in rows
        ]

    # ── MCC codes ───────────────────────────────────────────

    def upsert_mcc_code(self, mcc: MCCCode) -> MCCCode:
        with self._lock:
            self.conn.execute(
                "INSERT INTO mcc_codes"
                " (code, description, category_id, sub_category_id,"
                "  merchant_patterns, confidence)"
                " VALUES (?, ?, ?, ?, ?, ?)"
                " ON CONFLICT(code) DO UPDATE SET"
                "  description = excluded.description,"
                "  category_id = excluded.category_id,"
                "  sub_category_id = excluded.sub_category_id,"
                "  merchant_patterns = excluded.merchant_patterns,"
                "  confidence = excluded.confidence",
                (mcc.code, mcc.description, mcc.category_id,
                 mcc.sub_category_id, json.dumps(mcc.merchant_patterns),
                 mcc.confidence),
            )
            self.conn.commit()
        return mcc

    def get_mcc_code(self, code: str) -> MCCCode | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM mcc_codes WHERE code = ?", (code,)
            ).fetchone()
        return self._row_to_mcc_code(row) if row else None

    def get_mcc_codes(self) -> list[MCCCode]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM mcc_codes ORDER BY code"
            ).fetchall()
        return [self._row_to_mcc_code(r) for r in rows]

    def add_mcc_merchant_pattern(self, code: str, pattern: str) -> bool:
        """Append a merchant pattern to an MCC record if not already present.

        Returns True if the pattern was added. The read and write happen in
        one IMMEDIATE transaction so concurrent discoveries cannot drop
        each other's patterns.
        """
        with self._lock:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
                row = self.conn.execute(
                    "SELECT merchant_patterns FROM mcc_codes WHERE code = ?",
                    (code,),
                ).fetchone()
                if row is None:
                    self.conn.commit()
                    return False
                patterns = json.loads(row["merchant_patterns"] or "[]")
                if pattern.upper() in (p.upper() for p in patterns):
                    self.conn.commit()
                    return False
                patterns.append(pattern)
                self.conn.execute(
                    "UPDATE mcc_codes SET merchant_patterns = ? WHERE code = ?",
                    (json.dumps(patterns), code),
                )
                self.conn.commit()
                return True
            except Exception:
                self.conn.rollback()
                raise

    # ── Merchant aliases ────────────────────────────────────

    def upsert_merchant_alias(self, alias: MerchantAlias) -> None:
        """Insert an alias or bump an existing one.

        On conflict the stored confidence becomes MAX(stored, new) and
        usage_count increments; aliases are never removed. A single
        statement, so concurrent writers need no coordination.
        """
        with self._lock:
            self.conn.execute(
                "INSERT INTO merchant_aliases"
                " (id, merchant_name, aliases, mcc_code, confidence,"
                "  usage_count, created_by, created_at, updated_at)"
                " VALUES (?,?,?,?,?,?,?,?,?)"
                " ON CONFLICT(id) DO UPDATE SET"
                "  confidence = MAX(merchant_aliases.confidence, excluded.confidence),"
                "  usage_count = merchant_aliases.usage_count + 1,"
                "  updated_at = excluded.updated_at",
                (alias.id, alias.merchant_name, json.dumps(alias.aliases),
                 alias.mcc_code, alias.confidence, alias.usage_count,
                 alias.created_by, alias.created_at, alias.updated_at),
            )
            self.conn.commit()

    def get_merchant_alias(self, alias_id: str) -> MerchantAlias | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM merchant_aliases WHERE id = ?", (alias_id,)
            ).fetchone()
        return self._row_to_merchant_alias(row) if row else None

    def get_merchant_aliases(self) -> list[MerchantAlias]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM merchant_aliases ORDER BY merchant_name"
            ).fetchall()
        return [self._row_to_merchant_alias(r) for r in rows]

    # ── Offer catalog ───────────────────────────────────────

    def upsert_reward_category(self, rc: RewardCategory) -> RewardCategory:
        with self._lock:
            self.conn.execute(
                "INSERT INTO reward_categories (slug, name, mcc_codes)"
                " VALUES (?, ?, ?)"
                " ON CONFLICT(slug) DO UPDATE SET name = excluded.name,"
                "  mcc_codes = excluded.mcc_codes",
                (rc.slug, rc.name, json.dumps(rc.mcc_codes)),
            )
            self.conn.commit()
        return rc

    def get_reward_categories(self) -> list[RewardCategory]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM reward_categories ORDER BY slug"
            ).fetchall()
        return [
            RewardCategory(
                slug=r["slug"], name=r["name"],
                mcc_codes=json.loads(r["mcc_codes"] or "[]"),
            )
            for r in rows
        ]

    def upsert_offer(self, offer: Offer) -> Offer:
        with self._lock:
            self.conn.execute(
                "INSERT OR REPLACE INTO offers"
                " (id, name, issuer, network, fee_structure, base_reward_rate,"
                "  reward_currency, accelerated_rewards, eligibility, is_active,"
                "  is_lifetime_free, customer_satisfaction_score,"
                "  recommendation_score, features, additional_benefits,"
                "  signup_bonus)"
                " VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
                (offer.id, offer.name, offer.issuer, offer.network,
                 json.dumps({
                     "joining_fee": offer.fee_structure.joining_fee,
                     "annual_fee": offer.fee_structure.annual_fee,
                 }),
                 offer.base_reward_rate, offer.reward_currency,
                 json.dumps([r.to_dict() for r in offer.accelerated_rewards]),
                 json.dumps({
                     "min_income": offer.eligibility.min_income,
                     "min_credit_score": offer.eligibility.min_credit_score,
                 }),
                 int(offer.is_active), int(offer.is_lifetime_free),
                 offer.customer_satisfaction_score, offer.recommendation_score,
                 json.dumps(offer.features),
                 json.dumps(offer.additional_benefits),
                 offer.signup_bonus),
            )
            self.conn.commit()
        return offer

    def get_offer(self, offer_id: str) -> Offer | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM offers WHERE id = ?", (offer_id,)
            ).fetchone()
        return self._row_to_offer(row) if row else None

    def get_offers(self, active_only: bool = False) -> list[Offer]:
        sql = "SELECT * FROM offers"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY id"
        with self._lock:
            rows = self.conn.execute(sql).fetchall()
        return [self._row_to_offer(r) for r in rows]

    # ── Transactions ────────────────────────────────────────

    _TXN_COLUMNS = (
        "id, session_id, date, raw_description, merchant, amount, mcc_code,"
        " category_id, sub_category_id, resolution_confidence,"
        " resolution_source, needs_review, is_verified, created_at, updated_at"
    )

    @staticmethod
    def _txn_params(t: Transaction) -> tuple:
        return (
            t.id, t.session_id, t.date, t.raw_description, t.merchant,
            t.amount, t.mcc_code, t.category_id, t.sub_category_id,
            t.resolution_confidence, t.resolution_source,
            int(t.needs_review), int(t.is_verified),
            t.created_at, t.updated_at,
        )

    def insert_transaction(self, txn: Transaction) -> Transaction:
        with self._lock:
            self.conn.execute(
                f"INSERT INTO transactions ({self._TXN_COLUMNS})"
                " VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
                self._txn_params(txn),
            )
            self.conn.commit()
        return txn

    def insert_transactions_batch(self, txns: list[Transaction]):
        """Insert multiple transactions atomically.

        Uses a transaction wrapper so either all inserts succeed or none do.
        """
        with self._lock:
            try:
                self.conn.execute("BEGIN")
                self.conn.executemany(
                    f"INSERT INTO transactions ({self._TXN_COLUMNS})"
                    " VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
                    [self._txn_params(t) for t in txns],
                )
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise

    def get_transaction(self, txn_id: str) -> Transaction | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM transactions WHERE id = ?", (txn_id,)
            ).fetchone()
        return self._row_to_transaction(row) if row else None

    def get_session_transactions(self, session_id: str) -> list[Transaction]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM transactions WHERE session_id = ?"
                " ORDER BY date, rowid",
                (session_id,),
            ).fetchall()
        return [self._row_to_transaction(r) for r in rows]

    def get_unresolved_transactions(self, session_id: str) -> list[Transaction]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM transactions"
                " WHERE session_id = ? AND category_id IS NULL"
                " ORDER BY date, rowid",
                (session_id,),
            ).fetchall()
        return [self._row_to_transaction(r) for r in rows]

    def update_transaction_resolution(
        self,
        txn_id: str,
        mcc_code: str | None,
        category_id: str,
        sub_category_id: str | None,
        confidence: float,
        source: str,
        needs_review: bool,
        is_verified: bool,
    ) -> None:
        with self._lock:
            self.conn.execute(
                "UPDATE transactions SET mcc_code = ?, category_id = ?,"
                " sub_category_id = ?, resolution_confidence = ?,"
                " resolution_source = ?, needs_review = ?, is_verified = ?,"
                " updated_at = ?"
                " WHERE id = ?",
                (mcc_code, category_id, sub_category_id, confidence, source,
                 int(needs_review), int(is_verified), _now(), txn_id),
            )
            self.conn.commit()

    # ── Jobs ────────────────────────────────────────────────

    def insert_job(self, job: Job) -> Job:
        with self._lock:
            self.conn.execute(
                "INSERT INTO jobs"
                " (id, session_id, kind, status, priority, progress,"
                "  current_step, input_payload, output_payload, error_message,"
                "  worker_id, queued_at, started_at, completed_at, updated_at)"
                " VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
                (job.id, job.session_id, job.kind, job.status, job.priority,
                 job.progress, job.current_step,
                 json.dumps(job.input_payload) if job.input_payload is not None else None,
                 json.dumps(job.output_payload) if job.output_payload is not None else None,
                 job.error_message, job.worker_id, job.queued_at,
                 job.started_at, job.completed_at, job.updated_at),
            )
            self.conn.commit()
        return job

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM jobs WHERE id = ?", (job_id,)
            ).fetchone()
        return self._row_to_job(row) if row else None

    def get_session_jobs(self, session_id: str) -> list[Job]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM jobs WHERE session_id = ?"
                " ORDER BY queued_at DESC, rowid DESC",
                (session_id,),
            ).fetchall()
        return [self._row_to_job(r) for r in rows]

    def claim_next_job(self, worker_id: str, now: str | None = None) -> Job | None:
        """Atomically claim the most urgent queued job.

        Selection order is priority ascending, then queued_at ascending.
        The select and the conditional UPDATE run inside one
        BEGIN IMMEDIATE transaction, which holds SQLite's write lock, so
        no other connection can claim the same row in between. The
        ``status = 'queued'`` guard on the UPDATE makes a lost race show
        up as rowcount 0 instead of a double claim.

        Returns the claimed Job, or None if the queue is empty.
        """
        ts = now or _now()
        with self._lock:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
                row = self.conn.execute(
                    "SELECT id FROM jobs WHERE status = ?"
                    " ORDER BY priority ASC, queued_at ASC, rowid ASC"
                    " LIMIT 1",
                    (JOB_QUEUED,),
                ).fetchone()
                if row is None:
                    self.conn.commit()
                    return None
                cur = self.conn.execute(
                    "UPDATE jobs SET status = ?, started_at = ?, updated_at = ?,"
                    " worker_id = ?, progress = 0, current_step = 'claimed'"
                    " WHERE id = ? AND status = ?",
                    (JOB_PROCESSING, ts, ts, worker_id, row["id"], JOB_QUEUED),
                )
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise
            if cur.rowcount != 1:
                return None
            return self.get_job(row["id"])

    def update_job_progress(
        self, job_id: str, progress: int, step: str, now: str | None = None,
    ) -> bool:
        """Record progress on a processing job. Progress is clamped to 0-100.

        Also refreshes updated_at, which the stale-job sweep reads as a
        heartbeat. Returns False if the job is no longer processing.
        """
        progress = max(0, min(100, int(progress)))
        with self._lock:
            cur = self.conn.execute(
                "UPDATE jobs SET progress = ?, current_step = ?, updated_at = ?"
                " WHERE id = ? AND status = ?",
                (progress, step, now or _now(), job_id, JOB_PROCESSING),
            )
            self.conn.commit()
        return cur.rowcount == 1

    def complete_job(
        self, job_id: str, output_payload: dict | None, now: str | None = None,
    ) -> bool:
        ts = now or _now()
        with self._lock:
            cur = self.conn.execute(
                "UPDATE jobs SET status = ?, progress = 100,"
                " current_step = 'completed', output_payload = ?,"
                " completed_at = ?, updated_at = ?"
                " WHERE id = ? AND status = ?",
                (JOB_COMPLETED,
                 json.dumps(output_payload) if output_payload is not None else None,
                 ts, ts, job_id, JOB_PROCESSING),
            )
            self.conn.commit()
        return cur.rowcount == 1

    def fail_job(self, job_id: str, error_message: str, now: str | None = None) -> bool:
        ts = now or _now()
        with self._lock:
            cur = self.conn.execute(
                "UPDATE jobs SET status = ?, progress = 0, current_step = 'failed',"
                " error_message = ?, completed_at = ?, updated_at = ?"
                " WHERE id = ? AND status = ?",
                (JOB_FAILED, error_message, ts, ts, job_id, JOB_PROCESSING),
            )
            self.conn.commit()
        return cur.rowcount == 1

    def fail_stale_jobs(
        self, cutoff: str, error_message: str, now: str | None = None,
    ) -> list[str]:
        """Fail every processing job whose last update is older than cutoff.

        Returns the ids of the jobs that were failed.
        """
        ts = now or _now()
        with self._lock:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
                rows = self.conn.execute(
                    "SELECT id FROM jobs WHERE status = ? AND updated_at < ?",
                    (JOB_PROCESSING, cutoff),
                ).fetchall()
                ids = [r["id"] for r in rows]
                if ids:
                    ph = ",".join("?" * len(ids))
                    self.conn.execute(
                        f"UPDATE jobs SET status = ?, progress = 0,"
                        f" current_step = 'failed', error_message = ?,"
                        f" completed_at = ?, updated_at = ?"
                        f" WHERE id IN ({ph}) AND status = ?",
                        [JOB_FAILED, error_message, ts, ts, *ids, JOB_PROCESSING],
                    )
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise
        return ids

    def count_jobs_by_status(self) -> dict[str, int]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT status, COUNT(*) AS cnt FROM jobs GROUP BY status"
            ).fetchall()
        return {r["status"]: r["cnt"] for r in rows}

    # ── Recommendations ─────────────────────────────────────

    def replace_recommendations(
        self, session_id: str, recs: list[Recommendation],
    ) -> None:
        """Delete a session's recommendations and insert the new set atomically."""
        with self._lock:
            try:
                self.conn.execute("BEGIN")
                self.conn.execute(
                    "DELETE FROM recommendations WHERE session_id = ?",
                    (session_id,),
                )
                self.conn.executemany(
                    "INSERT INTO recommendations"
                    " (id, session_id, card_id, rank, score, estimated_earnings,"
                    "  signup_bonus_value, net_savings, primary_reason, pros, cons,"
                    "  category_breakdown, created_at)"
                    " VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)",
                    [
                        (r.id, r.session_id, r.card_id, r.rank, r.score,
                         r.estimated_earnings, r.signup_bonus_value, r.net_savings,
                         r.primary_reason, json.dumps(r.pros),
                         json.dumps(r.cons), json.dumps(r.category_breakdown),
                         r.created_at)
                        for r in recs
                    ],
                )
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise

    def get_recommendations(self, session_id: str) -> list[Recommendation]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM recommendations WHERE session_id = ?"
                " ORDER BY rank",
                (session_id,),
            ).fetchall()
        return [self._row_to_recommendation(r) for r in rows]

    # ── App config ──────────────────────────────────────────

    def get_app_config(self) -> dict[str, str]:
        with self._lock:
            rows = self.conn.execute("SELECT key, value FROM app_config").fetchall()
        return {r["key"]: r["value"] for r in rows}

    def set_app_config_value(
        self, key: str, value: str, description: str | None = None,
    ) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT INTO app_config (key, value, description, updated_at)"
                " VALUES (?, ?, ?, CURRENT_TIMESTAMP)"
                " ON CONFLICT(key) DO UPDATE SET value = excluded.value,"
                "  description = COALESCE(excluded.description, app_config.description),"
                "  updated_at = CURRENT_TIMESTAMP",
                (key, str(value), description),
            )
            self.conn.commit()

    def insert_app_config_default(
        self, key: str, value: str, description: str | None = None,
    ) -> bool:
        """Insert a config row only if the key is absent. Returns True if inserted."""
        with self._lock:
            cur = self.conn.execute(
                "INSERT OR IGNORE INTO app_config (key, value, description)"
                " VALUES (?, ?, ?)",
                (key, str(value), description),
            )
            self.conn.commit()
        return cur.rowcount == 1

    # ── Row Converters ──────────────────────────────────────

    @staticmethod
    def _row_to_mcc_code(row: sqlite3.Row) -> MCCCode:
        return MCCCode(
            code=row["code"], description=row["description"],
            category_id=row["category_id"],
            sub_category_id=row["sub_category_id"],
            merchant_patterns=json.loads(row["merchant_patterns"] or "[]"),
            confidence=row["confidence"],
        )

    @staticmethod
    def _row_to_merchant_alias(row: sqlite3.Row) -> MerchantAlias:
        return MerchantAlias(
            id=row["id"], merchant_name=row["merchant_name"],
            aliases=json.loads(row["aliases"] or "[]"),
            mcc_code=row["mcc_code"], confidence=row["confidence"],
            usage_count=row["usage_count"], created_by=row["created_by"],
            created_at=row["created_at"], updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_offer(row: sqlite3.Row) -> Offer:
        return Offer.from_dict({
            "id": row["id"], "name": row["name"],
            "issuer": row["issuer"], "network": row["network"],
            "fee_structure": json.loads(row["fee_structure"] or "{}"),
            "base_reward_rate": row["base_reward_rate"],
            "reward_currency": row["reward_currency"],
            "accelerated_rewards": json.loads(row["accelerated_rewards"] or "[]"),
            "eligibility": json.loads(row["eligibility"] or "{}"),
            "is_active": bool(row["is_active"]),
            "is_lifetime_free": bool(row["is_lifetime_free"]),
            "customer_satisfaction_score": row["customer_satisfaction_score"],
            "recommendation_score": row["recommendation_score"],
            "features": json.loads(row["features"] or "[]"),
            "additional_benefits": json.loads(row["additional_benefits"] or "[]"),
            "signup_bonus": row["signup_bonus"],
        })

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"], session_id=row["session_id"],
            date=row["date"], raw_description=row["raw_description"],
            merchant=row["merchant"], amount=row["amount"],
            mcc_code=row["mcc_code"], category_id=row["category_id"],
            sub_category_id=row["sub_category_id"],
            resolution_confidence=row["resolution_confidence"],
            resolution_source=row["resolution_source"],
            needs_review=bool(row["needs_review"]),
            is_verified=bool(row["is_verified"]),
            created_at=row["created_at"], updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        return Job(
            id=row["id"], session_id=row["session_id"], kind=row["kind"],
            status=row["status"], priority=row["priority"],
            progress=row["progress"], current_step=row["current_step"],
            input_payload=json.loads(row["input_payload"]) if row["input_payload"] else None,
            output_payload=json.loads(row["output_payload"]) if row["output_payload"] else None,
            error_message=row["error_message"], worker_id=row["worker_id"],
            queued_at=row["queued_at"], started_at=row["started_at"],
            completed_at=row["completed_at"], updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_recommendation(row: sqlite3.Row) -> Recommendation:
        return Recommendation(
            id=row["id"], session_id=row["session_id"],
            card_id=row["card_id"], rank=row["rank"], score=row["score"],
            estimated_earnings=row["estimated_earnings"],
            signup_bonus_value=row["signup_bonus_value"],
            net_savings=row["net_savings"],
            primary_reason=row["primary_reason"],
            pros=json.loads(row["pros"] or "[]"),
            cons=json.loads(row["cons"] or "[]"),
            category_breakdown=json.loads(row["category_breakdown"] or "[]"),
            created_at=row["created_at"],
        )
