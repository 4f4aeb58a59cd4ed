"""Reporting queries that span multiple tables.

These go beyond single-table CRUD and implement aggregations used by the
insights and status commands.
"""

from __future__ import annotations

import sqlite3


def count_by_resolution_source(conn: sqlite3.Connection, session_id: str) -> dict[str, int]:
    rows = conn.execute(
        "SELECT COALESCE(resolution_source, 'pending') AS source, COUNT(*) AS cnt"
        " FROM transactions WHERE session_id = ?"
        " GROUP BY COALESCE(resolution_source, 'pending')",
        (session_id,),
    ).fetchall()
    return {r["source"]: r["cnt"] for r in rows}


def top_merchants(
    conn: sqlite3.Connection, session_id: str, limit: int = 10,
) -> list[dict]:
    """Merchants by positive spend, with their resolved category name."""
    rows = conn.execute(
        "SELECT COALESCE(t.merchant, t.raw_description) AS merchant,"
        "  COUNT(*) AS cnt, SUM(t.amount) AS total,"
        "  MAX(c.name) AS category_name"
        " FROM transactions t"
        " LEFT JOIN categories c ON c.id = t.category_id"
        " WHERE t.session_id = ? AND t.amount > 0"
        " GROUP BY COALESCE(t.merchant, t.raw_description)"
        " ORDER BY total DESC, merchant"
        " LIMIT ?",
        (session_id, limit),
    ).fetchall()
    return [
        {
            "merchant": r["merchant"],
            "transaction_count": r["cnt"],
            "total_spent": round(r["total"], 2),
            "category_name": r["category_name"],
        }
        for r in rows
    ]


def get_session_status(conn: sqlite3.Connection, session_id: str) -> dict:
    """Counts for the status command: transactions, review items, jobs."""
    txn = conn.execute(
        "SELECT COUNT(*) AS total,"
        "  SUM(CASE WHEN category_id IS NOT NULL THEN 1 ELSE 0 END) AS resolved,"
        "  SUM(CASE WHEN needs_review = 1 THEN 1 ELSE 0 END) AS review,"
        "  SUM(CASE WHEN amount > 0 THEN amount ELSE 0 END) AS spend"
        " FROM transactions WHERE session_id = ?",
        (session_id,),
    ).fetchone()
    recs = conn.execute(
        "SELECT COUNT(*) FROM recommendations WHERE session_id = ?",
        (session_id,),
    ).fetchone()
    return {
        "total_transactions": txn["total"] or 0,
        "resolved": txn["resolved"] or 0,
        "needs_review": txn["review"] or 0,
        "total_spend": round(txn["spend"] or 0.0, 2),
        "recommendations": recs[0],
    }
