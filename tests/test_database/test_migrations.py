"""Tests for schema migration system."""

import sqlite3

import pytest

from cardwise.database.repository import Repository
from tests.conftest import MIGRATIONS_DIR


@pytest.fixture
def repo():
    r = Repository(":memory:")
    yield r
    r.close()


class TestMigrationApply:
    def test_creates_all_tables(self, repo):
        repo.apply_migrations(MIGRATIONS_DIR)
        tables = {
            row[0]
            for row in repo.conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        expected = {
            "schema_version", "categories", "sub_categories", "mcc_codes",
            "merchant_aliases", "reward_categories", "offers", "transactions",
            "jobs", "recommendations", "app_config",
        }
        assert expected.issubset(tables)

    def test_tracks_version(self, repo):
        repo.apply_migrations(MIGRATIONS_DIR)
        row = repo.conn.execute(
            "SELECT MAX(version) FROM schema_version"
        ).fetchone()
        assert row[0] == 2

    def test_idempotent(self, repo):
        repo.apply_migrations(MIGRATIONS_DIR)
        repo.apply_migrations(MIGRATIONS_DIR)  # second run
        row = repo.conn.execute(
            "SELECT COUNT(*) FROM schema_version"
        ).fetchone()
        assert row[0] == 2  # one record per migration

    def test_creates_indexes(self, repo):
        repo.apply_migrations(MIGRATIONS_DIR)
        indexes = {
            row[0]
            for row in repo.conn.execute(
                "SELECT name FROM sqlite_master WHERE type='index'"
            ).fetchall()
        }
        assert {
            "idx_jobs_claim",
            "idx_jobs_session",
            "idx_transactions_session",
            "idx_recommendations_session",
            "idx_sub_categories_category",
        }.issubset(indexes)

    def test_failed_migration_is_not_recorded(self, repo, tmp_path):
        (tmp_path / "001_ok.sql").write_text("CREATE TABLE ok_table (id TEXT)")
        (tmp_path / "002_broken.sql").write_text("CREATE TABLE broken (")
        with pytest.raises(sqlite3.OperationalError):
            repo.apply_migrations(tmp_path)
        versions = [
            r[0] for r in repo.conn.execute("SELECT version FROM schema_version").fetchall()
        ]
        assert versions == [1]


class TestForeignKeys:
    def test_foreign_keys_enabled(self, repo):
        repo.apply_migrations(MIGRATIONS_DIR)
        row = repo.conn.execute("PRAGMA foreign_keys").fetchone()
        assert row[0] == 1

    def test_transaction_requires_known_category(self, repo):
        repo.apply_migrations(MIGRATIONS_DIR)
        with pytest.raises(sqlite3.IntegrityError):
            repo.conn.execute(
                "INSERT INTO transactions"
                " (id, session_id, date, raw_description, amount, category_id)"
                " VALUES ('t1','s1','2026-01-01','TEST',10.0,'cat_missing')"
            )

    def test_recommendation_requires_known_offer(self, repo):
        repo.apply_migrations(MIGRATIONS_DIR)
        with pytest.raises(sqlite3.IntegrityError):
            repo.conn.execute(
                "INSERT INTO recommendations (id, session_id, card_id, rank, score)"
                " VALUES ('r1','s1','card_missing',1,50)"
            )


class TestConstraints:
    def test_job_status_is_checked(self, repo):
        repo.apply_migrations(MIGRATIONS_DIR)
        with pytest.raises(sqlite3.IntegrityError):
            repo.conn.execute(
                "INSERT INTO jobs (id, session_id, kind, status, queued_at, updated_at)"
                " VALUES ('j1','s1','recommendation','paused','t','t')"
            )

    def test_category_slug_unique(self, repo):
        repo.apply_migrations(MIGRATIONS_DIR)
        repo.conn.execute("INSERT INTO categories (id, name, slug) VALUES ('a','A','dup')")
        with pytest.raises(sqlite3.IntegrityError):
            repo.conn.execute("INSERT INTO categories (id, name, slug) VALUES ('b','B','dup')")
