"""CLI entry point for cardwise.

Commands:
    cardwise seed                        Load YAML reference data into the store
    cardwise ingest FILE SESSION         Queue a statement_processing job
    cardwise work [--once]               Run the worker pool (Ctrl+C to stop)
    cardwise status JOB_ID               Show a job's status and progress
    cardwise jobs SESSION                List a session's jobs
    cardwise recommend SESSION           Build recommendations now
    cardwise insights SESSION            Categorization insights for a session
    cardwise config get KEY              Show a resolved setting
    cardwise config set KEY VALUE        Persist a setting in the store
    cardwise config init                 Write missing defaults to the store
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure logging based on CARDWISE_LOG_LEVEL env var."""
    level = os.environ.get("CARDWISE_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _get_config():
    """Load application config from config directory."""
    from cardwise.config import Config

    config_dir = os.environ.get("CARDWISE_CONFIG_DIR", "config")
    return Config(config_dir=config_dir)


def _get_repo():
    """Create a Repository connected to the configured database."""
    from cardwise.database.repository import Repository

    db_path = os.environ.get("CARDWISE_DB_PATH", "cardwise.db")
    return Repository(db_path=db_path)


def _get_migrations_dir() -> Path:
    """Get the migrations directory path."""
    default = Path(__file__).parent / "database" / "migrations"
    return Path(os.environ.get("CARDWISE_MIGRATIONS_DIR", default))


def _get_settings_provider(repo, config=None):
    """Settings provider layering YAML overrides and env under the store."""
    from cardwise.settings import ConfigProvider

    overrides = dict(config.settings) if config is not None else {}
    fuzzy = os.environ.get("CARDWISE_FUZZY_THRESHOLD")
    if fuzzy:
        overrides["fuzzy_threshold"] = float(fuzzy)
    return ConfigProvider(repo=repo, overrides=overrides)


def _make_claude_fn():
    """Create a Claude API callback for merchant discovery.

    Returns a callable (system: str, prompt: str) -> str, or None if
    ANTHROPIC_API_KEY is not set.
    """
    api_key = os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        return None

    try:
        import anthropic

        client = anthropic.Anthropic(api_key=api_key)

        def claude_fn(system: str, prompt: str) -> str:
            response = client.messages.create(
                model="claude-sonnet-4-20250514",
                max_tokens=1024,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
            return response.content[0].text

        return claude_fn
    except Exception as e:
        logging.getLogger(__name__).warning("Claude API not available: %s", e)
        return None


def _open_store():
    repo = _get_repo()
    repo.apply_migrations(_get_migrations_dir())
    return repo


def _optional_config():
    try:
        return _get_config()
    except FileNotFoundError:
        return None


def _make_scheduler(repo_factory, provider, config=None, worker_count=None):
    from cardwise.jobs.handlers import build_handlers
    from cardwise.jobs.scheduler import JobScheduler

    catch_all = config.catch_all_category_id if config is not None else "cat_other"
    handlers = build_handlers(claude_fn=_make_claude_fn(), catch_all_id=catch_all)
    return JobScheduler(repo_factory, handlers, settings=provider, worker_count=worker_count)


def _print_job(status) -> None:
    print(f"Job {status.job_id} ({status.kind})")
    print(f"  Status:    {status.status}")
    print(f"  Progress:  {status.progress}% ({status.current_step or '-'})")
    print(f"  Queued:    {status.queued_at}")
    if status.started_at:
        print(f"  Started:   {status.started_at}")
    if status.completed_at:
        print(f"  Finished:  {status.completed_at}")
    if status.error:
        print(f"  Error:     {status.error}")


# ── Command handlers ─────────────────────────────────────


def cmd_seed(args: argparse.Namespace) -> int:
    """Load taxonomy, MCC codes, aliases and offers into the store."""
    from cardwise.database.seed import seed_reference_data

    config = _get_config()
    repo = _open_store()
    try:
        result = seed_reference_data(repo, config)
        inserted = _get_settings_provider(repo, config).initialize_defaults()
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    finally:
        repo.close()

    print(
        f"Seeded {result.categories} categories, {result.sub_categories} subcategories,"
        f" {result.mcc_codes} MCC codes, {result.merchant_aliases} aliases,"
        f" {result.reward_categories} reward categories, {result.offers} offers"
    )
    print(f"Initialized {inserted} settings")
    return 0


def cmd_ingest(args: argparse.Namespace) -> int:
    """Queue a statement file for background processing."""
    from cardwise.jobs.handlers import STATEMENT_PROCESSING

    filepath = args.file.resolve()
    if not filepath.exists():
        print(f"Error: File not found: {filepath}")
        return 1
    try:
        data = json.loads(filepath.read_text())
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in {filepath}: {e}")
        return 1
    payload = {"transactions": data} if isinstance(data, list) else data
    if not isinstance(payload, dict) or not isinstance(payload.get("transactions"), list):
        print("Error: expected a list of transactions or {\"transactions\": [...]}")
        return 1

    repo = _open_store()
    try:
        scheduler = _make_scheduler(lambda: repo, _get_settings_provider(repo, _optional_config()))
        job_id = scheduler.enqueue(
            args.session, STATEMENT_PROCESSING,
            priority=args.priority, input_payload=payload,
        )
    finally:
        repo.close()

    print(f"Queued job {job_id} ({len(payload['transactions'])} transactions)")
    return 0


def cmd_work(args: argparse.Namespace) -> int:
    """Run the worker pool until interrupted, or drain the queue once."""
    config = _optional_config()
    repo = _open_store()
    provider = _get_settings_provider(repo, config)

    if args.once:
        scheduler = _make_scheduler(lambda: repo, provider, config)
        try:
            scheduler.sweep_stale_jobs()
            count = scheduler.run_pending()
            stats = scheduler.stats()
        finally:
            repo.close()
        print(f"Processed {count} jobs ({stats['jobs_failed']} failed)")
        return 0

    scheduler = _make_scheduler(_get_repo, provider, config, worker_count=args.workers)
    scheduler.start()
    print(f"Running {scheduler.worker_count} workers... (Ctrl+C to stop)")
    try:
        while scheduler.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping workers...")
    finally:
        clean = scheduler.shutdown()
        stats = scheduler.stats()
        scheduler.repo.close()
        repo.close()
    print(f"Processed {stats['jobs_processed']} jobs ({stats['jobs_failed']} failed)")
    return 0 if clean else 1


def cmd_status(args: argparse.Namespace) -> int:
    """Display one job's status."""
    from cardwise.jobs.scheduler import JobStatus

    repo = _open_store()
    try:
        job = repo.get_job(args.job_id)
    finally:
        repo.close()
    if job is None:
        print(f"Job not found: {args.job_id}")
        return 1
    _print_job(JobStatus.from_job(job))
    return 0


def cmd_jobs(args: argparse.Namespace) -> int:
    """List a session's jobs, newest first."""
    from cardwise.database import queries

    repo = _open_store()
    try:
        jobs = repo.get_session_jobs(args.session)
        summary = queries.get_session_status(repo.conn, args.session)
    finally:
        repo.close()

    print(f"Session {args.session}")
    print("=" * 60)
    print(f"  Transactions:     {summary['total_transactions']:,}")
    print(f"  Resolved:         {summary['resolved']:,}")
    print(f"  Needs review:     {summary['needs_review']:,}")
    print(f"  Recommendations:  {summary['recommendations']:,}")
    if not jobs:
        print("\nNo jobs for this session.")
        return 0
    print(f"\nJobs ({len(jobs)}):")
    print("-" * 60)
    for job in jobs:
        print(f"  {job.id}  {job.kind:<22} {job.status:<10} {job.progress:>3}%")
    return 0


def cmd_recommend(args: argparse.Namespace) -> int:
    """Build and store recommendations for a session immediately."""
    from cardwise.analysis.recommend import RecommendationEngine
    from cardwise.analysis.scoring import UserProfile

    config = _optional_config()
    repo = _open_store()
    try:
        settings = _get_settings_provider(repo, config).snapshot()
        profile = None
        if args.income is not None or args.credit_score is not None:
            profile = UserProfile(annual_income=args.income, credit_score=args.credit_score)
        result = RecommendationEngine(repo, settings).generate(args.session, profile=profile)
    finally:
        repo.close()

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return 0
    if not result.recommendations:
        print("No active offers to recommend.")
        return 1
    print(f"Recommendations for {args.session} (ranked by {result.ranking_mode}):")
    print("-" * 60)
    for rec in result.recommendations:
        print(f"  {rec.rank}. {rec.card_id}  score={rec.score:.1f}  earnings={rec.estimated_earnings:,.2f}")
        print(f"     {rec.primary_reason}")
    return 0


def cmd_insights(args: argparse.Namespace) -> int:
    """Print categorization insights for a session as JSON."""
    from cardwise.categorize.pipeline import get_categorization_insights

    repo = _open_store()
    try:
        settings = _get_settings_provider(repo, _optional_config()).snapshot()
        insights = get_categorization_insights(repo, args.session, settings)
    finally:
        repo.close()
    print(json.dumps(insights, indent=2))
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Read, write or initialize runtime settings."""
    sub = args.config_command
    if sub is None:
        print("Usage: cardwise config {get,set,init}")
        return 1

    repo = _open_store()
    try:
        provider = _get_settings_provider(repo, _optional_config())
        if sub == "get":
            value = provider.get(args.key)
            if value is None:
                print(f"Unknown setting: {args.key}")
                return 1
            print(f"{args.key} = {value}")
        elif sub == "set":
            provider.set(args.key, args.value, description=args.description)
            print(f"{args.key} = {args.value}")
        elif sub == "init":
            inserted = provider.initialize_defaults()
            print(f"Initialized {inserted} settings")
    finally:
        repo.close()
    return 0


# ── Main entry point ─────────────────────────────────────


_COMMANDS = {
    "seed": cmd_seed,
    "ingest": cmd_ingest,
    "work": cmd_work,
    "status": cmd_status,
    "jobs": cmd_jobs,
    "recommend": cmd_recommend,
    "insights": cmd_insights,
    "config": cmd_config,
}


def main(argv: list[str] | None = None):
    _setup_logging()

    parser = argparse.ArgumentParser(
        prog="cardwise",
        description="cardwise statement categorization and card recommendations",
    )
    subparsers = parser.add_subparsers(dest="command")

    # seed
    subparsers.add_parser("seed", help="Load YAML reference data into the store")

    # ingest
    ingest_p = subparsers.add_parser("ingest", help="Queue a statement for processing")
    ingest_p.add_argument("file", type=Path, help="JSON file of transactions")
    ingest_p.add_argument("session", help="Session ID")
    ingest_p.add_argument("--priority", type=int, default=5, help="Lower runs first (default 5)")

    # work
    work_p = subparsers.add_parser("work", help="Run background job workers")
    work_p.add_argument("--once", action="store_true", help="Drain the queue and exit")
    work_p.add_argument("--workers", type=int, help="Override worker_count")

    # status
    status_p = subparsers.add_parser("status", help="Show a job's status")
    status_p.add_argument("job_id", help="Job ID")

    # jobs
    jobs_p = subparsers.add_parser("jobs", help="List a session's jobs")
    jobs_p.add_argument("session", help="Session ID")

    # recommend
    rec_p = subparsers.add_parser("recommend", help="Build recommendations for a session")
    rec_p.add_argument("session", help="Session ID")
    rec_p.add_argument("--income", type=float, help="Annual income for eligibility checks")
    rec_p.add_argument("--credit-score", type=int, help="Credit score for eligibility checks")
    rec_p.add_argument("--json", action="store_true", help="Print the full result as JSON")

    # insights
    insights_p = subparsers.add_parser("insights", help="Categorization insights for a session")
    insights_p.add_argument("session", help="Session ID")

    # config
    config_p = subparsers.add_parser("config", help="Manage runtime settings")
    config_sub = config_p.add_subparsers(dest="config_command")
    get_p = config_sub.add_parser("get", help="Show a resolved setting")
    get_p.add_argument("key", help="Setting key")
    set_p = config_sub.add_parser("set", help="Persist a setting")
    set_p.add_argument("key", help="Setting key")
    set_p.add_argument("value", help="New value")
    set_p.add_argument("--description", help="Optional description")
    config_sub.add_parser("init", help="Write missing defaults to the store")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        sys.exit(1)

    sys.exit(handler(args))


if __name__ == "__main__":
    main()
