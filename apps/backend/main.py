"""
Command line entry point for the scraping pipeline.

Examples:
  python main.py extract https://boards.greenhouse.io/acme/jobs/55
  python main.py extract https://jobs.lever.co/acme/abc123 --listing-id 42 --force
  python main.py classify 17
  python main.py action send_to_dlq 17
  python main.py cleanup
  python main.py init-db
"""
import os
import sys
import json
import asyncio
import logging
import argparse

from dotenv import load_dotenv

from core.config import Capabilities, Settings
from orchestrator import get_orchestrator
from pipeline.attempts import InvalidTransitionError
from pipeline.failure_classifier import FailureClassifier
from pipeline.models import Target
from pipeline.retry import ATTEMPT_ACTIONS, UnknownActionError, cleanup_stuck_attempts, run_action

load_dotenv()

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)


def cmd_extract(args, settings: Settings) -> int:
    orchestrator = get_orchestrator(settings)
    target = Target(url=args.url, listing_id=args.listing_id)
    success, attempt = asyncio.run(orchestrator.execute(target, force=args.force))

    if attempt is None:
        print(f"Skipped {args.url}: completed recently")
        return 0
    print(json.dumps(attempt.to_dict(), indent=2, default=str))
    return 0 if success else 1


def cmd_classify(args, settings: Settings) -> int:
    orchestrator = get_orchestrator(settings)
    attempt = orchestrator.store.get_attempt(args.attempt_id)
    if attempt is None:
        print(f"Error: attempt {args.attempt_id} not found")
        return 1
    retryable = FailureClassifier(orchestrator.store).retryable(attempt)
    print(json.dumps({
        'attempt_id': attempt.id,
        'status': attempt.status.value,
        'failed_step': attempt.failed_step,
        'error_message': attempt.error_message,
        'retryable': retryable,
    }, indent=2))
    return 0


def cmd_action(args, settings: Settings) -> int:
    orchestrator = get_orchestrator(settings)
    attempt = orchestrator.store.get_attempt(args.attempt_id)
    if attempt is None:
        print(f"Error: attempt {args.attempt_id} not found")
        return 1
    try:
        run_action(args.name, attempt, orchestrator.lifecycle)
    except (UnknownActionError, InvalidTransitionError) as e:
        print(f"Error: {e}")
        return 1
    print(f"Attempt {attempt.id} is now {attempt.status.value}")
    return 0


def cmd_cleanup(args, settings: Settings) -> int:
    orchestrator = get_orchestrator(settings)
    cleaned = cleanup_stuck_attempts(orchestrator.store, settings)
    print(f"Cleaned up {cleaned} stuck attempt(s)")
    return 0


def cmd_init_db(args, settings: Settings) -> int:
    if not Capabilities.is_db_enabled(settings):
        print("Error: DATABASE_URL environment variable is not set")
        return 1
    get_orchestrator(settings).store.create_schema()
    print("Schema ensured")
    return 0


def cmd_status(args, settings: Settings) -> int:
    print(json.dumps(Capabilities.get_status(settings), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Scrape job postings through the extraction pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    extract = sub.add_parser("extract", help="Scrape one job posting URL")
    extract.add_argument("url")
    extract.add_argument("--listing-id", type=int, default=None, help="Job listing to update")
    extract.add_argument("--force", action="store_true", help="Ignore attempt reuse and recent completions")
    extract.set_defaults(func=cmd_extract)

    classify = sub.add_parser("classify", help="Report whether a failed attempt is retryable")
    classify.add_argument("attempt_id", type=int)
    classify.set_defaults(func=cmd_classify)

    action = sub.add_parser("action", help="Apply an operator action to an attempt")
    action.add_argument("name", choices=sorted(ATTEMPT_ACTIONS))
    action.add_argument("attempt_id", type=int)
    action.set_defaults(func=cmd_action)

    cleanup = sub.add_parser("cleanup", help="Fail attempts stuck in progress")
    cleanup.set_defaults(func=cmd_cleanup)

    init_db = sub.add_parser("init-db", help="Create the Postgres schema")
    init_db.set_defaults(func=cmd_init_db)

    status = sub.add_parser("status", help="Show configured providers and features")
    status.set_defaults(func=cmd_status)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args, Settings.from_env())


if __name__ == "__main__":
    sys.exit(main())
