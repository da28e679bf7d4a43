"""
Command line entry point for the scheduled fee jobs.

Meant to be run from cron (daily) or by hand:

    koabiga fee-rules:activate-scheduled --dry-run
    koabiga --date 2026-11-01 fee-rules:apply-active
    koabiga fee-applications:mark-overdue
"""
import argparse
import logging
import sys
from datetime import date
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from koabiga.core.clock import Clock, FixedClock, system_clock
from koabiga.core.config import settings
from koabiga.core.exceptions import FeeEngineError
from koabiga.services import fee_scheduling

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_ERROR = 2


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="koabiga",
        description="Koabiga fee rule jobs",
    )
    parser.add_argument(
        "--date",
        type=_parse_date,
        default=None,
        help="Run as if today were this date (YYYY-MM-DD)",
    )
    sub = parser.add_subparsers(dest="command", help="Available commands")

    p_act = sub.add_parser(
        "fee-rules:activate-scheduled",
        help="Activate scheduled fee rules whose effective date has been reached",
    )
    p_act.add_argument(
        "--dry-run",
        action="store_true",
        help="Show which fee rules would be activated without changing anything",
    )

    sub.add_parser("fee-rules:apply-active", help="Apply all active fee rules to their eligible members")
    sub.add_parser("fee-applications:mark-overdue", help="Mark pending fee applications past due as overdue")
    return parser


def _print_candidates(candidates) -> None:
    print(f"  {'ID':<36s} {'Name':<30s} {'Type':<12s} {'Effective Date':<14s} {'Status':<10s}")
    print(f"  {'-' * 36} {'-' * 30} {'-' * 12} {'-' * 14} {'-' * 10}")
    for c in candidates:
        print(
            f"  {c.id:<36s} {c.name[:30]:<30s} {c.type:<12s} "
            f"{c.effective_date.isoformat():<14s} {c.status:<10s}"
        )


def _activate_scheduled(db: Session, clock: Clock, dry_run: bool) -> int:
    print("Checking for scheduled fee rules to activate...")
    report = fee_scheduling.activate_scheduled_rules(
        db, dry_run=dry_run, actor=settings.FEE_SYSTEM_ACTOR, clock=clock
    )
    if not report.candidates:
        print("No scheduled fee rules need to be activated.")
        return EXIT_OK

    print(f"\nFound {len(report.candidates)} fee rule(s) to activate:\n")
    _print_candidates(report.candidates)
    print()
    if dry_run:
        print("Dry run: no changes were made.")
        return EXIT_OK

    print(f"Successfully activated {report.activated_count} fee rule(s).")
    for failure in report.failures:
        print(f"  Failed: {failure['rule_name']} ({failure['rule_id']}): {failure['error']}", file=sys.stderr)
    return EXIT_FAILURES if report.failures else EXIT_OK


def _apply_active(db: Session, clock: Clock) -> int:
    outcome = fee_scheduling.apply_active_fee_rules(db, actor=settings.FEE_SYSTEM_ACTOR, clock=clock)
    if not outcome["results"] and not outcome["errors"]:
        print("No active fee rules to apply.")
        return EXIT_OK

    print(f"  {'Rule':<30s} {'Eligible':>8s} {'Created':>8s} {'Skipped':>8s}")
    print(f"  {'-' * 30} {'-' * 8} {'-' * 8} {'-' * 8}")
    for r in outcome["results"]:
        print(f"  {r.rule_name[:30]:<30s} {r.eligible_count:>8d} {r.created_count:>8d} {r.skipped_count:>8d}")
    print(f"\nCreated {outcome['applied_count']} fee application(s).")
    for error in outcome["errors"]:
        print(f"  Failed: {error['rule_id']}: {error['error']}", file=sys.stderr)
    return EXIT_FAILURES if outcome["errors"] else EXIT_OK


def _mark_overdue(db: Session, clock: Clock) -> int:
    marked = fee_scheduling.mark_overdue_applications(db, actor=settings.FEE_SYSTEM_ACTOR, clock=clock)
    print(f"Marked {marked} fee application(s) as overdue.")
    return EXIT_OK


def main(
    argv: Optional[List[str]] = None,
    session_factory: Optional[Callable[[], Session]] = None,
    clock: Optional[Clock] = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return EXIT_FAILURES

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.date is not None:
        clock = FixedClock(args.date)
    clock = clock or system_clock
    if session_factory is None:
        from koabiga.core.database import SessionLocal
        session_factory = SessionLocal

    db = session_factory()
    try:
        if args.command == "fee-rules:activate-scheduled":
            return _activate_scheduled(db, clock, args.dry_run)
        if args.command == "fee-rules:apply-active":
            return _apply_active(db, clock)
        return _mark_overdue(db, clock)
    except FeeEngineError as exc:
        print(f"\nError: {exc.detail}", file=sys.stderr)
        return EXIT_ERROR
    except Exception as exc:
        logger.exception("Unexpected error running %s", args.command)
        print(f"\nFatal: {exc}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        db.close()


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
