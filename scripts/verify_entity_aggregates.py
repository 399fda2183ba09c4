#!/usr/bin/env python
"""Recompute every entity aggregate from its reports and report (or repair) drift."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, List

from scamreg.services.aggregator import EntityAggregator
from scamreg.services.unit_of_work import UnitOfWork
from scamreg.settings import get_settings
from scamreg.store.sql import build_engine, init_db, session_factory


def _configure_logging() -> None:
    level = getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Return CLI arguments controlling the audit.

    Args:
        argv: Optional list of CLI arguments. When ``None``, defaults to ``sys.argv``.
    """

    parser = argparse.ArgumentParser(
        description="Compare entity report counts, losses, risk scores and statuses against their reports",
    )
    parser.add_argument("--database-url", help="SQLAlchemy URL overriding the configured database", default=None)
    parser.add_argument(
        "--repair",
        action="store_true",
        help="Rewrite drifted aggregates (and recreate missing entities) instead of only reporting them",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print expected and actual values for every drifted entity",
    )
    return parser.parse_args(argv)


def run_audit(args: argparse.Namespace) -> List[Dict[str, Any]]:
    """Execute the audit and return the drift entries."""

    resolved_settings = get_settings()
    engine = build_engine(url=args.database_url, settings=resolved_settings)
    init_db(engine)
    uow = UnitOfWork(session_factory(settings=resolved_settings, engine=engine))
    aggregator = EntityAggregator(settings=resolved_settings)
    try:
        if args.repair:
            with uow.begin() as context:
                return aggregator.audit(context.session, repair=True)
        with uow.read() as session:
            return aggregator.audit(session, repair=False)
    finally:
        engine.dispose()


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Returns:
        Zero when no drift was found (or it was repaired), one otherwise.
    """

    args = parse_args(argv)
    _configure_logging()
    drift = run_audit(args)

    if args.verbose:
        for entry in drift:
            print(json.dumps(entry, default=str, sort_keys=True))

    if drift and not args.repair:
        print(f"❌ {len(drift)} entity aggregates drifted from their reports:")
        for entry in drift:
            print(f"  - identifier={entry['identifier']} entity_id={entry['entity_id']}")
        return 1

    unrepaired = [entry for entry in drift if not entry.get("repaired")]
    if unrepaired:
        print(f"❌ {len(unrepaired)} of {len(drift)} entity aggregates could not be repaired:")
        for entry in unrepaired:
            print(f"  - identifier={entry['identifier']} entity_id={entry['entity_id']}")
        return 1

    if drift:
        print(f"✅ repaired {len(drift)} entity aggregates")
    else:
        print("✅ all entity aggregates match their reports")
    return 0


if __name__ == "__main__":
    sys.exit(main())
