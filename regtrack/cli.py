"""
regtrack.cli
============

Command-line entry point.

Examples
--------
$ python -m regtrack.cli init-db            # first-time table creation
$ python -m regtrack.cli tasks 1 --role CA  # grouped checklist of startup 1
$ python -m regtrack.cli stats 1
$ python -m regtrack.cli sync 1
$ python -m regtrack.cli regenerate 1
$ python -m regtrack.cli plot 1 --out images/startup1.png
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from typing import List, Optional

from regtrack.db import create_all
from regtrack.models import Party, ViewerRole
from regtrack.settings import configure_logging

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m regtrack.cli",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description=textwrap.dedent(
            """\
            regtrack utilities
            ------------------
            init-db       Create all SQLModel tables (safe if they already exist)
            tasks ID      Print the grouped checklist of a startup
            stats ID      Print task counts of a startup as JSON
            sync ID       Create missing status rows and recompute the aggregate
            regenerate ID Drop and recreate every status row of a startup
            plot ID       Save a bar chart of the task counts
            """
        ),
    )
    parser.add_argument("--log-level", default=None, help="override REGTRACK_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="create tables")
    for name in ("tasks", "stats", "sync", "regenerate", "plot"):
        cmd = sub.add_parser(name)
        cmd.add_argument("startup_id", type=int)
        cmd.add_argument("--role", default=ViewerRole.ADMIN.value, help="viewer role (CA, CS, Startup, Admin…)")
        if name == "plot":
            cmd.add_argument("--out", default="images/compliance_summary.png")
    return parser


def _print_tasks(svc, startup_id: int, role: ViewerRole) -> None:
    session = svc.sessions.get(startup_id)
    session.load(role)
    for entity, tasks in session.grouped(svc.startups.profile(startup_id)).items():
        print(f"\n{entity}")
        print("-" * len(entity))
        for t in tasks:
            flag = "" if t.is_applicable else "  [n/a]"
            print(f"  {t.year}  {t.task:<45} CA: {t.display_status(Party.CA).value:<12} "
                  f"CS: {t.display_status(Party.CS).value}{flag}")
    print(f"\nAggregate ({role.value}): {session.aggregate_status}")


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "init-db":
        create_all()
        print("✅  Tables created (or already existed).")
        return 0

    from regtrack.service import build_service

    svc = build_service()
    role = ViewerRole.parse(args.role)

    if svc.startups.profile(args.startup_id) is None:
        print(f"⛔  Startup {args.startup_id} not found", file=sys.stderr)
        return 1

    if args.command == "tasks":
        _print_tasks(svc, args.startup_id, role)
    elif args.command == "stats":
        print(json.dumps(svc.stats(args.startup_id).to_dict(), indent=2))
    elif args.command in ("sync", "regenerate"):
        session = svc.sessions.get(args.startup_id)
        created = session.sync(role, regenerate=args.command == "regenerate")
        print(f"Created {created} status rows; aggregate is {session.aggregate_status}")
    elif args.command == "plot":
        from regtrack.viz import status_summary

        out = status_summary(svc.stats(args.startup_id), out_path=args.out,
                             title=f"Startup {args.startup_id} compliance")
        print(f"compliance summary saved to {out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
