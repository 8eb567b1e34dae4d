"""Settlement CLI - admin entry point for the weekly settlement engine.

Usage:
    python main.py init-db
    python main.py import --week 2025-W02 --uber uber.csv --bolt bolt.csv --myprio fuel.csv --viaverde tolls.csv
    python main.py settle --week 2025-W02
    python main.py reprocess --week 2025-W02 --admin-fee-percent 5
    python main.py exempt --driver 12 --weeks 2 --reason "new driver"
    python main.py mark-paid --record 40
    python main.py export --week 2025-W02 --report week_payouts --output payouts.csv
"""
import argparse
import asyncio
import json
import logging
import sys

import config
from admin_commands import AdminCommands
from csv_reports import REPORT_TYPES
from init import init_tables, _engine
from settlement_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


def _week(args: argparse.Namespace) -> str:
    # Without --week the last complete week is settled
    return args.week or timeMachine.previousWeekId


def cmd_init_db(args: argparse.Namespace) -> int:
    init_tables(_engine)
    print("Tables created")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    files = {
        platform: path
        for platform, path in (("uber", args.uber), ("bolt", args.bolt),
                               ("myprio", args.myprio), ("viaverde", args.viaverde))
        if path
    }
    if not files:
        print("Nothing to import: pass at least one platform file", file=sys.stderr)
        return 1
    print(asyncio.run(args.admin.handle_import(args.week, files)))
    return 0


def cmd_settle(args: argparse.Namespace) -> int:
    print(asyncio.run(args.admin.handle_settle(_week(args), args.collect_errors)))
    return 0


def cmd_reprocess(args: argparse.Namespace) -> int:
    print(asyncio.run(args.admin.handle_reprocess(_week(args), args.admin_fee_percent, not args.skip_bonuses)))
    return 0


def cmd_exempt(args: argparse.Namespace) -> int:
    print(asyncio.run(args.admin.handle_exempt(args.driver, args.weeks, args.reason)))
    return 0


def cmd_unexempt(args: argparse.Namespace) -> int:
    print(asyncio.run(args.admin.handle_unexempt(args.driver)))
    return 0


def cmd_mark_paid(args: argparse.Namespace) -> int:
    print(asyncio.run(args.admin.handle_mark_paid(args.record)))
    return 0


def cmd_attach_proof(args: argparse.Namespace) -> int:
    print(asyncio.run(args.admin.handle_attach_proof(args.record, args.url, args.storage_path, args.file_name)))
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    print(asyncio.run(args.admin.handle_export(args.week, args.report, args.output)))
    return 0


def cmd_config_show(args: argparse.Namespace) -> int:
    print(asyncio.run(args.admin.handle_show_config()))
    return 0


def cmd_config_set(args: argparse.Namespace) -> int:
    try:
        document = json.loads(args.document)
    except json.JSONDecodeError as e:
        print(f"Invalid JSON document: {e}", file=sys.stderr)
        return 1
    print(asyncio.run(args.admin.handle_set_config(args.key, document)))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    print(asyncio.run(args.admin.handle_week_status(_week(args))))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Weekly driver settlement engine")
    parser.add_argument("--actor", default=config.DEFAULT_ADMIN_ACTOR, help="Admin performing the action")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create database tables")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("import", help="Import platform exports for a week")
    p.add_argument("--week", required=True)
    p.add_argument("--uber")
    p.add_argument("--bolt")
    p.add_argument("--myprio")
    p.add_argument("--viaverde")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("settle", help="Settle a week from its latest import")
    p.add_argument("--week", help="Defaults to the last complete week")
    p.add_argument("--collect-errors", action="store_true", help="Write the drivers that succeeded")
    p.set_defaults(func=cmd_settle)

    p = sub.add_parser("reprocess", help="Recompute a settled week from stored snapshots")
    p.add_argument("--week", help="Defaults to the last complete week")
    p.add_argument("--admin-fee-percent", default=None)
    p.add_argument("--skip-bonuses", action="store_true")
    p.set_defaults(func=cmd_reprocess)

    p = sub.add_parser("exempt", help="Exempt a driver from the admin fee")
    p.add_argument("--driver", type=int, required=True)
    p.add_argument("--weeks", type=int, required=True)
    p.add_argument("--reason")
    p.set_defaults(func=cmd_exempt)

    p = sub.add_parser("unexempt", help="Clear a driver's exemption")
    p.add_argument("--driver", type=int, required=True)
    p.set_defaults(func=cmd_unexempt)

    p = sub.add_parser("mark-paid", help="Mark a weekly record paid")
    p.add_argument("--record", type=int, required=True)
    p.set_defaults(func=cmd_mark_paid)

    p = sub.add_parser("attach-proof", help="Attach a payment proof to a weekly record")
    p.add_argument("--record", type=int, required=True)
    p.add_argument("--url", required=True)
    p.add_argument("--storage-path")
    p.add_argument("--file-name")
    p.set_defaults(func=cmd_attach_proof)

    p = sub.add_parser("export", help="Export a week report as CSV")
    p.add_argument("--week", required=True)
    p.add_argument("--report", choices=sorted(REPORT_TYPES), default="week_payouts")
    p.add_argument("--output", required=True)
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("config-show", help="Show the configuration a run would use")
    p.set_defaults(func=cmd_config_show)

    p = sub.add_parser("config-set", help="Replace a configuration document")
    p.add_argument("--key", required=True, choices=[config.ADMIN_FEE_CONFIG_KEY, config.COMMISSION_CONFIG_KEY,
                                                    config.FINANCIAL_CONFIG_KEY])
    p.add_argument("--document", required=True, help="JSON document")
    p.set_defaults(func=cmd_config_set)

    p = sub.add_parser("status", help="Show the latest run of a week")
    p.add_argument("--week", help="Defaults to the last complete week")
    p.set_defaults(func=cmd_status)

    return parser


def main(argv=None) -> int:
    logging.basicConfig(level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))
    parser = build_parser()
    args = parser.parse_args(argv)
    args.admin = AdminCommands(actor=args.actor)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
