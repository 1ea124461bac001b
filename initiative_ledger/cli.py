"""
Initiative Ledger CLI

Usage:
    python -m initiative_ledger init                      # Provision the schema
    python -m initiative_ledger initiatives [--scope all] # List initiatives
    python -m initiative_ledger dashboard <id>            # One initiative in full
    python -m initiative_ledger attestations [--initiative ID] [--limit N]

Output is JSON on stdout. Errors are printed as an error envelope on stderr.
"""

import argparse
import json
import sys

from initiative_ledger import config
from initiative_ledger.errors import LedgerError
from initiative_ledger.observability import RequestContext, configure_logging
from initiative_ledger.service import LedgerService


def _emit(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_init(service, args):
    """Provision the schema and report what changed."""
    _emit(service.ensure_schema())
    return 0


def cmd_initiatives(service, args):
    rows = service.initiatives.list(
        individual_id=args.individual,
        scope=args.scope,
        address=args.address,
        state=args.state,
        coalition_org_id=args.coalition,
    )
    _emit(rows)
    return 0


def cmd_dashboard(service, args):
    _emit(service.initiatives.dashboard(args.id))
    return 0


def cmd_attestations(service, args):
    page = service.attestations.page(args.initiative, args.limit, args.before)
    _emit(page.model_dump())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="initiative_ledger", description="Initiative Ledger CLI")
    parser.add_argument("--db", help="Database path (overrides INITIATIVE_LEDGER_DB)")
    parser.add_argument("--config", help="Path to ledger.yaml")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # init
    subparsers.add_parser("init", help="Provision the schema")

    # initiatives
    p = subparsers.add_parser("initiatives", help="List initiatives")
    p.add_argument("--scope", default="active", help="active, mine or all")
    p.add_argument("--individual", type=int, help="Individual id for --scope mine")
    p.add_argument("--address", help="Wallet address for --scope mine")
    p.add_argument("--state", help="Only initiatives in this state")
    p.add_argument("--coalition", type=int, help="Only initiatives tagged with this organization")

    # dashboard
    p = subparsers.add_parser("dashboard", help="Initiative dashboard")
    p.add_argument("id", type=int, help="Initiative ID")

    # attestations
    p = subparsers.add_parser("attestations", help="Attestation feed, newest first")
    p.add_argument("--initiative", type=int, help="Initiative ID")
    p.add_argument("--limit", type=int, help="Max rows (1-200)")
    p.add_argument("--before", help="Cursor from a previous page")

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    configure_logging(config.LOG_LEVEL, config.LOG_JSON)

    commands = {
        "init": cmd_init,
        "initiatives": cmd_initiatives,
        "dashboard": cmd_dashboard,
        "attestations": cmd_attestations,
    }

    with RequestContext(operation=args.command):
        try:
            service = LedgerService.from_env(db_path=args.db, config_file=args.config)
            return commands[args.command](service, args)
        except LedgerError as e:
            print(json.dumps(e.to_dict()), file=sys.stderr)
            return 2 if e.status_code < 500 else 1


if __name__ == "__main__":
    sys.exit(main())
