"""Command line interface.

Usage:
    postpartum-triage evaluate --input answers.json            # Print the decision
    postpartum-triage evaluate --input answers.json --record   # Also record a case
    postpartum-triage init-db                                  # Create tables, import logs
    postpartum-triage recent --limit 10 [--changes]            # Recent cases or changes
    postpartum-triage issue-token --actor alice                # Staff bearer token
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from postpartum_triage.core.config import settings
from postpartum_triage.core.logging import setup_logging
from postpartum_triage.core.security import create_access_token
from postpartum_triage.db.init_db import create_tables, init_db
from postpartum_triage.db.session import AsyncSessionLocal, engine
from postpartum_triage.rules.engine import evaluate
from postpartum_triage.rules.loader import ConfigError, load_ruleset
from postpartum_triage.rules.models import RuleSet
from postpartum_triage.schemas.triage import AuditOptions, TriageInput
from postpartum_triage.services.case_store import CaseStore
from postpartum_triage.services.change_ledger import ChangeLedger
from postpartum_triage.services.patches import validation_errors
from postpartum_triage.services.triage import TriageService, split_request

logger = logging.getLogger(__name__)


def resolve_ruleset(rules: str | None) -> RuleSet:
    """Load a ruleset from a file path or a packaged ruleset name."""
    if rules is None:
        return load_ruleset(settings.ruleset_filename)

    path = Path(rules)
    if path.is_file():
        return load_ruleset(path.name, path.parent)
    return load_ruleset(rules)


def read_request(source: str) -> Any:
    """Read a JSON request body from a file, or stdin for ``-``."""
    if source == "-":
        return json.load(sys.stdin)
    with open(source, encoding="utf-8") as f:
        return json.load(f)


def dump(data: Any, compact: bool = False) -> None:
    """Print JSON to stdout."""
    if compact:
        print(json.dumps(data, separators=(",", ":"), ensure_ascii=False))
    else:
        print(json.dumps(data, indent=2, ensure_ascii=False))


async def record_evaluation(
    rules: RuleSet,
    triage_input: TriageInput,
    options: AuditOptions,
) -> dict[str, Any]:
    """Evaluate and record a case in the configured database."""
    try:
        await create_tables()
        service = TriageService(CaseStore(AsyncSessionLocal), rules)
        record, decision = await service.evaluate_and_record(triage_input, options)
    finally:
        await engine.dispose()

    return {"case_id": record.case_id, "result": decision.model_dump(mode="json")}


def cmd_evaluate(args: argparse.Namespace) -> int:
    """Evaluate a questionnaire file."""
    rules = resolve_ruleset(args.rules)

    try:
        raw_input, raw_audit = split_request(read_request(args.input))
    except (OSError, json.JSONDecodeError) as e:
        print(f"Cannot read input: {e}", file=sys.stderr)
        return 1

    try:
        triage_input = TriageInput.model_validate(raw_input)
        options = AuditOptions.model_validate(raw_audit)
    except ValidationError as e:
        for err in validation_errors(e):
            print(f"Invalid input: {err['field']}: {err['message']}", file=sys.stderr)
        return 1

    if args.source is not None:
        options.source = args.source
    if args.run_id is not None:
        options.run_id = args.run_id
    if args.include_input:
        options.include_input = True

    if args.record:
        output = asyncio.run(record_evaluation(rules, triage_input, options))
    else:
        output = evaluate(triage_input, rules).model_dump(mode="json")

    dump(output, compact=args.compact)
    return 0


async def run_init_db(rules: RuleSet) -> dict[str, int]:
    """Create tables and import the legacy logs."""
    try:
        summary = await init_db(rules)
    finally:
        await engine.dispose()
    return summary.model_dump()


def cmd_init_db(args: argparse.Namespace) -> int:
    """Initialize the database."""
    rules = resolve_ruleset(args.rules)
    dump(asyncio.run(run_init_db(rules)))
    return 0


async def fetch_recent(limit: int | None, changes: bool) -> list[dict[str, Any]]:
    """Recent cases, or recent ledger entries."""
    try:
        if changes:
            items = await ChangeLedger(AsyncSessionLocal).get_recent(limit)
        else:
            items = await CaseStore(AsyncSessionLocal).get_recent(limit)
    finally:
        await engine.dispose()
    return [item.model_dump(mode="json") for item in items]


def cmd_recent(args: argparse.Namespace) -> int:
    """Print recent cases or changes."""
    dump(asyncio.run(fetch_recent(args.limit, args.changes)), compact=args.compact)
    return 0


def cmd_issue_token(args: argparse.Namespace) -> int:
    """Mint a staff bearer token for local use."""
    actor = args.actor.strip()
    if not actor:
        print("Actor must not be blank", file=sys.stderr)
        return 1
    print(create_access_token(actor, additional_claims={"actor_type": "staff"}))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for all subcommands."""
    parser = argparse.ArgumentParser(
        prog="postpartum-triage",
        description="Postpartum safety triage and case tracking",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_eval = subparsers.add_parser("evaluate", help="Evaluate questionnaire answers")
    p_eval.add_argument("--input", required=True, help="JSON file with answers ('-' for stdin)")
    p_eval.add_argument("--rules", default=None, help="Ruleset file or packaged ruleset name")
    p_eval.add_argument("--compact", action="store_true", help="Single-line JSON output")
    p_eval.add_argument("--record", action="store_true", help="Record the decision as a case")
    p_eval.add_argument("--source", default=None, help="Provenance source for recorded cases")
    p_eval.add_argument("--run-id", default=None, help="Run id for recorded cases")
    p_eval.add_argument(
        "--include-input",
        action="store_true",
        help="Store the answers with the recorded case",
    )
    p_eval.set_defaults(func=cmd_evaluate)

    p_init = subparsers.add_parser("init-db", help="Create tables and import legacy logs")
    p_init.add_argument("--rules", default=None, help="Ruleset file or packaged ruleset name")
    p_init.set_defaults(func=cmd_init_db)

    p_recent = subparsers.add_parser("recent", help="Show recent cases")
    p_recent.add_argument("--limit", type=int, default=None, help="Maximum rows")
    p_recent.add_argument("--changes", action="store_true", help="Show ledger entries instead")
    p_recent.add_argument("--compact", action="store_true", help="Single-line JSON output")
    p_recent.set_defaults(func=cmd_recent)

    p_token = subparsers.add_parser("issue-token", help="Mint a staff bearer token")
    p_token.add_argument("--actor", required=True, help="Staff identity (token subject)")
    p_token.set_defaults(func=cmd_issue_token)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(sys.stderr)
    try:
        return args.func(args)
    except ConfigError as e:
        print(f"Ruleset error: {e}", file=sys.stderr)
        return 2
    except Exception as e:
        logger.exception(f"Command failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
