"""Command-line interface for Retention Rules.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import structlog
from pydantic import TypeAdapter

from retention_rules import __version__
from retention_rules.classify import ClassificationEngine
from retention_rules.config import get_settings
from retention_rules.db import build_engine, ensure_schema
from retention_rules.exceptions import RetentionRulesError
from retention_rules.models import Action, Dimension, Operation, PendingMessage, RuleLevel
from retention_rules.repository import (
    audit_repository,
    criteria_repository,
    message_repository,
    user_repository,
)
from retention_rules.rules import RuleMutationEngine

logger = structlog.get_logger()


def _stderr_logger(*_args) -> structlog.PrintLogger:
    # stdout carries command output.
    return structlog.PrintLogger(sys.stderr)


def _add_owner(p: argparse.ArgumentParser) -> None:
    p.add_argument("--owner", required=True, help="Owning user's email address")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="retention-rules", description="Email retention rule store")
    parser.add_argument(
        "--db",
        default=None,
        help="SQLAlchemy database URL (default: settings database_url)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the rule store schema")

    modify_parser = subparsers.add_parser("modify", help="Add, remove, update, clear or query a rule")
    modify_parser.add_argument("operation", choices=[o.value for o in Operation], type=str.upper)
    modify_parser.add_argument("dimension", choices=[d.value for d in Dimension], type=str.lower)
    _add_owner(modify_parser)
    modify_parser.add_argument("--key", default=None, help="Domain, subdomain, address or pattern")
    modify_parser.add_argument("--action", default=None, choices=[a.value for a in Action])
    modify_parser.add_argument("--parent-domain", default=None)
    modify_parser.add_argument("--parent-subdomain", default=None)
    modify_parser.add_argument("--old-action", default=None, choices=[a.value for a in Action])

    add_parser = subparsers.add_parser("add", help="Quick-add a rule from a message's fields")
    _add_owner(add_parser)
    add_parser.add_argument("--from", dest="from_email", required=True, help="Sender address")
    add_parser.add_argument("--to", dest="to_email", default=None, help="Recipient address")
    add_parser.add_argument("--subject", default=None)
    add_parser.add_argument("--action", required=True, choices=[a.value for a in Action])
    add_parser.add_argument("--level", required=True, choices=[lv.value for lv in RuleLevel])
    add_parser.add_argument("--pattern", default=None, help="Subject pattern instead of a default action")

    show_parser = subparsers.add_parser("show", help="Print an owner's rules as JSON")
    _add_owner(show_parser)

    stats_parser = subparsers.add_parser("stats", help="Show rule counts for an owner")
    _add_owner(stats_parser)

    search_parser = subparsers.add_parser("search", help="Find domain and email keys containing a string")
    _add_owner(search_parser)
    search_parser.add_argument("query", help="Case-insensitive substring of the key")

    audit_parser = subparsers.add_parser("audit", help="Show an owner's most recent audit entries")
    _add_owner(audit_parser)
    audit_parser.add_argument("--limit", type=int, default=20)

    ingest_parser = subparsers.add_parser("ingest", help="Load pending messages from a JSON file")
    ingest_parser.add_argument("path", type=Path, help="JSON array of pending messages")

    evaluate_parser = subparsers.add_parser("evaluate", help="Classify pending messages")
    target = evaluate_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--owner", default=None, help="Evaluate one owner's messages")
    target.add_argument("--all", action="store_true", help="Evaluate every owner's messages")

    summary_parser = subparsers.add_parser("summary", help="Pending messages by resolved action")
    _add_owner(summary_parser)

    due_parser = subparsers.add_parser("due", help="List messages due for deletion")
    _add_owner(due_parser)
    due_parser.add_argument(
        "--action",
        default=None,
        choices=[Action.DELETE.value, Action.DELETE_1D.value, Action.DELETE_10D.value],
    )
    due_parser.add_argument(
        "--min-age-days",
        type=int,
        default=None,
        help="Override the per-action age threshold",
    )

    migrate_parser = subparsers.add_parser(
        "migrate-owner",
        help="Reassign placeholder-owned rules and messages to a real user",
    )
    migrate_parser.add_argument("--to", dest="to_owner", required=True)
    migrate_parser.add_argument(
        "--from",
        dest="from_owner",
        default=None,
        help="Placeholder owner (default: settings default_owner)",
    )

    reset_parser = subparsers.add_parser("reset-test-user", help="Delete all rules of the test user")
    reset_parser.add_argument(
        "--owner",
        default=None,
        help="Owner to reset (default: settings test_user)",
    )

    return parser


def _cmd_modify(engine, args: argparse.Namespace) -> int:
    result = RuleMutationEngine(engine).modify(
        args.operation,
        args.dimension,
        args.owner,
        key_value=args.key,
        action=args.action,
        parent_domain=args.parent_domain,
        parent_subdomain=args.parent_subdomain,
        old_action=args.old_action,
    )
    if args.operation == Operation.GET.value:
        print(result.model_dump_json(indent=2, exclude_none=True))
    else:
        print(result.message)
    return 0 if result.success else 1


def _cmd_add(engine, args: argparse.Namespace) -> int:
    result = RuleMutationEngine(engine).add_rule(
        args.owner,
        args.from_email,
        args.action,
        args.level,
        to_address=args.to_email,
        subject=args.subject,
        subject_pattern=args.pattern,
    )
    print(result.message)
    return 0 if result.success else 1


def _cmd_ingest(engine, args: argparse.Namespace) -> int:
    adapter = TypeAdapter(list[PendingMessage])
    messages = adapter.validate_json(args.path.read_text(encoding="utf-8"))
    n = message_repository.upsert_pending_messages(engine=engine, messages=messages)
    print(f"Stored {n} pending messages from {args.path}")
    return 0


def _cmd_evaluate(engine, args: argparse.Namespace) -> int:
    classifier = ClassificationEngine(engine)
    summary = classifier.evaluate_all_pending() if args.all else classifier.evaluate_pending(args.owner)
    print(f"Evaluated {summary.total} messages")
    for label in ("keep", "delete", "delete_1d", "delete_10d", "undecided"):
        print(f"- {label}: {getattr(summary, label)}")
    return 0


def _cmd_summary(engine, args: argparse.Namespace) -> int:
    summary = message_repository.summarize_actions(engine=engine, owner_user_id=args.owner)
    print(f"Total pending: {summary.total}")
    for s in summary.by_action:
        span = ""
        if s.oldest_date and s.newest_date:
            span = f" ({s.oldest_date.date().isoformat()} -> {s.newest_date.date().isoformat()})"
        print(f"- {s.action}: {s.count}{span}")
    return 0


def _cmd_audit(engine, args: argparse.Namespace) -> int:
    entries = audit_repository.recent_audit(engine=engine, owner_user_id=args.owner, limit=args.limit)
    for e in entries:
        print(
            f"{e.created_at.isoformat(sep=' ', timespec='seconds')}\t{e.action_type.value}\t"
            f"{e.table_name}\t{e.domain or '-'}\t{json.dumps(e.details, sort_keys=True)}"
        )
    print(f"{len(entries)} entries")
    return 0


def _cmd_due(engine, args: argparse.Namespace) -> int:
    preview = message_repository.list_due_for_deletion(
        engine=engine,
        owner_user_id=args.owner,
        action=Action(args.action) if args.action else None,
        min_age_days=args.min_age_days,
    )
    for m in preview.due:
        date_part = m.email_date.date().isoformat() if m.email_date else "-"
        print(f"{m.action}\t{date_part}\t{m.from_email}\t{m.subject}")
    print(f"{len(preview.due)} due, {preview.skipped} too recent")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Retention Rules CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()

    # Configure logging
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level.upper())
        ),
        logger_factory=_stderr_logger,
    )

    logger.info("retention_rules_started", version=__version__, debug=settings.debug)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    engine = build_engine(parsed.db, settings=settings)
    ensure_schema(engine)

    try:
        if parsed.command == "init-db":
            print(f"Schema ready at {engine.url.render_as_string(hide_password=True)}")
            return 0
        if parsed.command == "modify":
            return _cmd_modify(engine, parsed)
        if parsed.command == "add":
            return _cmd_add(engine, parsed)
        if parsed.command == "show":
            rule_set = ClassificationEngine(engine).rule_set(parsed.owner)
            print(json.dumps(rule_set.as_nested_dict(), indent=2))
            return 0
        if parsed.command == "stats":
            stats = criteria_repository.get_rule_stats(engine=engine, owner_user_id=parsed.owner)
            print(stats.model_dump_json(indent=2))
            return 0
        if parsed.command == "search":
            matches = ClassificationEngine(engine).rule_set(parsed.owner).search(parsed.query)
            print(json.dumps(matches, indent=2))
            return 0
        if parsed.command == "audit":
            return _cmd_audit(engine, parsed)
        if parsed.command == "ingest":
            return _cmd_ingest(engine, parsed)
        if parsed.command == "evaluate":
            return _cmd_evaluate(engine, parsed)
        if parsed.command == "summary":
            return _cmd_summary(engine, parsed)
        if parsed.command == "due":
            return _cmd_due(engine, parsed)
        if parsed.command == "migrate-owner":
            result = user_repository.migrate_owner(
                engine=engine, to_owner=parsed.to_owner, from_owner=parsed.from_owner
            )
            print(
                f"Migrated {result.criteria_migrated} criteria and {result.messages_migrated} "
                f"messages from {result.from_owner} to {result.to_owner}"
            )
            return 0
        if parsed.command == "reset-test-user":
            counts = user_repository.clear_user_rules(
                engine=engine, owner_user_id=parsed.owner or settings.test_user
            )
            print(counts.model_dump_json(indent=2))
            return 0
    except RetentionRulesError as exc:
        logger.error("command_failed", command=parsed.command, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        engine.dispose()

    logger.error("unknown_command", command=parsed.command)
    return 2


if __name__ == "__main__":
    sys.exit(main())
