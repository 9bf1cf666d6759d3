# ruff: noqa: T201

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from contextgraph.app import (
    build_importers,
    confirm_field,
    hydrate_entities,
    list_pending,
    reject_field,
    set_field,
)
from contextgraph.config import configure_logging
from contextgraph.domain.model import FieldKey, HumanKind
from contextgraph.guardrails import find_unguarded_writes

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

log = logging.getLogger(__name__)

_CANCEL = threading.Event()


def _add_entity(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--entity-id", required=True, help="Entity whose fields to act on")


def _add_reviewer(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--by",
        choices=[kind.value for kind in HumanKind],
        default=HumanKind.USER.value,
        help="Human source recorded on the write (default: %(default)s)",
    )
    parser.add_argument("--note", type=str, help="Free-text note stored on the provenance tag")


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Context graph hydration and review")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    hydrate = subparsers.add_parser("hydrate", help="Run importers against entities")
    hydrate.add_argument(
        "--entity-id",
        dest="entity_ids",
        action="append",
        required=True,
        help="Entity to hydrate (repeat for several)",
    )
    hydrate.add_argument("--payload-dir", type=str, help="Directory of <importer-id>.json files")
    hydrate.add_argument("--producer-url", type=str, help="Base URL of a producer service")
    hydrate.add_argument(
        "--max-workers",
        type=int,
        help="Entities hydrated in parallel (defaults to config)",
    )

    pending = subparsers.add_parser("pending", help="List proposals awaiting review")
    _add_entity(pending)
    pending.add_argument("--domain", type=str, help="Only list proposals in this domain")

    confirm = subparsers.add_parser("confirm", help="Confirm a staged proposal")
    _add_entity(confirm)
    confirm.add_argument("key", help="Field key, e.g. brand.positioning")
    confirm.add_argument(
        "--alternative",
        type=int,
        help="Confirm the alternative with this index instead of the staged value",
    )
    _add_reviewer(confirm)

    reject = subparsers.add_parser("reject", help="Reject a staged proposal")
    _add_entity(reject)
    reject.add_argument("key", help="Field key, e.g. brand.positioning")
    _add_reviewer(reject)

    set_cmd = subparsers.add_parser("set", help="Write a canonical value directly")
    _add_entity(set_cmd)
    set_cmd.add_argument("key", help="Field key, e.g. brand.positioning")
    set_cmd.add_argument("value", help="Value; parsed as JSON when possible")
    _add_reviewer(set_cmd)

    subparsers.add_parser("guardrails", help="Report field writes that bypass the workflow")

    return parser.parse_args(list(argv))


def _parse_value(raw: str) -> object:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _validate(args: argparse.Namespace) -> None:
    if args.command in {"confirm", "reject", "set"}:
        FieldKey.parse(args.key)
    if args.command == "hydrate":
        if args.payload_dir is None and args.producer_url is None:
            raise ValueError("hydrate needs --payload-dir or --producer-url")
        if args.max_workers is not None and args.max_workers < 1:
            raise ValueError("--max-workers must be >= 1")
    if args.command == "confirm" and args.alternative is not None and args.alternative < 0:
        raise ValueError("--alternative must be >= 0")


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _run_command(args: argparse.Namespace) -> int:
    if args.command == "hydrate":
        importers = build_importers(payload_dir=args.payload_dir, producer_url=args.producer_url)
        results = hydrate_entities(
            args.entity_ids,
            importers=importers,
            max_workers=args.max_workers,
            cancel=_CANCEL,
        )
        _print_json({entity_id: telemetry.as_dict() for entity_id, telemetry in results.items()})
        return 0
    if args.command == "pending":
        for item in list_pending(args.entity_id, domain=args.domain):
            _print_json(
                {
                    "key": str(item.key),
                    "value": item.value,
                    "source": item.tag.source.name,
                    "confidence": item.tag.confidence,
                    "written_at": item.tag.written_at.isoformat(),
                    "alternatives": [
                        {"value": alt.value, "source": alt.tag.source.name}
                        for alt in item.alternatives
                    ],
                    "explanation": item.explanation,
                }
            )
        return 0
    if args.command == "confirm":
        confirmed = confirm_field(
            args.entity_id,
            args.key,
            alternative=args.alternative,
            by=HumanKind(args.by),
            note=args.note,
        )
        _print_json({"key": str(confirmed.key), "value": confirmed.value})
        return 0
    if args.command == "reject":
        cleared = reject_field(args.entity_id, args.key, by=HumanKind(args.by), note=args.note)
        _print_json({"key": str(cleared.key), "status": cleared.status.value})
        return 0
    if args.command == "set":
        written = set_field(
            args.entity_id,
            args.key,
            _parse_value(args.value),
            by=HumanKind(args.by),
            note=args.note,
        )
        _print_json({"key": str(written.key), "value": written.value})
        return 0
    if args.command == "guardrails":
        violations = find_unguarded_writes()
        for violation in violations:
            print(violation)
        return 1 if violations else 0
    raise ValueError(f"Unsupported command: {args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)
        _validate(parsed_args)
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        status = _run_command(parsed_args)
    except Exception:
        log.exception("Fatal error during %s", parsed_args.command)
        sys.exit(1)
    if status:
        sys.exit(status)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Stop issuing further proposals on the first Ctrl+C, exit on the second."""
    if _CANCEL.is_set():
        print("\nClosed by user (Ctrl+C)")
        sys.exit(130)
    print("\nCancelling after the current proposal (Ctrl+C again to quit)")
    _CANCEL.set()


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
