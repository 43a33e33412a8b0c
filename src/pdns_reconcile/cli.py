"""Command-line entry point for pdns-reconcile."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from .config import load_config
from .controller import PlanResult, ZoneController
from .diffing import summarize
from .exporter import write_zone_state, zone_to_json, zone_to_yaml
from .logs import configure_logging
from .models import (
    ApiError,
    ChangeAction,
    ChangeOp,
    PartialApplyError,
    PdnsReconcileError,
    ReconciliationResult,
    RRSet,
)
from .validation import build_zone_template

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_INVALID = 2
EXIT_API = 3
EXIT_PARTIAL = 4

_MARKERS = {ChangeAction.CREATE: "+", ChangeAction.UPDATE: "~", ChangeAction.DELETE: "-"}


def _build_parser() -> argparse.ArgumentParser:
    """Create the CLI parser."""
    parser = argparse.ArgumentParser(
        prog="pdns-reconcile",
        description="Reconcile PowerDNS zones against a desired-state file.",
    )
    parser.add_argument("--log-level", help="Override log level (default from config).")
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        help="Override log output format (default from config).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    plan_parser = subparsers.add_parser("plan", help="Show diff between desired and current state.")
    _register_common_arguments(plan_parser)
    plan_parser.add_argument("--json", help="Optional path to write diff JSON.")

    apply_parser = subparsers.add_parser("apply", help="Apply changes to the zone.")
    _register_common_arguments(apply_parser)
    apply_parser.add_argument("--json", help="Optional path to write diff JSON.")
    apply_parser.add_argument("--yes", action="store_true", help="Skip confirmation prompt.")
    apply_parser.add_argument("--dry-run", action="store_true", help="Show the diff without applying it.")

    pull_parser = subparsers.add_parser("pull", help="Fetch current zone state from PowerDNS.")
    pull_parser.add_argument("--zone", required=True, help="Zone name to pull.")
    pull_parser.add_argument("--output", help="Path to write the exported state (default stdout).")
    pull_parser.add_argument(
        "--format",
        choices=["yaml", "json"],
        default="yaml",
        help="Serialization format for the exported state.",
    )

    subparsers.add_parser("list-zones", help="List the zones hosted by the server.")

    create_parser = subparsers.add_parser("create-zone", help="Create a new zone on the server.")
    create_parser.add_argument("--zone", required=True, help="Zone name to create.")
    create_parser.add_argument(
        "--nameserver",
        dest="nameservers",
        action="append",
        default=[],
        help="Nameserver for the zone's NS RRSet. Can be repeated.",
    )
    create_parser.add_argument(
        "--master",
        dest="masters",
        action="append",
        default=[],
        help="Primary server address for Slave zones. Can be repeated.",
    )
    create_parser.add_argument(
        "--kind",
        choices=["Native", "Master", "Slave"],
        default="Native",
        help="Zone kind (default Native).",
    )
    create_parser.add_argument("--hostmaster", default="hostmaster", help="Mailbox label of the SOA contact.")
    create_parser.add_argument("--refresh-time", type=int, default=3600, help="SOA refresh in seconds.")
    create_parser.add_argument("--retry-time", type=int, default=1800, help="SOA retry in seconds.")
    create_parser.add_argument("--expire-time", type=int, default=604800, help="SOA expire in seconds.")
    create_parser.add_argument(
        "--negative-cache-time", type=int, default=600, help="SOA negative caching TTL in seconds."
    )

    remove_parser = subparsers.add_parser("remove-zone", help="Delete a zone from the server.")
    remove_parser.add_argument("--zone", required=True, help="Zone name to delete.")
    remove_parser.add_argument("--yes", action="store_true", help="Skip confirmation prompt.")
    return parser


def _register_common_arguments(subparser: argparse.ArgumentParser) -> None:
    """Register arguments shared by plan/apply."""
    subparser.add_argument("--desired", required=True, help="Path to the desired-state YAML/JSON file.")
    subparser.add_argument("--zone", help="Zone name (used when the document has none).")
    subparser.add_argument(
        "--format",
        choices=["yaml", "json"],
        help="Desired-state format (default from the file extension).",
    )
    subparser.add_argument(
        "-e",
        "--var",
        action="append",
        help="Template variable in KEY=VALUE form. Can be repeated.",
    )


def _parse_template_vars(values: list[str] | None) -> dict[str, str]:
    """Convert KEY=VALUE pairs into a dict."""
    result: dict[str, str] = {}
    if not values:
        return result
    for value in values:
        if "=" not in value:
            raise PdnsReconcileError(f"Invalid template var '{value}', expected KEY=VALUE.")
        key, val = value.split("=", 1)
        result[key] = val
    return result


def _serialize_rrset(rrset: RRSet | None) -> dict[str, Any] | None:
    if rrset is None:
        return None
    return {
        "name": rrset.name,
        "type": str(rrset.type),
        "ttl": rrset.ttl,
        "records": [record.to_api() for record in rrset.sorted_records()],
    }


def _describe(op: ChangeOp) -> str:
    marker = _MARKERS[op.action]
    if op.action is ChangeAction.DELETE or op.after is None:
        return f" {marker} {op.type} {op.name}"
    values = ", ".join(op.after.values())
    line = f" {marker} {op.type} {op.name} -> {values} (ttl {op.after.ttl})"
    if op.before is not None and op.before.ttl != op.after.ttl:
        line += f" [ttl {op.before.ttl} -> {op.after.ttl}]"
    return line


def _emit_plan(plan: PlanResult, json_path: str | None = None) -> None:
    """Print a human-friendly diff, optionally writing JSON."""
    counts = summarize(plan.changes)
    print(f"Zone: {plan.desired.name}")
    print(", ".join(f"{action}: {counts[str(action)]}" for action in ChangeAction))
    for op in plan.changes:
        print(_describe(op))
    if json_path:
        payload = {
            "zone": plan.desired.name,
            "summary": counts,
            "changes": [
                {
                    "action": str(op.action),
                    "name": op.name,
                    "type": str(op.type),
                    "before": _serialize_rrset(op.before),
                    "after": _serialize_rrset(op.after),
                }
                for op in plan.changes
            ],
        }
        Path(json_path).write_text(json.dumps(payload, indent=2), encoding="utf-8")
        print(f"Wrote diff JSON to {json_path}")


def _emit_result(result: ReconciliationResult) -> None:
    """Print per-operation outcomes of an apply run."""
    print(
        f"Result: {result.verdict} "
        f"({len(result.applied)} applied, {len(result.failed)} failed, {len(result.skipped)} skipped)"
    )
    for outcome in result.outcomes:
        line = f" {outcome.status}: {outcome.op.label()}"
        if outcome.error is not None:
            line += f" ({outcome.error})"
        print(line)


def _run_plan(controller: ZoneController, args: argparse.Namespace) -> PlanResult:
    """Execute the plan command."""
    desired_path = Path(args.desired)
    template_vars = _parse_template_vars(args.var)
    plan_result = controller.plan(desired_path, zone=args.zone, template_vars=template_vars, fmt=args.format)
    _emit_plan(plan_result, getattr(args, "json", None))
    if not plan_result.has_changes():
        print("No changes detected.")
    return plan_result


def _run_apply(controller: ZoneController, args: argparse.Namespace) -> None:
    """Execute the apply command."""
    plan_result = _run_plan(controller, args)
    result = controller.apply(plan_result, assume_yes=args.yes, dry_run=args.dry_run)
    if result is not None and result.outcomes:
        _emit_result(result)


def _run_pull(controller: ZoneController, args: argparse.Namespace) -> None:
    """Execute the pull command."""
    zone = controller.pull_state(args.zone)
    content = zone_to_json(zone) if args.format == "json" else zone_to_yaml(zone)
    if args.output:
        write_zone_state(Path(args.output), content)
        print(f"Wrote zone state to {args.output}")
    else:
        print(content)


def _run_list_zones(controller: ZoneController, args: argparse.Namespace) -> None:
    """Execute the list-zones command."""
    server = controller.server_info()
    print(f"Server: {server.get('id')} ({server.get('daemon_type', 'unknown')}, version {server.get('version', '?')})")
    for zone in controller.list_zones():
        print(f"{zone.get('name')}\t{zone.get('kind', '')}")


def _run_create_zone(controller: ZoneController, args: argparse.Namespace) -> None:
    """Execute the create-zone command."""
    template = build_zone_template(
        args.zone,
        nameservers=args.nameservers,
        masters=args.masters,
        kind=args.kind,
        hostmaster=args.hostmaster,
        refresh=args.refresh_time,
        retry=args.retry_time,
        expire=args.expire_time,
        negative_ttl=args.negative_cache_time,
    )
    zone = controller.create_zone(template)
    print(f"Created zone {zone.name} ({template.kind}, {len(zone)} RRSets)")


def _run_remove_zone(controller: ZoneController, args: argparse.Namespace) -> None:
    """Execute the remove-zone command."""
    if controller.remove_zone(args.zone, assume_yes=args.yes):
        print(f"Removed zone {args.zone}")


COMMANDS = {
    "plan": _run_plan,
    "apply": _run_apply,
    "pull": _run_pull,
    "list-zones": _run_list_zones,
    "create-zone": _run_create_zone,
    "remove-zone": _run_remove_zone,
}


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    controller: ZoneController | None = None
    try:
        config = load_config()
        configure_logging(args.log_level or config.log_level, args.log_format or config.log_format)
        controller = ZoneController(config)
        COMMANDS[args.command](controller, args)
    except PartialApplyError as exc:
        _emit_result(exc.result)
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(EXIT_PARTIAL)
    except ApiError as exc:
        print(f"API error ({exc.kind}): {exc}", file=sys.stderr)
        sys.exit(EXIT_API)
    except PdnsReconcileError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(EXIT_INVALID)
    except KeyboardInterrupt:
        if controller is not None and controller.executor is not None and controller.executor.result is not None:
            _emit_result(controller.executor.result)
        print("Interrupted.", file=sys.stderr)
        sys.exit(EXIT_UNEXPECTED)
    except Exception as exc:  # noqa: BLE001
        print(f"Unexpected error: {exc}", file=sys.stderr)
        sys.exit(EXIT_UNEXPECTED)
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
