"""Command line interface for the record migrator."""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from .errors import CyclicDependencyError, TargetStoreUnavailableError
from .models.migration import MigrationConfig
from .models.plan import MigrationPlan
from .models.record import SourceRecord
from .models.relationship import FieldActions
from .models.result import MigrationResult
from .orchestrator import MigrationOrchestrator

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Record Migrator - Copy records and their related records between orgs"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Analyze
    analyze_parser = subparsers.add_parser("analyze", help="Build and review a migration plan")
    _add_common_arguments(analyze_parser)
    analyze_parser.add_argument("--output", help="Write the plan review to this file")

    # Run migration
    run_parser = subparsers.add_parser("run", help="Analyze and execute a migration")
    _add_common_arguments(run_parser)
    run_parser.add_argument("--dry-run", action="store_true", help="Simulate without creating records")
    run_parser.add_argument("--yes", "-y", action="store_true", help="Execute even if the plan has issues")

    # Relationship options
    fields_parser = subparsers.add_parser("fields", help="List relationship fields and their defaults")
    fields_parser.add_argument("--config", help="Path to migration config file")
    fields_parser.add_argument("--object", required=True, help="Object type to describe")
    fields_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.command == "analyze":
        return run_analysis(args)
    elif args.command == "run":
        return run_migration(args)
    elif args.command == "fields":
        return run_fields(args)
    else:
        parser.print_help()
        return 1


def _add_common_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("--config", help="Path to migration config file")
    parser.add_argument("--input", required=True, help="Path to selection JSON file")
    parser.add_argument("--actions", help="Path to field actions JSON file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")


def load_config(path: Optional[str]) -> MigrationConfig:
    """Load a migration config file; defaults when no file is given."""
    if not path:
        return MigrationConfig()
    with open(path) as f:
        return MigrationConfig.from_dict(json.load(f))


def load_selection(path: str) -> Dict[str, Any]:
    """
    Load the root record selection.

    Accepted shapes:
    - {"object_type": "Contact", "records": [...]} with full records
    - {"object_type": "Contact", "ids": ["003..."]} to fetch from the source org
    - [...] records that carry attributes.type
    """
    with open(path) as f:
        data = json.load(f)

    if isinstance(data, list):
        return {"object_type": None, "records": data, "ids": []}
    return {
        "object_type": data.get("object_type"),
        "records": data.get("records", []),
        "ids": data.get("ids", []),
    }


def load_field_actions(path: Optional[str]) -> Optional[FieldActions]:
    if not path:
        return None
    with open(path) as f:
        return FieldActions.from_dict(json.load(f))


def _root_records(orchestrator: MigrationOrchestrator, selection: Dict[str, Any]) -> List[SourceRecord]:
    object_type = selection["object_type"]
    records = [SourceRecord.from_api_record(r, object_type=object_type) for r in selection["records"]]
    if selection["ids"]:
        if not object_type:
            raise ValueError("object_type is required when selecting records by id")
        records.extend(orchestrator.fetch_roots(object_type, selection["ids"]))
    return records


def _analyze(args, config: MigrationConfig):
    orchestrator = MigrationOrchestrator.from_environment(config)
    selection = load_selection(args.input)
    roots = _root_records(orchestrator, selection)
    plan = orchestrator.analyze(roots, load_field_actions(args.actions))
    return orchestrator, plan


def run_analysis(args) -> int:
    """Build a plan and print the review."""
    config = load_config(args.config)
    config.dry_run = True  # Analysis never writes to the target org

    try:
        _, plan = _analyze(args, config)
    except CyclicDependencyError as e:
        print(f"\nCannot build a plan: {e}")
        return 2
    except ValueError as e:
        print(f"\nCannot build a plan: {e}")
        return 1

    print_plan(plan)

    if args.output:
        with open(args.output, 'w') as f:
            json.dump(plan.to_dict(), f, indent=2, default=str)
        print(f"\nPlan saved to {args.output}")
    return 0


def run_migration(args) -> int:
    """Analyze and execute a migration."""
    config = load_config(args.config)

    if args.dry_run:
        config.dry_run = True

    try:
        orchestrator, plan = _analyze(args, config)
    except CyclicDependencyError as e:
        print(f"\nCannot build a plan: {e}")
        return 2
    except ValueError as e:
        print(f"\nCannot build a plan: {e}")
        return 1

    print_plan(plan)

    if plan.issues and not args.yes:
        print(f"\nPlan has {len(plan.issues)} missing required dependencies; re-run with --yes to execute anyway")
        return 1

    try:
        result = orchestrator.execute_migration(plan)
    except TargetStoreUnavailableError as e:
        print(f"\nTarget org unavailable: {e}")
        if e.partial_result is not None:
            print_result(e.partial_result)
        return 3

    print_result(result)
    return 0 if result.success else 1


def run_fields(args) -> int:
    """List the relationship fields of an object type."""
    config = load_config(args.config)
    config.dry_run = True
    orchestrator = MigrationOrchestrator.from_environment(config)
    print(json.dumps(orchestrator.relationship_options(args.object), indent=2))
    return 0


def print_plan(plan: MigrationPlan):
    """Print the plan review."""
    print("\n" + "=" * 60)
    print("MIGRATION PLAN")
    print("=" * 60)
    print(f"Plan: {plan.plan_id}")
    print(f"Total Records: {plan.total_records}")
    print("\nOrder:")
    for i, object_type in enumerate(plan.object_order, 1):
        print(f"  {i}. {object_type} ({plan.object_counts[object_type]})")

    if plan.has_deferred_updates:
        print("\nSelf-references will be set by updates after creation")

    if plan.issues:
        print("\nIssues:")
        for issue in plan.issues:
            print(f"  - [{issue.kind.value}] {issue.message}")

    if plan.warnings:
        print("\nWarnings:")
        for warning in plan.warnings:
            print(f"  - {warning}")


def print_result(result: MigrationResult):
    """Print the result summary."""
    print("\n" + "=" * 60)
    print("MIGRATION COMPLETE" if not result.dry_run else "DRY RUN COMPLETE")
    print("=" * 60)
    print(f"Status: {result.status.value}")
    for counts in result.object_results():
        line = f"  {counts.object_type}: {counts.inserted} inserted, {counts.failed} failed"
        if counts.updated or counts.update_failed:
            line += f", {counts.updated} updated, {counts.update_failed} updates failed"
        print(line)
    if result.skipped_stages:
        print(f"Skipped: {', '.join(result.skipped_stages)}")
    if result.errors:
        print("\nErrors:")
        for error in result.errors:
            print(f"  - {error}")
    if result.duration_seconds:
        print(f"\nDuration: {result.duration_seconds:.2f} seconds")


if __name__ == "__main__":
    sys.exit(main())
