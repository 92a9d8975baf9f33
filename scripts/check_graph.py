#!/usr/bin/env python3
"""
Check referral graph integrity.

Prints every issue found by the analyzer, orphan sponsor suggestions and,
with --fix-safe, runs the safe batch fix and re-analyzes.

Usage:
    python scripts/check_graph.py [--fix-safe] [--fix-orphans] [--no-depth]
    python scripts/check_graph.py --rename OLD_ID NEW_ID
"""

import sys
import os
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from core.db import setup_database
from referral_system.graph.store import SqlGraphStore
from referral_system.services.integrity_service import IntegrityService, summarize
from referral_system.services.repair_service import RepairService
from referral_system.services.rename_service import RenameService
from referral_system.services.sponsor_resolver import analyzeOrphans

import logging

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def print_issues(issues):
    """Print issues grouped by severity."""
    summary = summarize(issues)

    print("\n" + "=" * 80)
    print("REFERRAL GRAPH INTEGRITY")
    print("=" * 80 + "\n")

    if not issues:
        print("✅ No issues found")
        return

    print(f"Total issues: {summary['total']}")
    for severity, count in summary["bySeverity"].items():
        if count:
            print(f"  {severity:10} {count}")

    print()
    for issue in issues:
        print(f"[{issue.severity.value.upper():8}] {issue.type.value:22} {issue.nodeId:12} {issue.description}")


def print_orphans(store):
    suggestions = analyzeOrphans(store.listAll(), Config.root_ids())
    if not suggestions:
        return

    print("\n" + "-" * 80)
    print("ORPHAN SPONSOR SUGGESTIONS")
    print("-" * 80)
    for s in suggestions:
        children = f" ⚠️ {s.childrenCount} children" if s.hasChildren else ""
        print(f"  {s.orphan.id:12} -> {s.candidateId or '?':12} [{s.confidence.value}]{children} {s.reason}")


def main():
    parser = argparse.ArgumentParser(description="Referral graph integrity check")
    parser.add_argument("--fix-safe", action="store_true", help="Apply safe automatic fixes")
    parser.add_argument("--fix-orphans", action="store_true", help="Assign high-confidence sponsors to orphans")
    parser.add_argument("--no-depth", action="store_true", help="Skip advisory depth check")
    parser.add_argument("--rename", nargs=2, metavar=("OLD_ID", "NEW_ID"), help="Rename a node id")
    parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    args = parser.parse_args()

    Config.initialize_from_env()
    setup_database()

    store = SqlGraphStore()
    integrity = IntegrityService(store)

    if args.rename:
        old_id, new_id = args.rename
        if not args.yes:
            answer = input(f"Rename {old_id} -> {new_id} and rewrite all references? [y/N] ")
            if answer.strip().lower() != "y":
                print("Cancelled")
                return 1
        result = RenameService(store).renameId(old_id, new_id)
        print(result.summary())
        return 0 if result.success else 1

    issues = integrity.run(checkDepth=not args.no_depth)
    print_issues(issues)
    print_orphans(store)

    if not (args.fix_safe or args.fix_orphans):
        return 1 if issues else 0

    repair = RepairService(store)

    if args.fix_safe:
        safe = [i for i in issues if repair.isSafe(i)]
        print(f"\n{len(safe)} safe fixes:")
        for issue in safe:
            print(repair.planFix(issue).describe())
        if safe and (args.yes or input("Apply? [y/N] ").strip().lower() == "y"):
            print(repair.applyBatch(safe).summary())

    if args.fix_orphans:
        if args.yes or input("Assign high-confidence sponsors to orphans? [y/N] ").strip().lower() == "y":
            print(repair.fixHighConfidenceOrphans().summary())

    remaining = integrity.run(checkDepth=not args.no_depth)
    print_issues(remaining)
    return 1 if remaining else 0


if __name__ == "__main__":
    sys.exit(main())
