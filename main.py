import argparse
import logging
import sys
from typing import List, Optional

from coherence_lint.config import config
from coherence_lint.ingestion.loader import SnapshotLoadError, load_snapshot
from coherence_lint.models.issues import OrphanCounts, ValidationResults, ValidationStatus
from coherence_lint.services.exporter import write_report
from coherence_lint.services.validator import count_usage_orphans, summarize, run_validations

STATUS_ICONS = {
    ValidationStatus.CLEAN: "✅",
    ValidationStatus.WARNING: "⚠️",
    ValidationStatus.ERROR: "❌",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Lint a generative-world configuration before simulation.")
    parser.add_argument("config_path", help="JSON project file with schema/eras/pressures/generators/systems")
    parser.add_argument(
        "--format",
        choices=("json", "csv", "both"),
        default=None,
        help="Also write a report file in this format",
    )
    parser.add_argument("--out", default=None, help=f"Report directory (default: {config.export.output_dir})")
    parser.add_argument("--quiet", action="store_true", help="Log only warnings and errors")
    return parser


def print_results(results: ValidationResults, orphans: OrphanCounts) -> None:
    summary = summarize(results)
    icon = STATUS_ICONS[summary.status]
    print(f"{icon} Status: {summary.status.value.upper()} "
          f"({summary.error_count} errors, {summary.warning_count} warnings)")

    for issue in results.issues:
        print(f"\n[{issue.severity.value.upper()}] {issue.title} ({len(issue.affected_items)})")
        print(f"   {issue.message}")
        for item in issue.affected_items:
            line = f"   - {item.label}"
            if item.detail:
                line += f": {item.detail}"
            print(line)

    # Карта использования считается редактором, здесь только для сведения
    if orphans.total:
        print(f"\n🧩 Usage map orphans: {orphans.total} "
              f"(generators: {orphans.generators}, systems: {orphans.systems}, pressures: {orphans.pressures})")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        stream=sys.stdout,
        level=logging.WARNING if args.quiet else config.log_level,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    print(f"🔍 Validating {args.config_path}...")
    try:
        snapshot = load_snapshot(args.config_path)
    except SnapshotLoadError as e:
        logging.error(f"❌ {e}")
        return 2

    results = run_validations(snapshot)
    print_results(results, count_usage_orphans(snapshot.usage_map))

    if args.format:
        formats = ("json", "csv") if args.format == "both" else (args.format,)
        for fmt in formats:
            path = write_report(results, fmt, args.out)
            print(f"💾 Report written: {path}")

    return 1 if results.errors else 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
