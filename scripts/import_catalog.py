"""
Import a wholesaler catalog file from the command line.

Usage:
    # Check a file against the current catalog, change nothing
    python scripts/import_catalog.py --wholesaler larson-juhl --file catalog.csv --validate-only

    # Merge new and changed products
    python scripts/import_catalog.py --wholesaler larson-juhl --file catalog.xlsx --mode update

Set CATALOG_STORE=supabase (plus SUPABASE_URL / SUPABASE_KEY) to write to
the database; the default in-memory store only lives for this process.
"""

import argparse
import os
import sys

# Allow imports from the project root when running as a script
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), ".."))

from exceptions import AppError
from models.catalog import ImportMode, ImportProgress, ImportStatus, ValidationReport, ImportReport
from services.catalog_import_service import get_catalog_import_service


def print_validation(report: ValidationReport) -> None:
    print(f"Rows:       {report.total_rows}")
    print(f"  valid:    {report.valid}")
    print(f"  invalid:  {report.invalid}")
    print(f"  new:      {report.new}")
    print(f"  same:     {report.duplicates}")
    print(f"  changed:  {report.updates}")
    if report.ignored_columns:
        print(f"Ignored columns: {', '.join(report.ignored_columns)}")

    for summary in report.errors[:20]:
        messages = "; ".join(e.message for e in summary.errors)
        print(f"  row {summary.row_number} ({summary.product_code or '?'}): {messages}")
    if len(report.errors) > 20:
        print(f"  ... {len(report.errors) - 20} more invalid rows")

    for warning in report.warnings[:10]:
        print(f"  warning: {warning.message}")


def print_import(report: ImportReport) -> None:
    print(report.message)
    for failure in report.failures[:20]:
        print(f"  row {failure.row_number} ({failure.product_code}): {failure.error}")
    if report.unprocessed_rows:
        print(f"  {len(report.unprocessed_rows)} rows not processed")


def print_progress(progress: ImportProgress) -> None:
    print(
        f"  {progress.fraction:6.1%}  "
        f"batch {progress.batches_completed}/{progress.batches_total}  "
        f"rows {progress.rows_processed}/{progress.rows_total}"
    )


def main():
    parser = argparse.ArgumentParser(
        description="Validate or import a wholesaler catalog file (CSV or .xlsx)."
    )
    parser.add_argument(
        "--wholesaler",
        required=True,
        help="Wholesaler id that owns the catalog"
    )
    parser.add_argument(
        "--file",
        required=True,
        help="Path to the catalog file"
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in ImportMode],
        default=ImportMode.REPLACE.value,
        help="Import mode (default: replace)"
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Only validate; do not write anything"
    )
    args = parser.parse_args()

    with open(args.file, "rb") as f:
        content = f.read()

    service = get_catalog_import_service()
    filename = os.path.basename(args.file)

    try:
        validation = service.validate(content, args.wholesaler, filename)
        print_validation(validation)
        if args.validate_only:
            return 0 if validation.invalid == 0 else 1

        print(f"\nImporting in {args.mode} mode...")
        report = service.run_import(
            content,
            args.wholesaler,
            ImportMode(args.mode),
            filename=filename,
            progress=print_progress,
        )
    except AppError as e:
        print(f"Error [{e.code}]: {e.message}")
        return 2

    print_import(report)
    return 0 if report.status == ImportStatus.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
