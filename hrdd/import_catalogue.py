"""
hrdd.import_catalogue — CLI to load, check and export a country catalogue.

Usage:
    python -m hrdd.import_catalogue
    python -m hrdd.import_catalogue --source data/countries.txt --json
    python -m hrdd.import_catalogue --source data/countries.txt --output catalogue.json
    python -m hrdd.import_catalogue --quiet

Exit codes:
    0: Loaded. Duplicates, if any, are reported as warnings.
    1: File not found.
    2: Empty source.
    3: Shape mismatch (header or row column count is not 8).
    4: Missing identifier (a row has an empty ISO code).

Output:
    Default: human-readable summary to stdout.
    --json: structured JSON report to stdout.
    --quiet: no output, only exit code.
    --output: also write the loaded catalogue as JSON to a file.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from hrdd.catalogue import (
    CatalogueError,
    CatalogueFileNotFoundError,
    EmptySourceError,
    HeaderShapeMismatchError,
    MissingIdentifierError,
    RowShapeMismatchError,
    load_file,
)
from hrdd.constants import DEFAULT_CATALOGUE_PATH

EXIT_OK = 0
EXIT_FILE_NOT_FOUND = 1
EXIT_EMPTY_SOURCE = 2
EXIT_SHAPE_MISMATCH = 3
EXIT_MISSING_IDENTIFIER = 4

EXIT_CODES: dict[type[CatalogueError], int] = {
    CatalogueFileNotFoundError: EXIT_FILE_NOT_FOUND,
    EmptySourceError: EXIT_EMPTY_SOURCE,
    HeaderShapeMismatchError: EXIT_SHAPE_MISMATCH,
    RowShapeMismatchError: EXIT_SHAPE_MISMATCH,
    MissingIdentifierError: EXIT_MISSING_IDENTIFIER,
}

EXIT_CODE_LABELS: dict[int, str] = {
    EXIT_OK: "LOADED",
    EXIT_FILE_NOT_FOUND: "FILE_NOT_FOUND",
    EXIT_EMPTY_SOURCE: "EMPTY_SOURCE",
    EXIT_SHAPE_MISMATCH: "SHAPE_MISMATCH",
    EXIT_MISSING_IDENTIFIER: "MISSING_IDENTIFIER",
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="import_catalogue",
        description="Load an HRDD country catalogue and report duplicates and errors.",
    )
    parser.add_argument(
        "--source",
        type=str,
        default=None,
        help="Catalogue text file (default: hrdd/data/countries.txt).",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write the loaded catalogue as JSON to this path.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output structured JSON report.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress all output. Exit code only.",
    )
    return parser


def _failure_report(source: Path, exc: CatalogueError) -> dict[str, Any]:
    code = EXIT_CODES.get(type(exc), EXIT_SHAPE_MISMATCH)
    report: dict[str, Any] = {
        "source": str(source),
        "loaded": False,
        "exit_code": code,
        "status": EXIT_CODE_LABELS[code],
        "error": str(exc),
    }
    line_number = getattr(exc, "line_number", None)
    if line_number is not None:
        report["line_number"] = line_number
    return report


def main(argv: list[str] | None = None) -> int:
    """Run the import. Returns exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    source = Path(args.source) if args.source else DEFAULT_CATALOGUE_PATH

    try:
        catalogue = load_file(source)
    except CatalogueError as exc:
        report = _failure_report(source, exc)
        if args.json_output and not args.quiet:
            print(json.dumps(report, indent=2, ensure_ascii=False))
        elif not args.quiet:
            print(f"Source: {source}", file=sys.stderr)
            print(f"Status: {report['status']}", file=sys.stderr)
            print(f"Error:  {report['error']}", file=sys.stderr)
        return report["exit_code"]

    if args.output:
        with open(args.output, "w", encoding="utf-8") as fh:
            json.dump(catalogue.to_dict(), fh, indent=2, ensure_ascii=False)
            fh.write("\n")

    if args.quiet:
        return EXIT_OK

    if args.json_output:
        report = {
            "source": str(source),
            "loaded": True,
            "exit_code": EXIT_OK,
            "status": EXIT_CODE_LABELS[EXIT_OK],
            "countries": len(catalogue),
            "fingerprint": catalogue.fingerprint,
            "duplicates": [d.to_dict() for d in catalogue.duplicates],
        }
        print(json.dumps(report, indent=2, ensure_ascii=False))
        return EXIT_OK

    print(f"Source:    {source}")
    print(f"Status:    {EXIT_CODE_LABELS[EXIT_OK]}")
    print(f"Countries: {len(catalogue)}")

    if catalogue.duplicates:
        n = len(catalogue.duplicates)
        print(f"\nDuplicate ISO codes, last occurrence kept ({n} entr{'y' if n == 1 else 'ies'}):")
        for dup in catalogue.duplicates:
            print(f"  • {dup.iso_code}: '{dup.replaced_name}' replaced by '{dup.with_name}'")

    if args.output:
        print(f"\nWrote {args.output}")

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
