"""
repo_flattener: render a directory as one Markdown report.

Overview
--------
The report has two sections:

1) **Directory tree**: box-drawing rendering of the tree, excluded directories
   (`.git`, `node_modules`, ...) omitted at any depth. `--external-tree` asks the
   platform `tree` utility first and falls back to the built-in renderer.

2) **File contents**: every file with an included extension and at most
   `--max-bytes` bytes, in a fenced BEGIN/END block. Text is decoded from its BOM,
   strict UTF-8 or the legacy code page; DOCX and XLSX/XLSM packages are unpacked
   and their XML read; PDF goes through `pdftotext`. `--tree-only` skips it.

Options can also come from a YAML file (`--config`) and from `REPO_FLATTENER_*`
environment variables (a `.env` file is honored). Command-line flags win.

Usage
-----
    repo-flattener path/to/project --output report.md
    repo-flattener . --tree-only
    repo-flattener . --include-ext py,md --exclude-dir .git,build --max-out-chars 20000
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from repo_flattener import __version__
from repo_flattener.config import ArchiveBackend, NoBomEncoding, ReportMode, TreeMode
from repo_flattener.logging import logger, setup_logging
from repo_flattener.output_construction import ReportGenerator, write_report
from repo_flattener.settings import Options, build_options

if TYPE_CHECKING:
    from collections.abc import Sequence


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="repo-flattener",
        description="Render a directory tree and the text of its files as one Markdown report.",
    )
    p.add_argument("root", nargs="?", default=None, help="Directory to report on.")
    p.add_argument("-o", "--output", type=str, default="", help="Output file (UTF-8 with BOM). Stdout if omitted.")
    p.add_argument("--config", type=str, default="", help="YAML options file.")
    p.add_argument(
        "--include-ext",
        action="append",
        default=None,
        help="Included extensions, comma separated (repeatable).",
    )
    p.add_argument(
        "--exclude-dir",
        action="append",
        default=None,
        help="Excluded directory names, comma separated (repeatable).",
    )
    p.add_argument("--max-bytes", type=int, default=None, help="Per-file size ceiling for contents.")
    p.add_argument(
        "--max-out-chars",
        type=int,
        default=None,
        help="Character budget per extracted file, 0 for none.",
    )
    p.add_argument("--tree-only", action="store_true", default=None, help="Only render the tree section.")
    p.add_argument(
        "--external-tree",
        action="store_true",
        default=None,
        help="Use the platform tree utility, with the built-in renderer as fallback.",
    )
    p.add_argument(
        "--no-bom-encoding",
        choices=[m.value for m in NoBomEncoding],
        default=None,
        help="Decoding of files without BOM.",
    )
    p.add_argument(
        "--legacy-encoding",
        type=str,
        default=None,
        help=(
            "Legacy code page for files that are not UTF-8 (default: the locale preferred encoding, "
            "usually UTF-8 on Linux and macOS, so set this for cp1252 or cp1251 files there)."
        ),
    )
    p.add_argument("--pdftotext", type=str, default=None, help="Path to the pdftotext executable.")
    p.add_argument(
        "--archive-backend",
        choices=[m.value for m in ArchiveBackend],
        default=None,
        help="Who unpacks DOCX/XLSX packages.",
    )
    p.add_argument("--log-file", type=str, default="", help="Log file path.")
    p.add_argument("--log-level", type=str, default="INFO", help="Log level.")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def cli_values(args: argparse.Namespace) -> dict[str, Any]:
    """Map parsed arguments to `Options` fields; None means "not given"."""
    return {
        "root": args.root,
        "include_ext": args.include_ext,
        "exclude_dir_names": args.exclude_dir,
        "max_bytes": args.max_bytes,
        "max_out_chars": args.max_out_chars,
        "report_mode": ReportMode.TREE if args.tree_only else None,
        "tree_mode": TreeMode.EXTERNAL if args.external_tree else None,
        "no_bom_encoding": args.no_bom_encoding,
        "legacy_encoding": args.legacy_encoding,
        "pdftotext_path": args.pdftotext,
        "archive_backend": args.archive_backend,
    }


def parse_args(argv: Sequence[str] | None = None) -> tuple[argparse.Namespace, Options]:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        options = build_options(cli_values(args), config_file=args.config or None)
    except (ValidationError, ValueError, OSError) as e:
        parser.error(str(e))
    return args, options


def main(argv: Sequence[str] | None = None) -> int:
    args, options = parse_args(argv)
    if args.log_file or args.log_level.upper() != "INFO":
        setup_logging(args.log_file or None, args.log_level, force=True)

    report = ReportGenerator(options).generate()
    if not report.ok:
        print(f"error: {report.error}", file=sys.stderr)
        return 1
    if report.error:
        logger.warning("Report generated with a warning: %s", report.error)

    if args.output:
        out_path = write_report(report, Path(args.output))
        print(f"Wrote {out_path} ({len(report.lines)} lines)", file=sys.stderr)
    else:
        sys.stdout.write(report.text + "\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
