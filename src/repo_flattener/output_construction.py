from __future__ import annotations

import os
import re
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from repo_flattener.exceptions import RootPathError
from repo_flattener.extractors import ContentExtractor
from repo_flattener.file_manipulation import PathFilter, build_tree_lines, collect_files, relpath, sort_entries
from repo_flattener.logging import logger
from repo_flattener.tools import runner_for_platform

if TYPE_CHECKING:
    from collections.abc import Sequence

    from repo_flattener.config import FileEntry
    from repo_flattener.settings import Options
    from repo_flattener.tools import ToolRunner

_BACKTICK_RUN = re.compile(r"`+")


def fence_for(payload: str) -> str:
    """Backtick fence that cannot be closed by `payload`: one longer than its longest run, at least 3."""
    longest = max((len(m.group(0)) for m in _BACKTICK_RUN.finditer(payload)), default=0)
    return "`" * max(3, longest + 1)


def fenced(payload_lines: Sequence[str], lang: str = "text") -> list[str]:
    """Wrap lines in a collision-safe Markdown fence."""
    fence = fence_for("\n".join(payload_lines))
    return [f"{fence}{lang}", *payload_lines, fence]


def file_block(rel: str, size: int, body: str) -> list[str]:
    """Markdown lines for one file: fenced BEGIN/END block followed by a blank line."""
    payload = [
        f"----- BEGIN FILE: {rel} [{size} bytes] ----",
        body,
        f"----- END FILE:   {rel} ----",
    ]
    return [*fenced(payload), ""]


class ReportResult(BaseModel):
    """A finished report and the fatal error or non-fatal warning that came with it."""

    model_config = ConfigDict(frozen=True)

    lines: tuple[str, ...] = Field(default=(), description="Markdown lines")
    error: str = Field(default="", description="Fatal error (empty report) or warning")

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    @property
    def ok(self) -> bool:
        return bool(self.lines)


class ReportGenerator:
    """Build the Markdown report for one directory.

    The generator keeps no state between calls; every `generate` re-reads the tree.

    Args:
        options (Options): the run configuration
        runner (ToolRunner | None): external tool runner, the current platform's by default
    """

    def __init__(self, options: Options, runner: ToolRunner | None = None) -> None:
        self.options = options
        self.runner = runner or runner_for_platform()
        self.path_filter = PathFilter(options)
        self.extractor = ContentExtractor(options, self.runner)

    def resolve_root(self) -> Path:
        """Validate the configured root.

        Raises:
            RootPathError: if the root is empty, missing or not a directory

        Returns:
            Path: the normalized absolute root
        """
        raw = self.options.root.strip()
        if not raw:
            raise RootPathError(root="", message="Root directory not set.")
        root = Path(os.path.normpath(os.path.abspath(raw)))  # noqa: PTH100
        if not root.is_dir():
            raise RootPathError(root=str(root))
        return root

    def collect(self, root: Path) -> list[FileEntry]:
        """Files for the contents section, sorted by full path case-insensitively."""
        return sort_entries(collect_files(root, self.path_filter))

    def build(self) -> ReportResult:
        """Build the report.

        Raises:
            RootPathError: if the root is invalid (no partial output)

        Returns:
            ReportResult: the report lines, with a warning when the external tree failed
        """
        root = self.resolve_root()
        opts = self.options
        root_excluded = self.path_filter.is_excluded_name(root.name)
        logger.info("Building report for %s (tree_only=%s)", root, opts.tree_only)

        lines: list[str] = [f"# Directory report: {root}", "## 1. Directory tree"]
        warning = ""
        tree_lines: list[str] = []
        if not root_excluded:
            tree_lines, warning = build_tree_lines(root, opts, self.path_filter, self.runner)
        lines.extend(fenced(tree_lines))
        lines.append("")

        if opts.tree_only:
            return ReportResult(lines=tuple(lines), error=warning)

        lines.append("## 2. File contents (filtered)")
        lines.append(f"*(only files with an included extension and at most {opts.max_bytes} bytes)*")
        lines.append("")

        files = [] if root_excluded else self.collect(root)
        failures = 0
        for entry in files:
            result = self.extractor.extract(entry)
            failures += result.is_error
            lines.extend(file_block(relpath(entry.path, root), entry.size, result.render()))

        logger.info("Report built: %d files, %d extraction errors", len(files), failures)
        return ReportResult(lines=tuple(lines), error=warning)

    def generate(self) -> ReportResult:
        """Build the report, turning fatal errors into an empty report with a message."""
        try:
            return self.build()
        except RootPathError as e:
            logger.error("Report aborted: %s", e)
            return ReportResult(error=str(e))


def write_report(report: ReportResult, output: Path) -> Path:
    """Write the report as UTF-8 with a byte-order mark."""
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(report.text, encoding="utf-8-sig")
    return output
