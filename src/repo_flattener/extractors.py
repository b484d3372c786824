from __future__ import annotations

import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from repo_flattener.archive_xml import docx_package_text, expand_archive, xlsx_package_text
from repo_flattener.config import (
    DOC_UNSUPPORTED_MESSAGE,
    EXTRACTORS,
    XLS_UNSUPPORTED_MESSAGE,
    ErrorKind,
    ExtractionResult,
    register_extractor,
)
from repo_flattener.encoding import decode_bytes
from repo_flattener.exceptions import (
    ExtractionError,
    ToolCommandError,
    ToolNotFoundError,
    ToolStartError,
)
from repo_flattener.file_manipulation import truncate_text
from repo_flattener.logging import logger
from repo_flattener.tools import find_pdftotext

if TYPE_CHECKING:
    from collections.abc import Callable

    from repo_flattener.config import FileEntry
    from repo_flattener.settings import Options
    from repo_flattener.tools import ToolRunner

RECOVERABLE_ERRORS = (ExtractionError, ToolStartError, ToolCommandError, ToolNotFoundError, OSError)


@register_extractor(".doc")
def legacy_doc(entry: FileEntry, options: Options, runner: ToolRunner) -> ExtractionResult:  # noqa: ARG001
    return ExtractionResult.ok(DOC_UNSUPPORTED_MESSAGE)


@register_extractor(".xls")
def legacy_xls(entry: FileEntry, options: Options, runner: ToolRunner) -> ExtractionResult:  # noqa: ARG001
    return ExtractionResult.ok(XLS_UNSUPPORTED_MESSAGE)


def _from_package(
    entry: FileEntry,
    options: Options,
    runner: ToolRunner,
    read: Callable[[Path], str],
) -> ExtractionResult:
    with tempfile.TemporaryDirectory(prefix="repo_flattener_") as tmp:
        try:
            expand_archive(entry.path, Path(tmp), options.archive_backend, runner)
            text = read(Path(tmp))
        except RECOVERABLE_ERRORS as e:
            logger.warning("Extraction failed for %s: %s", entry.path, e)
            return ExtractionResult.failed(str(e))
    return ExtractionResult.ok(truncate_text(text, options.max_out_chars))


@register_extractor(".docx")
def docx(entry: FileEntry, options: Options, runner: ToolRunner) -> ExtractionResult:
    """Flowed text of a Word package."""
    return _from_package(entry, options, runner, docx_package_text)


@register_extractor([".xlsx", ".xlsm"])
def xlsx(entry: FileEntry, options: Options, runner: ToolRunner) -> ExtractionResult:
    """Tab-separated rows of every sheet of a workbook package."""
    return _from_package(entry, options, runner, lambda root: xlsx_package_text(root, options.max_out_chars))


@register_extractor(".pdf")
def pdf(entry: FileEntry, options: Options, runner: ToolRunner) -> ExtractionResult:
    """Layout-preserving text from `pdftotext`, located by probing."""
    try:
        exe = find_pdftotext(options.pdftotext_path, runner)
        result = runner.run(runner.pdftotext_command(exe, entry.path)).check()
    except RECOVERABLE_ERRORS as e:
        logger.warning("PDF extraction failed for %s: %s", entry.path, e)
        return ExtractionResult.failed(str(e))
    return ExtractionResult.ok(truncate_text(result.output, options.max_out_chars))


def plain_text(entry: FileEntry, options: Options) -> ExtractionResult:
    """Decode a file as text (BOM, then strict UTF-8 or the legacy code page)."""
    try:
        data = entry.path.read_bytes()
    except OSError as e:
        logger.warning("Cannot read %s: %s", entry.path, e)
        return ExtractionResult.failed(e.strerror or str(e), ErrorKind.READ)
    text = decode_bytes(data, options.no_bom_encoding, legacy=options.legacy_encoding)
    return ExtractionResult.ok(truncate_text(text, options.max_out_chars))


class ContentExtractor:
    """Dispatch a file to its extractor by extension; unregistered extensions are plain text.

    Args:
        options (Options): budget, decoding policy and tool configuration
        runner (ToolRunner): the platform tool runner for packages and PDFs
    """

    def __init__(self, options: Options, runner: ToolRunner) -> None:
        self.options = options
        self.runner = runner

    def extract(self, entry: FileEntry) -> ExtractionResult:
        func = EXTRACTORS.get(entry.extension)
        if func is None:
            return plain_text(entry, self.options)
        return func(entry, self.options, self.runner)
