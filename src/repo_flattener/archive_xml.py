"""Text extraction from Office Open XML packages (DOCX, XLSX/XLSM).

Packages are unpacked into a scratch directory and their XML parts are read with
`xml.etree.ElementTree.iterparse`, so large sheets never become a full tree.
"""

from __future__ import annotations

import os
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING
from xml.etree import ElementTree as ET  # noqa: S405

from repo_flattener.config import ArchiveBackend
from repo_flattener.exceptions import ExtractionError
from repo_flattener.file_manipulation import truncate_text
from repo_flattener.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterator

    from repo_flattener.tools import ToolRunner

DOCX_DOCUMENT = Path("word") / "document.xml"
XLSX_SHARED_STRINGS = Path("xl") / "sharedStrings.xml"
XLSX_WORKBOOK = Path("xl") / "workbook.xml"
XLSX_WORKBOOK_RELS = Path("xl") / "_rels" / "workbook.xml.rels"
XLSX_WORKSHEETS = Path("xl") / "worksheets"


def local_name(tag: str) -> str:
    """Strip the `{namespace}` part of an ElementTree tag or attribute name."""
    return tag.rsplit("}", 1)[-1]


def expand_archive(archive: Path, destination: Path, backend: ArchiveBackend, runner: ToolRunner) -> None:
    """Unpack a ZIP container into `destination`.

    Args:
        archive (Path): the package to unpack
        destination (Path): an existing, empty scratch directory
        backend (ArchiveBackend): the in-process ZIP reader or the platform tool
        runner (ToolRunner): runs the platform tool for the external backend

    Raises:
        ExtractionError: if the container is not a readable ZIP archive, or a member
            is corrupt, truncated, encrypted or uses an unsupported compression method
        ToolStartError: if the platform tool cannot be started
        ToolCommandError: if the platform tool fails
    """
    if backend is ArchiveBackend.EXTERNAL:
        runner.run(runner.expand_archive_command(archive, destination)).check()
        return
    try:
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(destination)  # noqa: S202
    except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, NotImplementedError, RuntimeError, EOFError) as e:
        msg = f"not a valid package: {e}"
        raise ExtractionError(message=msg) from e


def _require_part(root: Path, part: Path) -> Path:
    path = root / part
    if not path.is_file():
        msg = f"missing part {part.as_posix()}"
        raise ExtractionError(message=msg)
    return path


def docx_text(document_xml: Path) -> str:
    """Reconstruct flowed text from a WordprocessingML main document part.

    Text runs are concatenated, tabs inside runs become "\\t", line breaks become
    "\\n" and every closed paragraph ends with "\\n".

    Args:
        document_xml (Path): the `word/document.xml` part

    Raises:
        ExtractionError: if the XML is malformed

    Returns:
        str: the document text
    """
    parts: list[str] = []
    in_run = 0
    try:
        for event, elem in ET.iterparse(document_xml, events=("start", "end")):  # noqa: S314
            name = local_name(elem.tag)
            if event == "start":
                if name == "r":
                    in_run += 1
                continue
            if name == "t":
                parts.append("".join(elem.itertext()))
            elif name == "tab" and in_run:
                parts.append("\t")
            elif name in {"br", "cr"} and in_run:
                parts.append("\n")
            elif name == "r":
                in_run -= 1
            elif name == "p":
                parts.append("\n")
                elem.clear()
    except ET.ParseError as e:
        msg = f"malformed XML in {DOCX_DOCUMENT.as_posix()}: {e}"
        raise ExtractionError(message=msg) from e
    return "".join(parts)


def column_index(ref: str) -> int:
    """Zero-based column index from a cell reference ("A1" -> 0, "AA7" -> 26).

    Returns -1 when the reference has no alphabetic prefix.
    """
    n = 0
    for ch in ref:
        up = ch.upper()
        if not ("A" <= up <= "Z"):
            break
        n = n * 26 + (ord(up) - ord("A") + 1)
    return n - 1


def read_shared_strings(path: Path) -> list[str]:
    """Read the shared-strings table; a missing part is an empty table.

    Rich-text runs of one entry are concatenated, phonetic hints are skipped.
    """
    if not path.is_file():
        return []
    out: list[str] = []
    buf: list[str] = []
    phonetic = 0
    try:
        for event, elem in ET.iterparse(path, events=("start", "end")):  # noqa: S314
            name = local_name(elem.tag)
            if event == "start":
                if name == "si":
                    buf = []
                elif name == "rPh":
                    phonetic += 1
                continue
            if name == "t" and not phonetic:
                buf.append(elem.text or "")
            elif name == "rPh":
                phonetic -= 1
            elif name == "si":
                out.append("".join(buf))
                elem.clear()
    except ET.ParseError as e:
        msg = f"malformed XML in {XLSX_SHARED_STRINGS.as_posix()}: {e}"
        raise ExtractionError(message=msg) from e
    return out


def _resolve_target(root: Path, target: str) -> Path:
    if target.startswith("/"):
        rel = target.lstrip("/")
    else:
        rel = os.path.normpath(os.path.join("xl", target)).replace("\\", "/")  # noqa: PTH118
    return root / rel


def workbook_sheets(root: Path) -> list[tuple[str, Path]]:
    """Map each declared sheet name to its worksheet part, in workbook order.

    When the workbook or its relationships cannot be read, every XML file in
    `xl/worksheets` is a sheet named after its file, ordered by name.

    Args:
        root (Path): the unpacked package

    Returns:
        list[tuple[str, Path]]: (sheet name, worksheet part) pairs
    """
    try:
        targets: dict[str, str] = {}
        for _, elem in ET.iterparse(root / XLSX_WORKBOOK_RELS):  # noqa: S314
            if local_name(elem.tag) == "Relationship":
                targets[elem.get("Id", "")] = elem.get("Target", "")
        sheets: list[tuple[str, Path]] = []
        for _, elem in ET.iterparse(root / XLSX_WORKBOOK):  # noqa: S314
            if local_name(elem.tag) != "sheet":
                continue
            rid = next((v for k, v in elem.attrib.items() if local_name(k) == "id"), "")
            target = targets.get(rid)
            if target:
                sheets.append((elem.get("name", rid), _resolve_target(root, target)))
        if sheets:
            return sheets
    except (OSError, ET.ParseError) as e:
        logger.warning("Workbook part unreadable, listing worksheets instead: %s", e)

    folder = root / XLSX_WORKSHEETS
    if not folder.is_dir():
        return []
    parts = sorted((p for p in folder.iterdir() if p.is_file() and p.suffix.lower() == ".xml"), key=lambda p: p.name.lower())
    return [(p.stem, p) for p in parts]


@dataclass
class SheetGrid:
    """Cells of the rows being parsed: row number -> column index -> value."""

    rows: dict[int, dict[int, str]] = field(default_factory=dict)
    max_col: int = -1

    def set(self, row: int, col: int, value: str) -> None:
        self.rows.setdefault(row, {})[col] = value
        self.max_col = max(self.max_col, col)

    def pop_line(self, row: int) -> str | None:
        """Serialize and forget one row: `<row>\\t<col0>\\t<col1>...` up to its last populated column."""
        cells = self.rows.pop(row, None)
        if not cells:
            return None
        width = max(cells) + 1
        return "\t".join([str(row), *(cells.get(i, "") for i in range(width))])


@dataclass
class _CellState:
    col: int
    kind: str
    value: str = ""
    inline: list[str] = field(default_factory=list)


def _cell_value(cell: _CellState, shared: list[str]) -> str:
    if cell.kind == "s":
        if not cell.value.strip():
            return ""
        try:
            idx = int(cell.value)
        except ValueError as e:
            msg = f"invalid shared string index {cell.value!r}"
            raise ExtractionError(message=msg) from e
        if not 0 <= idx < len(shared):
            msg = f"shared string index {idx} out of range ({len(shared)} entries)"
            raise ExtractionError(message=msg)
        return shared[idx]
    if cell.kind == "b":
        return "TRUE" if cell.value.strip() == "1" else "FALSE"
    if cell.kind == "inlineStr":
        return "".join(cell.inline)
    return cell.value


def iter_sheet_lines(sheet_xml: Path, shared: list[str]) -> Iterator[str]:
    """Stream a worksheet part, yielding one tab-separated line per populated row.

    Args:
        sheet_xml (Path): the worksheet part
        shared (list[str]): the shared-strings table

    Raises:
        ExtractionError: on malformed XML or a bad shared-string reference

    Yields:
        str: `<row-number>\\t<col0>\\t<col1>...` lines
    """
    grid = SheetGrid()
    row_num = 0
    next_col = 0
    cell: _CellState | None = None
    try:
        with sheet_xml.open("rb") as fh:
            for event, elem in ET.iterparse(fh, events=("start", "end")):  # noqa: S314
                name = local_name(elem.tag)
                if event == "start":
                    if name == "row":
                        r = elem.get("r", "")
                        row_num = int(r) if r.isdigit() else row_num + 1
                        next_col = 0
                    elif name == "c":
                        col = column_index(elem.get("r", ""))
                        cell = _CellState(col=col if col >= 0 else next_col, kind=elem.get("t", ""))
                    continue
                if cell is not None and name == "v":
                    cell.value = elem.text or ""
                elif cell is not None and name == "t":
                    cell.inline.append(elem.text or "")
                elif cell is not None and name == "c":
                    value = _cell_value(cell, shared)
                    if value:
                        grid.set(row_num, cell.col, value)
                    next_col = cell.col + 1
                    cell = None
                elif name == "row":
                    line = grid.pop_line(row_num)
                    elem.clear()
                    if line is not None:
                        yield line
    except ET.ParseError as e:
        msg = f"malformed XML in {sheet_xml.name}: {e}"
        raise ExtractionError(message=msg) from e
    logger.debug("sheet parsed", part=sheet_xml.name, rows=row_num, max_col=grid.max_col)


def sheet_text(name: str, sheet_xml: Path, shared: list[str], max_chars: int) -> str:
    """Render one sheet, stopping row emission once it exceeds `max_chars`."""
    if not sheet_xml.is_file():
        msg = f"missing worksheet part {sheet_xml.name}"
        raise ExtractionError(message=msg)
    lines = [f"SHEET: {name}"]
    length = len(lines[0])
    for line in iter_sheet_lines(sheet_xml, shared):
        lines.append(line)
        length += 1 + len(line)
        if max_chars and length > max_chars:
            return truncate_text("\n".join(lines), max_chars)
    return "\n".join(lines)


def docx_package_text(root: Path) -> str:
    """Text of an unpacked DOCX package."""
    return docx_text(_require_part(root, DOCX_DOCUMENT))


def xlsx_package_text(root: Path, max_chars: int) -> str:
    """Tab-separated text of every sheet of an unpacked XLSX package.

    Each sheet is checked against `max_chars` on its own, then the running total
    is; an over-budget total stops processing further sheets. A sheet that fails
    carries its own error line and the remaining sheets are still read.

    Args:
        root (Path): the unpacked package
        max_chars (int): character budget, 0 for none

    Raises:
        ExtractionError: if the package has no worksheets or its shared strings are malformed

    Returns:
        str: the sheets, each introduced by a `SHEET: <name>` line
    """
    shared = read_shared_strings(root / XLSX_SHARED_STRINGS)
    sheets = workbook_sheets(root)
    if not sheets:
        msg = "no worksheets found"
        raise ExtractionError(message=msg)

    chunks: list[str] = []
    for name, part in sheets:
        try:
            chunks.append(sheet_text(name, part, shared, max_chars))
        except (ExtractionError, OSError) as e:
            logger.warning("Sheet %s unreadable: %s", name, e)
            chunks.append(f"SHEET: {name}\n[EXTRACTION ERROR: {e}]")
        joined = "\n\n".join(chunks)
        if max_chars and len(joined) > max_chars:
            return truncate_text(joined, max_chars)
    return "\n\n".join(chunks)
