from __future__ import annotations

import zipfile
from typing import TYPE_CHECKING
from xml.sax.saxutils import escape

import pytest

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

MAIN_NS = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
REL_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
PKG_REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"


def sheet_xml(rows: Sequence[str]) -> str:
    return f'<?xml version="1.0" encoding="UTF-8"?><worksheet xmlns="{MAIN_NS}"><sheetData>{"".join(rows)}</sheetData></worksheet>'


def write_xlsx(
    path: Path,
    sheets: Sequence[tuple[str, str]],
    shared: Sequence[str] | None = None,
    *,
    workbook: bool = True,
) -> Path:
    """Write a minimal workbook package: (sheet name, worksheet XML) pairs in order."""
    with zipfile.ZipFile(path, "w") as zf:
        if shared is not None:
            items = "".join(f"<si><t>{escape(s)}</t></si>" for s in shared)
            zf.writestr("xl/sharedStrings.xml", f'<sst xmlns="{MAIN_NS}" count="{len(shared)}">{items}</sst>')
        rels = []
        decl = []
        for i, (name, xml) in enumerate(sheets, start=1):
            zf.writestr(f"xl/worksheets/sheet{i}.xml", xml)
            rels.append(f'<Relationship Id="rId{i}" Type="{REL_NS}/worksheet" Target="worksheets/sheet{i}.xml"/>')
            decl.append(f'<sheet name="{escape(name)}" sheetId="{i}" r:id="rId{i}"/>')
        if workbook:
            zf.writestr(
                "xl/workbook.xml",
                f'<workbook xmlns="{MAIN_NS}" xmlns:r="{REL_NS}"><sheets>{"".join(decl)}</sheets></workbook>',
            )
            zf.writestr("xl/_rels/workbook.xml.rels", f'<Relationships xmlns="{PKG_REL_NS}">{"".join(rels)}</Relationships>')
    return path


def write_docx(path: Path, body: str) -> Path:
    """Write a minimal Word package whose `w:body` content is `body`."""
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr(
            "word/document.xml",
            f'<?xml version="1.0" encoding="UTF-8"?><w:document xmlns:w="{W_NS}"><w:body>{body}</w:body></w:document>',
        )
    return path


def write_deflated_docx(path: Path, paragraphs: int = 200) -> Path:
    """Write a Word package whose document part is DEFLATE-compressed."""
    body = "<w:p><w:r><w:t>deflated text</w:t></w:r></w:p>" * paragraphs
    with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(
            "word/document.xml",
            f'<?xml version="1.0" encoding="UTF-8"?><w:document xmlns:w="{W_NS}"><w:body>{body}</w:body></w:document>',
        )
    return path


def _member_data_span(raw: bytes, info: zipfile.ZipInfo) -> tuple[int, int]:
    off = info.header_offset
    name_len = int.from_bytes(raw[off + 26 : off + 28], "little")
    extra_len = int.from_bytes(raw[off + 28 : off + 30], "little")
    start = off + 30 + name_len + extra_len
    return start, start + info.compress_size


def corrupt_member_data(path: Path) -> Path:
    """Flip every compressed byte of the package's first member."""
    with zipfile.ZipFile(path) as zf:
        info = zf.infolist()[0]
    raw = bytearray(path.read_bytes())
    start, end = _member_data_span(bytes(raw), info)
    for i in range(start, end):
        raw[i] ^= 0xFF
    path.write_bytes(bytes(raw))
    return path


def set_compression_method(path: Path, method: int) -> Path:
    """Rewrite the compression method of the package's first member in both headers."""
    with zipfile.ZipFile(path) as zf:
        info = zf.infolist()[0]
    raw = bytearray(path.read_bytes())
    local = info.header_offset + 8
    central = raw.index(b"PK\x01\x02") + 10
    for pos in (local, central):
        raw[pos : pos + 2] = method.to_bytes(2, "little")
    path.write_bytes(bytes(raw))
    return path


@pytest.fixture
def people_xlsx(tmp_path: Path) -> Path:
    rows = [
        '<row r="1"><c r="A1" t="s"><v>0</v></c><c r="B1" t="s"><v>1</v></c></row>',
        '<row r="2"><c r="A2" t="s"><v>2</v></c><c r="B2"><v>30</v></c></row>',
    ]
    return write_xlsx(tmp_path / "people.xlsx", [("People", sheet_xml(rows))], shared=["Name", "Age", "Bob"])


@pytest.fixture
def xlsx_writer() -> Callable[..., Path]:
    return write_xlsx


@pytest.fixture
def docx_writer() -> Callable[[Path, str], Path]:
    return write_docx


@pytest.fixture
def sheet_builder() -> Callable[[Sequence[str]], str]:
    return sheet_xml


@pytest.fixture
def corrupt_deflated_docx(tmp_path: Path) -> Path:
    """A Word package whose DEFLATE stream is garbage."""
    return corrupt_member_data(write_deflated_docx(tmp_path / "corrupt.docx"))


@pytest.fixture
def deflate64_docx(tmp_path: Path) -> Path:
    """A Word package declaring compression method 9 (Deflate64), which zipfile cannot read."""
    return set_compression_method(write_deflated_docx(tmp_path / "deflate64.docx"), 9)
