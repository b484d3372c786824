from pathlib import Path

import pytest

from repo_flattener import cli
from repo_flattener.config import TRUNCATION_MARKER


def test_end_to_end_markdown_export(tmp_path: Path) -> None:
    repo = tmp_path / "proj"
    (repo / "node_modules").mkdir(parents=True)
    (repo / "node_modules" / "x.txt").write_text("vendored", encoding="utf-8")
    (repo / "a.txt").write_text("hello", encoding="utf-8")

    output = tmp_path / "export.md"
    exit_code = cli.main([str(repo), "--output", str(output)])

    assert exit_code == 0
    text = output.read_text(encoding="utf-8-sig")
    assert text.count("----- BEGIN FILE:") == 1
    assert "```text\n----- BEGIN FILE: a.txt [5 bytes] ----\nhello\n----- END FILE:   a.txt ----\n```" in text
    assert "node_modules" not in text
    assert "vendored" not in text


def test_end_to_end_workbook_grid(tmp_path: Path, people_xlsx: Path) -> None:
    output = tmp_path / "export.md"

    exit_code = cli.main([str(people_xlsx.parent), "--include-ext", "xlsx", "--output", str(output)])

    assert exit_code == 0
    text = output.read_text(encoding="utf-8-sig")
    assert "SHEET: People\n1\tName\tAge\n2\tBob\t30" in text


def test_end_to_end_output_budget(tmp_path: Path) -> None:
    repo = tmp_path / "proj"
    repo.mkdir()
    (repo / "long.txt").write_text("q" * 100, encoding="utf-8")

    output = tmp_path / "export.md"
    exit_code = cli.main([str(repo), "--max-out-chars", "10", "--output", str(output)])

    assert exit_code == 0
    lines = output.read_text(encoding="utf-8-sig").split("\n")
    begin = lines.index("----- BEGIN FILE: long.txt [100 bytes] ----")
    end = lines.index("----- END FILE:   long.txt ----")
    body = "\n".join(lines[begin + 1 : end])
    assert len(body) <= 10
    assert body.endswith(TRUNCATION_MARKER)


def test_end_to_end_missing_root(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    output = tmp_path / "export.md"

    exit_code = cli.main([str(tmp_path / "nowhere"), "--output", str(output)])

    assert exit_code == 1
    assert not output.exists()
    assert "error: Root directory not found." in capsys.readouterr().err
