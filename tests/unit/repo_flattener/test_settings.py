from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from repo_flattener.config import (
    DEFAULT_EXCLUDE_DIRS,
    DEFAULT_INCLUDE_EXT,
    DEFAULT_MAX_BYTES,
    NoBomEncoding,
    ReportMode,
    TreeMode,
)
from repo_flattener.settings import Options, build_options, load_options_file, options_from_env

if TYPE_CHECKING:
    from pathlib import Path


@pytest.mark.unit
def test_options_defaults() -> None:
    options = Options()

    assert options.root == ""
    assert options.include_ext == frozenset(DEFAULT_INCLUDE_EXT)
    assert options.exclude_dir_names == frozenset(DEFAULT_EXCLUDE_DIRS)
    assert options.max_bytes == DEFAULT_MAX_BYTES
    assert options.tree_only is False
    assert options.use_external_tree is False
    assert options.no_bom_encoding is NoBomEncoding.AUTO


@pytest.mark.unit
def test_extensions_are_normalized() -> None:
    options = Options(include_ext=[" PY", ".Md", "txt,.CSV", ""])

    assert options.include_ext == frozenset({".py", ".md", ".txt", ".csv"})
    assert all(ext.startswith(".") for ext in options.include_ext)


@pytest.mark.unit
def test_exclude_dirs_are_normalized() -> None:
    options = Options(exclude_dir_names=["  Node_Modules ", ".GIT"])

    assert options.exclude_dir_names == frozenset({"node_modules", ".git"})


@pytest.mark.unit
def test_empty_sets_fall_back_to_defaults() -> None:
    options = Options(include_ext=[], exclude_dir_names=" , ")

    assert options.include_ext == frozenset(DEFAULT_INCLUDE_EXT)
    assert options.exclude_dir_names == frozenset(DEFAULT_EXCLUDE_DIRS)


@pytest.mark.unit
def test_limits_are_validated() -> None:
    with pytest.raises(ValidationError):
        Options(max_bytes=0)
    with pytest.raises(ValidationError):
        Options(max_out_chars=-1)
    assert Options(max_out_chars=0).max_out_chars == 0


@pytest.mark.unit
def test_options_are_immutable() -> None:
    options = Options()

    with pytest.raises(ValidationError):
        options.max_bytes = 5  # type: ignore[misc]


@pytest.mark.unit
def test_load_options_file_accepts_dashed_keys_and_flags(tmp_path: Path) -> None:
    cfg = tmp_path / "opts.yaml"
    cfg.write_text(
        "include-ext: [py, md]\nmax-bytes: 2048\ntree-only: true\nuse-external-tree: yes\n"
        "no-bom-encoding: force-legacy\n",
        encoding="utf-8",
    )

    values = load_options_file(cfg)
    options = Options(**values)

    assert options.include_ext == frozenset({".py", ".md"})
    assert options.max_bytes == 2048
    assert options.report_mode is ReportMode.TREE
    assert options.tree_mode is TreeMode.EXTERNAL
    assert options.no_bom_encoding is NoBomEncoding.FORCE_LEGACY


@pytest.mark.unit
def test_load_options_file_rejects_non_mapping(tmp_path: Path) -> None:
    cfg = tmp_path / "opts.yaml"
    cfg.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ValueError, match="expected a mapping"):
        load_options_file(cfg)


@pytest.mark.unit
def test_options_from_env_reads_prefixed_variables() -> None:
    env = {"REPO_FLATTENER_MAX_OUT_CHARS": "123", "REPO_FLATTENER_TREE_ONLY": "1", "OTHER": "x", "REPO_FLATTENER_NOPE": "1"}

    values = options_from_env(env)

    assert values == {"max_out_chars": "123", "report_mode": ReportMode.TREE}


@pytest.mark.unit
def test_build_options_precedence(tmp_path: Path) -> None:
    cfg = tmp_path / "opts.yaml"
    cfg.write_text("max-bytes: 10\nmax-out-chars: 20\n", encoding="utf-8")
    env = {"REPO_FLATTENER_MAX_BYTES": "1", "REPO_FLATTENER_MAX_OUT_CHARS": "2", "REPO_FLATTENER_LEGACY_ENCODING": "cp1251"}

    options = build_options({"max_out_chars": 30, "max_bytes": None}, config_file=cfg, environ=env)

    assert options.max_bytes == 10
    assert options.max_out_chars == 30
    assert options.legacy_encoding == "cp1251"
