from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from repo_flattener.config import (
    DEFAULT_EXCLUDE_DIRS,
    DEFAULT_INCLUDE_EXT,
    DEFAULT_MAX_BYTES,
    DEFAULT_MAX_OUT_CHARS,
    ArchiveBackend,
    NoBomEncoding,
    ReportMode,
    TreeMode,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

ENV_FILE = find_dotenv(usecwd=True)
ENV_PREFIX = "REPO_FLATTENER_"


def _split_list(value: Any) -> list[str]:  # noqa: ANN401
    if value is None:
        return []
    if isinstance(value, str):
        return value.split(",")
    out: list[str] = []
    for item in value:
        out.extend(str(item).split(","))
    return out


def normalize_extensions(values: Iterable[str] | str | None) -> frozenset[str]:
    """Normalize user-supplied extensions to a set of lower-cased, dot-prefixed entries.

    Args:
        values (Iterable[str] | str | None): extensions, possibly comma separated,
            with or without their leading dot

    Returns:
        frozenset[str]: the normalized set, or the built-in defaults when nothing usable was given
    """
    out: set[str] = set()
    for raw in _split_list(values):
        ext = raw.strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = "." + ext
        out.add(ext)
    return frozenset(out) if out else frozenset(DEFAULT_INCLUDE_EXT)


def normalize_dir_names(values: Iterable[str] | str | None) -> frozenset[str]:
    """Normalize excluded directory base names (trimmed, lower-cased).

    Args:
        values (Iterable[str] | str | None): directory names, possibly comma separated

    Returns:
        frozenset[str]: the normalized set, or the built-in defaults when nothing usable was given
    """
    out = {raw.strip().lower() for raw in _split_list(values) if raw.strip()}
    return frozenset(out) if out else frozenset(DEFAULT_EXCLUDE_DIRS)


class Options(BaseModel):
    """Immutable configuration for one report run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    root: str = Field(default="", description="Directory to report on.")
    include_ext: frozenset[str] = Field(
        default_factory=lambda: frozenset(DEFAULT_INCLUDE_EXT),
        description="Extensions whose content is included.",
    )
    exclude_dir_names: frozenset[str] = Field(
        default_factory=lambda: frozenset(DEFAULT_EXCLUDE_DIRS),
        description="Directory base names excluded at any depth.",
    )
    max_bytes: int = Field(
        default=DEFAULT_MAX_BYTES,
        gt=0,
        description="Files above are listed in the tree only.",
    )
    max_out_chars: int = Field(
        default=DEFAULT_MAX_OUT_CHARS,
        ge=0,
        description="Character budget per extraction, 0 disables truncation.",
    )
    tree_mode: TreeMode = Field(default=TreeMode.INTERNAL, description="Tree renderer.")
    report_mode: ReportMode = Field(default=ReportMode.FULL, description="Tree only or tree + contents.")
    no_bom_encoding: NoBomEncoding = Field(
        default=NoBomEncoding.AUTO,
        description="Decoding of files without BOM.",
    )
    archive_backend: ArchiveBackend = Field(
        default=ArchiveBackend.BUILTIN,
        description="Who unpacks DOCX/XLSX containers.",
    )
    legacy_encoding: str = Field(
        default="",
        description="Legacy code page, empty for the platform preferred encoding.",
    )
    pdftotext_path: str = Field(default="", description="Explicit pdftotext executable.")

    @field_validator("include_ext", mode="before")
    @classmethod
    def _normalize_include_ext(cls, value: Any) -> frozenset[str]:  # noqa: ANN401
        return normalize_extensions(value)

    @field_validator("exclude_dir_names", mode="before")
    @classmethod
    def _normalize_exclude_dirs(cls, value: Any) -> frozenset[str]:  # noqa: ANN401
        return normalize_dir_names(value)

    @field_validator("root", mode="before")
    @classmethod
    def _root_as_str(cls, value: Any) -> str:  # noqa: ANN401
        return "" if value is None else str(value)

    @property
    def tree_only(self) -> bool:
        return self.report_mode is ReportMode.TREE

    @property
    def use_external_tree(self) -> bool:
        return self.tree_mode is TreeMode.EXTERNAL


def load_options_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML options file into a dict of `Options` fields.

    Keys may use dashes or underscores (`max-bytes` and `max_bytes` are the same).

    Args:
        path (str | Path): the YAML file to read

    Raises:
        ValueError: if the document is not a mapping

    Returns:
        dict[str, Any]: the options found in the file
    """
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        msg = f"{path}: expected a mapping of options, got {type(data).__name__}"
        raise ValueError(msg)
    return translate_flags({str(k).replace("-", "_"): v for k, v in data.items()})


def _truthy(value: Any) -> bool:  # noqa: ANN401
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def translate_flags(values: dict[str, Any]) -> dict[str, Any]:
    """Turn the boolean spellings `tree_only` / `use_external_tree` into their enum fields."""
    out = dict(values)
    if "tree_only" in out:
        out["report_mode"] = ReportMode.TREE if _truthy(out.pop("tree_only")) else ReportMode.FULL
    if "use_external_tree" in out:
        out["tree_mode"] = TreeMode.EXTERNAL if _truthy(out.pop("use_external_tree")) else TreeMode.INTERNAL
    return out


def options_from_env(environ: Mapping[str, str] | None = None, *, dotenv: bool = True) -> dict[str, Any]:
    """Collect `REPO_FLATTENER_*` variables as `Options` fields.

    Args:
        environ (Mapping[str, str] | None): the environment to read, `os.environ` by default
        dotenv (bool): load the nearest `.env` file into the process environment first

    Returns:
        dict[str, Any]: option values keyed by field name
    """
    if environ is None:
        if dotenv and ENV_FILE:
            load_dotenv(ENV_FILE, override=False)
        environ = os.environ
    fields = set(Options.model_fields)
    out: dict[str, Any] = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = key.removeprefix(ENV_PREFIX).lower()
        if (name in fields or name in {"tree_only", "use_external_tree"}) and value != "":
            out[name] = value
    return translate_flags(out)


def build_options(
    cli_values: Mapping[str, Any],
    *,
    config_file: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Options:
    """Merge CLI values over the options file, the environment and the defaults.

    `None` values in `cli_values` mean "not given on the command line".

    Args:
        cli_values (Mapping[str, Any]): values parsed from the command line
        config_file (str | Path | None): optional YAML options file
        environ (Mapping[str, str] | None): environment to read, `os.environ` by default

    Returns:
        Options: the validated, normalized options
    """
    merged: dict[str, Any] = {}
    merged.update(options_from_env(environ))
    if config_file:
        merged.update(load_options_file(config_file))
    merged.update({k: v for k, v in cli_values.items() if v is not None})
    return Options(**merged)
