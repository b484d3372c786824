from __future__ import annotations

from enum import StrEnum, auto
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

if TYPE_CHECKING:
    from collections.abc import Callable

    from repo_flattener.settings import Options
    from repo_flattener.tools import ToolRunner

    ExtractorFn = Callable[["FileEntry", Options, ToolRunner], "ExtractionResult"]


class TreeMode(StrEnum):
    """How the directory tree section is rendered."""

    EXTERNAL = auto()
    INTERNAL = auto()


class ReportMode(StrEnum):
    """Whether the report stops after the tree or carries file contents too."""

    TREE = auto()
    FULL = auto()


class NoBomEncoding(StrEnum):
    """Decoding policy for files without a byte-order mark."""

    AUTO = "auto"
    FORCE_LEGACY = "force-legacy"


class ArchiveBackend(StrEnum):
    """Who unpacks DOCX/XLSX containers into the scratch directory."""

    BUILTIN = auto()
    EXTERNAL = auto()


class ErrorKind(StrEnum):
    """Which inline marker a failed extraction is rendered with."""

    READ = auto()
    EXTRACTION = auto()


DEFAULT_INCLUDE_EXT: tuple[str, ...] = (
    ".ps1",
    ".psm1",
    ".psd1",
    ".bat",
    ".cmd",
    ".sh",
    ".txt",
    ".md",
    ".rst",
    ".json",
    ".xml",
    ".yaml",
    ".yml",
    ".toml",
    ".csv",
    ".ini",
    ".cfg",
    ".config",
    ".cs",
    ".vb",
    ".fs",
    ".cpp",
    ".hpp",
    ".c",
    ".h",
    ".py",
    ".rb",
    ".go",
    ".rs",
    ".java",
    ".ts",
    ".tsx",
    ".js",
    ".jsx",
    ".html",
    ".css",
    ".sql",
    ".docx",
    ".doc",
    ".xlsx",
    ".xlsm",
    ".xls",
    ".pdf",
)

DEFAULT_EXCLUDE_DIRS: tuple[str, ...] = (
    ".git",
    "node_modules",
    "bin",
    "obj",
    ".vs",
    ".vscode",
    ".idea",
    ".venv",
    "venv",
    "__pycache__",
    "dist",
    "build",
    ".terraform",
    ".cache",
    ".mypy_cache",
    ".ruff_cache",
    ".pytest_cache",
)

DEFAULT_MAX_BYTES = 1024 * 1024
DEFAULT_MAX_OUT_CHARS = 1024 * 1024

TRUNCATION_MARKER = "\n[TRUNC]"

DOC_UNSUPPORTED_MESSAGE = (
    "[.doc (legacy Word binary format) is not supported: convert the file to .docx to include its text]"
)
XLS_UNSUPPORTED_MESSAGE = (
    "[.xls (legacy Excel binary format) is not supported: convert the file to .xlsx to include its data]"
)

EXTRACTORS: dict[str, ExtractorFn] = {}


def extension_of(name: str) -> str:
    """Return the dot-prefixed, lower-cased substring after the last dot of `name`.

    Dotfiles count as having an extension (".gitignore" -> ".gitignore"), names
    without a dot or ending with one have none.

    Args:
        name (str): the base name of a file

    Returns:
        str: the extension, or "" when the name has none
    """
    idx = name.rfind(".")
    if idx < 0 or idx == len(name) - 1:
        return ""
    return name[idx:].lower()


class FileEntry(BaseModel):
    """Filesystem metadata for one directory entry, read fresh at scan time.

    Attributes:
        path: Absolute path of the entry.
        size: Size in bytes (0 for directories).
        is_dir: Whether the entry is a directory (links are followed for this flag).
        is_symlink: Whether the entry itself is a symbolic link or reparse point.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    path: Path = Field(..., description="Absolute path")
    size: int = Field(default=0, ge=0, description="Size in bytes")
    is_dir: bool = Field(default=False, description="Entry is a directory")
    is_symlink: bool = Field(default=False, description="Entry is a symbolic link")

    @computed_field
    @property
    def name(self) -> str:
        """Base name of the entry."""
        return self.path.name

    @computed_field
    @property
    def extension(self) -> str:
        """Dot-prefixed lower-cased extension, "" when absent."""
        return "" if self.is_dir else extension_of(self.path.name)


class ExtractionResult(BaseModel):
    """Outcome of reading one file: decoded text or an error message, never both."""

    model_config = ConfigDict(frozen=True)

    text: str | None = None
    error: str | None = None
    error_kind: ErrorKind = ErrorKind.READ

    @model_validator(mode="after")
    def _exactly_one(self) -> ExtractionResult:
        if (self.text is None) == (self.error is None):
            msg = "ExtractionResult needs exactly one of `text` or `error`"
            raise ValueError(msg)
        return self

    @classmethod
    def ok(cls, text: str) -> ExtractionResult:
        return cls(text=text)

    @classmethod
    def failed(cls, error: str, kind: ErrorKind = ErrorKind.EXTRACTION) -> ExtractionResult:
        return cls(error=error or "unknown error", error_kind=kind)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def render(self) -> str:
        """Text to place inside the file block."""
        if self.error is None:
            return self.text or ""
        label = "READ ERROR" if self.error_kind is ErrorKind.READ else "EXTRACTION ERROR"
        return f"[{label}: {self.error}]"


def register_extractor(
    key: str | list[str],
) -> Callable[[ExtractorFn], ExtractorFn]:
    """Decorator to register a content extractor for one or more file extensions.

    Files whose extension has no registered extractor are decoded as plain text.

    Args:
        key (str | list[str]): The extension (e.g. ".docx") or extensions the decorated
            function handles.

    Returns:
        Callable[[ExtractorFn], ExtractorFn]: A decorator that registers the given function
        in the EXTRACTORS mapping under the specified key(s) and returns the original function.
    """

    def decorator(func: ExtractorFn) -> ExtractorFn:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:  # noqa: ANN401
            return func(*args, **kwargs)

        for k in [key] if isinstance(key, str) else key:
            EXTRACTORS[k.lower()] = wrapper
        return wrapper

    return decorator
