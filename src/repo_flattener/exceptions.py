from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class FlattenerError(Exception):
    """Base exception for errors in the repo_flattener package."""


@dataclass(frozen=True)
class RootPathError(FlattenerError):
    """Raised when the report root is missing, absent from disk or not a directory."""

    root: str
    message: str = "Root directory not found."

    def __str__(self) -> str:
        return f"{self.message} {self.root}".strip()


@dataclass(frozen=True)
class ToolStartError(FlattenerError):
    """Raised when an external executable cannot be started."""

    command: str
    reason: str

    def __str__(self) -> str:
        return f"could not start `{self.command}`: {self.reason}"


@dataclass(frozen=True)
class ToolCommandError(FlattenerError):
    """Raised when an external executable exits with a non-zero status."""

    command: str
    returncode: int
    output: str

    def __str__(self) -> str:
        tail = self.output.strip().splitlines()[-1:] or [""]
        return f"`{self.command}` exited with code {self.returncode} {tail[0]}".strip()


@dataclass(frozen=True)
class ToolNotFoundError(FlattenerError):
    """Raised when a required external executable cannot be located."""

    tool: str
    searched: tuple[Path, ...] = ()

    def __str__(self) -> str:
        where = ", ".join(p.as_posix() for p in self.searched)
        if not where:
            return f"{self.tool} not found on PATH"
        return f"{self.tool} not found (searched {where} and PATH)"


@dataclass(frozen=True)
class ExtractionError(FlattenerError):
    """Raised when a document container or one of its XML parts cannot be read."""

    message: str

    def __str__(self) -> str:
        return self.message
