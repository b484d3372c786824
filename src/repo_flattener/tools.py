from __future__ import annotations

import os
import subprocess  # noqa: S404
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from shutil import which
from typing import TYPE_CHECKING, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from repo_flattener.encoding import decode_bytes
from repo_flattener.exceptions import ToolCommandError, ToolNotFoundError, ToolStartError
from repo_flattener.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence


class ToolResult(BaseModel):
    """Merged output and exit status of one external process."""

    model_config = ConfigDict(frozen=True)

    command: tuple[str, ...] = Field(..., description="Argument vector")
    exit_code: int = Field(..., description="Process exit status")
    output: str = Field(default="", description="Decoded stdout + stderr")

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def check(self) -> ToolResult:
        """Return self, or raise ToolCommandError for a non-zero exit status."""
        if not self.ok:
            raise ToolCommandError(command=" ".join(self.command), returncode=self.exit_code, output=self.output)
        return self


class ToolRunner(ABC):
    """Run external executables with merged output and a per-platform decoding strategy.

    Subclasses provide the platform's command lines for the tree renderer and the
    archive expander, and how raw process output is decoded. Calls block until the
    process exits; there is no timeout.
    """

    exe_suffix: ClassVar[str] = ""

    def decode_output(self, raw: bytes) -> str:
        return raw.decode("utf-8", errors="replace")

    def run(self, args: Sequence[str], *, cwd: str | Path | None = None) -> ToolResult:
        """Run `args` and capture stdout and stderr as one stream.

        Args:
            args (Sequence[str]): the argument vector, executable first
            cwd (str | Path | None): working directory for the process

        Raises:
            ToolStartError: if the executable cannot be started

        Returns:
            ToolResult: the exit status and decoded output
        """
        command = tuple(str(a) for a in args)
        logger.debug("running external tool", command=command)
        try:
            proc = subprocess.run(  # noqa: S603
                command,
                cwd=None if cwd is None else str(cwd),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                check=False,
            )
        except OSError as e:
            raise ToolStartError(command=command[0], reason=e.strerror or str(e)) from e
        result = ToolResult(command=command, exit_code=proc.returncode, output=self.decode_output(proc.stdout))
        if not result.ok:
            logger.warning("external tool failed", command=command, exit_code=result.exit_code)
        return result

    @abstractmethod
    def tree_command(self, root: Path, exclude_dir_names: Iterable[str]) -> list[str]: ...

    @abstractmethod
    def expand_archive_command(self, archive: Path, destination: Path) -> list[str]: ...

    def pdftotext_command(self, exe: Path, pdf: Path) -> list[str]:
        return [str(exe), "-layout", "-enc", "UTF-8", "-q", str(pdf), "-"]


class PosixToolRunner(ToolRunner):
    """Linux / macOS: tools print UTF-8."""

    def tree_command(self, root: Path, exclude_dir_names: Iterable[str]) -> list[str]:
        cmd = ["tree", "-a", "--noreport", "--charset=utf-8"]
        names = sorted(exclude_dir_names)
        if names:
            cmd.extend(["-I", "|".join(names), "--ignore-case"])
        cmd.append(str(root))
        return cmd

    def expand_archive_command(self, archive: Path, destination: Path) -> list[str]:
        return ["unzip", "-qq", "-o", str(archive), "-d", str(destination)]


class WindowsToolRunner(ToolRunner):
    """Windows: console output may be UTF-8 (after `chcp 65001`) or the OEM/ANSI code page."""

    exe_suffix: ClassVar[str] = ".exe"

    def decode_output(self, raw: bytes) -> str:
        return decode_bytes(raw)

    def tree_command(self, root: Path, exclude_dir_names: Iterable[str]) -> list[str]:
        # one token per word, so list2cmdline quotes the path alone
        native = os.path.normpath(str(root))
        return ["cmd", "/c", "chcp", "65001>nul", "&", "tree", native, "/F", "/A"]

    def expand_archive_command(self, archive: Path, destination: Path) -> list[str]:
        script = (
            f"Expand-Archive -LiteralPath '{_ps_quote(archive)}' "
            f"-DestinationPath '{_ps_quote(destination)}' -Force"
        )
        return ["powershell", "-NoProfile", "-NonInteractive", "-Command", script]


def _ps_quote(path: Path) -> str:
    return str(path).replace("'", "''")


def runner_for_platform(platform: str | None = None) -> ToolRunner:
    """Pick the tool runner for `platform` (`os.name` values, current platform by default)."""
    name = os.name if platform is None else platform
    return WindowsToolRunner() if name == "nt" else PosixToolRunner()


def program_dir() -> Path:
    """Directory of the invoking program (the script or frozen executable)."""
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    argv0 = sys.argv[0] if sys.argv and sys.argv[0] else ""
    return Path(argv0).resolve().parent if argv0 else Path.cwd()


def pdftotext_candidates(exe_suffix: str = "", base: Path | None = None) -> list[Path]:
    """Locations probed for `pdftotext`, in order, before the search path."""
    base = program_dir() if base is None else base
    name = "pdftotext" + exe_suffix
    return [
        base / name,
        base / "poppler" / "bin" / name,
        base / "tools" / "poppler" / "bin" / name,
    ]


def find_pdftotext(explicit: str = "", runner: ToolRunner | None = None, base: Path | None = None) -> Path:
    """Locate the `pdftotext` executable.

    Args:
        explicit (str): a configured path, used as-is when it exists
        runner (ToolRunner | None): the platform runner, for the executable suffix
        base (Path | None): directory of the invoking program, detected by default

    Raises:
        ToolNotFoundError: if no candidate exists and the search path has none

    Returns:
        Path: the executable to run
    """
    suffix = (runner or runner_for_platform()).exe_suffix
    candidates = ([Path(explicit)] if explicit else []) + pdftotext_candidates(suffix, base)
    for cand in candidates:
        if cand.is_file():
            return cand
    found = which("pdftotext")
    if found:
        return Path(found)
    raise ToolNotFoundError(tool="pdftotext", searched=tuple(candidates))
