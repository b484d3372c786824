from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from repo_flattener.config import TRUNCATION_MARKER, FileEntry
from repo_flattener.exceptions import ToolCommandError, ToolStartError
from repo_flattener.logging import logger

if TYPE_CHECKING:
    from repo_flattener.settings import Options
    from repo_flattener.tools import ToolRunner


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return str(path.relative_to(root)).replace("\\", "/")
    except ValueError:
        return str(path)


class PathFilter:
    """Exclusion and inclusion predicates over filesystem metadata.

    Args:
        options (Options): provides the excluded directory names, the included
            extensions and the per-file size ceiling
    """

    def __init__(self, options: Options) -> None:
        self.exclude_dir_names = options.exclude_dir_names
        self.include_ext = options.include_ext
        self.max_bytes = options.max_bytes

    def is_excluded_name(self, name: str) -> bool:
        return bool(name) and name.lower() in self.exclude_dir_names

    def is_under_excluded(self, entry: FileEntry) -> bool:
        """Check whether the entry lies inside an excluded directory, at any depth.

        The walk starts at the entry itself for directories and at the containing
        directory for files, then climbs until the parent stops changing.

        Args:
            entry (FileEntry): the entry to test

        Returns:
            bool: True if one of the visited directories has an excluded base name
        """
        current = entry.path if entry.is_dir else entry.path.parent
        while True:
            if self.is_excluded_name(current.name):
                return True
            parent = current.parent
            if parent == current:
                return False
            current = parent

    def should_include_file(self, entry: FileEntry) -> bool:
        """Check whether a file's content goes into the report.

        Args:
            entry (FileEntry): the entry to test

        Returns:
            bool: True for regular files within the size ceiling whose extension is included
        """
        if entry.is_dir or entry.is_symlink:
            return False
        if entry.size > self.max_bytes:
            return False
        return bool(entry.extension) and entry.extension in self.include_ext


def list_entries(directory: Path) -> list[FileEntry]:
    """List one directory level, hidden entries included, without following links.

    Unreadable directories and entries that vanish mid-scan are logged and skipped.

    Args:
        directory (Path): the directory to list

    Returns:
        list[FileEntry]: the entries, in filesystem order
    """
    out: list[FileEntry] = []
    try:
        with os.scandir(directory) as it:
            for de in it:
                try:
                    is_symlink = de.is_symlink() or bool(getattr(de, "is_junction", lambda: False)())
                    is_dir = de.is_dir()
                    size = 0 if is_dir else de.stat(follow_symlinks=False).st_size
                except OSError as e:
                    logger.warning("Skipping %s: %s", de.path, e)
                    continue
                out.append(FileEntry(path=Path(de.path), size=size, is_dir=is_dir, is_symlink=is_symlink))
    except OSError as e:
        logger.warning("Cannot list %s: %s", directory, e)
    return out


def collect_files(directory: Path, path_filter: PathFilter) -> list[FileEntry]:
    """Recursively collect the files whose content goes into the report.

    Symbolic links are skipped and a directory identity is walked at most once.
    The result is unordered, see `sort_entries`.

    Args:
        directory (Path): the directory to walk
        path_filter (PathFilter): exclusion / inclusion policy

    Returns:
        list[FileEntry]: files passing `PathFilter.should_include_file`
    """
    out: list[FileEntry] = []
    seen: set[tuple[int, int]] = set()
    stack = [directory]
    while stack:
        current = stack.pop()
        try:
            st = current.stat()
        except OSError as e:
            logger.warning("Cannot stat %s: %s", current, e)
            continue
        ident = (st.st_dev, st.st_ino)
        if ident in seen:
            continue
        seen.add(ident)
        for entry in list_entries(current):
            if entry.is_symlink or path_filter.is_under_excluded(entry):
                continue
            if entry.is_dir:
                stack.append(entry.path)
            elif path_filter.should_include_file(entry):
                out.append(entry)
    return out


def sort_entries(entries: list[FileEntry]) -> list[FileEntry]:
    """Order entries by full path, case-insensitively."""
    return sorted(entries, key=lambda e: (str(e.path).lower(), str(e.path)))


def render_tree(directory: Path, path_filter: PathFilter, indent: str = "") -> list[str]:
    """Render the directory as box-drawing tree lines (root line excluded).

    Directories come first, then files, each group sorted by name
    case-insensitively. Links are listed but never descended into.

    Args:
        directory (Path): the directory to render
        path_filter (PathFilter): entries under excluded directories are omitted
        indent (str): prefix inherited from the parent level

    Returns:
        list[str]: one line per rendered entry
    """
    entries = [e for e in list_entries(directory) if not path_filter.is_under_excluded(e)]
    entries.sort(key=lambda e: (not e.is_dir, e.name.lower(), e.name))

    lines: list[str] = []
    for idx, entry in enumerate(entries):
        last = idx == len(entries) - 1
        branch = "└── " if last else "├── "
        lines.append(indent + branch + entry.name)
        if entry.is_dir and not entry.is_symlink:
            ext = "    " if last else "│   "
            lines.extend(render_tree(entry.path, path_filter, indent + ext))
    return lines


def run_external_tree(root: Path, options: Options, runner: ToolRunner) -> str:
    """Render the tree with the platform `tree` utility.

    Args:
        root (Path): the directory to render
        options (Options): provides the excluded directory names
        runner (ToolRunner): the platform tool runner

    Raises:
        ToolStartError: if the utility cannot be started
        ToolCommandError: if it fails or prints nothing

    Returns:
        str: the utility's output, stripped
    """
    cmd = runner.tree_command(root, options.exclude_dir_names)
    result = runner.run(cmd).check()
    out = result.output.strip()
    if not out:
        raise ToolCommandError(command=" ".join(result.command), returncode=result.exit_code, output="no output")
    return out


def build_tree_lines(root: Path, options: Options, path_filter: PathFilter, runner: ToolRunner) -> tuple[list[str], str]:
    """Produce the tree section lines, preferring the external utility when configured.

    Args:
        root (Path): the report root
        options (Options): tree mode and exclusion policy
        path_filter (PathFilter): exclusion policy for the internal renderer
        runner (ToolRunner): the platform tool runner

    Returns:
        tuple[list[str], str]: the tree lines and a warning ("" when none)
    """
    warning = ""
    if options.use_external_tree:
        try:
            return run_external_tree(root, options, runner).splitlines(), ""
        except (ToolStartError, ToolCommandError) as e:
            warning = f"external tree failed, used the built-in renderer: {e}"
            logger.warning("Falling back to internal tree renderer: %s", e)
    return render_tree(root, path_filter), warning


def truncate_text(text: str, max_chars: int, marker: str = TRUNCATION_MARKER) -> str:
    """Cut `text` to at most `max_chars` characters, ending it with `marker`.

    Text already within budget is returned unchanged, so truncating twice to the
    same budget is a no-op. When the budget is smaller than the marker, only the
    tail of the marker that fits is kept.

    Args:
        text (str): the text to bound
        max_chars (int): the budget, 0 or less means unbounded
        marker (str): appended in place of the cut text

    Returns:
        str: a string of length <= `max_chars` (when bounded)
    """
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    if len(marker) >= max_chars:
        return marker[len(marker) - max_chars :]
    return text[: max_chars - len(marker)] + marker
