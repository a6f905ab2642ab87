"""File-system access scoped to a project root.

Every path handed to this module is project-relative (POSIX separators) and
is validated to stay inside the project root before it is touched.
"""

import logging
import os
from pathlib import Path

import pathspec

logger = logging.getLogger(__name__)

MAX_FILES = 5000

_SKIP_DIRS = {
    "node_modules",
    "__pycache__",
    "bin",
    "obj",
    "dist",
    "build",
    "venv",
    "target",
}


class WorkspaceViolationError(Exception):
    """Raised when an operation would escape the project root."""

    pass


def normalize_path(path: str) -> str:
    """Return *path* as a clean project-relative POSIX path."""
    cleaned = path.strip().replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned.lstrip("/")


def resolve_path(project_root: str, path: str) -> str:
    """Resolve a project-relative *path* to an absolute path inside the root.

    Raises:
        WorkspaceViolationError: If the path escapes the project root.
    """
    if os.path.isabs(path):
        raise WorkspaceViolationError(f"Absolute path not allowed: {path}")

    root = os.path.realpath(project_root)
    full_path = os.path.realpath(os.path.join(root, path))

    if full_path != root and not full_path.startswith(root + os.sep):
        raise WorkspaceViolationError(
            f"Access denied: '{path}' resolves to {full_path}, "
            f"outside the project root {root}"
        )
    return full_path


def _load_gitignore(folder: Path) -> pathspec.PathSpec | None:
    """Load .gitignore patterns from *folder*, or None if there are none."""
    gitignore_path = folder / ".gitignore"
    if not gitignore_path.is_file():
        return None
    try:
        patterns = gitignore_path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return None
    return pathspec.PathSpec.from_lines("gitwildmatch", patterns)


def _is_binary(path: Path) -> bool:
    """Check if file is binary by looking for null bytes in first 8KB."""
    try:
        with open(path, "rb") as f:
            return b"\x00" in f.read(8192)
    except OSError:
        return True  # Can't read = treat as binary


def list_project_paths(project_root: str) -> list[str]:
    """Return every indexable file of the project as sorted relative paths.

    Skips hidden files and directories, symlinks, binary files, common noise
    directories and anything matched by the root ``.gitignore``. Output is
    limited to MAX_FILES entries.
    """
    root = Path(project_root).resolve()
    gitignore = _load_gitignore(root)
    paths: list[str] = []

    for current, dirs, filenames in os.walk(root, followlinks=False):
        if len(paths) >= MAX_FILES:
            break

        rel_root = Path(current).relative_to(root)
        dirs[:] = [
            d
            for d in dirs
            if d not in _SKIP_DIRS
            and not d.startswith(".")
            and not (Path(current) / d).is_symlink()
            and not (gitignore and gitignore.match_file(f"{(rel_root / d).as_posix()}/"))
        ]

        for filename in filenames:
            if len(paths) >= MAX_FILES:
                break
            if filename.startswith("."):
                continue

            full_path = Path(current) / filename
            rel_path = (rel_root / filename).as_posix()

            if full_path.is_symlink():
                continue
            if gitignore and gitignore.match_file(rel_path):
                continue
            if _is_binary(full_path):
                continue

            paths.append(rel_path)

    return sorted(paths)


def read_file(project_root: str, path: str) -> str:
    """Read a project file as text.

    Raises:
        OSError: If the file cannot be read.
        WorkspaceViolationError: If the path escapes the project root.
    """
    full_path = resolve_path(project_root, path)
    with open(full_path, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


def write_file(project_root: str, path: str, content: str) -> None:
    """Write content to a project file, creating parent directories if needed."""
    full_path = resolve_path(project_root, path)
    os.makedirs(os.path.dirname(full_path) or ".", exist_ok=True)
    with open(full_path, "w", encoding="utf-8") as f:
        f.write(content)
    logger.info("Wrote %s (%d chars)", path, len(content))


def delete_file(project_root: str, path: str) -> None:
    """Remove a project file.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    full_path = resolve_path(project_root, path)
    os.remove(full_path)
    logger.info("Deleted %s", path)
