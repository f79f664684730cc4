"""Sandboxed file access - ensures every caller-supplied path stays within its namespace root."""

import os
from pathlib import Path

from filedock.core.errors import InvalidArgumentError, PathInvalidError

if os.name == "nt":
    INVALID_PATH_CHARS = frozenset(chr(code) for code in range(32)) | frozenset('<>"|?*')
else:
    INVALID_PATH_CHARS = frozenset("\0")

# ':' is refused in names too, otherwise an uploaded "a:b.txt" could never be addressed again
INVALID_NAME_CHARS = INVALID_PATH_CHARS | frozenset("/\\:")


def resolve_namespace_root(root: Path, subdir: str) -> Path:
    """Canonical absolute path of a namespace subdirectory under the configured root."""
    if not subdir or not subdir.strip():
        raise ValueError("Namespace subdirectory name is not configured")
    if any(ch in INVALID_NAME_CHARS for ch in subdir) or subdir in (".", ".."):
        raise ValueError(f"Invalid namespace subdirectory name: {subdir!r}")
    return (Path(root).resolve() / subdir).resolve()


def _checked_segments(relative_path: str) -> list[str]:
    """Lexical checks, no filesystem access. Returns the non-empty segments."""
    if any(ch in INVALID_PATH_CHARS for ch in relative_path):
        raise PathInvalidError("Path contains invalid characters")
    if ":" in relative_path:
        raise PathInvalidError("Path contains a drive indicator")
    if relative_path.startswith(("/", "\\")) or Path(relative_path).is_absolute():
        raise PathInvalidError("Absolute paths are not allowed")

    segments = relative_path.replace("\\", "/").split("/")
    if ".." in segments:
        raise PathInvalidError("Path traversal is not allowed")

    return [s for s in segments if s and s != "."]


def resolve_sandboxed_path(root: Path, relative_path: str | None) -> Path:
    """Resolve a relative path within root. Raises PathInvalidError if it escapes.

    Both slash styles are accepted. All lexical checks run before the
    filesystem is touched; the final containment check runs on the
    symlink-resolved path so a link pointing outside the root is refused too.
    """
    segments = _checked_segments(relative_path or "")

    base = root.resolve()
    resolved = base.joinpath(*segments).resolve()

    if not resolved.is_relative_to(base):
        raise PathInvalidError(f"Path '{relative_path}' escapes the sandbox")

    return resolved


def resolve_sandboxed_entry(root: Path, relative_path: str | None) -> Path:
    """Like resolve_sandboxed_path, but the last segment is not followed.

    Used by operations that act on the directory entry itself (delete,
    rename, move): for a symlink that is the link, not its target. Only the
    parent directory has to resolve inside root.
    """
    segments = _checked_segments(relative_path or "")

    base = root.resolve()
    if not segments:
        return base

    parent = base.joinpath(*segments[:-1]).resolve()
    if not parent.is_relative_to(base):
        raise PathInvalidError(f"Path '{relative_path}' escapes the sandbox")

    return parent / segments[-1]


def validate_name(name: str | None, label: str = "Name") -> str:
    """Check a single leaf name (folder, file or rename target) and return it."""
    if name is None or not name.strip():
        raise InvalidArgumentError(f"{label} is required")
    if name in (".", ".."):
        raise InvalidArgumentError(f"{label} '{name}' is not allowed")
    if any(ch in INVALID_NAME_CHARS for ch in name):
        raise InvalidArgumentError(f"{label} contains invalid characters")
    return name


def to_relative(root: Path, full_path: Path) -> str:
    """Slash-joined path of full_path relative to root, '' for the root itself."""
    relative = full_path.relative_to(root).as_posix()
    return "" if relative == "." else relative
