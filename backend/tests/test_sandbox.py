"""Tests for sandboxed path resolution."""

from unittest.mock import patch

import pytest

from filedock.core.errors import InvalidArgumentError, PathInvalidError
from filedock.core.sandbox import (
    resolve_namespace_root,
    resolve_sandboxed_entry,
    resolve_sandboxed_path,
    to_relative,
    validate_name,
)


@pytest.fixture
def root(tmp_path):
    r = tmp_path / "ns"
    r.mkdir()
    return r.resolve()


@pytest.mark.parametrize(
    "relative",
    [
        "..",
        "../outside",
        "a/../../outside",
        "a\\..\\..\\outside",
        "docs/..",
        "/etc/passwd",
        "\\windows\\system32",
        "C:\\Windows",
        "c:relative",
        "bad\0name",
    ],
)
def test_rejects_escape_attempts(root, relative):
    with pytest.raises(PathInvalidError):
        resolve_sandboxed_path(root, relative)


def test_rejection_happens_before_filesystem_access(root):
    with patch("pathlib.Path.resolve") as resolve:
        with pytest.raises(PathInvalidError):
            resolve_sandboxed_path(root, "../../etc")
        resolve.assert_not_called()


@pytest.mark.parametrize("relative", [None, "", ".", "./"])
def test_empty_path_is_the_root(root, relative):
    assert resolve_sandboxed_path(root, relative) == root


@pytest.mark.parametrize("relative", ["a", "a/b/c.txt", "a\\b\\c.txt", "./a//b/", "a/./b"])
def test_valid_paths_stay_inside_root(root, relative):
    resolved = resolve_sandboxed_path(root, relative)
    assert resolved.is_relative_to(root)
    assert resolved != root


def test_backslashes_are_separators(root):
    assert resolve_sandboxed_path(root, "a\\b") == root / "a" / "b"


def test_dotted_names_are_not_traversal(root):
    assert resolve_sandboxed_path(root, "..hidden/x..y") == root / "..hidden" / "x..y"


def test_symlink_escaping_root_is_rejected(root, tmp_path):
    outside = tmp_path / "outside"
    outside.mkdir()
    (root / "link").symlink_to(outside, target_is_directory=True)

    with pytest.raises(PathInvalidError):
        resolve_sandboxed_path(root, "link/secret.txt")


def test_symlink_inside_root_is_allowed(root):
    (root / "real").mkdir()
    (root / "alias").symlink_to(root / "real", target_is_directory=True)
    assert resolve_sandboxed_path(root, "alias") == root / "real"


def test_namespace_root_is_canonical(tmp_path):
    ns = resolve_namespace_root(tmp_path / "x" / ".." / "data", "permanent")
    assert ns == (tmp_path / "data" / "permanent").resolve()


@pytest.mark.parametrize("subdir", ["", "  ", "..", "a/b"])
def test_namespace_root_requires_plain_name(tmp_path, subdir):
    with pytest.raises(ValueError):
        resolve_namespace_root(tmp_path, subdir)


@pytest.mark.parametrize("name", ["report.pdf", "My Folder", ".env", "a..b"])
def test_validate_name_accepts_plain_names(name):
    assert validate_name(name) == name


@pytest.mark.parametrize("name", [None, "", "   ", ".", "..", "a/b", "a\\b", "c:d", "nul\0"])
def test_validate_name_rejects_bad_names(name):
    with pytest.raises(InvalidArgumentError):
        validate_name(name)


def test_to_relative(root):
    assert to_relative(root, root) == ""
    assert to_relative(root, root / "a" / "b.txt") == "a/b.txt"


def test_entry_resolution_keeps_the_link(root):
    (root / "target.txt").write_bytes(b"x")
    (root / "alias.txt").symlink_to(root / "target.txt")

    assert resolve_sandboxed_entry(root, "alias.txt") == root / "alias.txt"
    assert resolve_sandboxed_path(root, "alias.txt") == root / "target.txt"


def test_entry_resolution_follows_parent_links(root, tmp_path):
    outside = tmp_path / "outside"
    outside.mkdir()
    (root / "real").mkdir()
    (root / "inside").symlink_to(root / "real", target_is_directory=True)
    (root / "away").symlink_to(outside, target_is_directory=True)

    assert resolve_sandboxed_entry(root, "inside/x.txt") == root / "real" / "x.txt"
    with pytest.raises(PathInvalidError):
        resolve_sandboxed_entry(root, "away/x.txt")


@pytest.mark.parametrize("relative", ["../x", "/abs", "a/../../b", "c:x"])
def test_entry_resolution_rejects_escape_attempts(root, relative):
    with pytest.raises(PathInvalidError):
        resolve_sandboxed_entry(root, relative)


@pytest.mark.parametrize("relative", [None, "", ".", "./"])
def test_entry_resolution_of_empty_path_is_the_root(root, relative):
    assert resolve_sandboxed_entry(root, relative) == root
