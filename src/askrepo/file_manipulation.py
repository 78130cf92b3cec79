"""Candidate enumeration and content extraction for the prompt builder."""

from __future__ import annotations

import fnmatch
import os
import stat
import subprocess  # noqa: S404
from pathlib import Path
from typing import TYPE_CHECKING

from pypdf import PdfReader

from askrepo.config import DEFAULT_EXCLUDES, PDF_EXTENSION
from askrepo.exceptions import ContentExtractionError, NotAGitRepositoryError
from askrepo.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence


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


def is_regular_file(path: Path) -> bool:
    """Check if a file is regular.

    Args:
        path (Path): path to test.

    Returns:
        bool: True if the file is regular, False otherwise.
    """
    try:
        st = path.stat()
        return stat.S_ISREG(st.st_mode)
    except OSError:
        return False


def normalize_globs(globs: Sequence[str]) -> list[str]:
    """Normalize glob patterns by stripping whitespace and using forward slashes.

    Args:
        globs (Sequence[str]): the glob patterns to normalize

    Returns:
        list[str]: the normalized glob patterns, empty ones dropped
    """
    out: list[str] = []
    for g in globs:
        g2 = (g or "").strip()
        if not g2:
            continue
        out.append(g2.replace("\\", "/"))
    return out


def match_any_glob(rel: str, globs: Sequence[str]) -> bool:
    """Check if a relative path matches any of the provided glob patterns."""
    return any(fnmatch.fnmatch(rel, g) for g in globs)


def file_extension(path: Path) -> str:
    """Return the extension of `path` without its leading dot."""
    return path.suffix.removeprefix(".")


def is_git_work_tree(folder: Path) -> bool:
    """Check whether `folder` lies inside a git work tree.

    Args:
        folder (Path): the directory to test

    Returns:
        bool: True when `git rev-parse` reports a work tree, False otherwise
            (including when git is not installed)
    """
    try:
        out = subprocess.run(
            ["git", "rev-parse", "--is-inside-work-tree"],  # noqa: S607
            cwd=str(folder),
            text=True,
            capture_output=True,
            check=False,
        )
    except OSError:
        return False
    return out.returncode == 0 and out.stdout.strip() == "true"


def git_ls_files(folder: Path) -> list[Path]:
    """List the files git does not ignore under `folder`.

    Tracked files and untracked files not excluded by `.gitignore` rules are listed,
    so `folder` may be any directory inside a work tree.

    Args:
        folder (Path): the directory to list, inside a git work tree

    Raises:
        NotAGitRepositoryError: if `folder` is not inside a git work tree.
        subprocess.CalledProcessError: if the `git` invocation fails.

    Returns:
        list[Path]: the files under `folder`
    """
    if not is_git_work_tree(folder):
        raise NotAGitRepositoryError(folder=folder)
    out = subprocess.run(
        ["git", "ls-files", "--cached", "--others", "--exclude-standard"],  # noqa: S607
        cwd=str(folder),
        text=True,
        capture_output=True,
        check=True,
    )
    files: list[Path] = []
    for line in out.stdout.splitlines():
        line = line.strip()  # noqa: PLW2901
        if not line:
            continue
        files.append(folder / line)
    return files


def walk_files(root: Path, max_depth: int | None = None) -> list[Path]:
    """Walk the directory tree rooted at `root` and return its files.

    Directories listed in `DEFAULT_EXCLUDES` are pruned.

    Args:
        root (Path): the root directory to walk
        max_depth (int | None): how many directory levels to descend, 1 meaning only
            the direct children of `root`; None walks the whole tree

    Returns:
        list[Path]: the files found
    """
    results: list[Path] = []
    for current, dirs, files in os.walk(root):
        depth = len(Path(current).relative_to(root).parts) + 1
        if max_depth is not None and depth >= max_depth:
            dirs[:] = []
        else:
            dirs[:] = [d for d in dirs if d not in DEFAULT_EXCLUDES]
        if max_depth is not None and depth > max_depth:
            continue
        results.extend(Path(current) / f for f in files if f not in DEFAULT_EXCLUDES)
    return results


def _within_depth(path: Path, root: Path, max_depth: int | None) -> bool:
    if max_depth is None:
        return True
    return len(path.relative_to(root).parts) <= max_depth


def _list_directory(root: Path, max_depth: int | None, *, use_git: bool) -> list[Path]:
    if use_git:
        try:
            files = git_ls_files(root)
        except (NotAGitRepositoryError, OSError, subprocess.CalledProcessError) as e:
            logger.debug("Falling back to filesystem walk", root=str(root), reason=str(e))
        else:
            return [f for f in files if _within_depth(f, root, max_depth)]
    return walk_files(root, max_depth)


def iter_candidate_paths(
    paths: Iterable[Path],
    *,
    includes: Sequence[str] = (),
    excludes: Sequence[str] = (),
    extensions: Sequence[str] = (),
    max_depth: int | None = 1,
    use_git: bool = True,
) -> Iterator[Path]:
    """Lazily yield the candidate files found under each start path.

    A start path naming a file is yielded as is. Directories are listed with
    `git ls-files` when possible (so ignore rules apply), otherwise walked; their
    files are filtered and yielded in case-insensitive path order.

    Args:
        paths (Iterable[Path]): files or directories to search, in order
        includes (Sequence[str]): glob patterns a file must match (relative to its start path)
        excludes (Sequence[str]): glob patterns rejecting a file (relative to its start path)
        extensions (Sequence[str]): allowed extensions without dot, empty allows all
        max_depth (int | None): directory depth, None for unlimited
        use_git (bool): try `git ls-files` before walking the filesystem

    Yields:
        Path: the next candidate file
    """
    inc = normalize_globs(includes)
    exc = normalize_globs(excludes)
    allowed = {e.lower() for e in extensions}

    for start in paths:
        if is_regular_file(start):
            yield start
            continue
        if not start.is_dir():
            logger.warning("Skipping missing path", path=str(start))
            continue

        found = _list_directory(start, max_depth, use_git=use_git)
        for f in sorted(found, key=lambda p: relpath(p, start).lower()):
            if not is_regular_file(f):
                continue
            r = relpath(f, start)
            if any(part in DEFAULT_EXCLUDES for part in Path(r).parts):
                continue
            if allowed and file_extension(f).lower() not in allowed:
                continue
            if inc and not match_any_glob(r, inc):
                continue
            if exc and match_any_glob(r, exc):
                continue
            yield f


def extract_pdf_text(path: Path) -> str:
    """Extract the text of every page of a PDF document.

    Args:
        path (Path): the PDF file

    Returns:
        str: page texts joined by blank lines
    """
    with path.open("rb") as f:
        reader = PdfReader(f)
        pages = [page.extract_text() or "" for page in reader.pages]
    return "\n\n".join(pages)


def extract_text(path: Path) -> str:
    """Extract the text content of a candidate file.

    PDF documents go through the PDF extractor, everything else must be UTF-8 text.

    Args:
        path (Path): the file to read

    Raises:
        ContentExtractionError: if the file is missing, unreadable, not UTF-8 or a corrupt PDF.

    Returns:
        str: the extracted text
    """
    try:
        if file_extension(path).lower() == PDF_EXTENSION:
            return extract_pdf_text(path)
        return path.read_text(encoding="utf-8")
    except Exception as e:
        raise ContentExtractionError(path=path, reason=f"{type(e).__name__}: {e}") from e
