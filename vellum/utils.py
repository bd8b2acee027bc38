"""Filesystem helpers for walking a corpus root."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Sequence


def resolve_directory(path: Path | str) -> Path:
    """Resolve and validate a user supplied directory path."""
    dir_path = Path(path).expanduser().resolve()
    if not dir_path.exists():
        raise FileNotFoundError(f"Directory does not exist: {dir_path}")
    if not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    return dir_path


def normalize_extensions(values: Iterable[str] | None) -> tuple[str, ...]:
    """Return a sorted, deduplicated tuple of normalized file extensions."""

    if not values:
        return ()
    normalized: set[str] = set()
    for raw in values:
        if raw is None:
            continue
        token = raw.strip().lower()
        if not token:
            continue
        if not token.startswith("."):
            token = f".{token}"
        if token != ".":
            normalized.add(token)
    return tuple(sorted(normalized))


def note_path(path: Path, root: Path) -> str:
    """Return the canonical POSIX path of *path* relative to the corpus *root*."""

    try:
        rel = path.relative_to(root)
    except ValueError:
        rel = path
    canonical = rel.as_posix().replace("\\", "/")
    while "//" in canonical:
        canonical = canonical.replace("//", "/")
    if canonical.startswith("./"):
        canonical = canonical[2:]
    return canonical.strip("/")


def _relative_posix(path: Path, root: Path) -> str:
    rel = path.relative_to(root)
    if rel == Path("."):
        return ""
    return rel.as_posix()


def _find_git_root(path: Path) -> Path | None:
    for candidate in (path,) + tuple(path.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def _read_gitignore_lines(path: Path) -> list[str]:
    try:
        return path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return []


def _scope_gitignore_line(line: str, base_dir: str) -> str | None:
    if line == "":
        return None
    if line.startswith("#") and not line.startswith(r"\#"):
        return None
    if not base_dir:
        return line

    negated = line.startswith("!") and not line.startswith(r"\!")
    prefix = "!" if negated else ""
    body = line[1:] if negated else line

    if body.startswith("/") and not body.startswith(r"\/"):
        body = body[1:]
        scoped = f"{base_dir}/{body}" if body else f"{base_dir}/"
        return f"{prefix}{scoped}"

    directory_only = body.endswith("/") and not body.endswith(r"\/")
    body_check = body[:-1] if directory_only else body
    if "/" in body_check:
        return f"{prefix}{base_dir}/{body}"
    return f"{prefix}{base_dir}/**/{body}"


def _gitignore_spec_from_lines(lines: Iterable[str], base_dir: str):
    from pathspec.gitignore import GitIgnoreSpec

    scoped: list[str] = []
    for line in lines:
        scoped_line = _scope_gitignore_line(line, base_dir)
        if scoped_line is not None:
            scoped.append(scoped_line)
    return GitIgnoreSpec.from_lines(scoped)


def _is_ignored(spec, rel_path: str, *, is_dir: bool) -> bool:
    if not rel_path:
        return False
    candidate = f"{rel_path}/" if is_dir and not rel_path.endswith("/") else rel_path
    return spec.check_file(candidate).include is True


def _base_ignore_spec(ignore_root: Path, scan_root: Path):
    """Collect .gitignore rules from *ignore_root* down to (excluding) *scan_root*."""
    from pathspec.gitignore import GitIgnoreSpec

    spec = GitIgnoreSpec.from_lines([])
    exclude_file = ignore_root / ".git" / "info" / "exclude"
    if exclude_file.is_file():
        spec += _gitignore_spec_from_lines(_read_gitignore_lines(exclude_file), "")
    parts = scan_root.relative_to(ignore_root).parts
    for depth in range(len(parts)):
        ancestor = ignore_root.joinpath(*parts[:depth]) if depth else ignore_root
        gitignore_file = ancestor / ".gitignore"
        if gitignore_file.is_file():
            spec += _gitignore_spec_from_lines(
                _read_gitignore_lines(gitignore_file),
                _relative_posix(ancestor, ignore_root),
            )
    return spec


def collect_files(
    root: Path | str,
    include_hidden: bool = False,
    extensions: Sequence[str] | None = None,
    respect_gitignore: bool = True,
) -> list[Path]:
    """Collect note files under *root* recursively, sorted by path."""

    directory = resolve_directory(root)
    normalized_exts = tuple(extensions or ())
    files: list[Path] = []

    ignore_root: Path | None = None
    spec_by_dir: dict[Path, object] = {}
    if respect_gitignore:
        ignore_root = _find_git_root(directory) or directory
        base_spec = _base_ignore_spec(ignore_root, directory)
        if directory != ignore_root and _is_ignored(
            base_spec, _relative_posix(directory, ignore_root), is_dir=True
        ):
            return []
        spec_by_dir[directory] = base_spec

    for dirpath, dirnames, filenames in os.walk(directory, topdown=True):
        current_dir = Path(dirpath)
        dirnames[:] = [d for d in dirnames if d != ".git"]
        if not include_hidden:
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            filenames = [f for f in filenames if not f.startswith(".")]

        spec = None
        if ignore_root is not None:
            spec = spec_by_dir.get(current_dir)
            gitignore_file = current_dir / ".gitignore"
            if spec is not None and gitignore_file.is_file():
                spec = spec + _gitignore_spec_from_lines(
                    _read_gitignore_lines(gitignore_file),
                    _relative_posix(current_dir, ignore_root),
                )
            kept: list[str] = []
            for dirname in dirnames:
                child = current_dir / dirname
                if spec is not None and _is_ignored(
                    spec, _relative_posix(child, ignore_root), is_dir=True
                ):
                    continue
                kept.append(dirname)
                spec_by_dir[child] = spec
            dirnames[:] = kept

        for filename in filenames:
            candidate = current_dir / filename
            if normalized_exts and not _matches_extension(candidate, normalized_exts):
                continue
            if spec is not None and ignore_root is not None and _is_ignored(
                spec, _relative_posix(candidate, ignore_root), is_dir=False
            ):
                continue
            files.append(candidate)

    files.sort()
    return files


def _matches_extension(path: Path, extensions: Sequence[str]) -> bool:
    filename = path.name.lower()
    return any(filename.endswith(ext) for ext in extensions)
