from __future__ import annotations

import os
import pathlib
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from ..logger import logger
from .errors import EditError, NotFoundError
from .models import EditResult


# Inclusive 1-indexed (start_line, end_line)
Guard = Tuple[int, int]


class FileContentProvider(Protocol):
    """Current text of the files an edit session may touch."""

    def read(self, path: str) -> Optional[str]:
        """Return file content, or None when the path does not exist."""
        ...

    def guard(self, path: str) -> Optional[Guard]:
        """Optional line range that edits to `path` must stay inside."""
        ...

    def paths(self) -> Iterable[str]:
        ...


class InMemoryFileProvider:
    def __init__(
        self,
        contents: Dict[str, str],
        guards: Optional[Dict[str, Guard]] = None,
    ):
        self._contents = dict(contents)
        self._guards = dict(guards or {})

    def read(self, path: str) -> Optional[str]:
        return self._contents.get(path)

    def guard(self, path: str) -> Optional[Guard]:
        return self._guards.get(path)

    def paths(self) -> Iterable[str]:
        return list(self._contents.keys())


class FileSystemFileOps:
    """
    File-backed provider that enforces path safety under base_path and
    records change kinds ('created' | 'updated').

    Reading a path outside base_path yields None, so model-supplied absolute
    paths fall through to basename resolution. Writing one raises EditError.
    """

    def __init__(
        self,
        base_path: pathlib.Path,
        guards: Optional[Dict[str, Guard]] = None,
        known_paths: Optional[Sequence[str]] = None,
    ):
        self._base_path = base_path
        self._guards = dict(guards or {})
        self._known: List[str] = list(known_paths or [])
        self._changes: Dict[str, str] = {}

    def _resolve_safe_path(self, rel: str) -> pathlib.Path:
        if rel.startswith("/") or rel.startswith("~"):
            raise EditError(f"Absolute paths are not allowed: {rel}")
        abs_path = (self._base_path / rel).resolve()
        base_resolved = self._base_path.resolve()
        if abs_path == base_resolved or base_resolved in abs_path.parents:
            return abs_path
        raise EditError(f"Path escapes project root: {rel}")

    def _record(self, rel: str, change: str) -> None:
        # A file created in this session stays 'created' across later writes
        self._changes.setdefault(rel, change)

    def read(self, path: str) -> Optional[str]:
        try:
            p = self._resolve_safe_path(path)
        except EditError as e:
            logger.debug("Unsafe read path", path=path, err=str(e))
            return None
        if not p.is_file():
            return None
        try:
            with p.open("rt", encoding="utf-8") as fh:
                return fh.read()
        except UnicodeDecodeError as e:
            raise NotFoundError(f"file is not valid UTF-8 text: {path} ({e.reason} at byte {e.start})") from e

    def guard(self, path: str) -> Optional[Guard]:
        return self._guards.get(path)

    def paths(self) -> Iterable[str]:
        return list(self._known)

    def write(self, rel: str, content: str) -> None:
        path = self._resolve_safe_path(rel)
        existed = path.exists()
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wt", encoding="utf-8") as fh:
            fh.write(content)
        if rel not in self._known:
            self._known.append(rel)
        self._record(rel, "updated" if existed else "created")

    @property
    def changes_map(self) -> Dict[str, str]:
        return self._changes


def resolve_path(provider: FileContentProvider, path: str) -> Optional[str]:
    """
    Map a path named by the model to one the provider knows: exact, then
    same basename, then a known path ending with it.
    """
    if provider.read(path) is not None:
        return path
    known = list(provider.paths())
    base = os.path.basename(path)
    for candidate in known:
        if os.path.basename(candidate) == base:
            return candidate
    for candidate in known:
        if candidate.endswith("/" + path) or candidate.endswith("\\" + path):
            return candidate
    return None


def commit_results(results: Sequence[EditResult], ops: FileSystemFileOps) -> Dict[str, str]:
    """
    Write the final content of every edited path. When several results touch
    one path the last one carries the final content.
    """
    final: Dict[str, str] = {}
    for res in results:
        if res.error is None:
            final[res.path] = res.new_content
    for path, content in final.items():
        ops.write(path, content)
    return ops.changes_map
