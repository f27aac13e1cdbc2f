from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class LineType(str, Enum):
    CONTEXT = "context"
    REMOVE = "remove"
    ADD = "add"
    # Zero or more unlisted lines; carries no content
    ELISION = "elision"


@dataclass(frozen=True)
class Line:
    type: LineType
    content: str = ""


@dataclass
class Hunk:
    # Free text from the @@ header; a human-readable anchor, never matched
    context: str = ""
    lines: List[Line] = field(default_factory=list)

    @property
    def has_elision(self) -> bool:
        return any(ln.type == LineType.ELISION for ln in self.lines)


@dataclass
class FileDiff:
    path: str
    hunks: List[Hunk] = field(default_factory=list)


class MatchLevel(str, Enum):
    # Declared strongest first; the match engine tries them in this order
    EXACT = "exact"
    STRIPPED = "stripped"
    NON_CONTIGUOUS = "non-contiguous"
    FUZZY = "fuzzy"


@dataclass(frozen=True)
class MatchResult:
    level: MatchLevel
    start: int
    end: int
    original: str
    similarity: float = 1.0


class EditFormat(str, Enum):
    UNKNOWN = "unknown"
    SEARCH_REPLACE = "search-replace"
    UNIFIED_DIFF = "unified-diff"


class ParserState(str, Enum):
    IDLE = "idle"
    IN_FILE = "in-file"
    IN_SEARCH = "in-search"
    IN_REPLACE = "in-replace"
    IN_DIFF = "in-diff"
    IN_ABOUT = "in-about"


@dataclass(frozen=True)
class SearchReplace:
    search: str
    replace: str


@dataclass(frozen=True)
class FileEdit:
    path: str
    format: EditFormat = EditFormat.UNKNOWN
    blocks: Tuple[SearchReplace, ...] = ()
    diff_lines: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EditResult:
    path: str
    old_content: str
    new_content: str
    format: EditFormat
    match_level: Optional[MatchLevel] = None
    warning: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RetryContext:
    file_path: str
    reason: str
    failed_search: Optional[str] = None
    diff_lines: List[str] = field(default_factory=list)
    file_content: Optional[str] = None
    # The named file does not exist; feedback suggests creating it
    file_missing: bool = False
    partial_output: str = ""


class WarningKind(str, Enum):
    AMBIGUOUS_ANCHOR = "ambiguous_anchor"
    UNCLOSED_ELISION = "unclosed_elision"
    CONTEXT_MISMATCH = "context_mismatch"
    EMPTY_HUNK = "empty_hunk"


# Warning kinds that mean the hunk was not applied at all
SKIPPED_HUNK_KINDS = frozenset({WarningKind.CONTEXT_MISMATCH, WarningKind.EMPTY_HUNK})


@dataclass(frozen=True)
class ApplyWarning:
    kind: WarningKind
    hunk_index: int
    message: str

    @property
    def skipped(self) -> bool:
        return self.kind in SKIPPED_HUNK_KINDS

    def __str__(self) -> str:
        return self.message
