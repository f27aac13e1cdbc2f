from __future__ import annotations

from .braces import scan_to_close, update_brace_depth
from .errors import (
    RETRIABLE_ERRORS,
    AttemptsExhausted,
    EditCancelled,
    EditError,
    GrammarError,
    GuardViolation,
    HunkApplicationError,
    NotFoundError,
    TransportError,
)
from .fileops import (
    FileContentProvider,
    FileSystemFileOps,
    InMemoryFileProvider,
    commit_results,
    resolve_path,
)
from .match import (
    MatchEngine,
    apply_match,
    find_match,
    find_match_with_guard,
    levenshtein_distance,
    line_similarity,
)
from .models import (
    ApplyWarning,
    EditFormat,
    EditResult,
    FileDiff,
    FileEdit,
    Hunk,
    Line,
    LineType,
    MatchLevel,
    MatchResult,
    ParserState,
    RetryContext,
    SearchReplace,
    WarningKind,
)
from .stream import ParserCallbacks, ParserHalted, ParserRunning, StreamParser
from .udiff import apply, apply_file_diffs, apply_with_warnings, parse_unified_diff

__all__ = [
    "scan_to_close",
    "update_brace_depth",
    "RETRIABLE_ERRORS",
    "AttemptsExhausted",
    "EditCancelled",
    "EditError",
    "GrammarError",
    "GuardViolation",
    "HunkApplicationError",
    "NotFoundError",
    "TransportError",
    "FileContentProvider",
    "FileSystemFileOps",
    "InMemoryFileProvider",
    "commit_results",
    "resolve_path",
    "MatchEngine",
    "apply_match",
    "find_match",
    "find_match_with_guard",
    "levenshtein_distance",
    "line_similarity",
    "ApplyWarning",
    "EditFormat",
    "EditResult",
    "FileDiff",
    "FileEdit",
    "Hunk",
    "Line",
    "LineType",
    "MatchLevel",
    "MatchResult",
    "ParserState",
    "RetryContext",
    "SearchReplace",
    "WarningKind",
    "ParserCallbacks",
    "ParserHalted",
    "ParserRunning",
    "StreamParser",
    "apply",
    "apply_file_diffs",
    "apply_with_warnings",
    "parse_unified_diff",
]
