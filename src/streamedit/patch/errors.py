from __future__ import annotations

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import MatchLevel


class EditError(ValueError):
    """Any problem detected while parsing, locating or applying an edit."""


class GrammarError(EditError):
    """Malformed or unexpected token in the model output."""

    def __init__(self, msg: str, *, line: Optional[str] = None):
        super().__init__(msg)
        self.line = line


class NotFoundError(EditError):
    """Search text could not be located at any match level."""

    def __init__(
        self,
        msg: str,
        *,
        level: Optional["MatchLevel"] = None,
        search: Optional[str] = None,
    ):
        super().__init__(msg)
        self.level = level
        self.search = search


class GuardViolation(NotFoundError):
    """A match exists, but only outside the allowed line range."""

    def __init__(
        self,
        msg: str,
        *,
        start_line: int,
        end_line: int,
        level: Optional["MatchLevel"] = None,
        search: Optional[str] = None,
    ):
        super().__init__(msg, level=level, search=search)
        self.start_line = start_line
        self.end_line = end_line


class HunkApplicationError(EditError):
    """A diff hunk could not be placed in the target content."""

    def __init__(self, msg: str, *, hunk_index: Optional[int] = None):
        super().__init__(msg)
        self.hunk_index = hunk_index


class AttemptsExhausted(EditError):
    def __init__(
        self,
        msg: str,
        *,
        attempts: int,
        path: Optional[str] = None,
        search: Optional[str] = None,
        last_error: Optional[EditError] = None,
    ):
        super().__init__(msg)
        self.attempts = attempts
        self.path = path
        self.search = search
        self.last_error = last_error


class TransportError(EditError):
    """The token stream failed independently of its content."""


class EditCancelled(EditError):
    """The caller cancelled the edit session."""


# Errors that the retry loop recovers from by re-prompting the model.
RETRIABLE_ERRORS = (GrammarError, NotFoundError, HunkApplicationError)
