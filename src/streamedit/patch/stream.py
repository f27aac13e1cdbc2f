from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from .errors import EditError, GrammarError
from .models import EditFormat, FileEdit, ParserState, SearchReplace


FILE_OPEN_RE = re.compile(r"^\[FILE:\s*(.+?)\s*\]$")
FILE_CLOSE = "[/FILE]"
SEARCH_RE = re.compile(r"^<{5,9} SEARCH$")
DIVIDER_RE = re.compile(r"^={5,9}$")
REPLACE_RE = re.compile(r"^>{5,9} REPLACE$")
ABOUT_OPEN = "[ABOUT]"
ABOUT_CLOSE = "[/ABOUT]"


@dataclass
class ParserCallbacks:
    on_file_start: Optional[Callable[[str], None]] = None
    # Validation hooks: raising EditError halts the parser
    on_search_ready: Optional[Callable[[str, str], None]] = None
    on_replace_ready: Optional[Callable[[str, str, str], None]] = None
    on_diff_ready: Optional[Callable[[str, List[str]], None]] = None
    on_file_complete: Optional[Callable[[FileEdit], None]] = None
    on_about_complete: Optional[Callable[[str], None]] = None


@dataclass(frozen=True)
class ParserRunning:
    pass


@dataclass(frozen=True)
class ParserHalted:
    error: EditError


ParserStatus = Union[ParserRunning, ParserHalted]


def _is_diff_start(line: str) -> bool:
    return line.startswith("--- ") or line.startswith("@@")


class StreamParser:
    """
    Incremental parser for streamed edit instructions.

    Text may arrive in chunks of any size; the parser only acts on complete
    lines, so every chunking of the same text yields the same callbacks.
    Recognised blocks:

        [FILE: path]
        <<<<<<< SEARCH
        ...
        =======
        ...
        >>>>>>> REPLACE
        [/FILE]

        [FILE: path]
        --- path
        +++ path
        @@ anchor @@
        ...
        [/FILE]

        [ABOUT] summary text [/ABOUT]

    A callback raising EditError (and any grammar error) halts the parser;
    after that every feed/finish re-raises the same error.
    """

    def __init__(self, callbacks: Optional[ParserCallbacks] = None):
        self.callbacks = callbacks or ParserCallbacks()
        self.reset()

    def reset(self) -> None:
        self._status: ParserStatus = ParserRunning()
        self._state = ParserState.IDLE
        self._buffer = ""
        self._path: Optional[str] = None
        self._blocks: List[SearchReplace] = []
        self._search: List[str] = []
        self._replace: List[str] = []
        self._diff: List[str] = []
        self._about: List[str] = []

    @property
    def state(self) -> ParserState:
        return self._state

    @property
    def current_file(self) -> Optional[str]:
        return self._path

    @property
    def status(self) -> ParserStatus:
        return self._status

    @property
    def is_halted(self) -> bool:
        return isinstance(self._status, ParserHalted)

    @property
    def halt_error(self) -> Optional[EditError]:
        if isinstance(self._status, ParserHalted):
            return self._status.error
        return None

    def feed(self, chunk: str) -> None:
        self._raise_if_halted()
        self._buffer += chunk
        try:
            while True:
                idx = self._buffer.find("\n")
                if idx < 0:
                    break
                line = self._buffer[:idx]
                self._buffer = self._buffer[idx + 1 :]
                self._process_line(line)
        except EditError as e:
            self._halt(e)
            raise

    def finish(self) -> None:
        """Process a trailing partial line and close whatever is still open."""
        self._raise_if_halted()
        try:
            if self._buffer:
                line, self._buffer = self._buffer, ""
                self._process_line(line)
            if self._state in (ParserState.IN_SEARCH, ParserState.IN_REPLACE):
                raise GrammarError(
                    f"stream ended inside a search/replace block of {self._path}",
                )
            if self._state in (ParserState.IN_FILE, ParserState.IN_DIFF):
                self._complete_file()
            elif self._state == ParserState.IN_ABOUT:
                self._complete_about()
        except EditError as e:
            self._halt(e)
            raise

    # Internals

    def _raise_if_halted(self) -> None:
        if isinstance(self._status, ParserHalted):
            raise self._status.error

    def _halt(self, err: EditError) -> None:
        if not self.is_halted:
            self._status = ParserHalted(err)

    def _process_line(self, line: str) -> None:
        if line.endswith("\r"):
            line = line[:-1]
        stripped = line.strip()
        state = self._state

        if state == ParserState.IN_ABOUT:
            self._about_line(line)
            return

        if state == ParserState.IN_SEARCH:
            if DIVIDER_RE.match(stripped):
                search = "\n".join(self._search)
                self._state = ParserState.IN_REPLACE
                if self.callbacks.on_search_ready:
                    self.callbacks.on_search_ready(self._path or "", search)
            elif REPLACE_RE.match(stripped):
                raise GrammarError("REPLACE marker before the ======= divider", line=line)
            elif SEARCH_RE.match(stripped):
                raise GrammarError("SEARCH marker inside an open search block", line=line)
            elif stripped == FILE_CLOSE:
                raise GrammarError(f"{FILE_CLOSE} inside an unfinished search block", line=line)
            else:
                self._search.append(line)
            return

        if state == ParserState.IN_REPLACE:
            if REPLACE_RE.match(stripped):
                self._complete_block()
            elif SEARCH_RE.match(stripped):
                raise GrammarError("SEARCH marker inside a replace block", line=line)
            elif DIVIDER_RE.match(stripped):
                raise GrammarError("======= divider inside a replace block", line=line)
            elif stripped == FILE_CLOSE:
                raise GrammarError(f"{FILE_CLOSE} inside an unfinished replace block", line=line)
            else:
                self._replace.append(line)
            return

        m = FILE_OPEN_RE.match(stripped)
        if m:
            if state in (ParserState.IN_FILE, ParserState.IN_DIFF):
                self._complete_file()
            self._open_file(m.group(1))
            return

        if stripped.startswith(ABOUT_OPEN):
            if state in (ParserState.IN_FILE, ParserState.IN_DIFF):
                self._complete_file()
            self._state = ParserState.IN_ABOUT
            self._about = []
            self._about_line(stripped[len(ABOUT_OPEN) :])
            return

        if state == ParserState.IN_DIFF:
            if stripped == FILE_CLOSE:
                self._complete_file()
            else:
                self._diff.append(line)
            return

        if state == ParserState.IN_FILE:
            if DIVIDER_RE.match(stripped) or REPLACE_RE.match(stripped):
                raise GrammarError("divider or REPLACE marker outside a search block", line=line)
            if SEARCH_RE.match(stripped):
                self._state = ParserState.IN_SEARCH
                self._search = []
                self._replace = []
            elif stripped == FILE_CLOSE:
                self._complete_file()
            elif _is_diff_start(line):
                self._state = ParserState.IN_DIFF
                self._diff.append(line)
            # Anything else inside a file block (fences, prose) is ignored
            return

        if SEARCH_RE.match(stripped):
            raise GrammarError("SEARCH marker outside a [FILE: ...] block", line=line)
        # Idle: free text between blocks, stray dividers included

    def _open_file(self, path: str) -> None:
        self._path = path
        self._blocks = []
        self._diff = []
        self._state = ParserState.IN_FILE
        if self.callbacks.on_file_start:
            self.callbacks.on_file_start(path)

    def _complete_block(self) -> None:
        search = "\n".join(self._search)
        replace = "\n".join(self._replace)
        self._blocks.append(SearchReplace(search=search, replace=replace))
        self._search = []
        self._replace = []
        self._state = ParserState.IN_FILE
        if self.callbacks.on_replace_ready:
            self.callbacks.on_replace_ready(self._path or "", search, replace)

    def _complete_file(self) -> None:
        path = self._path or ""
        diff = list(self._diff)
        if diff:
            fmt = EditFormat.UNIFIED_DIFF
        elif self._blocks:
            fmt = EditFormat.SEARCH_REPLACE
        else:
            fmt = EditFormat.UNKNOWN
        edit = FileEdit(path=path, format=fmt, blocks=tuple(self._blocks), diff_lines=tuple(diff))

        self._state = ParserState.IDLE
        self._path = None
        self._blocks = []
        self._diff = []

        if diff and self.callbacks.on_diff_ready:
            self.callbacks.on_diff_ready(path, diff)
        if self.callbacks.on_file_complete:
            self.callbacks.on_file_complete(edit)

    def _about_line(self, text: str) -> None:
        idx = text.find(ABOUT_CLOSE)
        if idx < 0:
            self._about.append(text)
            return
        self._about.append(text[:idx])
        self._complete_about()

    def _complete_about(self) -> None:
        text = "\n".join(self._about).strip()
        self._about = []
        self._state = ParserState.IDLE
        if self.callbacks.on_about_complete:
            self.callbacks.on_about_complete(text)
