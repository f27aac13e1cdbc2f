from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar, Final, Iterator, List, Optional, Sequence, Tuple

from .errors import GuardViolation, NotFoundError
from .models import MatchLevel, MatchResult


# Search line standing for "any number of lines here"
ELISION_MARKER: Final[str] = "..."

# Minimum per-line similarity accepted by the fuzzy matcher
SIMILARITY_THRESHOLD: Final[float] = 0.8


def levenshtein_distance(a: str, b: str) -> int:
    if not a:
        return len(b)
    if not b:
        return len(a)
    prev = list(range(len(b) + 1))
    curr = [0] * (len(b) + 1)
    for i in range(1, len(a) + 1):
        curr[0] = i
        ca = a[i - 1]
        for j in range(1, len(b) + 1):
            cost = 0 if ca == b[j - 1] else 1
            curr[j] = min(prev[j] + 1, curr[j - 1] + 1, prev[j - 1] + cost)
        prev, curr = curr, prev
    return prev[len(b)]


def line_similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity (0.0 to 1.0) of two stripped lines."""
    a = a.strip()
    b = b.strip()
    if a == b:
        return 1.0
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / max_len


def truncate_for_error(text: str, max_len: int = 80) -> str:
    lines = text.split("\n")
    if len(lines) > 3:
        first = lines[0].strip()
        last = lines[-1].strip()
        if not last and len(lines) > 1:
            last = lines[-2].strip()
        return f"{_truncate(first, 40)} ... {_truncate(last, 40)}"
    return _truncate(text.strip(), max_len)


def _truncate(s: str, max_len: int) -> str:
    if len(s) <= max_len:
        return s
    return s[: max_len - 3] + "..."


def line_range_to_offsets(content: str, start_line: int, end_line: int) -> Tuple[int, int]:
    """
    Convert a 1-indexed inclusive line range to (start, end) string offsets.
    The end offset includes the newline of end_line. end_line <= 0 means
    "through end of content".
    """
    starts = _line_starts(content.split("\n"))
    start = 0
    if start_line > 1:
        start = starts[start_line - 1] if start_line - 1 < len(starts) else len(content)
    end = len(content)
    if 0 < end_line < len(starts):
        end = starts[end_line]
    return start, end


def apply_match(content: str, match: MatchResult, replacement: str) -> str:
    """Replace the matched span with `replacement`, returning new content."""
    return content[: match.start] + replacement + content[match.end :]


def _line_starts(lines: List[str]) -> List[int]:
    starts: List[int] = []
    pos = 0
    for ln in lines:
        starts.append(pos)
        pos += len(ln) + 1
    return starts


def _search_lines(search: str) -> Tuple[List[str], bool]:
    """Split the search into lines, dropping (and reporting) a final newline."""
    lines = search.split("\n")
    trailing_nl = False
    if len(lines) > 1 and lines[-1] == "":
        lines.pop()
        trailing_nl = True
    return lines, trailing_nl


def _is_elision(line: str) -> bool:
    return line.strip() == ELISION_MARKER


class _Content:
    """Line views of a content string, computed once per lookup."""

    def __init__(self, text: str):
        self.text = text
        self.lines = text.split("\n")
        self.stripped = [ln.strip() for ln in self.lines]
        self.starts = _line_starts(self.lines)

    def span(self, first: int, count: int, trailing_nl: bool) -> Tuple[int, int]:
        start = self.starts[first]
        last = first + count - 1
        end = self.starts[last] + len(self.lines[last])
        if trailing_nl and end < len(self.text):
            end += 1
        return start, end

    def line_at(self, offset: int) -> int:
        """Index of the first line starting at or after `offset`."""
        for idx, s in enumerate(self.starts):
            if s >= offset:
                return idx
        return len(self.lines)

    def stripped_runs(self, wanted: List[str], from_line: int = 0) -> Iterator[int]:
        m = len(wanted)
        for i in range(max(0, from_line), len(self.lines) - m + 1):
            if self.stripped[i : i + m] == wanted:
                yield i


class Matcher(ABC):
    """One precision level of the match engine."""

    level: ClassVar[MatchLevel]

    def applies(self, search: str) -> bool:
        return True

    @abstractmethod
    def candidates(self, content: _Content, search: str) -> Iterator[MatchResult]:
        """Yield candidate spans, most preferred first."""
        ...

    def _result(self, content: _Content, start: int, end: int, similarity: float = 1.0) -> MatchResult:
        return MatchResult(
            level=self.level,
            start=start,
            end=end,
            original=content.text[start:end],
            similarity=similarity,
        )


class ExactMatcher(Matcher):
    level = MatchLevel.EXACT

    def candidates(self, content: _Content, search: str) -> Iterator[MatchResult]:
        idx = content.text.find(search)
        while idx >= 0:
            yield self._result(content, idx, idx + len(search))
            idx = content.text.find(search, idx + 1)


class StrippedMatcher(Matcher):
    level = MatchLevel.STRIPPED

    def candidates(self, content: _Content, search: str) -> Iterator[MatchResult]:
        lines, trailing_nl = _search_lines(search)
        wanted = [ln.strip() for ln in lines]
        for i in content.stripped_runs(wanted):
            start, end = content.span(i, len(wanted), trailing_nl)
            yield self._result(content, start, end)


class NonContiguousMatcher(Matcher):
    """
    Search text with "..." lines: the segments between elisions must appear
    in order; everything between them is absorbed into the span.
    """

    level = MatchLevel.NON_CONTIGUOUS

    def applies(self, search: str) -> bool:
        return any(_is_elision(ln) for ln in search.split("\n"))

    @staticmethod
    def _segments(search: str) -> List[List[str]]:
        lines, _ = _search_lines(search)
        segments: List[List[str]] = [[]]
        for ln in lines:
            if _is_elision(ln):
                segments.append([])
            else:
                segments[-1].append(ln)
        out: List[List[str]] = []
        for seg in segments:
            # Blank lines next to an elision belong to the elided region
            while seg and not seg[0].strip():
                seg.pop(0)
            while seg and not seg[-1].strip():
                seg.pop()
            if seg:
                out.append(seg)
        return out

    @staticmethod
    def _occurrences(content: _Content, seg: List[str], from_pos: int) -> Iterator[Tuple[int, int]]:
        text = "\n".join(seg)
        idx = content.text.find(text, from_pos)
        if idx >= 0:
            while idx >= 0:
                yield idx, idx + len(text)
                idx = content.text.find(text, idx + 1)
            return
        wanted = [ln.strip() for ln in seg]
        for i in content.stripped_runs(wanted, content.line_at(from_pos)):
            yield content.span(i, len(seg), False)

    def candidates(self, content: _Content, search: str) -> Iterator[MatchResult]:
        segments = self._segments(search)
        if len(segments) < 2:
            return
        for start, end in self._occurrences(content, segments[0], 0):
            ok = True
            for seg in segments[1:]:
                nxt = next(self._occurrences(content, seg, end), None)
                if nxt is None:
                    ok = False
                    break
                end = nxt[1]
            if not ok:
                # Later segments are missing after this start, so after any later start too
                return
            if search.endswith("\n") and end < len(content.text) and content.text[end] == "\n":
                end += 1
            yield self._result(content, start, end)


class FuzzyMatcher(Matcher):
    level = MatchLevel.FUZZY

    def __init__(self, threshold: float = SIMILARITY_THRESHOLD):
        self.threshold = threshold

    def _window_score(self, window: List[str], wanted: List[str]) -> Optional[float]:
        total = 0.0
        for actual, expected in zip(window, wanted):
            a, b = actual.strip(), expected.strip()
            longest = max(len(a), len(b))
            # Edit distance is at least the length difference
            if longest and min(len(a), len(b)) / longest < self.threshold:
                return None
            sim = line_similarity(a, b)
            if sim < self.threshold:
                return None
            total += sim
        return total / len(wanted)

    def candidates(self, content: _Content, search: str) -> Iterator[MatchResult]:
        wanted, trailing_nl = _search_lines(search)
        m = len(wanted)
        if m == 0 or len(content.lines) < m:
            return
        scored: List[Tuple[float, int]] = []
        for i in range(len(content.lines) - m + 1):
            score = self._window_score(content.lines[i : i + m], wanted)
            if score is not None:
                scored.append((score, i))
        scored.sort(key=lambda t: (-t[0], t[1]))
        for score, i in scored:
            start, end = content.span(i, m, trailing_nl)
            yield self._result(content, start, end, similarity=score)


def default_matchers(threshold: float = SIMILARITY_THRESHOLD) -> List[Matcher]:
    return [
        ExactMatcher(),
        StrippedMatcher(),
        NonContiguousMatcher(),
        FuzzyMatcher(threshold),
    ]


class MatchEngine:
    """Tries an ordered chain of matchers; the first accepted candidate wins."""

    def __init__(
        self,
        matchers: Optional[Sequence[Matcher]] = None,
        *,
        threshold: float = SIMILARITY_THRESHOLD,
    ):
        self.matchers: List[Matcher] = list(matchers) if matchers is not None else default_matchers(threshold)

    def _not_found(self, search: str, tried: List[MatchLevel]) -> NotFoundError:
        levels = ", ".join(lv.value for lv in tried)
        return NotFoundError(
            f"search not found (tried {levels}): {truncate_for_error(search, 80)}",
            level=tried[-1] if tried else None,
            search=search,
        )

    def find(self, content: str, search: str) -> MatchResult:
        if not search:
            raise NotFoundError("search string is empty", search=search)
        view = _Content(content)
        tried: List[MatchLevel] = []
        for matcher in self.matchers:
            if not matcher.applies(search):
                continue
            tried.append(matcher.level)
            for cand in matcher.candidates(view, search):
                return cand
        raise self._not_found(search, tried)

    def find_with_guard(self, content: str, search: str, start_line: int, end_line: int) -> MatchResult:
        if not search:
            raise NotFoundError("search string is empty", search=search)
        guard_start, guard_end = line_range_to_offsets(content, start_line, end_line)
        view = _Content(content)
        tried: List[MatchLevel] = []
        outside: Optional[MatchResult] = None
        for matcher in self.matchers:
            if not matcher.applies(search):
                continue
            tried.append(matcher.level)
            for cand in matcher.candidates(view, search):
                if guard_start <= cand.start and cand.end <= guard_end:
                    return cand
                if outside is None:
                    outside = cand
        if outside is not None:
            outside_line = content.count("\n", 0, outside.start) + 1
            raise GuardViolation(
                f"match at line {outside_line} is outside allowed lines {start_line}-{end_line}: "
                f"{truncate_for_error(search, 80)}",
                start_line=start_line,
                end_line=end_line,
                level=outside.level,
                search=search,
            )
        raise self._not_found(search, tried)


def find_match(content: str, search: str, *, threshold: float = SIMILARITY_THRESHOLD) -> MatchResult:
    """Locate `search` in `content` (exact, stripped, non-contiguous, fuzzy)."""
    return MatchEngine(threshold=threshold).find(content, search)


def find_match_with_guard(
    content: str,
    search: str,
    start_line: int,
    end_line: int,
    *,
    threshold: float = SIMILARITY_THRESHOLD,
) -> MatchResult:
    """Like find_match, but only accepts spans inside the 1-indexed inclusive line range."""
    return MatchEngine(threshold=threshold).find_with_guard(content, search, start_line, end_line)
