from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from ..logger import logger
from .braces import scan_to_close, update_brace_depth
from .errors import GrammarError, HunkApplicationError
from .match import truncate_for_error
from .models import (
    ApplyWarning,
    FileDiff,
    Hunk,
    Line,
    LineType,
    WarningKind,
)


NULL_PATH = "/dev/null"


def parse_hunk_header(line: str) -> str:
    """Return the free-text label of a '@@ label @@', '@@ label' or '@@' header."""
    label = line[2:].strip() if line.startswith("@@") else line.strip()
    if label.endswith("@@"):
        label = label[:-2].strip()
    return label


def parse_diff_line(line: str) -> Optional[Line]:
    """Parse one hunk body line; None for an unknown prefix."""
    if line == "":
        return Line(LineType.CONTEXT, "")
    prefix, content = line[0], line[1:]
    if prefix == " ":
        return Line(LineType.CONTEXT, content)
    if prefix == "-":
        if content.strip() == "...":
            return Line(LineType.ELISION)
        return Line(LineType.REMOVE, content)
    if prefix == "+":
        return Line(LineType.ADD, content)
    return None


def _strip_header_path(path: str, prefix: str) -> str:
    path = path.strip()
    if path.startswith(prefix):
        path = path[len(prefix):]
    return path


def _trim_trailing_empty(hunk: Hunk) -> None:
    while hunk.lines and hunk.lines[-1].type == LineType.CONTEXT and hunk.lines[-1].content == "":
        hunk.lines.pop()


def parse_unified_diff(text: str, default_path: Optional[str] = None) -> List[FileDiff]:
    """
    Parse a unified diff with elision into FileDiffs.

    Hunks that appear before any '--- ' header belong to `default_path`
    (or to an unnamed file). Raises GrammarError when non-blank input
    produces no hunks at all.
    """
    lines = text.replace("\r\n", "\n").split("\n")
    result: List[FileDiff] = []
    current_file: Optional[FileDiff] = None
    current_hunk: Optional[Hunk] = None

    def close_hunk() -> None:
        nonlocal current_hunk
        if current_hunk is not None and current_file is not None:
            _trim_trailing_empty(current_hunk)
            if current_hunk.lines:
                current_file.hunks.append(current_hunk)
        current_hunk = None

    def ensure_file() -> FileDiff:
        nonlocal current_file
        if current_file is None:
            current_file = FileDiff(path=default_path or "")
            result.append(current_file)
        return current_file

    i = 0
    while i < len(lines):
        line = lines[i]

        if line.startswith("--- "):
            close_hunk()
            path = _strip_header_path(line[4:], "a/")
            current_file = FileDiff(path=path)
            result.append(current_file)
            i += 1
            while i < len(lines) and not lines[i].strip():
                i += 1
            if i < len(lines) and lines[i].startswith("+++ "):
                plus_path = _strip_header_path(lines[i][4:], "b/")
                if path == NULL_PATH or not path:
                    current_file.path = plus_path
                i += 1
            continue

        if line.startswith("@@"):
            close_hunk()
            ensure_file()
            current_hunk = Hunk(context=parse_hunk_header(line))
            i += 1
            continue

        if current_hunk is not None:
            parsed = parse_diff_line(line)
            if parsed is not None:
                current_hunk.lines.append(parsed)
            i += 1
            continue

        # Change lines before any @@ start an anonymous hunk
        if line and line[0] in " -+":
            parsed = parse_diff_line(line)
            ensure_file()
            current_hunk = Hunk()
            if parsed is not None:
                current_hunk.lines.append(parsed)
        i += 1

    close_hunk()

    if text.strip() and not any(fd.hunks for fd in result):
        raise GrammarError(
            f"diff contains no hunks: {truncate_for_error(text, 80)}",
            line=next((ln for ln in lines if ln.strip()), None),
        )
    return [fd for fd in result if fd.hunks]


def filter_leading_blank_lines(lines: Sequence[str]) -> List[str]:
    """Drop blank lines that precede the first '@@' header."""
    out: List[str] = []
    seen_header = False
    for ln in lines:
        if ln.startswith("@@"):
            seen_header = True
        if not seen_header and not ln.strip():
            continue
        out.append(ln)
    return out


# Apply


def _old_lines(hunk: Hunk) -> List[str]:
    return [ln.content for ln in hunk.lines if ln.type in (LineType.CONTEXT, LineType.REMOVE)]


def _segments(hunk: Hunk) -> List[List[str]]:
    """Old-side lines grouped into runs separated by elision markers."""
    segments: List[List[str]] = [[]]
    for ln in hunk.lines:
        if ln.type == LineType.ELISION:
            segments.append([])
        elif ln.type in (LineType.CONTEXT, LineType.REMOVE):
            segments[-1].append(ln.content)
    return segments


def _matches_at(lines: List[str], seq: List[str], pos: int, strip: bool) -> bool:
    if pos < 0 or pos + len(seq) > len(lines):
        return False
    if strip:
        return all(lines[pos + k].strip() == s.strip() for k, s in enumerate(seq))
    return lines[pos : pos + len(seq)] == seq


def _positions(lines: List[str], seq: List[str], cursor: int) -> Iterator[int]:
    """
    Candidate start indices for `seq`: exact matches before stripped ones,
    each searched from `cursor` to the end and then from the top.
    """
    n = len(lines) - len(seq) + 1
    cursor = min(max(cursor, 0), max(n, 0))
    seen = set()
    for strip in (False, True):
        for rng in (range(cursor, n), range(0, cursor)):
            for pos in rng:
                if pos not in seen and _matches_at(lines, seq, pos, strip):
                    seen.add(pos)
                    yield pos


def _find_from(lines: List[str], seq: List[str], start: int) -> Optional[int]:
    for strip in (False, True):
        for pos in range(start, len(lines) - len(seq) + 1):
            if _matches_at(lines, seq, pos, strip):
                return pos
    return None


@dataclass
class _Placement:
    start: int
    end: int
    # File line index for each old-side (context/remove) hunk line, in order
    old_positions: List[int] = field(default_factory=list)
    unclosed: bool = False


def _place_elided(lines: List[str], segments: List[List[str]], head: int) -> Optional[_Placement]:
    """
    Resolve every gap of an elision hunk whose first segment sits at `head`.
    None when the later segments are inconsistent with that head.
    """
    first = segments[0]
    placement = _Placement(start=head, end=head + len(first))
    placement.old_positions.extend(range(head, head + len(first)))
    cursor = placement.end

    for seg_index, seg in enumerate(segments[1:], start=1):
        depth = 0
        for ln in lines[placement.start : cursor]:
            depth = update_brace_depth(depth, ln)
        last = seg_index == len(segments) - 1

        if not seg:
            if last and depth > 0:
                # Trailing elision removes through the line closing the open scope
                close_line = scan_to_close(lines, cursor, depth)
                if close_line is None:
                    placement.unclosed = True
                    placement.end = len(lines)
                    return placement
                placement.end = close_line + 1
            continue

        closing_offset = scan_to_close(seg, 0, depth) if depth > 0 else None
        if closing_offset is not None:
            close_line = scan_to_close(lines, cursor, depth)
            if close_line is None:
                placement.unclosed = True
                placement.end = len(lines)
                return placement
            pos: Optional[int] = close_line - closing_offset
            if pos < cursor or not (
                _matches_at(lines, seg, pos, False) or _matches_at(lines, seg, pos, True)
            ):
                return None
        else:
            pos = _find_from(lines, seg, cursor)
            if pos is None:
                return None

        placement.old_positions.extend(range(pos, pos + len(seg)))
        cursor = pos + len(seg)
        placement.end = cursor

    return placement


def _render(hunk: Hunk, lines: List[str], placement: _Placement) -> List[str]:
    """Build the replacement for lines[start:end]; elided lines are dropped."""
    out: List[str] = []
    positions = iter(placement.old_positions)
    for ln in hunk.lines:
        if ln.type == LineType.CONTEXT:
            idx = next(positions, None)
            out.append(lines[idx] if idx is not None else ln.content)
        elif ln.type == LineType.REMOVE:
            next(positions, None)
        elif ln.type == LineType.ADD:
            out.append(ln.content)
    return out


class _Applier:
    def __init__(self, content: str, strict: bool):
        self.lines = content.split("\n")
        self.strict = strict
        self.cursor = 0
        self.warnings: List[ApplyWarning] = []

    def warn(self, kind: WarningKind, index: int, msg: str) -> None:
        warning = ApplyWarning(kind=kind, hunk_index=index, message=msg)
        if self.strict:
            raise HunkApplicationError(msg, hunk_index=index)
        if warning.skipped:
            logger.debug("Hunk skipped", hunk=index, kind=kind.value, msg=msg)
        self.warnings.append(warning)

    def splice(self, placement: _Placement, new_lines: List[str]) -> None:
        self.lines[placement.start : placement.end] = new_lines
        self.cursor = placement.start + len(new_lines)

    def apply_hunk(self, index: int, hunk: Hunk) -> None:
        label = f"hunk {index + 1}" + (f" ({hunk.context})" if hunk.context else "")
        old = _old_lines(hunk)

        if not old:
            if not "\n".join(self.lines).strip():
                self.lines = [ln.content for ln in hunk.lines if ln.type == LineType.ADD]
                self.cursor = len(self.lines)
                return
            self.warn(WarningKind.EMPTY_HUNK, index, f"{label} has no context or removed lines to anchor it")
            return

        if not hunk.has_elision:
            pos = next(_positions(self.lines, old, self.cursor), None)
            if pos is None:
                preview = truncate_for_error("\n".join(old), 80)
                self.warn(WarningKind.CONTEXT_MISMATCH, index, f"{label}: context not found: {preview}")
                return
            placement = _Placement(start=pos, end=pos + len(old), old_positions=list(range(pos, pos + len(old))))
            self.splice(placement, _render(hunk, self.lines, placement))
            return

        segments = _segments(hunk)
        # A leading elision anchors the hunk on its first listed line
        head_seq = next(seg for seg in segments if seg)
        resolved: List[_Placement] = []
        for head in _positions(self.lines, head_seq, self.cursor):
            placement = _place_elided(self.lines, segments, head)
            if placement is not None:
                resolved.append(placement)

        if not resolved:
            preview = truncate_for_error("\n".join(head_seq), 80)
            self.warn(
                WarningKind.CONTEXT_MISMATCH,
                index,
                f"{label}: no consistent location for elided hunk starting with {preview}",
            )
            return

        clean = [p for p in resolved if not p.unclosed]
        candidates = clean or resolved
        chosen = candidates[0]
        if len(candidates) > 1:
            self.warn(
                WarningKind.AMBIGUOUS_ANCHOR,
                index,
                f"{label}: {len(candidates)} locations fit; used the one at line {chosen.start + 1}",
            )
        if chosen.unclosed:
            self.warn(
                WarningKind.UNCLOSED_ELISION,
                index,
                f"{label}: elided scope never closes; removed through end of file",
            )
        self.splice(chosen, _render(hunk, self.lines, chosen))


def apply_with_warnings(content: str, hunks: Sequence[Hunk]) -> Tuple[str, List[ApplyWarning]]:
    """
    Apply hunks in order against progressively updated content.

    Never raises on a hunk that cannot be placed: it is skipped, its target
    left untouched, and one warning recorded for it.
    """
    applier = _Applier(content, strict=False)
    for index, hunk in enumerate(hunks):
        applier.apply_hunk(index, hunk)
    return "\n".join(applier.lines), applier.warnings


def apply(content: str, hunks: Sequence[Hunk]) -> str:
    """Apply hunks; the first warning condition raises HunkApplicationError."""
    applier = _Applier(content, strict=True)
    for index, hunk in enumerate(hunks):
        applier.apply_hunk(index, hunk)
    return "\n".join(applier.lines)


def apply_file_diffs(files: Dict[str, str], diffs: Sequence[FileDiff]) -> Dict[str, str]:
    """Strictly apply each FileDiff to a copy of the path -> content map."""
    out = dict(files)
    for fd in diffs:
        if fd.path not in out:
            raise HunkApplicationError(f"file not found: {fd.path}")
        out[fd.path] = apply(out[fd.path], fd.hunks)
    return out
