from __future__ import annotations

from typing import List, Optional


def _skip_quoted(line: str, i: int, quote: str) -> int:
    """
    Return the index just past the closing `quote` for a literal opened at
    line[i]. Backslash escapes are honored except in backtick raw strings.
    Returns -1 when the literal is not closed on this line.
    """
    n = len(line)
    j = i + 1
    while j < n:
        ch = line[j]
        if ch == "\\" and quote != "`":
            j += 2
            continue
        if ch == quote:
            return j + 1
        j += 1
    return -1


def update_brace_depth(depth: int, line: str) -> int:
    """
    Return the brace depth after `line`, starting from `depth`.

    Braces inside "strings", 'char literals', `raw strings`, // line comments
    and /* block comments */ are ignored. Literals and block comments are
    tracked within the line only.
    """
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        nxt = line[i + 1] if i + 1 < n else ""

        if ch == "/" and nxt == "/":
            break
        if ch == "/" and nxt == "*":
            close = line.find("*/", i + 2)
            if close < 0:
                break
            i = close + 2
            continue
        if ch == '"' or ch == "`":
            end = _skip_quoted(line, i, ch)
            if end < 0:
                break
            i = end
            continue
        if ch == "'":
            end = _skip_quoted(line, i, ch)
            # A lone apostrophe (lifetime, prose) is not a literal
            if end > 0:
                i = end
                continue
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        i += 1
    return depth


def scan_to_close(lines: List[str], start: int, depth: int) -> Optional[int]:
    """
    Scan lines[start:] from `depth` and return the index of the first line
    after which depth is back at zero (or below). None when input runs out.
    """
    for idx in range(start, len(lines)):
        depth = update_brace_depth(depth, lines[idx])
        if depth <= 0:
            return idx
    return None
