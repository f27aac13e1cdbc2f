import pytest

from streamedit.patch.errors import GrammarError, NotFoundError
from streamedit.patch.models import EditFormat, ParserState
from streamedit.patch.stream import (
    ParserCallbacks,
    ParserHalted,
    ParserRunning,
    StreamParser,
)


class Recorder:
    def __init__(self):
        self.events = []
        self.files = []

    def callbacks(self, **overrides) -> ParserCallbacks:
        cbs = ParserCallbacks(
            on_file_start=lambda path: self.events.append(("start", path)),
            on_search_ready=lambda path, search: self.events.append(("search", path, search)),
            on_replace_ready=lambda path, search, replace: self.events.append(
                ("replace", path, search, replace)
            ),
            on_diff_ready=lambda path, lines: self.events.append(("diff", path, list(lines))),
            on_file_complete=self._on_file,
            on_about_complete=lambda text: self.events.append(("about", text)),
        )
        for name, fn in overrides.items():
            setattr(cbs, name, fn)
        return cbs

    def _on_file(self, edit):
        self.files.append(edit)
        self.events.append(("complete", edit.path))


SEARCH_REPLACE_TEXT = "\n".join(
    [
        "Let me fix that.",
        "",
        "[FILE: main.go]",
        "<<<<<<< SEARCH",
        "func old() {",
        "}",
        "=======",
        "func new() {",
        "}",
        ">>>>>>> REPLACE",
        "[/FILE]",
        "",
        "[ABOUT]Renamed old to new.[/ABOUT]",
        "",
    ]
)


DIFF_WITH_ELISION_TEXT = "\n".join(
    [
        "Collapsing the body.",
        "[FILE: main.go]",
        "```diff",
        "--- main.go",
        "+++ main.go",
        "@@ func main @@",
        "-func main() {",
        "-...",
        "-}",
        "+func main() {",
        "+    run()",
        "+}",
        "```",
        "[/FILE]",
        "[ABOUT]Replaced main.",
        "Still explaining",
    ]
)


def _run(text: str, chunk_size: int = 0, **overrides) -> Recorder:
    rec = Recorder()
    parser = StreamParser(rec.callbacks(**overrides))
    if chunk_size:
        for i in range(0, len(text), chunk_size):
            parser.feed(text[i : i + chunk_size])
    else:
        parser.feed(text)
    parser.finish()
    return rec


def test_search_replace_callbacks():
    rec = _run(SEARCH_REPLACE_TEXT)

    assert rec.events == [
        ("start", "main.go"),
        ("search", "main.go", "func old() {\n}"),
        ("replace", "main.go", "func old() {\n}", "func new() {\n}"),
        ("complete", "main.go"),
        ("about", "Renamed old to new."),
    ]
    edit = rec.files[0]
    assert edit.format == EditFormat.SEARCH_REPLACE
    assert len(edit.blocks) == 1
    assert edit.blocks[0].replace == "func new() {\n}"


def test_multiple_blocks_in_one_file():
    text = "\n".join(
        [
            "[FILE: a.py]",
            "<<<<<<< SEARCH",
            "x = 1",
            "=======",
            "x = 2",
            ">>>>>>> REPLACE",
            "<<<<<<< SEARCH",
            "y = 1",
            "=======",
            ">>>>>>> REPLACE",
            "[/FILE]",
        ]
    )
    rec = _run(text)

    blocks = rec.files[0].blocks
    assert [(b.search, b.replace) for b in blocks] == [("x = 1", "x = 2"), ("y = 1", "")]


def test_marker_lengths_are_flexible():
    text = "[FILE: a]\n<<<<< SEARCH\nx\n=========\ny\n>>>>>>>>> REPLACE\n[/FILE]\n"
    rec = _run(text)
    assert rec.files[0].blocks[0].search == "x"
    assert rec.files[0].blocks[0].replace == "y"


def test_unified_diff_block():
    text = "\n".join(
        [
            "[FILE: main.go]",
            "```diff",
            "--- main.go",
            "+++ main.go",
            "@@ func main @@",
            " func main() {",
            "-    old()",
            "+    new()",
            " }",
            "[/FILE]",
        ]
    )
    rec = _run(text)

    diff_events = [e for e in rec.events if e[0] == "diff"]
    assert diff_events == [
        (
            "diff",
            "main.go",
            ["--- main.go", "+++ main.go", "@@ func main @@", " func main() {", "-    old()", "+    new()", " }"],
        )
    ]
    assert rec.files[0].format == EditFormat.UNIFIED_DIFF
    assert rec.events.index(diff_events[0]) < rec.events.index(("complete", "main.go"))


def test_multiple_files():
    text = "\n".join(
        [
            "[FILE: a.txt]",
            "<<<<<<< SEARCH",
            "a",
            "=======",
            "A",
            ">>>>>>> REPLACE",
            "[/FILE]",
            "[FILE: b.txt]",
            "<<<<<<< SEARCH",
            "b",
            "=======",
            "B",
            ">>>>>>> REPLACE",
            "[/FILE]",
        ]
    )
    rec = _run(text)
    assert [f.path for f in rec.files] == ["a.txt", "b.txt"]


def test_file_without_edits_has_unknown_format():
    rec = _run("[FILE: notes.md]\nsome prose\n[/FILE]\n")
    assert rec.files[0].format == EditFormat.UNKNOWN


def test_new_file_header_implicitly_closes_previous():
    text = "[FILE: a]\n@@\n-x\n+y\n[FILE: b]\n<<<<<<< SEARCH\nq\n=======\nr\n>>>>>>> REPLACE\n"
    rec = _run(text)

    assert [f.path for f in rec.files] == ["a", "b"]
    assert rec.files[0].diff_lines == ("@@", "-x", "+y")


def test_open_file_completed_on_finish():
    rec = _run("[FILE: a]\n<<<<<<< SEARCH\nx\n=======\ny\n>>>>>>> REPLACE")
    assert [f.path for f in rec.files] == ["a"]


@pytest.mark.parametrize("chunk_size", [1, 2, 3, 7, 64])
@pytest.mark.parametrize("text", [SEARCH_REPLACE_TEXT, DIFF_WITH_ELISION_TEXT], ids=["search-replace", "diff"])
def test_chunking_does_not_change_callbacks(text, chunk_size):
    assert _run(text, chunk_size=chunk_size).events == _run(text).events


def test_diff_with_elision_and_unclosed_about():
    rec = _run(DIFF_WITH_ELISION_TEXT, chunk_size=1)

    diff_events = [e for e in rec.events if e[0] == "diff"]
    assert diff_events[0][2][3:6] == ["-func main() {", "-...", "-}"]
    assert rec.events[-1] == ("about", "Replaced main.\nStill explaining")


def test_stray_divider_in_prose_is_ignored():
    text = "Conflict markers look like this:\n=======\n>>>>>>> REPLACE\n" + SEARCH_REPLACE_TEXT
    assert _run(text).events == _run(SEARCH_REPLACE_TEXT).events


def test_crlf_line_endings():
    rec = _run(SEARCH_REPLACE_TEXT.replace("\n", "\r\n"))
    assert rec.files[0].blocks[0].search == "func old() {\n}"


def test_about_block_spanning_lines():
    rec = _run("[ABOUT]\nFirst line.\nSecond line.\n[/ABOUT]\n")
    assert rec.events == [("about", "First line.\nSecond line.")]


def test_unclosed_about_is_flushed_only_on_finish():
    rec = Recorder()
    parser = StreamParser(rec.callbacks())
    parser.feed("[ABOUT]\nStill writing\n")
    assert rec.events == []
    assert parser.state == ParserState.IN_ABOUT

    parser.finish()
    assert rec.events == [("about", "Still writing")]


def test_validation_error_halts_parser():
    def reject(path, search):
        raise NotFoundError("search not found", search=search)

    rec = Recorder()
    parser = StreamParser(rec.callbacks(on_search_ready=reject))

    with pytest.raises(NotFoundError) as first:
        parser.feed("[FILE: a]\n<<<<<<< SEARCH\nmissing\n=======\n")

    assert parser.is_halted
    assert isinstance(parser.status, ParserHalted)
    assert parser.halt_error is first.value

    with pytest.raises(NotFoundError) as again:
        parser.feed("more\n")
    assert again.value is first.value

    with pytest.raises(NotFoundError) as at_finish:
        parser.finish()
    assert at_finish.value is first.value


@pytest.mark.parametrize(
    "text",
    [
        "<<<<<<< SEARCH\nx\n",
        "[FILE: a]\n=======\n",
        "[FILE: a]\n>>>>>>> REPLACE\n",
        "[FILE: a]\n<<<<<<< SEARCH\nx\n>>>>>>> REPLACE\n",
        "[FILE: a]\n<<<<<<< SEARCH\nx\n<<<<<<< SEARCH\n",
        "[FILE: a]\n<<<<<<< SEARCH\nx\n[/FILE]\n",
        "[FILE: a]\n<<<<<<< SEARCH\nx\n=======\ny\n=======\n",
        "[FILE: a]\n<<<<<<< SEARCH\nx\n=======\ny\n[/FILE]\n",
    ],
)
def test_grammar_errors(text):
    parser = StreamParser()
    with pytest.raises(GrammarError):
        parser.feed(text)
    assert parser.is_halted


def test_stream_ending_inside_block_is_grammar_error():
    parser = StreamParser()
    parser.feed("[FILE: a]\n<<<<<<< SEARCH\nx\n=======\ny")
    with pytest.raises(GrammarError):
        parser.finish()


def test_reset_clears_state():
    parser = StreamParser()
    with pytest.raises(GrammarError):
        parser.feed("[FILE: a]\n=======\n")

    parser.reset()

    assert parser.status == ParserRunning()
    assert parser.state == ParserState.IDLE
    assert parser.current_file is None
    parser.feed("[FILE: x]\n")
    assert parser.current_file == "x"
    assert parser.state == ParserState.IN_FILE


def test_enum_string_values():
    assert EditFormat.SEARCH_REPLACE.value == "search-replace"
    assert EditFormat.UNIFIED_DIFF.value == "unified-diff"
    assert ParserState.IN_SEARCH.value == "in-search"
    assert ParserState.IN_ABOUT.value == "in-about"
