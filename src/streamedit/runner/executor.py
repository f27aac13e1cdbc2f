from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple

from ..logger import configure_logging, logger
from ..models import Message, Role
from ..patch.errors import (
    RETRIABLE_ERRORS,
    AttemptsExhausted,
    EditCancelled,
    EditError,
    HunkApplicationError,
    NotFoundError,
    TransportError,
)
from ..patch.fileops import FileContentProvider, resolve_path
from ..patch.match import MatchEngine, apply_match
from ..patch.models import EditFormat, EditResult, MatchLevel, MatchResult, RetryContext
from ..patch.stream import ParserCallbacks, StreamParser
from ..patch.udiff import apply_with_warnings, filter_leading_blank_lines, parse_unified_diff
from ..settings.loader import load_settings
from ..settings.models import EditSettings, Settings
from .prompts import build_retry_prompt
from .source import LiteLLMTokenSource, TokenSource


@dataclass
class ExecutorCallbacks:
    """Observational progress hooks; none of them can alter the outcome."""

    on_progress: Optional[Callable[[str], None]] = None
    on_file_start: Optional[Callable[[str], None]] = None
    on_search_match: Optional[Callable[[str, MatchLevel], None]] = None
    on_search_fail: Optional[Callable[[str, str, EditError], None]] = None
    on_edit_applied: Optional[Callable[[str, str, str], None]] = None
    on_about: Optional[Callable[[str], None]] = None


_END = object()


async def _anext(it: AsyncIterator[str]) -> Any:
    try:
        return await it.__anext__()
    except StopAsyncIteration:
        return _END


class StreamEditExecutor:
    """
    Drives a token stream through the StreamParser, validating and applying
    each edit against a per-attempt working copy of the files.

    A failed search, a diff that cannot be placed, or malformed output ends
    the attempt; the model's partial output and a feedback message are
    appended to the conversation and the whole attempt restarts, up to
    `settings.max_attempts` attempts in total.
    """

    def __init__(
        self,
        source: TokenSource,
        files: FileContentProvider,
        settings: Optional[EditSettings] = None,
        callbacks: Optional[ExecutorCallbacks] = None,
    ):
        self.source = source
        self.files = files
        self.settings = settings or EditSettings()
        self.callbacks = callbacks or ExecutorCallbacks()
        self.engine = MatchEngine(threshold=self.settings.fuzzy_threshold)

        self._results: List[EditResult] = []
        self._about_parts: List[str] = []
        self._accumulated: List[str] = []
        self._working: Dict[str, str] = {}
        self._pending: Optional[Tuple[str, Optional[MatchResult]]] = None
        self._retry_ctx: Optional[RetryContext] = None
        self._parser: Optional[StreamParser] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        files: FileContentProvider,
        callbacks: Optional[ExecutorCallbacks] = None,
    ) -> "StreamEditExecutor":
        """Configure logging and stream from the configured litellm model."""
        if settings.model is None:
            raise ValueError("settings.model is required to stream edits from a model")
        configure_logging(settings.logging)
        return cls(LiteLLMTokenSource(settings.model), files, settings=settings.edit, callbacks=callbacks)

    @classmethod
    def from_config(
        cls,
        path: str,
        files: FileContentProvider,
        callbacks: Optional[ExecutorCallbacks] = None,
    ) -> "StreamEditExecutor":
        return cls.from_settings(load_settings(path), files, callbacks=callbacks)

    @property
    def results(self) -> List[EditResult]:
        return list(self._results)

    @property
    def about_text(self) -> str:
        return "\n\n".join(self._about_parts)

    @property
    def accumulated_output(self) -> str:
        return "".join(self._accumulated)

    async def execute(
        self,
        messages: Sequence[Message],
        cancel: Optional[asyncio.Event] = None,
    ) -> Tuple[List[EditResult], str]:
        conv: List[Message] = list(messages)
        max_attempts = self.settings.max_attempts
        last_error: Optional[EditError] = None
        last_ctx: Optional[RetryContext] = None

        for attempt in range(1, max_attempts + 1):
            logger.info("Edit attempt", attempt=attempt, max_attempts=max_attempts)
            try:
                await self._run_attempt(conv, cancel)
            except RETRIABLE_ERRORS as e:
                last_error = e
                last_ctx = self._retry_ctx or self._grammar_context(e)
                logger.warning(
                    "Edit attempt failed",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    path=last_ctx.file_path,
                    err=str(e),
                )
                if attempt >= max_attempts:
                    break

                self._progress(f"Retry attempt {attempt}/{max_attempts}")
                if self._accumulated:
                    conv.append(Message(role=Role.ASSISTANT, text=self.accumulated_output))
                conv.append(
                    Message(
                        role=Role.USER,
                        text=build_retry_prompt(last_ctx, self.settings.retry_content_max_chars),
                    )
                )
                continue

            logger.info("Edit session complete", attempt=attempt, edits=len(self._results))
            return list(self._results), self.about_text

        path = last_ctx.file_path if last_ctx else None
        search = last_ctx.failed_search if last_ctx else None
        logger.error("Edit attempts exhausted", attempts=max_attempts, path=path, err=str(last_error))
        raise AttemptsExhausted(
            f"edit failed after {max_attempts} attempts"
            + (f" ({path})" if path else "")
            + (f": {last_error}" if last_error else ""),
            attempts=max_attempts,
            path=path,
            search=search,
            last_error=last_error,
        ) from last_error

    # Attempt lifecycle

    def _failed_path(self) -> str:
        if self._pending is not None:
            return self._pending[0]
        if self._parser is not None and self._parser.current_file:
            return self._parser.current_file
        return ""

    def _grammar_context(self, err: EditError) -> RetryContext:
        path = self._failed_path()
        content: Optional[str] = None
        if path:
            try:
                content = self._working_content(path)[0]
            except EditError:
                content = None
        return RetryContext(
            file_path=path,
            reason=str(err),
            file_content=content,
            partial_output=self.accumulated_output,
        )

    def _reset_attempt(self) -> None:
        self._results = []
        self._about_parts = []
        self._accumulated = []
        self._working = {}
        self._pending = None
        self._retry_ctx = None

    async def _run_attempt(self, conv: List[Message], cancel: Optional[asyncio.Event]) -> None:
        self._reset_attempt()
        parser = self._parser = StreamParser(
            ParserCallbacks(
                on_file_start=self._on_file_start,
                on_search_ready=self._on_search_ready,
                on_replace_ready=self._on_replace_ready,
                on_diff_ready=self._on_diff_ready,
                on_about_complete=self._on_about,
            )
        )

        if cancel is not None and cancel.is_set():
            raise EditCancelled("edit cancelled")

        stream = self.source.stream(conv)
        try:
            while True:
                try:
                    chunk = await self._next_chunk(stream, cancel)
                except EditError:
                    raise
                except Exception as e:
                    logger.error("Token stream failed", err=str(e))
                    raise TransportError(f"token stream failed: {e}") from e
                if chunk is _END:
                    break
                self._accumulated.append(chunk)
                parser.feed(chunk)
            parser.finish()
        finally:
            await self._close_stream(stream)

    async def _next_chunk(self, stream: AsyncIterator[str], cancel: Optional[asyncio.Event]) -> Any:
        if cancel is None:
            return await _anext(stream)

        next_task = asyncio.ensure_future(_anext(stream))
        cancel_task = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({next_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [t for t in (next_task, cancel_task) if not t.done()]
            for t in pending:
                t.cancel()
            if pending:
                await asyncio.wait(pending)

        if cancel_task in done:
            logger.info("Edit cancelled", output_chars=len(self.accumulated_output))
            raise EditCancelled("edit cancelled")
        return next_task.result()

    async def _close_stream(self, stream: AsyncIterator[str]) -> None:
        aclose = getattr(stream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            logger.warning("Token stream close failed", err=str(e))

    # Parser callbacks

    def _progress(self, msg: str) -> None:
        if self.callbacks.on_progress:
            self.callbacks.on_progress(msg)

    def _working_content(self, path: str) -> Tuple[Optional[str], str]:
        """Current working text of `path` and the provider path it resolved to."""
        if path in self._working:
            return self._working[path], path
        resolved = resolve_path(self.files, path)
        if resolved is None:
            return None, path
        if resolved not in self._working:
            content = self.files.read(resolved)
            if content is None:
                return None, path
            self._working[resolved] = content
        return self._working[resolved], resolved

    def _load(self, path: str, ctx: RetryContext) -> Tuple[Optional[str], str]:
        """_working_content for a callback; provider errors become retriable failures."""
        try:
            return self._working_content(path)
        except EditError as e:
            err = e if isinstance(e, RETRIABLE_ERRORS) else NotFoundError(str(e), search=ctx.failed_search)
            logger.info("File read failed", path=path, err=str(err))
            ctx.reason = str(err)
            raise self._fail(err, ctx) from e

    def _fail(self, err: EditError, ctx: RetryContext) -> EditError:
        ctx.partial_output = self.accumulated_output
        self._retry_ctx = ctx
        return err

    def _on_file_start(self, path: str) -> None:
        logger.debug("Edit file start", path=path)
        if self.callbacks.on_file_start:
            self.callbacks.on_file_start(path)

    def _on_search_ready(self, path: str, search: str) -> None:
        content, resolved = self._load(path, RetryContext(file_path=path, reason="", failed_search=search))
        self._pending = (resolved, None)

        if content is None:
            if not search.strip():
                # Empty search against a missing file creates it
                return
            err = NotFoundError(f"file not found: {path}", search=search)
            self._notify_search_fail(path, search, err)
            raise self._fail(
                err,
                RetryContext(file_path=path, reason=str(err), failed_search=search, file_missing=True),
            )

        if not search.strip() and not content.strip():
            match = MatchResult(level=MatchLevel.EXACT, start=0, end=len(content), original=content)
        else:
            guard = self.files.guard(resolved)
            try:
                if guard is not None:
                    match = self.engine.find_with_guard(content, search, guard[0], guard[1])
                else:
                    match = self.engine.find(content, search)
            except NotFoundError as e:
                logger.info("Search failed", path=resolved, err=str(e))
                self._notify_search_fail(resolved, search, e)
                raise self._fail(
                    e,
                    RetryContext(
                        file_path=resolved,
                        reason=str(e),
                        failed_search=search,
                        file_content=content,
                    ),
                )

        self._pending = (resolved, match)
        logger.debug("Search matched", path=resolved, level=match.level.value)
        if self.callbacks.on_search_match:
            self.callbacks.on_search_match(resolved, match.level)

    def _notify_search_fail(self, path: str, search: str, err: EditError) -> None:
        if self.callbacks.on_search_fail:
            self.callbacks.on_search_fail(path, search, err)

    def _on_replace_ready(self, path: str, search: str, replace: str) -> None:
        if self._pending is None:
            raise HunkApplicationError(f"replace for {path} without a validated search")
        resolved, match = self._pending
        self._pending = None

        old = self._working.get(resolved, "")
        if match is None:
            new = replace
            level = None
        else:
            new = apply_match(old, match, replace)
            level = match.level
        self._working[resolved] = new
        self._record(
            EditResult(
                path=resolved,
                old_content=old,
                new_content=new,
                format=EditFormat.SEARCH_REPLACE,
                match_level=level,
            )
        )

    def _on_diff_ready(self, path: str, lines: List[str]) -> None:
        lines = filter_leading_blank_lines(lines)
        content, resolved = self._load(path, RetryContext(file_path=path, reason="", diff_lines=list(lines)))
        existing = content
        if content is None:
            content = ""

        try:
            diffs = parse_unified_diff("\n".join(lines), default_path=resolved)
        except EditError as e:
            raise self._fail(
                e,
                RetryContext(file_path=resolved, reason=str(e), diff_lines=list(lines), file_content=existing),
            )

        hunks = [h for fd in diffs for h in fd.hunks]
        new, warnings = apply_with_warnings(content, hunks)
        skipped = [w for w in warnings if w.skipped]
        if skipped:
            err = HunkApplicationError(
                "; ".join(str(w) for w in skipped),
                hunk_index=skipped[0].hunk_index,
            )
            logger.info("Diff failed", path=resolved, skipped=len(skipped), err=str(err))
            raise self._fail(
                err,
                RetryContext(file_path=resolved, reason=str(err), diff_lines=list(lines), file_content=existing),
            )

        notes = "; ".join(str(w) for w in warnings)
        if notes:
            logger.info("Diff applied with warnings", path=resolved, warning=notes)
        self._working[resolved] = new
        self._record(
            EditResult(
                path=resolved,
                old_content=content,
                new_content=new,
                format=EditFormat.UNIFIED_DIFF,
                warning=notes or None,
            )
        )

    def _record(self, result: EditResult) -> None:
        self._results.append(result)
        logger.debug(
            "Edit applied",
            path=result.path,
            format=result.format.value,
            level=result.match_level.value if result.match_level else None,
        )
        if self.callbacks.on_edit_applied:
            self.callbacks.on_edit_applied(result.path, result.old_content, result.new_content)

    def _on_about(self, text: str) -> None:
        if not text:
            return
        self._about_parts.append(text)
        if self.callbacks.on_about:
            self.callbacks.on_about(text)
