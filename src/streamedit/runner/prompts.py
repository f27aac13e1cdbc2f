from __future__ import annotations

from typing import List

from ..patch.models import RetryContext


DEFAULT_MAX_CONTENT_CHARS = 20 * 1024

ELIDED_MARKER = "\n... [{count} characters omitted] ...\n"


def truncate_middle(text: str, max_chars: int) -> str:
    """Keep the head and tail of `text` so the result stays near `max_chars`."""
    if len(text) <= max_chars:
        return text
    half = max_chars // 2
    omitted = len(text) - 2 * half
    return text[:half] + ELIDED_MARKER.format(count=omitted) + text[-half:]


def build_retry_prompt(ctx: RetryContext, max_content_chars: int = DEFAULT_MAX_CONTENT_CHARS) -> str:
    """
    Turn a failed edit into an instruction for the next attempt: what failed
    and why, the offending search text or diff, and the file as it is now.
    """
    if ctx.file_path:
        header = f"Your previous edit to `{ctx.file_path}` could not be applied."
    else:
        header = "Your previous output could not be processed."
    parts: List[str] = [header, f"Reason: {ctx.reason}"]

    if ctx.failed_search is not None:
        parts.append(
            "This SEARCH block did not match the current file content:\n"
            f"```\n{ctx.failed_search}\n```"
        )
    if ctx.diff_lines:
        diff_text = "\n".join(ctx.diff_lines)
        parts.append(f"This diff did not apply:\n```diff\n{diff_text}\n```")

    if ctx.file_content is not None:
        content = truncate_middle(ctx.file_content, max_content_chars)
        parts.append(f"Current content of `{ctx.file_path}`:\n```\n{content}\n```")
    elif ctx.file_missing:
        parts.append(f"`{ctx.file_path}` does not exist. Use an empty SEARCH block to create it.")

    parts.append(
        "Emit the complete set of edits again. SEARCH text must be copied from the "
        "current content above, including indentation. Do not repeat edits that "
        "already assume the failed one was applied."
    )
    return "\n\n".join(parts)
