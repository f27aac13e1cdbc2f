from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence

import litellm

from ..logger import logger
from ..models import Message
from ..patch.errors import TransportError
from ..settings.models import ModelSettings


class TokenSource(Protocol):
    """Produces the model's reply to a conversation as incremental text chunks."""

    def stream(self, messages: Sequence[Message]) -> AsyncIterator[str]: ...


def _status_code(e: BaseException) -> Optional[int]:
    code = getattr(e, "status_code", None)
    return code if isinstance(code, int) else None


def _should_retry(status_code: Optional[int]) -> bool:
    if status_code is None:
        return False
    try:
        return bool(litellm._should_retry(status_code))
    except Exception:
        return False


class LiteLLMTokenSource:
    """
    Streams completions through litellm.acompletion.

    A failure before the first chunk is retried with exponential backoff when
    litellm deems the status code retriable. Any other failure, or one after
    text has been yielded, raises TransportError.
    """

    def __init__(self, settings: ModelSettings):
        self.settings = settings

    def _build_args(self, messages: Sequence[Message]) -> Dict[str, Any]:
        cfg = self.settings
        args: Dict[str, Any] = dict(cfg.extra or {})
        args.update(
            {
                "model": cfg.model,
                "messages": [m.to_litellm() for m in messages],
                "stream": True,
            }
        )
        if cfg.temperature is not None:
            args["temperature"] = cfg.temperature
        if cfg.reasoning_effort is not None:
            args["reasoning_effort"] = cfg.reasoning_effort
        if cfg.max_tokens is not None:
            args["max_tokens"] = cfg.max_tokens
        return args

    async def stream(self, messages: Sequence[Message]) -> AsyncIterator[str]:
        cfg = self.settings
        max_retries = cfg.transport_retries
        attempt = 0
        args = self._build_args(messages)

        logger.debug("LLM request", model=cfg.model, messages=len(messages))

        while True:
            yielded = False
            try:
                stream = await litellm.acompletion(**args)
                async for chunk in stream:
                    choice_list = chunk.choices
                    if not choice_list:
                        continue
                    delta = choice_list[0].delta
                    if not delta:
                        continue
                    content_piece = delta.content
                    if isinstance(content_piece, str) and content_piece:
                        yielded = True
                        yield content_piece
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                status_code = _status_code(e)
                if not yielded and _should_retry(status_code) and attempt < max_retries:
                    attempt += 1
                    await asyncio.sleep(cfg.transport_backoff * (2 ** (attempt - 1)))

                    logger.warning(
                        "LLM retry",
                        attempt=attempt,
                        max_retries=max_retries,
                        status_code=status_code,
                        err=str(e),
                    )
                    continue

                logger.error("LLM error", status_code=status_code, err=e)
                raise TransportError(f"LLM error: {e}") from e


class StaticTokenSource:
    """
    Replays scripted responses, one per call to stream(), split into chunks
    of `chunk_size` characters. The last response repeats once exhausted.
    """

    def __init__(self, responses: Sequence[str], chunk_size: int = 16):
        if not responses:
            raise ValueError("StaticTokenSource needs at least one response")
        self._responses: List[str] = list(responses)
        self.chunk_size = max(1, chunk_size)
        self.calls: List[List[Message]] = []

    async def stream(self, messages: Sequence[Message]) -> AsyncIterator[str]:
        idx = min(len(self.calls), len(self._responses) - 1)
        self.calls.append(list(messages))
        text = self._responses[idx]
        for pos in range(0, len(text), self.chunk_size):
            yield text[pos : pos + self.chunk_size]
            await asyncio.sleep(0)
