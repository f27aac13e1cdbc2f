from .executor import ExecutorCallbacks, StreamEditExecutor
from .prompts import build_retry_prompt
from .source import LiteLLMTokenSource, StaticTokenSource, TokenSource

__all__ = [
    "ExecutorCallbacks",
    "StreamEditExecutor",
    "build_retry_prompt",
    "LiteLLMTokenSource",
    "StaticTokenSource",
    "TokenSource",
]
