from .base import CompletionError, CompletionTimeoutError, LLMClient
from .completion import CompletionClient, build_prompt
