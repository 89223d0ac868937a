"""Test generation components."""

from .llm_clients import LLMTransport, ClaudeTransport
from .llm_provider import LLMProvider, TransportLLMProvider
from .merge import MergeStrategy, MergeResult, merge_tests

__all__ = [
    "LLMTransport",
    "ClaudeTransport",
    "LLMProvider",
    "TransportLLMProvider",
    "MergeStrategy",
    "MergeResult",
    "merge_tests",
]
