"""Core application package."""

from .application import MutantTestGenApp
from .llm_factory import LLMProviderFactory
from .use_cases import GenerateTestsUseCase, ImproveTestsUseCase, BatchProcessUseCase

__all__ = [
    'MutantTestGenApp',
    'LLMProviderFactory',
    'GenerateTestsUseCase',
    'ImproveTestsUseCase',
    'BatchProcessUseCase',
]
