"""Test syntax profiles and mutation testing engines."""

from .test_syntax import TestSyntax, JEST, MOCHA, PYTEST, get_test_syntax, available_frameworks
from .mutation_engine import MutationEngine, StrykerMutationEngine

__all__ = [
    "TestSyntax",
    "JEST",
    "MOCHA",
    "PYTEST",
    "get_test_syntax",
    "available_frameworks",
    "MutationEngine",
    "StrykerMutationEngine",
]
