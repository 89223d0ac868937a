"""Mutation-guided test generation: generate a test suite and refine it until its mutants die."""

__version__ = "0.1.0"
