"""Input validation utilities for feedback loop and batch settings."""

import logging
import numbers
from typing import Any

from mutant_testgen.exceptions import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

MERGE_STRATEGIES = ('auto', 'splice', 'append')
BATCH_MODES = ('generate', 'improve')


class SettingsValidator:
    """Validation of user-supplied settings with helpful error messages."""

    @staticmethod
    def validate_target_score(score: Any) -> float:
        """Check that a target mutation score lies in [0, 100]."""
        if isinstance(score, bool) or not isinstance(score, numbers.Real):
            raise ConfigurationError(
                f"Target mutation score must be a number, got {score!r}",
                suggestion="Set feedback_loop.target_mutation_score to a value between 0 and 100."
            )
        if not 0 <= score <= 100:
            raise ConfigurationError(
                f"Target mutation score must be between 0 and 100, got {score}",
                suggestion="Mutation scores are percentages; 80 is a common target."
            )
        return float(score)

    @staticmethod
    def validate_max_iterations(max_iterations: Any) -> int:
        """Check that the iteration budget is a positive integer."""
        if isinstance(max_iterations, bool) or not isinstance(max_iterations, numbers.Integral):
            raise ConfigurationError(
                f"Maximum iterations must be an integer, got {max_iterations!r}",
                suggestion="Set feedback_loop.max_iterations to a whole number such as 3 or 5."
            )
        if max_iterations < 1:
            raise ConfigurationError(
                f"Maximum iterations must be at least 1, got {max_iterations}",
                suggestion="At least one mutation analysis is needed to measure the tests."
            )
        return int(max_iterations)

    @staticmethod
    def validate_concurrency(concurrency: Any) -> int:
        """Check that the batch concurrency is a positive integer."""
        if isinstance(concurrency, bool) or not isinstance(concurrency, numbers.Integral) or concurrency < 1:
            raise ConfigurationError(
                f"Concurrency must be a positive integer, got {concurrency!r}",
                suggestion="Keep concurrency small (e.g. 3); model and mutation services are rate limited."
            )
        return int(concurrency)

    @staticmethod
    def validate_merge_strategy(strategy: Any) -> str:
        """Check that a merge strategy name is known."""
        if strategy not in MERGE_STRATEGIES:
            raise ConfigurationError(
                f"Unknown merge strategy: {strategy!r}",
                suggestion=f"Use one of: {', '.join(MERGE_STRATEGIES)}."
            )
        return strategy

    @staticmethod
    def validate_batch_mode(mode: Any) -> str:
        """Check that a batch processing mode is known."""
        if mode not in BATCH_MODES:
            raise ConfigurationError(
                f"Unknown processing mode: {mode!r}",
                suggestion=f"Use one of: {', '.join(BATCH_MODES)}."
            )
        return mode

    @staticmethod
    def require_path(value: Any, name: str) -> str:
        """Check that a required path argument was provided."""
        if not value or not str(value).strip():
            raise ValidationError(
                f"{name} is required",
                suggestion=f"Pass a {name.lower()} relative to the storage base path."
            )
        return str(value)
