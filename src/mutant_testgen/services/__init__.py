"""Services package for mutant-testgen."""

from .base_service import BaseService
from .test_generation_service import TestGenerationService
from .mutation_analysis_service import MutationAnalysisService
from .feedback_loop_service import (
    FeedbackLoopService,
    FeedbackLoopResult,
    LoopIteration,
    ImprovementSummary,
)

__all__ = [
    'BaseService',
    'TestGenerationService',
    'MutationAnalysisService',
    'FeedbackLoopService',
    'FeedbackLoopResult',
    'LoopIteration',
    'ImprovementSummary',
]
