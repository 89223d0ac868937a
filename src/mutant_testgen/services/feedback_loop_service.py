"""Feedback loop service: iterate generation and mutation analysis until a target score."""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from mutant_testgen.config import Config
from mutant_testgen.exceptions import ValidationError
from mutant_testgen.models.data_models import FeedbackLoopSettings, Priority, StopReason
from mutant_testgen.models.mutation_result import MutationResult
from mutant_testgen.models.source_file import SourceFile
from mutant_testgen.models.test_file import TestFile
from mutant_testgen.utils.user_feedback import UserFeedback
from .base_service import BaseService
from .mutation_analysis_service import MutationAnalysisService
from .test_generation_service import TestGenerationService

EXPORT_FORMATS = ('json', 'summary', 'detailed')
SLOW_LOOP_SECONDS = 300

# Checked in order; the first category whose keywords appear in the message wins
_ERROR_CATEGORIES = (
    ('API Error', ('api', 'rate limit')),
    ('Timeout', ('timeout', 'timed out')),
    ('File System', ('file', 'path')),
    ('Syntax Error', ('syntax', 'parse', 'missing:')),
    ('Mutation Testing', ('mutation', 'stryker')),
)


@dataclass
class ImprovementSummary:
    """What one improvement step changed in the test suite."""
    mutants_targeted: int
    new_test_cases: int
    total_test_cases: int
    test_file_version: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mutants_targeted': self.mutants_targeted,
            'new_test_cases': self.new_test_cases,
            'total_test_cases': self.total_test_cases,
            'test_file_version': self.test_file_version,
        }


@dataclass
class LoopIteration:
    """Telemetry of one analyze/decide/improve cycle."""
    number: int
    mutation_result: Optional[MutationResult] = None
    improvement: Optional[ImprovementSummary] = None
    target_reached: bool = False
    no_mutants_to_kill: bool = False
    error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    duration: float = 0.0

    @property
    def score(self) -> Optional[float]:
        return self.mutation_result.mutation_score if self.mutation_result else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'number': self.number,
            'mutation_result': self.mutation_result.to_dict() if self.mutation_result else None,
            'improvement': self.improvement.to_dict() if self.improvement else None,
            'target_reached': self.target_reached,
            'no_mutants_to_kill': self.no_mutants_to_kill,
            'error': self.error,
            'started_at': self.started_at.isoformat(),
            'duration': self.duration,
        }


@dataclass
class FeedbackLoopResult:
    """Outcome of one feedback loop over a single source file."""
    source_file: Optional[SourceFile]
    settings: FeedbackLoopSettings
    test_file: Optional[TestFile] = None
    iterations: List[LoopIteration] = field(default_factory=list)
    final_score: float = 0.0
    target_reached: bool = False
    stop_reason: Optional[StopReason] = None
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    total_duration: float = 0.0
    analysis: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def total_iterations(self) -> int:
        return len(self.iterations)

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def last_mutation_result(self) -> Optional[MutationResult]:
        for iteration in reversed(self.iterations):
            if iteration.mutation_result is not None:
                return iteration.mutation_result
        return None

    @property
    def scores(self) -> List[float]:
        return [iteration.score for iteration in self.iterations if iteration.score is not None]


class FeedbackLoopService(BaseService):
    """Alternates mutation analysis and test improvement for one source file.

    Each iteration measures the current suite, stops when the target score
    is reached or nothing actionable survived, and otherwise asks for tests
    that kill the surviving mutants. Failures inside an iteration are
    recorded on it and the loop moves on; only a failed initial generation
    aborts the loop.
    """

    def __init__(self, test_generation_service: TestGenerationService,
                 mutation_analysis_service: MutationAnalysisService,
                 config: Optional[Config] = None, feedback: Optional[UserFeedback] = None,
                 logger: Optional[logging.Logger] = None):
        super().__init__(config, feedback, logger)
        self.test_generation_service = test_generation_service
        self.mutation_analysis_service = mutation_analysis_service

    async def execute_feedback_loop(self, source_file: SourceFile,
                                    settings: Optional[FeedbackLoopSettings] = None) -> FeedbackLoopResult:
        """Run the refinement loop for ``source_file``.

        Args:
            source_file: The module under test.
            settings: Loop settings; defaults to the ``feedback_loop`` config section.

        Returns:
            The loop result with per-iteration telemetry and a final analysis.

        Raises:
            ConfigurationError: If the settings are out of range. Raised before
                any collaborator is called.
            ValidationError, CollaboratorError: If the initial generation fails.
        """
        settings = settings or FeedbackLoopSettings.from_config(self.config)
        settings.validate()

        result = FeedbackLoopResult(source_file=source_file, settings=settings)
        started = time.monotonic()
        self._log_info(
            f"Starting feedback loop for {source_file.file_name} "
            f"(target {settings.target_mutation_score}%, max {settings.max_iterations} iterations)"
        )

        try:
            result.test_file = await self.test_generation_service.generate_initial_tests(
                source_file, {'context': settings.initial_context}
            )
        except Exception as e:
            self._log_error(f"Feedback loop for {source_file.file_name} failed during initial generation: {e}")
            raise

        for number in range(1, settings.max_iterations + 1):
            self._log_info(f"Feedback iteration {number}/{settings.max_iterations} for {source_file.file_name}")
            iteration = LoopIteration(number=number)
            iteration_started = time.monotonic()

            stop_reason = await self._run_iteration(result, iteration, settings)

            iteration.duration = time.monotonic() - iteration_started
            result.iterations.append(iteration)
            if stop_reason is not None:
                result.stop_reason = stop_reason
                break
        else:
            result.stop_reason = StopReason.MAX_ITERATIONS

        last_result = result.last_mutation_result
        result.final_score = last_result.mutation_score if last_result else 0.0
        result.end_time = datetime.now()
        result.total_duration = time.monotonic() - started
        result.analysis = self._generate_final_analysis(result)

        message = (
            f"Feedback loop for {source_file.file_name} finished after {result.total_iterations} "
            f"iterations with score {result.final_score:.2f}% in {self._format_duration(result.total_duration)}"
        )
        if result.target_reached:
            self._log_success(message)
        else:
            self._log_warning(message, "Review the recommendations in the final analysis.")
        return result

    async def _run_iteration(self, result: FeedbackLoopResult, iteration: LoopIteration,
                             settings: FeedbackLoopSettings) -> Optional[StopReason]:
        source_file = result.source_file
        test_file = result.test_file

        try:
            mutation_result = await self.mutation_analysis_service.run_mutation_analysis(
                source_file, test_file, dict(settings.mutation_options)
            )
        except Exception as e:
            iteration.error = f"Mutation analysis failed: {e}"
            self._log_warning(f"Iteration {iteration.number}: {iteration.error}")
            return None
        iteration.mutation_result = mutation_result

        if mutation_result.has_reached_target(settings.target_mutation_score):
            iteration.target_reached = True
            result.target_reached = True
            self._log_success(
                f"Target mutation score reached in iteration {iteration.number}: "
                f"{mutation_result.mutation_score:.2f}% >= {settings.target_mutation_score}%"
            )
            return StopReason.TARGET_REACHED

        actionable = list(mutation_result.survived_mutants)
        if settings.improve_no_coverage:
            actionable.extend(mutation_result.no_coverage_mutants)
        if not actionable:
            iteration.no_mutants_to_kill = True
            self._log_info(f"No actionable mutants left for {source_file.file_name}")
            return StopReason.NO_SURVIVORS

        test_cases_before = len(test_file.extract_test_cases())
        improvement_options = {'merge_strategy': settings.merge_strategy, **settings.improvement_options}
        try:
            test_file = await self.test_generation_service.improve_tests(
                source_file, test_file, actionable, improvement_options
            )
        except Exception as e:
            iteration.error = f"Improvement failed: {e}"
            self._log_warning(f"Iteration {iteration.number}: {iteration.error}")
            return None

        result.test_file = test_file
        total_test_cases = len(test_file.extract_test_cases())
        iteration.improvement = ImprovementSummary(
            mutants_targeted=len(actionable),
            new_test_cases=total_test_cases - test_cases_before,
            total_test_cases=total_test_cases,
            test_file_version=test_file.version,
        )
        test_file.record_improvement(mutation_result)
        return None

    def analyze_performance(self, loop_results: Sequence[FeedbackLoopResult]) -> Dict[str, Any]:
        """Aggregate statistics over many completed loops."""
        if not loop_results:
            return {'message': 'No results to analyze', 'total_files': 0}

        successful = [result for result in loop_results if result.success]
        failed = [result for result in loop_results if not result.success]

        analysis = {
            'total_files': len(loop_results),
            'successful_files': len(successful),
            'success_rate': len(successful) / len(loop_results),
            'average_iterations': 0.0,
            'average_final_score': 0.0,
            'target_reached_count': 0,
            'average_duration': 0.0,
        }

        if successful:
            analysis['average_iterations'] = sum(r.total_iterations for r in successful) / len(successful)
            analysis['average_final_score'] = sum(r.final_score for r in successful) / len(successful)
            analysis['target_reached_count'] = sum(1 for r in successful if r.target_reached)
            analysis['average_duration'] = sum(r.total_duration for r in successful) / len(successful)

        analysis['iteration_efficiency'] = self._analyze_iteration_efficiency(successful)
        analysis['convergence_patterns'] = self._analyze_convergence_patterns(successful)
        analysis['common_failures'] = self._analyze_common_failures(failed)
        return analysis

    def get_optimization_suggestions(self, loop_results: Sequence[FeedbackLoopResult]) -> List[Dict[str, Any]]:
        """Rule-based tuning suggestions, highest priority first."""
        if not loop_results:
            return []

        analysis = self.analyze_performance(loop_results)
        suggestions = []

        success_rate = analysis['success_rate']
        if success_rate < 0.8:
            suggestions.append({
                'category': 'reliability',
                'title': 'Improve success rate',
                'description': f"Only {success_rate * 100:.1f}% of files completed successfully",
                'recommendation': 'Review error patterns and adjust timeouts or API limits',
                'priority': Priority.HIGH.value,
            })

        if analysis['average_iterations'] > 4:
            suggestions.append({
                'category': 'efficiency',
                'title': 'Reduce iteration count',
                'description': f"Average of {analysis['average_iterations']:.1f} iterations per file",
                'recommendation': 'Lower the target mutation score or improve the initial generation context',
                'priority': Priority.MEDIUM.value,
            })

        if analysis['successful_files']:
            target_rate = analysis['target_reached_count'] / analysis['successful_files']
            if target_rate < 0.7:
                suggestions.append({
                    'category': 'effectiveness',
                    'title': 'Improve target achievement',
                    'description': f"Only {target_rate * 100:.1f}% of files reached the target score",
                    'recommendation': 'Lower the target score or raise feedback_loop.max_iterations',
                    'priority': Priority.MEDIUM.value,
                })

        if analysis['average_duration'] > SLOW_LOOP_SECONDS:
            suggestions.append({
                'category': 'speed',
                'title': 'Optimize execution time',
                'description': f"Average duration is {self._format_duration(analysis['average_duration'])}",
                'recommendation': 'Use a faster model or narrow the mutation testing configuration',
                'priority': Priority.LOW.value,
            })

        return sorted(suggestions, key=lambda suggestion: Priority(suggestion['priority']).rank)

    def export_results(self, loop_result: FeedbackLoopResult,
                       format: str = 'json') -> Union[str, Dict[str, Any]]:
        if format == 'summary':
            return {
                'source_file': loop_result.source_file.file_name if loop_result.source_file else None,
                'test_file': loop_result.test_file.file_path if loop_result.test_file else None,
                'iterations': loop_result.total_iterations,
                'final_score': loop_result.final_score,
                'target_reached': loop_result.target_reached,
                'stop_reason': loop_result.stop_reason.value if loop_result.stop_reason else None,
                'duration': loop_result.total_duration,
                'success': loop_result.success,
            }
        if format == 'detailed':
            return {
                'source_file': loop_result.source_file.to_dict() if loop_result.source_file else None,
                'test_file': loop_result.test_file.to_dict() if loop_result.test_file else None,
                'settings': loop_result.settings.to_dict(),
                'iterations': [iteration.to_dict() for iteration in loop_result.iterations],
                'final_score': loop_result.final_score,
                'target_reached': loop_result.target_reached,
                'stop_reason': loop_result.stop_reason.value if loop_result.stop_reason else None,
                'start_time': loop_result.start_time.isoformat(),
                'end_time': loop_result.end_time.isoformat() if loop_result.end_time else None,
                'total_duration': loop_result.total_duration,
                'analysis': loop_result.analysis,
                'error': loop_result.error,
            }
        if format == 'json':
            return json.dumps(self.export_results(loop_result, 'detailed'), indent=2, default=str)
        raise ValidationError(
            f"Unsupported export format: {format!r}",
            suggestion=f"Use one of: {', '.join(EXPORT_FORMATS)}."
        )

    def _generate_final_analysis(self, result: FeedbackLoopResult) -> Dict[str, Any]:
        """Summarize a finished loop from the recorded iterations; nothing is re-measured."""
        scores = result.scores
        iterations = []
        previous_score = None
        for iteration in result.iterations:
            score = iteration.score
            iterations.append({
                'number': iteration.number,
                'score': score,
                'survived_mutants': len(iteration.mutation_result.survived_mutants) if iteration.mutation_result else None,
                'improvement': score - previous_score if score is not None and previous_score is not None else 0.0,
                'duration': iteration.duration,
                'error': iteration.error,
            })
            if score is not None:
                previous_score = score

        total = result.total_iterations
        minutes = result.total_duration / 60
        analysis = {
            'summary': {
                'success': result.success,
                'target_reached': result.target_reached,
                'stop_reason': result.stop_reason.value if result.stop_reason else None,
                'final_score': result.final_score,
                'total_iterations': total,
                'duration': result.total_duration,
            },
            'iterations': iterations,
            'convergence': {
                'score_progression': scores,
                'average_improvement': (scores[-1] - scores[0]) / (len(scores) - 1) if len(scores) > 1 else 0.0,
                'diminishing_returns': self._detect_diminishing_returns(scores),
            },
            'efficiency': {
                'time_per_iteration': result.total_duration / total if total else 0.0,
                'score_per_iteration': result.final_score / total if total else 0.0,
                'score_per_minute': result.final_score / minutes if minutes > 0 else 0.0,
            },
        }

        last_result = result.last_mutation_result
        if not result.target_reached and last_result is not None:
            analysis['recommendations'] = [
                recommendation.to_dict()
                for recommendation in self.mutation_analysis_service.get_recommendations(last_result)
            ]

        return analysis

    @staticmethod
    def _detect_diminishing_returns(scores: Sequence[float]) -> bool:
        """True when most consecutive score gains shrink, over at least three measurements."""
        if len(scores) < 3:
            return False

        deltas = [current - previous for previous, current in zip(scores, scores[1:])]
        comparisons = len(deltas) - 1
        decreasing = sum(1 for previous, current in zip(deltas, deltas[1:]) if current < previous)
        return decreasing > comparisons / 2

    @staticmethod
    def _analyze_iteration_efficiency(results: Sequence[FeedbackLoopResult]) -> Dict[int, Dict[str, float]]:
        efficiency: Dict[int, Dict[str, float]] = {}

        for result in results:
            previous_score = None
            for index, iteration in enumerate(result.iterations, start=1):
                entry = efficiency.setdefault(
                    index, {'total_files': 0, 'average_improvement': 0.0, 'average_duration': 0.0}
                )
                entry['total_files'] += 1
                if iteration.score is not None:
                    if previous_score is not None:
                        entry['average_improvement'] += iteration.score - previous_score
                    previous_score = iteration.score
                entry['average_duration'] += iteration.duration

        for entry in efficiency.values():
            entry['average_improvement'] /= entry['total_files']
            entry['average_duration'] /= entry['total_files']

        return efficiency

    @staticmethod
    def _analyze_convergence_patterns(results: Sequence[FeedbackLoopResult]) -> Dict[str, Any]:
        converged = [result for result in results if result.target_reached]
        return {
            'fast_convergence': sum(1 for result in converged if result.total_iterations <= 2),
            'slow_convergence': sum(1 for result in converged if result.total_iterations >= 4),
            'non_convergent': len(results) - len(converged),
            'average_convergence_iteration': (
                sum(result.total_iterations for result in converged) / len(converged) if converged else 0.0
            ),
        }

    def _analyze_common_failures(self, failed: Sequence[FeedbackLoopResult]) -> List[Dict[str, Any]]:
        counts: Dict[str, int] = {}
        for result in failed:
            category = self._categorize_error(result.error or '')
            counts[category] = counts.get(category, 0) + 1

        failures = [
            {'error': category, 'count': count, 'percentage': count / len(failed) * 100}
            for category, count in counts.items()
        ]
        return sorted(failures, key=lambda failure: -failure['count'])

    @staticmethod
    def _categorize_error(message: str) -> str:
        lowered = message.lower()
        for category, keywords in _ERROR_CATEGORIES:
            if any(keyword in lowered for keyword in keywords):
                return category
        return 'Other'

    @staticmethod
    def _format_duration(seconds: float) -> str:
        whole_seconds = int(seconds)
        minutes, remainder = divmod(whole_seconds, 60)
        if minutes:
            return f"{minutes}m {remainder}s"
        return f"{remainder}s"
