import json

import pytest
from unittest.mock import AsyncMock, Mock

from mutant_testgen.config import Config
from mutant_testgen.exceptions import ConfigurationError, LLMClientError, MutationEngineError, ValidationError
from mutant_testgen.models.data_models import FeedbackLoopSettings, StopReason
from mutant_testgen.models.source_file import SourceFile
from mutant_testgen.services import (
    FeedbackLoopResult, FeedbackLoopService, LoopIteration, MutationAnalysisService, TestGenerationService
)

DIVIDE_SOURCE = """function divide(a, b) {
  if (b === 0) {
    throw new Error('Division by zero');
  }
  return a / b;
}

module.exports = { divide };
"""

INITIAL_TESTS = """const { divide } = require('../src/divide');

describe('divide', () => {
  it('divides two numbers', () => {
    expect(divide(6, 3)).toBe(2);
  });
});"""

BOUNDARY_TESTS = """describe('divide boundaries', () => {
  it('throws on division by zero', () => {
    expect(() => divide(1, 0)).toThrow('Division by zero');
  });
});"""


def mutant(mutator='EqualityOperator', line=2, status='Survived'):
    return {
        'mutatorName': mutator,
        'location': {'start': {'line': line, 'column': 6}, 'end': {'line': line, 'column': 13}},
        'replacement': 'b !== 0',
        'status': status,
    }


def engine_results(killed=0, survived=0, no_coverage=0, timeout=0):
    total = killed + survived + no_coverage + timeout
    return {
        'mutationScore': (killed + timeout) / total * 100 if total else 0.0,
        'totalMutants': total,
        'killedMutants': [mutant(status='Killed', line=5) for _ in range(killed)],
        'survivedMutants': [mutant() for _ in range(survived)],
        'timeoutMutants': [mutant(status='Timeout') for _ in range(timeout)],
        'noCoverageMutants': [mutant('BlockStatement', 3, 'NoCoverage') for _ in range(no_coverage)],
    }


@pytest.fixture
def config():
    config = Config(config_file=None)
    config.set('mutation.generate_report', False)
    return config


@pytest.fixture
def llm_provider():
    provider = Mock()
    provider.generate_tests = AsyncMock(return_value=INITIAL_TESTS)
    provider.improve_tests = AsyncMock(return_value=BOUNDARY_TESTS)
    return provider


@pytest.fixture
def storage():
    storage = Mock()
    storage.save_file = AsyncMock()
    storage.read_file = AsyncMock()
    return storage


@pytest.fixture
def mutation_engine():
    engine = Mock()
    engine.run_mutation_tests = AsyncMock()
    engine.generate_report = AsyncMock()
    return engine


@pytest.fixture
def service(config, llm_provider, storage, mutation_engine):
    generation = TestGenerationService(llm_provider, storage, config)
    analysis = MutationAnalysisService(mutation_engine, config)
    return FeedbackLoopService(generation, analysis, config)


@pytest.fixture
def source_file():
    return SourceFile('src/divide.js', DIVIDE_SOURCE)


class TestFeedbackLoopScenarios:
    """End-to-end loop behaviour with real services and mocked collaborators."""

    @pytest.mark.asyncio
    async def test_divide_reaches_target_in_two_iterations(self, service, source_file, mutation_engine,
                                                           llm_provider, storage):
        """Test that one boundary improvement lifts 60 to 100 and stops at iteration 2."""
        # Arrange
        mutation_engine.run_mutation_tests.side_effect = [
            engine_results(killed=3, survived=1, no_coverage=1),
            engine_results(killed=5),
        ]
        settings = FeedbackLoopSettings(target_mutation_score=80, max_iterations=5)

        # Act
        result = await service.execute_feedback_loop(source_file, settings)

        # Assert
        assert result.total_iterations == 2
        assert result.target_reached is True
        assert result.stop_reason is StopReason.TARGET_REACHED
        assert result.final_score == 100.0
        assert result.scores == [60.0, 100.0]
        assert result.test_file.version == 2
        assert len(result.test_file.improvement_history) == 1
        assert "divides two numbers" in result.test_file.content
        assert "throws on division by zero" in result.test_file.content
        assert llm_provider.improve_tests.await_count == 1
        survived_arg = llm_provider.improve_tests.call_args[0][2]
        assert [record.mutator_name for record in survived_arg] == ['EqualityOperator']
        assert storage.save_file.await_count == 2
        assert result.iterations[0].improvement.new_test_cases == 1
        assert result.iterations[1].target_reached is True
        assert 'recommendations' not in result.analysis

    @pytest.mark.asyncio
    async def test_plateau_exhausts_iteration_budget(self, service, source_file, mutation_engine, llm_provider):
        """Test that a score stuck at 70 runs every iteration and reports recommendations."""
        # Arrange
        mutation_engine.run_mutation_tests.side_effect = [
            engine_results(killed=7, survived=3) for _ in range(3)
        ]
        settings = FeedbackLoopSettings(target_mutation_score=95, max_iterations=3)

        # Act
        result = await service.execute_feedback_loop(source_file, settings)

        # Assert
        assert result.total_iterations == 3
        assert result.target_reached is False
        assert result.stop_reason is StopReason.MAX_ITERATIONS
        assert result.final_score == 70.0
        assert mutation_engine.run_mutation_tests.await_count == 3
        assert llm_provider.improve_tests.await_count == 3
        assert result.test_file.version == 4
        assert result.analysis['recommendations']
        assert result.analysis['convergence']['average_improvement'] == 0.0
        assert result.analysis['convergence']['diminishing_returns'] is False

    @pytest.mark.asyncio
    async def test_perfect_first_analysis_stops_after_one_iteration(self, service, source_file,
                                                                    mutation_engine, llm_provider):
        """Test that a score of 100 on the first analysis ends the loop at once."""
        # Arrange
        mutation_engine.run_mutation_tests.return_value = engine_results(killed=4)
        settings = FeedbackLoopSettings(target_mutation_score=100, max_iterations=5)

        # Act
        result = await service.execute_feedback_loop(source_file, settings)

        # Assert
        assert result.total_iterations == 1
        assert result.target_reached is True
        assert result.test_file.version == 1
        llm_provider.improve_tests.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_report_with_unusual_status_text_is_measured(self, service, source_file, mutation_engine):
        """Test that status spellings inside the buckets do not fail the analysis."""
        # Arrange
        report = engine_results(killed=3, survived=1)
        report['killedMutants'] = [dict(entry, status='killed') for entry in report['killedMutants']]
        report['survivedMutants'] = [dict(entry, status='RuntimeError') for entry in report['survivedMutants']]
        mutation_engine.run_mutation_tests.return_value = report
        settings = FeedbackLoopSettings(target_mutation_score=70, max_iterations=3)

        # Act
        result = await service.execute_feedback_loop(source_file, settings)

        # Assert
        assert result.iterations[0].error is None
        assert result.final_score == 75.0
        assert result.target_reached is True


class TestFeedbackLoopStopping:
    """Test stop conditions and failure handling inside the loop."""

    @pytest.mark.asyncio
    async def test_invalid_settings_rejected_before_collaborators(self, service, source_file,
                                                                  llm_provider, mutation_engine):
        """Test that bad settings raise before any collaborator call."""
        # Arrange
        settings = FeedbackLoopSettings(target_mutation_score=120)

        # Act & Assert
        with pytest.raises(ConfigurationError):
            await service.execute_feedback_loop(source_file, settings)
        llm_provider.generate_tests.assert_not_awaited()
        mutation_engine.run_mutation_tests.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_only_no_coverage_mutants_stops_without_improvement(self, service, source_file,
                                                                      mutation_engine, llm_provider):
        """Test that no-coverage mutants alone are not actionable by default."""
        # Arrange
        mutation_engine.run_mutation_tests.return_value = engine_results(killed=2, no_coverage=2)

        # Act
        result = await service.execute_feedback_loop(source_file, FeedbackLoopSettings(target_mutation_score=90))

        # Assert
        assert result.total_iterations == 1
        assert result.stop_reason is StopReason.NO_SURVIVORS
        assert result.iterations[0].no_mutants_to_kill is True
        assert result.target_reached is False
        llm_provider.improve_tests.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_improve_no_coverage_sends_uncovered_mutants(self, service, source_file,
                                                               mutation_engine, llm_provider):
        """Test that enabling improve_no_coverage targets uncovered mutants."""
        # Arrange
        mutation_engine.run_mutation_tests.side_effect = [
            engine_results(killed=2, no_coverage=2),
            engine_results(killed=4),
        ]
        settings = FeedbackLoopSettings(target_mutation_score=90, improve_no_coverage=True)

        # Act
        result = await service.execute_feedback_loop(source_file, settings)

        # Assert
        assert result.target_reached is True
        records = llm_provider.improve_tests.call_args[0][2]
        assert [record.mutator_name for record in records] == ['BlockStatement', 'BlockStatement']

    @pytest.mark.asyncio
    async def test_timeouts_are_never_actionable(self, service, source_file, mutation_engine, llm_provider):
        """Test that timed out mutants alone do not trigger an improvement."""
        # Arrange
        mutation_engine.run_mutation_tests.return_value = {
            **engine_results(killed=1, timeout=1),
            'mutationScore': 50.0,
        }

        # Act
        result = await service.execute_feedback_loop(source_file, FeedbackLoopSettings(target_mutation_score=90))

        # Assert
        assert result.stop_reason is StopReason.NO_SURVIVORS
        llm_provider.improve_tests.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_improvement_failure_is_recorded_and_loop_continues(self, service, source_file,
                                                                      mutation_engine, llm_provider):
        """Test that a failed improvement marks the iteration and the loop goes on."""
        # Arrange
        mutation_engine.run_mutation_tests.side_effect = [
            engine_results(killed=3, survived=1),
            engine_results(killed=3, survived=1),
            engine_results(killed=4),
        ]
        llm_provider.improve_tests.side_effect = [LLMClientError("API rate limit exceeded"), BOUNDARY_TESTS]

        # Act
        result = await service.execute_feedback_loop(source_file, FeedbackLoopSettings(target_mutation_score=80))

        # Assert
        assert result.total_iterations == 3
        assert result.iterations[0].error.startswith("Improvement failed")
        assert result.iterations[0].improvement is None
        assert result.iterations[1].error is None
        assert result.target_reached is True
        assert result.success is True
        assert result.test_file.version == 2

    @pytest.mark.asyncio
    async def test_invalid_improvement_leaves_test_file_unchanged(self, service, source_file,
                                                                  mutation_engine, llm_provider):
        """Test that an improvement merging into an invalid suite does not bump the version."""
        # Arrange
        mutation_engine.run_mutation_tests.return_value = engine_results(killed=3, survived=1)
        llm_provider.improve_tests.return_value = '   '

        # Act
        result = await service.execute_feedback_loop(
            source_file, FeedbackLoopSettings(target_mutation_score=80, max_iterations=2)
        )

        # Assert
        assert [iteration.error is not None for iteration in result.iterations] == [True, True]
        assert result.test_file.version == 1
        assert result.stop_reason is StopReason.MAX_ITERATIONS

    @pytest.mark.asyncio
    async def test_analysis_failure_counts_toward_budget(self, service, source_file, mutation_engine):
        """Test that a failed analysis is recorded and still uses up an iteration."""
        # Arrange
        mutation_engine.run_mutation_tests.side_effect = [
            MutationEngineError("Stryker exited with code 2"),
            engine_results(killed=5),
        ]

        # Act
        result = await service.execute_feedback_loop(
            source_file, FeedbackLoopSettings(target_mutation_score=80, max_iterations=2)
        )

        # Assert
        assert result.total_iterations == 2
        assert result.iterations[0].error.startswith("Mutation analysis failed")
        assert result.iterations[0].score is None
        assert result.target_reached is True
        assert result.analysis['iterations'][0]['survived_mutants'] is None

    @pytest.mark.asyncio
    async def test_every_analysis_failing_ends_at_budget(self, service, source_file, mutation_engine):
        """Test that a loop without any measurement ends with score zero."""
        # Arrange
        mutation_engine.run_mutation_tests.side_effect = MutationEngineError("Stryker not installed")

        # Act
        result = await service.execute_feedback_loop(
            source_file, FeedbackLoopSettings(max_iterations=2)
        )

        # Assert
        assert result.total_iterations == 2
        assert result.final_score == 0.0
        assert result.stop_reason is StopReason.MAX_ITERATIONS
        assert 'recommendations' not in result.analysis

    @pytest.mark.asyncio
    async def test_initial_generation_failure_propagates(self, service, source_file, llm_provider,
                                                         mutation_engine):
        """Test that a failed first generation aborts the loop."""
        # Arrange
        llm_provider.generate_tests.return_value = "const nothing = true;"

        # Act & Assert
        with pytest.raises(ValidationError):
            await service.execute_feedback_loop(source_file, FeedbackLoopSettings())
        mutation_engine.run_mutation_tests.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_settings_default_to_config(self, service, source_file, mutation_engine, config):
        """Test that omitted settings come from the feedback_loop config section."""
        # Arrange
        config.set('feedback_loop.max_iterations', 1)
        mutation_engine.run_mutation_tests.return_value = engine_results(killed=1, survived=1)

        # Act
        result = await service.execute_feedback_loop(source_file)

        # Assert
        assert result.total_iterations == 1
        assert result.settings.target_mutation_score == 80.0


class TestFeedbackLoopAnalysis:
    """Test final analysis, batch performance and exports."""

    @pytest.mark.parametrize("scores,expected", [
        ([50, 70, 80, 85], True),
        ([50, 55, 65, 80], False),
        ([50, 70], False),
        ([70, 70, 70], False),
    ])
    def test_detect_diminishing_returns(self, scores, expected):
        """Test that shrinking gains over three or more scores are detected."""
        # Act & Assert
        assert FeedbackLoopService._detect_diminishing_returns(scores) is expected

    @pytest.mark.parametrize("seconds,expected", [(42.7, '42s'), (125, '2m 5s')])
    def test_format_duration(self, seconds, expected):
        """Test the short duration format."""
        # Act & Assert
        assert FeedbackLoopService._format_duration(seconds) == expected

    def make_loop_result(self, iterations=1, target_reached=True, final_score=90.0, duration=10.0, error=None):
        result = FeedbackLoopResult(source_file=SourceFile('src/a.js', ''), settings=FeedbackLoopSettings())
        result.iterations = [LoopIteration(number=i, duration=duration / iterations)
                             for i in range(1, iterations + 1)]
        result.target_reached = target_reached
        result.final_score = final_score
        result.total_duration = duration
        result.error = error
        return result

    def test_analyze_performance(self, service):
        """Test aggregation over several loop results."""
        # Arrange
        results = [
            self.make_loop_result(iterations=1, final_score=95.0),
            self.make_loop_result(iterations=5, target_reached=False, final_score=65.0),
            self.make_loop_result(iterations=0, error='API rate limit exceeded'),
        ]

        # Act
        analysis = service.analyze_performance(results)

        # Assert
        assert analysis['total_files'] == 3
        assert analysis['successful_files'] == 2
        assert analysis['success_rate'] == pytest.approx(2 / 3)
        assert analysis['average_iterations'] == 3.0
        assert analysis['average_final_score'] == 80.0
        assert analysis['target_reached_count'] == 1
        assert analysis['convergence_patterns']['fast_convergence'] == 1
        assert analysis['convergence_patterns']['non_convergent'] == 1
        assert analysis['common_failures'] == [{'error': 'API Error', 'count': 1, 'percentage': 100.0}]
        assert analysis['iteration_efficiency'][1]['total_files'] == 2

    def test_analyze_performance_empty(self, service):
        """Test the empty batch analysis."""
        # Act & Assert
        assert service.analyze_performance([])['total_files'] == 0

    def test_optimization_suggestions_ranked(self, service):
        """Test that reliability comes before efficiency and speed."""
        # Arrange
        results = [
            self.make_loop_result(iterations=5, target_reached=False, duration=600.0),
            self.make_loop_result(iterations=0, error='Request timed out'),
        ]

        # Act
        suggestions = service.get_optimization_suggestions(results)

        # Assert
        assert [s['category'] for s in suggestions] == ['reliability', 'efficiency', 'effectiveness', 'speed']
        assert suggestions[0]['priority'] == 'high'
        assert suggestions[-1]['priority'] == 'low'

    def test_no_suggestions_for_healthy_batch(self, service):
        """Test that a fast, successful batch needs no tuning."""
        # Arrange
        results = [self.make_loop_result(iterations=2) for _ in range(3)]

        # Act & Assert
        assert service.get_optimization_suggestions(results) == []

    @pytest.mark.asyncio
    async def test_export_results(self, service, source_file, mutation_engine):
        """Test the summary, detailed and json exports of a loop."""
        # Arrange
        mutation_engine.run_mutation_tests.return_value = engine_results(killed=4)
        result = await service.execute_feedback_loop(source_file, FeedbackLoopSettings())

        # Act
        summary = service.export_results(result, 'summary')
        detailed = service.export_results(result, 'detailed')
        exported = json.loads(service.export_results(result, 'json'))

        # Assert
        assert summary['stop_reason'] == 'target_reached'
        assert summary['test_file'] == 'tests/divide.test.js'
        assert detailed['iterations'][0]['mutation_result']['mutationScore'] == 100.0
        assert exported['settings']['target_mutation_score'] == 80.0
        with pytest.raises(ValidationError):
            service.export_results(result, 'xml')

    def test_export_failed_result_without_source(self, service):
        """Test that a failure record without a source file still exports."""
        # Arrange
        result = FeedbackLoopResult(source_file=None, settings=FeedbackLoopSettings(), error='boom')

        # Act
        summary = service.export_results(result, 'summary')

        # Assert
        assert summary['source_file'] is None
        assert summary['success'] is False
