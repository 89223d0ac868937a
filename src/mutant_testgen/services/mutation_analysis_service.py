"""Mutation analysis service: run the mutation tool and interpret its outcome."""

import csv
import io
import logging
import time
from collections import OrderedDict
from pathlib import PurePath
from typing import Any, Dict, List, Optional, Sequence, Union

from mutant_testgen.analysis.mutation_engine import MutationEngine
from mutant_testgen.config import Config
from mutant_testgen.exceptions import CollaboratorError, ValidationError
from mutant_testgen.models.data_models import MutationDiagnostics, Priority, Recommendation
from mutant_testgen.models.mutation_result import MutationResult
from mutant_testgen.models.source_file import SourceFile
from mutant_testgen.models.test_file import TestFile
from mutant_testgen.utils.user_feedback import UserFeedback
from .base_service import BaseService

EXPORT_FORMATS = ('json', 'summary', 'csv')
SIGNIFICANT_IMPROVEMENT = 5.0
PROBLEMATIC_MUTATOR_LIMIT = 5


class MutationAnalysisService(BaseService):
    """Wraps the mutation testing collaborator and derives diagnostics from its results."""

    def __init__(self, mutation_engine: MutationEngine, config: Optional[Config] = None,
                 feedback: Optional[UserFeedback] = None, logger: Optional[logging.Logger] = None):
        super().__init__(config, feedback, logger)
        self.mutation_engine = mutation_engine

    async def run_mutation_analysis(self, source_file: SourceFile, test_file: TestFile,
                                    options: Optional[Dict[str, Any]] = None) -> MutationResult:
        """Measure ``test_file`` against mutants of ``source_file``.

        The returned result is completed and carries diagnostics: problematic
        mutators, coverage gaps, recommendations and quality metrics.

        Args:
            source_file: The module being mutated.
            test_file: The suite being measured.
            options: Passed to the mutation engine; ``generate_report`` and
                ``report_path`` control the optional JSON report.

        Raises:
            CollaboratorError: If the mutation tool fails.
            ValidationError: If its report breaks the bucket or score invariants.
        """
        options = options or {}
        self._log_info(f"Running mutation analysis for {source_file.file_name}")
        started = time.monotonic()

        try:
            raw_results = await self.mutation_engine.run_mutation_tests(
                source_file.file_path, test_file.file_path, options
            )
            results = dict(raw_results)
            results.setdefault('executionTime', time.monotonic() - started)

            mutation_result = MutationResult(source_file, test_file)
            mutation_result.set_results(results)
        except Exception as e:
            self._log_error(f"Mutation analysis failed for {source_file.file_name}: {e}")
            raise

        mutation_result.attach_diagnostics(MutationDiagnostics(
            problematic_mutators=mutation_result.get_problematic_mutators(PROBLEMATIC_MUTATOR_LIMIT),
            coverage_gaps=mutation_result.get_coverage_gaps(),
            recommendations=self.get_recommendations(mutation_result),
            quality_metrics=self._calculate_quality_metrics(mutation_result),
        ))

        if options.get('generate_report', self.config.get('mutation.generate_report', True)):
            await self._generate_analysis_report(mutation_result, options)

        self._log_success(
            f"Mutation score {mutation_result.mutation_score:.2f}% for {source_file.file_name} "
            f"({len(mutation_result.survived_mutants)} of {mutation_result.total_mutants} mutants survived)"
        )
        return mutation_result

    def get_recommendations(self, mutation_result: MutationResult) -> List[Recommendation]:
        """Rule-based recommendations, highest priority first.

        Rules accumulate; equal priorities keep rule order.
        """
        recommendations = []
        survived = len(mutation_result.survived_mutants)
        no_coverage = len(mutation_result.no_coverage_mutants)

        if mutation_result.mutation_score < 50:
            recommendations.append(Recommendation(
                title='Low mutation score detected',
                description='Add comprehensive test cases covering basic functionality',
                priority=Priority.CRITICAL,
            ))

        if survived > 10:
            recommendations.append(Recommendation(
                title='Many mutants survived',
                description=f'{survived} mutants survived; focus on edge cases and boundary conditions',
                priority=Priority.HIGH,
                category='edge_cases',
            ))

        if no_coverage:
            recommendations.append(Recommendation(
                title='Untested code detected',
                description=f'{no_coverage} mutants have no test coverage; improve coverage of those code paths',
                priority=Priority.HIGH,
            ))

        problematic = mutation_result.get_problematic_mutators(1)
        if problematic and problematic[0].survived_count:
            top = problematic[0]
            recommendations.append(Recommendation(
                title=f'Address {top.mutator} mutations',
                description=(
                    f'{top.survived_count} {top.mutator} mutants survived '
                    f'({top.survival_rate:.1f}% survival rate)'
                ),
                priority=Priority.HIGH if top.survival_rate > 50 else Priority.MEDIUM,
                category='mutator',
                mutator=top.mutator,
            ))

        for gap in mutation_result.get_coverage_gaps()[:3]:
            recommendations.append(Recommendation(
                title=f'Test line {gap.line}',
                description=f'{gap.mutant_count} mutants survived at line {gap.line}, column {gap.column}',
                priority=Priority.HIGH if gap.severity == 'high' else Priority.MEDIUM,
                line=gap.line,
            ))

        return sorted(recommendations, key=lambda rec: rec.priority.rank)

    def analyze_trends(self, results: Sequence[MutationResult]) -> Dict[str, Any]:
        """Score progression and persistent problems over results for one file."""
        if not results:
            return {'message': 'No results to analyze', 'iterations': 0}

        scores = [result.mutation_score for result in results]
        return {
            'iterations': len(results),
            'score_progression': [
                {
                    'iteration': index,
                    'score': result.mutation_score,
                    'timestamp': result.timestamp.isoformat(),
                }
                for index, result in enumerate(results, start=1)
            ],
            'average_score': sum(scores) / len(scores),
            'best_score': max(scores),
            'worst_score': min(scores),
            'improvement': scores[-1] - scores[0],
            'consistently_problematic_mutators': self._find_consistent_problems(results),
            'coverage_gap_trends': self._analyze_coverage_gap_trends(results),
        }

    def compare_results(self, current: MutationResult, previous: MutationResult) -> Dict[str, Any]:
        score_change = current.mutation_score - previous.mutation_score
        return {
            'score_change': score_change,
            'mutant_changes': {
                'newly_killed': len(current.killed_mutants) - len(previous.killed_mutants),
                'new_survivors': len(current.survived_mutants) - len(previous.survived_mutants),
                'total_change': current.total_mutants - previous.total_mutants,
            },
            'improvement': score_change > 0,
            'significant_improvement': score_change >= SIGNIFICANT_IMPROVEMENT,
            'regression': score_change < 0,
        }

    def export_results(self, mutation_result: MutationResult,
                       format: str = 'json') -> Union[str, Dict[str, Any]]:
        if format == 'summary':
            return {
                'score': mutation_result.mutation_score,
                'total': mutation_result.total_mutants,
                'killed': len(mutation_result.killed_mutants),
                'survived': len(mutation_result.survived_mutants),
                'timestamp': mutation_result.timestamp.isoformat(),
            }
        if format == 'csv':
            return self._export_to_csv(mutation_result)
        if format == 'json':
            return mutation_result.to_dict()
        raise ValidationError(
            f"Unsupported export format: {format!r}",
            suggestion=f"Use one of: {', '.join(EXPORT_FORMATS)}."
        )

    def build_report(self, mutation_result: MutationResult) -> Dict[str, Any]:
        """Full JSON report: summary, every mutant by bucket and the diagnostics."""
        report = mutation_result.to_dict()
        report['mutants'] = {
            'survived': [mutant.to_dict() for mutant in mutation_result.survived_mutants],
            'killed': [mutant.to_dict() for mutant in mutation_result.killed_mutants],
            'timeout': [mutant.to_dict() for mutant in mutation_result.timeout_mutants],
            'noCoverage': [mutant.to_dict() for mutant in mutation_result.no_coverage_mutants],
        }
        return report

    async def _generate_analysis_report(self, mutation_result: MutationResult,
                                        options: Dict[str, Any]) -> Optional[str]:
        report_path = options.get('report_path')
        if not report_path:
            reports_dir = self.config.get('mutation.reports_dir', 'reports').rstrip('/')
            stem = PurePath(mutation_result.source_file.file_name).stem
            report_path = f"{reports_dir}/{stem}-mutation-analysis.json"

        try:
            return await self.mutation_engine.generate_report(self.build_report(mutation_result), report_path)
        except CollaboratorError as e:
            self._log_warning(f"Could not write mutation report: {e.message}", e.suggestion)
            return None

    def _find_consistent_problems(self, results: Sequence[MutationResult]) -> List[Dict[str, Any]]:
        """Mutators that rank among the problematic ones in at least half the results."""
        frequency: Dict[str, int] = OrderedDict()
        for result in results:
            for entry in result.get_problematic_mutators(PROBLEMATIC_MUTATOR_LIMIT):
                if entry.survived_count:
                    frequency[entry.mutator] = frequency.get(entry.mutator, 0) + 1

        threshold = len(results) * 0.5
        persistent = [
            {'mutator': mutator, 'frequency': count}
            for mutator, count in frequency.items() if count >= threshold
        ]
        return sorted(persistent, key=lambda item: -item['frequency'])

    def _analyze_coverage_gap_trends(self, results: Sequence[MutationResult]) -> Dict[str, Any]:
        gaps_by_line: Dict[int, List[Dict[str, Any]]] = OrderedDict()
        for iteration, result in enumerate(results, start=1):
            for gap in result.get_coverage_gaps():
                gaps_by_line.setdefault(gap.line, []).append({
                    'iteration': iteration,
                    'mutant_count': gap.mutant_count,
                    'severity': gap.severity,
                })

        threshold = len(results) * 0.5
        return {
            'persistent_gaps': [
                {'line': line, 'occurrences': len(gaps), 'gaps': gaps}
                for line, gaps in gaps_by_line.items() if len(gaps) >= threshold
            ],
            'improving': [
                {'line': line, 'gaps': gaps}
                for line, gaps in gaps_by_line.items()
                if len(gaps) > 1 and gaps[-1]['mutant_count'] < gaps[0]['mutant_count']
            ],
        }

    @staticmethod
    def _calculate_quality_metrics(mutation_result: MutationResult) -> Dict[str, Any]:
        total = mutation_result.total_mutants
        survived = len(mutation_result.survived_mutants)

        score = mutation_result.mutation_score
        if mutation_result.no_coverage_mutants:
            score *= 0.8
        if not survived:
            score = min(100.0, score * 1.1)

        return {
            'test_strength': 1 - survived / total if total else 0.0,
            'coverage_completeness': not mutation_result.no_coverage_mutants,
            'mutator_diversity': len({mutant.mutator_name for mutant in mutation_result.all_mutants}),
            'test_quality_score': max(0.0, min(100.0, score)),
        }

    @staticmethod
    def _export_to_csv(mutation_result: MutationResult) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator='\n')
        writer.writerow(['File', 'Mutator', 'Line', 'Status', 'Replacement'])

        default_file = mutation_result.source_file.file_name if mutation_result.source_file else ''
        for mutant in mutation_result.killed_mutants + mutation_result.survived_mutants \
                + mutation_result.timeout_mutants + mutation_result.no_coverage_mutants:
            writer.writerow([
                mutant.file_name or default_file,
                mutant.mutator_name,
                mutant.line,
                mutant.status.value,
                mutant.replacement,
            ])

        return buffer.getvalue().rstrip('\n')
