"""Mutation result entity: the outcome of one mutation analysis run."""

import time
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from mutant_testgen.exceptions import ValidationError
from mutant_testgen.models.data_models import (
    CoverageGap, MutantRecord, MutantStatus, MutationDiagnostics, ProblematicMutator
)

PENDING = 'pending'
COMPLETED = 'completed'

# (bucket attribute, collaborator keys, status assigned to its records)
_BUCKETS = (
    ('killed_mutants', ('killedMutants', 'killed_mutants'), MutantStatus.KILLED),
    ('survived_mutants', ('survivedMutants', 'survived_mutants'), MutantStatus.SURVIVED),
    ('timeout_mutants', ('timeoutMutants', 'timeout_mutants'), MutantStatus.TIMEOUT),
    ('no_coverage_mutants', ('noCoverageMutants', 'no_coverage_mutants'), MutantStatus.NO_COVERAGE),
)


def _first(data: Mapping[str, Any], keys: Iterable[str], default: Any = None) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return default


def _to_records(raw: Optional[Iterable[Any]], status: MutantStatus) -> List[MutantRecord]:
    return [MutantRecord.from_dict(item, status) for item in raw or []]


class MutationResult:
    """Outcome of measuring one test suite against the mutants of one source file.

    A result starts ``pending`` and becomes ``completed`` through a single
    :meth:`set_results` call. After that the buckets and score are fixed; the
    score is only meaningful once the result is completed.
    """

    def __init__(self, source_file=None, test_file=None, mutation_score: float = 0.0,
                 raw_results: Optional[Dict[str, Any]] = None):
        self.id = f"mut_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
        self.source_file = source_file
        self.test_file = test_file
        self.mutation_score = mutation_score
        self.raw_results = raw_results or {}
        self.timestamp = datetime.now()
        self.total_mutants = 0
        self.killed_mutants: List[MutantRecord] = []
        self.survived_mutants: List[MutantRecord] = []
        self.timeout_mutants: List[MutantRecord] = []
        self.no_coverage_mutants: List[MutantRecord] = []
        self.execution_time = 0.0
        self.status = PENDING
        self.diagnostics: Optional[MutationDiagnostics] = None

    def set_results(self, results: Mapping[str, Any]) -> None:
        """Record the collaborator's outcome and mark the result completed.

        Raises:
            ValidationError: If results were already recorded, the score lies
                outside [0, 100] or the buckets do not add up to the total.
        """
        if self.status == COMPLETED:
            raise ValidationError(
                f"Mutation result {self.id} already holds results",
                suggestion="Run a new mutation analysis instead of overwriting a completed result."
            )

        buckets = {
            attribute: _to_records(_first(results, keys, []), status)
            for attribute, keys, status in _BUCKETS
        }
        bucket_total = sum(len(mutants) for mutants in buckets.values())

        score = float(_first(results, ('mutationScore', 'mutation_score'), 0) or 0)
        if not 0 <= score <= 100:
            raise ValidationError(
                f"Mutation score {score} is outside the range 0-100",
                suggestion="Check the mutation report; scores are percentages."
            )

        total = _first(results, ('totalMutants', 'total_mutants'))
        total = bucket_total if total is None else int(total)
        if total != bucket_total:
            raise ValidationError(
                f"Mutant buckets hold {bucket_total} mutants but the report lists {total}",
                suggestion="Mutants outside the killed/survived/timeout/no-coverage states are not supported."
            )

        for attribute, mutants in buckets.items():
            setattr(self, attribute, mutants)
        self.mutation_score = score
        self.total_mutants = total
        self.execution_time = float(_first(results, ('executionTime', 'execution_time'), 0) or 0)
        self.raw_results = dict(results)
        self.status = COMPLETED

    @property
    def is_completed(self) -> bool:
        return self.status == COMPLETED

    @property
    def all_mutants(self) -> List[MutantRecord]:
        return self.survived_mutants + self.killed_mutants + self.timeout_mutants + self.no_coverage_mutants

    def has_reached_target(self, target_score: float) -> bool:
        """True iff the result is completed and ``mutation_score >= target_score``."""
        return self.is_completed and self.mutation_score >= target_score

    def get_score_category(self) -> str:
        if self.mutation_score >= 90:
            return 'excellent'
        if self.mutation_score >= 80:
            return 'good'
        if self.mutation_score >= 60:
            return 'fair'
        return 'poor'

    def get_mutants_by_type(self, mutator_name: str) -> List[MutantRecord]:
        return [mutant for mutant in self.all_mutants if mutant.mutator_name == mutator_name]

    def get_problematic_mutators(self, limit: int = 5) -> List[ProblematicMutator]:
        """Mutator labels ranked by survival rate, highest first.

        Labels are grouped in first-seen order over the survived, killed,
        timed-out and no-coverage buckets; the sort is stable, so equal rates
        keep that order.
        """
        stats: Dict[str, ProblematicMutator] = {}
        for mutant in self.all_mutants:
            entry = stats.setdefault(mutant.mutator_name, ProblematicMutator(mutant.mutator_name, 0, 0))
            entry.total_count += 1
            if mutant.status is MutantStatus.SURVIVED:
                entry.survived_count += 1

        ranked = sorted(stats.values(), key=lambda entry: -entry.survival_rate)
        return ranked[:limit]

    def get_coverage_gaps(self) -> List[CoverageGap]:
        """Survived mutants grouped by start location, largest groups first."""
        groups: Dict[tuple, CoverageGap] = {}
        for mutant in self.survived_mutants:
            key = (mutant.line, mutant.column)
            gap = groups.setdefault(key, CoverageGap(line=mutant.line, column=mutant.column, mutant_count=0))
            gap.mutant_count += 1
            gap.mutators.append(mutant.mutator_name)

        return sorted(groups.values(), key=lambda gap: -gap.mutant_count)

    def get_improvement_suggestions(self) -> List[str]:
        suggestions = []

        if self.mutation_score < 50:
            suggestions.append('Consider adding more comprehensive test cases covering basic functionality')
        if len(self.survived_mutants) > 10:
            suggestions.append('Focus on testing edge cases and boundary conditions')
        if any('Arithmetic' in mutant.mutator_name for mutant in self.survived_mutants):
            suggestions.append('Add tests for different arithmetic operations and edge values')
        if any('Conditional' in mutant.mutator_name or 'Equality' in mutant.mutator_name
               for mutant in self.survived_mutants):
            suggestions.append('Test boundary conditions and different comparison scenarios')
        if self.no_coverage_mutants:
            suggestions.append('Improve test coverage - some code paths are not being tested')

        return suggestions

    def compare_with(self, previous: 'MutationResult') -> Dict[str, Any]:
        return {
            'score_improvement': self.mutation_score - previous.mutation_score,
            'newly_killed_mutants': len(self.killed_mutants) - len(previous.killed_mutants),
            'new_survived_mutants': len(self.survived_mutants) - len(previous.survived_mutants),
            'is_improvement': self.mutation_score > previous.mutation_score,
        }

    def attach_diagnostics(self, diagnostics: MutationDiagnostics) -> None:
        if self.diagnostics is not None:
            raise ValidationError(f"Diagnostics are already attached to mutation result {self.id}")
        self.diagnostics = diagnostics

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'sourceFile': self.source_file.file_name if self.source_file is not None else None,
            'testFile': self.test_file.file_name if self.test_file is not None else None,
            'mutationScore': self.mutation_score,
            'scoreCategory': self.get_score_category(),
            'totalMutants': self.total_mutants,
            'killedCount': len(self.killed_mutants),
            'survivedCount': len(self.survived_mutants),
            'timeoutCount': len(self.timeout_mutants),
            'noCoverageCount': len(self.no_coverage_mutants),
            'executionTime': self.execution_time,
            'timestamp': self.timestamp.isoformat(),
            'status': self.status,
            'problematicMutators': [
                {
                    'mutator': entry.mutator,
                    'survivedCount': entry.survived_count,
                    'totalCount': entry.total_count,
                    'survivalRate': entry.survival_rate,
                }
                for entry in self.get_problematic_mutators(3)
            ],
            'coverageGaps': [
                {
                    'line': gap.line,
                    'column': gap.column,
                    'mutantCount': gap.mutant_count,
                    'mutators': list(gap.mutators),
                    'severity': gap.severity,
                }
                for gap in self.get_coverage_gaps()[:5]
            ],
            'suggestions': self.get_improvement_suggestions(),
        }
        if self.diagnostics is not None:
            data['recommendations'] = [rec.to_dict() for rec in self.diagnostics.recommendations]
            data['qualityMetrics'] = self.diagnostics.quality_metrics
        return data

    def __repr__(self) -> str:
        return f"MutationResult({self.id!r}, score={self.mutation_score}, status={self.status!r})"
