import pytest

from mutant_testgen.exceptions import ValidationError
from mutant_testgen.models.data_models import MutantStatus, MutationDiagnostics
from mutant_testgen.models.mutation_result import MutationResult


def make_mutant(mutator="ArithmeticOperator", line=1, column=0, status="Survived", replacement="a - b"):
    return {
        'mutatorName': mutator,
        'location': {'start': {'line': line, 'column': column}, 'end': {'line': line, 'column': column + 5}},
        'replacement': replacement,
        'status': status,
    }


def completed_result(killed=(), survived=(), timeout=(), no_coverage=(), score=None):
    killed, survived, timeout, no_coverage = list(killed), list(survived), list(timeout), list(no_coverage)
    total = len(killed) + len(survived) + len(timeout) + len(no_coverage)
    if score is None:
        score = (len(killed) + len(timeout)) / total * 100 if total else 0.0
    result = MutationResult()
    result.set_results({
        'mutationScore': score,
        'totalMutants': total,
        'killedMutants': killed,
        'survivedMutants': survived,
        'timeoutMutants': timeout,
        'noCoverageMutants': no_coverage,
    })
    return result


class TestMutationResultSetResults:
    """Test MutationResult.set_results."""

    def test_set_results_marks_result_completed(self):
        """Test that recording results fills the buckets and completes the result."""
        # Arrange
        result = MutationResult()

        # Act
        result.set_results({
            'mutationScore': 50.0,
            'totalMutants': 2,
            'killedMutants': [make_mutant(status='Killed')],
            'survivedMutants': [make_mutant()],
            'executionTime': 1.5,
        })

        # Assert
        assert result.is_completed
        assert result.mutation_score == 50.0
        assert result.total_mutants == 2
        assert len(result.killed_mutants) == 1
        assert len(result.survived_mutants) == 1
        assert result.execution_time == 1.5

    def test_bucket_decides_status_of_oddly_spelled_mutants(self):
        """Test that lowercase and unknown statuses take the status of their bucket."""
        # Arrange
        result = MutationResult()

        # Act
        result.set_results({
            'mutationScore': 0.0,
            'totalMutants': 2,
            'survivedMutants': [make_mutant(status='survived'), make_mutant(line=3, status='RuntimeError')],
        })

        # Assert
        assert result.is_completed
        assert [mutant.status for mutant in result.survived_mutants] == [MutantStatus.SURVIVED] * 2
        assert result.to_dict()['survivedCount'] == 2

    def test_buckets_partition_total(self):
        """Test that the four buckets always add up to the mutant total."""
        # Arrange
        result = completed_result(
            killed=[make_mutant(status='Killed')] * 3,
            survived=[make_mutant()] * 2,
            timeout=[make_mutant(status='Timeout')],
            no_coverage=[make_mutant(status='NoCoverage')] * 4,
        )

        # Act
        bucket_sum = (len(result.killed_mutants) + len(result.survived_mutants)
                      + len(result.timeout_mutants) + len(result.no_coverage_mutants))

        # Assert
        assert bucket_sum == result.total_mutants == 10

    def test_total_defaults_to_bucket_sum(self):
        """Test that a missing total is derived from the buckets."""
        # Arrange
        result = MutationResult()

        # Act
        result.set_results({'mutationScore': 100, 'killedMutants': [make_mutant(status='Killed')]})

        # Assert
        assert result.total_mutants == 1

    def test_snake_case_keys_are_accepted(self):
        """Test that snake_case collaborator keys are understood."""
        # Arrange
        result = MutationResult()

        # Act
        result.set_results({'mutation_score': 0, 'total_mutants': 1, 'survived_mutants': [make_mutant()]})

        # Assert
        assert len(result.survived_mutants) == 1

    def test_record_status_follows_its_bucket(self):
        """Test that records take the status of the bucket they arrive in."""
        # Arrange
        result = MutationResult()

        # Act
        result.set_results({'mutationScore': 100, 'killedMutants': [make_mutant(status='Survived')]})

        # Assert
        assert result.killed_mutants[0].status is MutantStatus.KILLED

    def test_mismatched_total_raises_validation_error(self):
        """Test that a total different from the bucket sum is rejected."""
        # Arrange
        result = MutationResult()

        # Act & Assert
        with pytest.raises(ValidationError):
            result.set_results({'mutationScore': 50, 'totalMutants': 5, 'survivedMutants': [make_mutant()]})
        assert not result.is_completed

    @pytest.mark.parametrize("score", [-1, 100.5])
    def test_score_out_of_range_raises_validation_error(self, score):
        """Test that scores outside 0-100 are rejected."""
        # Arrange
        result = MutationResult()

        # Act & Assert
        with pytest.raises(ValidationError):
            result.set_results({'mutationScore': score})

    def test_second_call_raises_validation_error(self):
        """Test that a completed result cannot be overwritten."""
        # Arrange
        result = completed_result(killed=[make_mutant(status='Killed')])

        # Act & Assert
        with pytest.raises(ValidationError):
            result.set_results({'mutationScore': 0})
        assert result.mutation_score == 100.0


class TestMutationResultTarget:
    """Test MutationResult.has_reached_target and score categories."""

    def test_target_boundary_is_inclusive(self):
        """Test that a score equal to the target counts as reached."""
        # Arrange
        result = completed_result(killed=[make_mutant(status='Killed')] * 4, survived=[make_mutant()])

        # Act & Assert
        assert result.mutation_score == 80.0
        assert result.has_reached_target(80.0) is True
        assert result.has_reached_target(80.01) is False

    def test_target_check_is_repeatable(self):
        """Test that checking the target twice gives the same answer."""
        # Arrange
        result = completed_result(killed=[make_mutant(status='Killed')], survived=[make_mutant()])

        # Act
        first = result.has_reached_target(50)
        second = result.has_reached_target(50)

        # Assert
        assert first is second is True

    def test_pending_result_never_reaches_target(self):
        """Test that a pending result does not reach even a zero target."""
        # Arrange
        result = MutationResult()

        # Act & Assert
        assert result.has_reached_target(0) is False

    @pytest.mark.parametrize("score,category", [
        (95, 'excellent'), (90, 'excellent'), (85, 'good'), (60, 'fair'), (59.9, 'poor'),
    ])
    def test_score_category(self, score, category):
        """Test the score category thresholds."""
        # Arrange
        result = MutationResult(mutation_score=score)

        # Act & Assert
        assert result.get_score_category() == category


class TestMutationResultDiagnostics:
    """Test problematic mutators, coverage gaps and suggestions."""

    def test_problematic_mutators_ranked_by_survival_rate(self):
        """Test that mutators are ranked by survival rate, highest first."""
        # Arrange
        result = completed_result(
            killed=[make_mutant('ArithmeticOperator', status='Killed'), make_mutant('EqualityOperator', status='Killed')],
            survived=[make_mutant('EqualityOperator'), make_mutant('EqualityOperator'), make_mutant('ArithmeticOperator')],
            no_coverage=[make_mutant('BlockStatement', status='NoCoverage')],
        )

        # Act
        ranked = result.get_problematic_mutators()

        # Assert
        assert [entry.mutator for entry in ranked] == ['EqualityOperator', 'ArithmeticOperator', 'BlockStatement']
        assert ranked[0].survival_rate == pytest.approx(200 / 3)
        assert ranked[2].survived_count == 0

    def test_problematic_mutators_ties_keep_grouping_order(self):
        """Test that equal survival rates keep first-seen order."""
        # Arrange
        result = completed_result(survived=[make_mutant('StringLiteral'), make_mutant('BooleanLiteral')])

        # Act
        ranked = result.get_problematic_mutators(limit=1)

        # Assert
        assert [entry.mutator for entry in ranked] == ['StringLiteral']

    def test_coverage_gaps_grouped_by_location(self):
        """Test that survivors at the same start location form one high severity gap."""
        # Arrange
        result = completed_result(survived=[
            make_mutant('ArithmeticOperator', line=3, column=9),
            make_mutant('EqualityOperator', line=7, column=2),
            make_mutant('ConditionalExpression', line=7, column=2),
        ])

        # Act
        gaps = result.get_coverage_gaps()

        # Assert
        assert [(gap.line, gap.mutant_count, gap.severity) for gap in gaps] == [(7, 2, 'high'), (3, 1, 'medium')]
        assert gaps[0].mutators == ['EqualityOperator', 'ConditionalExpression']

    def test_improvement_suggestions_mention_mutator_families(self):
        """Test that arithmetic and conditional survivors produce hints."""
        # Arrange
        result = completed_result(
            survived=[make_mutant('ArithmeticOperator'), make_mutant('ConditionalExpression')],
            no_coverage=[make_mutant(status='NoCoverage')],
        )

        # Act
        suggestions = result.get_improvement_suggestions()

        # Assert
        assert any('arithmetic' in suggestion for suggestion in suggestions)
        assert any('boundary conditions' in suggestion for suggestion in suggestions)
        assert any('coverage' in suggestion for suggestion in suggestions)

    def test_compare_with_previous(self):
        """Test the comparison with an earlier result."""
        # Arrange
        previous = completed_result(killed=[make_mutant(status='Killed')], survived=[make_mutant()] * 3)
        current = completed_result(killed=[make_mutant(status='Killed')] * 3, survived=[make_mutant()])

        # Act
        comparison = current.compare_with(previous)

        # Assert
        assert comparison['score_improvement'] == 50.0
        assert comparison['newly_killed_mutants'] == 2
        assert comparison['new_survived_mutants'] == -2
        assert comparison['is_improvement'] is True

    def test_attach_diagnostics_only_once(self):
        """Test that diagnostics cannot be replaced once attached."""
        # Arrange
        result = completed_result(survived=[make_mutant()])
        result.attach_diagnostics(MutationDiagnostics())

        # Act & Assert
        with pytest.raises(ValidationError):
            result.attach_diagnostics(MutationDiagnostics())

    def test_to_dict_includes_counts(self):
        """Test the serialized form of a completed result."""
        # Arrange
        result = completed_result(killed=[make_mutant(status='Killed')], survived=[make_mutant()])

        # Act
        data = result.to_dict()

        # Assert
        assert data['mutationScore'] == 50.0
        assert data['killedCount'] == 1
        assert data['survivedCount'] == 1
        assert data['status'] == 'completed'
        assert 'recommendations' not in data

    def test_mutants_by_type_spans_all_buckets(self):
        """Test that filtering by mutator looks at every bucket."""
        # Arrange
        result = completed_result(
            killed=[make_mutant('EqualityOperator', status='Killed')],
            survived=[make_mutant('EqualityOperator', line=4), make_mutant('StringLiteral', line=6)],
            no_coverage=[make_mutant('EqualityOperator', line=9, status='NoCoverage')],
        )

        # Act
        equality = result.get_mutants_by_type('EqualityOperator')

        # Assert
        assert len(result.all_mutants) == 4
        assert [mutant.line for mutant in equality] == [4, 1, 9]
        assert result.get_mutants_by_type('BlockStatement') == []
