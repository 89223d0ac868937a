from unittest.mock import Mock

from mutant_testgen.analysis.test_syntax import PYTEST
from mutant_testgen.models.source_file import SourceFile
from mutant_testgen.models.test_file import TestFile

JEST_SUITE = """const { add } = require('./calc');

describe('calc', () => {
  beforeEach(() => {});

  it('adds numbers', () => {
    expect(add(1, 2)).toBe(3);
  });

  test('throws on null', () => {
    expect(() => add(null)).toThrow();
  });
});
"""


class TestTestFileVersioning:
    """Test version bookkeeping of TestFile."""

    def test_new_file_starts_at_version_one(self):
        """Test the initial state of a test file."""
        # Act
        test_file = TestFile('tests/calc.test.js', JEST_SUITE)

        # Assert
        assert test_file.version == 1
        assert test_file.improvement_history == []
        assert test_file.generation_metadata['iterations'] == 0

    def test_version_tracks_history_length(self):
        """Test that each content update adds one version and one history entry."""
        # Arrange
        test_file = TestFile('tests/calc.test.js', JEST_SUITE)

        # Act
        test_file.update_content(JEST_SUITE + '\n// more', reason='mutation_feedback')
        test_file.update_content(JEST_SUITE, reason='manual')

        # Assert
        assert test_file.version == 3
        assert test_file.version == 1 + len(test_file.improvement_history)
        assert [entry['reason'] for entry in test_file.improvement_history] == ['mutation_feedback', 'manual']
        assert test_file.improvement_history[0]['version'] == 2

    def test_record_improvement_counts_iterations(self):
        """Test that recording an improvement counts the iteration without a new version."""
        # Arrange
        test_file = TestFile('tests/calc.test.js', JEST_SUITE)
        mutation_result = Mock(mutation_score=75.0, survived_mutants=[Mock()], killed_mutants=[Mock()] * 3)

        # Act
        test_file.record_improvement(mutation_result)

        # Assert
        assert test_file.generation_metadata['iterations'] == 1
        assert test_file.generation_metadata['last_improvement']['mutation_score'] == 75.0
        assert test_file.generation_metadata['last_improvement']['killed_mutants'] == 3
        assert test_file.version == 1


class TestTestFileInspection:
    """Test structural inspection of TestFile content."""

    def test_extract_test_cases_and_groups(self):
        """Test that it/test cases and describe blocks are found."""
        # Arrange
        test_file = TestFile('tests/calc.test.js', JEST_SUITE)

        # Act
        cases = test_file.extract_test_cases()
        groups = test_file.extract_group_blocks()

        # Assert
        assert [case.name for case in cases] == ['adds numbers', 'throws on null']
        assert [group.name for group in groups] == ['calc']
        assert groups[0].line == 3

    def test_validate_syntax(self):
        """Test that a suite without assertions fails validation."""
        # Arrange
        valid = TestFile('a.test.js', JEST_SUITE)
        invalid = TestFile('b.test.js', "describe('x', () => { it('y', () => {}); });")

        # Act & Assert
        assert valid.validate_syntax() is True
        assert invalid.validate_syntax() is False

    def test_coverage_areas(self):
        """Test the substring based coverage area estimate."""
        # Arrange
        test_file = TestFile('tests/calc.test.js', JEST_SUITE)

        # Act
        areas = test_file.get_coverage_areas()

        # Assert
        assert areas == ['basic_assertions', 'error_handling', 'edge_cases', 'setup_teardown']

    def test_source_file_name(self):
        """Test source name from the linked source or from the test file name."""
        # Arrange
        linked = TestFile('tests/x.test.js', '', SourceFile('src/calc.js', ''))
        spec_named = TestFile('tests/calc.utils.spec.ts', '')
        pytest_named = TestFile('tests/test_calc.py', '', syntax=PYTEST)

        # Act & Assert
        assert linked.source_file_name == 'calc.js'
        assert spec_named.source_file_name == 'calc.utils.ts'
        assert pytest_named.source_file_name == 'calc.py'

    def test_to_dict(self):
        """Test the serialized form."""
        # Arrange
        test_file = TestFile('tests/calc.test.js', JEST_SUITE, SourceFile('src/calc.js', ''))

        # Act
        data = test_file.to_dict()

        # Assert
        assert data['framework'] == 'jest'
        assert data['sourceFile'] == 'calc.js'
        assert data['statistics']['test_cases'] == 2
        assert data['version'] == 1

    def test_statistics_track_improvements(self):
        """Test that statistics follow content changes and recorded improvements."""
        # Arrange
        test_file = TestFile('tests/calc.test.js', JEST_SUITE)
        measured = Mock(mutation_score=75.0, survived_mutants=[Mock()], killed_mutants=[Mock(), Mock(), Mock()])

        # Act
        test_file.update_content(JEST_SUITE + "\n// more", reason='mutation_feedback')
        test_file.record_improvement(measured)
        stats = test_file.get_statistics()

        # Assert
        assert stats['test_cases'] == 2
        assert stats['group_blocks'] == 1
        assert stats['version'] == 2
        assert stats['iterations'] == 1
        assert stats['last_improvement']['mutation_score'] == 75.0
        assert stats['last_improvement']['survived_mutants'] == 1
