"""Value objects shared by the entities, services and adapters."""

from dataclasses import dataclass, field, asdict, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from mutant_testgen.exceptions import ConfigurationError, ValidationError
from mutant_testgen.utils.validation import SettingsValidator


class MutantStatus(Enum):
    """Outcome of running the test suite against one mutant."""
    KILLED = "Killed"
    SURVIVED = "Survived"
    TIMEOUT = "Timeout"
    NO_COVERAGE = "NoCoverage"


class SessionStatus(Enum):
    """Lifecycle states of a generation session."""
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StopReason(Enum):
    """Why a feedback loop stopped iterating."""
    TARGET_REACHED = "target_reached"
    NO_SURVIVORS = "no_survivors"
    MAX_ITERATIONS = "max_iterations"


class Priority(Enum):
    """Recommendation priority, highest first."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"critical": 0, "high": 1, "medium": 2, "low": 3}[self.value]


@dataclass(frozen=True)
class Position:
    """A line/column pair in a source file."""
    line: int
    column: int


@dataclass(frozen=True)
class MutantLocation:
    """Start and end position of a mutated region."""
    start: Position
    end: Position


def _parse_status(value: Any) -> MutantStatus:
    """Map status text such as ``'survived'`` or ``'NoCoverage'`` onto ``MutantStatus``."""
    if value is None:
        return MutantStatus.SURVIVED
    if isinstance(value, MutantStatus):
        return value
    key = str(value).replace('_', '').replace(' ', '').lower()
    for status in MutantStatus:
        if key in (status.value.lower(), status.name.replace('_', '').lower()):
            return status
    raise ValidationError(
        f"Unknown mutant status: {value!r}",
        suggestion=f"Use one of: {', '.join(status.value for status in MutantStatus)}."
    )


def _position(data: Optional[Mapping[str, Any]]) -> Position:
    data = data or {}
    return Position(line=int(data.get('line', 0) or 0), column=int(data.get('column', 0) or 0))


@dataclass
class MutantRecord:
    """A single mutant as reported by the mutation testing tool."""
    mutator_name: str
    location: MutantLocation
    replacement: str = ""
    status: MutantStatus = MutantStatus.SURVIVED
    id: Optional[str] = None
    file_name: Optional[str] = None
    description: str = ""

    @classmethod
    def from_dict(cls, data: Any, status: Optional[MutantStatus] = None) -> 'MutantRecord':
        """Build a record from a collaborator dict (camelCase or snake_case keys).

        ``status`` is the bucket the mutant was reported in; when given, the
        dict's own status text is ignored.

        Raises:
            ValidationError: If no ``status`` is given and the dict's status
                text names none of the known mutant states.
        """
        if isinstance(data, MutantRecord):
            return data if status is None or data.status is status else replace(data, status=status)

        location = data.get('location') or {}
        if status is None:
            status = _parse_status(data.get('status'))

        return cls(
            mutator_name=data.get('mutatorName', data.get('mutator_name', 'Unknown')),
            location=MutantLocation(
                start=_position(location.get('start')),
                end=_position(location.get('end')),
            ),
            replacement=data.get('replacement', '') or '',
            status=status,
            id=data.get('id'),
            file_name=data.get('fileName', data.get('file_name')),
            description=data.get('description', '') or '',
        )

    @property
    def line(self) -> int:
        return self.location.start.line

    @property
    def column(self) -> int:
        return self.location.start.column

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'mutatorName': self.mutator_name,
            'fileName': self.file_name,
            'location': {
                'start': asdict(self.location.start),
                'end': asdict(self.location.end),
            },
            'replacement': self.replacement,
            'status': self.status.value,
            'description': self.description,
        }


@dataclass(frozen=True)
class CodeMarker:
    """A named construct found in test or source text (test case, group, function)."""
    name: str
    line: int
    kind: str
    signature: str = ""


@dataclass
class ProblematicMutator:
    """Survival statistics for one mutator label."""
    mutator: str
    survived_count: int
    total_count: int

    @property
    def survival_rate(self) -> float:
        return (self.survived_count / self.total_count) * 100 if self.total_count else 0.0


@dataclass
class CoverageGap:
    """Survived mutants that share one start location."""
    line: int
    column: int
    mutant_count: int
    mutators: List[str] = field(default_factory=list)

    @property
    def severity(self) -> str:
        return 'high' if self.mutant_count > 1 else 'medium'


@dataclass
class Recommendation:
    """An actionable suggestion derived from a mutation result."""
    title: str
    description: str
    priority: Priority
    category: str = 'coverage'
    mutator: Optional[str] = None
    line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'title': self.title,
            'description': self.description,
            'priority': self.priority.value,
            'category': self.category,
        }
        if self.mutator:
            data['mutator'] = self.mutator
        if self.line is not None:
            data['line'] = self.line
        return data


@dataclass
class MutationDiagnostics:
    """Extra analysis attached to a completed mutation result."""
    problematic_mutators: List[ProblematicMutator] = field(default_factory=list)
    coverage_gaps: List[CoverageGap] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)
    quality_metrics: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FeedbackLoopSettings:
    """Typed snapshot of the ``feedback_loop`` configuration section."""
    target_mutation_score: float = 80.0
    max_iterations: int = 5
    merge_strategy: str = 'auto'
    improve_no_coverage: bool = False
    initial_context: Dict[str, Any] = field(default_factory=dict)
    mutation_options: Dict[str, Any] = field(default_factory=dict)
    improvement_options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config, **overrides) -> 'FeedbackLoopSettings':
        section = config.get('feedback_loop', {}) or {}
        values = {
            'target_mutation_score': section.get('target_mutation_score', 80.0),
            'max_iterations': section.get('max_iterations', 5),
            'merge_strategy': section.get('merge_strategy', 'auto'),
            'improve_no_coverage': bool(section.get('improve_no_coverage', False)),
            'mutation_options': dict(config.get('mutation', {}) or {}),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def validate(self) -> None:
        """Reject out-of-range settings before any collaborator is called."""
        SettingsValidator.validate_target_score(self.target_mutation_score)
        SettingsValidator.validate_max_iterations(self.max_iterations)
        SettingsValidator.validate_merge_strategy(self.merge_strategy)
        if not isinstance(self.improve_no_coverage, bool):
            raise ConfigurationError("improve_no_coverage must be true or false")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
