"""Generation session entity: the aggregate record of one run."""

import json
import time
import traceback
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from mutant_testgen.exceptions import SessionStateError, ValidationError
from mutant_testgen.models.data_models import SessionStatus

EXPORT_FORMATS = ('json', 'summary', 'detailed')


class GenerationSession:
    """Results, errors and timing for every file processed in one run.

    Result records are plain dicts with at least ``success`` and, when
    available, ``file``, ``mutation_score``, ``target_reached``,
    ``iterations`` and ``error``. ``end_time`` is set exactly once by
    :meth:`complete`; afterwards the session rejects further changes.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.id = f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
        self.config = config or {}
        self.start_time = datetime.now()
        self.end_time: Optional[datetime] = None
        self.status = SessionStatus.STARTED
        self.source_files: List[Any] = []
        self.results: List[Dict[str, Any]] = []
        self.total_iterations = 0
        self.errors: List[Dict[str, Any]] = []

        llm = self.config.get('llm', {}) or {}
        loop = self.config.get('feedback_loop', {}) or {}
        self.metadata = {
            'llm_provider': llm.get('provider', 'unknown'),
            'model': llm.get('model', 'unknown'),
            'target_score': loop.get('target_mutation_score', 80),
            'max_iterations': loop.get('max_iterations', 5),
        }

    def add_source_file(self, source_file) -> None:
        self._ensure_open('add a source file to')
        self.source_files.append(source_file)

    def add_result(self, result: Dict[str, Any]) -> None:
        self._ensure_open('add a result to')
        self.results.append(result)
        self.total_iterations += result.get('iterations') or 0

    def add_error(self, error: BaseException, context: str = 'unknown') -> None:
        self._ensure_open('add an error to')
        self.errors.append({
            'message': str(error),
            'type': type(error).__name__,
            'traceback': ''.join(traceback.format_exception(type(error), error, error.__traceback__)),
            'context': context,
            'timestamp': datetime.now().isoformat(),
        })

    def complete(self, status: Union[str, SessionStatus] = SessionStatus.COMPLETED) -> None:
        """Finalize the session with a terminal status."""
        self._ensure_open('complete')
        try:
            final_status = SessionStatus(status)
        except ValueError:
            final_status = None
        if final_status in (None, SessionStatus.STARTED):
            raise SessionStateError(
                f"A session cannot be completed with status {status!r}",
                suggestion="Use 'completed', 'failed' or 'cancelled'."
            )
        self.end_time = datetime.now()
        self.status = final_status

    def is_complete(self) -> bool:
        return self.status is not SessionStatus.STARTED

    def is_successful(self) -> bool:
        return self.status is SessionStatus.COMPLETED and self.get_success_rate() > 0

    def get_duration(self) -> float:
        """Elapsed seconds, measured up to now while the session is open."""
        end_time = self.end_time or datetime.now()
        return (end_time - self.start_time).total_seconds()

    def get_human_duration(self) -> str:
        seconds = int(self.get_duration())
        minutes, seconds = divmod(seconds, 60)
        hours, minutes = divmod(minutes, 60)
        if hours:
            return f"{hours}h {minutes}m {seconds}s"
        if minutes:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"

    def get_success_rate(self) -> float:
        if not self.results:
            return 0.0
        successful = sum(1 for result in self.results if result.get('success'))
        return successful / len(self.results) * 100

    def get_average_mutation_score(self) -> float:
        scores = [
            result['mutation_score'] for result in self.results
            if result.get('success') and result.get('mutation_score') is not None
        ]
        return sum(scores) / len(scores) if scores else 0.0

    def get_files_reached_target(self) -> int:
        return sum(1 for result in self.results if result.get('target_reached'))

    def get_performance_metrics(self) -> Dict[str, Any]:
        duration = self.get_duration()
        processed = len(self.results)
        return {
            'total_duration': duration,
            'human_duration': self.get_human_duration(),
            'avg_time_per_file': duration / processed if processed else 0.0,
            'avg_iterations_per_file': self.total_iterations / processed if processed else 0.0,
            'total_iterations': self.total_iterations,
            'files_per_hour': processed / (duration / 3600) if duration > 0 else 0.0,
        }

    def get_summary(self) -> Dict[str, Any]:
        successful = sum(1 for result in self.results if result.get('success'))
        return {
            'id': self.id,
            'status': self.status.value,
            'duration': self.get_human_duration(),
            'total_files': len(self.source_files),
            'processed_files': len(self.results),
            'successful': successful,
            'failed': len(self.results) - successful,
            'target_reached': self.get_files_reached_target(),
            'success_rate': self.get_success_rate(),
            'average_mutation_score': self.get_average_mutation_score(),
            'total_iterations': self.total_iterations,
            'errors': len(self.errors),
            'performance': self.get_performance_metrics(),
        }

    def get_detailed_report(self) -> Dict[str, Any]:
        return {
            'session': self.get_summary(),
            'metadata': self.metadata,
            'source_files': [source_file.to_dict() for source_file in self.source_files],
            'results': self.results,
            'errors': self.errors,
            'config': self.config,
            'started_at': self.start_time.isoformat(),
            'ended_at': self.end_time.isoformat() if self.end_time else None,
        }

    def export(self, format: str = 'json') -> Union[str, Dict[str, Any]]:
        if format == 'summary':
            return self.get_summary()
        if format == 'detailed':
            return self.get_detailed_report()
        if format == 'json':
            return json.dumps(self.get_detailed_report(), indent=2, default=str)
        raise ValidationError(
            f"Unsupported export format: {format!r}",
            suggestion=f"Use one of: {', '.join(EXPORT_FORMATS)}."
        )

    def _ensure_open(self, action: str) -> None:
        if self.is_complete():
            raise SessionStateError(
                f"Cannot {action} session {self.id}: it is already {self.status.value}",
                suggestion="Start a new session for another run."
            )

    def __repr__(self) -> str:
        return f"GenerationSession({self.id!r}, status={self.status.value!r}, results={len(self.results)})"
