"""Use cases: sequence the services for one file or many."""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from mutant_testgen.config import Config
from mutant_testgen.exceptions import ValidationError
from mutant_testgen.models.data_models import FeedbackLoopSettings
from mutant_testgen.models.generation_session import GenerationSession
from mutant_testgen.models.mutation_result import MutationResult
from mutant_testgen.models.source_file import SourceFile
from mutant_testgen.models.test_file import TestFile
from mutant_testgen.services import FeedbackLoopResult, FeedbackLoopService, MutationAnalysisService, TestGenerationService
from mutant_testgen.utils.storage import StorageProvider
from mutant_testgen.utils.validation import SettingsValidator

logger = logging.getLogger(__name__)


def loop_settings_from_request(config: Config, request: Dict[str, Any]) -> FeedbackLoopSettings:
    """Validated loop settings: config defaults overridden by the request."""
    settings = FeedbackLoopSettings.from_config(
        config,
        target_mutation_score=request.get('target_score'),
        max_iterations=request.get('max_iterations'),
        merge_strategy=request.get('merge_strategy'),
    )
    if request.get('context'):
        settings.initial_context = dict(request['context'])
    settings.validate()
    return settings


def iteration_rows(loop_result: FeedbackLoopResult) -> List[Dict[str, Any]]:
    """Per-iteration rows in the shape ``UserFeedback.iteration_table`` renders."""
    return [
        {
            'iteration': iteration.number,
            'mutation_score': iteration.score,
            'survived': len(iteration.mutation_result.survived_mutants) if iteration.mutation_result else '-',
            'duration': iteration.duration,
            'error': iteration.error,
        }
        for iteration in loop_result.iterations
    ]


class SourceLoadingUseCase:
    """Shared loading of source files through the storage collaborator."""

    def __init__(self, storage: StorageProvider, config: Optional[Config] = None):
        self.storage = storage
        self.config = config or Config(config_file=None)

    async def load_source_file(self, source_path: str) -> SourceFile:
        content = await self.storage.read_file(source_path)
        return SourceFile.from_path(source_path, content)


class GenerateTestsUseCase(SourceLoadingUseCase):
    """Generate tests for one source file, optionally refining them in a feedback loop."""

    def __init__(self, test_generation_service: TestGenerationService,
                 mutation_analysis_service: MutationAnalysisService,
                 feedback_loop_service: FeedbackLoopService,
                 storage: StorageProvider, config: Optional[Config] = None):
        super().__init__(storage, config)
        self.test_generation_service = test_generation_service
        self.mutation_analysis_service = mutation_analysis_service
        self.feedback_loop_service = feedback_loop_service

    async def execute(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Validate ``request``, load its source file and generate tests.

        Request keys: ``source_path`` (required), ``output_path``,
        ``use_feedback_loop``, ``target_score``, ``max_iterations``,
        ``merge_strategy``, ``context`` and ``run_mutation_analysis``.
        """
        source_path = SettingsValidator.require_path(request.get('source_path'), 'Source path')
        settings = loop_settings_from_request(self.config, request) if request.get('use_feedback_loop') else None

        logger.info(f"Starting test generation for {source_path}")
        try:
            source_file = await self.load_source_file(source_path)
            return await self.run(source_file, request, settings)
        except Exception as e:
            logger.error(f"Test generation failed for {source_path}: {e}")
            raise

    async def run(self, source_file: SourceFile, request: Dict[str, Any],
                  settings: Optional[FeedbackLoopSettings] = None) -> Dict[str, Any]:
        """Generate tests for an already loaded ``source_file``."""
        if settings is not None:
            record = await self._run_feedback_loop(source_file, settings)
        else:
            record = await self._run_simple_generation(source_file, request)

        output_path = request.get('output_path')
        if output_path and output_path != record['test_file'] and record.get('content') is not None:
            await self.storage.save_file(output_path, record['content'])
            record['test_file'] = output_path
        record.pop('content', None)
        return record

    async def _run_simple_generation(self, source_file: SourceFile, request: Dict[str, Any]) -> Dict[str, Any]:
        started = time.monotonic()
        test_file = await self.test_generation_service.generate_initial_tests(
            source_file, {'context': request.get('context')}
        )

        mutation_result = None
        mutation_error = None
        if request.get('run_mutation_analysis'):
            try:
                mutation_result = await self.mutation_analysis_service.run_mutation_analysis(
                    source_file, test_file, dict(self.config.get('mutation', {}) or {})
                )
            except Exception as e:
                mutation_error = str(e)
                logger.warning(f"Mutation analysis after generation failed for {source_file.file_name}: {e}")

        target = self.config.get('feedback_loop.target_mutation_score', 80.0)
        return {
            'type': 'simple',
            'success': True,
            'file': source_file.file_path,
            'test_file': test_file.file_path,
            'content': test_file.content,
            'test_cases': len(test_file.extract_test_cases()),
            'mutation_score': mutation_result.mutation_score if mutation_result else None,
            'target_reached': mutation_result.has_reached_target(target) if mutation_result else False,
            'iterations': 1 if mutation_result else 0,
            'recommendations': self._recommendations(mutation_result),
            'mutation_error': mutation_error,
            'duration': time.monotonic() - started,
        }

    async def _run_feedback_loop(self, source_file: SourceFile, settings: FeedbackLoopSettings) -> Dict[str, Any]:
        loop_result = await self.feedback_loop_service.execute_feedback_loop(source_file, settings)
        test_file = loop_result.test_file

        logger.info(
            f"Feedback loop for {source_file.file_name} completed: {loop_result.total_iterations} iterations, "
            f"final score {loop_result.final_score:.2f}, target reached: {loop_result.target_reached}"
        )
        return {
            'type': 'feedback_loop',
            'success': loop_result.success,
            'file': source_file.file_path,
            'test_file': test_file.file_path if test_file else None,
            'content': test_file.content if test_file else None,
            'test_cases': len(test_file.extract_test_cases()) if test_file else 0,
            'mutation_score': loop_result.final_score,
            'target_score': settings.target_mutation_score,
            'target_reached': loop_result.target_reached,
            'iterations': loop_result.total_iterations,
            'stop_reason': loop_result.stop_reason.value if loop_result.stop_reason else None,
            'iteration_details': iteration_rows(loop_result),
            'recommendations': loop_result.analysis.get('recommendations', []),
            'analysis': loop_result.analysis,
            'duration': loop_result.total_duration,
            'loop_result': loop_result,
        }

    def _recommendations(self, mutation_result: Optional[MutationResult]) -> List[Dict[str, Any]]:
        if mutation_result is None:
            return []
        return [
            recommendation.to_dict()
            for recommendation in self.mutation_analysis_service.get_recommendations(mutation_result)
        ]


class ImproveTestsUseCase(SourceLoadingUseCase):
    """Measure an existing suite once, improve it against its survivors and measure again."""

    def __init__(self, test_generation_service: TestGenerationService,
                 mutation_analysis_service: MutationAnalysisService,
                 storage: StorageProvider, config: Optional[Config] = None):
        super().__init__(storage, config)
        self.test_generation_service = test_generation_service
        self.mutation_analysis_service = mutation_analysis_service

    async def execute(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Request keys: ``source_path`` and ``test_path`` (required), ``output_path``."""
        source_path = SettingsValidator.require_path(request.get('source_path'), 'Source path')
        test_path = SettingsValidator.require_path(request.get('test_path'), 'Test path')

        logger.info(f"Starting test improvement for {source_path} with {test_path}")
        try:
            source_file = await self.load_source_file(source_path)
            return await self.run(source_file, test_path, request)
        except Exception as e:
            logger.error(f"Test improvement failed for {source_path}: {e}")
            raise

    async def run(self, source_file: SourceFile, test_path: Optional[str] = None,
                  request: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Improve the suite at ``test_path``; defaults to the derived test path of ``source_file``."""
        request = request or {}
        test_path = test_path or self.test_generation_service.test_file_path(source_file)
        started = time.monotonic()

        content = await self.storage.read_file(test_path)
        test_file = TestFile(
            request.get('output_path') or test_path, content, source_file, self.test_generation_service.syntax
        )
        mutation_options = dict(self.config.get('mutation', {}) or {})
        improve_no_coverage = bool(self.config.get('feedback_loop.improve_no_coverage', False))

        initial = await self.mutation_analysis_service.run_mutation_analysis(source_file, test_file, mutation_options)
        test_cases_before = len(test_file.extract_test_cases())

        actionable = list(initial.survived_mutants)
        if improve_no_coverage:
            actionable.extend(initial.no_coverage_mutants)

        improvement_options = {}
        if request.get('merge_strategy'):
            improvement_options['merge_strategy'] = request['merge_strategy']

        final = initial
        if actionable:
            test_file = await self.test_generation_service.improve_tests(
                source_file, test_file, actionable, improvement_options
            )
            test_file.record_improvement(initial)
            final = await self.mutation_analysis_service.run_mutation_analysis(
                source_file, test_file, mutation_options
            )
        else:
            logger.info(f"No actionable mutants for {source_file.file_name}; leaving {test_path} unchanged")

        target = self.config.get('feedback_loop.target_mutation_score', 80.0)
        comparison = self.mutation_analysis_service.compare_results(final, initial)
        return {
            'type': 'improve',
            'success': True,
            'file': source_file.file_path,
            'test_file': test_file.file_path,
            'original_score': initial.mutation_score,
            'mutation_score': final.mutation_score,
            'improvement': comparison['score_change'],
            'survived_mutants_killed': len(initial.survived_mutants) - len(final.survived_mutants),
            'new_test_cases': len(test_file.extract_test_cases()) - test_cases_before,
            'target_reached': final.has_reached_target(target),
            'iterations': 1 if actionable else 0,
            'recommendations': [
                recommendation.to_dict()
                for recommendation in self.mutation_analysis_service.get_recommendations(final)
            ],
            'duration': time.monotonic() - started,
        }


class BatchProcessUseCase:
    """Run generation or improvement for every file matching a pattern.

    Files are processed in fixed-size batches; each batch runs concurrently
    and finishes completely before the next one starts. A failing file yields
    a ``success: False`` record and never affects its siblings.
    """

    def __init__(self, generate_use_case: GenerateTestsUseCase, improve_use_case: ImproveTestsUseCase,
                 storage: StorageProvider, config: Optional[Config] = None):
        self.generate_use_case = generate_use_case
        self.improve_use_case = improve_use_case
        self.storage = storage
        self.config = config or Config(config_file=None)

    async def execute(self, request: Dict[str, Any],
                      session: Optional[GenerationSession] = None) -> Dict[str, Any]:
        """Process every file matching ``request['source_pattern']``.

        Other request keys: ``mode`` (``generate`` or ``improve``),
        ``concurrency``, ``use_feedback_loop``, ``target_score``,
        ``max_iterations`` and ``run_mutation_analysis``. Results and
        errors are also recorded on ``session`` when one is given.

        Raises:
            ValidationError: If the pattern is missing or matches no files.
            ConfigurationError: If the mode, concurrency or loop settings are
                invalid. Checked before any file is touched.
        """
        pattern = SettingsValidator.require_path(request.get('source_pattern'), 'Source pattern')
        mode = request.get('mode')
        if mode is None:
            mode = self.config.get('batch.mode', 'generate')
        mode = SettingsValidator.validate_batch_mode(mode)
        concurrency = request.get('concurrency')
        if concurrency is None:
            concurrency = self.config.get('batch.concurrency', 3)
        concurrency = SettingsValidator.validate_concurrency(concurrency)
        use_feedback_loop = request.get('use_feedback_loop', self.config.get('batch.use_feedback_loop', True))
        settings = None
        if mode == 'generate' and use_feedback_loop:
            settings = loop_settings_from_request(self.config, request)

        logger.info(f"Starting batch {mode} for pattern {pattern!r}")
        source_paths = await self.storage.list_files(pattern)
        if not source_paths:
            raise ValidationError(
                f"No source files found matching pattern: {pattern}",
                suggestion="Check the pattern relative to storage.base_path; test and spec files are skipped."
            )

        started = time.monotonic()
        results: Dict[str, Any] = {
            'mode': mode,
            'total_files': len(source_paths),
            'processed_files': [],
            'successful_files': 0,
            'failed_files': 0,
            'errors': [],
            'start_time': datetime.now().isoformat(),
        }

        batches = self._create_batches(source_paths, concurrency)
        for index, batch in enumerate(batches, start=1):
            logger.info(f"Processing batch {index}/{len(batches)} ({len(batch)} files)")
            records = await asyncio.gather(*(
                self._process_file(source_path, mode, request, settings, session) for source_path in batch
            ))
            for record in records:
                results['processed_files'].append(record)
                if record['success']:
                    results['successful_files'] += 1
                else:
                    results['failed_files'] += 1
                    results['errors'].append({'file': record['file'], 'error': record['error']})

        results['end_time'] = datetime.now().isoformat()
        results['duration'] = time.monotonic() - started
        logger.info(
            f"Batch processing completed: {results['successful_files']} succeeded, "
            f"{results['failed_files']} failed of {results['total_files']}"
        )
        return results

    async def _process_file(self, source_path: str, mode: str, request: Dict[str, Any],
                            settings: Optional[FeedbackLoopSettings],
                            session: Optional[GenerationSession]) -> Dict[str, Any]:
        source_file = None
        try:
            source_file = await self.generate_use_case.load_source_file(source_path)
            if session is not None:
                session.add_source_file(source_file)

            if mode == 'generate':
                record = await self.generate_use_case.run(source_file, request, settings)
            else:
                record = await self.improve_use_case.run(source_file)
        except Exception as e:
            logger.error(f"Failed to process {source_path}: {e}")
            if session is not None:
                session.add_error(e, context=source_path)
            record = {'success': False, 'file': source_path, 'error': str(e), 'error_type': type(e).__name__}
            if settings is not None:
                record['loop_result'] = FeedbackLoopResult(source_file=source_file, settings=settings, error=str(e))

        if session is not None:
            session.add_result(record)
        return record

    @staticmethod
    def _create_batches(items: List[str], batch_size: int) -> List[List[str]]:
        return [items[i:i + batch_size] for i in range(0, len(items), batch_size)]
