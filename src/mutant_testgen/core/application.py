"""Main application orchestrator."""

import asyncio
import copy
import logging
from typing import Any, Dict, List, Optional

from mutant_testgen import __version__
from mutant_testgen.analysis.mutation_engine import MutationEngine, StrykerMutationEngine
from mutant_testgen.config import Config
from mutant_testgen.core.llm_factory import LLMProviderFactory
from mutant_testgen.core.use_cases import BatchProcessUseCase, GenerateTestsUseCase, ImproveTestsUseCase
from mutant_testgen.generation.llm_provider import LLMProvider
from mutant_testgen.models.data_models import SessionStatus
from mutant_testgen.models.generation_session import GenerationSession
from mutant_testgen.models.source_file import SourceFile
from mutant_testgen.models.test_file import TestFile
from mutant_testgen.reporting.reporter import SessionReporter
from mutant_testgen.services import FeedbackLoopResult, FeedbackLoopService, MutationAnalysisService, TestGenerationService
from mutant_testgen.utils.cost_manager import CostManager
from mutant_testgen.utils.storage import FileSystemStorage, StorageProvider
from mutant_testgen.utils.user_feedback import UserFeedback

logger = logging.getLogger(__name__)


class MutantTestGenApp:
    """Main application orchestrator that composes adapters, services and use cases.

    Collaborators are built from ``config`` unless injected, so tests and
    embedding callers can pass their own language model, mutation engine or
    storage.
    """

    def __init__(self, config: Config, feedback: Optional[UserFeedback] = None,
                 llm_provider: Optional[LLMProvider] = None,
                 mutation_engine: Optional[MutationEngine] = None,
                 storage: Optional[StorageProvider] = None):
        self.config = config
        self.feedback = feedback
        self.last_session: Optional[GenerationSession] = None

        # Adapters
        self.cost_manager = CostManager(config)
        self.storage = storage or FileSystemStorage.from_config(config)
        self.mutation_engine = mutation_engine or StrykerMutationEngine.from_config(config)
        self.llm_provider = llm_provider or LLMProviderFactory.create_provider(config, self.cost_manager)

        # Services
        self.test_generation_service = TestGenerationService(self.llm_provider, self.storage, config, feedback)
        self.mutation_analysis_service = MutationAnalysisService(self.mutation_engine, config, feedback)
        self.feedback_loop_service = FeedbackLoopService(
            self.test_generation_service, self.mutation_analysis_service, config, feedback
        )

        # Use cases
        self.generate_tests_use_case = GenerateTestsUseCase(
            self.test_generation_service, self.mutation_analysis_service, self.feedback_loop_service,
            self.storage, config
        )
        self.improve_tests_use_case = ImproveTestsUseCase(
            self.test_generation_service, self.mutation_analysis_service, self.storage, config
        )
        self.batch_process_use_case = BatchProcessUseCase(
            self.generate_tests_use_case, self.improve_tests_use_case, self.storage, config
        )

        self.reporter = SessionReporter(config.get('mutation.reports_dir', 'reports'))
        logger.info(
            f"Application initialized: provider {self.llm_provider.get_info().get('name')}, "
            f"engine {self.mutation_engine.get_info().get('name')}"
        )

    async def generate_tests(self, source_path: str, output_path: Optional[str] = None,
                             use_feedback_loop: bool = False, target_score: Optional[float] = None,
                             max_iterations: Optional[int] = None, run_mutation_analysis: bool = True,
                             context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Generate tests for one file; the record keeps its ``loop_result`` in feedback loop mode."""
        return await self.generate_tests_use_case.execute({
            'source_path': source_path,
            'output_path': output_path,
            'use_feedback_loop': use_feedback_loop,
            'target_score': target_score,
            'max_iterations': max_iterations,
            'run_mutation_analysis': run_mutation_analysis,
            'context': context,
        })

    async def improve_tests(self, source_path: str, test_path: str,
                            output_path: Optional[str] = None) -> Dict[str, Any]:
        return await self.improve_tests_use_case.execute({
            'source_path': source_path,
            'test_path': test_path,
            'output_path': output_path,
        })

    async def batch_process(self, source_pattern: str, mode: Optional[str] = None,
                            concurrency: Optional[int] = None, use_feedback_loop: Optional[bool] = None,
                            target_score: Optional[float] = None,
                            max_iterations: Optional[int] = None) -> Dict[str, Any]:
        """Process every matching file inside a new session and write the session report.

        The session is completed with ``completed`` when the batch ran, even
        if single files failed, and with ``failed`` when the batch itself
        could not run.
        """
        session = GenerationSession(self._session_config())
        self.last_session = session

        request = {
            'source_pattern': source_pattern,
            'mode': mode,
            'concurrency': concurrency,
            'target_score': target_score,
            'max_iterations': max_iterations,
            'run_mutation_analysis': True,
        }
        if use_feedback_loop is not None:
            request['use_feedback_loop'] = use_feedback_loop

        try:
            results = await self.batch_process_use_case.execute(request, session)
        except Exception as e:
            session.add_error(e, context='batch')
            session.complete(SessionStatus.FAILED)
            raise

        loop_results = self._collect_loop_results(results['processed_files'])
        session.complete(SessionStatus.COMPLETED)

        results['session'] = session.get_summary()
        if loop_results:
            results['loop_performance'] = self.feedback_loop_service.analyze_performance(loop_results)
            results['optimization_suggestions'] = self.feedback_loop_service.get_optimization_suggestions(
                loop_results
            )
        results['report_summary'] = await asyncio.to_thread(
            self.reporter.generate_report,
            session, results.get('loop_performance'), results.get('optimization_suggestions'),
        )
        results['report_file'] = str(self.reporter.report_file)
        return results

    async def run_mutation_analysis(self, source_path: str, test_path: str,
                                    options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Measure an existing suite without changing it."""
        source_file = SourceFile.from_path(source_path, await self.storage.read_file(source_path))
        test_file = TestFile(
            test_path, await self.storage.read_file(test_path), source_file, self.test_generation_service.syntax
        )

        mutation_options = {**(self.config.get('mutation', {}) or {}), **(options or {})}
        mutation_result = await self.mutation_analysis_service.run_mutation_analysis(
            source_file, test_file, mutation_options
        )
        return {
            'source_file': source_path,
            'test_file': test_path,
            'mutation_result': mutation_result.to_dict(),
            'summary': self.mutation_analysis_service.export_results(mutation_result, 'summary'),
            'score_category': mutation_result.get_score_category(),
            'recommendations': [
                recommendation.to_dict()
                for recommendation in self.mutation_analysis_service.get_recommendations(mutation_result)
            ],
            'suggestions': mutation_result.get_improvement_suggestions(),
        }

    async def validate_capabilities(self) -> Dict[str, Dict[str, Any]]:
        """Health of the language model and storage, plus availability of the mutation tool."""
        results = await self.test_generation_service.validate_capabilities()
        try:
            results['mutation_engine'] = {
                'healthy': bool(await self.mutation_engine.is_available()),
                'info': self.mutation_engine.get_info(),
                'error': None,
            }
        except Exception as e:
            results['mutation_engine'] = {'healthy': False, 'info': None, 'error': str(e)}
        return results

    def estimate_cost(self, source_file: SourceFile) -> Dict[str, Any]:
        return self.test_generation_service.estimate_generation_cost(source_file)

    def get_status(self) -> Dict[str, Any]:
        return {
            'version': __version__,
            'config': {
                'llm_provider': self.config.get('llm.provider'),
                'model': self.config.get('llm.model'),
                'mutation_engine': self.config.get('mutation.engine'),
                'framework': self.test_generation_service.syntax.name,
                'storage': self.storage.get_info(),
            },
            'last_session': self.last_session.get_summary() if self.last_session else None,
        }

    @staticmethod
    def _collect_loop_results(records: List[Dict[str, Any]]) -> List[FeedbackLoopResult]:
        """Detach loop result objects from the records so the session stays JSON-friendly."""
        return [record.pop('loop_result') for record in records if 'loop_result' in record]

    def _session_config(self) -> Dict[str, Any]:
        snapshot = copy.deepcopy(self.config.config)
        (snapshot.get('llm') or {}).pop('api_key', None)
        return snapshot
