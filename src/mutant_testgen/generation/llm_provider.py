"""Language model collaborator: the contract and a transport-backed provider."""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from mutant_testgen.exceptions import LLMClientError
from mutant_testgen.generation.llm_clients import LLMTransport
from mutant_testgen.models.data_models import MutantRecord

logger = logging.getLogger(__name__)

MAX_MUTANTS_IN_PROMPT = 10

_FENCE = re.compile(r"```[\w+-]*[ \t]*\n?")

_LANGUAGE_TAGS = {'javascript': 'javascript', 'typescript': 'typescript', 'python': 'python'}

SYSTEM_PROMPTS = {
    'generate': (
        "You are an expert software testing engineer specializing in writing comprehensive unit tests. "
        "Generate high-quality, thorough unit tests that achieve high code coverage and mutation score."
    ),
    'improve': (
        "You are an expert software testing engineer specializing in writing comprehensive unit tests. "
        "Analyze survived mutants and write additional tests that kill them. "
        "Focus on edge cases and boundary conditions."
    ),
}

GENERATE_TEMPLATE = """Generate comprehensive unit tests for the following {language} code from file "{file_name}".

Source Code:
```{tag}
{source_code}
```

Requirements:
- Use the {framework} testing framework
- Include tests for all functions and methods
- Cover edge cases, boundary conditions, and error handling
- Use descriptive test names
- Aim for high code coverage and mutation score
{extra}
Provide only the test code without explanations."""

IMPROVE_TEMPLATE = """The following source code has survived mutants that need to be killed.

Source Code:
```{tag}
{source_code}
```

Existing Tests:
```{tag}
{existing_tests}
```

Survived Mutants:
{mutants}

Generate additional or improved {framework} tests to kill these survived mutants. Focus on the specific conditions and edge cases that would expose these mutations.
Provide only the additional test code without explanations."""


def strip_code_fences(text: str) -> str:
    """Remove Markdown code fences around a model reply."""
    return _FENCE.sub('', text).replace('```', '').strip()


class LLMProvider(ABC):
    """Contract of the language model collaborator."""

    @abstractmethod
    async def generate_tests(self, source_code: str, file_name: str, context: Dict[str, Any]) -> str:
        """Return test source for ``source_code``."""

    @abstractmethod
    async def improve_tests(self, source_code: str, existing_tests: str,
                            survived_mutants: List[MutantRecord]) -> str:
        """Return additional test source that targets ``survived_mutants``."""

    @abstractmethod
    def estimate_cost(self, input_text: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Return at least ``tokens`` and ``cost`` for a request over ``input_text``."""

    @abstractmethod
    async def is_healthy(self) -> bool:
        """Check that the model endpoint is usable."""

    def get_info(self) -> Dict[str, Any]:
        return {'name': type(self).__name__}


class TransportLLMProvider(LLMProvider):
    """Builds prompts from templates and sends them through an ``LLMTransport``.

    The transport is blocking (``requests``), so each call runs in a worker
    thread to keep the event loop free for other files in a batch.
    """

    def __init__(self, transport: LLMTransport, cost_manager=None, framework: str = 'jest'):
        self.transport = transport
        self.cost_manager = cost_manager
        self.framework = framework

    async def generate_tests(self, source_code: str, file_name: str, context: Dict[str, Any]) -> str:
        prompt = self.build_generation_prompt(source_code, file_name, context)
        logger.info(f"Generating tests for {file_name} with {self.transport.model}")
        reply = await asyncio.to_thread(self.transport.complete, SYSTEM_PROMPTS['generate'], prompt)
        return strip_code_fences(reply)

    async def improve_tests(self, source_code: str, existing_tests: str,
                            survived_mutants: List[MutantRecord]) -> str:
        prompt = self.build_improvement_prompt(source_code, existing_tests, survived_mutants)
        logger.info(f"Requesting tests for {len(survived_mutants)} survived mutants")
        reply = await asyncio.to_thread(self.transport.complete, SYSTEM_PROMPTS['improve'], prompt)
        return strip_code_fences(reply)

    def estimate_cost(self, input_text: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        options = options or {}
        if self.cost_manager is None:
            tokens = len(input_text) // 4
            return {'tokens': tokens, 'cost': 0.0, 'model': self.transport.model}
        return self.cost_manager.estimate_cost(
            input_text,
            model=options.get('model', self.transport.model),
            expected_output_tokens=options.get('max_tokens'),
        )

    async def is_healthy(self) -> bool:
        try:
            return await asyncio.to_thread(self.transport.ping)
        except LLMClientError as e:
            logger.warning(f"Language model health check failed: {e.message}")
            return False

    def get_info(self) -> Dict[str, Any]:
        return {
            'name': type(self.transport).__name__,
            'model': self.transport.model,
            'framework': self.framework,
        }

    def build_generation_prompt(self, source_code: str, file_name: str, context: Dict[str, Any]) -> str:
        language = context.get('language', 'javascript')
        extra_lines = []

        functions = context.get('functions') or []
        if functions:
            extra_lines.append("\nFunctions to cover:")
            extra_lines.extend(f"- {function.get('signature') or function.get('name')}" for function in functions)

        existing_tests = context.get('existing_tests')
        if existing_tests:
            extra_lines.append(f"\nExisting tests:\n```{_LANGUAGE_TAGS.get(language, '')}\n{existing_tests}\n```")
            extra_lines.append("Generate additional tests that complement the existing ones.")

        notes = context.get('additional_context')
        if notes:
            extra_lines.append(f"\nAdditional context:\n{notes}")

        return GENERATE_TEMPLATE.format(
            language=language.title(),
            file_name=file_name,
            tag=_LANGUAGE_TAGS.get(language, ''),
            source_code=source_code,
            framework=self.framework,
            extra="\n".join(extra_lines) + "\n" if extra_lines else "",
        )

    def build_improvement_prompt(self, source_code: str, existing_tests: str,
                                 survived_mutants: List[MutantRecord]) -> str:
        lines = []
        for index, mutant in enumerate(survived_mutants[:MAX_MUTANTS_IN_PROMPT], start=1):
            lines.append(f"{index}. {mutant.mutator_name} at line {mutant.line}: {mutant.replacement}")
        if len(survived_mutants) > MAX_MUTANTS_IN_PROMPT:
            lines.append(f"... and {len(survived_mutants) - MAX_MUTANTS_IN_PROMPT} more mutants")

        return IMPROVE_TEMPLATE.format(
            tag='',
            source_code=source_code,
            existing_tests=existing_tests,
            mutants="\n".join(lines),
            framework=self.framework,
        )
