"""Mutation testing collaborator: the contract and the Stryker implementation."""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from mutant_testgen.exceptions import MutationEngineError

logger = logging.getLogger(__name__)

_BUCKET_BY_STATUS = {
    'Killed': 'killedMutants',
    'Survived': 'survivedMutants',
    'Timeout': 'timeoutMutants',
    'NoCoverage': 'noCoverageMutants',
}

# Stryker exits with 1 when mutants survive below the break threshold
_ACCEPTED_EXIT_CODES = (0, 1)


class MutationEngine(ABC):
    """Contract of the mutation testing collaborator.

    ``run_mutation_tests`` returns ``mutationScore``, ``totalMutants`` and the
    ``killedMutants``, ``survivedMutants``, ``timeoutMutants`` and
    ``noCoverageMutants`` lists of mutant dicts.
    """

    @abstractmethod
    async def run_mutation_tests(self, source_path: str, test_path: str,
                                 options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Measure ``test_path`` against mutants of ``source_path``."""

    async def generate_report(self, report: Dict[str, Any], output_path: str) -> str:
        """Write a JSON report and return its path."""
        path = Path(output_path)

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(report, indent=2, default=str), encoding='utf-8')

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise MutationEngineError(f"Failed to write mutation report {output_path}: {e}") from e

        logger.info(f"Mutation report written to {output_path}")
        return str(path)

    async def is_available(self) -> bool:
        return True

    def get_info(self) -> Dict[str, Any]:
        return {'name': type(self).__name__}


class StrykerMutationEngine(MutationEngine):
    """Runs Stryker Mutator through ``npx`` and parses its JSON report."""

    SUPPORTED_MUTATORS = [
        'ArithmeticOperator',
        'ArrayDeclaration',
        'BlockStatement',
        'BooleanLiteral',
        'ConditionalExpression',
        'EqualityOperator',
        'LogicalOperator',
        'StringLiteral',
        'UnaryOperator',
    ]

    def __init__(self, command: Optional[List[str]] = None, timeout: float = 600,
                 report_file: str = 'reports/mutation/mutation.json', cwd: str = '.'):
        self.command = list(command or ['npx', 'stryker', 'run'])
        self.timeout = timeout
        self.cwd = Path(cwd)
        self.report_file = report_file

    @classmethod
    def from_config(cls, config) -> 'StrykerMutationEngine':
        return cls(
            command=config.get('mutation.command'),
            timeout=config.get('mutation.timeout', 600),
            report_file=config.get('mutation.report_file', 'reports/mutation/mutation.json'),
            cwd=config.get('storage.base_path', '.'),
        )

    def build_command(self, source_path: str, options: Optional[Dict[str, Any]] = None) -> List[str]:
        options = options or {}
        cmd = [*self.command, '--reporters', 'json', '--mutate', source_path]
        cmd.extend(options.get('extra_args', []))
        return cmd

    async def run_mutation_tests(self, source_path: str, test_path: str,
                                 options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        options = options or {}
        cmd = self.build_command(source_path, options)
        timeout = options.get('timeout', self.timeout)
        logger.info(f"Running mutation testing for {source_path} against {test_path}")
        logger.debug(f"Command: {' '.join(cmd)}")

        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(self.cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise MutationEngineError(
                f"Mutation tool not found: {cmd[0]}",
                suggestion="Install Node.js and @stryker-mutator/core, or set mutation.command."
            ) from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise MutationEngineError(
                f"Mutation testing timed out after {timeout} seconds",
                suggestion="Raise mutation.timeout or narrow the files being mutated."
            ) from e

        if proc.returncode not in _ACCEPTED_EXIT_CODES:
            message = stderr.decode('utf-8', errors='replace').strip()[-500:]
            raise MutationEngineError(
                f"Stryker exited with code {proc.returncode}: {message}",
                suggestion="Run the command manually to inspect the Stryker output."
            )

        report = await self._read_report()
        results = self.parse_report(report)
        results['executionTime'] = time.monotonic() - started
        logger.info(
            f"Mutation testing completed: score {results['mutationScore']:.2f}, "
            f"{len(results['survivedMutants'])} survived of {results['totalMutants']}"
        )
        return results

    def parse_report(self, report: Dict[str, Any]) -> Dict[str, Any]:
        """Sort the mutants of a Stryker JSON report into the four buckets.

        Mutants in other states (compile or runtime errors, ignored) are left
        out of every bucket and of the total.
        """
        buckets: Dict[str, List[Dict[str, Any]]] = {key: [] for key in _BUCKET_BY_STATUS.values()}

        for file_name, file_data in (report.get('files') or {}).items():
            for mutant in file_data.get('mutants', []):
                bucket = _BUCKET_BY_STATUS.get(mutant.get('status'))
                if bucket is None:
                    logger.debug(f"Skipping mutant {mutant.get('id')} with status {mutant.get('status')}")
                    continue
                buckets[bucket].append({
                    'id': mutant.get('id'),
                    'mutatorName': mutant.get('mutatorName', 'Unknown'),
                    'fileName': file_name,
                    'location': mutant.get('location', {}),
                    'replacement': mutant.get('replacement', ''),
                    'status': mutant.get('status'),
                    'description': mutant.get('description', ''),
                })

        total = sum(len(mutants) for mutants in buckets.values())
        detected = len(buckets['killedMutants']) + len(buckets['timeoutMutants'])

        return {
            'mutationScore': detected / total * 100 if total else 0.0,
            'totalMutants': total,
            **buckets,
        }

    async def is_available(self) -> bool:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.command[0], 'stryker', '--version',
                cwd=str(self.cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            await asyncio.wait_for(proc.communicate(), timeout=60)
        except (OSError, asyncio.TimeoutError):
            return False
        return proc.returncode == 0

    def get_info(self) -> Dict[str, Any]:
        return {
            'name': 'Stryker',
            'command': self.command,
            'report_file': self.report_file,
            'supported_mutators': list(self.SUPPORTED_MUTATORS),
            'checked_at': datetime.now().isoformat(),
        }

    async def _read_report(self) -> Dict[str, Any]:
        report_path = self.cwd / self.report_file
        try:
            content = await asyncio.to_thread(report_path.read_text, encoding='utf-8')
            return json.loads(content)
        except (OSError, json.JSONDecodeError) as e:
            raise MutationEngineError(
                f"Failed to read Stryker report {report_path}: {e}",
                suggestion="Make sure the json reporter is enabled and writes to mutation.report_file."
            ) from e
