"""Storage collaborator contract and the local filesystem implementation."""

import asyncio
import fnmatch
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from mutant_testgen.exceptions import StorageError

logger = logging.getLogger(__name__)

TEST_FILE_PATTERNS = ('*.test.*', '*.spec.*', 'test_*.py', '*_test.py')


def is_test_file(file_path: str) -> bool:
    """Check whether a path names a test/spec file rather than a source module."""
    name = Path(file_path).name
    return any(fnmatch.fnmatch(name, pattern) for pattern in TEST_FILE_PATTERNS)


class StorageProvider(ABC):
    """Where source files are read from and generated tests are written to."""

    @abstractmethod
    async def read_file(self, file_path: str) -> str:
        """Read a text file."""

    @abstractmethod
    async def save_file(self, file_path: str, content: str) -> None:
        """Write a text file, creating parent directories as needed."""

    @abstractmethod
    async def file_exists(self, file_path: str) -> bool:
        """Check whether a file exists."""

    @abstractmethod
    async def list_files(self, pattern: str) -> List[str]:
        """List source files (never test files) matching a glob pattern."""

    @abstractmethod
    def get_info(self) -> Dict[str, Any]:
        """Describe the storage backend."""

    async def is_healthy(self) -> bool:
        return True


class FileSystemStorage(StorageProvider):
    """Storage rooted at a local directory.

    Relative paths resolve against ``base_path``; absolute paths are used
    as-is. Blocking filesystem calls run in a worker thread.
    """

    def __init__(self, base_path: str = '.', encoding: str = 'utf-8',
                 ignore: Optional[List[str]] = None):
        self.base_path = Path(base_path).resolve()
        self.encoding = encoding
        self.ignore = list(ignore or [])

    @classmethod
    def from_config(cls, config) -> 'FileSystemStorage':
        return cls(
            base_path=config.get('storage.base_path', '.'),
            encoding=config.get('storage.encoding', 'utf-8'),
            ignore=config.get('storage.ignore', []),
        )

    def resolve(self, file_path: str) -> Path:
        path = Path(file_path)
        return path if path.is_absolute() else self.base_path / path

    async def read_file(self, file_path: str) -> str:
        full_path = self.resolve(file_path)
        try:
            content = await asyncio.to_thread(full_path.read_text, encoding=self.encoding)
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(
                f"Failed to read file {file_path}: {e}",
                filepath=str(full_path),
                suggestion="Check that the file exists and is readable text."
            ) from e

        logger.debug(f"Read {file_path} ({len(content)} chars)")
        return content

    async def save_file(self, file_path: str, content: str) -> None:
        full_path = self.resolve(file_path)
        try:
            await asyncio.to_thread(self._write, full_path, content)
        except OSError as e:
            raise StorageError(
                f"Failed to write file {file_path}: {e}",
                filepath=str(full_path),
                suggestion="Check directory permissions and available disk space."
            ) from e

        logger.debug(f"Wrote {file_path} ({len(content.splitlines())} lines)")

    async def file_exists(self, file_path: str) -> bool:
        return await asyncio.to_thread(self.resolve(file_path).is_file)

    async def list_files(self, pattern: str) -> List[str]:
        """Files under ``base_path`` matching ``pattern``, relative and sorted.

        Test and spec files and anything inside an ignored directory are left out.
        """
        matches = await asyncio.to_thread(lambda: sorted(self.base_path.glob(pattern)))
        files = []
        for path in matches:
            if not path.is_file():
                continue
            relative = path.relative_to(self.base_path)
            if any(part in self.ignore for part in relative.parts[:-1]):
                continue
            if is_test_file(str(relative)):
                continue
            files.append(relative.as_posix())

        logger.debug(f"Listed {len(files)} files for pattern {pattern!r}")
        return files

    def get_info(self) -> Dict[str, Any]:
        return {
            'type': 'filesystem',
            'base_path': str(self.base_path),
            'encoding': self.encoding,
            'ignore': self.ignore,
        }

    async def is_healthy(self) -> bool:
        return await asyncio.to_thread(self.base_path.is_dir)

    def _write(self, full_path: Path, content: str) -> None:
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_text(content, encoding=self.encoding)
