"""Source file entity: the module under test."""

import hashlib
import math
import re
from datetime import datetime
from pathlib import PurePath
from typing import Any, Dict, List, Optional

from mutant_testgen.models.data_models import CodeMarker

LANGUAGE_BY_EXTENSION = {
    'js': 'javascript',
    'mjs': 'javascript',
    'cjs': 'javascript',
    'jsx': 'javascript',
    'ts': 'typescript',
    'tsx': 'typescript',
    'py': 'python',
}

# Counting patterns per language; anything unknown uses the JavaScript set.
_FUNCTION_PATTERNS = {
    'javascript': re.compile(r"function\s+\w+"),
    'typescript': re.compile(r"function\s+\w+"),
    'python': re.compile(r"^\s*(?:async\s+)?def\s+\w+", re.MULTILINE),
}
_CLASS_PATTERN = re.compile(r"class\s+\w+")
_CONDITIONAL_PATTERNS = {
    'python': re.compile(r"\b(if|elif|else|while|for|match)\b"),
}
_DEFAULT_CONDITIONAL = re.compile(r"\b(if|else|while|for|switch)\b")

_SIGNATURE_PATTERNS = {
    'javascript': re.compile(
        r"(?:function\s+(\w+)\s*\([^)]*\)|(\w+)\s*:\s*function\s*\([^)]*\)|(\w+)\s*\([^)]*\)\s*\{)"
    ),
    'python': re.compile(r"(?:async\s+)?def\s+(\w+)\s*\([^)]*\)"),
}
_JS_KEYWORDS = {'if', 'for', 'while', 'switch', 'catch', 'function', 'return'}


class SourceFile:
    """A source module whose tests are generated and refined.

    ``size`` and ``hash`` always describe the current ``content``;
    :meth:`update_content` recomputes both together.
    """

    def __init__(self, file_path: str, content: str, language: str = 'javascript'):
        self.file_path = file_path
        self.language = language
        self.created_at = datetime.now()
        self.last_modified: Optional[datetime] = None
        self._set_content(content)

    @classmethod
    def from_path(cls, file_path: str, content: str) -> 'SourceFile':
        """Create a source file, inferring the language from its extension."""
        extension = PurePath(file_path).suffix.lstrip('.').lower()
        return cls(file_path, content, LANGUAGE_BY_EXTENSION.get(extension, 'javascript'))

    @property
    def file_name(self) -> str:
        return PurePath(self.file_path.replace('\\', '/')).name

    @property
    def extension(self) -> str:
        return self.file_name.rpartition('.')[2] if '.' in self.file_name else ''

    def relative_path(self, base_dir: str) -> str:
        """Path relative to ``base_dir``; unchanged when outside it."""
        path = self.file_path.replace('\\', '/')
        base = base_dir.replace('\\', '/').rstrip('/')
        if base and path.startswith(base + '/'):
            return path[len(base) + 1:]
        return path

    def has_changed(self, new_content: str) -> bool:
        return self.hash != self._calculate_hash(new_content)

    def update_content(self, new_content: str) -> None:
        self._set_content(new_content)
        self.last_modified = datetime.now()

    def get_complexity_metrics(self) -> Dict[str, int]:
        """Regex-based structural counts and a log-scaled complexity score."""
        function_pattern = _FUNCTION_PATTERNS.get(self.language, _FUNCTION_PATTERNS['javascript'])
        conditional_pattern = _CONDITIONAL_PATTERNS.get(self.language, _DEFAULT_CONDITIONAL)

        function_count = len(function_pattern.findall(self.content))
        class_count = len(_CLASS_PATTERN.findall(self.content))
        conditional_count = len(conditional_pattern.findall(self.content))

        return {
            'functions': function_count,
            'classes': class_count,
            'conditionals': conditional_count,
            'lines': self.line_count,
            'size': self.size,
            'complexity': math.floor(math.log10(function_count + class_count + conditional_count + 1) * 10),
        }

    def extract_functions(self) -> List[CodeMarker]:
        """Function names, lines and signatures found by pattern matching."""
        pattern = _SIGNATURE_PATTERNS.get(self.language, _SIGNATURE_PATTERNS['javascript'])
        functions = []

        for match in pattern.finditer(self.content):
            name = next((group for group in match.groups() if group), None)
            if not name or name in _JS_KEYWORDS:
                continue
            functions.append(CodeMarker(
                name=name,
                line=self.content.count('\n', 0, match.start()) + 1,
                kind='function',
                signature=match.group(0),
            ))

        return functions

    def to_dict(self) -> Dict[str, Any]:
        return {
            'filePath': self.file_path,
            'fileName': self.file_name,
            'language': self.language,
            'size': self.size,
            'lineCount': self.line_count,
            'hash': self.hash,
            'createdAt': self.created_at.isoformat(),
            'lastModified': self.last_modified.isoformat() if self.last_modified else None,
            'complexity': self.get_complexity_metrics(),
        }

    def _set_content(self, content: str) -> None:
        self.content = content
        self.size = len(content)
        self.line_count = len(content.split('\n'))
        self.hash = self._calculate_hash(content)

    @staticmethod
    def _calculate_hash(content: str) -> str:
        return hashlib.sha256(content.encode('utf-8')).hexdigest()

    def __repr__(self) -> str:
        return f"SourceFile({self.file_path!r}, language={self.language!r}, size={self.size})"
