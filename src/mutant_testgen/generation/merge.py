"""Text-level merge strategies for improved test suites.

Merging is a best-effort textual operation. ``SPLICE`` moves the body of a
single top-level grouping block from the new text into the final grouping
block of the existing file; ``APPEND`` adds the new text after a blank line.
``AUTO`` splices when the shapes allow it and appends otherwise. Nested or
multiple top-level groups are never merged structurally; only the outermost
match is used.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from mutant_testgen.analysis.test_syntax import JEST, TestSyntax

logger = logging.getLogger(__name__)


class MergeStrategy(Enum):
    """How improved tests are combined with the existing suite."""
    AUTO = "auto"
    SPLICE = "splice"
    APPEND = "append"


@dataclass
class MergeResult:
    """Result of merging new tests into an existing suite."""
    content: str
    strategy_used: MergeStrategy


def merge_tests(existing: str, improved: str,
                strategy: MergeStrategy = MergeStrategy.AUTO,
                syntax: TestSyntax = JEST) -> MergeResult:
    """Merge ``improved`` into ``existing`` without dropping existing tests."""
    merged = existing.strip()
    improved_content = improved.strip()

    if not improved_content:
        return MergeResult(content=merged, strategy_used=MergeStrategy.APPEND)
    if not merged:
        return MergeResult(content=improved_content, strategy_used=MergeStrategy.APPEND)

    if strategy is not MergeStrategy.APPEND:
        spliced = _splice(merged, improved_content, syntax)
        if spliced is not None:
            return MergeResult(content=spliced, strategy_used=MergeStrategy.SPLICE)
        if strategy is MergeStrategy.SPLICE:
            logger.debug("Splice not possible for the improved tests; appending instead")

    return MergeResult(content=f"{merged}\n\n{improved_content}", strategy_used=MergeStrategy.APPEND)


def _splice(existing: str, improved: str, syntax: TestSyntax) -> Optional[str]:
    if not syntax.brace_delimited:
        return None

    if len(syntax.top_level_group_pattern.findall(improved)) != 1:
        return None

    body_match = syntax.group_body_pattern.search(improved)
    closing_match = syntax.closing_pattern.search(existing)
    if body_match is None or closing_match is None:
        return None

    body = body_match.group(1).strip('\n')
    if not body.strip():
        return None

    preamble = _missing_preamble_lines(existing, improved[:body_match.start()])
    head = existing[:closing_match.start()].rstrip()
    tail = existing[closing_match.start():]
    spliced = f"{head}\n\n{body}\n{tail}"

    if preamble:
        spliced = _insert_preamble(spliced, preamble, syntax)
    return spliced


def _missing_preamble_lines(existing: str, preamble: str) -> List[str]:
    """Lines before the new grouping block (imports, requires) not yet present."""
    existing_lines = {line.strip() for line in existing.splitlines()}
    return [
        line for line in preamble.splitlines()
        if line.strip() and line.strip() not in existing_lines
    ]


def _insert_preamble(content: str, lines: List[str], syntax: TestSyntax) -> str:
    first_group = syntax.top_level_group_pattern.search(content)
    insert_at = first_group.start() if first_group else 0
    block = "\n".join(lines) + "\n\n"
    return content[:insert_at] + block + content[insert_at:]
