"""
Named, documented regex patterns used by the extractors.
"""

import re
from dataclasses import dataclass, field
from typing import Iterator, Optional


@dataclass(frozen=True)
class PatternSpec:
    """A named regex pattern with example and notes for documentation."""
    name: str
    pattern: str
    example: str
    notes: Optional[str] = None
    priority: Optional[int] = None
    flags: int = re.IGNORECASE
    compiled: re.Pattern = field(default=None, init=False, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, 'compiled', re.compile(self.pattern, self.flags))

    def search(self, text: str) -> Optional[re.Match]:
        return self.compiled.search(text)

    def finditer(self, text: str) -> Iterator[re.Match]:
        return self.compiled.finditer(text)


def line_of(text: str, match: re.Match) -> str:
    """Return the full line of `text` containing the start of `match`."""
    start = text.rfind('\n', 0, match.start()) + 1
    end = text.find('\n', match.start())
    return text[start:] if end == -1 else text[start:end]


def any_match(specs, text: str) -> bool:
    return any(spec.compiled.search(text) for spec in specs)
