"""Wildcard pattern matching for resource identifiers.

Patterns are resource identifiers that may contain ``*``. A ``*`` matches
any run of characters, including none. The match is anchored at each end
that does not carry a wildcard, so ``"a.*.c"`` matches ``"a.b.c"`` but not
``"a.b.c.d"``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
import re

# Every regex metacharacter except "*"
_SPECIAL_CHARS = re.compile(r"[-/\\^$+?.()|[\]{}]")


def pattern_to_regex(pattern: str | None) -> str:
    """Convert a wildcard pattern into regular expression text.

    Examples:
        "system.adapter.*" -> "^system\\.adapter\\..*"
        "*.alive"          -> ".*\\.alive\\Z"
    """
    pattern = pattern or ""
    start_anchor = "" if pattern.startswith("*") else "^"
    end_anchor = "" if pattern.endswith("*") else r"\Z"
    body = _SPECIAL_CHARS.sub(lambda m: "\\" + m.group(0), pattern)
    return start_anchor + body.replace("*", ".*") + end_anchor


@dataclass(frozen=True)
class Matcher:
    """Compiled predicate for one pattern."""

    pattern: str
    regex: re.Pattern[str] = field(repr=False, compare=False)

    def test(self, resource_id: str | None) -> bool:
        """Return True if the identifier satisfies the pattern."""
        if resource_id is None:
            return False
        return self.regex.search(resource_id) is not None


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str | None) -> Matcher:
    """Compile a wildcard pattern into a Matcher.

    Never raises: every input produces a valid expression.
    """
    pattern = pattern or ""
    return Matcher(pattern, re.compile(pattern_to_regex(pattern), re.DOTALL))
