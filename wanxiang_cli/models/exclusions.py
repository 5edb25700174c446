"""
User exclusion rules that protect files from being overwritten or deleted.
"""

import fnmatch
import logging
import re
from pathlib import Path

log = logging.getLogger(__name__)


def _compile(pattern: str) -> re.Pattern:
    """
    Compiles a rule as a regular expression, falling back to a case-insensitive
    glob that must match the whole value when the rule is not valid regex.
    """
    try:
        return re.compile(pattern)
    except re.error:
        return re.compile("^" + fnmatch.translate(pattern), re.IGNORECASE)


class ExclusionRuleSet:
    """
    An ordered list of glob/regex rules.

    A path is tested against its file name, its path relative to the install
    root, and its absolute path, in that order. The first rule that matches
    wins.
    """

    def __init__(self, patterns: list[str] | None = None):
        self.patterns: list[str] = [
            p.strip() for p in (patterns or []) if p and p.strip()
        ]
        self._compiled = [(p, _compile(p)) for p in self.patterns]

    @classmethod
    def from_text(cls, text: str) -> "ExclusionRuleSet":
        """Builds a rule set from newline-separated patterns."""
        return cls(text.splitlines())

    def __bool__(self) -> bool:
        return bool(self._compiled)

    def __len__(self) -> int:
        return len(self._compiled)

    def __repr__(self) -> str:
        return f"ExclusionRuleSet({self.patterns!r})"

    def match(self, path: str | Path, root: str | Path | None = None) -> str | None:
        """Returns the first rule matching ``path``, or None."""
        if not self._compiled:
            return None

        full = Path(path).as_posix()
        candidates = [Path(full).name]
        if root is not None:
            root_str = Path(root).as_posix().rstrip("/")
            if full.startswith(root_str + "/"):
                candidates.append(full[len(root_str) + 1 :])
        candidates.append(full)

        for value in candidates:
            for raw, regex in self._compiled:
                if regex.search(value):
                    log.debug(f"Rule '{raw}' matched '{value}'")
                    return raw
        return None

    def is_excluded(self, path: str | Path, root: str | Path | None = None) -> bool:
        return self.match(path, root) is not None
