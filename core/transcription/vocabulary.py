"""
Custom vocabulary replacement.

Maps spoken forms to written forms ("pie torch" -> "PyTorch"). Matching is
case-insensitive and whole-word; longer spoken forms win over shorter ones.
"""

from __future__ import annotations

import re
from typing import Mapping, Optional


class VocabularyReplacer:
    def __init__(self, replacements: Optional[Mapping[str, str]] = None) -> None:
        self._lookup = {
            spoken.strip().lower(): written
            for spoken, written in (replacements or {}).items()
            if spoken.strip()
        }
        self._pattern: Optional[re.Pattern[str]] = None
        if self._lookup:
            alternatives = sorted(self._lookup, key=len, reverse=True)
            self._pattern = re.compile(
                r"(?<!\w)(" + "|".join(re.escape(a) for a in alternatives) + r")(?!\w)",
                re.IGNORECASE,
            )

    def __bool__(self) -> bool:
        return self._pattern is not None

    def apply(self, text: str) -> str:
        if self._pattern is None:
            return text
        return self._pattern.sub(lambda m: self._lookup[m.group(1).lower()], text)
