"""Intent models for conversational server-management commands.

These Pydantic models describe the intent catalog: which phrases map to
which intent, which script batch an intent runs, and how batch inputs
are pulled out of free text.
"""

import re

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator


class InputExtractor(BaseModel):
    """Regex that pulls one batch input out of the user's message.

    Attributes:
        field: Input name the captured value is stored under
        pattern: Regular expression applied to the original (un-normalized) text
        group: Capture group holding the value (0 = whole match)
        ignore_case: Compile the pattern case-insensitively
    """

    model_config = ConfigDict(frozen=True)

    field: str = Field(..., min_length=1)
    pattern: str = Field(..., min_length=1)
    group: int = Field(default=1, ge=0)
    ignore_case: bool = True

    _compiled: re.Pattern = PrivateAttr()

    @field_validator("pattern")
    @classmethod
    def pattern_compiles(cls, value: str) -> str:
        """Reject patterns that are not valid regular expressions."""
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid extractor pattern {value!r}: {e}") from e
        return value

    def model_post_init(self, __context: object) -> None:
        flags = re.IGNORECASE if self.ignore_case else 0
        self._compiled = re.compile(self.pattern, flags)

    def extract(self, text: str) -> str | None:
        """Return the captured value, or None if the pattern doesn't match."""
        match = self._compiled.search(text)
        if not match:
            return None
        try:
            value = match.group(self.group)
        except IndexError:
            return None
        return value or None


class IntentDefinition(BaseModel):
    """One entry of the intent catalog.

    Attributes:
        name: Intent label (e.g. "install_wordpress")
        batch_name: Script batch the intent resolves to (None = unsupported)
        patterns: Regexes tried first against normalized text; any match wins
        keywords: Fallback keyword groups. Every group must contribute at
            least one substring of the normalized text.
        extractors: Input extractors run when this intent is handled
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    batch_name: str | None = None
    patterns: tuple[str, ...] = ()
    keywords: tuple[tuple[str, ...], ...] = ()
    extractors: tuple[InputExtractor, ...] = ()

    _compiled: tuple[re.Pattern, ...] = PrivateAttr()

    @field_validator("patterns")
    @classmethod
    def patterns_compile(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        """Reject patterns that are not valid regular expressions."""
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid intent pattern {pattern!r}: {e}") from e
        return value

    @field_validator("keywords")
    @classmethod
    def keywords_lowercase(
        cls, value: tuple[tuple[str, ...], ...]
    ) -> tuple[tuple[str, ...], ...]:
        """Normalize keywords and drop empty groups."""
        return tuple(
            tuple(word.lower() for word in group if word)
            for group in value
            if any(group)
        )

    def model_post_init(self, __context: object) -> None:
        self._compiled = tuple(re.compile(p, re.IGNORECASE) for p in self.patterns)

    def matches_pattern(self, normalized: str) -> bool:
        return any(p.search(normalized) for p in self._compiled)

    def matches_keywords(self, normalized: str) -> bool:
        if not self.keywords:
            return False
        return all(
            any(word in normalized for word in group) for group in self.keywords
        )
