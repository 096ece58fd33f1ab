"""Token-counting capability used to enforce chunk budgets."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import tiktoken

from rag_ingest.config import settings
from rag_ingest.exceptions import ValidationError


@runtime_checkable
class Tokenizer(Protocol):
    """Anything that deterministically maps text to a non-negative token count."""

    def count_tokens(self, text: str) -> int: ...


class TiktokenTokenizer:
    """Counts tokens with a tiktoken encoding.

    Parameters
    ----------
    encoding_name:
        tiktoken encoding, e.g. ``"cl100k_base"``.
    """

    def __init__(self, encoding_name: str = settings.tokenizer_encoding) -> None:
        self.encoding_name = encoding_name
        self._encoding = tiktoken.get_encoding(encoding_name)

    def count_tokens(self, text: str) -> int:
        return len(self._encoding.encode(text, disallowed_special=()))


class CharacterRatioTokenizer:
    """Approximate counter: one token per *chars_per_token* characters.

    Cheap and dependency-free; useful when the exact model tokenizer is not
    known and only a rough budget is needed.
    """

    def __init__(self, chars_per_token: int = 4) -> None:
        if chars_per_token <= 0:
            raise ValidationError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        return max(1, len(text) // self.chars_per_token)
