"""Token counting for prompt budgeting."""

from __future__ import annotations

import tiktoken
from loguru import logger

# Scripts that average about two characters per token
_CJK_RANGES = (
    ("\u3040", "\u309f"),  # Hiragana
    ("\u30a0", "\u30ff"),  # Katakana
    ("\u4e00", "\u9fff"),  # CJK Unified Ideographs
    ("\uac00", "\ud7af"),  # Hangul syllables
)


def _is_cjk(char: str) -> bool:
    return any(low <= char <= high for low, high in _CJK_RANGES)


def estimate_tokens(text: str) -> int:
    """Offline estimate: four characters per token, two for CJK scripts.

    Any non-empty text costs at least one token.
    """
    if not text:
        return 0
    cjk = sum(1 for char in text if _is_cjk(char))
    return max(1, (len(text) - cjk) // 4 + cjk // 2)


class TokenCounter:
    """Measures text for the token budget.

    A tiktoken encoding is used when ``model`` maps to one. ``model=None``
    or an unknown model selects ``estimate_tokens``, which keeps counts
    deterministic and offline.
    """

    def __init__(self, model: str | None = "gpt-4"):
        self.model = model
        self._encoding = self._load_encoding(model) if model else None

    @staticmethod
    def _load_encoding(model: str):
        try:
            return tiktoken.encoding_for_model(model)
        except Exception as e:  # unknown model or encoding download failure
            logger.debug(f"No tiktoken encoding for {model!r} ({e}); estimating tokens")
            return None

    @property
    def uses_tiktoken(self) -> bool:
        return self._encoding is not None

    def count(self, text: str) -> int:
        if not text:
            return 0
        if self._encoding is None:
            return estimate_tokens(text)
        return len(self._encoding.encode(text))
