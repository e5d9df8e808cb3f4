"""Word-run token estimation.

No tokenizer vocabulary is involved: the estimate is the number of
alphanumeric runs in the text scaled by a fixed tokens-per-word ratio.
It is cheap, deterministic and good enough for usage accounting when
the upstream did not report real numbers.
"""

from __future__ import annotations

from .base import BaseTokenizer

# Average tokens per English word
TOKENS_PER_WORD = 1.33


def _is_word_char(ch: str) -> bool:
    return ch.isalpha() or ch.isdecimal()


def count_word_runs(text: str) -> int:
    """Count maximal runs of letters/digits in ``text``."""
    runs = 0
    in_word = False
    for ch in text.lower():
        if _is_word_char(ch):
            if not in_word:
                runs += 1
                in_word = True
        else:
            in_word = False
    return runs


def estimate_tokens(text: str, tokens_per_word: float = TOKENS_PER_WORD) -> int:
    """Estimate the token count of ``text``.

    Empty text is 0 tokens. Any other text is at least 1 token, even
    when it holds no words at all (e.g. ``"..."``).

    Example:
        >>> estimate_tokens("hello world")
        2
        >>> estimate_tokens("one two three")
        3
    """
    if not text:
        return 0

    tokens = int(count_word_runs(text) * tokens_per_word)
    return max(tokens, 1)


class WordRunEstimator(BaseTokenizer):
    """Token counter backed by ``estimate_tokens``.

    This is the default counter of the middleware.

    Example:
        counter = WordRunEstimator()
        tokens = counter.count_text("Hello, world!")
    """

    def __init__(self, tokens_per_word: float = TOKENS_PER_WORD, **kwargs):
        super().__init__(**kwargs)
        self.tokens_per_word = tokens_per_word

    def count_text(self, text: str) -> int:
        return estimate_tokens(text, self.tokens_per_word)

    def __repr__(self) -> str:
        return f"WordRunEstimator(tokens_per_word={self.tokens_per_word})"
