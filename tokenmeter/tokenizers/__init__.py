"""Token counting for chat-completion payloads.

Usage:
    from tokenmeter.tokenizers import WordRunEstimator, estimate_tokens

    estimate_tokens("Hello, world!")  # -> 2

    counter = WordRunEstimator()
    counter.count_request(parse_request(body))
"""

from .base import BaseTokenizer, TokenCounter, count_content_tokens
from .estimator import TOKENS_PER_WORD, WordRunEstimator, count_word_runs, estimate_tokens

__all__ = [
    # Base classes
    "TokenCounter",
    "BaseTokenizer",
    # Implementations
    "WordRunEstimator",
    # Helpers
    "estimate_tokens",
    "count_word_runs",
    "count_content_tokens",
    "TOKENS_PER_WORD",
]
