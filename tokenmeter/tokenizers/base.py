"""Base classes for token counter implementations.

Defines the TokenCounter protocol and the BaseTokenizer class. Subclasses
only implement ``count_text``; content, message, request and completion
counting are shared.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Protocol, runtime_checkable

from ..config import DEFAULT_IMAGE_TOKEN_COST
from ..parser import (
    ChatCompletion,
    ChatMessage,
    ChatRequest,
    ImagePart,
    MessageContent,
    PartList,
    PlainText,
    TextPart,
    parse_content,
)


@runtime_checkable
class TokenCounter(Protocol):
    """Protocol for token counting implementations.

    Any object with these methods can be handed to the middleware in
    place of the default estimator.
    """

    def count_text(self, text: str) -> int:
        """Count tokens in a text string."""
        ...

    def count_request(self, request: ChatRequest) -> int:
        """Count prompt-side tokens of a parsed request."""
        ...

    def count_completion(self, completion: ChatCompletion) -> int:
        """Count completion-side tokens of a parsed response."""
        ...

    def count_stream(self, chunks: list[ChatCompletion]) -> int:
        """Count completion-side tokens of a streamed response."""
        ...


class BaseTokenizer(ABC):
    """Abstract base class for token counters.

    Request counting follows the OpenAI-style baseline: every message
    pays a fixed overhead on top of its role and content, and the request
    as a whole pays for the model name plus a reply primer.
    """

    MESSAGE_OVERHEAD = 4
    REPLY_OVERHEAD = 2
    NAME_OVERHEAD = 1
    TOOL_CALL_OVERHEAD = 4

    def __init__(self, image_token_cost: int = DEFAULT_IMAGE_TOKEN_COST):
        self.image_token_cost = image_token_cost

    @abstractmethod
    def count_text(self, text: str) -> int:
        """Count tokens in a text string. Must be implemented by subclasses."""
        pass

    def count_content(self, content: MessageContent | None) -> int:
        """Count tokens in resolved message content.

        Text parts are counted with ``count_text``, image parts cost a
        flat ``image_token_cost``, everything else is free.
        """
        if content is None:
            return 0
        if isinstance(content, PlainText):
            return self.count_text(content.text)

        total = 0
        for part in content.parts:
            if isinstance(part, TextPart):
                total += self.count_text(part.text)
            elif isinstance(part, ImagePart):
                total += self.image_token_cost
        return total

    def count_message(self, message: ChatMessage) -> int:
        total = self.MESSAGE_OVERHEAD
        total += self.count_text(message.role)
        total += self.count_content(message.content)

        if message.name:
            total += self.count_text(message.name) + self.NAME_OVERHEAD

        for call in message.tool_calls:
            total += self.TOOL_CALL_OVERHEAD
            total += self.count_text(call.name)
            total += self.count_text(call.arguments)

        return total

    def count_request(self, request: ChatRequest) -> int:
        """Estimate prompt tokens for a whole request."""
        total = sum(self.count_message(m) for m in request.messages)
        total += self.count_text(request.model)
        total += self.REPLY_OVERHEAD
        return total

    def count_completion(self, completion: ChatCompletion) -> int:
        """Estimate completion tokens from the choices' content."""
        return sum(self.count_content(c) for c in completion.contents)

    def count_stream(self, chunks: list[ChatCompletion]) -> int:
        """Estimate completion tokens of a streamed response.

        Streamed deltas are fragments of one text per choice, so each
        choice's fragments are joined before counting rather than counted
        chunk by chunk.
        """
        pieces: dict[int, list[str]] = {}
        for chunk in chunks:
            indexes = chunk.indexes
            if len(indexes) != len(chunk.contents):
                indexes = tuple(range(len(chunk.contents)))
            for index, content in zip(indexes, chunk.contents):
                if isinstance(content, PlainText):
                    pieces.setdefault(index, []).append(content.text)
                elif isinstance(content, PartList):
                    pieces.setdefault(index, []).extend(
                        p.text for p in content.parts if isinstance(p, TextPart)
                    )
        return sum(self.count_text("".join(texts)) for texts in pieces.values())


def count_content_tokens(counter: BaseTokenizer, raw: Any) -> int:
    """Count tokens of a raw (unparsed) ``content`` value.

    Accepts whatever appeared in the JSON: None, a string, a list of
    parts, or anything else. Unexpected shapes count as zero.
    """
    return counter.count_content(parse_content(raw))
