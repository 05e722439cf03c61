"""
Node content representation.

A node holds either plain text or an ordered sequence of
(probability, token) pairs produced by a language model. Both shapes are
immutable; every comparison or length computation goes through
get_node_content() so that token sequences behave like the string they spell.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple, Union

Token = Tuple[float, str]


@dataclass(frozen=True)
class TextContent:
    """Plain text content."""

    text: str

    def __len__(self) -> int:
        return len(self.text)

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class TokenContent:
    """
    Probability-tagged token sequence.

    Attributes:
        tokens: Tuple of (probability, token) pairs, probability in (0, 1]
    """

    tokens: Tuple[Token, ...]

    def __post_init__(self):
        tokens = tuple((float(prob), str(token)) for prob, token in self.tokens)
        for prob, token in tokens:
            if not 0.0 < prob <= 1.0:
                raise ValueError(
                    f"Token probability must be in (0, 1], got {prob} for {token!r}"
                )
        object.__setattr__(self, "tokens", tokens)

    def __len__(self) -> int:
        return len(self.to_text())

    def __str__(self) -> str:
        return self.to_text()

    def to_text(self) -> str:
        """Concatenate tokens into text."""
        return "".join(token for _, token in self.tokens)

    def is_single_token(self) -> bool:
        """True for a one-token alternative node."""
        return len(self.tokens) == 1

    @classmethod
    def from_pairs(cls, pairs: Iterable[Token]) -> TokenContent:
        """Create from any iterable of (probability, token) pairs."""
        return cls(tokens=tuple(pairs))


NodeContent = Union[TextContent, TokenContent]


def get_node_content(content: NodeContent) -> str:
    """Flatten content into a single string."""
    if isinstance(content, TextContent):
        return content.text
    if isinstance(content, TokenContent):
        return content.to_text()
    raise TypeError(f"Unknown content type: {type(content).__name__}")


def same_kind(first: NodeContent, second: NodeContent) -> bool:
    """True if both contents are text or both are token sequences."""
    return type(first) is type(second)


def concat_content(first: NodeContent, second: NodeContent) -> NodeContent:
    """
    Concatenate two contents.

    Text + text stays text and tokens + tokens stays tokens. Mixed kinds
    are flattened to text.
    """
    if isinstance(first, TextContent) and isinstance(second, TextContent):
        return TextContent(first.text + second.text)
    if isinstance(first, TokenContent) and isinstance(second, TokenContent):
        return TokenContent(first.tokens + second.tokens)
    return TextContent(get_node_content(first) + get_node_content(second))


def split_content(
    content: NodeContent, index: int
) -> Optional[Tuple[NodeContent, NodeContent]]:
    """
    Split content at a character index.

    Args:
        content: Content to split
        index: Character offset, must satisfy 0 < index < len(content)

    Returns:
        (prefix, suffix) or None if the index is out of range. Token
        sequences only split on token boundaries; an index falling inside
        a token also returns None.
    """
    if isinstance(content, TextContent):
        if not 0 < index < len(content.text):
            return None
        return TextContent(content.text[:index]), TextContent(content.text[index:])

    if isinstance(content, TokenContent):
        if not 0 < index < len(content):
            return None
        offset = 0
        for position, (_, token) in enumerate(content.tokens):
            if offset == index:
                return (
                    TokenContent(content.tokens[:position]),
                    TokenContent(content.tokens[position:]),
                )
            if offset > index:
                break
            offset += len(token)
        return None

    raise TypeError(f"Unknown content type: {type(content).__name__}")


def content_to_dict(content: NodeContent) -> dict:
    """Convert content to a JSON-serializable dict."""
    if isinstance(content, TextContent):
        return {"text": content.text}
    if isinstance(content, TokenContent):
        return {"tokens": [[prob, token] for prob, token in content.tokens]}
    raise TypeError(f"Unknown content type: {type(content).__name__}")


def content_from_dict(data: dict) -> NodeContent:
    """Inverse of content_to_dict()."""
    if "text" in data:
        return TextContent(str(data["text"]))
    if "tokens" in data:
        return TokenContent(tuple((prob, token) for prob, token in data["tokens"]))
    raise ValueError(f"Unknown content shape: {sorted(data)}")
