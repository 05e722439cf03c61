"""
Tests for node content.

Tests for weavetree/common/content.py
"""

from __future__ import annotations

import pytest

from weavetree.common import (
    TextContent,
    TokenContent,
    concat_content,
    content_from_dict,
    content_to_dict,
    get_node_content,
    same_kind,
    split_content,
)


class TestTokenContent:
    """Test TokenContent validation and flattening."""

    def test_to_text_concatenates(self):
        """Test tokens flatten to their concatenation."""
        content = TokenContent(((0.5, "Hel"), (0.25, "lo")))
        assert content.to_text() == "Hello"
        assert len(content) == 5

    def test_rejects_zero_probability(self):
        """Test probability must be strictly positive."""
        with pytest.raises(ValueError):
            TokenContent(((0.0, "a"),))

    def test_rejects_probability_above_one(self):
        """Test probability must not exceed 1."""
        with pytest.raises(ValueError):
            TokenContent(((1.5, "a"),))

    def test_accepts_probability_one(self):
        """Test probability of exactly 1 is allowed."""
        assert TokenContent(((1.0, "a"),)).is_single_token()

    def test_from_pairs_normalizes_lists(self):
        """Test list pairs become tuples so equal contents compare equal."""
        content = TokenContent.from_pairs([[0.5, "a"], [0.5, "b"]])
        assert content == TokenContent(((0.5, "a"), (0.5, "b")))
        assert hash(content) == hash(TokenContent(((0.5, "a"), (0.5, "b"))))


class TestGetNodeContent:
    """Test get_node_content flattening."""

    def test_text(self):
        assert get_node_content(TextContent("abc")) == "abc"

    def test_tokens(self):
        assert get_node_content(TokenContent(((0.9, "a"), (0.1, "bc")))) == "abc"

    def test_unknown_type_raises(self):
        with pytest.raises(TypeError):
            get_node_content("abc")


class TestConcatContent:
    """Test concat_content kind handling."""

    def test_text_plus_text(self):
        assert concat_content(TextContent("a"), TextContent("b")) == TextContent("ab")

    def test_tokens_plus_tokens(self):
        """Test token sequences keep their probabilities."""
        merged = concat_content(
            TokenContent(((0.5, "a"),)), TokenContent(((0.25, "b"),))
        )
        assert merged == TokenContent(((0.5, "a"), (0.25, "b")))

    def test_mixed_flattens_to_text(self):
        merged = concat_content(TextContent("a"), TokenContent(((0.5, "b"),)))
        assert merged == TextContent("ab")

    def test_same_kind(self):
        assert same_kind(TextContent("a"), TextContent("b"))
        assert not same_kind(TextContent("a"), TokenContent(((0.5, "b"),)))


class TestSplitContent:
    """Test split_content index handling."""

    def test_split_text(self):
        prefix, suffix = split_content(TextContent("Hello"), 2)
        assert prefix == TextContent("He")
        assert suffix == TextContent("llo")

    @pytest.mark.parametrize("index", [0, 5, -1, 10])
    def test_out_of_range_returns_none(self, index):
        """Test the index must lie strictly inside the content."""
        assert split_content(TextContent("Hello"), index) is None

    def test_split_tokens_on_boundary(self):
        content = TokenContent(((0.5, "He"), (0.5, "ll"), (0.5, "o")))
        prefix, suffix = split_content(content, 4)
        assert prefix == TokenContent(((0.5, "He"), (0.5, "ll")))
        assert suffix == TokenContent(((0.5, "o"),))

    def test_split_tokens_mid_token_returns_none(self):
        """Test tokens are never split inside a token."""
        content = TokenContent(((0.5, "He"), (0.5, "llo")))
        assert split_content(content, 3) is None


class TestContentDict:
    """Test content dict conversion."""

    def test_text_shape(self):
        assert content_to_dict(TextContent("a")) == {"text": "a"}

    def test_tokens_shape(self):
        data = content_to_dict(TokenContent(((0.5, "a"),)))
        assert data == {"tokens": [[0.5, "a"]]}
        assert content_from_dict(data) == TokenContent(((0.5, "a"),))

    def test_unknown_shape_raises(self):
        with pytest.raises(ValueError):
            content_from_dict({"blob": "a"})
