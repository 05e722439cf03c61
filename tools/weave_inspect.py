#!/usr/bin/env python3
"""
Weave Inspect - Show, search, resync or grow the weave of a markdown file.

Reads the weave embedded in the file's front matter (or starts one from
its text), then prints the node tree. With --sync the body text is
reconciled with the tree and the file is rewritten; with --generate MODEL
a local Transformers model adds branches under the current node.

Usage: python tools/weave_inspect.py story.md [--search QUERY] [--sync]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from weavetree.config import LoomConfig, load_config
from weavetree.weave import (
    StringBuffer,
    WeaveDocument,
    WeaveFormatError,
    WeaveNode,
    load_document,
    save_document,
)

PREVIEW_CHARS = 60


# -----------------------------------------------------------------------------
# Formatting
# -----------------------------------------------------------------------------


def describe_node(document: WeaveDocument, node: WeaveNode) -> str:
    """One-line description of a node."""
    markers = ""
    if node.identifier == document.current_node:
        markers += "*"
    if document.is_bookmarked(node.identifier):
        markers += "#"

    text = node.text
    preview = repr(text[:PREVIEW_CHARS] + ("..." if len(text) > PREVIEW_CHARS else ""))

    extra = ""
    if node.model is not None:
        label = document.models.get(node.model)
        extra = f" [{label.label if label else node.model}]"
    if node.is_single_token():
        extra += f" p={node.content.tokens[0][0]:.3f}"

    return f"{markers:<2}{node.identifier} {preview}{extra}"


def format_tree(document: WeaveDocument) -> List[str]:
    """Indented tree, roots first, children in navigation order."""
    lines: List[str] = []
    stack = [(node, 0) for node in reversed(document.get_root_nodes())]
    while stack:
        node, depth = stack.pop()
        lines.append("  " * depth + describe_node(document, node))
        for child in reversed(document.get_node_children(node.identifier)):
            stack.append((child, depth + 1))
    return lines


# -----------------------------------------------------------------------------
# Actions
# -----------------------------------------------------------------------------


def generate_branches(
    buffer: StringBuffer,
    config: LoomConfig,
    model_name: str,
    depth: Optional[int] = None,
) -> int:
    """Grow the weave under the current node with a local model."""
    from generation import BranchGenerator, DocumentSession
    from generation.local import LocalCompletionProvider
    from generation.model import ModelWrapper

    provider = LocalCompletionProvider(ModelWrapper(model_name))
    session = DocumentSession(
        buffer,
        config,
        generator=BranchGenerator([provider], config.generation),
        notice=lambda message: print(f"Notice: {message}", file=sys.stderr),
    )

    async def run() -> int:
        if not await session.load():
            return 1
        added = await session.generate(depth=depth)
        print(f"Added {len(added)} nodes")
        return 0

    return asyncio.run(run())


# -----------------------------------------------------------------------------
# CLI
# -----------------------------------------------------------------------------


def get_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description=__doc__.split("\n")[1])
    parser.add_argument("path", help="Markdown file holding the weave")
    parser.add_argument("--config", default=None, help="Config YAML")
    parser.add_argument("--search", default=None, help="List nodes containing QUERY")
    parser.add_argument(
        "--sync",
        action="store_true",
        help="Reconcile the tree with the body text and rewrite the file",
    )
    parser.add_argument(
        "--generate", metavar="MODEL", default=None, help="Generate branches with MODEL"
    )
    parser.add_argument("--depth", type=int, default=None, help="Generation depth")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = get_args(argv)
    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s"
        )

    path = Path(args.path)
    if not path.exists():
        print(f"Error: {path} not found")
        return 1

    config = load_config(args.config)
    original = path.read_text(encoding="utf-8")
    buffer = StringBuffer(original)

    if args.generate:
        status = generate_branches(buffer, config, args.generate, args.depth)
        if buffer.get_value() != original:
            path.write_text(buffer.get_value(), encoding="utf-8")
        if status:
            return status
        original = buffer.get_value()

    try:
        document = load_document(buffer, config.persistence, config.sync)
    except WeaveFormatError as e:
        print(f"Error: unable to load weave: {e}")
        return 1

    if args.sync:
        save_document(buffer, document, config.persistence)
        if buffer.get_value() != original:
            path.write_text(buffer.get_value(), encoding="utf-8")
            print(f"Updated {path}")

    print(f"{len(document)} nodes, {len(document.bookmarks)} bookmarks")
    if args.search is not None:
        for node in document.search(args.search):
            print(describe_node(document, node))
    else:
        for line in format_tree(document):
            print(line)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
