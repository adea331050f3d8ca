#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
binarytree.py -- BinaryTree (EA "0x46FB"/"0x47FB") decompressor.

The BinaryTree codec replaces frequent byte pairs by unused byte values
and records the substitutions as a small binary tree.  Decoding walks
that tree back down to plain bytes.  Only the decoder exists: the game
never wrote this format, it only reads it.

### Stream layout

* ``u16 magic``: ``0x46FB`` (followed by a redundant 3-byte size that
  is skipped) or ``0x47FB``.
* ``u24 size`` (big endian): decompressed length.
* ``u8 clue``: escape byte value.
* ``u8 count`` followed by ``count`` triples ``(node, left, right)``.
* body: every byte is either a literal, a tree node (expanded to its
  two children, recursively), or the clue.  The clue followed by a
  non-zero byte emits that byte verbatim; the clue followed by zero ends
  the stream.
"""

from __future__ import annotations

from typing import List

from eac_header import FAMILY_BINARYTREE, CorruptStreamError, read_header
import eac_header

CLUE_LITERAL = 0
CLUE_NODE = -1
CLUE_ESCAPE = 1

# a tree over 256 byte values cannot be deeper than this without a cycle
MAX_TREE_DEPTH = 256

is_valid_stream = eac_header.is_valid_binarytree_stream
decompressed_size = eac_header.binarytree_decompressed_size


class _Tree:
    __slots__ = ("clue", "left", "right")
    def __init__(self) -> None:
        self.clue: List[int] = [CLUE_LITERAL] * 256
        self.left: List[int] = [0] * 256
        self.right: List[int] = [0] * 256

    def chase(self, node: int, out: bytearray, limit: int, depth: int = 0) -> None:
        """Append the bytes ``node`` stands for, left subtree first."""
        if depth > MAX_TREE_DEPTH:
            raise CorruptStreamError(f"Tree node 0x{node:02X} is part of a cycle")
        if self.clue[node] < 0:
            self.chase(self.left[node], out, limit, depth + 1)
            self.chase(self.right[node], out, limit, depth + 1)
            return
        if len(out) >= limit:
            raise CorruptStreamError(f"Tree expands past the announced size of {limit} bytes")
        out.append(node)


def decompress(data: bytes, strict: bool = False) -> bytes:
    """Expand a BinaryTree stream.

    Raises ``InvalidHeaderError`` on a foreign magic and
    ``CorruptStreamError`` when the stream ends before its terminator or
    the tree loops back on itself or expands past the header size.
    ``strict`` additionally checks the output length against the header.
    """
    src = bytes(data)
    header = read_header(src, FAMILY_BINARYTREE)
    pos = header.header_length
    n = len(src)

    def next_byte() -> int:
        nonlocal pos
        if pos >= n:
            raise CorruptStreamError(f"Truncated BinaryTree stream at offset {pos}")
        b = src[pos]
        pos += 1
        return b

    tree = _Tree()
    clue = next_byte()
    tree.clue[clue] = CLUE_ESCAPE

    for _ in range(next_byte()):
        node = next_byte()
        tree.left[node] = next_byte()
        tree.right[node] = next_byte()
        tree.clue[node] = CLUE_NODE

    # node expansion never grows the output past the announced size
    limit = header.decompressed_size
    out = bytearray()
    while True:
        b = next_byte()
        kind = tree.clue[b]
        if kind == CLUE_LITERAL:
            out.append(b)
        elif kind < 0:
            tree.chase(tree.left[b], out, limit)
            tree.chase(tree.right[b], out, limit)
        else:
            b = next_byte()
            if b == 0:
                break
            out.append(b)

    if strict and len(out) != header.decompressed_size:
        raise CorruptStreamError(
            f"Decoded length mismatch: expected {header.decompressed_size}, got {len(out)}")
    return bytes(out)
