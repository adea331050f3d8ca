#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
eac_header.py -- Header probes shared by the RefPack and BinaryTree codecs.

Both legacy codecs open their streams with the same kind of header:

* ``u16 magic`` (big endian): identifies the codec family and variant.
* optional redundant size field: skipped when the variant says so.
* ``u24``/``u32 size`` (big endian): the decompressed length.

RefPack magics are ``0x10FB``/``0x11FB`` (3-byte size) and
``0x90FB``/``0x91FB`` (4-byte size).  Bit ``0x8000`` of the magic selects
the wide size field and bit ``0x0100`` (set in ``0x11FB``/``0x91FB``)
announces a redundant copy of the size that precedes the real one.
BinaryTree magics are ``0x46FB`` (with the redundant field) and
``0x47FB`` (without); both use 3-byte sizes.

The probes accept either a bytes-like object or a seekable binary file
object.  File objects are read from offset 0 and their position is
restored afterwards, so probing never moves a caller's stream.

This module also holds the error classes used by every decoder.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO, FrozenSet, Union

###############################################################################
# Errors
###############################################################################

class CompressionError(ValueError):
    """Base class for every RefPack/BinaryTree decoding failure."""


class InvalidHeaderError(CompressionError):
    """The stream does not start with a recognised magic/size header."""


class CorruptStreamError(CompressionError):
    """The instruction stream is truncated or references missing data."""


###############################################################################
# Magic families
###############################################################################

REFPACK_MAGICS: FrozenSet[int] = frozenset((0x10FB, 0x11FB, 0x90FB, 0x91FB))
BINARYTREE_MAGICS: FrozenSet[int] = frozenset((0x46FB, 0x47FB))

FAMILY_REFPACK = 'refpack'
FAMILY_BINARYTREE = 'binarytree'

_FAMILIES = {
    FAMILY_REFPACK: REFPACK_MAGICS,
    FAMILY_BINARYTREE: BINARYTREE_MAGICS,
}

# largest length that still fits the 3-byte size field
MAX_SIZE_24 = 0xFFFFFF

Source = Union[bytes, bytearray, memoryview, BinaryIO]

###############################################################################
# Big endian helpers
###############################################################################

def read_uint16_be(data: bytes, pos: int) -> int:
    return struct.unpack_from('>H', data, pos)[0]

def read_uint24_be(data: bytes, pos: int) -> int:
    hi, lo = struct.unpack_from('>BH', data, pos)
    return (hi << 16) | lo

def read_uint32_be(data: bytes, pos: int) -> int:
    return struct.unpack_from('>I', data, pos)[0]

def pack_uint24_be(value: int) -> bytes:
    if value < 0 or value > MAX_SIZE_24:
        raise ValueError(f"value {value} does not fit in 24 bits")
    return struct.pack('>BH', value >> 16, value & 0xFFFF)

def _peek(source: Source, n: int) -> bytes:
    """Return up to ``n`` leading bytes of ``source`` without moving it."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source[:n])
    saved = source.tell()
    try:
        source.seek(0)
        return source.read(n)
    finally:
        source.seek(saved)

###############################################################################
# Header description
###############################################################################

@dataclass(frozen=True)
class StreamHeader:
    magic: int
    size_width: int
    has_redundant_size: bool
    decompressed_size: int

    @property
    def header_length(self) -> int:
        """Bytes occupied by the header in front of the payload."""
        return header_length(self.magic)


def header_layout(magic: int) -> tuple[int, bool]:
    """Return ``(size_width, has_redundant_size)`` for a known magic."""
    if magic in REFPACK_MAGICS:
        return (4 if magic & 0x8000 else 3), bool(magic & 0x0100)
    if magic in BINARYTREE_MAGICS:
        return 3, magic == 0x46FB
    raise InvalidHeaderError(f"Unknown magic 0x{magic:04X}")


def header_length(magic: int) -> int:
    width, redundant = header_layout(magic)
    return 2 + width * (2 if redundant else 1)


def read_header(source: Source, family: str = FAMILY_REFPACK) -> StreamHeader:
    """Parse the magic and size fields of ``source``.

    ``family`` restricts the accepted magics to one codec.  Raises
    ``InvalidHeaderError`` if the magic is not part of the family or the
    header is cut short.
    """
    magics = _FAMILIES.get(family)
    if magics is None:
        raise ValueError(f"unknown codec family {family!r}")
    head = _peek(source, 10)
    if len(head) < 2:
        raise InvalidHeaderError("Stream too short for a header")
    magic = read_uint16_be(head, 0)
    if magic not in magics:
        raise InvalidHeaderError(f"Bad {family} magic 0x{magic:04X}")
    width, redundant = header_layout(magic)
    pos = 2 + (width if redundant else 0)
    if len(head) < pos + width:
        raise InvalidHeaderError("Truncated size field")
    if width == 4:
        size = read_uint32_be(head, pos)
    else:
        size = read_uint24_be(head, pos)
    return StreamHeader(magic, width, redundant, size)

###############################################################################
# Probes
###############################################################################

def is_valid_stream(source: Source, family: str = FAMILY_REFPACK) -> bool:
    """True iff ``source`` has at least 2 bytes and a magic of ``family``."""
    head = _peek(source, 2)
    if len(head) < 2:
        return False
    return read_uint16_be(head, 0) in _FAMILIES[family]


def decompressed_size(source: Source, family: str = FAMILY_REFPACK) -> int:
    return read_header(source, family).decompressed_size


def is_valid_binarytree_stream(source: Source) -> bool:
    return is_valid_stream(source, FAMILY_BINARYTREE)


def binarytree_decompressed_size(source: Source) -> int:
    return decompressed_size(source, FAMILY_BINARYTREE)


def detect_family(source: Source) -> str | None:
    """Name the codec family whose magic opens ``source``, if any."""
    for family in (FAMILY_REFPACK, FAMILY_BINARYTREE):
        if is_valid_stream(source, family):
            return family
    return None
