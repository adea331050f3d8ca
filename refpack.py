#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
refpack.py -- RefPack (EA "0x10FB") compressor/decompressor.

RefPack is the LZ77 family codec used for compressed assets inside the
game's BIG archives.  The wire format is fixed by the game engine,
so the encoder below reproduces the legacy match finder decision for
decision: archives written here stay readable by the game and existing
tooling sees byte-identical output.

### Container format

* ``u16 magic`` (big endian): ``0x10FB`` for inputs up to ``0xFFFFFF``
  bytes, ``0x90FB`` above that.  ``0x11FB``/``0x91FB`` are accepted on
  read; bit ``0x0100`` marks a redundant size field that is skipped.
* ``u24``/``u32 size`` (big endian): decompressed length.
* instruction stream, ended by a terminator opcode.

### Instructions

Offsets are stored as ``distance - 1``.

* **short** ``0ooLLLrr oooooooo``: ``rr`` literals, length 3..10,
  offset 0..1023.
* **int** ``10LLLLLL rroooooo oooooooo``: length 4..67, offset
  0..16383.
* **very int** ``110oLLrr oooooooo oooooooo LLLLLLLL``: length
  5..1028, offset 0..131071.
* **literal run** ``111nnnnn`` with ``n < 28``: ``(n + 1) * 4`` literal
  bytes (4..112).
* **terminator** ``111111rr``: ``rr`` trailing literals, end of stream.

### Encoder

Greedy search over hash chains.  A 16-bit hash of the next three bytes
indexes ``hash_table`` (most recent position with that hash) and
``link`` threads every position to the previous one sharing its hash.
The chain is walked back through a 128 KiB window; a candidate replaces
the current best only when it saves more bytes (``length - cost``), and
the walk stops as soon as a 1028 byte match turns up.  In *quick* mode
only the first byte of every match is entered into the chains; the
normal mode enters every consumed byte, which finds better matches later
at a higher cost.

Usage:
    # Compress
    python3 refpack.py -i input.bin [--quick]

    # Decompress (RefPack or BinaryTree, detected from the magic)
    python3 refpack.py -d -i input.refpack

    # Inspect a stream
    python3 refpack.py --info -i input.refpack
    python3 refpack.py --dump -i input.refpack
"""

from __future__ import annotations

import struct
from typing import Iterator, NamedTuple, Optional, Tuple

from eac_header import (
    FAMILY_REFPACK,
    MAX_SIZE_24,
    CorruptStreamError,
    pack_uint24_be,
    read_header,
)
import eac_header

# global switches, set by the CLI
G_QUICK: bool = False

# progress switch, set by the CLI
G_PROGRESS: bool = False

_PROGRESS_STEP = 1 << 16

def _print_progress(label: str, i: int, n: int, final: bool = False) -> None:
    """Byte-level progress: [{label}] i/n bytes ... / done."""
    if not G_PROGRESS:
        return
    if not final:
        print(f"[{label}] {i}/{n} bytes ...", end="\r", flush=True)
    else:
        print(f"[{label}] {n}/{n} bytes done.", flush=True)

###############################################################################
# Format constants
###############################################################################

MAGIC_3 = 0x10FB
MAGIC_4 = 0x90FB

MAX_BACK = 131071          # furthest distance a very-int form can reach
HASH_TABLE_SIZE = 65536
LINK_SIZE = 131072
LINK_MASK = LINK_SIZE - 1
MAX_MATCH = 1028
MAX_LITERAL_RUN = 112

FORM_SHORT = 'short'
FORM_INT = 'int'
FORM_VERY_INT = 'very_int'
FORM_LITERAL = 'literal'
FORM_EOF = 'eof'

is_valid_stream = eac_header.is_valid_stream
decompressed_size = eac_header.decompressed_size

###############################################################################
# Encoder
###############################################################################

def _hash3(src: bytes, i: int) -> int:
    return ((src[i] << 8) | src[i + 2]) ^ (src[i + 1] << 4)

def _match_length(src: bytes, cur: int, cand: int, limit: int) -> int:
    n = 0
    while n < limit and src[cur + n] == src[cand + n]:
        n += 1
    return n

def match_cost(offset: int, length: int) -> int:
    """Bytes taken by the instruction that encodes (offset, length)."""
    if offset < 1024 and length <= 10:
        return 2
    if offset < 16384 and length <= 67:
        return 3
    return 4

def encode_header(length: int) -> bytes:
    if length > MAX_SIZE_24:
        return struct.pack('>HI', MAGIC_4, length)
    return struct.pack('>H', MAGIC_3) + pack_uint24_be(length)

def _flush_literals(out: bytearray, src: bytes, read_ptr: int, run: int) -> Tuple[int, int]:
    # whole multiples of four go out as literal-run opcodes; 0..3 stay pending
    while run > 3:
        chunk = min(MAX_LITERAL_RUN, run & ~3)
        run -= chunk
        out.append(0xE0 + (chunk >> 2) - 1)
        out += src[read_ptr:read_ptr + chunk]
        read_ptr += chunk
    return read_ptr, run

def _emit_match(out: bytearray, offset: int, length: int, cost: int, run: int) -> None:
    if cost == 2:
        out.append((((offset >> 8) << 5) + ((length - 3) << 2) + run) & 0xFF)
        out.append(offset & 0xFF)
    elif cost == 3:
        out.append(0x80 + (length - 4))
        out.append(((run << 6) + (offset >> 8)) & 0xFF)
        out.append(offset & 0xFF)
    else:
        out.append(0xC0 + ((offset >> 16) << 4) + (((length - 5) >> 8) << 2) + run)
        out.append((offset >> 8) & 0xFF)
        out.append(offset & 0xFF)
        out.append((length - 5) & 0xFF)

def compress(source: bytes, quick: Optional[bool] = None) -> bytes:
    """Compress ``source`` into a RefPack stream.

    ``quick`` trades ratio for speed by hashing only the first byte of
    each match; ``None`` falls back to the ``G_QUICK`` switch.  Empty
    input produces a bare header, exactly like the legacy encoder.
    """
    if quick is None:
        quick = G_QUICK
    src = bytes(source)
    n = len(src)
    out = bytearray(encode_header(n))
    if n == 0:
        return bytes(out)

    hash_table = [-1] * HASH_TABLE_SIZE
    link = [0] * LINK_SIZE
    run = 0
    cur = 0
    read_ptr = 0
    next_report = _PROGRESS_STEP

    # the last four bytes are never a match start
    remaining = n - 4
    while remaining >= 0:
        max_match = min(remaining, MAX_MATCH)
        h = _hash3(src, cur)
        best_offset = 0
        best_len = 2
        best_cost = 2

        chain = hash_table[h]
        min_chain = max(cur - MAX_BACK, 0)
        while chain >= min_chain:
            if (cur + best_len < n and chain + best_len < n
                    and src[cur + best_len] == src[chain + best_len]):
                length = _match_length(src, cur, chain, max_match)
                if length > best_len:
                    offset = cur - 1 - chain
                    cost = match_cost(offset, length)
                    if length - cost > best_len - best_cost:
                        best_len = length
                        best_cost = cost
                        best_offset = offset
                        if best_len >= MAX_MATCH:
                            break
            chain = link[chain & LINK_MASK]

        if best_cost >= best_len or remaining < 4:
            link[cur & LINK_MASK] = hash_table[h]
            hash_table[h] = cur
            run += 1
            cur += 1
            remaining -= 1
        else:
            read_ptr, run = _flush_literals(out, src, read_ptr, run)
            _emit_match(out, best_offset, best_len, best_cost, run)
            if run:
                out += src[read_ptr:read_ptr + run]
                run = 0

            if quick:
                link[cur & LINK_MASK] = hash_table[h]
                hash_table[h] = cur
                cur += best_len
            else:
                for _ in range(best_len):
                    h = _hash3(src, cur)
                    link[cur & LINK_MASK] = hash_table[h]
                    hash_table[h] = cur
                    cur += 1

            read_ptr = cur
            remaining -= best_len

        if G_PROGRESS and cur >= next_report:
            _print_progress('refpack', cur, n)
            next_report = cur + _PROGRESS_STEP

    run += remaining + 4
    read_ptr, run = _flush_literals(out, src, read_ptr, run)
    out.append(0xFC + run)
    out += src[read_ptr:read_ptr + run]
    _print_progress('refpack', n, n, final=True)
    return bytes(out)

###############################################################################
# Decoder
###############################################################################

class Instruction(NamedTuple):
    position: int   # offset of the opcode inside the stream
    form: str
    literal: bytes
    length: int = 0
    offset: int = 0


def _take(src: bytes, pos: int, count: int) -> bytes:
    end = pos + count
    if end > len(src):
        raise CorruptStreamError(
            f"Truncated instruction stream: need {count} bytes at {pos}, have {len(src) - pos}")
    return src[pos:end]


def _instructions(src: bytes, pos: int) -> Iterator[Instruction]:
    while True:
        start = pos
        op = _take(src, pos, 1)[0]
        pos += 1
        if not op & 0x80:
            op2 = _take(src, pos, 1)[0]
            pos += 1
            literal = _take(src, pos, op & 0x03)
            pos += len(literal)
            yield Instruction(start, FORM_SHORT, literal,
                              ((op & 0x1C) >> 2) + 3,
                              ((op & 0x60) << 3) + op2)
        elif not op & 0x40:
            op2, op3 = _take(src, pos, 2)
            pos += 2
            literal = _take(src, pos, op2 >> 6)
            pos += len(literal)
            yield Instruction(start, FORM_INT, literal,
                              (op & 0x3F) + 4,
                              ((op2 & 0x3F) << 8) + op3)
        elif not op & 0x20:
            op2, op3, op4 = _take(src, pos, 3)
            pos += 3
            literal = _take(src, pos, op & 0x03)
            pos += len(literal)
            yield Instruction(start, FORM_VERY_INT, literal,
                              (((op & 0x0C) >> 2) << 8) + op4 + 5,
                              (((op & 0x10) >> 4) << 16) + (op2 << 8) + op3)
        else:
            run = ((op & 0x1F) << 2) + 4
            if run <= MAX_LITERAL_RUN:
                literal = _take(src, pos, run)
                pos += run
                yield Instruction(start, FORM_LITERAL, literal)
                continue
            literal = _take(src, pos, op & 0x03)
            yield Instruction(start, FORM_EOF, literal)
            return


def iter_instructions(data: bytes) -> Iterator[Instruction]:
    """Yield the instructions of a RefPack stream without expanding them."""
    src = bytes(data)
    header = read_header(src, FAMILY_REFPACK)
    if len(src) == header.header_length and header.decompressed_size == 0:
        return
    yield from _instructions(src, header.header_length)


def decompress(data: bytes, strict: bool = False) -> bytes:
    """Expand a RefPack stream.

    The header size is only a hint; the output ends at the terminator.
    With ``strict`` a disagreement between the two raises
    ``CorruptStreamError``.  Back-references are copied one byte at a
    time because they may overlap the bytes they produce.
    """
    src = bytes(data)
    header = read_header(src, FAMILY_REFPACK)
    out = bytearray()
    for ins in iter_instructions(src):
        out += ins.literal
        if not ins.length:
            continue
        ref = len(out) - 1 - ins.offset
        if ref < 0:
            raise CorruptStreamError(
                f"Back-reference at {ins.position} reaches {-ref} bytes before the output start")
        for _ in range(ins.length):
            out.append(out[ref])
            ref += 1
    if strict and len(out) != header.decompressed_size:
        raise CorruptStreamError(
            f"Decoded length mismatch: expected {header.decompressed_size}, got {len(out)}")
    return bytes(out)

###############################################################################
# CLI
###############################################################################

def main(argv=None) -> int:
    import argparse, os
    import eac_codec

    global G_QUICK, G_PROGRESS

    parser = argparse.ArgumentParser(description='RefPack compressor / EA asset decompressor')
    parser.add_argument('-i', '--input', nargs='?', help='Input file to compress or decompress')
    parser.add_argument('-d', '--decompress', action='store_true', help='Decompress (RefPack or BinaryTree)')
    parser.add_argument('-o', '--output', help='Output file')
    parser.add_argument('--quick', action='store_true',
                        help='Quick compression: hash only the first byte of each match')
    parser.add_argument('--strict', action='store_true',
                        help='Fail when the decoded length differs from the header')
    parser.add_argument('--info', action='store_true', help='Print the stream header and exit')
    parser.add_argument('--dump', action='store_true', help='List the RefPack instructions and exit')
    parser.add_argument('--progress', action='store_true', help='Show compression progress')
    args = parser.parse_args(argv)

    G_QUICK = bool(args.quick)
    G_PROGRESS = bool(args.progress)

    if not args.input:
        parser.print_help()
        return 0

    with open(args.input, 'rb') as f:
        data = f.read()

    if args.info:
        family = eac_header.detect_family(data)
        if family is None:
            print(f'{args.input}: not a RefPack/BinaryTree stream')
            return 1
        header = read_header(data, family)
        print(f'{args.input}: {family} magic=0x{header.magic:04X} '
              f'size_width={header.size_width} redundant={header.has_redundant_size} '
              f'decompressed_size={header.decompressed_size}')
        return 0

    if args.dump:
        for ins in iter_instructions(data):
            print(f'{ins.position:08X}  {ins.form:<8}  lit={len(ins.literal)}  '
                  f'len={ins.length}  off={ins.offset}')
        return 0

    if args.decompress:
        out = eac_codec.decompress_any(data, strict=args.strict)
        outname = args.output or (os.path.splitext(args.input)[0] + '.out')
        with open(outname, 'wb') as f:
            f.write(out)
        print(f'Decompressed {len(data)} bytes to {len(out)} bytes → {outname}')
    else:
        blob = compress(data)
        outname = args.output or (args.input + '.refpack')
        with open(outname, 'wb') as f:
            f.write(blob)
        ratio = len(blob) / len(data) if len(data) else 1.0
        print(f'Compressed {len(data)} bytes to {len(blob)} bytes (ratio {ratio:.3f}) → {outname}')
    return 0


if __name__ == '__main__':
    import sys
    sys.exit(main())
