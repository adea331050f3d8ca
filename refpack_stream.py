#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
refpack_stream.py -- File-like wrapper that hides RefPack behind read/write.

``RefPackStream`` wraps a binary file object in one of two modes:

* ``'decompress'``: the first read validates the header, expands the
  whole underlying stream and then serves reads from memory.
* ``'compress'``: writes are buffered in memory; ``close()`` compresses
  everything written into one RefPack stream and writes it to the
  underlying file.  ``flush()`` only flushes the underlying file.

Random access is not available in either mode: ``seek`` and
``truncate`` raise ``io.UnsupportedOperation``.
"""

from __future__ import annotations

import io
from typing import BinaryIO, Optional

import refpack
from eac_header import FAMILY_REFPACK, InvalidHeaderError, is_valid_stream, read_header

MODE_COMPRESS = 'compress'
MODE_DECOMPRESS = 'decompress'


class RefPackStream(io.RawIOBase):
    def __init__(self, base: BinaryIO, mode: str = MODE_DECOMPRESS,
                 quick: bool = False, leave_open: bool = False) -> None:
        super().__init__()
        # close() may run on a half-built instance; it must not touch base then
        self._mode: Optional[str] = None
        self._leave_open = True
        self._pending = bytearray()
        if mode not in (MODE_COMPRESS, MODE_DECOMPRESS):
            raise ValueError(f"mode must be {MODE_COMPRESS!r} or {MODE_DECOMPRESS!r}, got {mode!r}")
        if mode == MODE_COMPRESS and not base.writable():
            raise ValueError("the base stream must be writable for compression")
        if mode == MODE_DECOMPRESS and not base.readable():
            raise ValueError("the base stream must be readable for decompression")
        self._base = base
        self._mode = mode
        self._quick = quick
        self._leave_open = leave_open
        self._decoded: Optional[bytes] = None
        self._read_pos = 0

    def _check_open(self) -> None:
        if self.closed:
            raise ValueError("I/O operation on closed RefPackStream")

    @staticmethod
    def retrieve_decompressed_size(fileobj: BinaryIO) -> int:
        """Size announced by the header of ``fileobj``; its position is kept."""
        return read_header(fileobj, FAMILY_REFPACK).decompressed_size

    @property
    def mode(self) -> str:
        return self._mode

    def readable(self) -> bool:
        return self._mode == MODE_DECOMPRESS

    def writable(self) -> bool:
        return self._mode == MODE_COMPRESS

    def seekable(self) -> bool:
        return False

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        raise io.UnsupportedOperation("RefPackStream does not support seeking")

    def truncate(self, size: Optional[int] = None) -> int:
        raise io.UnsupportedOperation("RefPackStream does not support setting the length")

    def tell(self) -> int:
        self._check_open()
        if self._mode == MODE_DECOMPRESS:
            return self._read_pos
        return len(self._pending)

    def _load(self) -> bytes:
        if self._decoded is None:
            if not is_valid_stream(self._base, FAMILY_REFPACK):
                raise InvalidHeaderError("The base stream is not a valid RefPack stream")
            self._base.seek(0)
            self._decoded = refpack.decompress(self._base.read())
        return self._decoded

    def readinto(self, buffer) -> int:
        self._check_open()
        if not self.readable():
            raise io.UnsupportedOperation("RefPackStream is not readable")
        data = self._load()
        view = memoryview(buffer).cast('B')
        count = min(len(view), len(data) - self._read_pos)
        view[:count] = data[self._read_pos:self._read_pos + count]
        self._read_pos += count
        return count

    def write(self, b) -> int:
        self._check_open()
        if not self.writable():
            raise io.UnsupportedOperation("RefPackStream is not writable")
        data = memoryview(b).cast('B')
        self._pending += data
        return len(data)

    def flush(self) -> None:
        # the whole payload becomes one RefPack stream, written on close()
        if self.closed:
            return
        if self._mode == MODE_COMPRESS:
            self._base.flush()

    def close(self) -> None:
        if self.closed:
            return
        try:
            if self._mode == MODE_COMPRESS:
                self._base.write(refpack.compress(bytes(self._pending), quick=self._quick))
                self._pending.clear()
                self._base.flush()
        finally:
            super().close()
            if not self._leave_open:
                self._base.close()
