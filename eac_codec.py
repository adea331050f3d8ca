#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
eac_codec.py -- Pick the right legacy decoder from a stream's magic.

Archive entries do not say how they were packed; the first two bytes do.
``decompress_any`` routes RefPack streams to ``refpack.decompress`` and
BinaryTree streams to ``binarytree.decompress``.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional

import binarytree
import refpack
from eac_header import (
    FAMILY_BINARYTREE,
    FAMILY_REFPACK,
    InvalidHeaderError,
    detect_family,
)

_DECODERS: Dict[str, Callable[..., bytes]] = {
    FAMILY_REFPACK: refpack.decompress,
    FAMILY_BINARYTREE: binarytree.decompress,
}


def detect_format(data: bytes) -> Optional[str]:
    return detect_family(data)


def is_compressed(data: bytes) -> bool:
    return detect_family(data) is not None


def decompress_any(data: bytes, strict: bool = False) -> bytes:
    family = detect_family(data)
    if family is None:
        raise InvalidHeaderError("Data is neither a RefPack nor a BinaryTree stream")
    return _DECODERS[family](data, strict=strict)
