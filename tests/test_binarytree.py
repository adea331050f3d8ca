import unittest

import binarytree
from eac_header import CorruptStreamError, InvalidHeaderError

CLUE = 0xFF


def _stream(body, nodes=(), size=None, magic=b"\x47\xfb"):
    """Assemble a BinaryTree stream from a node list and an encoded body."""
    header = bytearray(magic)
    if magic == b"\x46\xfb":
        header += b"\x00\x00\x00"
    header += (size or 0).to_bytes(3, "big")
    table = bytearray([CLUE, len(nodes)])
    for node, left, right in nodes:
        table += bytes([node, left, right])
    return bytes(header + table + body)


class TestBinaryTreeDecoder(unittest.TestCase):
    def test_plain_literals(self):
        self.assertEqual(binarytree.decompress(_stream(b"hello\xff\x00", size=5)), b"hello")

    def test_node_expands_to_children(self):
        nodes = [(0x80, ord("a"), ord("b"))]
        data = _stream(b"\x80c\x80\xff\x00", nodes, size=5)
        self.assertEqual(binarytree.decompress(data), b"abcab")

    def test_nested_nodes(self):
        nodes = [(0x80, ord("a"), ord("b")), (0x81, 0x80, 0x80), (0x82, 0x81, ord("z"))]
        data = _stream(b"\x82\xff\x00", nodes, size=5)
        self.assertEqual(binarytree.decompress(data, strict=True), b"ababz")

    def test_escaped_clue_is_not_the_terminator(self):
        nodes = [(0x80, ord("a"), ord("b"))]
        # clue+clue -> literal 0xFF, clue+node id -> literal 0x80, clue+0 -> end
        data = _stream(b"\x80c\xff\xff\xff\x80\xff\x00", nodes, size=5)
        self.assertEqual(binarytree.decompress(data, strict=True), b"abc\xff\x80")

    def test_bytes_after_terminator_are_ignored(self):
        self.assertEqual(binarytree.decompress(_stream(b"x\xff\x00yz", size=1)), b"x")

    def test_redundant_size_header(self):
        data = _stream(b"ok\xff\x00", size=2, magic=b"\x46\xfb")
        self.assertEqual(binarytree.decompressed_size(data), 2)
        self.assertEqual(binarytree.decompress(data, strict=True), b"ok")

    def test_header_probes(self):
        data = _stream(b"ok\xff\x00", size=2)
        self.assertTrue(binarytree.is_valid_stream(data))
        self.assertFalse(binarytree.is_valid_stream(b"\x10\xfb\x00\x00\x00"))
        self.assertFalse(binarytree.is_valid_stream(b"\x47"))
        self.assertEqual(binarytree.decompressed_size(data), 2)

    def test_refpack_magic_is_rejected(self):
        with self.assertRaises(InvalidHeaderError):
            binarytree.decompress(b"\x10\xfb\x00\x00\x01\xfdA")

    def test_missing_terminator(self):
        with self.assertRaises(CorruptStreamError):
            binarytree.decompress(_stream(b"abc", size=3))
        with self.assertRaises(CorruptStreamError):
            binarytree.decompress(_stream(b"abc\xff", size=3))

    def test_truncated_node_table(self):
        data = _stream(b"", [(0x80, 1, 2)])[:-1]
        with self.assertRaises(CorruptStreamError):
            binarytree.decompress(data)

    def test_cyclic_tree(self):
        nodes = [(0x80, 0x80, ord("a"))]
        with self.assertRaises(CorruptStreamError):
            binarytree.decompress(_stream(b"\x80\xff\x00", nodes))

    def test_doubling_chain_stops_at_announced_size(self):
        # 0x80 -> 0x81 0x81 -> ... expands to 2**41 bytes
        nodes = [(0x80 + i, 0x81 + i, 0x81 + i) for i in range(40)] + [(0x80 + 40, ord("a"), ord("a"))]
        with self.assertRaises(CorruptStreamError):
            binarytree.decompress(_stream(b"\x80\xff\x00", nodes, size=1000))

    def test_short_chain_within_announced_size(self):
        nodes = [(0x80, 0x81, 0x81), (0x81, ord("a"), ord("b"))]
        self.assertEqual(binarytree.decompress(_stream(b"\x80\xff\x00", nodes, size=4)), b"abab")

    def test_strict_size_mismatch(self):
        data = _stream(b"abc\xff\x00", size=4)
        self.assertEqual(binarytree.decompress(data), b"abc")
        with self.assertRaises(CorruptStreamError):
            binarytree.decompress(data, strict=True)


if __name__ == '__main__':
    unittest.main()
