import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from errors import CorruptPayload, TruncatedStream

logger = logging.getLogger(__name__)

PROGRESS_STEP = 4096  #: Codes (or symbols) between two progress callbacks


@dataclass(frozen=True)
class PackedStream:
    """Packed bitstream: bytes plus the number of meaningful bits.

    :ivar data: Packed bytes, MSB first; the last byte is zero-padded.
    :type data: bytes
    :ivar bit_count: Number of valid bits in ``data``.
    :type bit_count: int
    """

    data: bytes
    bit_count: int

    @property
    def padding_bits(self) -> int:
        """Number of zero bits appended to fill the last byte."""
        return len(self.data) * 8 - self.bit_count


class BitWriter:
    """Bit-packing writer driven by a single bit cursor.

    Every bit is written at ``bit_pos``; a new zero byte is appended to the
    buffer whenever the cursor sits on a byte boundary, so codes of any
    length can follow each other without partial-byte bookkeeping.

    :ivar buffer: Output buffer. The last byte may be partially written.
    :type buffer: bytearray
    :ivar bit_pos: Number of bits written so far.
    :type bit_pos: int
    """

    def __init__(self):
        """Initialize an empty bit writer.

        :returns: None
        :rtype: None
        """
        self.buffer = bytearray()
        self.bit_pos = 0

    def write_bit(self, bit: int):
        """Write a single bit at the cursor and advance it.

        :param bit: ``0`` or ``1`` (any non-zero value counts as ``1``).
        :type bit: int
        :returns: None
        :rtype: None
        """
        if self.bit_pos & 7 == 0:
            self.buffer.append(0)
        if bit:
            self.buffer[-1] |= 0x80 >> (self.bit_pos & 7)
        self.bit_pos += 1

    def write_bits(self, value: int, nbits: int):
        """Write the lowest ``nbits`` of ``value`` to the buffer, MSB first.

        :param value: Integer whose bits will be written.
        :type value: int
        :param nbits: Number of bits from ``value`` to write.
        :type nbits: int
        :returns: None
        :rtype: None
        """
        for i in range(nbits - 1, -1, -1):
            self.write_bit((value >> i) & 1)

    def write_bytes(self, data: bytes):
        """Write raw bytes, aligning the cursor to the next byte boundary.

        The unused low bits of a partially written byte stay zero.

        :param data: Byte sequence to append to the output.
        :type data: bytes
        :returns: None
        :rtype: None
        """
        self.align()
        self.buffer.extend(data)
        self.bit_pos += len(data) * 8

    def align(self):
        """Move the cursor to the next byte boundary (no-op when aligned)."""
        self.bit_pos = len(self.buffer) * 8

    def flush(self) -> bytes:
        """Return the accumulated bytes; the last byte is zero-padded.

        :returns: The bytes written so far.
        :rtype: bytes
        """
        return bytes(self.buffer)


class BitReader:
    """MSB-first bit reader over a bytes-like object.

    :ivar data: Input data to read bits/bytes from.
    :type data: bytes
    :ivar bit_pos: Index of the next bit to read.
    :type bit_pos: int
    :ivar limit: Number of readable bits; bits past it are padding.
    :type limit: int
    """

    def __init__(self, data: bytes, limit: Optional[int] = None):
        """Create a bit reader for the given input ``data``.

        :param data: Source data to read from.
        :type data: bytes
        :param limit: Number of valid bits, defaults to all of ``data``.
        :type limit: int | None
        :returns: None
        :rtype: None
        :raises TruncatedStream: If ``limit`` exceeds the bits in ``data``.
        """
        self.data = data
        self.bit_pos = 0
        self.limit = len(data) * 8 if limit is None else limit
        if self.limit > len(data) * 8:
            raise TruncatedStream(
                f"Stream claims {self.limit} bits but holds {len(data) * 8}"
            )

    @property
    def pos(self) -> int:
        """Byte index of the first byte not (even partially) consumed."""
        return (self.bit_pos + 7) // 8

    @property
    def bits_remaining(self) -> int:
        return self.limit - self.bit_pos

    def read_bit(self) -> int:
        """Read one bit.

        :returns: ``0`` or ``1``.
        :rtype: int
        :raises TruncatedStream: If no valid bits are left.
        """
        if self.bit_pos >= self.limit:
            raise TruncatedStream("Unexpected end of data")
        byte = self.data[self.bit_pos >> 3]
        bit = (byte >> (7 - (self.bit_pos & 7))) & 1
        self.bit_pos += 1
        return bit

    def read_bits(self, nbits: int) -> int:
        """Read ``nbits`` bits from the stream and return them as an integer.

        Bits are returned MSB-first in the integer.

        :param nbits: Number of bits to read.
        :type nbits: int
        :returns: The integer value composed of the next ``nbits`` bits.
        :rtype: int
        :raises TruncatedStream: If the valid bits end before ``nbits``.
        """
        result = 0
        for _ in range(nbits):
            result = (result << 1) | self.read_bit()
        return result

    def read_bytes(self, nbytes: int) -> bytes:
        """Read ``nbytes`` raw bytes, discarding bits up to the next boundary.

        :param nbytes: Number of bytes to read.
        :type nbytes: int
        :returns: The next ``nbytes`` bytes.
        :rtype: bytes
        :raises TruncatedStream: If fewer than ``nbytes`` bytes remain.
        """
        start = self.pos
        if (start + nbytes) * 8 > self.limit:
            raise TruncatedStream(
                f"Need {nbytes} bytes at offset {start}, "
                f"only {max(self.limit // 8 - start, 0)} left"
            )
        self.bit_pos = (start + nbytes) * 8
        return bytes(self.data[start:start + nbytes])


def pack(
    codes: Iterable,
    on_progress: Optional[Callable[[int, int], None]] = None,
) -> PackedStream:
    """Concatenate codes into a dense, zero-padded bitstream.

    :param codes: Codes in input order; each needs ``bits`` and ``length``.
    :type codes: Iterable[huffman.Code]
    :param on_progress: Optional callback ``on_progress(done, total)``
                        called every :data:`PROGRESS_STEP` codes and once
                        at the end.
    :type on_progress: Optional[Callable[[int, int], None]]
    :returns: The packed stream.
    :rtype: PackedStream
    """
    codes = list(codes)
    total = len(codes)
    writer = BitWriter()
    for done, code in enumerate(codes, 1):
        writer.write_bits(code.bits, code.length)
        if on_progress is not None and done % PROGRESS_STEP == 0:
            on_progress(done, total)
    if on_progress is not None:
        on_progress(total, total)
    logger.debug("Packed %d codes into %d bits", total, writer.bit_pos)
    return PackedStream(writer.flush(), writer.bit_pos)


def unpack(
    stream: PackedStream,
    tree,
    on_progress: Optional[Callable[[int, int], None]] = None,
) -> List:
    """Decode every symbol of ``stream`` by walking the tree bit by bit.

    :param stream: Packed stream produced by :func:`pack`.
    :type stream: PackedStream
    :param tree: Decoding tree, or a ``symbol -> Code`` mapping from which
                 one is rebuilt.
    :type tree: huffman.HuffmanTree | Mapping
    :param on_progress: Optional callback ``on_progress(done, total)`` over
                        consumed bits.
    :type on_progress: Optional[Callable[[int, int], None]]
    :returns: Decoded symbols in order.
    :rtype: List
    :raises TruncatedStream: If the valid bits end inside a code.
    :raises CorruptPayload: If the bits do not form a code of the tree.
    """
    if isinstance(tree, Mapping):
        from huffman import tree_from_codes
        tree = tree_from_codes(tree)

    reader = BitReader(stream.data, stream.bit_count)
    nodes = tree.nodes
    root = nodes[tree.root]
    symbols = []

    while reader.bits_remaining > 0:
        if root.is_leaf:
            if reader.read_bit():
                raise CorruptPayload("Invalid Huffman code")
            symbols.append(root.symbol)
        else:
            node = root
            while not node.is_leaf:
                if reader.bits_remaining == 0:
                    raise TruncatedStream(
                        f"Stream ended inside a code after "
                        f"{len(symbols)} symbols"
                    )
                child = node.right if reader.read_bit() else node.left
                if child is None:
                    raise CorruptPayload("Invalid Huffman code")
                node = nodes[child]
            symbols.append(node.symbol)
        if on_progress is not None and len(symbols) % PROGRESS_STEP == 0:
            on_progress(reader.bit_pos, reader.limit)

    if on_progress is not None:
        on_progress(reader.limit, reader.limit)
    logger.debug("Unpacked %d symbols from %d bits",
                 len(symbols), stream.bit_count)
    return symbols
