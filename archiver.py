import logging
from typing import Callable, Optional

from bitops import BitReader, BitWriter, PackedStream, pack, unpack
from errors import BadMagic, CorruptPayload, TruncatedStream, UnsupportedVersion
from huffman import CanonicalHuffman, count_frequencies

logger = logging.getLogger(__name__)


class Archiver:
    """Self-describing container around canonical Huffman coding of bytes.

    Layout (multi-bit fields MSB first):

    - Magic: ``b"HUF1"`` (4 bytes)
    - Version: 8 bits
    - Metadata length: 16 bits
    - Metadata: code length table (see :meth:`CanonicalHuffman.save_metadata`)
    - Valid bit count: 64 bits
    - Payload: ``ceil(bit_count / 8)`` packed bytes

    :ivar MAGIC: Container signature.
    :type MAGIC: bytes
    :ivar VERSION: Format version of the encoder/decoder.
    :type VERSION: int
    :ivar huffman: Canonical Huffman coder instance.
    :type huffman: CanonicalHuffman
    """

    MAGIC = b"HUF1"
    VERSION = 1

    def __init__(self):
        """Initialize the Huffman coder instance.

        :returns: None
        :rtype: None
        """
        self.huffman = CanonicalHuffman()

    def compress(
        self,
        data: bytes,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> bytes:
        """Compress raw ``data`` with canonical Huffman coding.

        :param data: Input bytes to compress.
        :type data: bytes
        :param on_progress: Optional callback ``on_progress(done, total)``
                            over input bytes packed.
        :type on_progress: Optional[Callable[[int, int], None]]
        :returns: Compressed byte stream. Empty input yields a header with
                  an empty code table and no payload.
        :rtype: bytes
        :raises CodeLengthOverflow: If a code exceeds the supported width.
        """
        self.huffman.build_from_frequencies(count_frequencies(data))
        stream = pack(
            (self.huffman.encode_symbol(b) for b in data),
            on_progress=on_progress,
        )

        output = BitWriter()
        output.write_bytes(self.MAGIC)
        output.write_bits(self.VERSION, 8)

        metadata = self.huffman.save_metadata()
        output.write_bits(len(metadata), 16)
        output.write_bytes(metadata)

        output.write_bits(stream.bit_count, 64)
        output.write_bytes(stream.data)

        logger.debug(
            "Compressed %d bytes: %d symbols, %d payload bits, %d bytes total",
            len(data), len(self.huffman.symbols), stream.bit_count,
            len(output.buffer),
        )
        return output.flush()

    def decompress(
        self,
        data: bytes,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> bytes:
        """Decompress data produced by ``compress``.

        :param data: Compressed byte stream.
        :type data: bytes
        :param on_progress: Optional callback ``on_progress(done, total)``
                            over payload bits consumed.
        :type on_progress: Optional[Callable[[int, int], None]]
        :returns: Original uncompressed bytes.
        :rtype: bytes
        :raises BadMagic: If the signature does not match.
        :raises UnsupportedVersion: If the version is unknown.
        :raises CorruptPayload: If the code table or payload is invalid.
        :raises TruncatedStream: If the data ends early.
        """
        reader = BitReader(data)

        if reader.read_bytes(len(self.MAGIC)) != self.MAGIC:
            raise BadMagic("Invalid container format (bad magic)")

        version = reader.read_bits(8)
        if version != self.VERSION:
            raise UnsupportedVersion(f"Unsupported version: {version}")

        metadata_len = reader.read_bits(16)
        metadata = reader.read_bytes(metadata_len)
        consumed = self.huffman.load_metadata(metadata)
        if consumed != metadata_len:
            raise CorruptPayload(
                f"Code table is {consumed} bytes, header says {metadata_len}"
            )

        bit_count = reader.read_bits(64)
        payload = data[reader.pos:]
        expected = (bit_count + 7) // 8
        if len(payload) < expected:
            raise TruncatedStream(
                f"Payload has {len(payload)} bytes, expected {expected}"
            )
        if len(payload) > expected:
            raise CorruptPayload(
                f"{len(payload) - expected} trailing bytes after payload"
            )

        if not self.huffman.symbols:
            if bit_count:
                raise CorruptPayload("Payload bits without a code table")
            return b""

        symbols = unpack(
            PackedStream(bytes(payload), bit_count),
            self.huffman.decode_tree(),
            on_progress=on_progress,
        )
        return bytes(symbols)
