import pytest

from archiver import Archiver
from bitops import BitReader
from errors import BadMagic, CorruptPayload, TruncatedStream, UnsupportedVersion


def test_archiver_roundtrip_with_progress(progress_recorder):
    data = (b"The quick brown fox jumps over the lazy dog. " * 5)
    arch = Archiver()
    on_prog, calls = progress_recorder
    comp = arch.compress(data, on_progress=on_prog)
    assert isinstance(comp, (bytes, bytearray)) and len(comp) > 0
    assert (len(data), len(data)) in calls

    out = arch.decompress(comp, on_progress=on_prog)
    assert out == data
    assert calls[-1][0] == calls[-1][1] > 0


@pytest.mark.parametrize(
    "data",
    [
        b"a",
        b"\x00" * 1000,
        bytes(range(256)),
        bytes(range(256)) * 3 + b"zzzzzzzzzz",
        b"ab" * 4,
    ],
)
def test_archiver_roundtrip(data):
    comp = Archiver().compress(data)
    assert Archiver().decompress(comp) == data


def test_archiver_empty_input():
    arch = Archiver()
    comp = arch.compress(b"")
    # magic + version + metadata length + 2-byte table + 64-bit bit count
    assert len(comp) == 4 + 1 + 2 + 2 + 8
    out = arch.decompress(comp)
    assert out == b""


def test_archiver_header_layout():
    comp = Archiver().compress(b"aab")
    reader = BitReader(comp)
    assert reader.read_bytes(4) == Archiver.MAGIC
    assert reader.read_bits(8) == Archiver.VERSION
    meta_len = reader.read_bits(16)
    reader.read_bytes(meta_len)
    assert reader.read_bits(64) == 3
    # canonical codes: a=0, b=1
    assert comp[reader.pos:] == bytes([0b00100000])


def test_archiver_compresses_skewed_input():
    data = b"a" * 900 + b"b" * 90 + b"c" * 10
    comp = Archiver().compress(data)
    assert len(comp) < len(data) // 4


def test_archiver_decompress_bad_magic_raises():
    comp = Archiver().compress(b"hello")
    with pytest.raises(BadMagic):
        Archiver().decompress(b"NOPE" + comp[4:])


def test_archiver_decompress_wrong_version_raises():
    comp = bytearray(Archiver().compress(b"hello"))
    comp[4] = 99
    with pytest.raises(UnsupportedVersion):
        _ = Archiver().decompress(bytes(comp))


def test_archiver_truncated_payload_raises():
    comp = Archiver().compress(b"hello world, hello huffman")
    with pytest.raises(TruncatedStream):
        Archiver().decompress(comp[:-1])
    with pytest.raises(EOFError):
        Archiver().decompress(comp[:6])


def test_archiver_trailing_bytes_raise():
    comp = Archiver().compress(b"hello")
    with pytest.raises(CorruptPayload):
        Archiver().decompress(comp + b"\x00")


def test_archiver_payload_without_table_raises():
    comp = bytearray(Archiver().compress(b""))
    comp[-1] = 8
    with pytest.raises(CorruptPayload):
        Archiver().decompress(bytes(comp) + b"\x00")
