import pytest

from errors import EXIT_GENERIC, EXIT_MISSING_INPUT, EXIT_OK, EXIT_UNSUPPORTED_VERSION


def test_compress_and_decompress_roundtrip(sample_file, tmp_path, no_progress, m):
    packed = tmp_path / "sample.huf"
    restored = tmp_path / "restored.txt"

    before, after = m.compress_file(str(sample_file), str(packed), hide_progress=False)
    assert packed.exists() and packed.stat().st_size == after
    assert before == sample_file.stat().st_size
    assert no_progress and no_progress[-1].strip().endswith("100.00%")

    written = m.decompress_file(str(packed), str(restored), hide_progress=True)
    assert written == before
    assert restored.read_bytes() == sample_file.read_bytes()


def test_main_roundtrip_exit_codes(sample_file, tmp_path, capsys, m):
    packed = tmp_path / "out.huf"
    restored = tmp_path / "out.txt"
    assert m.main(["compress", str(sample_file), "-o", str(packed), "-P"]) == EXIT_OK
    out = capsys.readouterr().out
    assert "Size after compression" in out and "Compression ratio" in out

    assert m.main(["d", str(packed), "-o", str(restored), "-P"]) == EXIT_OK
    assert restored.read_bytes() == sample_file.read_bytes()


def test_main_codes_prints_table(sample_file, capsys, m):
    assert m.main(["codes", str(sample_file)]) == EXIT_OK
    out = capsys.readouterr().out
    assert "Distinct symbols: 256" in out
    assert "Average code length" in out


def test_main_missing_input(tmp_path, capsys, m):
    code = m.main(["c", str(tmp_path / "nope.txt"), "-o", str(tmp_path / "x")])
    assert code == EXIT_MISSING_INPUT
    assert "[!] File not found" in capsys.readouterr().err


def test_main_corrupt_input(tmp_path, capsys, m):
    bad = tmp_path / "bad.huf"
    bad.write_bytes(b"BAD!\x01\x00\x00")
    assert m.main(["d", str(bad), "-o", str(tmp_path / "x"), "-P"]) == EXIT_GENERIC
    assert "bad magic" in capsys.readouterr().err


def test_main_unsupported_version(tmp_path, m):
    good = tmp_path / "a.huf"
    m.main(["c", str(_write(tmp_path / "a.txt", b"abc")), "-o", str(good), "-P"])
    data = bytearray(good.read_bytes())
    data[4] = 42
    good.write_bytes(bytes(data))
    code = m.main(["d", str(good), "-o", str(tmp_path / "x"), "-P"])
    assert code == EXIT_UNSUPPORTED_VERSION


def test_main_debug_reraises(tmp_path, m):
    empty = _write(tmp_path / "empty.txt", b"")
    from errors import EmptyInput
    with pytest.raises(EmptyInput):
        m.main(["--debug", "codes", str(empty)])


def _write(path, data):
    path.write_bytes(data)
    return path
