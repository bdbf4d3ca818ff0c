import argparse
import logging
import sys

from typing import List, Optional, Tuple
from archiver import Archiver
from errors import EXIT_GENERIC, EXIT_MISSING_INPUT, EXIT_OK, HuffpackError
from huffman import build_tree, count_frequencies, walk_codes

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def get_parser():
    """Create and configure the CLI argument parser.

    :returns: Configured argument parser.
    :rtype: argparse.ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="huffpack",
        description="Huffman coder for single files",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Show stack traces on errors"
    )
    subparsers = parser.add_subparsers(
        title="subcommands", dest="cmd", required=True
    )

    compress = subparsers.add_parser(
        "compress", aliases=["c"], help="Compress a file"
    )
    compress.add_argument("input", help="File to compress")
    compress.add_argument(
        "-o", "--output", required=True, help="Output file path"
    )
    compress.add_argument(
        "-P",
        "--no-progress",
        action="store_true",
        help="Hide progress output",
    )

    decompress = subparsers.add_parser(
        "decompress", aliases=["d"], help="Decompress a file"
    )
    decompress.add_argument("input", help="File to decompress")
    decompress.add_argument(
        "-o", "--output", required=True, help="Output file path"
    )
    decompress.add_argument(
        "-P",
        "--no-progress",
        action="store_true",
        help="Hide progress output",
    )

    codes = subparsers.add_parser(
        "codes", aliases=["t"], help="Print the Huffman code table of a file"
    )
    codes.add_argument("input", help="File to analyze")

    return parser


def _setup_logging(verbose: bool) -> None:
    """Configure root logging once for the CLI run.

    :param verbose: Log at DEBUG instead of WARNING.
    :type verbose: bool
    """
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.WARNING,
            format=LOG_FORMAT,
            handlers=[logging.StreamHandler(sys.stderr)],
        )


def _print_progress(line: str) -> None:
    """Render and flush a single progress line in-place (carriage return).

    :param line: The textual progress line to display.
    :type line: str
    :returns: None
    :rtype: None
    """
    sys.stdout.write("\r" + line)
    sys.stdout.flush()


def _fmt_pct(done: int, total: int) -> str:
    """Format a completion percentage string like ``12.34%``.

    :param done: Units completed.
    :type done: int
    :param total: Total units to complete.
    :type total: int
    :returns: Percentage.
    :rtype: str
    """
    if total <= 0:
        return "0%"
    pct = 100.0 * (done / float(total))
    return f"{pct:6.2f}%"


def _fmt_bytes(n: int) -> str:
    """Format a byte count into a human-readable string.

    :param n: Number of bytes.
    :type n: int
    :returns: Human-readable string.
    :rtype: str
    """
    for unit in ['', 'Ki', 'Mi', 'Gi', 'Ti']:
        if abs(n) < 1024:
            return f"{n:.2f} {unit}B"
        n /= 1024
    return f"{n:.2f} PiB"


def _fmt_symbol(symbol: int) -> str:
    """Show a byte as its printable character or as hex."""
    char = chr(symbol)
    if char.isprintable() and not char.isspace() and symbol < 0x7F:
        return repr(char)
    return f"0x{symbol:02x}"


class Progress:
    """Callable progress reporter for one file.

    Redraws the line only when the whole-percent value changes.

    :ivar label: Action label (e.g., "Compressing" or "Decompressing").
    :type label: str
    :ivar path: File path displayed next to the label.
    :type path: str
    """

    def __init__(self, label: str, path: str) -> None:
        self.label = label
        self.path = path
        self._last_reported = -1

    def __call__(self, done: int, total: int) -> None:
        """Update the progress display.

        :param done: Units processed so far.
        :type done: int
        :param total: Total units.
        :type total: int
        :returns: None
        :rtype: None
        """
        if total <= 0:
            return
        percent_bucket = int((done * 100) / total)
        if percent_bucket == self._last_reported:
            return
        self._last_reported = percent_bucket
        _print_progress(f"{self.label} {self.path}  {_fmt_pct(done, total)}")


def compress_file(
    input_path: str, output_path: str, hide_progress: bool
) -> Tuple[int, int]:
    """Compress ``input_path`` into ``output_path``.

    :param input_path: File to read.
    :type input_path: str
    :param output_path: File to write.
    :type output_path: str
    :param hide_progress: Whether to suppress the progress line.
    :type hide_progress: bool
    :returns: Tuple ``(original_size, compressed_size)``.
    :rtype: Tuple[int, int]
    :raises FileNotFoundError: If ``input_path`` does not exist.
    """
    with open(input_path, "rb") as f:
        data = f.read()
    on_prog = None if hide_progress else Progress("Compressing", input_path)
    comp = Archiver().compress(data, on_progress=on_prog)
    with open(output_path, "wb") as out:
        out.write(comp)
    if on_prog is not None:
        sys.stdout.write("\n")
        sys.stdout.flush()
    logger.info("Wrote %s (%d bytes)", output_path, len(comp))
    return len(data), len(comp)


def decompress_file(
    input_path: str, output_path: str, hide_progress: bool
) -> int:
    """Decompress ``input_path`` into ``output_path``.

    :param input_path: Compressed file to read.
    :type input_path: str
    :param output_path: File to write the recovered bytes to.
    :type output_path: str
    :param hide_progress: Whether to suppress the progress line.
    :type hide_progress: bool
    :returns: Number of bytes written.
    :rtype: int
    :raises FileNotFoundError: If ``input_path`` does not exist.
    :raises HuffpackError: If the compressed data is invalid.
    """
    with open(input_path, "rb") as f:
        comp = f.read()
    on_prog = None if hide_progress else Progress("Decompressing", input_path)
    data = Archiver().decompress(comp, on_progress=on_prog)
    with open(output_path, "wb") as out:
        out.write(data)
    if on_prog is not None:
        sys.stdout.write("\n")
        sys.stdout.flush()
    return len(data)


def code_table(data: bytes) -> List[Tuple[int, int, str]]:
    """List the Huffman codes of ``data`` in tree traversal order.

    :param data: Input bytes.
    :type data: bytes
    :returns: Rows ``(symbol, count, bit_string)``.
    :rtype: List[Tuple[int, int, str]]
    :raises EmptyInput: If ``data`` is empty.
    """
    freq = count_frequencies(data)
    return [
        (code.symbol, freq[code.symbol], code.bit_string)
        for code in walk_codes(build_tree(freq))
    ]


def show_codes(input_path: str) -> None:
    """Print the code table of a file followed by size totals.

    :param input_path: File to analyze.
    :type input_path: str
    :returns: None
    :rtype: None
    """
    with open(input_path, "rb") as f:
        data = f.read()
    rows = code_table(data)
    print(f"{'symbol':>8}  {'count':>10}  {'len':>3}  code")
    total_bits = 0
    for symbol, count, bits in rows:
        print(f"{_fmt_symbol(symbol):>8}  {count:>10}  {len(bits):>3}  {bits}")
        total_bits += count * len(bits)
    print(f"Distinct symbols: {len(rows)}")
    print(f"Encoded size: {total_bits} bits ({_fmt_bytes((total_bits + 7) // 8)})")
    print(f"Average code length: {total_bits / len(data):.3f} bits/symbol")


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the CLI tool.

    :param argv: Arguments to parse instead of ``sys.argv[1:]``.
    :type argv: List[str] | None
    :returns: Process exit code.
    :rtype: int
    """
    parser = get_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    try:
        if args.cmd in ["compress", "c"]:
            before, after = compress_file(
                args.input, args.output, getattr(args, "no_progress", False)
            )
            print("Size before compression: ", _fmt_bytes(before))
            print("Size after compression: ", _fmt_bytes(after))
            if before:
                print(f"Compression ratio: {before / after:.2f}")
        elif args.cmd in ["decompress", "d"]:
            decompress_file(
                args.input, args.output, getattr(args, "no_progress", False)
            )
        elif args.cmd in ["codes", "t"]:
            show_codes(args.input)
    except FileNotFoundError as e:
        if args.debug:
            raise
        print(f"[!] File not found: {e.filename}", file=sys.stderr)
        return EXIT_MISSING_INPUT
    except HuffpackError as e:
        if args.debug:
            raise
        print(f"[!] {e}", file=sys.stderr)
        return e.exit_code
    except OSError as e:
        if args.debug:
            raise
        print(f"[!] {e}", file=sys.stderr)
        return EXIT_GENERIC
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
