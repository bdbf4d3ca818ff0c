"""Typed errors for huffpack.

Every error raised by the coder derives from :class:`HuffpackError` and
carries the exit code the CLI returns for it. Errors also derive from the
closest built-in exception so callers can catch ``ValueError`` or
``EOFError`` without importing this module.
"""

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_GENERIC = 10
EXIT_UNSUPPORTED_VERSION = 11
EXIT_MISSING_INPUT = 12

EXIT_CODES = {
    EXIT_OK: "Success",
    EXIT_USAGE: "Usage error (invalid arguments)",
    EXIT_GENERIC: "Generic failure (corrupt or truncated data, empty input)",
    EXIT_UNSUPPORTED_VERSION: "Unsupported container version",
    EXIT_MISSING_INPUT: "Input file not found",
}


class HuffpackError(Exception):
    """Base error for huffpack."""

    exit_code: int = EXIT_GENERIC


class EmptyInput(HuffpackError, ValueError):
    """There are no symbols to build a tree from."""


class TruncatedStream(HuffpackError, EOFError):
    """The valid bits ran out in the middle of a code."""


class CodeLengthOverflow(HuffpackError, ValueError):
    """A derived code is longer than the supported bit-pattern width."""


class CorruptPayload(HuffpackError, ValueError):
    pass


class BadMagic(CorruptPayload):
    pass


class UnsupportedVersion(HuffpackError, ValueError):
    exit_code = EXIT_UNSUPPORTED_VERSION
