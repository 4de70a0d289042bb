"""
Buffered Line Reader - Framing of raw byte streams into G-code blocks.

This module provides the BufferedLineReader class which reads a byte source
in large chunks into a fixed-size buffer and hands out pre-tokenized lines:

- semicolon end-of-line comments are removed (optional)
- leading and trailing whitespace is removed
- line endings '\\n', '\\r' and '\\r\\n' are canonicalized to exactly one '\\n'
- empty lines are dropped

Lines are returned as memoryview slices into the reader's buffer. They are
only valid until the next call to read_next_lines() or read_line() on the
same reader; use bytes(line) to keep a copy.
"""

import os
import re
from collections.abc import Callable
from typing import BinaryIO

DEFAULT_BUFFER_SIZE = 1 << 20  # bytes

NEWLINE = ord("\n")
COMMENT_START = b";"
WHITESPACE = b" \t\n\r\v\f"
TERMINATOR_RE = re.compile(rb"[\r\n]")

ReadInto = Callable[[memoryview], int]


class LineTooLongError(ValueError):
    """Raised when a single raw line does not fit into the reader's buffer."""

    pass


class BufferedLineReader:
    """
    Reader of G-code input yielding cleaned blocks.

    The reader owns a fixed-capacity buffer. Bytes between data_begin and
    data_end are not yet tokenized. An unterminated fragment at the end of the
    buffer (the remainder) is moved to the front on the next refill before
    new bytes are appended, so the buffer must be larger than the longest raw
    line of the input.
    """

    def __init__(
        self,
        readinto: ReadInto,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        remove_comments: bool = True,
    ):
        """
        Initialize the reader.

        Args:
            readinto: Callable performing one bounded read into the given
                buffer, returning the number of bytes read (0 at end of stream).
            buffer_size: Capacity of the buffer in bytes.
            remove_comments: If True, strip everything from ';' to end of line.
        """
        if buffer_size < 2:
            raise ValueError(f"Buffer size must be at least 2 bytes, got {buffer_size}")

        self._readinto = readinto
        self._buffer_size = buffer_size
        self._arena = bytearray(buffer_size)
        self._view = memoryview(self._arena)
        self.remove_comments = remove_comments

        self._eof = False
        self._data_begin = 0
        self._data_end = 0
        self._remainder: tuple[int, int] = (0, 0)

    @classmethod
    def from_file(
        cls,
        fileobj: BinaryIO,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        remove_comments: bool = True,
    ) -> "BufferedLineReader":
        """Create a reader over a binary file object."""
        # Buffered streams: prefer a single underlying read per refill.
        readinto = getattr(fileobj, "readinto1", None) or fileobj.readinto
        return cls(readinto, buffer_size, remove_comments)

    @classmethod
    def from_fd(
        cls,
        fd: int,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        remove_comments: bool = True,
    ) -> "BufferedLineReader":
        """Create a reader over a raw file descriptor."""
        return cls(lambda buf: os.readv(fd, [buf]), buffer_size, remove_comments)

    @property
    def buffer_size(self) -> int:
        return self._buffer_size

    def is_eof(self) -> bool:
        """Return True once the full input has been processed."""
        return self._eof

    def read_next_lines(self, n: int) -> list[memoryview]:
        """
        Read at most n next lines (= G-code blocks) from the input.

        Might return fewer, even none, when the buffer runs out of complete
        lines; at most one refill is done per call. Invalidates the views
        returned by previous calls.

        Args:
            n: Maximum number of blocks to return.

        Returns:
            List of views, each a non-empty cleaned line ending in '\\n'.

        Raises:
            LineTooLongError: If a raw line is longer than the buffer.
            OSError: If reading from the source fails.
        """
        result: list[memoryview] = []
        if self._data_begin >= self._data_end and not self._refill():
            return result

        while True:
            match = TERMINATOR_RE.search(self._arena, self._data_begin, self._data_end)
            if match is None:
                break
            end_line = match.start()
            line = self._make_comment_free_line(self._data_begin, end_line)
            self._data_begin = end_line + 1
            if line is not None:
                result.append(line)
                if len(result) >= n:
                    return result

        self._remainder = (self._data_begin, self._data_end)
        self._data_begin = self._data_end  # consume all
        return result

    def read_line(self) -> memoryview:
        """
        Read a single line.

        Returns:
            The next block, or an empty view at end of stream.
        """
        while not self._eof:
            lines = self.read_next_lines(1)
            if lines:
                return lines[0]
            # nothing complete at a buffer switchover; keep reading
        return self._view[0:0]

    def _refill(self) -> bool:
        self._data_begin = 0
        self._data_end = 0
        if self._eof:
            return False

        start, end = self._remainder
        remainder_size = end - start
        if remainder_size >= self._buffer_size:
            raise LineTooLongError(
                f"Line longer than the {self._buffer_size} byte read buffer"
            )
        if remainder_size:
            self._arena[0:remainder_size] = self._arena[start:end]
            self._data_end = remainder_size

        r = self._readinto(self._view[self._data_end:])
        if r:
            self._data_end += r
        else:
            self._eof = True
            if remainder_size:
                # Close the final partial line with a newline.
                self._arena[self._data_end] = NEWLINE
                self._data_end += 1

        self._remainder = (0, 0)
        return self._data_end > self._data_begin

    def _make_comment_free_line(self, first: int, last: int) -> memoryview | None:
        """
        Clean the raw span [first, last] in place.

        'last' is the index of the terminator. May overwrite the byte after
        the last retained character with a fresh newline.
        """
        arena = self._arena
        end = last + 1
        if self.remove_comments:
            comment = arena.find(COMMENT_START, first, end)
            if comment >= 0:
                end = comment

        while first < end and arena[first] in WHITESPACE:
            first += 1
        while end > first and arena[end - 1] in WHITESPACE:
            end -= 1
        if end == first:
            return None

        arena[end] = NEWLINE
        return self._view[first:end + 1]
