"""Reassembly of transport fragments into complete gateway messages."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Union

from gateway.errors import BufferGrowthError, InvalidParamError, MessageTooLargeError

LOGGER = logging.getLogger(__name__)

DEFAULT_INITIAL_CAPACITY = 65536

Fragment = Union[bytes, bytearray, memoryview]


class FrameReassembler:
    """Accumulates fragments of one logical message in a reusable buffer.

    The buffer only ever grows by allocating a larger copy first and swapping
    it in afterwards, so a failed allocation leaves the bytes received so far
    and the cursor exactly as they were.
    """

    def __init__(
        self,
        initial_capacity: int = DEFAULT_INITIAL_CAPACITY,
        *,
        max_message_bytes: int = 0,
        allocator: Callable[[int], bytearray] = bytearray,
    ) -> None:
        if initial_capacity < 0:
            raise InvalidParamError("initial_capacity must be >= 0")
        if max_message_bytes < 0:
            raise InvalidParamError("max_message_bytes must be >= 0")
        self._initial_capacity = initial_capacity
        self._max_message_bytes = max_message_bytes
        self._allocator = allocator
        self._buffer = allocator(initial_capacity)
        self._cursor = 0
        self._skipping = False

    @property
    def capacity(self) -> int:
        return len(self._buffer)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def pending(self) -> bool:
        """True while a partial message is buffered."""

        return self._cursor > 0 or self._skipping

    def append(self, fragment: Fragment, final: bool) -> Optional[bytes]:
        """Copy ``fragment`` in; return the whole message when ``final`` is set."""

        if not isinstance(fragment, (bytes, bytearray, memoryview)):
            raise InvalidParamError("fragment must be bytes-like")
        if self._skipping:
            if final:
                self._skipping = False
            return None

        size = len(fragment)
        required = self._cursor + size
        if self._max_message_bytes and required > self._max_message_bytes:
            self.skip(final)
            raise MessageTooLargeError(
                f"message exceeds {self._max_message_bytes} bytes"
            )
        if required > len(self._buffer):
            self._grow(required)
        self._buffer[self._cursor : required] = fragment
        self._cursor = required
        if not final:
            return None
        return self._take()

    def discard(self) -> None:
        """Drop a partially received message, keeping the allocation."""

        if self._cursor:
            LOGGER.debug("Discarding %s buffered bytes of an incomplete message", self._cursor)
        self._cursor = 0
        self._skipping = False

    def skip(self, final: bool) -> None:
        """Drop the partial message and ignore the rest of it up to its final fragment."""

        self.discard()
        self._skipping = not final

    def release(self) -> None:
        """Free the allocation; the reassembler stays usable and regrows on demand."""

        self._buffer = bytearray()
        self._cursor = 0
        self._skipping = False

    def _grow(self, required: int) -> None:
        new_capacity = max(required * 2, len(self._buffer) * 2, self._initial_capacity)
        try:
            grown = self._allocator(new_capacity)
            with memoryview(self._buffer) as view:
                grown[: self._cursor] = view[: self._cursor]
        except MemoryError as exc:
            raise BufferGrowthError(
                f"cannot grow reassembly buffer to {new_capacity} bytes "
                f"({self._cursor} bytes held)"
            ) from exc
        LOGGER.debug("Reassembly buffer grown %s -> %s bytes", len(self._buffer), new_capacity)
        self._buffer = grown

    def _take(self) -> bytes:
        try:
            with memoryview(self._buffer) as view:
                message = bytes(view[: self._cursor])
        except MemoryError as exc:
            raise BufferGrowthError(
                f"cannot copy out a {self._cursor} byte message"
            ) from exc
        self._cursor = 0
        return message


__all__ = ["DEFAULT_INITIAL_CAPACITY", "FrameReassembler"]
