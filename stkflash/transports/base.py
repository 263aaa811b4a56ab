"""Transport interfaces."""

from __future__ import annotations

from typing import Protocol


class Transport(Protocol):
    """Duplex byte channel with reset control lines.

    One session at a time: ``open`` on an already open transport is an error.

    Implementations may also provide ``reset_input()`` to discard bytes that
    arrived but were never read. It is optional; the protocol engine calls it
    before each sync attempt when present.
    """

    @property
    def is_open(self) -> bool: ...

    def open(self, baud_rate: int) -> None:
        """Open the channel; raises TransportOpenError."""

    def assert_reset(self) -> None:
        """Drive the reset lines active. Unsupported lines are logged, not raised."""

    def release_reset(self) -> None:
        """Release the reset lines."""

    def write_bytes(self, data: bytes) -> None:
        """Write all of data; raises TransportSendError."""

    def read_bytes(self, count: int, timeout_s: float) -> bytes:
        """Read exactly count bytes or raise TransportTimeoutError with the partial read."""

    def close(self) -> None:
        """Release the channel. Safe to call more than once."""
