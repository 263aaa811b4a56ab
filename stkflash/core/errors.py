"""Domain-specific errors for stkflash."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stkflash.core.model import UploadStage


class StkflashError(Exception):
    """Base error for stkflash."""


class BoardValidationError(StkflashError):
    """Raised when a board file does not conform to schema or semantics."""


class BoardLoadError(StkflashError):
    """Raised when loading board sources fails."""


class BoardSelectionError(StkflashError):
    """Raised when board/port matching cannot resolve a single target."""


class PortDiscoveryError(StkflashError):
    """Raised when serial port enumeration fails."""


class MalformedRecord(StkflashError):
    """Raised when an Intel-HEX line cannot be decoded."""

    def __init__(self, line: int, reason: str) -> None:
        super().__init__(f"line {line}: {reason}")
        self.line = line
        self.reason = reason


class TransportError(StkflashError):
    """Base transport error."""


class TransportOpenError(TransportError):
    """Raised when the serial channel cannot be opened."""


class TransportSendError(TransportError):
    """Raised when writing to the channel fails."""


class TransportReceiveError(TransportError):
    """Raised when reading from the channel fails."""


class TransportTimeoutError(TransportError):
    """Raised when fewer bytes than requested arrive before the deadline."""

    def __init__(self, expected: int, received: bytes) -> None:
        super().__init__(
            f"Timed out waiting for {expected} byte(s), got {len(received)}"
        )
        self.expected = expected
        self.received = received


class ProtocolError(StkflashError):
    """Raised when the bootloader answers with anything but INSYNC/OK."""

    def __init__(self, message: str, *, command: int | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.command = command
        self.status = status


class ProtocolTimeoutError(StkflashError, TimeoutError):
    """Base for bootloader timeouts."""


class SyncTimeout(ProtocolTimeoutError):
    """Raised when the bootloader never answers GET_SYNC in-sync."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Failed to sync with bootloader after {attempts} attempt(s)")
        self.attempts = attempts


class ResponseTimeout(ProtocolTimeoutError):
    """Raised when a command response is incomplete at the deadline."""

    def __init__(self, command: int, expected: int, received: int) -> None:
        super().__init__(
            f"Timeout waiting for response to command 0x{command:02x}. "
            f"Expected {expected}, got {received}"
        )
        self.command = command
        self.expected = expected
        self.received = received


class UploadError(StkflashError):
    """Raised by the uploader; carries the stage that failed and the cause."""

    def __init__(self, stage: UploadStage, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Upload failed during {stage.value}{detail}")
        self.stage = stage
        self.cause = cause


class UploadCancelled(UploadError):
    """Raised when the caller cancels an upload between steps."""

    def __init__(self, stage: UploadStage) -> None:
        super().__init__(stage)
        self.args = (f"Upload cancelled during {stage.value}",)
