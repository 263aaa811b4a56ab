"""Upload orchestration: reset, sync, program pages, leave program mode, clean up."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

from stkflash.core import hexfile
from stkflash.core.errors import (
    BoardSelectionError,
    StkflashError,
    TransportOpenError,
    UploadCancelled,
    UploadError,
)
from stkflash.core.model import (
    BoardProfile,
    ProgressStage,
    UploadProgress,
    UploadResult,
    UploadStage,
    UploadTimings,
)
from stkflash.core.stk500 import Stk500Session
from stkflash.transports.base import Transport

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[UploadProgress], None]

_UPLOAD_START = 30
_UPLOAD_SPAN = 50


class CancelToken(Protocol):
    def is_set(self) -> bool: ...


def reset_into_bootloader(
    transport: Transport,
    timings: UploadTimings,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Pulse DTR/RTS and give the bootloader time to start."""
    transport.assert_reset()
    sleep(timings.reset_pulse_s)
    transport.release_reset()
    sleep(timings.reset_settle_s)


class Uploader:
    """Drives one upload session over a transport it owns until cleanup.

    ``stage`` always holds the current orchestrator state; it ends at
    ``COMPLETE`` or ``ERROR``. The transport is closed exactly once per run.
    """

    def __init__(
        self,
        transport: Transport,
        board: BoardProfile,
        *,
        timings: UploadTimings | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
        session_factory: Callable[..., Stk500Session] = Stk500Session,
        sleep: Callable[[float], None] = time.sleep,
        port_name: str | None = None,
    ) -> None:
        self.transport = transport
        self.board = board
        self.timings = timings or UploadTimings()
        self.stage = UploadStage.CONNECTING
        self._on_progress = on_progress
        self._cancel = cancel
        self._session_factory = session_factory
        self._sleep = sleep
        self._port_name = port_name

    def _emit(self, stage: ProgressStage, percent: int, message: str) -> None:
        LOGGER.debug("progress %s %d%% %s", stage.value, percent, message)
        if self._on_progress is not None:
            self._on_progress(UploadProgress(stage=stage, percent=percent, message=message))

    def _enter(self, stage: UploadStage) -> None:
        if self._cancel is not None and self._cancel.is_set():
            raise UploadCancelled(self.stage)
        self.stage = stage

    def _fail(self, cause: Exception) -> UploadError:
        failed_stage = self.stage
        self.stage = UploadStage.ERROR
        LOGGER.error("upload failed during %s: %s", failed_stage.value, cause)
        self._emit(ProgressStage.ERROR, 0, f"Upload failed: {cause}")
        return UploadError(failed_stage, cause)

    def _device_address(self, address: int) -> int:
        if self.board.address_mode == "word":
            return address // 2
        return address

    def run(self, hex_text: str) -> UploadResult:
        if self.transport.is_open:
            # Another session owns this transport; leave it untouched.
            raise self._fail(TransportOpenError("Transport already has an active session"))
        try:
            result = self._run(hex_text)
        except UploadCancelled as exc:
            self.stage = UploadStage.ERROR
            self._emit(ProgressStage.ERROR, 0, str(exc))
            raise
        except Exception as exc:
            raise self._fail(exc) from exc
        finally:
            self._cleanup()

        self.stage = UploadStage.COMPLETE
        self._emit(ProgressStage.COMPLETE, 100, "Upload completed successfully!")
        return result

    def _run(self, hex_text: str) -> UploadResult:
        timings = self.timings
        self._enter(UploadStage.CONNECTING)
        if not self.board.uploadable:
            raise BoardSelectionError(
                f"Board '{self.board.id}' uses the '{self.board.protocol}' bootloader protocol, "
                "which is not supported"
            )
        operations = hexfile.write_operations(
            hexfile.parse(hex_text),
            page_size=self.board.page_size,
        )

        self._emit(ProgressStage.CONNECTING, 10, "Connecting to bootloader...")
        self.transport.open(self.board.baud_rate)
        reset_into_bootloader(self.transport, timings, self._sleep)

        session = self._session_factory(self.transport, sleep=self._sleep)

        self._enter(UploadStage.SYNCING)
        attempts = session.sync()
        self._emit(ProgressStage.SYNCING, 20, "Synced with bootloader")

        self._enter(UploadStage.PROGRAMMING_MODE_ENTRY)
        session.enter_program_mode()

        self._enter(UploadStage.UPLOADING)
        self._emit(ProgressStage.UPLOADING, _UPLOAD_START, "Uploading sketch...")
        total = len(operations)
        bytes_written = 0
        for index, operation in enumerate(operations, start=1):
            if index > 1:
                self._enter(UploadStage.UPLOADING)
            session.program_page(self._device_address(operation.address), operation.payload)
            bytes_written += len(operation.payload)
            percent = _UPLOAD_START + (index * _UPLOAD_SPAN) // total
            self._emit(ProgressStage.UPLOADING, percent, f"Uploading... {percent}%")
            self._sleep(timings.page_delay_s)

        # No read-back comparison is performed here.
        self._enter(UploadStage.VERIFYING)
        self._emit(ProgressStage.VERIFYING, 85, "Verifying upload...")
        self._sleep(timings.verify_delay_s)
        self._emit(ProgressStage.VERIFYING, 95, "Verification complete")

        self._enter(UploadStage.LEAVING_PROGRAM_MODE)
        session.leave_program_mode()

        LOGGER.info(
            "wrote %d page(s), %d byte(s) to board %s",
            total,
            bytes_written,
            self.board.id,
        )
        return UploadResult(
            board_id=self.board.id,
            port=self._port_name,
            pages_written=total,
            bytes_written=bytes_written,
            sync_attempts=attempts,
        )

    def _cleanup(self) -> None:
        try:
            self.transport.close()
        except StkflashError as exc:
            LOGGER.warning("cleanup error: %s", exc)
