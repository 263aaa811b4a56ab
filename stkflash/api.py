"""Stable public API for building tooling on top of stkflash.

This module is the supported integration surface for third-party callers
(IDEs, CI flashing jobs, production test rigs). Avoid importing from internal
modules unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

from collections.abc import Callable

from stkflash.core.errors import (
    BoardLoadError,
    BoardSelectionError,
    BoardValidationError,
    MalformedRecord,
    PortDiscoveryError,
    ProtocolError,
    ProtocolTimeoutError,
    ResponseTimeout,
    StkflashError,
    SyncTimeout,
    TransportError,
    TransportOpenError,
    TransportReceiveError,
    TransportSendError,
    TransportTimeoutError,
    UploadCancelled,
    UploadError,
)
from stkflash.core.hexfile import HexRecord, RecordType, WriteOperation, parse, write_operations
from stkflash.core.model import (
    BoardProfile,
    DetectedPort,
    MatchRules,
    ProbeResult,
    ProgressStage,
    ResolvedTarget,
    UploadProgress,
    UploadResult,
    UploadStage,
    UploadTimings,
)
from stkflash.core.service import FlashService, TransportFactory
from stkflash.core.uploader import CancelToken, ProgressCallback, Uploader
from stkflash.transports.base import Transport
from stkflash.transports.serial_port import SerialTransport

__all__ = [
    "StkflashError",
    "BoardLoadError",
    "BoardSelectionError",
    "BoardValidationError",
    "MalformedRecord",
    "PortDiscoveryError",
    "ProtocolError",
    "ProtocolTimeoutError",
    "ResponseTimeout",
    "SyncTimeout",
    "TransportError",
    "TransportOpenError",
    "TransportReceiveError",
    "TransportSendError",
    "TransportTimeoutError",
    "UploadCancelled",
    "UploadError",
    "BoardProfile",
    "DetectedPort",
    "MatchRules",
    "ProbeResult",
    "ProgressStage",
    "ResolvedTarget",
    "UploadProgress",
    "UploadResult",
    "UploadStage",
    "UploadTimings",
    "HexRecord",
    "RecordType",
    "WriteOperation",
    "parse",
    "write_operations",
    "SerialTransport",
    "Transport",
    "Uploader",
    "Client",
]


class Client:
    """Public client for interacting with stkflash core capabilities.

    A `Client` instance wraps board loading, serial port discovery/matching,
    and STK500v1 uploads behind a stable API. Pass ``transport_factory`` to
    flash over something other than a local serial port.
    """

    def __init__(
        self,
        *,
        transport_factory: TransportFactory | None = None,
        timings: UploadTimings | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        kwargs = {} if sleep is None else {"sleep": sleep}
        self._service = FlashService(transport_factory=transport_factory, timings=timings, **kwargs)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    def list_boards(self) -> list[BoardProfile]:
        return self._service.list_boards()

    def list_ports(self) -> list[DetectedPort]:
        return self._service.list_ports()

    def resolve_target(
        self,
        *,
        board_id: str | None = None,
        port: str | None = None,
    ) -> ResolvedTarget:
        return self._service.resolve_target(board_id=board_id, port_hint=port)

    def probe(
        self,
        *,
        board_id: str | None = None,
        port: str | None = None,
    ) -> ProbeResult:
        return self._service.probe(board_id=board_id, port_hint=port)

    def upload(
        self,
        hex_text: str,
        *,
        board_id: str | None = None,
        port: str | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> UploadResult:
        return self._service.upload(
            hex_text,
            board_id=board_id,
            port_hint=port,
            on_progress=on_progress,
            cancel=cancel,
        )
