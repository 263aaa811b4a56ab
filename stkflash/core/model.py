"""Core data models used across loader, uploader, service, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

UPLOADABLE_PROTOCOLS = ("arduino", "stk500v1")


@dataclass(frozen=True)
class MatchRules:
    usb_ids: tuple[str, ...]
    description_contains: tuple[str, ...]


@dataclass(frozen=True)
class BoardProfile:
    id: str
    name: str
    baud_rate: int
    page_size: int
    protocol: str = "arduino"
    address_mode: str = "byte"
    match: MatchRules = MatchRules(usb_ids=(), description_contains=())

    @property
    def uploadable(self) -> bool:
        return self.protocol in UPLOADABLE_PROTOCOLS


@dataclass(frozen=True)
class DetectedPort:
    device: str
    description: str = ""
    hwid: str = ""
    vid: int | None = None
    pid: int | None = None

    @property
    def usb_id(self) -> str | None:
        if self.vid is None or self.pid is None:
            return None
        return f"{self.vid:04X}:{self.pid:04X}"


@dataclass(frozen=True)
class ResolvedTarget:
    port: DetectedPort
    board: BoardProfile


class UploadStage(str, Enum):
    CONNECTING = "connecting"
    SYNCING = "syncing"
    PROGRAMMING_MODE_ENTRY = "programming-mode-entry"
    UPLOADING = "uploading"
    VERIFYING = "verifying"
    LEAVING_PROGRAM_MODE = "leaving-program-mode"
    COMPLETE = "complete"
    ERROR = "error"


class ProgressStage(str, Enum):
    CONNECTING = "connecting"
    SYNCING = "syncing"
    UPLOADING = "uploading"
    VERIFYING = "verifying"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class UploadProgress:
    stage: ProgressStage
    percent: int
    message: str


@dataclass(frozen=True)
class UploadTimings:
    reset_pulse_s: float = 0.1
    reset_settle_s: float = 2.0
    page_delay_s: float = 0.01
    verify_delay_s: float = 0.5


@dataclass(frozen=True)
class UploadResult:
    board_id: str
    port: str | None
    pages_written: int
    bytes_written: int
    sync_attempts: int


@dataclass(frozen=True)
class ProbeResult:
    target: ResolvedTarget
    sign_on: str
    sync_attempts: int
