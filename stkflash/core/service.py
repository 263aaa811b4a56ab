"""Service layer used by CLI and future UI frontends."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from stkflash.core.board_loader import load_boards
from stkflash.core.errors import BoardSelectionError, UploadError
from stkflash.core.model import (
    BoardProfile,
    DetectedPort,
    ProbeResult,
    ResolvedTarget,
    UploadResult,
    UploadStage,
    UploadTimings,
)
from stkflash.core.port_match import best_board_for_port
from stkflash.core.stk500 import Stk500Session
from stkflash.core.uploader import CancelToken, ProgressCallback, Uploader, reset_into_bootloader
from stkflash.transports.base import Transport
from stkflash.transports.serial_port import SerialTransport, discover_ports

LOGGER = logging.getLogger(__name__)

TransportFactory = Callable[[str], Transport]


class FlashService:
    def __init__(
        self,
        *,
        transport_factory: TransportFactory | None = None,
        timings: UploadTimings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        loaded = load_boards()
        self.boards = loaded.boards
        self.load_warnings = loaded.warnings
        self.transport_factory = transport_factory or SerialTransport
        self.timings = timings or UploadTimings()
        self._sleep = sleep

    def list_boards(self) -> list[BoardProfile]:
        return sorted(self.boards.values(), key=lambda b: b.id)

    def list_ports(self) -> list[DetectedPort]:
        return discover_ports()

    def resolve_target(
        self,
        board_id: str | None,
        port_hint: str | None,
    ) -> ResolvedTarget:
        board_override: BoardProfile | None = None
        if board_id:
            board_override = self.boards.get(board_id)
            if board_override is None:
                raise BoardSelectionError(
                    f"Unknown board '{board_id}'. Use 'stkflash boards' to inspect available boards."
                )

        ports = self.list_ports()

        if port_hint and board_override is not None:
            exact = [p for p in ports if p.device == port_hint]
            if not exact:
                # Ports that enumeration cannot see (ptys, sockets) are taken as given.
                return ResolvedTarget(port=DetectedPort(device=port_hint), board=board_override)

        if not ports:
            raise BoardSelectionError("No serial ports found. Ensure your board is connected.")

        candidates: list[ResolvedTarget] = []
        for port in ports:
            if board_override:
                board = board_override
                if port_hint is None and best_board_for_port(port, {board.id: board}) is None:
                    continue
            else:
                board = best_board_for_port(port, self.boards)
                if board is None:
                    continue
            candidates.append(ResolvedTarget(port=port, board=board))

        if port_hint:
            hint = port_hint.lower()
            hinted = [
                c
                for c in candidates
                if c.port.device.lower() == hint
                or hint in c.port.device.lower()
                or hint in c.port.description.lower()
            ]
            exact = [c for c in hinted if c.port.device.lower() == hint]
            if exact:
                hinted = exact
            if not hinted:
                raise BoardSelectionError(f"No board found on a port matching '{port_hint}'")
            candidates = hinted

        if not candidates:
            if board_id:
                raise BoardSelectionError(f"No connected port matched board '{board_id}'.")
            raise BoardSelectionError(
                "No connected port matched any board. Use --board to target explicitly or add a board."
            )

        if len(candidates) > 1:
            candidate_desc = ", ".join(f"{c.port.device} ({c.board.id})" for c in candidates)
            raise BoardSelectionError(
                f"Multiple candidate ports found: {candidate_desc}. Use --port to choose one."
            )

        return candidates[0]

    def upload(
        self,
        hex_text: str,
        *,
        board_id: str | None = None,
        port_hint: str | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> UploadResult:
        target = self.resolve_target(board_id=board_id, port_hint=port_hint)
        LOGGER.info("uploading to %s on %s", target.board.id, target.port.device)
        uploader = Uploader(
            self.transport_factory(target.port.device),
            target.board,
            timings=self.timings,
            on_progress=on_progress,
            cancel=cancel,
            sleep=self._sleep,
            port_name=target.port.device,
        )
        return uploader.run(hex_text)

    def probe(
        self,
        board_id: str | None = None,
        port_hint: str | None = None,
    ) -> ProbeResult:
        """Reset the board, sync with its bootloader and read the sign-on string."""
        target = self.resolve_target(board_id=board_id, port_hint=port_hint)
        transport = self.transport_factory(target.port.device)
        stage = UploadStage.CONNECTING
        try:
            transport.open(target.board.baud_rate)
            reset_into_bootloader(transport, self.timings, self._sleep)
            session = Stk500Session(transport, sleep=self._sleep)
            stage = UploadStage.SYNCING
            attempts = session.sync()
            sign_on = session.read_sign_on()
        except Exception as exc:
            raise UploadError(stage, exc) from exc
        finally:
            transport.close()
        return ProbeResult(target=target, sign_on=sign_on, sync_attempts=attempts)
