"""STK500v1 command/response engine.

Every command is ``opcode [params...] CRC_EOP``; every reply starts with
``INSYNC`` and ends with ``OK``. Only one command is outstanding at a time.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum, IntEnum

from stkflash.core.errors import (
    ProtocolError,
    ResponseTimeout,
    SyncTimeout,
    TransportTimeoutError,
)
from stkflash.transports.base import Transport

CRC_EOP = 0x20
MEMTYPE_FLASH = 0x46
RESPONSE_TIMEOUT_S = 5.0
SYNC_ATTEMPTS = 10
SYNC_BACKOFF_S = 0.1
_MAX_SIGN_ON_LEN = 32
LOGGER = logging.getLogger(__name__)


class Command(IntEnum):
    GET_SYNC = 0x30
    GET_SIGN_ON = 0x31
    ENTER_PROGMODE = 0x50
    LEAVE_PROGMODE = 0x51
    LOAD_ADDRESS = 0x55
    PROG_PAGE = 0x64


class Response(IntEnum):
    OK = 0x10
    FAILED = 0x11
    UNKNOWN = 0x12
    INSYNC = 0x14


class SessionState(str, Enum):
    UNSYNCED = "unsynced"
    SYNCED = "synced"
    PROGRAM_MODE = "program-mode"
    TERMINATED = "terminated"
    FAILED = "failed"


def encode_command(command: Command, params: bytes = b"") -> bytes:
    return bytes([command]) + params + bytes([CRC_EOP])


def _describe_status(status: int) -> str:
    try:
        return Response(status).name
    except ValueError:
        return f"0x{status:02x}"


class Stk500Session:
    """Live protocol session over an open transport."""

    def __init__(
        self,
        transport: Transport,
        *,
        response_timeout_s: float = RESPONSE_TIMEOUT_S,
        sync_attempts: int = SYNC_ATTEMPTS,
        sync_backoff_s: float = SYNC_BACKOFF_S,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if sync_attempts < 1:
            raise ValueError("sync_attempts must be at least 1")
        self.transport = transport
        self.response_timeout_s = response_timeout_s
        self.sync_attempts = sync_attempts
        self.sync_backoff_s = sync_backoff_s
        self.state = SessionState.UNSYNCED
        self._sleep = sleep

    def _require(self, *states: SessionState, action: str) -> None:
        if self.state not in states:
            raise ProtocolError(f"Cannot {action} while session is {self.state.value}")

    def _send(self, command: Command, params: bytes = b"") -> None:
        packet = encode_command(command, params)
        LOGGER.debug("-> %s %s", command.name, packet.hex())
        self.transport.write_bytes(packet)

    def _read(self, command: Command, count: int) -> bytes:
        try:
            data = self.transport.read_bytes(count, self.response_timeout_s)
        except TransportTimeoutError as exc:
            raise ResponseTimeout(int(command), count, len(exc.received)) from exc
        if len(data) < count:
            raise ResponseTimeout(int(command), count, len(data))
        LOGGER.debug("<- %s %s", command.name, data.hex())
        return data

    def _exchange(self, command: Command, params: bytes = b"", *, action: str) -> None:
        self._send(command, params)
        response = self._read(command, 2)
        if response[0] != Response.INSYNC:
            raise ProtocolError(
                f"Framing error while trying to {action}: expected INSYNC, got 0x{response[0]:02x}",
                command=int(command),
                status=response[0],
            )
        if response[1] != Response.OK:
            raise ProtocolError(
                f"Failed to {action}: bootloader answered {_describe_status(response[1])}",
                command=int(command),
                status=response[1],
            )

    def _run(self, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception:
            self.state = SessionState.FAILED
            raise

    def sync(self) -> int:
        """Handshake with the bootloader; returns the number of attempts used.

        GET_SYNC is retried with a fixed backoff. A timeout or an unexpected
        reply counts as one failed attempt.
        """
        self._require(SessionState.UNSYNCED, SessionState.SYNCED, action="sync")
        reset_input = getattr(self.transport, "reset_input", None)
        for attempt in range(1, self.sync_attempts + 1):
            if reset_input is not None:
                reset_input()
            try:
                self._send(Command.GET_SYNC)
                response = self._read(Command.GET_SYNC, 2)
            except ResponseTimeout as exc:
                LOGGER.debug("sync attempt %d/%d timed out: %s", attempt, self.sync_attempts, exc)
            except Exception:
                self.state = SessionState.FAILED
                raise
            else:
                if response == bytes([Response.INSYNC, Response.OK]):
                    LOGGER.info("in sync with bootloader after %d attempt(s)", attempt)
                    self.state = SessionState.SYNCED
                    return attempt
                LOGGER.debug(
                    "sync attempt %d/%d got unexpected reply %s",
                    attempt,
                    self.sync_attempts,
                    response.hex(),
                )
            if attempt < self.sync_attempts:
                self._sleep(self.sync_backoff_s)

        self.state = SessionState.FAILED
        raise SyncTimeout(self.sync_attempts)

    def read_sign_on(self) -> str:
        self._require(SessionState.SYNCED, SessionState.PROGRAM_MODE, action="read sign-on")
        try:
            self._send(Command.GET_SIGN_ON)
            first = self._read(Command.GET_SIGN_ON, 1)
            if first[0] != Response.INSYNC:
                raise ProtocolError(
                    f"Framing error while reading sign-on: expected INSYNC, got 0x{first[0]:02x}",
                    command=int(Command.GET_SIGN_ON),
                    status=first[0],
                )
            text = bytearray()
            while True:
                byte = self._read(Command.GET_SIGN_ON, 1)[0]
                if byte == Response.OK:
                    break
                text.append(byte)
                if len(text) > _MAX_SIGN_ON_LEN:
                    raise ProtocolError(
                        "Sign-on reply is missing its OK terminator",
                        command=int(Command.GET_SIGN_ON),
                    )
        except Exception:
            self.state = SessionState.FAILED
            raise
        return text.decode("ascii", errors="replace")

    def enter_program_mode(self) -> None:
        self._require(SessionState.SYNCED, action="enter programming mode")
        self._run(
            lambda: self._exchange(Command.ENTER_PROGMODE, action="enter programming mode"),
        )
        self.state = SessionState.PROGRAM_MODE

    def leave_program_mode(self) -> None:
        self._require(SessionState.PROGRAM_MODE, action="leave programming mode")
        self._run(
            lambda: self._exchange(Command.LEAVE_PROGMODE, action="leave programming mode"),
        )
        self.state = SessionState.TERMINATED

    def set_address(self, address: int) -> None:
        """Send LOAD_ADDRESS with the low and high byte of address, unscaled."""
        self._require(SessionState.PROGRAM_MODE, action="set address")
        params = bytes([address & 0xFF, (address >> 8) & 0xFF])
        self._run(
            lambda: self._exchange(
                Command.LOAD_ADDRESS,
                params,
                action=f"set address: 0x{address:x}",
            ),
        )

    def program_page(self, address: int, payload: bytes) -> None:
        self._require(SessionState.PROGRAM_MODE, action="program page")
        if not payload:
            raise ValueError("payload must not be empty")
        if len(payload) > 0xFFFF:
            raise ValueError("payload does not fit a 16-bit length field")
        self.set_address(address)
        length = len(payload)
        params = bytes([(length >> 8) & 0xFF, length & 0xFF, MEMTYPE_FLASH]) + bytes(payload)
        self._run(
            lambda: self._exchange(
                Command.PROG_PAGE,
                params,
                action=f"write page at address: 0x{address:x}",
            ),
        )
