"""Serial transport implementation using pyserial."""

from __future__ import annotations

import logging
import time
from typing import Any

import serial
from serial.tools import list_ports

from stkflash.core.errors import (
    PortDiscoveryError,
    TransportOpenError,
    TransportReceiveError,
    TransportSendError,
    TransportTimeoutError,
)
from stkflash.core.model import DetectedPort

LOGGER = logging.getLogger(__name__)


class SerialTransport:
    """pyserial-backed channel, 8N1 with no flow control."""

    def __init__(self, port: str) -> None:
        self.port = port
        self._serial: Any | None = None

    @property
    def is_open(self) -> bool:
        return bool(self._serial is not None and self._serial.is_open)

    def open(self, baud_rate: int) -> None:
        if self.is_open:
            raise TransportOpenError(f"Serial port {self.port} already has an active session")
        try:
            self._serial = serial.Serial(
                port=self.port,
                baudrate=baud_rate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=0,
                xonxoff=False,
                rtscts=False,
                dsrdtr=False,
            )
        except (serial.SerialException, ValueError) as exc:
            self._serial = None
            raise TransportOpenError(f"Could not open {self.port} at {baud_rate} baud: {exc}") from exc
        LOGGER.debug("opened %s at %d baud", self.port, baud_rate)

    def _set_lines(self, level: bool) -> None:
        if self._serial is None:
            return
        try:
            self._serial.dtr = level
            self._serial.rts = level
        except (serial.SerialException, OSError, ValueError) as exc:
            LOGGER.warning("DTR/RTS reset not supported on %s: %s", self.port, exc)

    def assert_reset(self) -> None:
        self._set_lines(True)

    def release_reset(self) -> None:
        self._set_lines(False)

    def reset_input(self) -> None:
        if self.is_open:
            try:
                self._serial.reset_input_buffer()
            except serial.SerialException as exc:
                LOGGER.debug("could not flush input on %s: %s", self.port, exc)

    def write_bytes(self, data: bytes) -> None:
        if not self.is_open:
            raise TransportSendError(f"Serial port {self.port} is not open")
        try:
            self._serial.write(data)
            self._serial.flush()
        except serial.SerialException as exc:
            raise TransportSendError(f"Serial write failed on {self.port}: {exc}") from exc

    def read_bytes(self, count: int, timeout_s: float) -> bytes:
        if not self.is_open:
            raise TransportReceiveError(f"Serial port {self.port} is not open")
        buffer = bytearray()
        deadline = time.monotonic() + timeout_s
        try:
            while len(buffer) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._serial.timeout = remaining
                chunk = self._serial.read(count - len(buffer))
                buffer.extend(chunk)
        except serial.SerialException as exc:
            raise TransportReceiveError(f"Serial read failed on {self.port}: {exc}") from exc
        if len(buffer) < count:
            raise TransportTimeoutError(count, bytes(buffer))
        return bytes(buffer)

    def close(self) -> None:
        if self._serial is not None:
            try:
                self._serial.close()
            except (serial.SerialException, OSError) as exc:
                LOGGER.warning("error while closing %s: %s", self.port, exc)
            finally:
                self._serial = None
            LOGGER.debug("closed %s", self.port)


def discover_ports() -> list[DetectedPort]:
    try:
        items = list_ports.comports()
    except OSError as exc:
        raise PortDiscoveryError(f"Serial port enumeration failed: {exc}") from exc
    return [
        DetectedPort(
            device=item.device,
            description=item.description or "",
            hwid=item.hwid or "",
            vid=item.vid,
            pid=item.pid,
        )
        for item in sorted(items, key=lambda p: p.device)
    ]
