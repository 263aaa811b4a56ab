from __future__ import annotations

from pathlib import Path

import pytest

from stkflash.core import service as service_module
from stkflash.core.errors import (
    BoardSelectionError,
    SyncTimeout,
    TransportOpenError,
    TransportTimeoutError,
    UploadError,
)
from stkflash.core.model import DetectedPort, UploadStage
from stkflash.core.service import FlashService

OK = b"\x14\x10"

UNO_PORT = DetectedPort(
    device="/dev/ttyACM0",
    description="Arduino Uno",
    hwid="USB VID:PID=2341:0043",
    vid=0x2341,
    pid=0x0043,
)
NANO_PORT = DetectedPort(
    device="/dev/ttyUSB0",
    description="USB2.0-Serial",
    hwid="USB VID:PID=1A86:7523",
    vid=0x1A86,
    pid=0x7523,
)
UNKNOWN_PORT = DetectedPort(device="/dev/ttyS0", description="ttyS0")


class FakeTransport:
    def __init__(self, device: str, *, sign_on: bytes = b"\x14AVR STK\x10", sync_ok: bool = True) -> None:
        self.device = device
        self.sign_on = sign_on
        self.sync_ok = sync_ok
        self.baud_rate: int | None = None
        self.close_calls = 0
        self.writes: list[bytes] = []
        self._open = False
        self._rx = bytearray()

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self, baud_rate: int) -> None:
        self.baud_rate = baud_rate
        self._open = True

    def assert_reset(self) -> None:
        pass

    def release_reset(self) -> None:
        pass

    def write_bytes(self, data: bytes) -> None:
        self.writes.append(data)
        if data[0] == 0x30 and not self.sync_ok:
            return
        self._rx.extend(self.sign_on if data[0] == 0x31 else OK)

    def read_bytes(self, count: int, timeout_s: float) -> bytes:
        data = bytes(self._rx[:count])
        del self._rx[:count]
        if len(data) < count:
            raise TransportTimeoutError(count, data)
        return data

    def close(self) -> None:
        self.close_calls += 1
        self._open = False


class TransportRecorder:
    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.created: list[FakeTransport] = []

    def __call__(self, device: str) -> FakeTransport:
        transport = FakeTransport(device, **self.kwargs)
        self.created.append(transport)
        return transport


@pytest.fixture(autouse=True)
def isolated_boards(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))


def _service(monkeypatch: pytest.MonkeyPatch, ports: list[DetectedPort], **kwargs) -> tuple[FlashService, TransportRecorder]:
    monkeypatch.setattr(service_module, "discover_ports", lambda: list(ports))
    factory = TransportRecorder(**kwargs)
    return FlashService(transport_factory=factory, sleep=lambda _s: None), factory


def test_list_boards_sorted_by_id(monkeypatch: pytest.MonkeyPatch) -> None:
    service, _ = _service(monkeypatch, [])
    ids = [b.id for b in service.list_boards()]
    assert ids == sorted(ids)
    assert "uno" in ids


def test_resolve_auto_detects_single_board(monkeypatch: pytest.MonkeyPatch) -> None:
    service, _ = _service(monkeypatch, [UNO_PORT, UNKNOWN_PORT])
    target = service.resolve_target(board_id=None, port_hint=None)
    assert target.port.device == "/dev/ttyACM0"
    assert target.board.id == "uno"


def test_resolve_multiple_candidates_requires_port(monkeypatch: pytest.MonkeyPatch) -> None:
    service, _ = _service(monkeypatch, [UNO_PORT, NANO_PORT])
    with pytest.raises(BoardSelectionError, match="Multiple candidate ports"):
        service.resolve_target(board_id=None, port_hint=None)

    target = service.resolve_target(board_id=None, port_hint="/dev/ttyUSB0")
    assert target.board.id == "nano"


def test_resolve_port_hint_matches_description(monkeypatch: pytest.MonkeyPatch) -> None:
    service, _ = _service(monkeypatch, [UNO_PORT, NANO_PORT])
    target = service.resolve_target(board_id=None, port_hint="arduino")
    assert target.port.device == "/dev/ttyACM0"


def test_resolve_exact_device_beats_substring(monkeypatch: pytest.MonkeyPatch) -> None:
    other = DetectedPort(device="/dev/ttyACM01", description="Arduino Uno", vid=0x2341, pid=0x0043)
    service, _ = _service(monkeypatch, [UNO_PORT, other])
    target = service.resolve_target(board_id=None, port_hint="/dev/ttyACM0")
    assert target.port.device == "/dev/ttyACM0"


def test_resolve_unknown_board(monkeypatch: pytest.MonkeyPatch) -> None:
    service, _ = _service(monkeypatch, [UNO_PORT])
    with pytest.raises(BoardSelectionError, match="Unknown board 'leonardo'"):
        service.resolve_target(board_id="leonardo", port_hint=None)


def test_resolve_no_ports(monkeypatch: pytest.MonkeyPatch) -> None:
    service, _ = _service(monkeypatch, [])
    with pytest.raises(BoardSelectionError, match="No serial ports found"):
        service.resolve_target(board_id=None, port_hint=None)


def test_resolve_no_matching_board(monkeypatch: pytest.MonkeyPatch) -> None:
    service, _ = _service(monkeypatch, [UNKNOWN_PORT])
    with pytest.raises(BoardSelectionError, match="No connected port matched any board"):
        service.resolve_target(board_id=None, port_hint=None)


def test_explicit_board_and_unlisted_port_taken_verbatim(monkeypatch: pytest.MonkeyPatch) -> None:
    service, _ = _service(monkeypatch, [])
    target = service.resolve_target(board_id="nano", port_hint="/dev/pts/4")
    assert target.port.device == "/dev/pts/4"
    assert target.board.id == "nano"


def test_explicit_board_on_unmatched_listed_port(monkeypatch: pytest.MonkeyPatch) -> None:
    service, _ = _service(monkeypatch, [UNKNOWN_PORT])
    target = service.resolve_target(board_id="uno", port_hint="/dev/ttyS0")
    assert target.port.device == "/dev/ttyS0"
    assert target.board.id == "uno"


def test_upload_uses_board_baud_and_closes(monkeypatch: pytest.MonkeyPatch) -> None:
    service, factory = _service(monkeypatch, [NANO_PORT])
    hex_text = ":0400000001020304F2\n:00000001FF\n"
    events = []

    result = service.upload(hex_text, on_progress=events.append)

    transport = factory.created[0]
    assert transport.device == "/dev/ttyUSB0"
    assert transport.baud_rate == 57600
    assert transport.close_calls == 1
    assert result.board_id == "nano"
    assert result.port == "/dev/ttyUSB0"
    assert result.bytes_written == 4
    assert events[-1].percent == 100


def test_upload_to_mega_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    service, factory = _service(monkeypatch, [])
    with pytest.raises(UploadError, match="not supported"):
        service.upload(":00000001FF\n", board_id="mega", port_hint="/dev/ttyACM3")
    assert factory.created[0].baud_rate is None


def test_probe_reads_sign_on(monkeypatch: pytest.MonkeyPatch) -> None:
    service, factory = _service(monkeypatch, [UNO_PORT])
    result = service.probe()
    assert result.sign_on == "AVR STK"
    assert result.sync_attempts == 1
    assert result.target.board.id == "uno"
    assert factory.created[0].baud_rate == 115200
    assert factory.created[0].close_calls == 1


def test_probe_sync_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    service, factory = _service(monkeypatch, [UNO_PORT], sync_ok=False)
    with pytest.raises(UploadError) as excinfo:
        service.probe()
    assert excinfo.value.stage is UploadStage.SYNCING
    assert isinstance(excinfo.value.cause, SyncTimeout)
    assert factory.created[0].close_calls == 1


def test_probe_open_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    class Refusing(FakeTransport):
        def open(self, baud_rate: int) -> None:
            raise TransportOpenError("busy")

    monkeypatch.setattr(service_module, "discover_ports", lambda: [UNO_PORT])
    service = FlashService(transport_factory=Refusing, sleep=lambda _s: None)
    with pytest.raises(UploadError) as excinfo:
        service.probe()
    assert excinfo.value.stage is UploadStage.CONNECTING


def test_probe_wraps_foreign_transport_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    class Unplugged(FakeTransport):
        def write_bytes(self, data: bytes) -> None:
            raise OSError("device unplugged")

    monkeypatch.setattr(service_module, "discover_ports", lambda: [UNO_PORT])
    created: list[Unplugged] = []

    def factory(device: str) -> Unplugged:
        created.append(Unplugged(device))
        return created[-1]

    service = FlashService(transport_factory=factory, sleep=lambda _s: None)
    with pytest.raises(UploadError) as excinfo:
        service.probe()
    assert excinfo.value.stage is UploadStage.SYNCING
    assert isinstance(excinfo.value.cause, OSError)
    assert created[0].close_calls == 1
