"""Intel-HEX record parsing and rendering.

Records are decoded from fixed character offsets of each ``:``-prefixed line:

    :BBAAAATT[DD...]CC
     |  |   | |      checksum (present, not validated)
     |  |   | data bytes, two hex digits each
     |  |   record type
     |  16-bit address
     byte count

Lines without the leading marker are skipped so blank lines and comments in
hand-edited files are tolerated.

Extended address records (types 0x02 and 0x04) are returned by :func:`parse`
but not applied when building write operations; absolute addresses above
64 KiB are therefore not reachable.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import IntEnum

from stkflash.core.errors import MalformedRecord

RECORD_MARKER = ":"
_HEADER_LEN = 9
_HEX_DIGITS_RE = re.compile(r"^[0-9A-Fa-f]*$")
LOGGER = logging.getLogger(__name__)


class RecordType(IntEnum):
    DATA = 0x00
    END_OF_FILE = 0x01
    EXTENDED_SEGMENT_ADDRESS = 0x02
    START_SEGMENT_ADDRESS = 0x03
    EXTENDED_LINEAR_ADDRESS = 0x04
    START_LINEAR_ADDRESS = 0x05


@dataclass(frozen=True)
class HexRecord:
    record_type: RecordType
    address: int
    data: bytes
    line: int = 0

    @property
    def byte_count(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class WriteOperation:
    address: int
    payload: bytes


def checksum(raw: bytes) -> int:
    """Two's-complement checksum over the count, address, type and data bytes."""
    return (-sum(raw)) & 0xFF


def _parse_line(text: str, line_no: int) -> HexRecord | None:
    body = text[1:]
    if not _HEX_DIGITS_RE.match(body):
        raise MalformedRecord(line_no, "invalid hex digit")
    if len(text) < _HEADER_LEN:
        raise MalformedRecord(line_no, "record too short")

    byte_count = int(text[1:3], 16)
    address = int(text[3:7], 16)
    type_value = int(text[7:9], 16)

    data_hex = text[_HEADER_LEN : _HEADER_LEN + byte_count * 2]
    if len(data_hex) != byte_count * 2:
        raise MalformedRecord(
            line_no,
            f"declared byte count {byte_count} but only {len(data_hex) // 2} data byte(s) present",
        )
    trailer = text[_HEADER_LEN + byte_count * 2 :]
    if len(trailer) != 2:
        raise MalformedRecord(
            line_no,
            f"declared byte count {byte_count} does not match record length",
        )

    try:
        record_type = RecordType(type_value)
    except ValueError:
        LOGGER.warning("Skipping record with unknown type 0x%02x on line %d", type_value, line_no)
        return None

    return HexRecord(
        record_type=record_type,
        address=address,
        data=bytes.fromhex(data_hex),
        line=line_no,
    )


def parse(hex_text: str) -> list[HexRecord]:
    """Parse Intel-HEX text into records, in file order."""
    records: list[HexRecord] = []
    for line_no, raw_line in enumerate(hex_text.splitlines(), start=1):
        line = raw_line.strip()
        if not line.startswith(RECORD_MARKER):
            continue
        record = _parse_line(line, line_no)
        if record is not None:
            records.append(record)
    return records


def write_operations(
    records: Iterable[HexRecord],
    page_size: int | None = None,
) -> list[WriteOperation]:
    """Turn data records into page writes, preserving file order."""
    operations: list[WriteOperation] = []
    for record in records:
        if record.record_type in (
            RecordType.EXTENDED_LINEAR_ADDRESS,
            RecordType.EXTENDED_SEGMENT_ADDRESS,
        ):
            if any(record.data):
                LOGGER.warning(
                    "Ignoring %s record on line %d (upper address 0x%s); "
                    "data above 64 KiB will be written to the wrong address",
                    record.record_type.name.lower(),
                    record.line,
                    record.data.hex(),
                )
            continue
        if record.record_type is not RecordType.DATA or not record.data:
            continue
        if page_size is not None and record.byte_count > page_size:
            raise MalformedRecord(
                record.line,
                f"record holds {record.byte_count} bytes, more than the {page_size}-byte page",
            )
        operations.append(WriteOperation(address=record.address, payload=record.data))
    return operations


def encode_record(record: HexRecord) -> str:
    if record.byte_count > 0xFF:
        raise ValueError("Intel-HEX records hold at most 255 data bytes")
    raw = bytes(
        [
            record.byte_count,
            (record.address >> 8) & 0xFF,
            record.address & 0xFF,
            int(record.record_type),
        ]
    ) + record.data
    return f"{RECORD_MARKER}{raw.hex().upper()}{checksum(raw):02X}"


def encode_operations(operations: Sequence[WriteOperation]) -> str:
    """Render write operations as data records followed by an EOF record."""
    lines = [
        encode_record(HexRecord(RecordType.DATA, op.address & 0xFFFF, op.payload))
        for op in operations
    ]
    lines.append(encode_record(HexRecord(RecordType.END_OF_FILE, 0, b"")))
    return "\n".join(lines) + "\n"
