"""Board profile loading.

Profiles ship with the package under ``stkflash/boards`` and may be added or
replaced by YAML files in ``$XDG_CONFIG_HOME/stkflash/boards`` or
``$XDG_DATA_HOME/stkflash/boards``. Later sources win; every replacement of a
packaged board is reported as a warning.
"""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Iterator
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from stkflash.core.errors import BoardLoadError, BoardValidationError
from stkflash.core.model import BoardProfile, MatchRules

BOARD_SUFFIXES = (".yaml", ".yml")
_USB_ID_RE = re.compile(r"^[0-9A-F]{4}:[0-9A-F]{4}$")
LOGGER = logging.getLogger(__name__)


class BoardYamlLoader(yaml.SafeLoader):
    """SafeLoader that refuses repeated keys instead of keeping the last one."""

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> dict[Any, Any]:
        seen: list[Any] = []
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise BoardValidationError(
                    f"Duplicate key '{key}' at line {key_node.start_mark.line + 1}"
                )
            seen.append(key)
        return super().construct_mapping(node, deep=deep)


@dataclass(frozen=True)
class LoadedBoards:
    boards: dict[str, BoardProfile]
    warnings: tuple[str, ...]


@dataclass(frozen=True)
class _BoardSource:
    path: Path | Traversable
    packaged: bool


@lru_cache(maxsize=1)
def _schema_validator() -> Any:
    schema = json.loads(
        resources.files("stkflash.schemas").joinpath("board.schema.json").read_text(encoding="utf-8")
    )
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def user_board_dirs() -> list[Path]:
    dirs: list[Path] = []
    for env_var, fallback in (
        ("XDG_CONFIG_HOME", Path.home() / ".config"),
        ("XDG_DATA_HOME", Path.home() / ".local" / "share"),
    ):
        base = Path(os.environ.get(env_var) or fallback)
        dirs.append(base / "stkflash" / "boards")
    return dirs


def _board_sources() -> Iterator[_BoardSource]:
    packaged = resources.files("stkflash.boards")
    for item in sorted(packaged.iterdir(), key=lambda p: p.name):
        if item.name.endswith(BOARD_SUFFIXES):
            yield _BoardSource(item, packaged=True)

    for directory in user_board_dirs():
        if not directory.is_dir():
            continue
        for path in sorted(directory.iterdir()):
            if path.suffix in BOARD_SUFFIXES:
                yield _BoardSource(path, packaged=False)


def _load_document(source: _BoardSource) -> dict[str, Any]:
    try:
        text = source.path.read_text(encoding="utf-8")
    except OSError as exc:
        raise BoardLoadError(f"Could not read board file {source.path}: {exc}") from exc

    try:
        doc = yaml.load(text, Loader=BoardYamlLoader)
    except yaml.YAMLError as exc:
        raise BoardValidationError(f"Invalid YAML in {source.path}: {exc}") from exc

    if not isinstance(doc, dict):
        raise BoardValidationError(f"Board file {source.path} must contain a mapping at root")

    try:
        _schema_validator().validate(doc)
    except ValidationError as exc:
        field = ".".join(str(p) for p in exc.path)
        where = f" ({field})" if field else ""
        raise BoardValidationError(
            f"Schema validation failed for {source.path}{where}: {exc.message}"
        ) from exc
    return doc


def _usb_id(value: str, board_id: str) -> str:
    usb_id = value.strip().upper()
    if not _USB_ID_RE.match(usb_id):
        raise BoardValidationError(
            f"{board_id}.match.usb_ids must look like VID:PID in hex, got '{value}'"
        )
    return usb_id


def _profile_from_document(doc: dict[str, Any]) -> BoardProfile:
    board_id = doc["id"]
    page_size = doc["page_size"]
    if page_size & (page_size - 1):
        raise BoardValidationError(f"{board_id}.page_size must be a power of two, got {page_size}")

    rules = doc.get("match") or {}
    return BoardProfile(
        id=board_id,
        name=doc["name"],
        baud_rate=doc["baud_rate"],
        page_size=page_size,
        protocol=doc.get("protocol", "arduino"),
        address_mode=doc.get("address_mode", "byte"),
        match=MatchRules(
            usb_ids=tuple(_usb_id(v, board_id) for v in rules.get("usb_ids", ())),
            description_contains=tuple(rules.get("description_contains", ())),
        ),
    )


def load_boards() -> LoadedBoards:
    boards: dict[str, BoardProfile] = {}
    packaged_ids: set[str] = set()
    warnings: list[str] = []

    for source in _board_sources():
        board = _profile_from_document(_load_document(source))
        if source.packaged:
            packaged_ids.add(board.id)
        elif board.id in packaged_ids:
            warnings.append(f"User board '{board.id}' overrides packaged board")
            LOGGER.warning("%s (%s)", warnings[-1], source.path)
        boards[board.id] = board

    return LoadedBoards(boards=boards, warnings=tuple(warnings))
