"""Serial-port-to-board matching logic."""

from __future__ import annotations

from stkflash.core.model import BoardProfile, DetectedPort


def _usb_id_match(port: DetectedPort, board: BoardProfile) -> bool:
    usb_id = port.usb_id
    return usb_id is not None and usb_id in board.match.usb_ids


def _description_match(port: DetectedPort, board: BoardProfile) -> bool:
    haystack = f"{port.description} {port.hwid}".lower()
    return any(token.lower() in haystack for token in board.match.description_contains)


def match_score(port: DetectedPort, board: BoardProfile) -> int:
    id_match = _usb_id_match(port, board)
    description_match = _description_match(port, board)
    if id_match and description_match:
        return 3
    if id_match:
        return 2
    if description_match:
        return 1
    return 0


def best_board_for_port(port: DetectedPort, boards: dict[str, BoardProfile]) -> BoardProfile | None:
    best: BoardProfile | None = None
    best_score = 0
    for board in boards.values():
        score = match_score(port, board)
        if score > best_score:
            best = board
            best_score = score
    return best
