"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
from pathlib import Path

import typer

from stkflash.core import hexfile
from stkflash.core.errors import StkflashError
from stkflash.core.model import UploadProgress
from stkflash.core.port_match import best_board_for_port
from stkflash.core.service import FlashService

app = typer.Typer(help="Flash Intel-HEX firmware to STK500v1 bootloaders over serial")


def _build_service() -> FlashService:
    service = FlashService()
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _read_hex(path: Path) -> str:
    try:
        return path.read_text(encoding="ascii")
    except (OSError, UnicodeDecodeError) as exc:
        typer.echo(f"Error: could not read {path}: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(message)s",
    )


@app.command("boards")
def list_boards() -> None:
    """List available board profiles."""
    try:
        service = _build_service()
        boards = service.list_boards()
        if not boards:
            typer.echo("No boards loaded")
            raise typer.Exit(code=1)

        for board in boards:
            note = "" if board.uploadable else " (unsupported protocol)"
            typer.echo(
                f"{board.id}: {board.name} baud={board.baud_rate} "
                f"page={board.page_size} protocol={board.protocol}{note}"
            )
    except StkflashError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("ports")
def list_ports() -> None:
    """List serial ports and the board each one matches."""
    try:
        service = _build_service()
        ports = service.list_ports()
        if not ports:
            typer.echo("No serial ports found")
            return

        for port in ports:
            board = best_board_for_port(port, service.boards)
            matched = board.id if board else "<no-match>"
            typer.echo(f"{port.device} {port.description} -> {matched}")
    except StkflashError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("hexinfo")
def hex_info(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Intel-HEX file"),
) -> None:
    """Summarize the records of an Intel-HEX file."""
    try:
        records = hexfile.parse(_read_hex(path))
        operations = hexfile.write_operations(records)
    except StkflashError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    typer.echo(f"Records: {len(records)}")
    typer.echo(f"Data records: {len(operations)}")
    typer.echo(f"Bytes: {sum(len(op.payload) for op in operations)}")
    if operations:
        low = min(op.address for op in operations)
        high = max(op.address + len(op.payload) - 1 for op in operations)
        typer.echo(f"Address range: 0x{low:04X}-0x{high:04X}")
    extended = [
        r
        for r in records
        if r.record_type
        in (hexfile.RecordType.EXTENDED_LINEAR_ADDRESS, hexfile.RecordType.EXTENDED_SEGMENT_ADDRESS)
        and any(r.data)
    ]
    if extended:
        typer.echo("Warning: extended address records are not applied during upload", err=True)


@app.command("probe")
def probe(
    board: str | None = typer.Option(None, "--board", help="Board ID"),
    port: str | None = typer.Option(None, "--port", help="Serial device or partial description"),
) -> None:
    """Reset the board, sync with the bootloader and print its sign-on string."""
    try:
        service = _build_service()
        result = service.probe(board_id=board, port_hint=port)
        sign_on = result.sign_on or "<empty>"
        typer.echo(
            f"{result.target.port.device} ({result.target.board.id}): in sync after "
            f"{result.sync_attempts} attempt(s), sign-on: {sign_on}"
        )
    except StkflashError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("upload")
def upload(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Intel-HEX file"),
    board: str | None = typer.Option(None, "--board", help="Board ID"),
    port: str | None = typer.Option(None, "--port", help="Serial device or partial description"),
) -> None:
    """Flash an Intel-HEX file to the resolved board."""
    hex_text = _read_hex(path)

    def _on_progress(progress: UploadProgress) -> None:
        typer.echo(f"[{progress.percent:3d}%] {progress.stage.value}: {progress.message}")

    try:
        service = _build_service()
        result = service.upload(
            hex_text,
            board_id=board,
            port_hint=port,
            on_progress=_on_progress,
        )
    except StkflashError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    typer.echo(
        f"Wrote {result.bytes_written} bytes in {result.pages_written} page(s) "
        f"to {result.port} ({result.board_id})"
    )


def run() -> None:
    app()


if __name__ == "__main__":
    run()
