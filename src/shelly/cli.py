"""CLI entry point for shelly."""

from __future__ import annotations

import asyncio
import logging
import shlex
from typing import Awaitable, Callable

import aiofiles
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from shelly.cells import DEFAULT_DELIMITER_RULE, RangeUnit, iter_cells
from shelly.config import ShellyConfig
from shelly.errors import ShellyError
from shelly.send import SendAck
from shelly.terminal import Shelly
from shelly.wire import EventType, Wire

app = typer.Typer(
    name="shelly",
    help="Send code to a persistent REPL terminal and capture what it prints.",
    no_args_is_help=True,
)

console = Console()


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_config(
    config_file: str | None,
    command: str | None,
    sink: str | None,
    capture_delay: float | None,
) -> ShellyConfig:
    config = ShellyConfig.load(config_file)
    if command:
        config.terminal.command = shlex.split(command)
    if sink:
        config.capture.sink = sink  # type: ignore[assignment]
    if capture_delay is not None:
        config.send.capture_delay = capture_delay
    return config


def _parse_position(value: str) -> tuple[int, int]:
    """Parse ``LINE`` or ``LINE:COL`` (1-based line, 0-based column)."""
    line, _, col = value.partition(":")
    try:
        return int(line), int(col) if col else 0
    except ValueError:
        raise typer.BadParameter(f"Expected LINE or LINE:COL, got {value!r}")


async def _read_lines(path: str) -> list[str]:
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        content = await f.read()
    return content.splitlines()


async def _consume_wire(wire: Wire) -> None:
    queue = wire.subscribe()
    while True:
        event = await queue.get()
        if event is None:
            break
        d = event.data
        if event.type == EventType.SESSION_OPEN:
            console.print(
                f"[dim]session {d.get('session_id')} started: "
                f"{' '.join(d.get('command', []))} (pid {d.get('pid')})[/dim]"
            )
        elif event.type == EventType.SEND:
            console.print(
                f"[dim]sent {len(d.get('lines', []))} line(s) ({d.get('mode')} mode)[/dim]"
            )
        elif event.type == EventType.WARNING:
            console.print(f"[yellow]warning:[/yellow] {d.get('message', '')}")
        elif event.type == EventType.ERROR:
            console.print(f"[red]error:[/red] {d.get('error', '')}")
        elif event.type == EventType.SESSION_CLOSE:
            console.print(f"[dim]session {d.get('session_id')} closed[/dim]")
    wire.unsubscribe(queue)


async def _run(
    config: ShellyConfig,
    action: Callable[[Shelly], Awaitable[SendAck | None]],
) -> int:
    """Run one send against a fresh session and print its capture."""
    wire = Wire()
    consumer = asyncio.create_task(_consume_wire(wire))
    shelly = Shelly(config=config, wire=wire)
    code = 0
    try:
        ack = await action(shelly)
        if ack is not None:
            result = await ack.wait()
            if result is None or result.empty:
                console.print("[dim](no output captured)[/dim]")
            else:
                console.print(Panel(result.text, title="output", expand=False))
    except ShellyError:
        code = 1
    except ValueError as e:
        console.print(f"[red]error:[/red] {e}")
        code = 2
    finally:
        await shelly.shutdown()
        await consumer
    return code


ConfigOpt = typer.Option(None, "--config", "-c", help="Config file path (JSON).")
CmdOpt = typer.Option(
    None, "--cmd", help="Terminal command, e.g. 'ipython' (default: from config/$SHELL)."
)
SinkOpt = typer.Option(None, "--sink", help="Where captured output goes: register or clipboard.")
DelayOpt = typer.Option(
    None, "--capture-delay", help="Seconds to wait before capturing output."
)
VerboseOpt = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")


@app.command("send")
def send_cmd(
    text: list[str] = typer.Argument(help="Text to send (joined with spaces)."),
    file: str = typer.Option(
        "", "--file", "-f", help="Current file; '%' in TEXT expands to it."
    ),
    command: str | None = CmdOpt,
    sink: str | None = SinkOpt,
    capture_delay: float | None = DelayOpt,
    verbose: bool = VerboseOpt,
    config_file: str | None = ConfigOpt,
) -> None:
    """Send text to a REPL and print what it printed back."""
    setup_logging(verbose)
    config = _load_config(config_file, command, sink, capture_delay)
    payload = " ".join(text)
    code = asyncio.run(_run(config, lambda s: s.send_text(payload, current_file=file)))
    raise typer.Exit(code)


@app.command("cell")
def cell_cmd(
    path: str = typer.Argument(help="Source file."),
    line: int = typer.Option(..., "--line", "-l", help="Line inside the cell (1-based)."),
    command: str | None = CmdOpt,
    sink: str | None = SinkOpt,
    capture_delay: float | None = DelayOpt,
    verbose: bool = VerboseOpt,
    config_file: str | None = ConfigOpt,
) -> None:
    """Send the cell (between '# %%', 'In[n]' or ``` markers) under LINE."""
    setup_logging(verbose)
    config = _load_config(config_file, command, sink, capture_delay)

    async def _action(shelly: Shelly) -> SendAck | None:
        lines = await _read_lines(path)
        sent = await shelly.send_cell(lines, line)
        if sent is None:
            return None
        if sent.next_cell_start is not None:
            console.print(f"[dim]next cell at line {sent.next_cell_start}[/dim]")
        return sent.ack

    raise typer.Exit(asyncio.run(_run(config, _action)))


@app.command("range")
def range_cmd(
    path: str = typer.Argument(help="Source file."),
    start: str = typer.Option(..., "--start", "-s", help="LINE or LINE:COL"),
    end: str = typer.Option(..., "--end", "-e", help="LINE or LINE:COL (column inclusive)"),
    char: bool = typer.Option(False, "--char", help="Characterwise instead of linewise."),
    command: str | None = CmdOpt,
    sink: str | None = SinkOpt,
    capture_delay: float | None = DelayOpt,
    verbose: bool = VerboseOpt,
    config_file: str | None = ConfigOpt,
) -> None:
    """Send a line or character range of a file."""
    setup_logging(verbose)
    config = _load_config(config_file, command, sink, capture_delay)
    start_pos = _parse_position(start)
    end_pos = _parse_position(end)
    unit = RangeUnit.CHAR if char else RangeUnit.LINE

    async def _action(shelly: Shelly) -> SendAck | None:
        lines = await _read_lines(path)
        return await shelly.send_range(lines, start_pos, end_pos, unit)

    raise typer.Exit(asyncio.run(_run(config, _action)))


@app.command("cells")
def cells_cmd(
    path: str = typer.Argument(help="Source file."),
    config_file: str | None = ConfigOpt,
) -> None:
    """List the cells of a file."""
    config = ShellyConfig.load(config_file)
    rule = DEFAULT_DELIMITER_RULE.extend(config.cells.extra_delimiter_patterns)
    lines = asyncio.run(_read_lines(path))

    table = Table(title=path)
    table.add_column("#", justify="right")
    table.add_column("lines", justify="right")
    table.add_column("first line")
    for i, cell in enumerate(iter_cells(lines, rule), start=1):
        table.add_row(str(i), f"{cell.start}-{cell.end}", cell.lines[0])
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
