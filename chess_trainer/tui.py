"""Terminal front end for Chess Trainer.

Renders the board, highlight map, game info and coach transcript with
Rich and runs an interactive game loop against the engine. All game
logic lives in GameSession; this module only reads its state and
forwards user input.

Commands in the play loop:
    e2          click a square (select, deselect, or move there)
    e2e4        play a move directly
    mark e4     toggle a manual mark
    ? question  ask the coach
    new         new game with the same color
    flip        new game with the other color
    retry       ask the engine to move again after a failure
    level N     change difficulty (0-7)
    time S      change thinking time in seconds
    quit        leave
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import chess
from rich.console import Console, Group
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from chess_trainer import evaluator
from chess_trainer.config import SETTINGS
from chess_trainer.errors import ChessTrainerError, ConfigurationError
from chess_trainer.models import DIFFICULTY_LEVELS, ChatMessage, HighlightKind, SessionState
from chess_trainer.responder import ResponseSelector
from chess_trainer.session import GameSession

# Unicode piece symbols
_PIECE_SYMBOLS = {
    "K": "♔", "Q": "♕", "R": "♖", "B": "♗",
    "N": "♘", "P": "♙",
    "k": "♚", "q": "♛", "r": "♜", "b": "♝",
    "n": "♞", "p": "♟",
}

_LIGHT_SQ = "grey85"
_DARK_SQ = "grey50"
_LAST_MOVE = "yellow"
_HIGHLIGHT_STYLES = {
    HighlightKind.LEGAL_DESTINATION: "green3",
    HighlightKind.INVALID_ATTEMPT: "red3",
    HighlightKind.MANUAL_MARK: "gold1",
}


def render_board(
    state: SessionState,
    highlights: dict[chess.Square, HighlightKind] | None = None,
    status: str = "In progress",
) -> Panel:
    """Render the board as a Rich Panel, oriented to the player.

    Args:
        state: Session snapshot.
        highlights: Square highlight map from the board interaction.
        status: Game status line used as the panel title.

    Returns:
        Panel containing the board.
    """
    highlights = highlights or {}
    board = chess.Board(state.current_fen)
    is_flipped = state.player_color == chess.BLACK

    last_move_squares: set[int] = set()
    if state.history:
        last = state.history[-1]
        last_move_squares = {last.from_square, last.to_square}

    table = Table(show_header=False, show_edge=False, pad_edge=False,
                  box=None, padding=(0, 0))
    table.add_column(width=2, justify="right")
    for _ in range(8):
        table.add_column(width=3, justify="center")

    ranks = range(8) if is_flipped else range(7, -1, -1)
    files = list(range(7, -1, -1)) if is_flipped else list(range(8))

    for rank in ranks:
        row: list[Text] = [Text(str(rank + 1), style="bold")]
        for file in files:
            sq = chess.square(file, rank)
            piece = board.piece_at(sq)

            is_light = (rank + file) % 2 == 1
            bg = _LIGHT_SQ if is_light else _DARK_SQ
            if sq in last_move_squares:
                bg = _LAST_MOVE
            if sq in highlights:
                bg = _HIGHLIGHT_STYLES[highlights[sq]]

            if piece is not None:
                symbol = _PIECE_SYMBOLS.get(piece.symbol(), "?")
                row.append(Text(f" {symbol} ", style=f"black on {bg}"))
            else:
                row.append(Text("   ", style=f"on {bg}"))
        table.add_row(*row)

    file_labels = [Text("  ")]
    for f in files:
        file_labels.append(Text(f" {chess.FILE_NAMES[f]} ", style="bold"))
    table.add_row(*file_labels)

    return Panel(table, title=status, border_style="blue")


def render_sidebar(state: SessionState, status: str = "In progress") -> Panel:
    """Render game info: side, level, engine status and move list."""
    level = DIFFICULTY_LEVELS[state.difficulty_index]
    parts: list[str] = [
        f"[bold]Playing as:[/bold] {evaluator.color_name(state.player_color).capitalize()}",
        f"[bold]Difficulty:[/bold] {level.name} (Elo {level.elo})",
        f"  [italic]{level.description}[/italic]",
        f"[bold]Thinking time:[/bold] {state.thinking_time_seconds:g} seconds",
        f"[bold]Moves played:[/bold] {len(state.history)}",
        f"[bold]Game status:[/bold] {status}",
        "",
    ]

    if state.is_thinking:
        parts.append("[yellow]Engine is thinking...[/yellow]")
    elif state.engine_failed:
        parts.append("[red]No engine: the opponent will not move[/red]")
    elif not state.engine_ready:
        parts.append("[dim]Initializing chess engine...[/dim]")
    if state.last_error is not None:
        parts.append(f"[red]{state.last_error}[/red]")

    if state.history:
        parts.append("")
        parts.append("[bold]Moves:[/bold]")
        sans = [entry.san for entry in state.history]
        for i in range(0, len(sans), 2):
            black = sans[i + 1] if i + 1 < len(sans) else ""
            parts.append(f"  {i // 2 + 1}. {sans[i]} {black}")

    return Panel("\n".join(parts), title="Game Information", border_style="green")


def render_transcript(messages: list[ChatMessage], limit: int = 6) -> Panel:
    """Render the last few coach messages."""
    if not messages:
        body = Text("Ask the coach with '? your question'.", style="dim")
        return Panel(body, title="Coach", border_style="magenta")

    lines = Text()
    for message in messages[-limit:]:
        if message.sender == "user":
            lines.append("You: ", style="bold cyan")
        else:
            lines.append("Coach: ", style="bold magenta")
        lines.append(message.text + "\n")
    return Panel(lines, title="Coach", border_style="magenta")


def render_session(session: GameSession) -> Group:
    state = session.get_session_state()
    status = session.status()
    return Group(
        render_board(state, session.get_highlight_map(), status),
        render_sidebar(state, status),
        render_transcript(session.transcript),
    )


def _parse_square(token: str) -> chess.Square | None:
    try:
        return chess.parse_square(token)
    except ValueError:
        return None


async def _handle_command(session: GameSession, console: Console, line: str) -> bool:
    """Apply one command. Returns False when the user wants to quit."""
    command = line.strip()
    if not command:
        return True
    lowered = command.lower()

    if lowered in ("quit", "q", "exit"):
        return False
    if lowered == "new":
        session.reset_session()
    elif lowered == "flip":
        session.reset_session(not session.state.player_color)
    elif lowered == "retry":
        if not session.retry_opponent():
            console.print("[red]Nothing to retry[/red]")
    elif command.startswith("?"):
        with console.status("Coach is thinking..."):
            await session.ask(command[1:].strip())
    elif lowered.startswith("mark "):
        square = _parse_square(lowered[5:].strip())
        if square is not None:
            session.interaction.toggle_mark(square)
    elif lowered.startswith(("level ", "time ")):
        name, _, value = lowered.partition(" ")
        try:
            if name == "level":
                session.set_difficulty(int(value))
            else:
                session.set_thinking_time(float(value))
        except (ValueError, ConfigurationError) as exc:
            console.print(f"[red]{exc}[/red]")
    elif (square := _parse_square(lowered)) is not None:
        await session.interaction.click(square)
    else:
        try:
            move = chess.Move.from_uci(lowered)
        except ValueError:
            console.print(f"[red]Unknown command: {command}[/red]")
            return True
        if not await session.submit_human_move(move):
            console.print(f"[red]Illegal move: {command}[/red]")

    if session.scheduler.pending:
        with console.status("Engine is thinking..."):
            await session.scheduler.join()
    return True


async def play(
    player_color: chess.Color,
    level: int,
    thinking_time: float,
    console: Console,
) -> None:
    """Interactive game loop against the engine."""
    session = GameSession(player_color=player_color)
    try:
        session.set_difficulty(level)
        session.set_thinking_time(thinking_time)
        with console.status("Initializing chess engine..."):
            await session.start()
            await session.scheduler.join()

        while True:
            console.print(render_session(session))
            line = await asyncio.to_thread(console.input, "[bold]> [/bold]")
            if not await _handle_command(session, console, line):
                break
    finally:
        session.close()


async def analyze(fen: str, console: Console) -> None:
    """Print the heuristic evaluation and a coach summary for a FEN."""
    result = evaluator.evaluate(fen)
    console.print(f"Position: {fen}")
    console.print(f"Material balance: {result.material_balance:+d}")
    for threat in result.threats:
        console.print(f"  [red]Threat:[/red] {threat}")
    for suggestion in result.suggestions:
        console.print(f"  [green]Suggestion:[/green] {suggestion}")
    selector = ResponseSelector(latency_seconds=0.0)
    reply = await selector.respond("Summarize the position", result, (), start_fen=fen)
    console.print(Panel(reply or "", title="Coach", border_style="magenta"))


def main() -> None:
    """CLI entry point for the terminal trainer."""
    parser = argparse.ArgumentParser(
        description="Chess Trainer - play the engine and ask the coach"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    play_parser = subparsers.add_parser("play", help="Play against the engine")
    play_parser.add_argument(
        "--color", choices=("white", "black"), default="white",
        help="Side to play (default white)",
    )
    play_parser.add_argument(
        "--level", type=int, default=SETTINGS.difficulty_index,
        help=f"Difficulty 0-{len(DIFFICULTY_LEVELS) - 1}",
    )
    play_parser.add_argument(
        "--thinking-time", type=float, default=SETTINGS.thinking_time_seconds,
        help="Engine thinking time in seconds (1-10)",
    )

    analyze_parser = subparsers.add_parser("analyze", help="Evaluate a FEN position")
    analyze_parser.add_argument("fen", type=str, help="FEN string to analyze")

    args = parser.parse_args()

    console = Console()
    logging.basicConfig(
        level=SETTINGS.log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    try:
        if args.command == "play":
            color = chess.WHITE if args.color == "white" else chess.BLACK
            asyncio.run(play(color, args.level, args.thinking_time, console))
        elif args.command == "analyze":
            asyncio.run(analyze(args.fen, console))
        else:
            parser.print_help()
            sys.exit(1)
    except ChessTrainerError as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
