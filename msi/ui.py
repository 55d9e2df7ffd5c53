"""Nord-themed terminal output: banner, messages, step indicator and reports."""

import logging
import time
from typing import TYPE_CHECKING, Iterable, Optional

import pyfiglet
from rich.align import Align
from rich.box import ROUNDED
from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

if TYPE_CHECKING:
    from msi.transaction import Step

logger = logging.getLogger(__name__)


class NordColors:
    """Nord color palette for consistent theming throughout the application."""

    # Polar Night (dark background)
    POLAR_NIGHT_1: str = "#2E3440"
    POLAR_NIGHT_4: str = "#4C566A"

    # Snow Storm (light text)
    SNOW_STORM_1: str = "#D8DEE9"
    SNOW_STORM_2: str = "#E5E9F0"

    # Frost (blue accents)
    FROST_1: str = "#8FBCBB"
    FROST_2: str = "#88C0D0"
    FROST_3: str = "#81A1C1"
    FROST_4: str = "#5E81AC"

    # Aurora (other accents)
    RED: str = "#BF616A"
    YELLOW: str = "#EBCB8B"
    GREEN: str = "#A3BE8C"
    PURPLE: str = "#B48EAD"


console = Console(
    theme=Theme(
        {
            "info": f"bold {NordColors.FROST_2}",
            "warning": f"bold {NordColors.YELLOW}",
            "error": f"bold {NordColors.RED}",
            "success": f"bold {NordColors.GREEN}",
            "step": f"{NordColors.FROST_2}",
            "command": f"bold {NordColors.FROST_4}",
            "path": f"italic {NordColors.FROST_1}",
        }
    )
)


def create_header(title: str, subtitle: str, version: str) -> Panel:
    """
    Create an ASCII art header using Pyfiglet with a Nord-themed gradient.

    Returns:
        Panel: A Rich Panel containing the styled header.
    """
    fonts = ["slant", "small", "standard"]
    ascii_art = ""
    for font in fonts:
        try:
            ascii_art = pyfiglet.Figlet(font=font, width=80).renderText(title)
            if ascii_art.strip():
                break
        except pyfiglet.FontNotFound:
            logger.debug(f"Font {font} not available")

    if not ascii_art.strip():
        ascii_art = f"=== {title} ===\n"

    colors = [NordColors.FROST_1, NordColors.FROST_2, NordColors.FROST_3, NordColors.FROST_4]
    styled = Text()
    for i, line in enumerate(line for line in ascii_art.splitlines() if line.strip()):
        styled.append(line + "\n", style=f"bold {colors[i % len(colors)]}")

    return Panel(
        styled,
        border_style=Style(color=NordColors.FROST_1),
        padding=(1, 2),
        box=ROUNDED,
        title=f"[bold {NordColors.SNOW_STORM_2}]v{version}[/]",
        title_align="right",
        subtitle=f"[bold {NordColors.SNOW_STORM_1}]{subtitle}[/]",
        subtitle_align="center",
    )


def print_message(text: str, style: str = NordColors.FROST_2, prefix: str = "•") -> None:
    """
    Print one styled console line; markup in ``text`` is shown literally.

    Args:
        text: The message to print
        style: Rich color for the whole line
        prefix: Symbol shown before the message
    """
    console.print(f"[{style}]{prefix} {escape(text)}[/{style}]")


def print_step(text: str) -> None:
    """
    Print and log the start of a step.

    Args:
        text: Step description
    """
    print_message(text, NordColors.FROST_3, "➜")
    logger.info(text)


def print_success(text: str) -> None:
    """
    Print a check-marked line and log it as a success.

    Args:
        text: The success message
    """
    print_message(text, NordColors.GREEN, "✓")
    logger.info(f"SUCCESS: {text}")


def print_warning(text: str) -> None:
    """
    Print a warning line and log it at WARNING level.

    Args:
        text: The warning message
    """
    print_message(text, NordColors.YELLOW, "⚠")
    logger.warning(text)


def print_error(text: str) -> None:
    """
    Print an error line and log it at ERROR level.

    Args:
        text: The error message
    """
    print_message(text, NordColors.RED, "✗")
    logger.error(text)


def print_section(title: str) -> None:
    """
    Print a section title underlined with a rule.

    Args:
        title: The section title
    """
    console.print()
    console.print(f"[bold {NordColors.FROST_2}]{title}[/]")
    console.print(f"[{NordColors.FROST_3}]{'─' * 60}[/]")
    logger.info(f"--- {title} ---")


class StepIndicator:
    """
    Scoped progress indicator for one blocking step.

    A background spinner runs while the block executes. On every exit path,
    including KeyboardInterrupt and SystemExit, the spinner is stopped, its
    line cleared and exactly one status line is printed.
    """

    def __init__(self, message: str, out: Optional[Console] = None) -> None:
        self.message = message
        self.console = out or console
        self.start_time = 0.0
        self._status = None

    def __enter__(self) -> "StepIndicator":
        self.start_time = time.time()
        if self.console.is_terminal:
            self._status = self.console.status(
                f"[bold {NordColors.FROST_2}]{self.message}[/]", spinner="dots"
            )
            self._status.start()
        logger.debug(f"Started: {self.message}")
        return self

    def update(self, message: str) -> None:
        if self._status is not None:
            self._status.update(f"[bold {NordColors.FROST_2}]{message}[/]")
        logger.debug(message)

    def stop(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.stop()
        elapsed = time.time() - self.start_time
        if exc_type is None:
            self.console.print(
                f"[{NordColors.GREEN}]✓[/] [{NordColors.FROST_2}]{self.message}[/] "
                f"[dim]({elapsed:.1f}s)[/dim]"
            )
        else:
            self.console.print(
                f"[{NordColors.RED}]✗[/] [{NordColors.FROST_2}]{self.message}[/] "
                f"[{NordColors.RED}]failed[/] after {elapsed:.1f}s"
            )


def status_report(steps: Iterable["Step"], title: str = "Run Status") -> None:
    """Display a table reporting the status of every step of a run."""
    icons = {"succeeded": "✓", "failed": "✗", "pending": "?", "running": "⋯"}
    styles = {"succeeded": "success", "failed": "error", "running": "warning"}

    table = Table(
        show_header=True,
        header_style=f"bold {NordColors.FROST_1}",
        border_style=NordColors.FROST_3,
        box=ROUNDED,
        title=f"[bold {NordColors.FROST_2}]{title}[/]",
        title_justify="center",
        expand=True,
    )
    table.add_column("Step", style=f"bold {NordColors.FROST_2}")
    table.add_column("Status", justify="center")
    table.add_column("Message", style=NordColors.SNOW_STORM_1, ratio=3)

    counts = {"succeeded": 0, "failed": 0, "pending": 0, "running": 0}
    for step in steps:
        st = step.status.value
        counts[st] = counts.get(st, 0) + 1
        table.add_row(
            step.name,
            f"[{styles.get(st, 'step')}]{icons.get(st, '?')} {st.upper()}[/]",
            step.error or step.description,
        )

    summary = Text()
    summary.append("Status Summary: ", style=f"bold {NordColors.FROST_3}")
    summary.append(f"{counts['succeeded']} Succeeded", style=f"bold {NordColors.GREEN}")
    summary.append(" | ")
    summary.append(f"{counts['failed']} Failed", style=f"bold {NordColors.RED}")
    summary.append(" | ")
    summary.append(f"{counts['pending']} Pending", style=f"bold {NordColors.POLAR_NIGHT_4}")

    console.print(
        Panel(
            Group(table, Align.center(summary)),
            border_style=Style(color=NordColors.FROST_4),
            padding=(0, 1),
            box=ROUNDED,
        )
    )
