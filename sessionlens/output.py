"""
Rich Output Utilities
=====================

Terminal output for the SessionLens CLI using the Rich library.
Provides consistent styling for tables, panels and log output.

Library modules never print; they log. Only the CLI writes to the console.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.status import Status
from rich.table import Table
from rich.theme import Theme

from sessionlens.records import Pattern


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class LensColors:
    """SessionLens color palette using hex for truecolor terminal support."""
    ink: str = "#E6E6E6"       # primary text
    dim: str = "#9AA4B2"       # muted text
    lens: str = "#A78BFA"      # brand accent
    signal: str = "#22D3EE"    # cool accent
    steel: str = "#94A3B8"     # secondary accent
    ok: str = "#22C55E"        # success green
    warn: str = "#FBBF24"      # warning yellow
    err: str = "#EF4444"       # error red


def lens_theme(colors: LensColors = LensColors()) -> Theme:
    """
    Rich Theme for the SessionLens CLI.

    Style names are semantic so you can use them everywhere:
      console.print("...", style="sl.ok")
    """
    return Theme(
        {
            # Brand
            "sl.banner": f"bold {colors.lens}",
            "sl.subtitle": f"{colors.dim}",
            "sl.border": f"{colors.signal}",
            "sl.accent": f"bold {colors.lens}",
            "sl.muted": f"{colors.dim}",
            "sl.text": f"{colors.ink}",

            # Status
            "sl.ok": f"bold {colors.ok}",
            "sl.warn": f"bold {colors.warn}",
            "sl.err": f"bold {colors.err}",
            "sl.info": f"{colors.signal}",

            # Data display
            "sl.key": f"{colors.steel}",
            "sl.value": f"{colors.ink}",
            "sl.number": f"bold {colors.lens}",
            "sl.path": f"{colors.signal}",

            # Pattern types
            "sl.pattern.success": f"bold {colors.ok}",
            "sl.pattern.failure": f"bold {colors.err}",
            "sl.pattern.behavioral": f"{colors.steel}",

            "sl.table.header": f"bold {colors.signal}",
        }
    )


# =============================================================================
# Unicode / ASCII Fallbacks
# =============================================================================

def _can_use_unicode() -> bool:
    """Check if the terminal can handle the Unicode icons."""
    if os.name == 'nt':
        try:
            encoding = sys.stdout.encoding or 'utf-8'
            "✓✗•".encode(encoding)
            return True
        except (UnicodeEncodeError, LookupError, AttributeError):
            return False
    return True


_UNICODE_ICONS = {
    "check": "✓",
    "cross": "✗",
    "info": "ℹ",
    "bullet": "•",
    "star": "⭐",
}

_ASCII_ICONS = {
    "check": "[OK]",
    "cross": "[X]",
    "info": "[i]",
    "bullet": "-",
    "star": "[*]",
}

_ICONS = _UNICODE_ICONS if _can_use_unicode() else _ASCII_ICONS


def icon(name: str) -> str:
    """Get an icon by name, using ASCII fallback if needed."""
    return _ICONS.get(name, "")


# =============================================================================
# Global Console Instance
# =============================================================================

console = Console(theme=lens_theme())


# =============================================================================
# Basic Message Functions
# =============================================================================

def print_success(message: str) -> None:
    """Print a success message with checkmark."""
    console.print(f"[sl.ok]{icon('check')} {message}[/]")


def print_info(message: str) -> None:
    console.print(f"[sl.info]{icon('info')} {message}[/]")


def print_muted(message: str) -> None:
    console.print(f"[sl.muted]{message}[/]")


def print_header(title: str, style: str = "sl.accent") -> None:
    """Print a prominent section header with rule lines."""
    console.print()
    console.print(Rule(f"[{style}]{title}[/]", style=style))
    console.print()


def print_banner(subtitle: Optional[str] = None) -> None:
    console.print("[sl.banner]SessionLens[/]")
    if subtitle:
        console.print(f"[sl.subtitle]{subtitle}[/]")


# =============================================================================
# Data Display
# =============================================================================

def print_key_value_table(
    data: Dict[str, Any],
    *,
    title: Optional[str] = None,
    border_style: str = "sl.border",
) -> None:
    """Print multiple key-value pairs in a clean table format."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="sl.key")
    table.add_column("Value", style="sl.value")

    for key, value in data.items():
        table.add_row(key, str(value))

    if title:
        console.print(Panel(table, title=f"[bold]{title}[/]", border_style=border_style))
    else:
        console.print(table)


def create_table(
    *,
    title: Optional[str] = None,
    columns: Optional[List[str]] = None,
    show_header: bool = True,
    border_style: str = "sl.border",
    header_style: str = "sl.table.header",
) -> Table:
    """Create a styled Rich Table with the SessionLens theme."""
    table = Table(
        title=title,
        show_header=show_header,
        header_style=header_style,
        border_style=border_style,
        title_style="sl.accent",
    )

    if columns:
        for col in columns:
            table.add_column(col)

    return table


def print_table(table: Table) -> None:
    console.print(table)


def pattern_table(patterns: list[Pattern]) -> Table:
    """One row per pattern, coloured by type, with an auto-apply mark."""
    table = create_table(columns=["ID", "Type", "Name", "Confidence", "Samples", "Success", "Auto"])
    table.columns[0].no_wrap = True
    for p in patterns:
        type_style = f"sl.pattern.{p.pattern_type.value}"
        table.add_row(
            f"[sl.number]{p.pattern_id}[/]",
            f"[{type_style}]{p.pattern_type.value}[/]",
            escape(p.name),
            f"{p.confidence_score:.2f}",
            f"[sl.number]{p.sample_size}[/]",
            f"{p.success_rate:.0%}" if p.success_rate is not None else "[sl.muted]n/a[/]",
            f"[sl.ok]{icon('check')}[/]" if p.auto_apply else "",
        )
    return table


# =============================================================================
# Error Panels
# =============================================================================

def print_error_panel(message: str, title: str = "Error") -> None:
    """Print an error panel with red border."""
    console.print(Panel(
        f"[sl.err]{icon('cross')} {message}[/]",
        title=f"[sl.err]{title}[/]",
        border_style="sl.err",
        padding=(1, 2),
    ))


# =============================================================================
# Progress & Spinners
# =============================================================================

@contextmanager
def spinner(message: str, *, style: str = "sl.accent") -> Iterator[Status]:
    """
    Context manager for showing a spinner during long operations.

    Usage:
        with spinner("Ingesting logs..."):
            ingest()
    """
    with console.status(f"[{style}]{message}[/]", spinner="dots") as status:
        yield status


# =============================================================================
# Logging Integration
# =============================================================================

def setup_rich_logging(level: int = logging.INFO) -> None:
    """
    Route Python logging through Rich.

    Usage:
        setup_rich_logging(logging.DEBUG)
        logging.getLogger("sessionlens").info("Ingested 3 sessions")
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(
            console=console,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )],
    )
