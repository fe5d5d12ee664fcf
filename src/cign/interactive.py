"""Interactive prompt helpers built on typer."""

from __future__ import annotations

from collections.abc import Sequence

import click
import typer

from .exceptions import ConfirmationDeclined


def confirm(message: str, default: bool = False) -> bool:
    try:
        return bool(typer.confirm(message, default=default))
    except click.exceptions.Abort as e:
        raise ConfirmationDeclined("Prompt cancelled") from e


def text_input(message: str, default: str | None = None) -> str:
    try:
        return str(typer.prompt(message, default=default)).strip()
    except click.exceptions.Abort as e:
        raise ConfirmationDeclined("Prompt cancelled") from e


def choose(message: str, options: Sequence[str]) -> str:
    """Ask for one of ``options``; the first one is the default."""
    if not options:
        raise ValueError("nothing to choose from")
    try:
        return typer.prompt(
            message,
            type=click.Choice(list(options)),
            default=options[0],
            show_choices=True,
        )
    except click.exceptions.Abort as e:
        raise ConfirmationDeclined("Prompt cancelled") from e
