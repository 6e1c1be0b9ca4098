"""Sysvault CLI: Typer-based command-line interface.

Provides the ``sysvault`` command with ``backup`` and ``restore``
subcommands. All output uses Rich for formatted terminal display.
"""
