"""Releaseboard CLI — Typer-based command-line interface.

Provides the ``releaseboard`` command with subcommands for running the
server, viewing the board, and managing releases from the terminal.

All output uses Rich for formatted terminal display.
"""
