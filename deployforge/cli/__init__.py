"""Deployforge CLI: Typer-based command-line interface.

Provides the ``deployforge`` command with ``deploy``, ``upgrade`` and
``env`` command groups.

All output uses Rich for formatted terminal display.
"""
