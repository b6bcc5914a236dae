"""Airlift CLI: Typer-based command-line interface.

Provides the ``airlift`` command with subcommands for publishing a staging
directory, exporting and diffing registry snapshots, and inspecting the
engine caches.

All output uses Rich for formatted terminal display.
"""
