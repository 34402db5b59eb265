"""Command line interface."""

from qbcli.cli.main import cli, main


__all__ = ["cli", "main"]
