"""Sluice package entrypoint."""

from sluice.cli.app import main as _cli_main


def main() -> None:
    """Run the Sluice CLI."""
    _cli_main()
