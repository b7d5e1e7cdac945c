"""Operator-facing command line surface."""

from publisher_info_store.ui.cli import CLIError, build_parser, run_cli

__all__ = ["CLIError", "build_parser", "run_cli"]
