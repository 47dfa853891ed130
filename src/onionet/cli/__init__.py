"""Command-line interface for onionet."""

from onionet.cli.main import create_parser, main

__all__ = ["create_parser", "main"]
