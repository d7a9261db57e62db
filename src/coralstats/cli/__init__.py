"""Command-line interface modules for the CoralStats API server.

This package contains core execution logic, making scripts/ optional and deletable.
"""

from coralstats.cli.serve import run_server

__all__ = ['run_server']
