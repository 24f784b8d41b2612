"""
Command line interface for qingcycle.
"""

from .main import cli

__all__ = ["cli"]
