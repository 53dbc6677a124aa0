"""
readaloud package initialization.

The CLI entry point is exposed via `readaloud.cli:main`.
"""

from .cli import main

__all__ = ["main"]
