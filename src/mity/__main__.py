"""
Entry point for python -m mity.

This allows the package to be executed as a module:
    python -m mity --help
"""

from .cli import app

if __name__ == "__main__":
    app()
