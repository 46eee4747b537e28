"""Version information for mity."""

__version__ = "0.1.0"
