"""Version info."""

__version__ = "0.2.0"
