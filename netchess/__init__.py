"""Two-player network chess over a point-to-point TCP connection."""

from .version import __version__
