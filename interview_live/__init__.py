"""interview-live: real-time AI interview session core."""

__version__ = "0.1.0"
