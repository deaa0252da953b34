"""Terminal user interface."""

from .console import SessionScreen, print_devices, format_remaining

__all__ = ["SessionScreen", "print_devices", "format_remaining"]
