"""Kiosk Core - playback engine for digital signage devices."""

__version__ = "0.1.0"
