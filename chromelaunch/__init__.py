"""Locate, download and launch Chrome/Chromium with remote debugging enabled."""

__version__ = "0.1.0"
__all__ = ["executable", "fetcher", "process"]