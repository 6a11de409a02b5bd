"""Offline-first order modification and synchronization engine."""

__version__ = "1.0.0"
