"""Governance proposal watcher: one chat alert per proposal milestone."""

__version__ = "0.1.0"
