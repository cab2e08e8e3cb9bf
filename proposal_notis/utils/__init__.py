"""Utility helpers for the Governance Proposal Watcher."""
