"""Mimic — declarative dotfile and package reconciliation."""

__version__ = "0.1.0"
