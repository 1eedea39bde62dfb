"""Neph - push, configure and run scripts on a fleet of hosts over SSH."""

__version__ = "0.1.0"
