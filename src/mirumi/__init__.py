"""Mirumi: personal task tracker with a shared countdown timer."""

__version__ = "0.1.0"
