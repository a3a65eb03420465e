"""Dated to-do list with a plain-text task file and a small web view."""

__version__ = "0.1.0"
