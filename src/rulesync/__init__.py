"""Declarative skill installation from remote repositories."""

__version__ = "0.1.0"
