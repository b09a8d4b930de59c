"""Minimal retrieval-augmented generation over a single text document."""

__version__ = "0.1.0"
