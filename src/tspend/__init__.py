# src/tspend/__init__.py
"""Build, validate and project treasury spend transactions."""

__version__ = "0.1.0"
