"""
publisher-info-store

Embedded SQLite store for a browser rewards subsystem: publisher reputation, monthly
activity, one-time and recurring contributions, and media-to-publisher mappings.

Importing the package has no side effects (no config loading, no logging setup).
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
