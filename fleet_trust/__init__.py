"""
.. include:: ../README.md
"""

__all__ = [
    "pem",
    "bundle",
    "source",
    "hub",
    "descriptor",
    "cluster",
    "transport",
    "reconciler",
    "store",
    "retry",
    "config",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
