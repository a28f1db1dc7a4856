"""
Skyvault - versioned, snapshot-scoped archive of a social graph.
"""

__version__ = "0.4.0"
