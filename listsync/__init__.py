"""
ListSync: offline-first list synchronization engine.
"""

__version__ = "0.1.0"
