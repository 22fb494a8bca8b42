"""
Configuration for compound synchronization.
"""

from .config_loader import SyncConfig

__all__ = ["SyncConfig"]
