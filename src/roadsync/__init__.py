"""
RoadSync - multi-store sync core for citizen road-issue reporting.

Decides which store is reachable, writes every report, notification and
photo to the best available one, and reconciles accounts and records
between the relational store, Firebase and the on-device fallback store.
"""

__version__ = "1.0.0"
__author__ = "RoadSync Team"

# Package-level imports for convenience
from .config import SyncConfig, get_config_manager
from .logger import get_logger

__all__ = ["SyncConfig", "get_config_manager", "get_logger"]
