"""
Backup module for zfsborg.

This module handles the core backup functionality including:
- Tier classification (month/week/day)
- ZFS snapshot inventory and lifecycle
- Destinations (local and SSH) holding borg repositories
- Execution orchestration
- Retention policy enforcement
"""

from .tiers import Tier, TierDecision, RetentionPolicy, classify, make_label
from .snapshots import SnapshotManager
from .storage import BorgRepository
from .destinations import LocalDestination, RemoteDestination, DestinationError, create_destinations
from .executor import BackupExecutor
from .retention import RetentionManager

__all__ = [
    'Tier',
    'TierDecision',
    'RetentionPolicy',
    'classify',
    'make_label',
    'SnapshotManager',
    'BorgRepository',
    'LocalDestination',
    'RemoteDestination',
    'DestinationError',
    'create_destinations',
    'BackupExecutor',
    'RetentionManager'
]
