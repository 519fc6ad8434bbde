"""
Retention policy enforcement for backups.

Snapshots and archives are pruned differently:
- ZFS snapshots: keep exactly the newest N snapshots of the tier the run
  acted on, destroy the rest oldest first.
- Borg archives: every destination prunes itself with the full
  daily/weekly/monthly policy, using borg's own age buckets. What borg
  removes need not match the snapshots destroyed here.
"""

import logging
from datetime import datetime
from typing import List, Dict, Any

from .snapshots import SnapshotManager, snapshot_name
from .tiers import Tier, RetentionPolicy


logger = logging.getLogger(__name__)


class RetentionManager:
    """
    Manages retention policy enforcement for one filesystem's run.
    """

    def __init__(self, snapshots: SnapshotManager, destinations: List, policy: RetentionPolicy):
        """
        Initialize retention manager.

        Args:
            snapshots: Snapshot manager
            destinations: Destinations to prune (may be empty)
            policy: Keep-counts per tier
        """
        self.snapshots = snapshots
        self.destinations = destinations
        self.policy = policy
        self.logs = []

    def purge(self, filesystem: str, tier: Tier) -> Dict[str, Any]:
        """
        Enforce the retention policy after a backup of the given tier.

        Deletions are not transactional: a failure part way leaves the
        oldest snapshots destroyed and the rest in place.

        Args:
            filesystem: Dataset name
            tier: Tier the run acted on

        Returns:
            Dict with summary of cleanup operations:
            {
                'filesystem': str,
                'tier': str,
                'snapshots_found': int,
                'snapshots_deleted': List[str],
                'destinations_pruned': List[str],
                'logs': List[str]
            }

        Raises:
            CommandError: If a zfs destroy or borg prune fails
        """
        keep = self.policy.keep_for(tier)
        labels = self.snapshots.list(filesystem, tier)

        summary = {
            'filesystem': filesystem,
            'tier': tier.value,
            'snapshots_found': len(labels),
            'snapshots_deleted': [],
            'destinations_pruned': []
        }

        self._log(f"Enforcing {tier.value} retention for {filesystem}: {len(labels)} snapshot(s), keeping {keep}")

        if len(labels) <= keep:
            self._log(f"Nothing to delete for {filesystem} ({tier.value})")
        else:
            # labels are newest first, so the excess is the tail
            for label in reversed(labels[keep:]):
                self.snapshots.destroy(filesystem, label)
                summary['snapshots_deleted'].append(label)
                self._log(f"Deleted snapshot: {snapshot_name(filesystem, label)}")

        for destination in self.destinations:
            destination.repository.prune(self.policy)
            summary['destinations_pruned'].append(destination.repository.location)
            self._log(f"Pruned {destination.kind} repository: {destination.repository.location}")

        self._log(
            f"Retention enforcement complete for {filesystem}. "
            f"Snapshots deleted: {len(summary['snapshots_deleted'])}, "
            f"Repositories pruned: {len(summary['destinations_pruned'])}"
        )

        summary['logs'] = self.logs
        return summary

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)
