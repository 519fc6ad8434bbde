"""
Run coordination for zfsborg.

Manages:
- Scheduled runs: classify, snapshot, archive and prune every filesystem
- One-off runs: archive an existing, operator-named snapshot of every
  filesystem, without classification or retention

Filesystems are processed one at a time. The first error aborts the whole
run; work already done for earlier filesystems is left in place.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from zfsborg.commands import CommandRunner
from zfsborg.config import BackupConfig
from zfsborg.backup.tiers import Tier, classify
from zfsborg.backup.snapshots import SnapshotManager
from zfsborg.backup.destinations import create_destinations
from zfsborg.backup.executor import BackupExecutor
from zfsborg.backup.retention import RetentionManager


logger = logging.getLogger(__name__)


class BackupScheduler:
    """
    Drives backups for all filesystems of a configuration.
    """

    def __init__(self, config: BackupConfig, runner: Optional[CommandRunner] = None):
        """
        Args:
            config: Validated backup configuration
            runner: Command runner (a real one by default)
        """
        self.config = config
        self.runner = runner or CommandRunner()
        self.snapshots = SnapshotManager(self.runner, settle_delay=config.settle_delay)

    def run(self, today: Optional[date] = None) -> List[Dict[str, Any]]:
        """
        Scheduled lifecycle for every configured filesystem.

        Args:
            today: Date to classify against (defaults to today)

        Returns:
            One summary dict per filesystem

        Raises:
            CommandError: If any external command fails
            DestinationError: If a destination cannot be prepared
        """
        today = today or date.today()
        logger.info(f"Scheduled backup run started for {len(self.config.filesystems)} filesystem(s)")

        results = []
        for filesystem in self.config.filesystems:
            results.append(self._run_filesystem(filesystem, today))

        logger.info("Scheduled backup run finished")
        return results

    def snap(self, label: str) -> List[Dict[str, Any]]:
        """
        Archive the existing snapshot <filesystem>@<label> of every
        configured filesystem.

        The snapshot is expected to exist already; it is neither created
        nor subject to retention.

        Returns:
            One summary dict per filesystem

        Raises:
            CommandError: If any external command fails
            DestinationError: If a destination cannot be prepared
        """
        logger.info(f"One-off backup of '{label}' started for {len(self.config.filesystems)} filesystem(s)")

        results = []
        for filesystem in self.config.filesystems:
            logger.info(f"Processing {filesystem}")
            destinations = create_destinations(self.config, filesystem, self.runner)
            try:
                self._ensure_destinations(destinations)
                executor = self._executor(filesystem, label, destinations)
                archives = executor.execute()
            finally:
                self._cleanup(destinations)

            results.append({
                'filesystem': filesystem,
                'label': label,
                'archives': archives
            })
            logger.info(f"Finished {filesystem}")

        logger.info(f"One-off backup of '{label}' finished")
        return results

    def _run_filesystem(self, filesystem: str, today: date) -> Dict[str, Any]:
        """Classify, snapshot, archive and prune one filesystem."""
        logger.info(f"Processing {filesystem}")

        destinations = create_destinations(self.config, filesystem, self.runner)
        try:
            self._ensure_destinations(destinations)

            decision = classify(
                today,
                has_month=self.snapshots.latest(filesystem, Tier.MONTH) is not None,
                has_week=self.snapshots.latest(filesystem, Tier.WEEK) is not None,
                weekly_day=self.config.weekly_day
            )
            reason = 'forced, none exists yet' if decision.forced else 'scheduled'
            logger.info(f"Selected {decision.tier.value} tier for {filesystem} ({reason}): {decision.label}")

            self.snapshots.create(filesystem, decision.label)

            executor = self._executor(filesystem, decision.label, destinations)
            archives = executor.execute()

            retention = RetentionManager(self.snapshots, destinations, self.config.retention)
            retention_summary = retention.purge(filesystem, decision.tier)
        finally:
            self._cleanup(destinations)

        logger.info(f"Finished {filesystem}")
        return {
            'filesystem': filesystem,
            'tier': decision.tier.value,
            'label': decision.label,
            'forced': decision.forced,
            'archives': archives,
            'retention': retention_summary
        }

    def _executor(self, filesystem: str, label: str, destinations: List) -> BackupExecutor:
        return BackupExecutor(
            filesystem,
            label,
            destinations,
            self.runner,
            mount_root=self.config.mount_root,
            compression=self.config.compression,
            exclude_marker=self.config.exclude_marker
        )

    def _ensure_destinations(self, destinations: List):
        for destination in destinations:
            if destination.ensure():
                logger.info(f"Initialized {destination.kind} repository {destination.repository.location}")

    def _cleanup(self, destinations: List):
        for destination in destinations:
            destination.cleanup()


def run_scheduled(config: BackupConfig, today: Optional[date] = None) -> List[Dict[str, Any]]:
    """
    Run the scheduled lifecycle for a configuration.

    This is what `zfsborg run` calls, typically once a day from cron.
    """
    return BackupScheduler(config).run(today=today)


def run_named_snapshot(config: BackupConfig, label: str) -> List[Dict[str, Any]]:
    """Archive an existing snapshot label of every filesystem."""
    return BackupScheduler(config).snap(label)
