"""
ZFS snapshot inventory and lifecycle.

Snapshots are named <filesystem>@<tier>-<YYYYMMDD>. Because the date suffix
has a fixed width, sorting labels of one tier as strings sorts them by date.
"""

import time
import logging
from typing import List, Optional

from zfsborg.commands import CommandRunner
from .tiers import Tier


logger = logging.getLogger(__name__)

DEFAULT_SETTLE_DELAY = 5


def snapshot_name(filesystem: str, label: str) -> str:
    """Full ZFS name of a snapshot: pool/dataset@label."""
    return f"{filesystem}@{label}"


class SnapshotManager:
    """
    Reads, creates and destroys the snapshots of ZFS filesystems.
    """

    def __init__(self, runner: CommandRunner, settle_delay: float = DEFAULT_SETTLE_DELAY):
        """
        Args:
            runner: Command runner used for every zfs call
            settle_delay: Seconds to wait after creating a snapshot
        """
        self.runner = runner
        self.settle_delay = settle_delay

    def list(self, filesystem: str, tier: Tier) -> List[str]:
        """
        List the labels of a tier's snapshots, newest first.

        Snapshots of child datasets are ignored. No matching snapshot is not
        an error.

        Args:
            filesystem: Dataset name, e.g. pool/data
            tier: Tier to list

        Returns:
            Labels sorted descending
        """
        output = self.runner.run([
            'zfs', 'list', '-H', '-t', 'snapshot', '-o', 'name', '-d', '1', filesystem
        ])

        prefix = snapshot_name(filesystem, tier.prefix)
        labels = []
        for line in output.splitlines():
            name = line.strip()
            if name.startswith(prefix):
                labels.append(name.partition('@')[2])

        return sorted(labels, reverse=True)

    def latest(self, filesystem: str, tier: Tier) -> Optional[str]:
        """Newest label of a tier, or None when the tier has no snapshot."""
        labels = self.list(filesystem, tier)
        return labels[0] if labels else None

    def create(self, filesystem: str, label: str):
        """
        Take a snapshot and wait for it to settle before it gets mounted.

        Raises:
            CommandError: If zfs snapshot fails
        """
        name = snapshot_name(filesystem, label)
        logger.info(f"Creating snapshot {name}")
        self.runner.run(['zfs', 'snapshot', name])

        if self.settle_delay > 0:
            logger.debug(f"Waiting {self.settle_delay}s for {name} to settle")
            time.sleep(self.settle_delay)

    def destroy(self, filesystem: str, label: str):
        """
        Destroy a single snapshot.

        Raises:
            CommandError: If zfs destroy fails
        """
        name = snapshot_name(filesystem, label)
        logger.info(f"Destroying snapshot {name}")
        self.runner.run(['zfs', 'destroy', name])
