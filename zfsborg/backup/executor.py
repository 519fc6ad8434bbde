"""
Backup executor - archives one snapshot into every destination.

Workflow:
1. Mount the snapshot read-only under the mount root
2. Create a borg archive named after the label in each destination
3. Run the destination's post-create step (permission widening)
4. Unmount the snapshot, whatever happened in 2-3
"""

import os
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import List

from zfsborg.commands import CommandRunner, CommandError
from .destinations import repository_name
from .snapshots import snapshot_name
from .storage import DEFAULT_COMPRESSION, DEFAULT_EXCLUDE_MARKER


logger = logging.getLogger(__name__)

DEFAULT_MOUNT_ROOT = '/mnt/zfsborg'


def mount_point_for(mount_root: str, filesystem: str) -> str:
    """
    Mount point used while archiving a filesystem's snapshot.

    Derived from the filesystem name only, so two runs against the same
    filesystem must not overlap.
    """
    return os.path.join(mount_root, repository_name(filesystem))


@contextmanager
def snapshot_mounted(runner: CommandRunner, filesystem: str, label: str, mount_point: str):
    """
    Mount a snapshot read-only for the duration of the block.

    When the block fails, a failing umount is logged and the block's error
    is the one raised.

    Raises:
        CommandError: If mount or umount fails
        OSError: If the mount point cannot be created
    """
    name = snapshot_name(filesystem, label)
    os.makedirs(mount_point, exist_ok=True)

    logger.info(f"Mounting {name} on {mount_point}")
    runner.run(['mount', '-t', 'zfs', '-o', 'ro', name, mount_point])
    try:
        yield mount_point
    except BaseException:
        logger.info(f"Unmounting {mount_point}")
        try:
            runner.run(['umount', mount_point])
        except CommandError as e:
            logger.error(f"Failed to unmount {mount_point}: {e}")
        raise

    logger.info(f"Unmounting {mount_point}")
    runner.run(['umount', mount_point])


class BackupExecutor:
    """
    Archives a single snapshot of a filesystem.
    """

    def __init__(
        self,
        filesystem: str,
        label: str,
        destinations: List,
        runner: CommandRunner,
        mount_root: str = DEFAULT_MOUNT_ROOT,
        compression: str = DEFAULT_COMPRESSION,
        exclude_marker: str = DEFAULT_EXCLUDE_MARKER
    ):
        """
        Initialize backup executor.

        Args:
            filesystem: Dataset name, e.g. pool/data
            label: Snapshot label, also used as archive name
            destinations: Destinations to archive into (may be empty)
            runner: Command runner
            mount_root: Directory under which the snapshot is mounted
            compression: borg compression spec
            exclude_marker: Marker file excluding a directory from archives
        """
        self.filesystem = filesystem
        self.label = label
        self.destinations = destinations
        self.runner = runner
        self.mount_root = mount_root
        self.compression = compression
        self.exclude_marker = exclude_marker
        self.archives = []
        self.logs = []

    @property
    def mount_point(self) -> str:
        return mount_point_for(self.mount_root, self.filesystem)

    def execute(self) -> List[str]:
        """
        Execute the backup.

        A failure in any destination aborts the backup; the snapshot is
        unmounted before the error propagates.

        Returns:
            Archive locations created (repo::label)

        Raises:
            CommandError: If mount, borg create or umount fails
            DestinationError: If a post-create step fails
        """
        name = snapshot_name(self.filesystem, self.label)

        if not self.destinations:
            self._log(f"No destination configured for {self.filesystem}, skipping backup of {name}")
            return self.archives

        self._log(f"Starting backup of {name}")

        with snapshot_mounted(self.runner, self.filesystem, self.label, self.mount_point) as source_dir:
            for destination in self.destinations:
                self._log(f"Archiving to {destination.kind} destination")
                archive = destination.repository.create(
                    self.label,
                    source_dir,
                    compression=self.compression,
                    exclude_marker=self.exclude_marker
                )
                destination.after_create()
                self.archives.append(archive)
                self._log(f"Archive created: {archive}")

        self._log(f"Backup of {name} completed ({len(self.archives)} archive(s))")
        return self.archives

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
