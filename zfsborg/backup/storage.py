"""
Borg repository handler.

Every archive store, local or remote, is a borg repository. Borg does the
deduplication, encryption and horizon-based pruning; this module only builds
the command lines and hands borg the passphrase through its environment.
"""

import logging
from typing import Dict, Optional

from zfsborg.commands import CommandRunner
from .tiers import RetentionPolicy


logger = logging.getLogger(__name__)

DEFAULT_COMPRESSION = 'lz4'
DEFAULT_EXCLUDE_MARKER = '.nobackup'
DEFAULT_ENCRYPTION = 'repokey'


class BorgRepository:
    """
    Handler for one borg repository.

    Archives are addressed as {location}::{label}.
    """

    def __init__(
        self,
        location: str,
        passphrase: str,
        runner: CommandRunner,
        rsh: Optional[str] = None
    ):
        """
        Args:
            location: Repository path or host:path
            passphrase: Repository passphrase
            runner: Command runner
            rsh: Value for BORG_RSH (ssh command used for remote repositories)
        """
        self.location = location
        self.passphrase = passphrase
        self.runner = runner
        self.rsh = rsh

    def __repr__(self):
        return f'<BorgRepository {self.location}>'

    def _env(self) -> Dict[str, str]:
        env = {'BORG_PASSPHRASE': self.passphrase}
        if self.rsh:
            env['BORG_RSH'] = self.rsh
        return env

    def archive_location(self, label: str) -> str:
        return f"{self.location}::{label}"

    def init(self, encryption: str = DEFAULT_ENCRYPTION):
        """
        Initialize a new repository.

        Raises:
            CommandError: If borg init fails
        """
        logger.info(f"Initializing borg repository {self.location} (encryption: {encryption})")
        self.runner.run(
            ['borg', 'init', '--encryption', encryption, self.location],
            env=self._env(),
            capture=False
        )

    def create(
        self,
        label: str,
        source_dir: str,
        compression: str = DEFAULT_COMPRESSION,
        exclude_marker: str = DEFAULT_EXCLUDE_MARKER
    ) -> str:
        """
        Create an archive of a directory.

        The archive is created from inside source_dir so that stored paths
        are relative to it.

        Args:
            label: Archive name
            source_dir: Directory to archive (the mounted snapshot)
            compression: borg compression spec
            exclude_marker: Directories containing this file are skipped

        Returns:
            Archive location (repo::label)

        Raises:
            CommandError: If borg create fails
        """
        archive = self.archive_location(label)
        logger.info(f"Creating archive {archive}")

        self.runner.run(
            [
                'borg', 'create',
                '--stats',
                '--verbose',
                '--compression', compression,
                '--exclude-if-present', exclude_marker,
                archive,
                '.'
            ],
            env=self._env(),
            cwd=source_dir,
            capture=False
        )
        return archive

    def prune(self, policy: RetentionPolicy):
        """
        Let borg prune the repository with its daily/weekly/monthly buckets.

        All three keep-counts are always passed, whatever tier the run acted
        on.

        Raises:
            CommandError: If borg prune fails
        """
        logger.info(
            f"Pruning {self.location} "
            f"(daily={policy.day_keep}, weekly={policy.week_keep}, monthly={policy.month_keep})"
        )
        self.runner.run(
            [
                'borg', 'prune',
                '--stats',
                '--verbose',
                '--keep-daily', str(policy.day_keep),
                '--keep-weekly', str(policy.week_keep),
                '--keep-monthly', str(policy.month_keep),
                self.location
            ],
            env=self._env(),
            capture=False
        )
