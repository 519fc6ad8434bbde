"""
Destination handlers for backup archives.

Supports:
- LocalDestination: borg repository on a local path
- RemoteDestination: borg repository on a remote host reached via SSH

Each filesystem gets its own repository inside a destination, named after
the filesystem with '/' replaced by '_'.
"""

import os
import stat
import shlex
import logging
import posixpath
from typing import List, Optional, Tuple

import paramiko
from paramiko import SSHClient, AutoAddPolicy

from zfsborg.commands import CommandRunner
from .storage import BorgRepository, DEFAULT_ENCRYPTION


logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22


class DestinationError(Exception):
    """Raised when a destination cannot be prepared or reached."""
    pass


def repository_name(filesystem: str) -> str:
    """
    Name of the repository holding a filesystem's archives.

    '/' becomes '_'. Literal '_' and '%' are percent-escaped first, so two
    filesystems never share a name.

    Examples:
        pool/data -> pool_data
        tank/a_b  -> tank_a%5Fb
    """
    return filesystem.replace('%', '%25').replace('_', '%5F').replace('/', '_')


def parse_remote(remote: str) -> Tuple[Optional[str], str, str]:
    """
    Split a remote destination of the form [user@]host:directory.

    Returns:
        Tuple of (user or None, host, directory)

    Raises:
        ValueError: If the string is not of that form
    """
    host_part, sep, directory = remote.partition(':')
    if not sep or not host_part or not directory:
        raise ValueError(f"Remote destination must look like host:directory, got {remote!r}")

    user, _, host = host_part.rpartition('@')
    if not host:
        raise ValueError(f"Remote destination has no host: {remote!r}")

    return (user or None, host, directory)


class LocalDestination:
    """
    Borg repository under a local directory.
    """

    kind = 'local'

    def __init__(
        self,
        root: str,
        filesystem: str,
        passphrase: str,
        runner: CommandRunner,
        world_readable: bool = False,
        encryption: str = DEFAULT_ENCRYPTION
    ):
        """
        Args:
            root: Existing directory holding the repositories
            filesystem: Filesystem whose archives this destination stores
            passphrase: Repository passphrase
            runner: Command runner
            world_readable: Make the repository readable by everyone after
                each archive creation
            encryption: borg encryption mode for new repositories
        """
        self.root = root
        self.filesystem = filesystem
        self.world_readable = world_readable
        self.encryption = encryption
        self.repository_path = os.path.join(root, repository_name(filesystem))
        self.repository = BorgRepository(self.repository_path, passphrase, runner)

    def __repr__(self):
        return f'<LocalDestination {self.repository_path}>'

    def ensure(self) -> bool:
        """
        Make sure the repository exists, initializing it if needed.

        Returns:
            True if a new repository was initialized

        Raises:
            DestinationError: If the root directory is missing
            CommandError: If borg init fails
        """
        if not os.path.isdir(self.root):
            raise DestinationError(f"Local backup directory does not exist: {self.root}")

        if os.path.exists(self.repository_path):
            logger.debug(f"Local repository present: {self.repository_path}")
            return False

        self.repository.init(self.encryption)
        return True

    def after_create(self):
        """Widen repository permissions when configured."""
        if self.world_readable:
            self._widen_permissions()

    def _widen_permissions(self):
        """
        Make the repository world-readable (a+r files, a+rx directories).

        Raises:
            DestinationError: If permissions cannot be changed
        """
        logger.info(f"Making {self.repository_path} world-readable")

        read = stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH
        traverse = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH

        try:
            os.chmod(self.repository_path, stat.S_IMODE(os.stat(self.repository_path).st_mode) | read | traverse)
            for dirpath, dirnames, filenames in os.walk(self.repository_path):
                for name in dirnames:
                    path = os.path.join(dirpath, name)
                    os.chmod(path, stat.S_IMODE(os.stat(path).st_mode) | read | traverse)
                for name in filenames:
                    path = os.path.join(dirpath, name)
                    os.chmod(path, stat.S_IMODE(os.stat(path).st_mode) | read)
        except PermissionError as e:
            raise DestinationError(f"Permission denied widening {self.repository_path}: {e}")
        except OSError as e:
            raise DestinationError(f"Failed to widen permissions of {self.repository_path}: {e}")

    def cleanup(self):
        """Cleanup any resources. Local destination has no persistent connections."""
        pass


class RemoteDestination:
    """
    Borg repository on a remote host.

    The SSH connection is only needed to bootstrap the repository; borg
    itself talks to the host through its own ssh transport.
    """

    kind = 'remote'

    def __init__(
        self,
        remote: str,
        filesystem: str,
        passphrase: str,
        runner: CommandRunner,
        port: int = DEFAULT_SSH_PORT,
        key_file: Optional[str] = None,
        encryption: str = DEFAULT_ENCRYPTION
    ):
        """
        Initialize remote destination handler.

        Args:
            remote: [user@]host:directory
            filesystem: Filesystem whose archives this destination stores
            passphrase: Repository passphrase
            runner: Command runner
            port: SSH port
            key_file: Private key file (optional, agent/default keys otherwise)
            encryption: borg encryption mode for new repositories

        Raises:
            DestinationError: If remote is malformed
        """
        try:
            self.user, self.host, self.directory = parse_remote(remote)
        except ValueError as e:
            raise DestinationError(str(e))

        self.remote = remote
        self.filesystem = filesystem
        self.port = port
        self.key_file = key_file
        self.encryption = encryption
        self.repository_path = posixpath.join(self.directory, repository_name(filesystem))

        address = f"{self.user}@{self.host}" if self.user else self.host
        self.repository = BorgRepository(
            f"{address}:{self.repository_path}",
            passphrase,
            runner,
            rsh=self._borg_rsh()
        )

        self.ssh_client = None
        self.sftp_client = None

    def __repr__(self):
        return f'<RemoteDestination {self.repository.location}>'

    def _borg_rsh(self) -> Optional[str]:
        """ssh command for borg, only when it differs from plain 'ssh'."""
        cmd = ['ssh']
        if self.port != DEFAULT_SSH_PORT:
            cmd += ['-p', str(self.port)]
        if self.key_file:
            cmd += ['-i', os.path.expanduser(self.key_file)]
        return shlex.join(cmd) if len(cmd) > 1 else None

    def _connect(self):
        """
        Establish SSH connection.

        Raises:
            DestinationError: If connection fails
        """
        if self.sftp_client is not None:
            return

        try:
            self.ssh_client = SSHClient()
            self.ssh_client.load_system_host_keys()
            self.ssh_client.set_missing_host_key_policy(AutoAddPolicy())

            connect_kwargs = {
                'hostname': self.host,
                'port': self.port,
                'timeout': 30
            }
            if self.user:
                connect_kwargs['username'] = self.user
            if self.key_file:
                connect_kwargs['key_filename'] = os.path.expanduser(self.key_file)

            self.ssh_client.connect(**connect_kwargs)
            self.sftp_client = self.ssh_client.open_sftp()

        except paramiko.AuthenticationException as e:
            raise DestinationError(f"SSH authentication to {self.host} failed: {e}")
        except paramiko.SSHException as e:
            raise DestinationError(f"SSH connection to {self.host} failed: {e}")
        except OSError as e:
            raise DestinationError(f"Failed to connect to {self.host}: {e}")

    def _exists(self, path: str) -> bool:
        """
        Probe a remote path.

        A missing path is an expected answer, anything else is an error.

        Raises:
            DestinationError: If the probe fails for another reason
        """
        try:
            self.sftp_client.stat(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise DestinationError(f"Failed to probe {self.host}:{path}: {e}")

    def _makedirs(self, path: str):
        """
        Create a remote directory and its missing parents.

        Raises:
            DestinationError: If a directory cannot be created
        """
        current = '/' if path.startswith('/') else ''
        for part in path.strip('/').split('/'):
            if not part:
                continue
            current = posixpath.join(current, part) if current else part
            if self._exists(current):
                continue
            try:
                logger.info(f"Creating remote directory {self.host}:{current}")
                self.sftp_client.mkdir(current)
            except OSError as e:
                raise DestinationError(f"Failed to create {self.host}:{current}: {e}")

    def ensure(self) -> bool:
        """
        Make sure the remote repository exists.

        When the repository path is missing the parent directory is created
        over SFTP and the repository is initialized with borg over SSH.

        Returns:
            True if a new repository was initialized

        Raises:
            DestinationError: If the host cannot be reached or probed
            CommandError: If borg init fails
        """
        self._connect()

        if self._exists(self.repository_path):
            logger.debug(f"Remote repository present: {self.repository.location}")
            return False

        logger.info(f"Remote repository missing, bootstrapping {self.repository.location}")
        self._makedirs(self.directory)
        self.repository.init(self.encryption)
        return True

    def after_create(self):
        pass

    def cleanup(self):
        """Close SSH/SFTP connections."""
        if self.sftp_client:
            try:
                self.sftp_client.close()
            except Exception as e:
                logger.debug(f"Error closing SFTP session to {self.host}: {e}")
            self.sftp_client = None

        if self.ssh_client:
            try:
                self.ssh_client.close()
            except Exception as e:
                logger.debug(f"Error closing SSH connection to {self.host}: {e}")
            self.ssh_client = None


def create_destinations(config, filesystem: str, runner: CommandRunner) -> List:
    """
    Factory function to create the configured destinations of a filesystem.

    Args:
        config: BackupConfig
        filesystem: Filesystem being backed up
        runner: Command runner

    Returns:
        Present destinations, local first. Empty when none is configured.
    """
    destinations = []

    if config.local:
        destinations.append(LocalDestination(
            config.local,
            filesystem,
            config.passphrase,
            runner,
            world_readable=config.local_world_readable,
            encryption=config.encryption
        ))

    if config.remote:
        destinations.append(RemoteDestination(
            config.remote,
            filesystem,
            config.passphrase,
            runner,
            port=config.ssh_port,
            key_file=config.ssh_key,
            encryption=config.encryption
        ))

    return destinations
