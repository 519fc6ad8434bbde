"""
Shared pytest fixtures for zfsborg tests.

This module provides fixtures for:
- A fake command runner simulating the zfs snapshot inventory
- Configuration files and loaded configurations
- Passphrase files and local repository roots
- Mock fixtures for external services (SSH)
"""

import logging
from unittest.mock import MagicMock, patch

import pytest
import yaml

from zfsborg.commands import CommandError
from zfsborg.config import load_config


class FakeRunner:
    """
    Stands in for CommandRunner.

    Records every command and keeps an in-memory set of snapshot names so
    that zfs list/snapshot/destroy behave like the real thing.
    """

    def __init__(self, snapshots=None, fail_on=None):
        """
        Args:
            snapshots: Initial full snapshot names (pool/fs@label)
            fail_on: Command prefixes (lists) that raise CommandError
        """
        self.snapshots = set(snapshots or [])
        self.fail_on = [list(prefix) for prefix in (fail_on or [])]
        self.calls = []

    def run(self, cmd, env=None, cwd=None, capture=True):
        cmd = list(cmd)
        self.calls.append({'cmd': cmd, 'env': env, 'cwd': cwd, 'capture': capture})

        for prefix in self.fail_on:
            if cmd[:len(prefix)] == prefix:
                raise CommandError(cmd, 1, 'simulated failure')

        if cmd[:2] == ['zfs', 'list']:
            filesystem = cmd[-1]
            names = sorted(n for n in self.snapshots if n.partition('@')[0] == filesystem)
            return ''.join(f"{name}\n" for name in names)
        if cmd[:2] == ['zfs', 'snapshot']:
            self.snapshots.add(cmd[2])
        elif cmd[:2] == ['zfs', 'destroy']:
            self.snapshots.discard(cmd[2])
        return ''

    def commands(self, *prefix):
        """Commands starting with the given words, in call order."""
        return [c['cmd'] for c in self.calls if c['cmd'][:len(prefix)] == list(prefix)]


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo configure_logging() so handlers never outlive captured streams."""
    yield
    logger = logging.getLogger('zfsborg')
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture(autouse=True)
def production_defaults(monkeypatch):
    """Tests run against the production defaults regardless of the caller's shell."""
    monkeypatch.delenv('ZFSBORG_ENV', raising=False)


@pytest.fixture
def fake_runner():
    """FakeRunner with an empty snapshot inventory."""
    return FakeRunner()


@pytest.fixture
def make_runner():
    """FakeRunner factory: make_runner(snapshots=[...], fail_on=[[...]])."""
    return FakeRunner


@pytest.fixture
def passphrase_file(tmp_path):
    """Passphrase file with a single line."""
    path = tmp_path / 'passphrase'
    path.write_text('correct horse battery staple\n')
    return path


@pytest.fixture
def local_root(tmp_path):
    """Existing local repository root."""
    root = tmp_path / 'borg'
    root.mkdir()
    return root


@pytest.fixture
def config_values(tmp_path, passphrase_file, local_root):
    """
    Raw values of a valid configuration.

    Local destination only, no settle delay, mounts under tmp_path.
    """
    return {
        'FS': ['pool/data'],
        'LOCAL': str(local_root),
        'REMOTE': '',
        'PASS': str(passphrase_file),
        'MONTH_KEEP': 12,
        'WEEK_KEEP': 4,
        'DAY_KEEP': 7,
        'SETTLE_DELAY': 0,
        'MOUNT_ROOT': str(tmp_path / 'mnt'),
    }


@pytest.fixture
def write_config(tmp_path, config_values):
    """
    Factory writing a YAML config file.

    Keyword arguments override values; a value of ... drops the key.
    """
    def _write(**overrides):
        values = dict(config_values)
        for key, value in overrides.items():
            if value is ...:
                values.pop(key, None)
            else:
                values[key] = value
        path = tmp_path / 'zfsborg.yaml'
        path.write_text(yaml.safe_dump(values))
        return path

    return _write


@pytest.fixture
def backup_config(write_config):
    """Loaded configuration with the default test values."""
    return load_config(str(write_config()))


@pytest.fixture
def mock_destination():
    """
    Factory for destination doubles.

    Each double has a kind, a repository with a location and records
    create/prune/ensure/after_create/cleanup calls.
    """
    def _make(kind='local', location='/backups/pool_data'):
        destination = MagicMock()
        destination.kind = kind
        destination.repository.location = location
        destination.repository.create.side_effect = lambda label, *args, **kwargs: f"{location}::{label}"
        destination.ensure.return_value = False
        return destination

    return _make


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SSH/SFTP testing.

    Returns the mocked class; its return_value is the client instance and
    client.open_sftp.return_value the SFTP session.
    """
    with patch('zfsborg.backup.destinations.SSHClient') as mock_ssh:
        mock_sftp = MagicMock()
        mock_ssh.return_value.open_sftp.return_value = mock_sftp

        # Mock connection success
        mock_ssh.return_value.connect.return_value = None

        yield mock_ssh
