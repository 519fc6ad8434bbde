"""
Unit tests for retention policy enforcement (zfsborg/backup/retention.py).
"""

import pytest

from zfsborg.commands import CommandError
from zfsborg.backup.retention import RetentionManager
from zfsborg.backup.snapshots import SnapshotManager
from zfsborg.backup.tiers import Tier, RetentionPolicy


POLICY = RetentionPolicy(month_keep=12, week_keep=4, day_keep=7)


def day_snapshots(count):
    """pool/data@day-20240601 .. day-202406NN."""
    return [f'pool/data@day-202406{day:02d}' for day in range(1, count + 1)]


class TestRetentionManager:
    """Test RetentionManager class."""

    def test_deletes_oldest_first(self, make_runner, mock_destination):
        """10 daily snapshots with DAY_KEEP 7: the 3 oldest go, oldest first."""
        runner = make_runner(snapshots=day_snapshots(10))
        destination = mock_destination()

        manager = RetentionManager(SnapshotManager(runner, settle_delay=0), [destination], POLICY)
        summary = manager.purge('pool/data', Tier.DAY)

        assert runner.commands('zfs', 'destroy') == [
            ['zfs', 'destroy', 'pool/data@day-20240601'],
            ['zfs', 'destroy', 'pool/data@day-20240602'],
            ['zfs', 'destroy', 'pool/data@day-20240603'],
        ]
        assert sorted(runner.snapshots) == day_snapshots(10)[3:]
        assert summary['snapshots_found'] == 10
        assert summary['snapshots_deleted'] == ['day-20240601', 'day-20240602', 'day-20240603']
        destination.repository.prune.assert_called_once_with(POLICY)

    def test_only_acts_on_given_tier(self, make_runner):
        runner = make_runner(snapshots=day_snapshots(10) + [
            'pool/data@month-20240101',
            'pool/data@week-20240602',
        ])

        RetentionManager(SnapshotManager(runner, settle_delay=0), [], RetentionPolicy(0, 0, 7)).purge(
            'pool/data', Tier.DAY
        )

        assert 'pool/data@month-20240101' in runner.snapshots
        assert 'pool/data@week-20240602' in runner.snapshots

    def test_under_limit_still_prunes(self, make_runner, mock_destination):
        """3 weekly snapshots with WEEK_KEEP 4: nothing destroyed, borg prune still runs."""
        runner = make_runner(snapshots=[
            'pool/data@week-20240602',
            'pool/data@week-20240609',
            'pool/data@week-20240616',
        ])
        local = mock_destination('local', '/backups/pool_data')
        remote = mock_destination('remote', 'nas:/srv/borg/pool_data')

        manager = RetentionManager(SnapshotManager(runner, settle_delay=0), [local, remote], POLICY)
        summary = manager.purge('pool/data', Tier.WEEK)

        assert runner.commands('zfs', 'destroy') == []
        assert summary['snapshots_deleted'] == []
        assert summary['destinations_pruned'] == ['/backups/pool_data', 'nas:/srv/borg/pool_data']
        local.repository.prune.assert_called_once_with(POLICY)
        remote.repository.prune.assert_called_once_with(POLICY)

    def test_no_destinations(self, make_runner):
        runner = make_runner(snapshots=day_snapshots(8))

        summary = RetentionManager(SnapshotManager(runner, settle_delay=0), [], POLICY).purge(
            'pool/data', Tier.DAY
        )

        assert summary['snapshots_deleted'] == ['day-20240601']
        assert summary['destinations_pruned'] == []

    def test_keep_zero_deletes_all(self, make_runner):
        runner = make_runner(snapshots=['pool/data@month-20240501', 'pool/data@month-20240601'])

        summary = RetentionManager(
            SnapshotManager(runner, settle_delay=0), [], RetentionPolicy(0, 4, 7)
        ).purge('pool/data', Tier.MONTH)

        assert summary['snapshots_deleted'] == ['month-20240501', 'month-20240601']
        assert runner.snapshots == set()

    def test_partial_failure(self, make_runner, mock_destination):
        """A failed destroy stops the purge; no prune is issued."""
        runner = make_runner(
            snapshots=day_snapshots(10),
            fail_on=[['zfs', 'destroy', 'pool/data@day-20240602']]
        )
        destination = mock_destination()

        manager = RetentionManager(SnapshotManager(runner, settle_delay=0), [destination], POLICY)

        with pytest.raises(CommandError):
            manager.purge('pool/data', Tier.DAY)

        assert 'pool/data@day-20240601' not in runner.snapshots
        assert 'pool/data@day-20240602' in runner.snapshots
        assert 'pool/data@day-20240603' in runner.snapshots
        destination.repository.prune.assert_not_called()

    def test_prune_failure_propagates(self, fake_runner, mock_destination):
        destination = mock_destination()
        destination.repository.prune.side_effect = CommandError(['borg', 'prune'], 2, 'locked')

        manager = RetentionManager(SnapshotManager(fake_runner, settle_delay=0), [destination], POLICY)

        with pytest.raises(CommandError):
            manager.purge('pool/data', Tier.DAY)

    def test_summary_logs(self, make_runner):
        runner = make_runner(snapshots=day_snapshots(8))

        summary = RetentionManager(SnapshotManager(runner, settle_delay=0), [], POLICY).purge(
            'pool/data', Tier.DAY
        )

        assert summary['filesystem'] == 'pool/data'
        assert summary['tier'] == 'day'
        assert any('Deleted snapshot: pool/data@day-20240601' in line for line in summary['logs'])
