"""
Tests for external change detection
"""

from docgov_core.change_watcher import ChangeWatcher
from docgov_core.models import ChangeNotification, ChangeOrigin

from conftest import build_host


class TestChangeWatcher:
    """Tests for ChangeWatcher."""

    def test_external_change_sets_flag(self):
        """Test an external change latches the invalidated flag."""
        host = build_host({"A": 2})
        reasons = []
        watcher = ChangeWatcher(host, on_invalidate=reasons.append)
        watcher.start()

        host.edit_externally("A-0", "B")

        assert watcher.invalidated
        assert reasons == ["external document change"]

    def test_self_origin_ignored(self):
        """Test changes made by this process are ignored."""
        host = build_host({"A": 2})
        reasons = []
        watcher = ChangeWatcher(host, on_invalidate=reasons.append)
        watcher.start()

        host._notify(ChangeNotification(origin=ChangeOrigin.SELF, node_ids=("A-0",)))

        assert not watcher.invalidated
        assert reasons == []

    def test_every_external_change_reported(self):
        """Test each external change reaches the invalidate callback."""
        host = build_host({"A": 2})
        reasons = []
        watcher = ChangeWatcher(host, on_invalidate=reasons.append)
        watcher.start()

        host.edit_externally("A-0", "B")
        host.edit_externally("A-1", "B")

        assert len(reasons) == 2

    def test_reset(self):
        """Test reset clears the latched flag."""
        host = build_host({"A": 1})
        watcher = ChangeWatcher(host)
        watcher.start()
        host.edit_externally("A-0", "C")

        watcher.reset()

        assert not watcher.invalidated

    def test_start_is_idempotent(self):
        """Test starting twice keeps a single subscription."""
        host = build_host()
        watcher = ChangeWatcher(host)

        watcher.start()
        watcher.start()

        assert host.subscriber_count == 1
        assert watcher.active

    def test_dispose_unsubscribes(self):
        """Test dispose removes the host subscription."""
        host = build_host({"A": 1})
        watcher = ChangeWatcher(host)
        watcher.start()

        watcher.dispose()
        host.edit_externally("A-0", "C")

        assert host.subscriber_count == 0
        assert not watcher.active
        assert not watcher.invalidated

    def test_dispose_twice(self):
        """Test dispose can be called more than once."""
        host = build_host()
        watcher = ChangeWatcher(host)
        watcher.start()

        watcher.dispose()
        watcher.dispose()

        assert host.subscriber_count == 0
