"""
Tests for the in-memory and JSON-file document hosts
"""

import json

import pytest

from docgov_core.errors import PartialNodeFailure, TransientError
from docgov_core.hosts import InMemoryDocumentHost, JsonDocumentHost
from docgov_core.models import ChangeOrigin, DefinitionKind

from conftest import build_host


class TestInMemoryHost:
    """Tests for InMemoryDocumentHost."""

    @pytest.mark.asyncio
    async def test_paging(self):
        """Test cursor paging over the node list."""
        host = build_host({"A": 5})

        first = await host.list_nodes(cursor=None, limit=2)
        last = await host.list_nodes(cursor=4, limit=2)

        assert [n.id for n in first.nodes] == ["A-0", "A-1"]
        assert first.next_cursor == 2
        assert [n.id for n in last.nodes] == ["A-4"]
        assert last.is_last

    @pytest.mark.asyncio
    async def test_root_scoping(self):
        """Test counting nodes under a root."""
        host = build_host({"A": 2})
        host.add_container("page-2")
        host.add_node("other", binding="B", parent="page-2")

        assert await host.count_nodes() == 3
        assert await host.count_nodes("page-1") == 2
        with pytest.raises(LookupError):
            await host.count_nodes("missing-page")

    @pytest.mark.asyncio
    async def test_set_binding_notifies_self(self):
        """Test own writes notify subscribers with origin self."""
        host = build_host({"A": 1})
        seen = []
        host.subscribe(seen.append)

        await host.set_binding("A-0", "B")

        assert host.binding_of("A-0") == "B"
        assert seen[0].origin is ChangeOrigin.SELF
        assert host.write_log == [("A-0", "B")]

    @pytest.mark.asyncio
    async def test_set_binding_rejections(self):
        """Test locked, missing and read-only writes are rejected."""
        host = build_host()
        host.add_node("locked", binding="A", locked=True)

        with pytest.raises(PartialNodeFailure, match="locked"):
            await host.set_binding("locked", "B")
        with pytest.raises(PartialNodeFailure, match="not found"):
            await host.set_binding("ghost", "B")

        host.editable = False
        with pytest.raises(PermissionError):
            await host.set_binding("locked", "B")

    @pytest.mark.asyncio
    async def test_fault_injection(self):
        """Test injected faults fire the requested number of times."""
        host = build_host({"A": 1})
        host.fail_next("get_node", TransientError("timeout"), times=2)

        for _ in range(2):
            with pytest.raises(TransientError):
                await host.get_node("A-0")
        node = await host.get_node("A-0")

        assert node.binding == "A"
        assert host.calls["get_node"] == 3

    @pytest.mark.asyncio
    async def test_subscription_cancel(self):
        """Test unsubscribing twice is harmless."""
        host = InMemoryDocumentHost()
        subscription = host.subscribe(lambda n: None)

        subscription.unsubscribe()
        subscription.unsubscribe()

        assert not subscription.active
        assert host.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_get_definition(self):
        """Test looking up a definition by id."""
        host = build_host()

        token = await host.get_definition("T1")

        assert token.kind is DefinitionKind.TOKEN
        assert token.full_name == "color/primary"
        assert await host.get_definition("nope") is None


class TestJsonHost:
    """Tests for JsonDocumentHost."""

    def test_missing_file(self, temp_dir):
        """Test opening a missing document file."""
        with pytest.raises(FileNotFoundError):
            JsonDocumentHost(temp_dir / "nope.json")

    @pytest.mark.asyncio
    async def test_load(self, sample_document):
        """Test loading a JSON document."""
        host = JsonDocumentHost(sample_document)

        info = await host.describe()

        assert info.document_id == "doc-json"
        assert await host.count_nodes() == 33
        assert await host.count_nodes("frame-1") == 31
        assert (await host.get_definition("brand")).kind is DefinitionKind.TOKEN

    @pytest.mark.asyncio
    async def test_save_round_trip(self, sample_document):
        """Test saved bindings survive a reload."""
        host = JsonDocumentHost(sample_document)
        await host.set_binding("n0", "h1")

        host.save()
        reloaded = JsonDocumentHost(sample_document)

        assert reloaded.binding_of("n0") == "h1"
        assert reloaded.binding_of("n1") == "h1-old"
        assert await reloaded.count_nodes("frame-1") == 31

    @pytest.mark.asyncio
    async def test_snapshot_written(self, sample_document, temp_dir):
        """Test a snapshot is written as a full document copy."""
        host = JsonDocumentHost(sample_document)

        await host.create_snapshot("Bulk replace: h1-old -> h1 - 2026-10-17 10:00:00")

        files = list((temp_dir / ".docgov" / "checkpoints").glob("*.json"))
        assert len(files) == 1
        assert ":" not in files[0].name
        snapshot = json.loads(files[0].read_text(encoding="utf-8"))
        assert snapshot["id"] == "doc-json"
        assert len(snapshot["nodes"]) == 33

    @pytest.mark.asyncio
    async def test_repeated_snapshot_title_kept(self, sample_document, temp_dir):
        """Test two snapshots with the same title are both written."""
        host = JsonDocumentHost(sample_document)
        title = "Bulk replace: h1-old -> h1 - 2026-10-17 10:00:00"

        await host.create_snapshot(title)
        await host.set_binding("n0", "h1")
        await host.create_snapshot(title)

        files = list((temp_dir / ".docgov" / "checkpoints").glob("*.json"))
        assert len(files) == 2
        # The second write gets a numeric suffix
        files.sort(key=lambda f: f.name.endswith("-2.json"))
        assert files[1].name.endswith("-2.json")
        bindings = [
            {n["id"]: n["binding"] for n in json.loads(f.read_text(encoding="utf-8"))["nodes"]}["n0"]
            for f in files
        ]
        assert bindings == ["h1-old", "h1"]
