"""
In-memory Document Host

A complete DocumentHost kept in plain dictionaries. Used by the test-suite,
by demos, and as the base of the JSON-file host.

Fault injection:
    host.fail_next("set_binding", TransientError("timeout"), times=2)
    host.fail_node("n7", PartialNodeFailure("n7", "incompatible node"))
    host.snapshot_error = PermissionError("no edit permission")
"""

import asyncio
import logging
from collections import Counter, defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import PartialNodeFailure
from ..host import ChangeCallback, DocumentHost, DocumentInfo, NodePage, Subscription
from ..models import ChangeNotification, ChangeOrigin, ContentNodeRef, DefinitionKind, StyleDefinition

logger = logging.getLogger(__name__)


class InMemoryDocumentHost(DocumentHost):
    """Dictionary-backed document with origin-tagged change notifications."""

    def __init__(self, document_id: str = "doc", name: str = "Untitled", editable: bool = True):
        self.document_id = document_id
        self.name = name
        self.editable = editable
        self.accessible = True

        self._definitions: Dict[str, StyleDefinition] = {}
        self._nodes: Dict[str, ContentNodeRef] = {}
        self._parents: Dict[str, Optional[str]] = {}
        self._subscribers: List[ChangeCallback] = []

        self._faults: Dict[str, List[BaseException]] = defaultdict(list)
        self._node_faults: Dict[str, BaseException] = {}
        self.snapshot_error: Optional[BaseException] = None
        self.listing_gate: Optional[asyncio.Event] = None

        self.snapshots: List[str] = []
        self.calls: Counter = Counter()
        self.write_log: List[Tuple[str, str]] = []

    # -------------------------------------------------------------------------
    # Building
    # -------------------------------------------------------------------------

    def add_definition(
        self,
        definition_id: str,
        name: Optional[str] = None,
        path: Sequence[str] = (),
        source: str = "local",
        kind: DefinitionKind = DefinitionKind.STYLE,
    ) -> StyleDefinition:
        path = tuple(path)
        definition = StyleDefinition(
            id=definition_id,
            name=name or (path[-1] if path else definition_id),
            path=path,
            source=source,
            kind=DefinitionKind(kind),
        )
        self._definitions[definition_id] = definition
        return definition

    def add_container(self, container_id: str, parent: Optional[str] = None) -> None:
        self._parents[container_id] = parent

    def add_node(
        self,
        node_id: str,
        binding: Optional[str] = None,
        parent: Optional[str] = None,
        locked: bool = False,
        hidden: bool = False,
        name: str = "",
    ) -> ContentNodeRef:
        node = ContentNodeRef(id=node_id, binding=binding, locked=locked, hidden=hidden, name=name)
        self._nodes[node_id] = node
        self._parents[node_id] = parent
        return node

    def remove_node(self, node_id: str) -> None:
        self._nodes.pop(node_id, None)
        self._parents.pop(node_id, None)

    def binding_of(self, node_id: str) -> Optional[str]:
        node = self._nodes.get(node_id)
        return node.binding if node else None

    @property
    def node_ids(self) -> List[str]:
        return list(self._nodes)

    @property
    def definitions(self) -> List[StyleDefinition]:
        return list(self._definitions.values())

    # -------------------------------------------------------------------------
    # Fault injection
    # -------------------------------------------------------------------------

    def fail_next(self, method: str, exc: BaseException, times: int = 1) -> None:
        """Make the next ``times`` calls of ``method`` raise ``exc``."""
        self._faults[method].extend([exc] * times)

    def fail_node(self, node_id: str, exc: BaseException) -> None:
        """Make every ``set_binding`` on ``node_id`` raise ``exc``."""
        self._node_faults[node_id] = exc

    def _enter(self, method: str) -> None:
        self.calls[method] += 1
        queue = self._faults.get(method)
        if queue:
            raise queue.pop(0)

    # -------------------------------------------------------------------------
    # External edits
    # -------------------------------------------------------------------------

    def edit_externally(self, node_id: str, binding: Optional[str]) -> None:
        """Simulate a collaborator changing a node outside the engine."""
        node = self._nodes[node_id]
        self._nodes[node_id] = ContentNodeRef(
            id=node.id, binding=binding, locked=node.locked, hidden=node.hidden, name=node.name
        )
        self._notify(ChangeNotification(origin=ChangeOrigin.EXTERNAL, node_ids=(node_id,)))

    def _notify(self, notification: ChangeNotification) -> None:
        for callback in list(self._subscribers):
            callback(notification)

    # -------------------------------------------------------------------------
    # DocumentHost
    # -------------------------------------------------------------------------

    def _under_root(self, node_id: str, root_id: Optional[str]) -> bool:
        if root_id is None:
            return True
        current = self._parents.get(node_id)
        seen = set()
        while current is not None and current not in seen:
            if current == root_id:
                return True
            seen.add(current)
            current = self._parents.get(current)
        return False

    def _matching(self, root_id: Optional[str]) -> List[ContentNodeRef]:
        if root_id is not None and root_id not in self._parents:
            raise LookupError(f"Root '{root_id}' not found")
        return [n for n in self._nodes.values() if self._under_root(n.id, root_id)]

    async def describe(self) -> DocumentInfo:
        self._enter("describe")
        if not self.accessible:
            raise PermissionError(f"Document '{self.document_id}' is not accessible")
        return DocumentInfo(document_id=self.document_id, name=self.name, editable=self.editable)

    async def count_nodes(self, root_id: Optional[str] = None) -> int:
        self._enter("count_nodes")
        return len(self._matching(root_id))

    async def list_nodes(
        self, root_id: Optional[str] = None, cursor: Optional[int] = None, limit: int = 200
    ) -> NodePage:
        self._enter("list_nodes")
        if self.listing_gate is not None:
            await self.listing_gate.wait()
        else:
            await asyncio.sleep(0)

        matching = self._matching(root_id)
        start = cursor or 0
        end = start + limit
        next_cursor = end if end < len(matching) else None
        return NodePage(nodes=matching[start:end], next_cursor=next_cursor)

    async def get_node(self, node_id: str) -> Optional[ContentNodeRef]:
        self._enter("get_node")
        return self._nodes.get(node_id)

    async def set_binding(self, node_id: str, definition_id: str) -> None:
        self._enter("set_binding")
        if not self.editable:
            raise PermissionError("Permission denied: document is read-only")
        if node_id in self._node_faults:
            raise self._node_faults[node_id]

        node = self._nodes.get(node_id)
        if node is None:
            raise PartialNodeFailure(node_id, "node not found")
        if node.locked:
            raise PartialNodeFailure(node_id, "node is locked")

        self._nodes[node_id] = ContentNodeRef(
            id=node.id, binding=definition_id, locked=node.locked, hidden=node.hidden, name=node.name
        )
        self.write_log.append((node_id, definition_id))
        self._notify(ChangeNotification(origin=ChangeOrigin.SELF, node_ids=(node_id,)))

    async def list_definitions(self) -> List[StyleDefinition]:
        self._enter("list_definitions")
        return list(self._definitions.values())

    async def get_definition(self, definition_id: str) -> Optional[StyleDefinition]:
        self._enter("get_definition")
        return self._definitions.get(definition_id)

    async def create_snapshot(self, title: str) -> None:
        self._enter("create_snapshot")
        if self.snapshot_error is not None:
            raise self.snapshot_error
        if not self.editable:
            raise PermissionError("Permission denied: cannot create a snapshot without edit access")
        self.snapshots.append(title)
        logger.debug(f"Snapshot created: {title}")

    def subscribe(self, callback: ChangeCallback) -> Subscription:
        self._subscribers.append(callback)

        def cancel():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return Subscription(cancel)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
