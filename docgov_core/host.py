"""
Document Host Interface

Capabilities the engines consume from the external document. Implementations
wrap a real editor API; ``docgov_core.hosts`` ships an in-memory host and a
JSON-file host.

Failures raised by a host are classified by ``errors.ErrorClassifier``. Hosts
should raise PartialNodeFailure for problems scoped to one node.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .models import ChangeNotification, ContentNodeRef, StyleDefinition


ChangeCallback = Callable[[ChangeNotification], None]


@dataclass(frozen=True)
class DocumentInfo:
    """Basic facts about the open document."""
    document_id: str
    name: str
    editable: bool = True


@dataclass(frozen=True)
class NodePage:
    """One page of a paged leaf-node listing."""
    nodes: List[ContentNodeRef] = field(default_factory=list)
    next_cursor: Optional[int] = None

    @property
    def is_last(self) -> bool:
        return self.next_cursor is None


class Subscription:
    """Handle returned by ``DocumentHost.subscribe``."""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._cancel()


class DocumentHost(ABC):
    """
    Abstract external document.

    Subclasses must implement:
        - describe(): accessibility check
        - count_nodes() / list_nodes(): paged leaf traversal under a root
        - get_node() / set_binding(): single-node accessors
        - list_definitions(): style/token catalog
        - create_snapshot(): named, restorable snapshot (no programmatic rollback)
        - subscribe(): mutation notifications tagged with their origin
    """

    @abstractmethod
    async def describe(self) -> DocumentInfo:
        """Return document info or raise if the document is inaccessible."""

    @abstractmethod
    async def count_nodes(self, root_id: Optional[str] = None) -> int:
        """Number of leaf nodes under ``root_id`` (whole document if None)."""

    @abstractmethod
    async def list_nodes(
        self, root_id: Optional[str] = None, cursor: Optional[int] = None, limit: int = 200
    ) -> NodePage:
        """List leaf nodes under ``root_id`` starting at ``cursor``."""

    @abstractmethod
    async def get_node(self, node_id: str) -> Optional[ContentNodeRef]:
        """Current snapshot of one node, or None if it no longer exists."""

    @abstractmethod
    async def set_binding(self, node_id: str, definition_id: str) -> None:
        """Rebind one node to ``definition_id``."""

    @abstractmethod
    async def list_definitions(self) -> List[StyleDefinition]:
        """All known style and token definitions."""

    async def get_definition(self, definition_id: str) -> Optional[StyleDefinition]:
        """Resolve one definition by id."""
        for definition in await self.list_definitions():
            if definition.id == definition_id:
                return definition
        return None

    @abstractmethod
    async def create_snapshot(self, title: str) -> None:
        """Create a named snapshot or raise if the host refuses."""

    @abstractmethod
    def subscribe(self, callback: ChangeCallback) -> Subscription:
        """Register for mutation notifications."""
