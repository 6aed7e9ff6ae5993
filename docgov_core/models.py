"""
Data Model for Audit and Replacement Runs

Snapshots captured from the external document. The engine holds identifiers
and read-only copies only, never live document nodes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class DefinitionKind(str, Enum):
    """Reusable definition families."""
    STYLE = "style"
    TOKEN = "token"


class NodeCategory(str, Enum):
    """Per-node categorization produced by an audit."""
    BOUND = "bound"        # Bound to a definition present in the catalog
    MISSING = "missing"    # Bound to an id the catalog does not know
    UNBOUND = "unbound"    # No binding at all


class ChangeOrigin(str, Enum):
    """Origin tag carried by document mutation notifications."""
    SELF = "self"
    EXTERNAL = "external"


@dataclass(frozen=True)
class ContentNodeRef:
    """Identifier plus binding snapshot for one content node."""
    id: str
    binding: Optional[str] = None
    locked: bool = False
    hidden: bool = False
    name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "binding": self.binding,
            "locked": self.locked,
            "hidden": self.hidden,
            "name": self.name,
        }


@dataclass(frozen=True)
class StyleDefinition:
    """
    Read-only snapshot of a style or token definition.

    Attributes:
        id: Definition identifier referenced by node bindings
        name: Display name (last path segment)
        path: Hierarchical path, e.g. ("Heading", "H1")
        source: Library the definition comes from ("local" for document-owned)
        kind: Style or token
        usage_count: Number of scanned nodes bound to it at audit time
    """
    id: str
    name: str
    path: Tuple[str, ...] = ()
    source: str = "local"
    kind: DefinitionKind = DefinitionKind.STYLE
    usage_count: int = 0

    @property
    def full_name(self) -> str:
        return "/".join(self.path) if self.path else self.name

    @property
    def is_remote(self) -> bool:
        return self.source != "local"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "path": list(self.path),
            "source": self.source,
            "kind": self.kind.value,
            "usage_count": self.usage_count,
        }


@dataclass(frozen=True)
class NodeAuditEntry:
    """Metadata extracted for one node during the processing phase."""
    node_id: str
    category: NodeCategory
    binding: Optional[str] = None
    locked: bool = False
    hidden: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "category": self.category.value,
            "binding": self.binding,
            "locked": self.locked,
            "hidden": self.hidden,
        }


class InvalidationFlag:
    """
    One-way staleness latch.

    Once set it stays set; a fresh object is needed for a fresh result.
    """

    def __init__(self):
        self._set = False
        self.reason: Optional[str] = None
        self.set_at: Optional[datetime] = None

    @property
    def is_set(self) -> bool:
        return self._set

    def set(self, reason: str = "") -> bool:
        """Set the flag. Returns True only on the first call."""
        if self._set:
            return False
        self._set = True
        self.reason = reason
        self.set_at = datetime.now(timezone.utc)
        return True

    def __bool__(self) -> bool:
        return self._set

    def __repr__(self) -> str:
        return f"InvalidationFlag(set={self._set}, reason={self.reason!r})"


@dataclass(frozen=True)
class AuditResult:
    """
    Immutable inventory produced by one complete audit run.

    Published wholesale; never patched. The only mutable aspect is the
    staleness latch flipped by ``invalidate()``.
    """
    audit_id: str
    timestamp: datetime
    total_nodes: int
    definitions: Tuple[StyleDefinition, ...]
    nodes: Tuple[NodeAuditEntry, ...]
    warnings: Tuple[str, ...] = ()
    duration_seconds: float = 0.0
    _invalidation: InvalidationFlag = field(
        default_factory=InvalidationFlag, compare=False, repr=False
    )

    @property
    def invalidated(self) -> bool:
        return self._invalidation.is_set

    @property
    def invalidation_reason(self) -> Optional[str]:
        return self._invalidation.reason

    def invalidate(self, reason: str = "") -> bool:
        """Mark this result stale. Returns True if it was fresh before."""
        return self._invalidation.set(reason)

    def get_definition(self, definition_id: str) -> Optional[StyleDefinition]:
        for definition in self.definitions:
            if definition.id == definition_id:
                return definition
        return None

    def nodes_using(self, definition_id: str) -> List[str]:
        """Ids of scanned nodes bound to ``definition_id``, in scan order."""
        return [entry.node_id for entry in self.nodes if entry.binding == definition_id]

    def nodes_in_category(self, category: NodeCategory) -> List[NodeAuditEntry]:
        return [entry for entry in self.nodes if entry.category == category]

    def unused_definitions(self) -> List[StyleDefinition]:
        return [d for d in self.definitions if d.usage_count == 0]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for export collaborators."""
        return {
            "audit_id": self.audit_id,
            "timestamp": self.timestamp.isoformat(),
            "total_nodes": self.total_nodes,
            "definitions": [d.to_dict() for d in self.definitions],
            "nodes": [n.to_dict() for n in self.nodes],
            "warnings": list(self.warnings),
            "duration_seconds": self.duration_seconds,
            "invalidated": self.invalidated,
        }


@dataclass(frozen=True)
class NodeFailure:
    """A node that could not be updated, with the reason."""
    node_id: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"node_id": self.node_id, "reason": self.reason}


@dataclass(frozen=True)
class CheckpointRecord:
    """Named snapshot created before mutation. Display/rollback guidance only."""
    title: str
    created_at: datetime


@dataclass(frozen=True)
class ReplacementResult:
    """Summary of a replacement run that reached ``complete``."""
    source_ref: str
    target_ref: str
    updated_count: int
    failed_nodes: Tuple[NodeFailure, ...]
    checkpoint_title: str
    duration_seconds: float
    batch_sizes: Tuple[int, ...] = ()

    @property
    def has_warnings(self) -> bool:
        return len(self.failed_nodes) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_ref": self.source_ref,
            "target_ref": self.target_ref,
            "updated_count": self.updated_count,
            "failed_nodes": [f.to_dict() for f in self.failed_nodes],
            "checkpoint_title": self.checkpoint_title,
            "duration_seconds": self.duration_seconds,
            "batch_sizes": list(self.batch_sizes),
            "has_warnings": self.has_warnings,
        }


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class ProgressEvent:
    """
    Progress notification emitted at every suspension point.

    Attributes:
        phase: "scanning", "processing" (audit) or "batch" (replacement)
        index: 0-based page / chunk / batch index
        size: Items in this step
        processed: Cumulative items handled so far
        failed: Cumulative failed items so far
        total: Expected total, when known
    """
    phase: str
    index: int
    size: int
    processed: int
    failed: int = 0
    total: Optional[int] = None

    @property
    def fraction(self) -> Optional[float]:
        if not self.total:
            return None
        return min(1.0, self.processed / self.total)


@dataclass(frozen=True)
class ChangeNotification:
    """Document mutation notification as delivered by the host."""
    origin: ChangeOrigin
    node_ids: Tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
