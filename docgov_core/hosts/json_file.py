"""
JSON-file Document Host

Loads a document description from JSON, mutates it in memory and writes it
back on ``save()``. Snapshots are full copies of the current document written
next to it under ``.docgov/checkpoints/``; restoring one is a manual copy.

Document format:
    {
      "id": "doc-1", "name": "Brand kit", "editable": true,
      "definitions": [{"id": "s1", "path": ["Heading", "H1"], "source": "local", "kind": "style"}],
      "containers": [{"id": "page-1", "parent": null}],
      "nodes": [{"id": "n1", "parent": "page-1", "binding": "s1", "locked": false, "hidden": false}]
    }
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

from .memory import InMemoryDocumentHost

logger = logging.getLogger(__name__)


def _slugify(title: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9._-]+", "_", title).strip("_")
    return slug or "checkpoint"


class JsonDocumentHost(InMemoryDocumentHost):
    """InMemoryDocumentHost persisted to a JSON file."""

    def __init__(self, path: Path, checkpoint_dir: Optional[Path] = None):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Document not found: {self.path}")

        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        super().__init__(
            document_id=data.get("id", self.path.stem),
            name=data.get("name", self.path.stem),
            editable=data.get("editable", True),
        )
        self.checkpoint_dir = Path(checkpoint_dir) if checkpoint_dir else self.path.parent / ".docgov" / "checkpoints"
        self._load(data)

    def _load(self, data: Dict[str, Any]) -> None:
        for d in data.get("definitions", []):
            self.add_definition(
                d["id"],
                name=d.get("name"),
                path=d.get("path", ()),
                source=d.get("source", "local"),
                kind=d.get("kind", "style"),
            )
        for c in data.get("containers", []):
            self.add_container(c["id"], parent=c.get("parent"))
        for n in data.get("nodes", []):
            self.add_node(
                n["id"],
                binding=n.get("binding"),
                parent=n.get("parent"),
                locked=n.get("locked", False),
                hidden=n.get("hidden", False),
                name=n.get("name", ""),
            )
        logger.info(
            f"Loaded '{self.name}' from {self.path}: "
            f"{len(self._definitions)} definitions, {len(self._nodes)} nodes"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the current document state."""
        containers = [
            {"id": cid, "parent": parent}
            for cid, parent in self._parents.items()
            if cid not in self._nodes
        ]
        return {
            "id": self.document_id,
            "name": self.name,
            "editable": self.editable,
            "definitions": [
                {
                    "id": d.id,
                    "name": d.name,
                    "path": list(d.path),
                    "source": d.source,
                    "kind": d.kind.value,
                }
                for d in self._definitions.values()
            ],
            "containers": containers,
            "nodes": [
                dict(n.to_dict(), parent=self._parents.get(n.id))
                for n in self._nodes.values()
            ],
        }

    def save(self, path: Optional[Path] = None) -> Path:
        target = Path(path) if path else self.path
        with open(target, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Document saved to {target}")
        return target

    async def create_snapshot(self, title: str) -> None:
        await super().create_snapshot(title)
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
        slug = _slugify(title)
        snapshot_path = self.checkpoint_dir / f"{slug}.json"
        suffix = 2
        # Titles have one-second resolution and can repeat
        while snapshot_path.exists():
            snapshot_path = self.checkpoint_dir / f"{slug}-{suffix}.json"
            suffix += 1
        with open(snapshot_path, "x", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Checkpoint written to {snapshot_path}")
